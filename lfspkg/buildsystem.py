# lfspkg/buildsystem.py
"""
buildsystem.py - build pipeline orchestration

Features:
- One strict state machine per build:
    load-recipe -> fetch -> verify-checksum -> extract -> apply-patches ->
    prepare -> build -> install -> package -> register ->
    sync-recipes -> sync-artifacts
- Each stage gated on the previous one; the first failure ends the build with
  {"ok": False, "stage": <stage>, "error": ..., "returncode": ...}
- Optional stages are skipped (fetch/extract without a source, checksum without
  a tarball, patches when none are declared, prepare without a hook)
- Sync stages are best effort: failures are logged, the result stays successful
- rebuild_all: every discovered recipe, sequentially, stopping at the first failure
"""

from __future__ import annotations

import time
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lfspkg.config import Config, get_config
from lfspkg.errors import LfspkgError
from lfspkg.fetcher import fetch_source, verify_checksum
from lfspkg.hooks import run_stage
from lfspkg.logging import get_logger, package_log_path, stamp
from lfspkg.patches import apply_patches
from lfspkg.pkgtool import make_package
from lfspkg.recipe import Recipe, discover_recipes, load_recipe, resolve_recipe_dir
from lfspkg.registry import InstallRecord, InstallRegistry
from lfspkg.repo_sync import git_sync
from lfspkg.workspace import Workspace, detect_source_root, extract_source, prepare_workspace, reset_extract_root

logger = get_logger("buildsystem")

STAGES = (
    "load-recipe",
    "fetch",
    "verify-checksum",
    "extract",
    "apply-patches",
    "prepare",
    "build",
    "install",
    "package",
    "register",
    "sync-recipes",
    "sync-artifacts",
)
ADVISORY_STAGES = ("sync-recipes", "sync-artifacts")


class SkipStage(Exception):
    """Raised by a stage method that has nothing to do for this recipe."""


@dataclass
class BuildContext:
    ref: str
    recipe: Optional[Recipe] = None
    workspace: Optional[Workspace] = None
    tarball: Optional[Path] = None
    logfile: Optional[Path] = None
    artifact: Optional[Path] = None
    record: Optional[InstallRecord] = None
    completed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    def require_recipe(self) -> Recipe:
        if self.recipe is None:
            raise LfspkgError("no recipe loaded", stage="load-recipe")
        return self.recipe

    def require_workspace(self) -> Workspace:
        if self.workspace is None:
            raise LfspkgError("workspace not prepared", stage="extract")
        return self.workspace


def _method_name(stage: str) -> str:
    return "stage_" + stage.replace("-", "_")


class BuildSystem:
    def __init__(self, cfg: Optional[Config] = None):
        self.cfg = cfg or get_config()

    # --- stages ---
    def stage_load_recipe(self, ctx: BuildContext) -> None:
        recipe_dir = resolve_recipe_dir(ctx.ref, self.cfg)
        ctx.recipe = load_recipe(recipe_dir, self.cfg)
        ctx.logfile = package_log_path(ctx.recipe.name, ctx.recipe.version, self.cfg)
        ctx.logfile.parent.mkdir(parents=True, exist_ok=True)
        with open(ctx.logfile, "w", encoding="utf-8") as fh:
            fh.write(f"==> [{stamp()}] build {ctx.recipe.ident} from {recipe_dir}\n")
        ctx.tarball = self.cfg.path_for("src_cache") / ctx.recipe.tarball_name
        logger.info("building %s (%s)", ctx.recipe.ident, recipe_dir)

    def stage_fetch(self, ctx: BuildContext) -> None:
        recipe = ctx.require_recipe()
        if not recipe.source_url:
            logger.warning("%s has no SOURCE_URL; nothing to fetch", recipe.ident)
            raise SkipStage()
        fetch_source(recipe.source_url, ctx.tarball, self.cfg, logfile=ctx.logfile)

    def stage_verify_checksum(self, ctx: BuildContext) -> None:
        recipe = ctx.require_recipe()
        if ctx.tarball is None or not ctx.tarball.exists():
            logger.warning("tarball not found: %s", ctx.tarball)
            raise SkipStage()
        verify_checksum(ctx.tarball, recipe.source_sha256, recipe.md5)

    def stage_extract(self, ctx: BuildContext) -> None:
        recipe = ctx.require_recipe()
        ws = prepare_workspace(recipe, self.cfg)
        ctx.workspace = ws
        policy = str(self.cfg.get("workspace.source_root_policy", "first"))
        if ctx.tarball is not None and ctx.tarball.exists():
            reset_extract_root(ws)
            extract_source(ctx.tarball, ws.extract_root)
            ws.source_root = detect_source_root(ws.extract_root, policy)
            logger.info("source root: %s", ws.source_root)
            return
        ws.source_root = detect_source_root(ws.extract_root, policy)
        raise SkipStage()

    def stage_apply_patches(self, ctx: BuildContext) -> None:
        recipe = ctx.require_recipe()
        if not recipe.patches:
            raise SkipStage()
        ws = ctx.require_workspace()
        apply_patches(ws.source_root, recipe.patch_dir, recipe.patches, self.cfg, logfile=ctx.logfile)

    def stage_prepare(self, ctx: BuildContext) -> None:
        recipe = ctx.require_recipe()
        if not recipe.prepare:
            raise SkipStage()
        run_stage("prepare", recipe, ctx.require_workspace(), self.cfg, logfile=ctx.logfile)

    def stage_build(self, ctx: BuildContext) -> None:
        run_stage("build", ctx.require_recipe(), ctx.require_workspace(), self.cfg, logfile=ctx.logfile)

    def stage_install(self, ctx: BuildContext) -> None:
        run_stage("install", ctx.require_recipe(), ctx.require_workspace(), self.cfg, logfile=ctx.logfile)

    def stage_package(self, ctx: BuildContext) -> None:
        recipe = ctx.require_recipe()
        ctx.artifact = make_package(ctx.require_workspace().staging_root, recipe.name, recipe.version, self.cfg)

    def stage_register(self, ctx: BuildContext) -> None:
        recipe = ctx.require_recipe()
        registry = InstallRegistry(cfg=self.cfg)
        try:
            ctx.record = registry.register(recipe.name, recipe.version, ctx.require_workspace().staging_root)
        finally:
            registry.close()

    def stage_sync_recipes(self, ctx: BuildContext) -> None:
        if not self.cfg.get("git.sync_recipes", True):
            raise SkipStage()
        if not git_sync(self.cfg.path_for("repo_root"), f"recipes {ctx.require_recipe().ident}", self.cfg):
            raise LfspkgError("recipe tree sync failed", stage="sync-recipes")

    def stage_sync_artifacts(self, ctx: BuildContext) -> None:
        if not self.cfg.get("git.sync_artifacts", True):
            raise SkipStage()
        if not git_sync(self.cfg.path_for("artifacts_dir"), f"artifacts {ctx.require_recipe().ident}", self.cfg):
            raise LfspkgError("artifact tree sync failed", stage="sync-artifacts")

    # --- orchestration ---
    def _log_to_package(self, ctx: BuildContext, line: str) -> None:
        if ctx.logfile is None:
            return
        try:
            with open(ctx.logfile, "a", encoding="utf-8") as fh:
                fh.write(f"==> [{stamp()}] {line}\n")
        except OSError:
            logger.debug("cannot append to %s", ctx.logfile)

    def _failed(self, ctx: BuildContext, stage: str, err: Exception) -> Dict[str, Any]:
        rc = getattr(err, "returncode", None)
        logger.error("build of %s failed at %s: %s", ctx.recipe.ident if ctx.recipe else ctx.ref, stage, err)
        self._log_to_package(ctx, f"FAILED at {stage}: {err}")
        return {
            "ok": False,
            "stage": stage,
            "error": str(err),
            "returncode": rc,
            "artifact": None,
            "ref": ctx.ref,
            "name": ctx.recipe.name if ctx.recipe else None,
            "version": ctx.recipe.version if ctx.recipe else None,
            "log": str(ctx.logfile) if ctx.logfile else None,
            "completed": list(ctx.completed),
        }

    def build_package(self, ref: str) -> Dict[str, Any]:
        """
        Run the whole pipeline for one recipe reference.
        Returns dict with ok, stage and (on success) the artifact path.
        """
        ctx = BuildContext(ref=ref)
        for stage in STAGES:
            method = getattr(self, _method_name(stage))
            try:
                method(ctx)
            except SkipStage:
                logger.debug("stage %s skipped", stage)
                ctx.skipped.append(stage)
                continue
            except (LfspkgError, OSError) as e:
                if stage in ADVISORY_STAGES:
                    logger.warning("%s: %s (ignored)", stage, e)
                    ctx.skipped.append(stage)
                    continue
                return self._failed(ctx, stage, e)
            ctx.completed.append(stage)

        recipe = ctx.require_recipe()
        elapsed = time.time() - ctx.started_at
        self._log_to_package(ctx, f"build complete: {ctx.artifact}")
        logger.info("build complete: %s -> %s (%.1fs)", recipe.ident, ctx.artifact, elapsed)
        return {
            "ok": True,
            "stage": "complete",
            "artifact": str(ctx.artifact),
            "ref": ref,
            "name": recipe.name,
            "version": recipe.version,
            "log": str(ctx.logfile) if ctx.logfile else None,
            "record": ctx.record.line() if ctx.record else None,
            "completed": list(ctx.completed),
            "skipped": list(ctx.skipped),
            "elapsed": round(elapsed, 3),
        }

    def rebuild_all(self) -> Dict[str, Any]:
        """Build every discovered recipe in order; stop at the first failure."""
        refs = discover_recipes(self.cfg)
        logger.info("rebuilding %d recipes", len(refs))
        results: List[Dict[str, Any]] = []
        for ref in refs:
            logger.info("rebuild: %s", ref)
            res = self.build_package(ref)
            results.append(res)
            if not res["ok"]:
                logger.error("rebuild failed at %s (%s)", ref, res["stage"])
                return {"ok": False, "failed": ref, "stage": res["stage"], "error": res.get("error"),
                        "results": results}
        return {"ok": True, "failed": None, "stage": "complete", "results": results}


# --- module-level helpers ---
def build_package(ref: str, cfg: Optional[Config] = None) -> Dict[str, Any]:
    return BuildSystem(cfg).build_package(ref)


def rebuild_all(cfg: Optional[Config] = None) -> Dict[str, Any]:
    return BuildSystem(cfg).rebuild_all()
