# lfspkg/hooks.py
"""
hooks.py - build and install executors

Each stage (prepare, build, install) is resolved once to a strategy:
  RecipeHook       the recipe's own shell procedure
  DefaultStrategy  the built-in procedure (configure + make, make install)

Hooks run as `sh -c <script>` from the source root with DESTDIR, WRKSRC,
PKGDIR, PKGFILE, NAME and VERSION in the environment. The install stage,
hook or default, is wrapped by the privilege prefix from lfspkg.fakeroot.
"""

from __future__ import annotations

import os
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, List, Optional

from lfspkg.config import Config, get_config
from lfspkg.errors import BuildError, InstallError, LfspkgError
from lfspkg.fakeroot import privilege_prefix
from lfspkg.logging import get_logger
from lfspkg.recipe import HOOK_STAGES, Recipe
from lfspkg.runner import base_env, run_logged, shell_cmd
from lfspkg.workspace import Workspace

logger = get_logger("hooks")


@dataclass
class HookContext:
    recipe: Recipe
    workspace: Workspace
    cfg: Config
    logfile: Optional[Path] = None

    @property
    def source_root(self) -> Path:
        return self.workspace.source_root or self.workspace.extract_root

    def env(self) -> Dict[str, str]:
        r = self.recipe
        return base_env({
            "DESTDIR": str(self.workspace.staging_root),
            "WRKSRC": str(self.source_root),
            "PKGDIR": str(r.recipe_dir),
            "PKGFILE": str(r.recipe_file) if r.recipe_file else "",
            "NAME": r.name,
            "VERSION": r.version,
        })


def _error_for(stage: str, msg: str, rc: Optional[int]) -> LfspkgError:
    if stage == "install":
        return InstallError(msg, returncode=rc)
    return BuildError(msg, stage=stage, returncode=rc)


# -----------------------------
# Strategies
# -----------------------------
class BuildStrategy:
    kind = "abstract"

    def __init__(self, stage: str):
        if stage not in HOOK_STAGES:
            raise ValueError(f"unknown stage: {stage}")
        self.stage = stage

    def commands(self, ctx: HookContext) -> List[List[str]]:
        raise NotImplementedError

    def run(self, ctx: HookContext) -> None:
        prefix = privilege_prefix(ctx.cfg) if self.stage == "install" else []
        env = ctx.env()
        for cmd in self.commands(ctx):
            label = f"{self.stage.upper()} ({self.kind})"
            rc = run_logged(label, prefix + cmd, logfile=ctx.logfile, cwd=ctx.source_root, env=env, cfg=ctx.cfg)
            if rc != 0:
                raise _error_for(self.stage, f"{self.stage} failed for {ctx.recipe.ident}", rc)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.stage!r})"


class RecipeHook(BuildStrategy):
    kind = "recipe"

    def __init__(self, stage: str, script: str):
        super().__init__(stage)
        self.script = script

    def commands(self, ctx: HookContext) -> List[List[str]]:
        return [shell_cmd(self.script, ctx.cfg)]


class DefaultStrategy(BuildStrategy):
    kind = "default"

    def commands(self, ctx: HookContext) -> List[List[str]]:
        make = ctx.cfg.tool_cmd("make")
        if self.stage == "prepare":
            return []
        if self.stage == "build":
            cmds: List[List[str]] = []
            configure = ctx.source_root / "configure"
            if configure.is_file() and os.access(configure, os.X_OK):
                cmds.append([str(configure)] + list(ctx.recipe.configure))
            else:
                logger.debug("no executable configure in %s", ctx.source_root)
            cmds.append(make + list(ctx.recipe.makeflags))
            return cmds
        return [make + [f"DESTDIR={ctx.workspace.staging_root}", "install"]]


def resolve_strategy(recipe: Recipe, stage: str) -> BuildStrategy:
    script = recipe.hook(stage)
    if script:
        return RecipeHook(stage, script)
    return DefaultStrategy(stage)


def run_stage(stage: str, recipe: Recipe, workspace: Workspace,
              cfg: Optional[Config] = None, logfile: Optional[Path] = None) -> BuildStrategy:
    """Resolve and execute one stage; raises BuildError/InstallError on failure."""
    cfg = cfg or get_config()
    strategy = resolve_strategy(recipe, stage)
    logger.info("%s %s: %s", recipe.ident, stage, strategy)
    strategy.run(HookContext(recipe=recipe, workspace=workspace, cfg=cfg, logfile=logfile))
    return strategy
