# lfspkg/recipe.py
"""
recipe.py - recipe loading and discovery

Features:
- PKGFILE recipes: plain sh assignments (NAME, VERSION, SOURCE_URL, ...) and
  optional PREPARE/BUILD/INSTALL functions, evaluated by sh in a child process
- recipe.yaml recipes: the same fields as a YAML mapping, hooks as inline shell
- Immutable Recipe value threaded through every pipeline stage
- Recipe references resolved against the configured recipe trees
  (<tree>/<name>/<name-version>, <name>/<name-version>, <name-version>, <name>)
- Discovery of every recipe under the configured trees
"""

from __future__ import annotations

import os
import shlex
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from lfspkg.config import Config, get_config
from lfspkg.errors import InvalidRecipe
from lfspkg.logging import get_logger

logger = get_logger("recipe")

RECIPE_FILES = ("PKGFILE", "recipe.yaml", "recipe.yml")
FIELDS = ("NAME", "VERSION", "SOURCE_URL", "SOURCE_SHA256", "MD5", "CONFIGURE", "MAKEFLAGS", "PATCHES")
HOOK_STAGES = ("prepare", "build", "install")

# Resets every field, drops hook functions that may be inherited, sources the
# PKGFILE ($1) and reports NUL separated values followed by the defined hooks.
_PKGFILE_PROBE = r"""
NAME=; VERSION=; SOURCE_URL=; SOURCE_SHA256=; MD5=; CONFIGURE=; MAKEFLAGS=; PATCHES=
unset -f PREPARE BUILD INSTALL 2>/dev/null
. "$1" >/dev/null || exit 3
printf '%s\0' "$NAME" "$VERSION" "$SOURCE_URL" "$SOURCE_SHA256" "$MD5" "$CONFIGURE" "$MAKEFLAGS" "$PATCHES"
for f in PREPARE BUILD INSTALL; do
  case "$(command -v "$f" 2>/dev/null)" in
    "$f") printf '%s\0' "$f" ;;
  esac
done
"""


# ----------------------------
# Data model
# ----------------------------
@dataclass(frozen=True)
class Recipe:
    name: str
    version: str
    source_url: str = ""
    source_sha256: str = ""
    md5: str = ""
    configure: Tuple[str, ...] = ()
    makeflags: Tuple[str, ...] = ()
    patches: Tuple[str, ...] = ()
    prepare: Optional[str] = None
    build: Optional[str] = None
    install: Optional[str] = None
    recipe_dir: Path = Path(".")
    recipe_file: Optional[Path] = None

    @property
    def ident(self) -> str:
        return f"{self.name}-{self.version}"

    @property
    def patch_dir(self) -> Path:
        return self.recipe_dir / "patches"

    @property
    def tarball_name(self) -> str:
        """Cache file name of the source: URL basename, else <name>-<version>.tar."""
        base = self.source_url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1] if self.source_url else ""
        return base or f"{self.ident}.tar"

    def hook(self, stage: str) -> Optional[str]:
        if stage not in HOOK_STAGES:
            raise ValueError(f"unknown hook stage: {stage}")
        return getattr(self, stage)


# ----------------------------
# Helpers
# ----------------------------
def _split_args(val: Any, field_name: str, path: Path) -> Tuple[str, ...]:
    if val is None or val == "":
        return ()
    if isinstance(val, (list, tuple)):
        return tuple(str(v) for v in val)
    try:
        return tuple(shlex.split(str(val)))
    except ValueError as e:
        raise InvalidRecipe(f"{path}: cannot parse {field_name}: {e}") from e


def _configure_args(val: Any, path: Path) -> Tuple[str, ...]:
    args = _split_args(val, "CONFIGURE", path)
    # the default build runs the configure script itself
    if args and os.path.basename(args[0]) == "configure":
        args = args[1:]
    return args


def find_recipe_file(recipe_dir: Path) -> Optional[Path]:
    for fname in RECIPE_FILES:
        p = Path(recipe_dir) / fname
        if p.is_file():
            return p
    return None


def _finish(values: Mapping[str, Any], hooks: Mapping[str, Optional[str]], recipe_dir: Path, path: Path) -> Recipe:
    name = str(values.get("name") or "").strip()
    version = str(values.get("version") or "").strip()
    if not name or not version:
        raise InvalidRecipe(f"invalid recipe (NAME/VERSION) in {path}")
    return Recipe(
        name=name,
        version=version,
        source_url=str(values.get("source_url") or "").strip(),
        source_sha256=str(values.get("source_sha256") or "").strip(),
        md5=str(values.get("md5") or "").strip(),
        configure=_configure_args(values.get("configure"), path),
        makeflags=_split_args(values.get("makeflags"), "MAKEFLAGS", path),
        patches=_split_args(values.get("patches"), "PATCHES", path),
        prepare=hooks.get("prepare"),
        build=hooks.get("build"),
        install=hooks.get("install"),
        recipe_dir=recipe_dir,
        recipe_file=path,
    )


# ----------------------------
# PKGFILE
# ----------------------------
def _load_pkgfile(path: Path, cfg: Config) -> Recipe:
    cmd = cfg.tool_cmd("sh") + ["-c", _PKGFILE_PROBE, "lfspkg-recipe", str(path)]
    try:
        proc = subprocess.run(cmd, cwd=str(path.parent), stdin=subprocess.DEVNULL,
                              stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise InvalidRecipe(f"cannot evaluate {path}: {e}") from e
    if proc.returncode != 0:
        err = proc.stderr.decode("utf-8", "replace").strip()
        raise InvalidRecipe(f"cannot evaluate {path}: {err or 'shell error'}", returncode=proc.returncode)
    parts = proc.stdout.decode("utf-8", "replace").split("\0")
    if len(parts) < len(FIELDS):
        raise InvalidRecipe(f"cannot evaluate {path}: truncated output")
    values = {f.lower(): v for f, v in zip(FIELDS, parts)}
    defined = set(parts[len(FIELDS):])
    pkgfile = shlex.quote(str(path))
    hooks = {stage: f". {pkgfile}\n{stage.upper()}" for stage in HOOK_STAGES if stage.upper() in defined}
    return _finish(values, hooks, path.parent, path)


# ----------------------------
# recipe.yaml
# ----------------------------
def _load_yaml(path: Path) -> Recipe:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise InvalidRecipe(f"cannot parse {path}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidRecipe(f"{path} must contain a mapping")
    data = {str(k).lower(): v for k, v in data.items()}
    values: Dict[str, Any] = dict(data)
    source = data.get("source")
    if isinstance(source, dict):
        source = {str(k).lower(): v for k, v in source.items()}
        values.setdefault("source_url", source.get("url"))
        values.setdefault("source_sha256", source.get("sha256"))
        values.setdefault("md5", source.get("md5"))
    elif isinstance(source, str):
        values.setdefault("source_url", source)
    if not values.get("source_sha256") and data.get("sha256"):
        values["source_sha256"] = data["sha256"]

    raw_hooks = data.get("hooks") or {}
    if not isinstance(raw_hooks, dict):
        raise InvalidRecipe(f"{path}: hooks must be a mapping")
    raw_hooks = {str(k).lower(): v for k, v in raw_hooks.items()}
    hooks: Dict[str, Optional[str]] = {}
    for stage in HOOK_STAGES:
        body = raw_hooks.get(stage, data.get(stage))
        if body is None:
            continue
        if isinstance(body, list):
            body = "\n".join(str(line) for line in body)
        if not isinstance(body, str):
            raise InvalidRecipe(f"{path}: {stage} hook must be shell text")
        if body.strip():
            hooks[stage] = body
    return _finish(values, hooks, path.parent, path)


# ----------------------------
# Public API
# ----------------------------
def load_recipe(recipe_dir: Path, cfg: Optional[Config] = None) -> Recipe:
    """Load the recipe held in recipe_dir (PKGFILE, else recipe.yaml/yml)."""
    cfg = cfg or get_config()
    recipe_dir = Path(recipe_dir)
    path = find_recipe_file(recipe_dir)
    if path is None:
        raise InvalidRecipe(f"no recipe ({', '.join(RECIPE_FILES)}) found in {recipe_dir}")
    recipe = _load_pkgfile(path, cfg) if path.name == "PKGFILE" else _load_yaml(path)
    logger.debug("loaded recipe %s from %s (hooks=%s)", recipe.ident, path,
                 [s for s in HOOK_STAGES if recipe.hook(s)])
    return recipe


def _trees(cfg: Config) -> List[str]:
    return [str(t) for t in (cfg.get("paths.repo_trees") or [])]


def resolve_recipe_dir(ref: str, cfg: Optional[Config] = None) -> Path:
    """Map a recipe reference to its directory under the recipe root."""
    cfg = cfg or get_config()
    root = cfg.path_for("repo_root")
    ref = str(ref).strip().strip("/")
    if not ref:
        raise InvalidRecipe("empty recipe reference")
    candidate = Path(ref)
    if candidate.is_absolute() or ref.startswith("."):
        if find_recipe_file(candidate):
            return candidate
    direct = root / ref
    if find_recipe_file(direct):
        return direct

    parts = ref.split("/")
    for tree in _trees(cfg):
        tdir = root / tree
        if len(parts) == 2 and find_recipe_file(tdir / ref):
            return tdir / ref
        if len(parts) != 1:
            continue
        if not tdir.is_dir():
            continue
        # <name-version>: look under every package directory
        for pkg in sorted(p for p in tdir.iterdir() if p.is_dir()):
            if find_recipe_file(pkg / ref):
                return pkg / ref
        # bare <name>: highest sorted version directory
        pkg = tdir / ref
        if pkg.is_dir():
            versions = sorted(p for p in pkg.iterdir() if p.is_dir() and find_recipe_file(p))
            if versions:
                return versions[-1]
    raise InvalidRecipe(f"recipe not found: {ref} (root {root})")


def discover_recipes(cfg: Optional[Config] = None) -> List[str]:
    """Every <tree>/<name>/<dir> that holds a recipe, sorted, relative to the recipe root."""
    cfg = cfg or get_config()
    root = cfg.path_for("repo_root")
    found: List[str] = []
    for tree in _trees(cfg):
        tdir = root / tree
        if not tdir.is_dir():
            continue
        for pkg in tdir.iterdir():
            if not pkg.is_dir():
                continue
            for ver in pkg.iterdir():
                if ver.is_dir() and find_recipe_file(ver):
                    found.append(f"{tree}/{pkg.name}/{ver.name}")
    return sorted(found)
