# lfspkg/config.py
# -*- coding: utf-8 -*-
"""
lfspkg central configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit path, env override, user, system)
- Merge with authoritative DEFAULTS, then environment variables, then explicit overrides
- Environment variables keep the historical names (REPO_ROOT, SRC_CACHE, PKG_COMPRESSOR, ...)
- Normalize/coerce types (paths expanded, booleans from "1"/"0", space separated lists)
- Validate structure and types, warn or error (fatal optional)
- Provide typed access via Config dataclass (get_config(), get(), tool_cmd())
- Thread-safe load
"""

from __future__ import annotations

import os
import json
import shlex
import logging
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from lfspkg.errors import ConfigError

logger = logging.getLogger("lfspkg.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "paths": {
        "repo_root": "/repo",
        "repo_trees": ["base", "x11", "extras", "desktop"],
        "src_cache": "/var/cache/lfspkg/sources",
        "build_root": "/var/tmp/lfspkg/build",
        "pkg_root": "/var/tmp/lfspkg/pkg",
        "artifacts_dir": "/var/cache/lfspkg/packages",
        "log_dir": "/var/log/lfspkg",
        "db_dir": "/var/lib/lfspkg",
        "install_root": "/",
    },
    "package": {
        "compressor": "xz",  # xz | gzip | zst
        "owner_root": True,
    },
    "tools": {
        "curl": "curl",
        "wget": "wget",
        "patch": "patch",
        "make": "make",
        "fakeroot": "fakeroot",
        "git": "git",
        "sh": "sh",
    },
    "git": {
        "auto_commit": True,
        "commit_msg_prefix": "lfspkg:",
        "sync_recipes": True,
        "sync_artifacts": True,
    },
    "workspace": {
        "source_root_policy": "first",  # first | single | strict
        "clean_before_build": False,
    },
    "logging": {
        "level": "INFO",
        "color": True,
        "file": None,
        "max_size": "10M",
        "backups": 5,
        "format": None,
        "datefmt": "%H:%M:%S",
    },
    "ui": {
        "progress": True,
    },
}

# environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "REPO_ROOT": "paths.repo_root",
    "REPO_TREES": "paths.repo_trees",
    "SRC_CACHE": "paths.src_cache",
    "BUILD_ROOT": "paths.build_root",
    "PKGROOT": "paths.pkg_root",
    "ARTIFACTS_DIR": "paths.artifacts_dir",
    "LOG_DIR": "paths.log_dir",
    "DB_DIR": "paths.db_dir",
    "PKG_COMPRESSOR": "package.compressor",
    "CURL": "tools.curl",
    "WGET": "tools.wget",
    "PATCH": "tools.patch",
    "MAKE": "tools.make",
    "FAKEROOT_BIN": "tools.fakeroot",
    "GIT": "tools.git",
    "GIT_AUTO_COMMIT": "git.auto_commit",
    "GIT_COMMIT_MSG_PREFIX": "git.commit_msg_prefix",
}

COMPRESSORS = ("xz", "gzip", "gz", "zst", "zstd")
SOURCE_ROOT_POLICIES = ("first", "single", "strict")

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def path_for(self, key: str) -> Path:
        """Path-valued entry of the ``paths`` section."""
        val = self.get(f"paths.{key}")
        if not val:
            raise ConfigError(f"paths.{key} is not configured")
        return Path(val)

    def tool_cmd(self, name: str) -> List[str]:
        """Command prefix for an external tool; values may carry arguments ("make -s")."""
        val = self.get(f"tools.{name}") or name
        return shlex.split(str(val))


# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))

def _deep_merge(a: Dict[str, Any], b: Mapping[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, Mapping):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _set_dotted(target: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    ref = target
    for p in parts[:-1]:
        ref = ref.setdefault(p, {})
    ref[parts[-1]] = value

def _to_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("1", "yes", "true", "on")

def _find_candidates(explicit: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> List[Path]:
    environ = os.environ if environ is None else environ
    candidates: List[Path] = []
    if explicit:
        candidates.append(Path(explicit))
    env = environ.get("LFSPKG_CONFIG")
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.home() / ".config" / "lfspkg" / "config.yaml",
        Path("/etc") / "lfspkg" / "config.yaml",
    ])
    return candidates

def _find_path(explicit: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError(f"config file not found: {explicit}")
    for p in _find_candidates(explicit, environ):
        if p.is_file():
            return p
    return None

def _load_file(path: Path) -> Dict[str, Any]:
    try:
        txt = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if path.suffix.lower() == ".json":
        try:
            data = json.loads(txt)
        except json.JSONDecodeError as e:
            raise ConfigError(f"cannot parse config {path}: {e}") from e
    else:
        try:
            data = yaml.safe_load(txt)
        except yaml.YAMLError as e:
            raise ConfigError(f"cannot parse config {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must contain a mapping, got {type(data).__name__}")
    return data

def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for var, key in ENV_OVERRIDES.items():
        val = environ.get(var)
        if val is None or val == "":
            continue
        if key == "paths.repo_trees":
            _set_dotted(out, key, val.split())
        else:
            _set_dotted(out, key, val)
    if environ.get("NO_COLOR"):
        _set_dotted(out, "logging.color", False)
    return out

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    paths = out.get("paths") or {}
    for key, val in list(paths.items()):
        if key == "repo_trees":
            if isinstance(val, str):
                paths[key] = val.split()
            continue
        if isinstance(val, (str, Path)) and val:
            paths[key] = _expand_path(str(val))
    if out.get("logging", {}).get("file"):
        out["logging"]["file"] = _expand_path(out["logging"]["file"])

    for section, key in (("git", "auto_commit"), ("git", "sync_recipes"), ("git", "sync_artifacts"),
                         ("package", "owner_root"), ("workspace", "clean_before_build"),
                         ("logging", "color"), ("ui", "progress")):
        sec = out.get(section)
        if isinstance(sec, dict) and key in sec:
            sec[key] = _to_bool(sec[key])

    pkg = out.get("package")
    if isinstance(pkg, dict) and pkg.get("compressor") is not None:
        pkg["compressor"] = str(pkg["compressor"]).strip().lower()
    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    warnings: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            warnings.append(f"Unknown top-level config key: {k}")
    for section in DEFAULTS:
        if section in cfg and not isinstance(cfg[section], dict):
            warnings.append(f"{section} must be a mapping")
    trees = cfg.get("paths", {}).get("repo_trees")
    if not isinstance(trees, list) or not all(isinstance(t, str) for t in trees):
        warnings.append("paths.repo_trees must be a list of names")
    comp = cfg.get("package", {}).get("compressor")
    if comp not in COMPRESSORS:
        warnings.append(f"package.compressor '{comp}' is not one of {', '.join(COMPRESSORS)}")
    policy = cfg.get("workspace", {}).get("source_root_policy")
    if policy not in SOURCE_ROOT_POLICIES:
        warnings.append(f"workspace.source_root_policy must be one of {', '.join(SOURCE_ROOT_POLICIES)}")
    for name, val in (cfg.get("tools") or {}).items():
        if not isinstance(val, str) or not val.strip():
            warnings.append(f"tools.{name} must be a non-empty string")
    return (len(warnings) == 0, warnings)

# ----------------------------
# Loading
# ----------------------------
def load(
    explicit_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    fatal: bool = False,
) -> Config:
    """
    Load and merge config: DEFAULTS <- file <- environment <- overrides.
    If fatal=True then structural validation failures raise ConfigError.
    The loaded config becomes the process-wide one returned by get_config().
    """
    global _CONFIG
    environ = os.environ if environ is None else environ
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path, environ)
        raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
        merged = _deep_merge(DEFAULTS, raw)
        merged = _deep_merge(merged, _env_overrides(environ))
        if overrides:
            merged = _deep_merge(merged, overrides)
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                raise ConfigError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def set_config(cfg: Optional[Config]) -> None:
    """Replace the process-wide config (None forces a lazy reload)."""
    global _CONFIG
    with _CONFIG_LOCK:
        _CONFIG = cfg


def validate_config(cfg: Optional[Config] = None) -> Tuple[bool, List[str]]:
    cfg = cfg or get_config()
    ok, issues = _validate_structure(cfg.merged)
    # extra checks: configured roots creatable
    for key in ("src_cache", "build_root", "pkg_root", "artifacts_dir", "log_dir", "db_dir"):
        val = cfg.get(f"paths.{key}")
        if not val:
            issues.append(f"paths.{key} is empty")
            continue
        parent = Path(val)
        while not parent.exists() and parent != parent.parent:
            parent = parent.parent
        if not os.access(parent, os.W_OK):
            issues.append(f"paths.{key} {val} not writable")
    return (len(issues) == 0, issues)
