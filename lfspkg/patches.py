# lfspkg/patches.py
"""
patches.py - ordered patch application

Patches are applied in exactly the declared order with `patch -p1` from the
source root. The first missing or failing patch aborts; patches applied
before it stay applied.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

from lfspkg.config import Config, get_config
from lfspkg.errors import PatchError
from lfspkg.logging import get_logger
from lfspkg.runner import run_logged

logger = get_logger("patches")


def apply_patches(
    source_root: Path,
    patch_dir: Path,
    names: Sequence[str],
    cfg: Optional[Config] = None,
    logfile: Optional[Path] = None,
) -> List[str]:
    """Apply names (relative to patch_dir) to source_root; returns the applied names."""
    cfg = cfg or get_config()
    applied: List[str] = []
    for name in names:
        path = Path(patch_dir) / name
        if not path.is_file():
            raise PatchError(f"patch not found: {path} (applied so far: {applied or 'none'})")
        # -N -t: never prompt or reverse an applied patch; -r -: no .rej files in the tree
        cmd = cfg.tool_cmd("patch") + ["-p1", "-N", "-t", "-r", "-", "-i", str(path.resolve())]
        rc = run_logged(f"Applying patch {name}", cmd, logfile=logfile, cwd=source_root, cfg=cfg)
        if rc != 0:
            raise PatchError(f"patch {name} failed", returncode=rc)
        applied.append(name)
        logger.info("patch applied: %s", name)
    return applied
