# lfspkg/repo_sync.py
"""
repo_sync.py - best-effort git add/commit of the recipe and artifact trees

git_sync never raises: a tree that is not a git work tree is skipped with a
warning, a failing git command is logged and reported as False.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from lfspkg.config import Config, get_config
from lfspkg.logging import get_logger

logger = get_logger("repo_sync")


def _run(cmd: List[str], cwd: Optional[Path] = None) -> Tuple[int, str, str]:
    try:
        proc = subprocess.run(cmd, cwd=(str(cwd) if cwd else None), stdin=subprocess.DEVNULL,
                              stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except OSError as e:
        return 127, "", str(e)
    return proc.returncode, proc.stdout or "", proc.stderr or ""


def git_sync(root: Path, message: str, cfg: Optional[Config] = None) -> bool:
    """
    Stage every change under root and commit it (git.auto_commit) with the
    configured message prefix. Returns True when the tree is in the expected
    state afterwards (committed, staged, clean or skipped).
    """
    cfg = cfg or get_config()
    root = Path(root)
    if not (root / ".git").exists():
        logger.warning("%s is not a git repository; skipping commit", root)
        return True
    git = cfg.tool_cmd("git")

    rc, _, err = _run(git + ["add", "-A"], cwd=root)
    if rc != 0:
        logger.warning("git add failed in %s (rc=%s): %s", root, rc, err.strip())
        return False
    rc, out, err = _run(git + ["status", "--porcelain"], cwd=root)
    if rc != 0:
        logger.warning("git status failed in %s (rc=%s): %s", root, rc, err.strip())
        return False
    if not out.strip():
        logger.debug("nothing to commit in %s", root)
        return True

    if not cfg.get("git.auto_commit", True):
        logger.info("changes staged in %s (auto commit disabled)", root)
        return True
    prefix = str(cfg.get("git.commit_msg_prefix") or "").strip()
    msg = f"{prefix} {message}".strip()
    rc, _, err = _run(git + ["commit", "-q", "-m", msg], cwd=root)
    if rc != 0:
        logger.warning("git commit failed in %s (rc=%s): %s", root, rc, err.strip())
        return False
    logger.info("git commit in %s: %s", root, msg)
    return True
