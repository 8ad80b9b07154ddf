# lfspkg/runner.py
"""
runner.py - external process execution for lfspkg

One external process at a time: its stdout/stderr are appended to the
per-package log, and while it runs the caller polls it for liveness so a
rich spinner can be shown on an interactive terminal. There is no timeout;
the call returns only when the process exits.
"""

from __future__ import annotations

import os
import time
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rich.console import Console

from lfspkg.config import Config, get_config
from lfspkg.logging import get_logger, stamp

logger = get_logger("runner")

POLL_INTERVAL = 0.1

_console: Optional[Console] = None


def get_console(cfg: Optional[Config] = None) -> Console:
    """Console bound to stderr; stdout is reserved for command results."""
    global _console
    if _console is None:
        cfg = cfg or get_config()
        _console = Console(stderr=True, no_color=not cfg.get("logging.color", True))
    return _console


def reset_console() -> None:
    """Drop the cached console so the next get_console() follows the current config."""
    global _console
    _console = None


def which(cmd: Sequence[str]) -> Optional[str]:
    """Resolve the executable of a command prefix, None when it is not installed."""
    if not cmd:
        return None
    return shutil.which(cmd[0])


def progress_enabled(cfg: Optional[Config] = None) -> bool:
    cfg = cfg or get_config()
    return bool(cfg.get("ui.progress", True)) and get_console(cfg).is_terminal


def run_logged(
    label: str,
    cmd: Sequence[str],
    logfile: Optional[Path] = None,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    cfg: Optional[Config] = None,
) -> int:
    """
    Run cmd, append its combined output to logfile, return the exit code.
    A missing executable is reported as exit code 127, like a shell would.
    """
    cmd = [str(c) for c in cmd]
    show = " ".join(shlex.quote(c) for c in cmd)
    logger.debug("RUN: %s (cwd=%s)", show, str(cwd) if cwd else None)
    if logfile is not None:
        Path(logfile).parent.mkdir(parents=True, exist_ok=True)
        out = open(logfile, "a", encoding="utf-8")
    else:
        out = open(os.devnull, "w", encoding="utf-8")
    with out:
        out.write(f"==> [{stamp()}] {label}: {show}\n")
        out.flush()
        try:
            proc = subprocess.Popen(cmd, cwd=str(cwd) if cwd else None, env=env,
                                    stdin=subprocess.DEVNULL, stdout=out, stderr=subprocess.STDOUT)
        except FileNotFoundError as e:
            out.write(f"==> {label}: {e}\n")
            logger.error("%s: command not found: %s", label, cmd[0])
            return 127
        except PermissionError as e:
            out.write(f"==> {label}: {e}\n")
            logger.error("%s: permission denied: %s", label, cmd[0])
            return 126
        if progress_enabled(cfg):
            with get_console().status(label, spinner="dots"):
                while proc.poll() is None:
                    time.sleep(POLL_INTERVAL)
        rc = proc.wait()
        out.write(f"==> [{stamp()}] {label}: rc={rc}\n")
    if rc == 0:
        logger.info("%s: ok", label)
    else:
        logger.error("%s: failed (rc=%s)%s", label, rc, f", see {logfile}" if logfile else "")
    return rc


def base_env(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ)
    if extra:
        env.update({k: str(v) for k, v in extra.items() if v is not None})
    return env


def shell_cmd(script: str, cfg: Optional[Config] = None) -> List[str]:
    cfg = cfg or get_config()
    return cfg.tool_cmd("sh") + ["-c", script]
