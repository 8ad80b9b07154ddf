# lfspkg/logging.py
# -*- coding: utf-8 -*-
"""
lfspkg logging

Features:
 - Console color formatter (disabled with NO_COLOR / logging.color=false)
 - Optional rotating file handler (logging.file)
 - Per-invocation session log under the log directory
 - Per-package build log paths, written by the process runner
 - Module-tagged records via LoggerAdapter ('lfspkg_module')
 - Thread-safe reconfiguration
"""

from __future__ import annotations

import sys
import time
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from lfspkg.config import Config, get_config

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(lfspkg_module)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(lfspkg_module)s] %(message)s"
STAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# Records logged outside the adapter still need a module tag
# ----------------------
class ModuleTagFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "lfspkg_module"):
            name = record.name
            record.lfspkg_module = name.split(".", 1)[1] if name.startswith("lfspkg.") else name
        return True

# ----------------------
# LfspkgLogger (singleton)
# ----------------------
class LfspkgLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger("lfspkg")
        self._handlers: List[logging.Handler] = []
        self._session_handler: Optional[logging.Handler] = None
        self._session_path: Optional[Path] = None
        self._tag_filter = ModuleTagFilter()
        self._configured = False
        self._inited = True

    # ----------------------
    # Configuration
    # ----------------------
    def configure(self, cfg: Optional[Config] = None, verbose: bool = False) -> None:
        """(Re)build console and rotating file handlers from the logging section."""
        cfg = cfg or get_config()
        lcfg: Dict[str, Any] = cfg.get("logging", {}) or {}
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            level = logging.DEBUG if verbose else getattr(logging, str(lcfg.get("level", "INFO")).upper(), logging.INFO)
            ch = logging.StreamHandler(sys.stderr)
            ch.setLevel(level)
            ch.addFilter(self._tag_filter)
            ch.setFormatter(ColorFormatter(lcfg.get("format") or DEFAULT_FORMAT,
                                           datefmt=lcfg.get("datefmt", "%H:%M:%S"),
                                           color=bool(lcfg.get("color", True)) and sys.stderr.isatty()))
            self._root.addHandler(ch)
            self._handlers.append(ch)

            if lcfg.get("file"):
                file_path = Path(lcfg["file"])
                file_path.parent.mkdir(parents=True, exist_ok=True)
                max_bytes = _parse_size(lcfg.get("max_size", "10M")) or 10 * 1024 * 1024
                fh = logging.handlers.RotatingFileHandler(str(file_path), maxBytes=max_bytes,
                                                          backupCount=int(lcfg.get("backups", 5)), encoding="utf-8")
                fh.setLevel(logging.DEBUG)
                fh.addFilter(self._tag_filter)
                fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=STAMP_FORMAT))
                self._root.addHandler(fh)
                self._handlers.append(fh)

            self._root.setLevel(logging.DEBUG)
            self._configured = True

    def start_session_log(self, log_dir: Path) -> Path:
        """Attach the per-invocation log file <log_dir>/<YYYYmmdd-HHMMSS>.log."""
        with self._lock:
            self.stop_session_log()
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            path = log_dir / f"{time.strftime('%Y%m%d-%H%M%S')}.log"
            fh = logging.FileHandler(str(path), mode="w", encoding="utf-8")
            fh.setLevel(logging.DEBUG)
            fh.addFilter(self._tag_filter)
            fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=STAMP_FORMAT))
            self._root.addHandler(fh)
            self._session_handler = fh
            self._session_path = path
            return path

    def stop_session_log(self) -> None:
        with self._lock:
            if self._session_handler is not None:
                self._root.removeHandler(self._session_handler)
                self._session_handler.close()
                self._session_handler = None

    def reset(self) -> None:
        """Detach every handler added by configure() and the session log."""
        with self._lock:
            self.stop_session_log()
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()
            self._configured = False

    @property
    def session_path(self) -> Optional[Path]:
        return self._session_path

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'lfspkg_module' into records."""
        return logging.LoggerAdapter(self._root, {"lfspkg_module": module_name})


# ----------------------
# Helper parse size
# ----------------------
def _parse_size(s: Any) -> Optional[int]:
    if s is None:
        return None
    if isinstance(s, int):
        return s
    ss = str(s).strip().upper()
    for suffix, mul in (("KB", 1024), ("K", 1024), ("MB", 1024**2), ("M", 1024**2), ("GB", 1024**3), ("G", 1024**3)):
        if ss.endswith(suffix):
            try:
                return int(float(ss[: -len(suffix)]) * mul)
            except ValueError:
                return None
    try:
        return int(float(ss))
    except ValueError:
        return None

def package_log_path(name: str, version: str, cfg: Optional[Config] = None) -> Path:
    """Per-package build log: <log_dir>/<name>-<version>.log."""
    cfg = cfg or get_config()
    return cfg.path_for("log_dir") / f"{name}-{version}.log"

def stamp() -> str:
    return time.strftime(STAMP_FORMAT)

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = LfspkgLogger()

def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)

def configure(cfg: Optional[Config] = None, verbose: bool = False) -> None:
    _GLOBAL_LOGGER.configure(cfg, verbose=verbose)

def start_session_log(log_dir: Path) -> Path:
    return _GLOBAL_LOGGER.start_session_log(log_dir)

def stop_session_log() -> None:
    _GLOBAL_LOGGER.stop_session_log()

def reset() -> None:
    _GLOBAL_LOGGER.reset()
