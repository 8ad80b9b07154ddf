# lfspkg/fakeroot.py
"""
fakeroot.py - privilege emulation for unprivileged installs

When lfspkg is not running as root, the install stage is wrapped in
fakeroot so ownership and permission changes made under DESTDIR behave as if
they were done by root. Without fakeroot the install still runs, unwrapped,
after a warning.
"""

from __future__ import annotations

import os
from typing import List, Optional

from lfspkg.config import Config, get_config
from lfspkg.logging import get_logger
from lfspkg.runner import which

logger = get_logger("fakeroot")


def is_privileged() -> bool:
    return os.geteuid() == 0


def fakeroot_available(cfg: Optional[Config] = None) -> bool:
    cfg = cfg or get_config()
    return which(cfg.tool_cmd("fakeroot")) is not None


def privilege_prefix(cfg: Optional[Config] = None) -> List[str]:
    """
    Command prefix for the install dispatch:
      []          running as root
      [fakeroot]  unprivileged, fakeroot available
      []          unprivileged, no fakeroot (warning logged)
    """
    cfg = cfg or get_config()
    if is_privileged():
        return []
    cmd = cfg.tool_cmd("fakeroot")
    if fakeroot_available(cfg):
        return cmd
    logger.warning("fakeroot (%s) not found; installing without privilege emulation, "
                   "ownership and permissions in the package may be wrong", " ".join(cmd) or "fakeroot")
    return []
