# lfspkg/fetcher.py
"""
fetcher.py - source acquisition for lfspkg

Features:
- fetch_source: idempotent download into the source cache
  - curl first, wget second (binary names configurable under tools.*)
  - local paths and file:// URLs are copied
  - download goes to <dest>.part and is published by atomic rename,
    under a per-source flock so concurrent invocations do not race
- verify_checksum: SHA-256 preferred, MD5 fallback, warning when neither is given
"""

from __future__ import annotations

import os
import shutil
import hashlib
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse, unquote

from lfspkg.config import Config, get_config
from lfspkg.errors import ChecksumMismatch, FetchError
from lfspkg.locks import file_lock
from lfspkg.logging import get_logger
from lfspkg.runner import run_logged, which

logger = get_logger("fetcher")

CHUNK = 65536


# ----------------------------
# Utility helpers
# ----------------------------
def _digest_of_file(path: Path, algo: str) -> str:
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def _local_source(url: str) -> Optional[Path]:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if not parsed.scheme and url.startswith("/"):
        return Path(url)
    return None


def _download_cmd(url: str, part: Path, cfg: Config) -> Optional[List[str]]:
    curl = cfg.tool_cmd("curl")
    if which(curl):
        return curl + ["-L", "-f", "-o", str(part), url]
    wget = cfg.tool_cmd("wget")
    if which(wget):
        return wget + ["-O", str(part), url]
    return None


# ----------------------------
# Public API
# ----------------------------
def fetch_source(url: str, dest: Path, cfg: Optional[Config] = None, logfile: Optional[Path] = None) -> Path:
    """
    Make sure dest holds the source behind url and return it.
    An existing dest is returned untouched, without network access.
    """
    cfg = cfg or get_config()
    dest = Path(dest)
    if dest.exists():
        logger.info("source already present: %s", dest)
        return dest
    dest.parent.mkdir(parents=True, exist_ok=True)
    with file_lock(dest.with_name(dest.name + ".lock")):
        # another invocation may have published it while we waited
        if dest.exists():
            logger.info("source already present: %s", dest)
            return dest
        part = dest.with_name(dest.name + ".part")
        if part.exists():
            part.unlink()

        local = _local_source(url)
        if local is not None:
            if not local.is_file():
                raise FetchError(f"local source not found: {local}")
            logger.info("copying %s -> %s", local, dest)
            try:
                shutil.copyfile(local, part)
            except OSError as e:
                raise FetchError(f"cannot copy {local}: {e}") from e
        else:
            cmd = _download_cmd(url, part, cfg)
            if cmd is None:
                raise FetchError(f"neither curl ({cfg.get('tools.curl')}) nor wget ({cfg.get('tools.wget')}) "
                                 f"is available to download {url}")
            rc = run_logged("Downloading source", cmd, logfile=logfile, cfg=cfg)
            if rc != 0 or not part.is_file():
                if part.exists():
                    part.unlink()
                raise FetchError(f"download failed: {url}", returncode=rc if rc != 0 else None)
        os.replace(part, dest)
    logger.info("fetched %s", dest)
    return dest


def verify_checksum(path: Path, sha256: Optional[str] = None, md5: Optional[str] = None) -> bool:
    """
    True when the file matches the given digest, False when there was nothing
    to check against. A mismatch raises ChecksumMismatch.
    """
    path = Path(path)
    sha256 = (sha256 or "").strip().lower()
    md5 = (md5 or "").strip().lower()
    if sha256:
        algo, expected = "sha256", sha256
    elif md5:
        algo, expected = "md5", md5
    else:
        logger.warning("no checksum to verify %s (unverified source)", path)
        return False
    try:
        actual = _digest_of_file(path, algo)
    except OSError as e:
        raise ChecksumMismatch(f"cannot read {path}: {e}") from e
    if actual != expected:
        raise ChecksumMismatch(f"{algo.upper()} mismatch for {path.name}: expected {expected}, got {actual}")
    logger.info("%s ok: %s", algo.upper(), path.name)
    return True
