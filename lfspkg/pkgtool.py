# lfspkg/pkgtool.py
"""
pkgtool.py - package artifacts

Features:
- make_package: staging root -> <artifacts_dir>/<name>-<version>.tar.<ext>
  - every file, directory and symlink, relative paths, sorted
  - uncompressed tar first, then streamed through xz (lzma), gzip or zstandard
  - unknown compressor values fall back to gzip with a warning
  - optional root:root ownership in the archive (package.owner_root)
  - published atomically into the artifact directory
- install_package: extract an artifact onto the install root (install-pkg)
"""

from __future__ import annotations

import os
import gzip
import lzma
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple

import zstandard

from lfspkg.config import Config, get_config
from lfspkg.errors import PackagingError
from lfspkg.logging import get_logger

logger = get_logger("pkgtool")

CHUNK = 1024 * 1024


# -----------------------------
# Compression helpers
# -----------------------------
def _copy_xz(src: BinaryIO, out_path: Path) -> None:
    with lzma.open(out_path, "wb", preset=6) as out:
        shutil.copyfileobj(src, out, CHUNK)


def _copy_gz(src: BinaryIO, out_path: Path) -> None:
    # mtime=0 keeps the gzip header independent of build time
    with open(out_path, "wb") as raw, gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as out:
        shutil.copyfileobj(src, out, CHUNK)


def _copy_zst(src: BinaryIO, out_path: Path) -> None:
    cctx = zstandard.ZstdCompressor(level=19)
    with open(out_path, "wb") as out:
        cctx.copy_stream(src, out)


COMPRESSORS: Dict[str, Tuple[str, Callable[[BinaryIO, Path], None]]] = {
    "xz": ("xz", _copy_xz),
    "gzip": ("gz", _copy_gz),
    "gz": ("gz", _copy_gz),
    "zst": ("zst", _copy_zst),
    "zstd": ("zst", _copy_zst),
}


def resolve_compressor(name: Optional[str]) -> Tuple[str, Callable[[BinaryIO, Path], None]]:
    key = (name or "").strip().lower()
    if key not in COMPRESSORS:
        logger.warning("unknown compressor %r, using gzip", name)
        key = "gzip"
    return COMPRESSORS[key]


def staging_entries(staging_root: Path) -> List[str]:
    """Relative paths of every entry under staging_root, sorted; symlinked dirs are not descended."""
    root = Path(staging_root)
    out: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        rel_dir = os.path.relpath(dirpath, root)
        for n in dirnames + filenames:
            out.append(n if rel_dir == "." else os.path.join(rel_dir, n))
    return sorted(out)


def _write_tar(staging_root: Path, tar_path: Path, owner_root: bool) -> int:
    def _owner(ti: tarfile.TarInfo) -> tarfile.TarInfo:
        if owner_root:
            ti.uid = ti.gid = 0
            ti.uname = ti.gname = "root"
        return ti

    entries = staging_entries(staging_root)
    with tarfile.open(tar_path, "w:", format=tarfile.PAX_FORMAT) as tf:
        for rel in entries:
            tf.add(str(staging_root / rel), arcname=rel, recursive=False, filter=_owner)
    return len(entries)


# -----------------------------
# Public API
# -----------------------------
def make_package(staging_root: Path, name: str, version: str, cfg: Optional[Config] = None) -> Path:
    """Archive and compress staging_root; returns the published artifact path."""
    cfg = cfg or get_config()
    staging_root = Path(staging_root)
    if not staging_root.is_dir():
        raise PackagingError(f"staging root not found: {staging_root}")
    ext, compress = resolve_compressor(cfg.get("package.compressor", "xz"))
    out_dir = cfg.path_for("artifacts_dir")
    out = out_dir / f"{name}-{version}.tar.{ext}"
    tmp_tar = staging_root.parent / f"{name}-{version}.tar"
    tmp_out = out_dir / f".{out.name}.tmp"
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        count = _write_tar(staging_root, tmp_tar, bool(cfg.get("package.owner_root", True)))
        with open(tmp_tar, "rb") as src:
            compress(src, tmp_out)
        os.replace(tmp_out, out)
    except (OSError, tarfile.TarError, lzma.LZMAError, zstandard.ZstdError) as e:
        raise PackagingError(f"cannot create package {out.name}: {e}") from e
    finally:
        for p in (tmp_tar, tmp_out):
            if p.exists():
                p.unlink()
    logger.info("package created: %s (%d entries)", out, count)
    return out


def _extract_all(tf: tarfile.TarFile, dest: Path) -> None:
    if hasattr(tarfile, "fully_trusted_filter"):
        tf.extractall(dest, filter="fully_trusted")
    else:
        tf.extractall(dest)


def install_package(archive: Path, root: Optional[Path] = None, cfg: Optional[Config] = None) -> Path:
    """Extract a package artifact onto root (default: paths.install_root)."""
    cfg = cfg or get_config()
    archive = Path(archive)
    root = Path(root or cfg.get("paths.install_root") or "/")
    if not archive.is_file():
        raise PackagingError(f"package not found: {archive}")
    name = archive.name.lower()
    logger.info("installing %s onto %s", archive, root)
    try:
        root.mkdir(parents=True, exist_ok=True)
        if name.endswith((".tar.zst", ".tzst")):
            dctx = zstandard.ZstdDecompressor()
            with open(archive, "rb") as fh, dctx.stream_reader(fh) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tf:
                    _extract_all(tf, root)
        elif name.endswith((".tar.xz", ".txz")):
            with tarfile.open(archive, "r:xz") as tf:
                _extract_all(tf, root)
        elif name.endswith((".tar.gz", ".tgz")):
            with tarfile.open(archive, "r:gz") as tf:
                _extract_all(tf, root)
        elif name.endswith(".tar"):
            with tarfile.open(archive, "r:") as tf:
                _extract_all(tf, root)
        else:
            raise PackagingError(f"unsupported package format: {archive.name}")
    except (OSError, tarfile.TarError, lzma.LZMAError, zstandard.ZstdError, EOFError) as e:
        raise PackagingError(f"cannot install {archive.name}: {e}") from e
    logger.info("installed: %s", archive.name)
    return root
