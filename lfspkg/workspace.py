# lfspkg/workspace.py
"""
workspace.py - per-build directories, source extraction and source-root detection

Layout for a recipe (name, version):
  <build_root>/<name>-<version>/          work dir
  <build_root>/<name>-<version>/src/      extraction root
  <pkg_root>/<name>-<version>/dest/       staging root (DESTDIR)

Extraction runs in-process with tarfile/zipfile; .tar.zst goes through zstandard.
The extraction root is emptied before every extraction; the staging root is
only cleaned on request (workspace.clean_before_build).
"""

from __future__ import annotations

import os
import shutil
import tarfile
import zipfile
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

import zstandard

from lfspkg.config import SOURCE_ROOT_POLICIES, Config, get_config
from lfspkg.errors import ExtractionError
from lfspkg.logging import get_logger
from lfspkg.recipe import Recipe

logger = get_logger("workspace")

TAR_SUFFIXES = {
    ".tar.xz": "r:xz",
    ".txz": "r:xz",
    ".tar.gz": "r:gz",
    ".tgz": "r:gz",
    ".tar.bz2": "r:bz2",
    ".tbz2": "r:bz2",
}


@dataclass
class Workspace:
    work_dir: Path
    extract_root: Path
    staging_root: Path
    source_root: Optional[Path] = None

    def ensure(self) -> "Workspace":
        for d in (self.work_dir, self.extract_root, self.staging_root):
            d.mkdir(parents=True, exist_ok=True)
        return self


def workspace_for(recipe: Recipe, cfg: Optional[Config] = None) -> Workspace:
    cfg = cfg or get_config()
    work_dir = cfg.path_for("build_root") / recipe.ident
    return Workspace(
        work_dir=work_dir,
        extract_root=work_dir / "src",
        staging_root=cfg.path_for("pkg_root") / recipe.ident / "dest",
    )


def prepare_workspace(recipe: Recipe, cfg: Optional[Config] = None) -> Workspace:
    """Create (idempotently) the work, extraction and staging directories of a build."""
    cfg = cfg or get_config()
    ws = workspace_for(recipe, cfg)
    root = Path(cfg.get("paths.install_root") or "/").resolve()
    if ws.staging_root.resolve() == root or ws.staging_root.resolve() == Path("/"):
        raise ExtractionError(f"staging root {ws.staging_root} resolves to the live root")
    if cfg.get("workspace.clean_before_build", False):
        for d in (ws.extract_root, ws.staging_root):
            if d.exists():
                logger.info("cleaning %s", d)
                shutil.rmtree(d)
    return ws.ensure()


def reset_extract_root(ws: Workspace) -> Path:
    """Empty the extraction root so patches always see pristine sources."""
    try:
        if ws.extract_root.exists():
            shutil.rmtree(ws.extract_root)
        ws.extract_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExtractionError(f"cannot reset {ws.extract_root}: {e}") from e
    return ws.extract_root


# ----------------------------
# Extraction
# ----------------------------
def _tar_extract(tf: tarfile.TarFile, dest: Path) -> None:
    if hasattr(tarfile, "tar_filter"):
        tf.extractall(dest, filter="tar")
    else:
        tf.extractall(dest)


def _extract_zip(archive: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive, "r") as zf:
        for info in zf.infolist():
            target = zf.extract(info, dest)
            mode = (info.external_attr >> 16) & 0o7777
            if mode and not info.is_dir():
                os.chmod(target, mode)


def _extract_zst(archive: Path, dest: Path) -> None:
    dctx = zstandard.ZstdDecompressor()
    with open(archive, "rb") as fh, dctx.stream_reader(fh) as reader:
        with tarfile.open(fileobj=reader, mode="r|") as tf:
            _tar_extract(tf, dest)


def extract_source(archive: Path, dest: Path) -> None:
    """Unpack archive into dest, dispatching on the file suffix."""
    archive = Path(archive)
    dest = Path(dest)
    if not archive.is_file():
        raise ExtractionError(f"archive not found: {archive}")
    dest.mkdir(parents=True, exist_ok=True)
    name = archive.name.lower()
    logger.info("extracting %s -> %s", archive.name, dest)
    try:
        if name.endswith(".zip"):
            _extract_zip(archive, dest)
        elif name.endswith((".tar.zst", ".tzst")):
            _extract_zst(archive, dest)
        else:
            mode = next((m for sfx, m in TAR_SUFFIXES.items() if name.endswith(sfx)), "r:*")
            with tarfile.open(archive, mode) as tf:
                _tar_extract(tf, dest)
    except (tarfile.TarError, zipfile.BadZipFile, zstandard.ZstdError, EOFError, OSError, ValueError) as e:
        raise ExtractionError(f"cannot extract {archive.name}: {e}") from e


def _top_level(extract_root: Path) -> List[Path]:
    return sorted(extract_root.iterdir(), key=lambda p: p.name)


def detect_source_root(extract_root: Path, policy: str = "first") -> Path:
    """
    Effective source root below extract_root.

    first   first top-level directory in sorted order, else extract_root
    single  the top-level directory when it is the only entry, else extract_root
    strict  exactly one top-level directory, else ExtractionError
    """
    if policy not in SOURCE_ROOT_POLICIES:
        raise ExtractionError(f"unknown source root policy: {policy}")
    extract_root = Path(extract_root)
    entries = _top_level(extract_root) if extract_root.is_dir() else []
    dirs = [e for e in entries if e.is_dir()]
    if policy == "first":
        return dirs[0] if dirs else extract_root
    if len(entries) == 1 and dirs:
        return dirs[0]
    if policy == "strict":
        raise ExtractionError(
            f"expected a single top-level directory in {extract_root}, found {[e.name for e in entries]}")
    return extract_root
