"""Shared test fixtures."""

from __future__ import annotations

import os
import shutil
import tarfile
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from lfspkg import logging as lfslog
from lfspkg.config import Config, load, set_config
from lfspkg.runner import reset_console

needs_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="sh not available")

FAKE_MAKE = """#!/bin/sh
# records its arguments; "install" copies the built program under DESTDIR
echo "make $*" >> make.log
dest=""
inst=""
for a in "$@"; do
  case "$a" in
    DESTDIR=*) dest="${a#DESTDIR=}" ;;
    install) inst=1 ;;
  esac
done
if [ -n "$inst" ]; then
  mkdir -p "$dest/usr/bin" && cp hello "$dest/usr/bin/hello"
else
  printf '#!/bin/sh\\necho hello\\n' > hello && chmod 755 hello
fi
"""


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    path.chmod(0o755)
    return path


def paths_for(root: Path) -> Dict[str, str]:
    return {
        "repo_root": str(root / "repo"),
        "src_cache": str(root / "cache" / "sources"),
        "build_root": str(root / "build"),
        "pkg_root": str(root / "pkg"),
        "artifacts_dir": str(root / "artifacts"),
        "log_dir": str(root / "log"),
        "db_dir": str(root / "db"),
        "install_root": str(root / "sysroot"),
    }


@pytest.fixture
def make_cfg(tmp_path: Path) -> Callable[..., Config]:
    """Build a Config rooted in tmp_path; keyword sections are merged over the test defaults."""
    def _make(**sections: Dict[str, object]) -> Config:
        overrides: Dict[str, Dict[str, object]] = {
            "paths": paths_for(tmp_path),
            "tools": {"fakeroot": str(tmp_path / "no-such-fakeroot")},
            "git": {"sync_recipes": False, "sync_artifacts": False},
            "ui": {"progress": False},
            "logging": {"color": False},
        }
        for name, values in sections.items():
            overrides.setdefault(name, {}).update(values)
        return load(overrides=overrides, environ={})
    return _make


@pytest.fixture
def cfg(make_cfg: Callable[..., Config]) -> Config:
    return make_cfg()


@pytest.fixture(autouse=True)
def _reset_globals():
    yield
    set_config(None)
    lfslog.reset()
    reset_console()


@pytest.fixture
def fake_make(tmp_path: Path) -> Path:
    return write_script(tmp_path / "bin" / "fake-make", FAKE_MAKE)


@pytest.fixture
def write_recipe(cfg: Config) -> Callable[..., Path]:
    """Write a recipe file under <repo_root>/<tree>/<name>/<dirname>; returns the recipe dir."""
    def _write(tree: str, name: str, dirname: str, body: str, filename: str = "PKGFILE",
               patches: Optional[Dict[str, str]] = None) -> Path:
        rdir = cfg.path_for("repo_root") / tree / name / dirname
        rdir.mkdir(parents=True, exist_ok=True)
        (rdir / filename).write_text(body, encoding="utf-8")
        for pname, text in (patches or {}).items():
            (rdir / "patches").mkdir(exist_ok=True)
            (rdir / "patches" / pname).write_text(text, encoding="utf-8")
        return rdir
    return _write


@pytest.fixture
def make_tarball(tmp_path: Path) -> Callable[..., Path]:
    """Create a source tarball from {relative path: (content, mode)} under a top-level directory."""
    def _make(dest: Path, topdir: str, files: Dict[str, tuple], mode: str = "w:gz") -> Path:
        src = tmp_path / "tarball-src" / topdir
        for rel, (content, fmode) in files.items():
            p = src / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")
            os.chmod(p, fmode)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(dest, mode) as tf:
            tf.add(str(src), arcname=topdir)
        return dest
    return _make
