import io
import os
import stat
import tarfile
import zipfile
from pathlib import Path

import pytest
import zstandard

from lfspkg.errors import ExtractionError
from lfspkg.recipe import Recipe
from lfspkg.workspace import detect_source_root, extract_source, prepare_workspace, reset_extract_root

FILES = {"configure": ("#!/bin/sh\n", 0o755), "src/main.c": ("int main(void){return 0;}\n", 0o644)}


def test_prepare_workspace_layout(cfg) -> None:
    recipe = Recipe(name="hello", version="2.12")
    ws = prepare_workspace(recipe, cfg)
    assert ws.work_dir == cfg.path_for("build_root") / "hello-2.12"
    assert ws.extract_root == ws.work_dir / "src"
    assert ws.staging_root == cfg.path_for("pkg_root") / "hello-2.12" / "dest"
    for d in (ws.work_dir, ws.extract_root, ws.staging_root):
        assert d.is_dir()
    # idempotent, previous content is kept by default
    (ws.staging_root / "keep").write_text("x")
    again = prepare_workspace(recipe, cfg)
    assert (again.staging_root / "keep").exists()


def test_prepare_workspace_can_clean(make_cfg) -> None:
    cfg = make_cfg(workspace={"clean_before_build": True})
    recipe = Recipe(name="hello", version="2.12")
    ws = prepare_workspace(recipe, cfg)
    (ws.staging_root / "stale").write_text("x")
    (ws.extract_root / "old-1.0").mkdir()
    ws = prepare_workspace(recipe, cfg)
    assert list(ws.staging_root.iterdir()) == []
    assert list(ws.extract_root.iterdir()) == []


def test_staging_root_equal_to_install_root_is_refused(tmp_path: Path, make_cfg) -> None:
    live = tmp_path / "pkg" / "hello-2.12" / "dest"
    cfg = make_cfg(paths={"pkg_root": str(tmp_path / "pkg"), "install_root": str(live)})
    with pytest.raises(ExtractionError, match="live root"):
        prepare_workspace(Recipe(name="hello", version="2.12"), cfg)
    assert not live.exists()


def test_staging_root_resolving_to_slash_is_refused(cfg) -> None:
    pkg_dir = cfg.path_for("pkg_root") / "hello-2.12"
    pkg_dir.mkdir(parents=True)
    (pkg_dir / "dest").symlink_to("/")
    with pytest.raises(ExtractionError):
        prepare_workspace(Recipe(name="hello", version="2.12"), cfg)


def test_reset_extract_root_drops_previous_sources(cfg) -> None:
    ws = prepare_workspace(Recipe(name="hello", version="2.12"), cfg)
    (ws.extract_root / "hello-2.12").mkdir()
    (ws.extract_root / "hello-2.12" / "NEWS.local").write_text("from a patch\n")
    (ws.staging_root / "keep").write_text("x")
    assert reset_extract_root(ws) == ws.extract_root
    assert ws.extract_root.is_dir()
    assert list(ws.extract_root.iterdir()) == []
    assert (ws.staging_root / "keep").exists()


@pytest.mark.parametrize("suffix,mode", [
    (".tar.gz", "w:gz"),
    (".tgz", "w:gz"),
    (".tar.xz", "w:xz"),
    (".txz", "w:xz"),
    (".tar.bz2", "w:bz2"),
    (".tar", "w:"),
])
def test_extract_tar_formats(tmp_path: Path, make_tarball, suffix: str, mode: str) -> None:
    archive = make_tarball(tmp_path / f"hello-2.12{suffix}", "hello-2.12", FILES, mode=mode)
    dest = tmp_path / "out"
    extract_source(archive, dest)
    assert (dest / "hello-2.12" / "src" / "main.c").read_text().startswith("int main")
    assert os.access(dest / "hello-2.12" / "configure", os.X_OK)


def test_extract_zip_keeps_permissions(tmp_path: Path) -> None:
    archive = tmp_path / "tool-1.0.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        info = zipfile.ZipInfo("tool-1.0/configure")
        info.external_attr = (stat.S_IFREG | 0o755) << 16
        zf.writestr(info, "#!/bin/sh\n")
        zf.writestr("tool-1.0/README", "readme\n")
    dest = tmp_path / "out"
    extract_source(archive, dest)
    assert os.access(dest / "tool-1.0" / "configure", os.X_OK)
    assert (dest / "tool-1.0" / "README").read_text() == "readme\n"


def test_extract_tar_zst(tmp_path: Path, make_tarball) -> None:
    plain = make_tarball(tmp_path / "z-1.0.tar", "z-1.0", FILES, mode="w:")
    archive = tmp_path / "z-1.0.tar.zst"
    archive.write_bytes(zstandard.ZstdCompressor().compress(plain.read_bytes()))
    dest = tmp_path / "out"
    extract_source(archive, dest)
    assert (dest / "z-1.0" / "configure").exists()


def test_extract_failure_is_extraction_error(tmp_path: Path) -> None:
    bogus = tmp_path / "broken.tar.xz"
    bogus.write_bytes(b"not an archive")
    with pytest.raises(ExtractionError):
        extract_source(bogus, tmp_path / "out")
    with pytest.raises(ExtractionError):
        extract_source(tmp_path / "missing.tar.gz", tmp_path / "out")


def test_extract_rejects_paths_outside_destination(tmp_path: Path) -> None:
    if not hasattr(tarfile, "tar_filter"):
        pytest.skip("tarfile extraction filters not available")
    archive = tmp_path / "evil.tar"
    with tarfile.open(archive, "w:") as tf:
        data = b"x"
        info = tarfile.TarInfo("../escape")
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))
    with pytest.raises(ExtractionError):
        extract_source(archive, tmp_path / "out")
    assert not (tmp_path / "escape").exists()


def _tree(root: Path, dirs=(), files=()) -> Path:
    root.mkdir()
    for d in dirs:
        (root / d).mkdir()
    for f in files:
        (root / f).write_text("x")
    return root


def test_source_root_first_policy(tmp_path: Path) -> None:
    single = _tree(tmp_path / "a", dirs=["hello-2.12"])
    assert detect_source_root(single) == single / "hello-2.12"
    several = _tree(tmp_path / "b", dirs=["zeta", "alpha"], files=["aaa.txt"])
    assert detect_source_root(several, "first") == several / "alpha"
    empty = _tree(tmp_path / "c")
    assert detect_source_root(empty, "first") == empty
    flat = _tree(tmp_path / "d", files=["configure", "Makefile"])
    assert detect_source_root(flat, "first") == flat


def test_source_root_single_policy(tmp_path: Path) -> None:
    single = _tree(tmp_path / "a", dirs=["hello-2.12"])
    assert detect_source_root(single, "single") == single / "hello-2.12"
    mixed = _tree(tmp_path / "b", dirs=["hello-2.12"], files=["pax_global_header"])
    assert detect_source_root(mixed, "single") == mixed


def test_source_root_strict_policy(tmp_path: Path) -> None:
    single = _tree(tmp_path / "a", dirs=["hello-2.12"])
    assert detect_source_root(single, "strict") == single / "hello-2.12"
    several = _tree(tmp_path / "b", dirs=["one", "two"])
    with pytest.raises(ExtractionError):
        detect_source_root(several, "strict")
    with pytest.raises(ExtractionError):
        detect_source_root(_tree(tmp_path / "c"), "strict")
    with pytest.raises(ExtractionError):
        detect_source_root(single, "bogus")
