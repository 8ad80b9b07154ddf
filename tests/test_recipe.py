from pathlib import Path

import pytest

from conftest import needs_sh
from lfspkg.errors import InvalidRecipe
from lfspkg.recipe import discover_recipes, load_recipe, resolve_recipe_dir

HELLO_PKGFILE = """\
NAME=hello
VERSION=2.12
SOURCE_URL=https://ftp.gnu.org/gnu/hello/hello-2.12.tar.gz
SOURCE_SHA256=ABCDEF
CONFIGURE="./configure --prefix=/usr --disable-nls"
MAKEFLAGS="-j4 V=1"
PATCHES="01-first.patch 02-second.patch"
"""


@needs_sh
def test_pkgfile_fields(write_recipe, cfg) -> None:
    rdir = write_recipe("base", "hello", "hello-2.12", HELLO_PKGFILE)
    recipe = load_recipe(rdir, cfg)
    assert (recipe.name, recipe.version) == ("hello", "2.12")
    assert recipe.ident == "hello-2.12"
    assert recipe.source_url.endswith("hello-2.12.tar.gz")
    assert recipe.tarball_name == "hello-2.12.tar.gz"
    assert recipe.source_sha256 == "ABCDEF"
    assert recipe.configure == ("--prefix=/usr", "--disable-nls")
    assert recipe.makeflags == ("-j4", "V=1")
    assert recipe.patches == ("01-first.patch", "02-second.patch")
    assert recipe.patch_dir == rdir / "patches"
    assert recipe.prepare is None and recipe.build is None and recipe.install is None


@needs_sh
def test_pkgfile_hooks_are_detected(write_recipe, cfg) -> None:
    rdir = write_recipe("base", "foo", "foo-1.0", """\
NAME=foo
VERSION=1.0
BUILD() { make all; }
INSTALL() {
  make DESTDIR="$DESTDIR" install
}
""")
    recipe = load_recipe(rdir, cfg)
    assert recipe.prepare is None
    assert recipe.build is not None and recipe.build.endswith("BUILD")
    assert str(rdir / "PKGFILE") in recipe.build
    assert recipe.install is not None and recipe.install.endswith("INSTALL")
    assert recipe.tarball_name == "foo-1.0.tar"


@needs_sh
@pytest.mark.parametrize("body", [
    "VERSION=1.0\n",
    "NAME=foo\n",
    "NAME=\nVERSION=\n",
])
def test_pkgfile_without_name_or_version_is_invalid(write_recipe, cfg, body: str) -> None:
    rdir = write_recipe("base", "foo", "foo-1.0", body)
    with pytest.raises(InvalidRecipe):
        load_recipe(rdir, cfg)


@needs_sh
def test_pkgfile_shell_error_is_invalid(write_recipe, cfg) -> None:
    rdir = write_recipe("base", "foo", "foo-1.0", "NAME=foo\nVERSION=1.0\nif then fi\n")
    with pytest.raises(InvalidRecipe):
        load_recipe(rdir, cfg)


def test_missing_recipe_file(tmp_path: Path, cfg) -> None:
    with pytest.raises(InvalidRecipe):
        load_recipe(tmp_path, cfg)


def test_yaml_recipe(write_recipe, cfg) -> None:
    rdir = write_recipe("extras", "zlib", "zlib-1.3", """\
Name: zlib
version: "1.3"
source:
  url: https://zlib.net/zlib-1.3.tar.xz
  sha256: deadbeef
configure: [--prefix=/usr, --shared]
makeflags: -j2
patches:
  - a.patch
  - b.patch
hooks:
  install: |
    make DESTDIR="$DESTDIR" install
    rm -f "$DESTDIR/usr/lib/libz.a"
""", filename="recipe.yaml")
    recipe = load_recipe(rdir, cfg)
    assert (recipe.name, recipe.version) == ("zlib", "1.3")
    assert recipe.source_url == "https://zlib.net/zlib-1.3.tar.xz"
    assert recipe.source_sha256 == "deadbeef"
    assert recipe.configure == ("--prefix=/usr", "--shared")
    assert recipe.makeflags == ("-j2",)
    assert recipe.patches == ("a.patch", "b.patch")
    assert "libz.a" in recipe.install
    assert recipe.build is None


def test_yaml_recipe_without_version_is_invalid(write_recipe, cfg) -> None:
    rdir = write_recipe("extras", "zlib", "zlib-x", "name: zlib\n", filename="recipe.yaml")
    with pytest.raises(InvalidRecipe):
        load_recipe(rdir, cfg)


def test_recipe_is_immutable(write_recipe, cfg) -> None:
    rdir = write_recipe("extras", "zlib", "zlib-1.3", "name: zlib\nversion: '1.3'\n", filename="recipe.yaml")
    recipe = load_recipe(rdir, cfg)
    with pytest.raises(AttributeError):
        recipe.version = "2.0"  # type: ignore[misc]


def test_resolve_and_discover(write_recipe, cfg) -> None:
    y = "name: {n}\nversion: '{v}'\n"
    a = write_recipe("base", "gcc", "gcc-12.2.0", y.format(n="gcc", v="12.2.0"), filename="recipe.yaml")
    b = write_recipe("base", "gcc", "gcc-13.2.0", y.format(n="gcc", v="13.2.0"), filename="recipe.yaml")
    c = write_recipe("x11", "libx11", "libx11-1.8", y.format(n="libx11", v="1.8"), filename="recipe.yaml")
    (cfg.path_for("repo_root") / "base" / "gcc" / "notes").mkdir()

    assert resolve_recipe_dir("base/gcc/gcc-12.2.0", cfg) == a
    assert resolve_recipe_dir("gcc/gcc-12.2.0", cfg) == a
    assert resolve_recipe_dir("libx11-1.8", cfg) == c
    assert resolve_recipe_dir("gcc", cfg) == b
    with pytest.raises(InvalidRecipe):
        resolve_recipe_dir("nope", cfg)

    assert discover_recipes(cfg) == [
        "base/gcc/gcc-12.2.0",
        "base/gcc/gcc-13.2.0",
        "x11/libx11/libx11-1.8",
    ]
