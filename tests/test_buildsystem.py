import re
import shutil
from pathlib import Path
from typing import List

import pytest

from conftest import needs_sh
from lfspkg.buildsystem import ADVISORY_STAGES, STAGES, BuildSystem, SkipStage
from lfspkg.errors import LfspkgError
from lfspkg.registry import InstallRegistry

HELLO = """\
NAME=hello
VERSION=2.12
SOURCE_URL=https://ftp.gnu.org/gnu/hello/hello-2.12.tar.gz
CONFIGURE="./configure --prefix=/usr"
"""

HELLO_CONFIGURE = '#!/bin/sh\necho "$@" > config.args\n'


def _method(stage: str) -> str:
    return "stage_" + stage.replace("-", "_")


def _instrument(monkeypatch, bs: BuildSystem, calls: List[str], failing=(), skipping=()) -> None:
    def make(stage: str):
        def _run(ctx) -> None:
            calls.append(stage)
            if stage in failing:
                raise LfspkgError(f"{stage} exploded", returncode=7)
            if stage in skipping:
                raise SkipStage()
            if stage == "package":
                ctx.artifact = Path("/artifacts/x-1.tar.xz")
        return _run
    for stage in STAGES:
        monkeypatch.setattr(bs, _method(stage), make(stage))


@pytest.mark.parametrize("stage", [s for s in STAGES if s not in ADVISORY_STAGES])
def test_failing_stage_stops_the_pipeline(cfg, monkeypatch, stage: str) -> None:
    bs = BuildSystem(cfg)
    calls: List[str] = []
    _instrument(monkeypatch, bs, calls, failing=(stage,))
    res = bs.build_package("base/x/x-1")
    assert res["ok"] is False
    assert res["stage"] == stage
    assert res["returncode"] == 7
    assert res["artifact"] is None
    assert calls == list(STAGES[: STAGES.index(stage) + 1])


def test_sync_failures_do_not_change_the_result(cfg, monkeypatch) -> None:
    bs = BuildSystem(cfg)
    calls: List[str] = []
    _instrument(monkeypatch, bs, calls, failing=ADVISORY_STAGES)
    res = bs.build_package("base/x/x-1")
    assert res["ok"] is True
    assert res["stage"] == "complete"
    assert res["artifact"] == "/artifacts/x-1.tar.xz"
    assert calls == list(STAGES)
    assert set(ADVISORY_STAGES) <= set(res["skipped"])


def test_skipped_stages_continue(cfg, monkeypatch) -> None:
    bs = BuildSystem(cfg)
    calls: List[str] = []
    _instrument(monkeypatch, bs, calls, skipping=("fetch", "verify-checksum", "apply-patches", "prepare"))
    res = bs.build_package("base/x/x-1")
    assert res["ok"] is True
    assert calls == list(STAGES)
    assert res["skipped"] == ["fetch", "verify-checksum", "apply-patches", "prepare"]


def test_invalid_recipe_fails_at_load(cfg, write_recipe) -> None:
    write_recipe("base", "broken", "broken-1", "name: broken\n", filename="recipe.yaml")
    res = BuildSystem(cfg).build_package("base/broken/broken-1")
    assert (res["ok"], res["stage"], res["artifact"]) == (False, "load-recipe", None)
    assert not cfg.path_for("artifacts_dir").exists()


@needs_sh
def test_hello_end_to_end(make_cfg, fake_make: Path, write_recipe, make_tarball) -> None:
    cfg = make_cfg(tools={"make": str(fake_make)})
    write_recipe("base", "hello", "hello-2.12", HELLO)
    # pre-seeded source cache: fetch must not touch the network
    make_tarball(cfg.path_for("src_cache") / "hello-2.12.tar.gz", "hello-2.12", {
        "configure": (HELLO_CONFIGURE, 0o755),
        "hello.c": ("int main(void){return 0;}\n", 0o644),
    })

    res = BuildSystem(cfg).build_package("base/hello/hello-2.12")

    assert res["ok"] is True, res
    artifact = Path(res["artifact"])
    assert artifact == cfg.path_for("artifacts_dir") / "hello-2.12.tar.xz"
    assert artifact.is_file()

    source_root = cfg.path_for("build_root") / "hello-2.12" / "src" / "hello-2.12"
    assert (source_root / "config.args").read_text().strip() == "--prefix=/usr"
    staging = cfg.path_for("pkg_root") / "hello-2.12" / "dest"
    assert (staging / "usr" / "bin" / "hello").is_file()

    line = (cfg.path_for("db_dir") / "installed.db").read_text().splitlines()[-1]
    assert re.match(r"^hello 2\.12 \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$", line)
    registry = InstallRegistry(cfg=cfg)
    try:
        assert registry.manifest("hello", "2.12") == ["usr", "usr/bin", "usr/bin/hello"]
    finally:
        registry.close()

    log = (cfg.path_for("log_dir") / "hello-2.12.log").read_text()
    assert "build complete" in log
    assert res["skipped"] == ["apply-patches", "prepare", "sync-recipes", "sync-artifacts"]


@needs_sh
def test_recipe_without_source_uses_hooks_only(cfg, write_recipe) -> None:
    write_recipe("extras", "conf", "conf-1", """\
NAME=conf
VERSION=1
BUILD() { :; }
INSTALL() { mkdir -p "$DESTDIR/etc" && echo on > "$DESTDIR/etc/conf.conf"; }
""")
    res = BuildSystem(cfg).build_package("conf")
    assert res["ok"] is True, res
    assert {"fetch", "verify-checksum", "extract"} <= set(res["skipped"])
    assert Path(res["artifact"]).name == "conf-1.tar.xz"


@needs_sh
def test_failed_build_reports_stage_and_exit_code(cfg, write_recipe) -> None:
    write_recipe("extras", "bad", "bad-1", "NAME=bad\nVERSION=1\nBUILD() { exit 9; }\n")
    res = BuildSystem(cfg).build_package("extras/bad/bad-1")
    assert (res["ok"], res["stage"], res["returncode"]) == (False, "build", 9)
    assert "FAILED at build" in Path(res["log"]).read_text()
    assert not (cfg.path_for("db_dir") / "installed.db").exists()


@needs_sh
def test_rebuild_all_stops_at_first_failure(cfg, write_recipe) -> None:
    ok = "NAME={n}\nVERSION=1\nBUILD() {{ :; }}\nINSTALL() {{ mkdir -p \"$DESTDIR/usr\"; }}\n"
    write_recipe("base", "a", "a-1", ok.format(n="a"))
    write_recipe("base", "b", "b-1", "NAME=b\nVERSION=1\nBUILD() { exit 1; }\n")
    write_recipe("base", "c", "c-1", ok.format(n="c"))
    res = BuildSystem(cfg).rebuild_all()
    assert res["ok"] is False
    assert res["failed"] == "base/b/b-1"
    assert [r["ref"] for r in res["results"]] == ["base/a/a-1", "base/b/b-1"]
    assert not (cfg.path_for("artifacts_dir") / "c-1.tar.xz").exists()


NEWS_PATCH = """\
--- /dev/null
+++ b/NEWS.local
@@ -0,0 +1 @@
+local notes
"""


@needs_sh
@pytest.mark.skipif(shutil.which("patch") is None, reason="patch not available")
def test_patched_recipe_builds_twice(cfg, write_recipe, make_tarball) -> None:
    write_recipe("base", "news", "news-1", """\
NAME=news
VERSION=1
SOURCE_URL=https://example.invalid/news-1.tar.gz
PATCHES=add-news.patch
BUILD() { :; }
INSTALL() { mkdir -p "$DESTDIR/usr/share/doc/news" && cp NEWS.local "$DESTDIR/usr/share/doc/news/"; }
""", patches={"add-news.patch": NEWS_PATCH})
    make_tarball(cfg.path_for("src_cache") / "news-1.tar.gz", "news-1", {"README": ("news\n", 0o644)})

    bs = BuildSystem(cfg)
    first = bs.build_package("base/news/news-1")
    second = bs.build_package("base/news/news-1")

    assert first["ok"] is True, first
    assert second["ok"] is True, second
    assert "apply-patches" in second["completed"]
    source_root = cfg.path_for("build_root") / "news-1" / "src" / "news-1"
    assert (source_root / "NEWS.local").read_text() == "local notes\n"
