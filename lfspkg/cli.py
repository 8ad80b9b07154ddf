# lfspkg/cli.py
"""
lfspkg CLI

Commands:
  init                      create the recipe trees and working directories
  list-recipes              list recipes under the configured trees
  list-installed [--current]
                            registry history (or current state)
  build <ref>               build and package a recipe; prints the artifact path
  install-pkg <archive>     extract a package onto the install root
  rebuild-all               rebuild every recipe, stopping at the first failure
  help                      show usage

Global flags: --config PATH, --no-color, --no-progress, -v/--verbose.
Human-facing output goes to stderr through rich; stdout carries results only.
"""

from __future__ import annotations

import sys
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.table import Table

from lfspkg import __version__
from lfspkg import config as config_mod
from lfspkg import logging as lfslog
from lfspkg.buildsystem import BuildSystem
from lfspkg.errors import LfspkgError
from lfspkg.pkgtool import install_package
from lfspkg.recipe import discover_recipes
from lfspkg.registry import InstallRegistry
from lfspkg.runner import get_console, reset_console

logger = lfslog.get_logger("cli")

RECIPE_EXAMPLE = """\
Recipe (PKGFILE) example:
  NAME=hello
  VERSION=2.12
  SOURCE_URL=https://ftp.gnu.org/gnu/hello/hello-2.12.tar.xz
  SOURCE_SHA256=...            # optional
  CONFIGURE="--prefix=/usr"
  MAKEFLAGS=-j4
  PATCHES="fix-musl.patch"     # relative to ./patches
  INSTALL() { make DESTDIR="$DESTDIR" install; }
"""


# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    get_console().print(f"[bold green]✔[/] {msg}", highlight=False)

def print_warn(msg: str):
    get_console().print(f"[bold yellow]![/] {msg}", highlight=False)

def print_err(msg: str):
    get_console().print(f"[bold red]✖[/] {msg}", highlight=False)

def print_info(msg: str):
    get_console().print(f"[cyan]{msg}[/cyan]", highlight=False)


# -----------------------
# CLI Implementation
# -----------------------
class LfspkgCLI:
    def __init__(self, cfg: Optional[config_mod.Config] = None):
        self.cfg = cfg or config_mod.get_config()
        self.buildsystem = BuildSystem(self.cfg)

    def init(self) -> int:
        root = self.cfg.path_for("repo_root")
        ok, issues = config_mod.validate_config(self.cfg)
        if not ok:
            for issue in issues:
                print_warn(f"config: {issue}")
        for key in ("src_cache", "build_root", "pkg_root", "artifacts_dir", "log_dir", "db_dir"):
            self.cfg.path_for(key).mkdir(parents=True, exist_ok=True)
        for tree in self.cfg.get("paths.repo_trees") or []:
            (root / tree).mkdir(parents=True, exist_ok=True)
        print_ok(f"structure created under {root}")
        return 0

    def list_recipes(self) -> int:
        for ref in discover_recipes(self.cfg):
            print(ref)
        return 0

    def list_installed(self, current: bool = False) -> int:
        registry = InstallRegistry(cfg=self.cfg)
        try:
            if current:
                rows = registry.installed()
                if not rows:
                    print_warn("nothing installed")
                    return 0
                for r in rows:
                    print(f"{r['name']:<24} {r['version']:<12} {r['installed_at']}")
                return 0
            records = registry.history()
        finally:
            registry.close()
        if not records:
            print_warn("nothing installed")
            return 0
        for rec in records:
            print(f"{rec.name:<24} {rec.version:<12} {rec.timestamp}")
        return 0

    def build(self, ref: str) -> int:
        res = self.buildsystem.build_package(ref)
        return self._report_build(res)

    def _report_build(self, res: Dict[str, Any]) -> int:
        if res["ok"]:
            print_ok(f"build complete: {res['name']}-{res['version']}")
            print(res["artifact"])
            return 0
        rc = f" (rc={res['returncode']})" if res.get("returncode") is not None else ""
        print_err(f"{res.get('ref')}: failed at {res['stage']}{rc}: {res['error']}")
        if res.get("log"):
            print_info(f"log: {res['log']}")
        return 1

    def install_pkg(self, archive: str) -> int:
        root = install_package(Path(archive), cfg=self.cfg)
        print_ok(f"installed {archive} onto {root}")
        return 0

    def rebuild_all(self) -> int:
        print_warn("rebuilding every recipe; this may take a long time")
        res = self.buildsystem.rebuild_all()
        table = Table(title="rebuild-all")
        table.add_column("recipe")
        table.add_column("result")
        for r in res["results"]:
            table.add_row(r.get("ref") or "?", "ok" if r["ok"] else f"failed at {r['stage']}")
        get_console().print(table)
        if not res["ok"]:
            print_err(f"rebuild failed at {res['failed']} ({res['stage']}): {res.get('error')}")
            return 1
        print_ok(f"rebuilt {len(res['results'])} recipes")
        return 0


# -----------------------
# Argparse wiring
# -----------------------
def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="lfspkg", description="source-based package builder for LFS systems",
                                 epilog=RECIPE_EXAMPLE, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--config", help="configuration file (YAML or JSON)")
    ap.add_argument("--no-color", action="store_true", help="disable colored output")
    ap.add_argument("--no-progress", action="store_true", help="disable the progress spinner")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging on the console")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="cmd")

    sub.add_parser("init", help="create recipe trees and working directories")
    sub.add_parser("list-recipes", help="list detected recipes")
    p_inst = sub.add_parser("list-installed", help="list registered packages")
    p_inst.add_argument("--current", action="store_true", help="latest version per package only")
    p_build = sub.add_parser("build", help="build and package <tree/name/name-version>")
    p_build.add_argument("ref")
    p_ipkg = sub.add_parser("install-pkg", help="install a package archive onto the install root")
    p_ipkg.add_argument("archive")
    sub.add_parser("rebuild-all", help="rebuild every recipe")
    sub.add_parser("help", help="show this help")
    return ap


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if args.no_color:
        out.setdefault("logging", {})["color"] = False
    if args.no_progress:
        out.setdefault("ui", {})["progress"] = False
    return out


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if args.cmd in (None, "help"):
        parser.print_help()
        return 0 if args.cmd == "help" else 1

    try:
        cfg = config_mod.load(args.config, overrides=_overrides(args))
    except LfspkgError as e:
        print_err(f"configuration error: {e}")
        return 2
    reset_console()
    lfslog.configure(cfg, verbose=args.verbose)
    try:
        session = lfslog.start_session_log(cfg.path_for("log_dir"))
        logger.debug("session log: %s", session)
    except OSError as e:
        print_warn(f"cannot open session log: {e}")

    cli = LfspkgCLI(cfg)
    try:
        if args.cmd == "init":
            return cli.init()
        if args.cmd == "list-recipes":
            return cli.list_recipes()
        if args.cmd == "list-installed":
            return cli.list_installed(current=args.current)
        if args.cmd == "build":
            return cli.build(args.ref)
        if args.cmd == "install-pkg":
            return cli.install_pkg(args.archive)
        if args.cmd == "rebuild-all":
            return cli.rebuild_all()
        print_err(f"unknown command: {args.cmd}")
        parser.print_help()
        return 1
    except LfspkgError as e:
        print_err(str(e))
        return 1
    except OSError as e:
        print_err(f"{args.cmd} failed: {e}")
        return 1
    finally:
        lfslog.stop_session_log()


if __name__ == "__main__":
    sys.exit(main())
