#!/usr/bin/env python3
# Kettle/kettle1.0/kettle/cli.py
"""
Kettle CLI - thin front end over kettle.installer.PackageManager

Commands:
- install [-s] [-r] [-k] [-y] NAME...   install packages and their dependencies
- remove NAME...                        remove installed packages
- upgrade [-y] [NAME]                   upgrade one package or everything installed
- build [-k] [-y] [-o DIR] NAME...      build binary archives from source
- files NAME                            list files recorded for an installed package
- whatprovides PATH                     find which installed packages own PATH

Exit status: 0 on success, 1 when an operation failed, 2 on usage errors.
"""

from __future__ import annotations

import sys
import argparse
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from kettle import config as config_mod
from kettle.errors import KettleError
from kettle.installer import PackageManager
from kettle.logging import get_logger, set_level

logger = get_logger("cli")

console = Console()

__version__ = "1.0"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}")

def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")

def print_info(msg: str):
    console.print(f"[cyan]{msg}[/cyan]")

# -----------------------
# CLI Implementation
# -----------------------
class KettleCLI:
    def __init__(self, manager: Optional[PackageManager] = None):
        self.manager = manager or PackageManager()

    def install(self, names: List[str], source: bool = False, recursive: bool = False,
                keep: bool = False, yes: bool = False) -> int:
        for name in names:
            results = self.manager.install(name, build_from_source=source, recursive=recursive,
                                           keep_workdir=keep or None, assume_yes=yes or None)
            for res in results:
                if res.already_installed:
                    print_warn(f"{res.package} {res.version} is already installed")
                else:
                    print_ok(f"{res.package} {res.version} {res.status}")
        return EXIT_OK

    def remove(self, names: List[str]) -> int:
        for name in names:
            if not self.manager.manifest.is_installed(name):
                print_warn(f"{name} is not installed")
                continue
            report = self.manager.remove(name)
            if report.complete:
                print_ok(f"{name} removed")
                continue
            print_warn(f"{name} removed, but {len(report.failed)} paths were kept:")
            for path, err in report.failed:
                console.print(f"    {path}: {err}", markup=False)
        return EXIT_OK

    def upgrade(self, name: Optional[str] = None, yes: bool = False) -> int:
        if name:
            res = self.manager.upgrade(name, assume_yes=yes or None)
            if res is None:
                print_info(f"{name}: nothing to upgrade")
            else:
                print_ok(f"{res.package} upgraded to {res.version}")
            return EXIT_OK

        plan = self.manager.upgrade_all(assume_yes=yes or None)
        if not plan.items:
            print_ok("Everything is up to date")
            return EXIT_OK
        table = Table(title="Upgrade report")
        table.add_column("package")
        table.add_column("from")
        table.add_column("to")
        table.add_column("status")
        for item in plan.items:
            status = "[green]ok[/]" if item.status == "ok" else f"[red]{item.status}[/]"
            table.add_row(item.package, item.installed_version, item.target_version, status)
        console.print(table)
        for item in plan.failed:
            print_err(f"{item.package}: {item.error}")
        return EXIT_OK if plan.ok else EXIT_FAILED

    def build(self, names: List[str], keep: bool = False, yes: bool = False, output_dir: Optional[str] = None) -> int:
        for name in names:
            tarpath, sumpath = self.manager.build(name, keep_workdir=keep or None, assume_yes=yes or None,
                                                  output_dir=output_dir)
            print_ok(f"{name}: {tarpath}")
            print_info(f"checksum written to {sumpath}")
        return EXIT_OK

    def files(self, name: str) -> int:
        if not self.manager.manifest.is_installed(name):
            print_err(f"{name} is not installed")
            return EXIT_FAILED
        paths = self.manager.files(name)
        for p in paths:
            print(p)
        print_info(f"{name}: {len(paths)} files")
        return EXIT_OK

    def whatprovides(self, path: str) -> int:
        owners = self.manager.owner(path)
        if not owners:
            print_warn(f"no installed package owns {path}")
            return EXIT_FAILED
        for o in owners:
            print(f"{o}: {path}")
        return EXIT_OK

# -----------------------
# Argparse wiring
# -----------------------
def make_parser():
    ap = argparse.ArgumentParser(prog="kettle", description="Kettle package manager")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("-c", "--config", help="configuration file to use")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = ap.add_subparsers(dest="cmd")

    # install
    p_install = sub.add_parser("install", help="install packages")
    p_install.add_argument("packages", nargs="+")
    p_install.add_argument("-s", "--source", action="store_true", help="build from source even if a binary exists")
    p_install.add_argument("-r", "--recursive", action="store_true", help="also build dependencies from source")
    p_install.add_argument("-k", "--keep", action="store_true", help="keep the working directory")
    p_install.add_argument("-y", "--yes", action="store_true", help="do not ask before installing dependencies")

    # remove
    p_remove = sub.add_parser("remove", help="remove installed packages")
    p_remove.add_argument("packages", nargs="+")

    # upgrade
    p_upgrade = sub.add_parser("upgrade", help="upgrade one or all installed packages")
    p_upgrade.add_argument("package", nargs="?")
    p_upgrade.add_argument("-y", "--yes", action="store_true")

    # build
    p_build = sub.add_parser("build", help="build binary archives from source")
    p_build.add_argument("packages", nargs="+")
    p_build.add_argument("-k", "--keep", action="store_true")
    p_build.add_argument("-y", "--yes", action="store_true")
    p_build.add_argument("-o", "--output-dir")

    # queries
    p_files = sub.add_parser("files", help="list files of an installed package")
    p_files.add_argument("package")
    p_what = sub.add_parser("whatprovides", help="find the package owning a path")
    p_what.add_argument("path")

    return ap

def dispatch(cli: KettleCLI, args) -> int:
    if args.cmd == "install":
        return cli.install(args.packages, source=args.source, recursive=args.recursive, keep=args.keep, yes=args.yes)
    if args.cmd == "remove":
        return cli.remove(args.packages)
    if args.cmd == "upgrade":
        return cli.upgrade(args.package, yes=args.yes)
    if args.cmd == "build":
        return cli.build(args.packages, keep=args.keep, yes=args.yes, output_dir=args.output_dir)
    if args.cmd == "files":
        return cli.files(args.package)
    if args.cmd == "whatprovides":
        return cli.whatprovides(args.path)
    raise ValueError(f"unknown command {args.cmd}")

def main(argv: Optional[List[str]] = None, manager: Optional[PackageManager] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else EXIT_USAGE
    if not args.cmd:
        parser.print_help()
        return EXIT_USAGE
    try:
        if args.config:
            config_mod.reload(args.config)
        if args.verbose:
            set_level("DEBUG")
        if manager is None:
            manager = PackageManager()
        return dispatch(KettleCLI(manager), args)
    except KeyboardInterrupt:
        print_err("Interrupted")
        return EXIT_FAILED
    except KettleError as e:
        logger.debug("command %s failed", args.cmd, exc_info=True)
        print_err(str(e))
        return EXIT_FAILED

if __name__ == "__main__":
    sys.exit(main())
