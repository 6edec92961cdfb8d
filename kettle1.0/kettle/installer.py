# Kettle/kettle1.0/kettle/installer.py
"""
installer.py - install / upgrade / remove / build orchestration

Features:
- Per-package install state machine: acquire -> build or stage -> remove old
  files (upgrade) -> merge into the live root -> postinstall -> manifest
- Dependency expansion with a single confirmation prompt before anything is
  installed
- Fake (meta) packages are recorded in the manifest without touching the filesystem
- Upgrade of one package or of everything installed (dependency order,
  per-package error boundary)
- Best-effort removal reporting every path that could not be deleted
- Build-only workflow producing a binary archive without installing it
- File list / ownership queries
"""

from __future__ import annotations

import errno
import os
import shutil
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from kettle.buildsystem import BuildSystem, StagedPayload
from kettle.config import Config, detect_architecture, get_config
from kettle.errors import InstallError, KettleError, ResolutionAborted
from kettle.fetcher import Artifact, Downloader, Fetcher, curl_downloader
from kettle.logging import get_logger
from kettle.manifest import DeviceManifest, FileListStore
from kettle.meta import Catalog
from kettle.package import BuildContext, Package
from kettle.remove import RemovalReport, Remover
from kettle.resolver import Resolver
from kettle.toolchain import check_compiler
from kettle.upgrade import UpgradePlan, plan_all

logger = get_logger("installer")


@dataclass
class InstallResult:
    package: str
    version: str
    status: str  # installed, upgraded, already_installed, fake
    files: List[str] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)

    @property
    def already_installed(self) -> bool:
        return self.status == "already_installed"

    def to_dict(self):
        return {
            "package": self.package,
            "version": self.version,
            "status": self.status,
            "files": len(self.files),
            "directories": len(self.directories),
        }


def _wrap(pkg: Package, err: Exception, phase: str) -> InstallError:
    if isinstance(err, KettleError):
        wrapped = InstallError(pkg.name, str(err), phase=phase)
        wrapped.recoverable = err.recoverable
    else:
        wrapped = InstallError(pkg.name, f"{type(err).__name__}: {err}", phase=phase)
    return wrapped


class PackageManager:
    """
    Entry point for every state-changing operation. One instance owns the
    device manifest for its lifetime; each install/upgrade/remove persists the
    manifest before returning.
    """

    def __init__(self, config: Optional[Config] = None, catalog: Optional[Catalog] = None,
                 downloader: Optional[Downloader] = None,
                 input_fn: Callable[[str], str] = input, output_fn: Callable[[str], None] = print):
        self.config = config or get_config()
        self.root = self.config.get("paths.root", "/")
        self.prefix = self.config.get("paths.prefix", "/usr/local")
        self.dest_dir = self.config.get("paths.dest_dir")
        self.work_dir = self.config.get("paths.brew_dir")

        default_arch = self.config.get("architecture") or detect_architecture()
        self.manifest = DeviceManifest.load(self.config.get("paths.device_file"), default_arch)
        self.architecture = self.manifest.architecture
        self.store = FileListStore(self.config.get("paths.meta_dir"))
        self.catalog = catalog or Catalog(self.config.get("paths.packages_dir"))
        self.resolver = Resolver(self.catalog, self.manifest)

        if downloader is None:
            downloader = curl_downloader(
                insecure=self.config.get("fetcher.insecure", True),
                resume=self.config.get("fetcher.resume", True),
                program=self.config.get("fetcher.downloader", "curl"),
            )
        self.fetcher = Fetcher(self.work_dir, downloader)
        self.buildsystem = BuildSystem(self.work_dir, platform_tag=self.config.get("build.platform_tag", "linux"))
        self.remover = Remover(self.store, root=self.root)
        self.input_fn = input_fn
        self.output_fn = output_fn

    # -----------------------
    # Context
    # -----------------------
    def make_context(self, build_from_source: bool = False, recursive: bool = False, in_upgrade: bool = False,
                     keep_workdir: Optional[bool] = None) -> BuildContext:
        return BuildContext(
            architecture=self.architecture,
            build_from_source=build_from_source,
            in_upgrade=in_upgrade,
            recursive=recursive,
            keep_workdir=self.config.get("build.keep_workdir", False) if keep_workdir is None else keep_workdir,
            no_strip=self.config.get("build.no_strip", False),
            no_compress=self.config.get("build.no_compress", False),
            run_checks=self.config.get("build.run_checks", False),
            root=self.root,
            prefix=self.prefix,
            dest_dir=self.dest_dir,
        )

    def _assume_yes(self, assume_yes: Optional[bool]) -> bool:
        if assume_yes is None:
            return bool(self.config.get("install.assume_yes", False))
        return assume_yes

    # -----------------------
    # Dependencies
    # -----------------------
    def _install_dependencies(self, pkg: Package, ctx: BuildContext, assume_yes: bool) -> List[InstallResult]:
        missing = self.resolver.missing(pkg, ctx)
        if not missing:
            return []
        if not assume_yes and not self.resolver.confirm(pkg, missing, self.input_fn, self.output_fn):
            raise ResolutionAborted(f"installation of {pkg.name} aborted: dependencies not confirmed")
        results: List[InstallResult] = []
        for dep in missing:
            results.append(self._install_one(self.catalog.get(dep), ctx.for_dependency()))
        return results

    # -----------------------
    # Single package state machine
    # -----------------------
    def _stage(self, pkg: Package, artifact: Artifact, ctx: BuildContext) -> StagedPayload:
        if not artifact.is_source:
            return self.buildsystem.stage_binary(artifact.extract_dir)
        ctx.extra["CC"] = check_compiler(self.config.get("build.compilers", ["cc"]))
        return self.buildsystem.build(pkg, artifact.build_root, ctx)

    def _live(self, path: str) -> str:
        return os.path.join(self.root, path.lstrip("/"))

    def _merge(self, payload: StagedPayload):
        """Copy the staged tree into the live root."""
        for d in payload.directories:
            live = self._live(d)
            # isdir follows symlinks, so a symlinked directory in the live root is kept
            if not os.path.isdir(live):
                os.makedirs(live)
        for f in payload.files:
            src = os.path.join(payload.root, f.lstrip("/"))
            dst = self._live(f)
            os.makedirs(os.path.dirname(dst), exist_ok=True)
            if os.path.isdir(dst) and not os.path.islink(dst):
                raise IsADirectoryError(errno.EISDIR, "staged file collides with an existing directory", dst)
            if os.path.lexists(dst):
                # unlink needs only the directory to be writable
                os.unlink(dst)
            shutil.copy2(src, dst, follow_symlinks=False)
        logger.info("merged %d files into %s", len(payload.files), self.root)

    def _install_one(self, pkg: Package, ctx: BuildContext) -> InstallResult:
        installed_version = self.manifest.installed_version(pkg.name)
        if installed_version is not None and not ctx.in_upgrade:
            logger.info("%s %s is already installed", pkg.name, installed_version)
            return InstallResult(pkg.name, installed_version, "already_installed")

        upgrading = ctx.in_upgrade and installed_version is not None
        result = InstallResult(pkg.name, pkg.version, "upgraded" if upgrading else "installed")
        phase = "acquire"
        try:
            if pkg.is_fake():
                logger.info("%s is a fake package, recording it only", pkg.name)
                result.status = "fake"
            else:
                artifact = self.fetcher.acquire(pkg, ctx)
                phase = "build" if artifact.is_source else "stage"
                payload = self._stage(pkg, artifact, ctx)
                if upgrading:
                    phase = "remove"
                    report = self.remover.remove_files(pkg.name)
                    if not report.complete:
                        logger.warning("%s: %d paths of %s could not be removed", pkg.name,
                                       len(report.failed), installed_version)
                phase = "merge"
                self._merge(payload)
                self.store.write(pkg.name, payload.files, payload.directories)
                result.files, result.directories = payload.files, payload.directories
                phase = "postinstall"
                self.buildsystem.run_hook(pkg, "postinstall", ctx)
            phase = "manifest"
            self.manifest.add(pkg.name, pkg.version)
            self.manifest.save()
        except InstallError:
            raise
        except (KettleError, OSError) as e:
            logger.error("%s: %s failed: %s", pkg.name, phase, e)
            raise _wrap(pkg, e, phase) from e
        finally:
            self.buildsystem.cleanup(ctx.keep_workdir)

        logger.info("%s %s %s", pkg.name, pkg.version, result.status)
        return result

    # -----------------------
    # Public operations
    # -----------------------
    def install(self, name: str, build_from_source: bool = False, recursive: bool = False,
                keep_workdir: Optional[bool] = None, assume_yes: Optional[bool] = None) -> List[InstallResult]:
        """Install name and its missing dependencies; results are in install order."""
        pkg = self.catalog.get(name)
        ctx = self.make_context(build_from_source=build_from_source, recursive=recursive, keep_workdir=keep_workdir)
        if self.manifest.is_installed(name):
            return [self._install_one(pkg, ctx)]
        results = self._install_dependencies(pkg, ctx, self._assume_yes(assume_yes))
        results.append(self._install_one(pkg, ctx))
        return results

    def upgrade(self, name: str, assume_yes: Optional[bool] = None) -> Optional[InstallResult]:
        """Reinstall name when the catalog version differs from the installed one."""
        installed = self.manifest.installed_version(name)
        if installed is None:
            logger.warning("%s is not installed", name)
            return None
        pkg = self.catalog.get(name)
        if pkg.version == installed:
            logger.info("%s is up to date (%s)", name, installed)
            return None
        logger.info("upgrading %s %s -> %s", name, installed, pkg.version)
        ctx = self.make_context(in_upgrade=True)
        self._install_dependencies(pkg, ctx, self._assume_yes(assume_yes))
        return self._install_one(pkg, ctx)

    def upgrade_all(self, assume_yes: Optional[bool] = None) -> UpgradePlan:
        plan = plan_all(self.resolver)
        for item in plan.items:
            try:
                self.upgrade(item.package, assume_yes=assume_yes)
                item.status = "ok"
            except KettleError as e:
                item.status = "failed"
                item.error = str(e)
                logger.error("upgrade of %s failed: %s", item.package, e)
        if plan.failed:
            logger.warning("%d of %d upgrades failed", len(plan.failed), len(plan.items))
        return plan

    def remove(self, name: str) -> RemovalReport:
        if not self.manifest.is_installed(name):
            logger.warning("%s is not installed", name)
            return RemovalReport(package=name)
        dependents = self.resolver.reverse_dependencies(name)
        if dependents:
            logger.warning("%s is required by %s", name, ", ".join(dependents))
        report = self.remover.remove_files(name)
        self.manifest.remove(name)
        self.manifest.save()
        report.manifest_updated = True
        logger.info("%s removed", name)
        return report

    def build(self, name: str, keep_workdir: Optional[bool] = None, assume_yes: Optional[bool] = None,
              output_dir: Optional[str] = None):
        """Build name from source into an archive; returns (archive path, checksum path)."""
        pkg = self.catalog.get(name)
        if pkg.is_fake():
            raise KettleError(f"{name} is a fake package, nothing to build")
        ctx = self.make_context(build_from_source=True, keep_workdir=keep_workdir)
        self._install_dependencies(pkg, ctx, self._assume_yes(assume_yes))
        output_dir = output_dir or self.config.get("build.output_dir", ".")
        phase = "acquire"
        try:
            artifact = self.fetcher.acquire(pkg, ctx)
            phase = "build"
            ctx.extra["CC"] = check_compiler(self.config.get("build.compilers", ["cc"]))
            payload = self.buildsystem.build(pkg, artifact.build_root, ctx)
            phase = "archive"
            return self.buildsystem.archive(pkg, payload, output_dir, self.architecture)
        except InstallError:
            raise
        except (KettleError, OSError) as e:
            logger.error("%s: %s failed: %s", name, phase, e)
            raise _wrap(pkg, e, phase) from e
        finally:
            self.buildsystem.cleanup(ctx.keep_workdir)

    # -----------------------
    # Queries
    # -----------------------
    def files(self, name: str) -> List[str]:
        lists = self.store.read(name)
        if lists is None:
            logger.warning("no file list recorded for %s", name)
            return []
        return lists[0]

    def owner(self, path: str) -> List[str]:
        return self.store.owners(path)
