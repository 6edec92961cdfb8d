# Kettle/kettle1.0/kettle/errors.py
"""
Exception hierarchy shared by the kettle modules.

Acquisition errors are marked ``recoverable``: the run can report them and move
on to the next requested package. Everything else aborts the current operation.
"""

from __future__ import annotations

from typing import Optional


class KettleError(Exception):
    """Base class for every error kettle raises on purpose."""

    recoverable = False


class ResolutionAborted(KettleError):
    """The operator declined (or did not confirm) the dependency list."""


class PackageNotFoundError(KettleError):
    def __init__(self, name: str):
        super().__init__(f"package '{name}' not found in catalog")
        self.name = name


class ManifestError(KettleError):
    """The device manifest could not be read or written."""


class AcquisitionError(KettleError):
    recoverable = True


class NoArtifactError(AcquisitionError):
    def __init__(self, package: str, architecture: str):
        super().__init__(f"no binary or source available for {package} on {architecture}")
        self.package = package
        self.architecture = architecture


class DownloadError(AcquisitionError):
    def __init__(self, url: str, returncode: int):
        super().__init__(f"download of {url} failed (exit status {returncode})")
        self.url = url
        self.returncode = returncode


class ChecksumMismatchError(AcquisitionError):
    def __init__(self, filename: str, expected: str, actual: str):
        super().__init__(f"checksum mismatch for {filename}: expected {expected}, got {actual}")
        self.filename = filename
        self.expected = expected
        self.actual = actual


class EmptyArchiveError(AcquisitionError):
    def __init__(self, filename: str):
        super().__init__(f"archive {filename} is empty")
        self.filename = filename


class MissingCompilerError(KettleError):
    def __init__(self, candidates):
        names = ", ".join(candidates) or "<none configured>"
        super().__init__(f"no working C compiler found (tried: {names}); install a toolchain before building from source")
        self.candidates = list(candidates)


class InstallError(KettleError):
    """A package-scoped failure while building or installing."""

    def __init__(self, package: str, message: str, phase: Optional[str] = None):
        super().__init__(f"{package}: {message}")
        self.package = package
        self.message = message
        self.phase = phase


class HookError(InstallError):
    def __init__(self, package: str, hook: str, message: str):
        super().__init__(package, f"{hook} hook failed: {message}", phase=hook)
        self.hook = hook
