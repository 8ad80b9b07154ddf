# lfspkg/errors.py
"""
Error taxonomy for lfspkg.

Every pipeline stage raises one of these; the build orchestrator turns the
first one into a failed build result carrying the stage name and, when an
external process was involved, its exit code.
"""

from __future__ import annotations

from typing import Optional


class LfspkgError(Exception):
    """Base error; carries the failing stage and an optional process exit code."""

    stage: Optional[str] = None

    def __init__(self, message: str, *, stage: Optional[str] = None, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage
        self.returncode = returncode

    def __str__(self) -> str:
        msg = super().__str__()
        if self.returncode is not None:
            return f"{msg} (rc={self.returncode})"
        return msg


class ConfigError(LfspkgError):
    stage = "config"


class InvalidRecipe(LfspkgError):
    stage = "load-recipe"


class FetchError(LfspkgError):
    stage = "fetch"


class ChecksumMismatch(LfspkgError):
    stage = "verify-checksum"


class ExtractionError(LfspkgError):
    stage = "extract"


class PatchError(LfspkgError):
    stage = "apply-patches"


class BuildError(LfspkgError):
    stage = "build"


class InstallError(LfspkgError):
    stage = "install"


class PackagingError(LfspkgError):
    stage = "package"


class RegistrationError(LfspkgError):
    stage = "register"
