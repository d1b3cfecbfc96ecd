from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .lib.salt_results import ExecutionResult


class CastError(Exception):
    """Base class for every failure the installer reports to the caller."""


class ConfigError(CastError):
    pass


class ResolutionError(CastError):
    pass


class DistroFormatError(ResolutionError):
    pass


class NoReleasesError(ResolutionError):
    pass


class VersionNotFoundError(ResolutionError):
    pass


class ManifestNotFoundError(ResolutionError):
    pass


class ManifestError(ResolutionError):
    """Manifest could not be parsed, validated or rendered."""


class UnsupportedOSError(ResolutionError):
    pass


class DownloadError(CastError):
    pass


class OperationCancelled(CastError):
    pass


class VerificationError(CastError):
    pass


class DigestMismatchError(VerificationError):
    def __init__(self, filename: str, expected: str, actual: str) -> None:
        super().__init__(f"hashes do not match for {filename}: expected: {expected}, actual: {actual}")
        self.filename = filename
        self.expected = expected
        self.actual = actual


class SignatureError(VerificationError):
    pass


class ChecksumManifestError(VerificationError):
    pass


class ExtractionError(CastError):
    pass


class ExecutionError(CastError):
    def __init__(self, message: str, result: Optional["ExecutionResult"] = None) -> None:
        super().__init__(message)
        self.result = result


class PartialFailureError(ExecutionError):
    pass


class TerminatedError(ExecutionError):
    pass


class UnexpectedExitError(ExecutionError):
    pass


class PersistenceError(CastError):
    pass
