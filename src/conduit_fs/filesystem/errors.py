"""Exception hierarchy for filesystem operations.

Every failure the engine reports carries an `ErrorKind` plus the structured
context that produced it (the offending path, the unmatched edit text), so
callers and tests can branch on the kind instead of parsing messages.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path


class ErrorKind(str, Enum):
    CONFINEMENT_VIOLATION = "confinement_violation"
    INVALID_TARGET = "invalid_target"
    NOT_FOUND = "not_found"
    IO_FAILURE = "io_failure"
    NO_EXACT_MATCH = "no_exact_match"
    UNSUPPORTED_ATTRIBUTE = "unsupported_attribute"


class FilesystemError(Exception):
    """Base exception for all filesystem engine errors."""

    kind: ErrorKind

    def __init__(self, message: str, path: str | Path | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None


class ConfinementViolation(FilesystemError):
    """Raised when a path resolves outside every allowed directory.

    Never retried: the same path will resolve to the same place next time.
    """

    kind = ErrorKind.CONFINEMENT_VIOLATION

    def __init__(self, path: str | Path) -> None:
        super().__init__(
            f"Access denied. Path is outside of allowed directories: {path}", path
        )


class InvalidTarget(FilesystemError):
    """Raised for blank paths or paths with no parent directory."""

    kind = ErrorKind.INVALID_TARGET

    def __init__(self, path: str | Path | None, reason: str) -> None:
        super().__init__(reason, path)
        self.reason = reason


class NotFound(FilesystemError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, path: str | Path, message: str | None = None) -> None:
        super().__init__(message or f"No such file or directory: {path}", path)


class IOFailure(FilesystemError):
    """Raised when the underlying filesystem call fails.

    The OS error message is passed through verbatim.
    """

    kind = ErrorKind.IO_FAILURE

    @classmethod
    def from_os_error(cls, error: OSError, path: str | Path) -> FilesystemError:
        """Map an OSError to the matching engine error."""
        message = error.strerror or str(error)
        if isinstance(error, FileNotFoundError):
            return NotFound(path, f"{message}: {path}")
        return cls(f"{message}: {path}", path)


class NoExactMatch(FilesystemError):
    """Raised when an edit's old text does not occur in the document."""

    kind = ErrorKind.NO_EXACT_MATCH

    def __init__(self, path: str | Path, old_text: str) -> None:
        super().__init__(f"Could not find exact match for edit:\n{old_text}", path)
        self.old_text = old_text


class UnsupportedAttribute(FilesystemError):
    """Raised when the platform cannot report a metadata field."""

    kind = ErrorKind.UNSUPPORTED_ATTRIBUTE

    def __init__(self, path: str | Path, attribute: str) -> None:
        super().__init__(
            f"Attribute '{attribute}' is not supported on this platform", path
        )
        self.attribute = attribute
