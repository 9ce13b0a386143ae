"""Path confinement for every filesystem operation.

All caller-supplied paths pass through `PathGuard.resolve` before any I/O.
Existing targets are checked by their real path, so a symlink placed inside an
allowed directory cannot point the server outside it. Targets that do not
exist yet are checked through their deepest existing ancestor, which still
permits creating new files and nested directories.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from conduit_fs.filesystem.errors import (
    ConfinementViolation,
    InvalidTarget,
    IOFailure,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPath:
    """A confined, absolute path and whether it existed when resolved."""

    path: Path
    exists: bool


def canonicalize(path: str | Path) -> Path:
    """Return the absolute, normalized form of `path` without touching symlinks."""
    return Path(os.path.abspath(os.path.expanduser(str(path))))


def to_uri(path: str | Path) -> str:
    """Build the `file://` identifier for a canonical path."""
    return "file://" + str(canonicalize(path))


class PathGuard:
    """Rejects any path that does not resolve inside an allowed directory.

    The set of allowed directories is fixed at construction. Existing roots are
    stored by real path so that comparisons against resolved targets are
    consistent even when a root is reached through a symlink.
    """

    def __init__(self, allowed_dirs: Iterable[str | Path]) -> None:
        roots: list[Path] = []
        for directory in allowed_dirs:
            root = canonicalize(directory)
            if root.exists():
                root = root.resolve()
            if root not in roots:
                roots.append(root)

        if not roots:
            raise ValueError("At least one allowed directory is required")

        self._roots: tuple[Path, ...] = tuple(roots)

    @property
    def allowed_roots(self) -> tuple[Path, ...]:
        return self._roots

    def is_allowed(self, path: Path) -> bool:
        """Segment-wise containment test against every allowed root."""
        return any(path.is_relative_to(root) for root in self._roots)

    def resolve(self, requested_path: str | Path | None) -> ResolvedPath:
        """Canonicalize `requested_path` and confirm it is confined.

        Args:
            requested_path: Path supplied by the caller, absolute or relative
                to the server's working directory.

        Returns:
            ResolvedPath: The real path for existing targets, or the canonical
                intended path for targets that do not exist yet.

        Raises:
            InvalidTarget: If the path is blank or is the filesystem root.
            ConfinementViolation: If the path resolves outside every allowed
                directory.
            IOFailure: If resolving an existing path fails.
        """
        if requested_path is None or not str(requested_path).strip():
            raise InvalidTarget(requested_path, "Path cannot be null or empty.")

        canonical = canonicalize(requested_path)
        if canonical.parent == canonical:
            raise InvalidTarget(canonical, "Path has no parent directory.")

        if canonical.exists():
            try:
                real = canonical.resolve(strict=True)
            except OSError as e:
                raise IOFailure.from_os_error(e, requested_path) from e
            if self.is_allowed(real):
                return ResolvedPath(path=real, exists=True)
        else:
            # Resolves every existing ancestor and any dangling symlink.
            real = Path(os.path.realpath(canonical))
            if self.is_allowed(real):
                return ResolvedPath(path=canonical, exists=False)

        logger.warning(f"Rejected path outside allowed directories: {requested_path}")
        raise ConfinementViolation(requested_path)
