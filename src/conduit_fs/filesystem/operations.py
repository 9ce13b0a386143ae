"""The filesystem operations exposed as tools and resources.

Each method resolves its paths through `PathGuard`, performs one blocking
operation, and either returns the success payload as text or raises a
`FilesystemError`. Methods are independent of each other and safe to run
concurrently on worker threads; two writes to the same path are not
serialized (last writer wins).
"""

import json
import logging
import os
import re
import shutil
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from conduit_fs.filesystem.edits import EditEngine, EditOperation
from conduit_fs.filesystem.errors import (
    FilesystemError,
    InvalidTarget,
    IOFailure,
    NotFound,
    UnsupportedAttribute,
)
from conduit_fs.filesystem.index import ResourceIndex
from conduit_fs.filesystem.mime import guess_mime_type
from conduit_fs.filesystem.paths import PathGuard, to_uri
from conduit_fs.filesystem.tree import TreeBuilder

logger = logging.getLogger(__name__)

FILE_URI_PREFIX = "file://"
NO_MATCHES = "No matches found"
UNSUPPORTED_PLACEHOLDER = "N/A"

_BRACES = re.compile(r"\{([^{}]*)\}")


@dataclass(frozen=True)
class FileContent:
    """Raw bytes of a file read through a resource URI."""

    uri: str
    path: Path
    mime_type: str
    data: bytes


def expand_braces(pattern: str) -> list[str]:
    """Expand `{a,b}` alternatives in a glob pattern.

    >>> expand_braces("*.{py,txt}")
    ['*.py', '*.txt']
    """
    match = _BRACES.search(pattern)
    if match is None:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(head + option + tail))
    return expanded


def _translate_glob(pattern: str) -> str:
    parts: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        char = pattern[i]
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "[":
            end = pattern.find("]", i + 1)
            body = pattern[i + 1 : end] if end != -1 else ""
            if body and body != "!":
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append("[" + body.replace("\\", "\\\\") + "]")
                i = end + 1
                continue
            parts.append(re.escape(char))
        else:
            parts.append(re.escape(char))
        i += 1
    return "".join(parts)


def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob matched against `/`-separated relative paths.

    `*` and `?` never cross a `/`, `**` does. `[...]` is a character class
    (`[!...]` negates it) and `{a,b}` alternatives are expanded.

    >>> bool(compile_glob("sub/*.txt").fullmatch("sub/deep/x.txt"))
    False
    """
    alternatives = (_translate_glob(p) for p in expand_braces(pattern))
    return re.compile("|".join(f"(?:{a})" for a in alternatives), re.DOTALL)


def _format_time(timestamp: float) -> str:
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _permissions(path: Path, st: os.stat_result) -> str:
    if os.name != "posix":
        raise UnsupportedAttribute(path, "permissions")
    return stat.filemode(st.st_mode)[1:]


class FileOperations:
    """Confined filesystem operations backing the tool and resource handlers.

    Args:
        guard: Resolves and confines every caller-supplied path.
        index: Optional live index, updated eagerly after writes, moves,
            edits and directory creation.
    """

    def __init__(self, guard: PathGuard, index: ResourceIndex | None = None) -> None:
        self.guard = guard
        self.index = index
        self.edit_engine = EditEngine()

    def _existing(self, requested: str) -> Path:
        resolved = self.guard.resolve(requested)
        if not resolved.exists:
            raise NotFound(requested)
        return resolved.path

    def _read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise IOFailure(f"File is not valid UTF-8 text: {path}", path) from e
        except OSError as e:
            raise IOFailure.from_os_error(e, path) from e

    def _touched(self, path: Path) -> None:
        if self.index is not None:
            self.index.upsert(path)

    # ================================
    # Reading
    # ================================

    def read_file(self, path: str) -> str:
        return self._read_text(self._existing(path))

    def read_multiple_files(self, paths: list[str]) -> str:
        """Read several files, inlining per-path failures.

        A directory in `paths` expands to every file beneath it.
        """
        blocks: list[str] = []
        for requested in paths:
            try:
                target = self._existing(requested)
                if target.is_dir():
                    blocks.extend(self._read_directory_files(target))
                else:
                    blocks.append(f"{requested}:\n{self._read_text(target)}\n\n---\n")
            except FilesystemError as e:
                blocks.append(f"{requested}: Error - {e.message}\n\n---\n")
        return "".join(blocks)

    def _read_directory_files(self, directory: Path) -> Iterator[str]:
        for current, dirnames, filenames in os.walk(directory):
            dirnames.sort()
            for filename in sorted(filenames):
                file_path = Path(current) / filename
                try:
                    target = self._existing(str(file_path))
                    yield f"{file_path}:\n{self._read_text(target)}\n\n---\n"
                except FilesystemError as e:
                    yield f"{file_path}: Error - {e.message}\n\n---\n"

    def read_resource(self, uri: str) -> FileContent:
        """Read a file identified by a `file://` URI.

        Raises:
            InvalidTarget: If the URI uses any other scheme.
        """
        if not uri.startswith(FILE_URI_PREFIX):
            raise InvalidTarget(uri, "Only 'file://' URIs are supported.")
        path = self._existing(uri[len(FILE_URI_PREFIX) :])
        try:
            data = path.read_bytes()
        except OSError as e:
            raise IOFailure.from_os_error(e, path) from e
        return FileContent(
            uri=to_uri(path), path=path, mime_type=guess_mime_type(path), data=data
        )

    # ================================
    # Writing
    # ================================

    def write_file(self, path: str, content: str) -> str:
        target = self.guard.resolve(path).path
        try:
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise IOFailure.from_os_error(e, target) from e
        self._touched(target)
        return f"Successfully wrote to {path}"

    def edit_file(
        self, path: str, edits: list[EditOperation], dry_run: bool = False
    ) -> str:
        target = self._existing(path)
        result = self.edit_engine.apply(target, edits, dry_run=dry_run)
        if not dry_run:
            self._touched(target)
        return result.diff

    def create_directory(self, path: str) -> str:
        target = self.guard.resolve(path).path
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure.from_os_error(e, target) from e
        self._touched(target)
        return f"Successfully created directory {path}"

    def move_file(self, source: str, destination: str) -> str:
        """Move or rename a file or directory. Never overwrites."""
        src = self._existing(source)
        dst = self.guard.resolve(destination).path
        if os.path.lexists(dst):
            raise IOFailure(f"Destination already exists: {destination}", dst)
        try:
            shutil.move(src, dst)
        except OSError as e:
            raise IOFailure.from_os_error(e, src) from e
        if self.index is not None:
            self.index.remove(src)
            self.index.upsert(dst)
        return f"Successfully moved {source} to {destination}"

    # ================================
    # Listing and search
    # ================================

    def list_directory(self, path: str) -> str:
        directory = self._existing(path)
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda entry: entry.name)
                lines = [
                    f"[DIR] {entry.name}" if entry.is_dir() else f"[FILE] {entry.name}"
                    for entry in entries
                ]
        except OSError as e:
            raise IOFailure.from_os_error(e, directory) from e
        return "\n".join(lines)

    def directory_tree(self, path: str) -> str:
        root = self._existing(path)
        tree = TreeBuilder().build(root)
        return json.dumps(tree.to_dict(), indent=2)

    def search_files(
        self, path: str, pattern: str, exclude_patterns: list[str] | None = None
    ) -> str:
        """Find entries under `path` whose relative path or name matches `pattern`.

        Patterns are segment-aware globs (see `compile_glob`). Exclude patterns
        are matched against the path relative to `path` only, so `excluded`
        prunes the top-level directory of that name but not `a/excluded`.
        Excluded directories are pruned. Unreadable directories are skipped.
        """
        start = self._existing(path)
        matcher = compile_glob(pattern)
        excludes = [compile_glob(exclude) for exclude in exclude_patterns or []]

        def is_excluded(relative: str) -> bool:
            return any(exclude.fullmatch(relative) for exclude in excludes)

        def is_match(relative: str, name: str) -> bool:
            return bool(matcher.fullmatch(relative) or matcher.fullmatch(name))

        def on_error(error: OSError) -> None:
            logger.warning(f"Skipping unreadable directory during search: {error}")

        results: list[str] = []
        for current, dirnames, filenames in os.walk(start, onerror=on_error):
            current_path = Path(current)
            dirnames.sort()
            kept: list[str] = []
            for name in dirnames:
                relative = (current_path / name).relative_to(start).as_posix()
                if is_excluded(relative):
                    continue
                kept.append(name)
                if is_match(relative, name):
                    results.append(str(current_path / name))
            dirnames[:] = kept

            for name in sorted(filenames):
                relative = (current_path / name).relative_to(start).as_posix()
                if is_excluded(relative):
                    continue
                if is_match(relative, name):
                    results.append(str(current_path / name))

        return "\n".join(results) if results else NO_MATCHES

    # ================================
    # Metadata
    # ================================

    def get_file_info(self, path: str) -> str:
        target = self._existing(path)
        try:
            st = target.stat()
        except OSError as e:
            raise IOFailure.from_os_error(e, target) from e

        try:
            permissions = _permissions(target, st)
        except UnsupportedAttribute as e:
            logger.debug(e.message)
            permissions = UNSUPPORTED_PLACEHOLDER

        created = getattr(st, "st_birthtime", st.st_ctime)
        return "\n".join(
            [
                f"size: {st.st_size}",
                f"created: {_format_time(created)}",
                f"modified: {_format_time(st.st_mtime)}",
                f"accessed: {_format_time(st.st_atime)}",
                f"isDirectory: {str(stat.S_ISDIR(st.st_mode)).lower()}",
                f"isFile: {str(stat.S_ISREG(st.st_mode)).lower()}",
                f"permissions: {permissions}",
            ]
        )

    def list_allowed_directories(self) -> str:
        roots = "\n".join(str(root) for root in self.guard.allowed_roots)
        return f"Allowed directories:\n{roots}"
