"""Exact-match text editing with unified diff output."""

import difflib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from conduit_fs.filesystem.errors import IOFailure, NoExactMatch

logger = logging.getLogger(__name__)

DIFF_CONTEXT_LINES = 3


@dataclass(frozen=True)
class EditOperation:
    """Replace the first occurrence of `old_text` with `new_text`."""

    old_text: str
    new_text: str


@dataclass(frozen=True)
class EditResult:
    diff: str
    """Unified diff wrapped in a fenced ```diff block."""

    content: str
    """The edited document, LF line endings."""

    dry_run: bool


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n")


def format_diff(original: str, modified: str, path: str | Path) -> str:
    """Render a unified diff of two documents labeled with `path` on both sides."""
    label = str(path)
    lines = difflib.unified_diff(
        original.split("\n"),
        modified.split("\n"),
        fromfile=label,
        tofile=label,
        n=DIFF_CONTEXT_LINES,
        lineterm="",
    )
    return "```diff\n" + "\n".join(lines) + "\n```"


def apply_edits(content: str, edits: Iterable[EditOperation], path: str | Path) -> str:
    """Apply edits in order, each against the result of the ones before it.

    Args:
        content: Document to edit, already LF-normalized.
        edits: Substitutions to apply in list order.
        path: Used only to label errors.

    Returns:
        The edited document.

    Raises:
        NoExactMatch: If an edit's old text is empty or not present in the
            current working content.
    """
    working = content
    for edit in edits:
        old_text = normalize_line_endings(edit.old_text)
        new_text = normalize_line_endings(edit.new_text)
        if not old_text or old_text not in working:
            raise NoExactMatch(path, old_text)
        working = working.replace(old_text, new_text, 1)
    return working


class EditEngine:
    """Applies a list of exact-text substitutions to a file.

    Edits are all-or-nothing: the file is written only after every edit has
    matched, and never on a dry run.
    """

    def apply(
        self,
        path: str | Path,
        edits: Iterable[EditOperation],
        dry_run: bool = False,
    ) -> EditResult:
        """Edit the file at `path` and return the resulting diff.

        The caller must have resolved `path` through PathGuard.

        Raises:
            NoExactMatch: If any edit fails to match. The file is untouched.
            NotFound: If the file does not exist.
            IOFailure: If reading or writing the file fails.
        """
        path = Path(path)
        try:
            original = normalize_line_endings(path.read_text(encoding="utf-8"))
        except UnicodeDecodeError as e:
            raise IOFailure(f"File is not valid UTF-8 text: {path}", path) from e
        except OSError as e:
            raise IOFailure.from_os_error(e, path) from e

        modified = apply_edits(original, edits, path)
        diff = format_diff(original, modified, path)

        if not dry_run:
            try:
                path.write_text(modified, encoding="utf-8")
            except OSError as e:
                raise IOFailure.from_os_error(e, path) from e
            logger.debug(f"Applied edits to {path}")

        return EditResult(diff=diff, content=modified, dry_run=dry_run)
