"""Recursive directory-tree snapshots without recursion.

`TreeBuilder` walks a subtree with an explicit stack of
`(directory, children)` frames, so arbitrarily deep trees cost heap memory
proportional to the pending directories instead of Python stack depth.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from conduit_fs.filesystem.errors import NotFound

logger = logging.getLogger(__name__)

NodeType = Literal["file", "directory"]


@dataclass
class TreeNode:
    """One entry of a directory tree.

    Directories always carry a `children` list, empty when the directory is
    empty. Files carry `None` and omit the key when serialized.
    """

    name: str
    type: NodeType
    children: list[TreeNode] | None = None

    @classmethod
    def file(cls, name: str) -> TreeNode:
        return cls(name=name, type="file")

    @classmethod
    def directory(cls, name: str) -> TreeNode:
        return cls(name=name, type="directory", children=[])

    def to_dict(self) -> dict[str, Any]:
        """Serialize to nested dictionaries, iteratively."""
        root: dict[str, Any] = {"name": self.name, "type": self.type}
        stack: list[tuple[TreeNode, dict[str, Any]]] = [(self, root)]
        while stack:
            node, out = stack.pop()
            if node.children is None:
                continue
            out["children"] = []
            for child in node.children:
                child_out: dict[str, Any] = {"name": child.name, "type": child.type}
                out["children"].append(child_out)
                stack.append((child, child_out))
        return root


@dataclass
class TreeBuilder:
    """Builds `TreeNode` snapshots of directory subtrees.

    Unreadable directories do not fail the build: they are logged, recorded in
    `skipped`, and appear in the tree with no children.
    """

    skipped: list[Path] = field(default_factory=list)

    def build(self, root: str | Path) -> TreeNode:
        """Snapshot the subtree rooted at `root`.

        Raises:
            NotFound: If `root` does not exist.
        """
        root = Path(root)
        if not os.path.lexists(root):
            raise NotFound(root)

        name = root.name or str(root)
        if not root.is_dir():
            return TreeNode.file(name)

        tree = TreeNode.directory(name)
        stack: list[tuple[Path, list[TreeNode]]] = [(root, tree.children)]

        while stack:
            directory, children = stack.pop()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda entry: entry.name)
            except OSError as e:
                logger.warning(f"Could not list directory {directory}: {e}")
                self.skipped.append(directory)
                continue

            for entry in entries:
                try:
                    is_dir = entry.is_dir()
                    is_link = entry.is_symlink()
                except OSError as e:
                    logger.warning(f"Could not stat {entry.path}: {e}")
                    self.skipped.append(Path(entry.path))
                    continue

                if not is_dir:
                    children.append(TreeNode.file(entry.name))
                    continue

                node = TreeNode.directory(entry.name)
                children.append(node)
                # Symlinked directories are listed but not entered, so link
                # cycles and links leaving the allowed roots are never walked.
                if not is_link:
                    stack.append((Path(entry.path), node.children))

        return tree
