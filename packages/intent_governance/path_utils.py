"""
Path Utilities - canonical workspace-relative paths

Every path the engine compares (scope patterns, stale cache keys, ledger
relative_path) goes through here first:
- Separators canonicalized to "/"
- "." segments and duplicate separators removed
- ".." resolved lexically, escapes above the workspace reported
- Absolute paths accepted only when under workspace_root

Matching stays case-sensitive; no case folding on any platform.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Optional, Union


class PathViolation(Enum):
    """Why a target cannot be expressed relative to the workspace."""
    EMPTY_PATH = "empty_path"
    PATH_TRAVERSAL = "path_traversal"
    OUTSIDE_WORKSPACE = "outside_workspace"


@dataclass
class RelativePathResult:
    """Result of canonicalization."""
    rel_path: str  # Canonical relative path ("" when invalid)
    violation: Optional[PathViolation] = None

    @property
    def ok(self) -> bool:
        return self.violation is None


def normalize_relative_path(path: str) -> RelativePathResult:
    """
    Canonicalize a relative path without touching the filesystem.

    Examples:
        "src\\auth\\mw.ts"   -> "src/auth/mw.ts"
        "./src//a/../b.ts"  -> "src/b.ts"
        "../outside.ts"     -> PATH_TRAVERSAL
    """
    text = path.replace("\\", "/").strip()
    if not text:
        return RelativePathResult(rel_path="", violation=PathViolation.EMPTY_PATH)

    parts = []
    for segment in text.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not parts:
                return RelativePathResult(rel_path="", violation=PathViolation.PATH_TRAVERSAL)
            parts.pop()
            continue
        parts.append(segment)

    if not parts:
        return RelativePathResult(rel_path="", violation=PathViolation.EMPTY_PATH)

    return RelativePathResult(rel_path="/".join(parts))


def to_workspace_relative(
    target: Union[str, Path],
    workspace_root: Union[str, Path]
) -> RelativePathResult:
    """
    Express target relative to workspace_root.

    Args:
        target: Relative path, or absolute path under workspace_root
        workspace_root: Workspace root directory

    Returns:
        RelativePathResult; violation set when target escapes the workspace
    """
    text = str(target).replace("\\", "/")

    if PurePosixPath(text).is_absolute() or os.path.isabs(str(target)):
        root = os.path.normpath(os.path.abspath(str(workspace_root))).replace("\\", "/")
        absolute = os.path.normpath(str(target)).replace("\\", "/")
        if absolute == root:
            return RelativePathResult(rel_path="", violation=PathViolation.EMPTY_PATH)
        if not absolute.startswith(root.rstrip("/") + "/"):
            return RelativePathResult(rel_path="", violation=PathViolation.OUTSIDE_WORKSPACE)
        text = absolute[len(root.rstrip("/")) + 1:]

    return normalize_relative_path(text)


def resolve_in_workspace(rel_path: str, workspace_root: Union[str, Path]) -> Path:
    """Absolute filesystem path for a canonical relative path."""
    return Path(workspace_root) / PurePosixPath(rel_path)
