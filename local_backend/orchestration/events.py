"""
File-change events and glob matching for watched sources.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional, Union


class ChangeKind(Enum):
    """Kinds of file-change notifications."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileChange:
    """A change to one source file, path relative to the project root."""
    path: str
    kind: ChangeKind = ChangeKind.MODIFIED


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    regex = ".*".join(
        "[^/]*".join(re.escape(piece) for piece in part.split("*"))
        for part in pattern.split("**")
    )
    return re.compile(f"^{regex}$")


def match_pattern(path: str, pattern: str) -> bool:
    """
    Match a relative path against a glob pattern.

    ``**`` matches across directories, ``*`` matches within one path segment.
    """
    return _compile(pattern).match(path) is not None


def relative_path(path: Union[str, Path], root: Union[str, Path]) -> str:
    """Return ``path`` relative to ``root`` with forward slashes."""
    path = Path(path)
    if path.is_absolute():
        try:
            path = path.relative_to(root)
        except ValueError:
            pass
    return path.as_posix()


def should_watch(
    path: str,
    patterns: Iterable[str],
    ignore: Optional[Iterable[str]] = None,
) -> bool:
    """True if ``path`` matches any watch pattern and no ignore pattern."""
    if not any(match_pattern(path, p) for p in patterns):
        return False
    return not any(match_pattern(path, p) for p in ignore or ())
