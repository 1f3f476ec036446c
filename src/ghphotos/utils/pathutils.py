"""Utilities for working with backup and remote paths."""

from __future__ import annotations

import fnmatch
import posixpath
from pathlib import Path
from typing import Iterable

_WILDCARDS = ("*", "?", "[")


def to_posix(value: str | Path) -> str:
    """Return *value* with every backslash turned into a forward slash."""

    return str(value).replace("\\", "/")


def has_wildcard(pattern: str) -> bool:
    return any(char in pattern for char in _WILDCARDS)


def matches_ignore_pattern(path: str | Path, pattern: str) -> bool:
    """Return ``True`` if *path* is matched by the ignore *pattern*.

    Patterns without wildcards match as a plain substring of the path. A
    pattern ending in ``/*`` matches when ``/<dir>/`` is one of the path's
    directories. Any other pattern is globbed against every path component
    and against the basename.
    """

    rel = to_posix(path)
    if not pattern:
        return False
    if not has_wildcard(pattern):
        return pattern in rel
    if pattern.endswith("/*"):
        directory = pattern[:-2].strip("/")
        return f"/{directory}/" in f"/{rel}"
    components = [part for part in rel.split("/") if part]
    basename = posixpath.basename(rel)
    if fnmatch.fnmatchcase(basename, pattern):
        return True
    return any(fnmatch.fnmatchcase(part, pattern) for part in components)


def is_ignored(path: str | Path, patterns: Iterable[str]) -> bool:
    """Return ``True`` if any of *patterns* matches *path*."""

    return any(matches_ignore_pattern(path, pattern) for pattern in patterns)


def is_within(path: Path, root: Path) -> bool:
    """Return ``True`` when *path* resolves to *root* or a descendant of it."""

    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True
