"""Hashing utilities."""

from __future__ import annotations

import hashlib
from pathlib import Path

import xxhash

_CHUNK_SIZE = 1024 * 1024


def _digest(path: Path, hasher, chunk_size: int) -> str:
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def file_sha256(path: Path, *, chunk_size: int = _CHUNK_SIZE) -> str:
    """Return the hex SHA-256 digest of *path*."""

    return _digest(path, hashlib.sha256(), chunk_size)


def file_sha1(path: Path, *, chunk_size: int = _CHUNK_SIZE) -> str:
    """Return the hex SHA-1 digest of *path*.

    Used when verifying extracted copies against the hashed backup files.
    """

    return _digest(path, hashlib.sha1(), chunk_size)


def file_xxh3(path: Path, *, chunk_size: int = _CHUNK_SIZE) -> str:
    """Return the XXH3 128-bit hash of *path*."""

    return _digest(path, xxhash.xxh3_128(), chunk_size)


def same_content(first: Path, second: Path) -> bool:
    """Return ``True`` when both files have identical size and XXH3 digest."""

    if first.stat().st_size != second.stat().st_size:
        return False
    return file_xxh3(first) == file_xxh3(second)
