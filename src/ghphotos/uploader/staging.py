"""Populate a batch staging directory without duplicating file data."""

from __future__ import annotations

import os
import shutil
from enum import Enum
from pathlib import Path

from ..errors import AssetNotFoundError
from ..utils.hashutils import same_content
from ..utils.logging import get_logger

logger = get_logger()


class StageMethod(str, Enum):
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    COPY = "copy"
    DUPLICATE = "duplicate"


class TargetCollisionError(FileExistsError):
    """Raised when two sources with different content share one target path."""


class LinkStager:
    """Place source files into a staging tree by symlink, hard link or copy.

    A method that fails once (no symlink privilege on Windows, a staging
    directory on another filesystem) is not tried again for the lifetime of
    the stager.
    """

    def __init__(self) -> None:
        self.symlinks_supported = True
        self.hardlinks_supported = True

    def link_or_copy(self, source: Path, target: Path) -> StageMethod:
        """Make *target* expose the bytes of *source*.

        Raises
        ------
        AssetNotFoundError
            Raised when *source* does not exist.
        TargetCollisionError
            Raised when *target* already holds different content.
        """

        if not source.is_file():
            raise AssetNotFoundError(f"source file not found: {source}")
        if os.path.lexists(target):
            if same_content(source, target):
                logger.debug("Skipping duplicate staged file %s", target)
                return StageMethod.DUPLICATE
            raise TargetCollisionError(f"target path collision: {target.name}")

        target.parent.mkdir(parents=True, exist_ok=True)
        absolute = Path(os.path.abspath(source))

        if self.symlinks_supported:
            try:
                os.symlink(absolute, target)
                return StageMethod.SYMLINK
            except (OSError, NotImplementedError) as exc:
                logger.debug("Symlinks unavailable, falling back to hard links: %s", exc)
                self.symlinks_supported = False

        if self.hardlinks_supported:
            try:
                os.link(absolute, target)
                return StageMethod.HARDLINK
            except OSError as exc:
                logger.debug("Hard links unavailable, falling back to copies: %s", exc)
                self.hardlinks_supported = False

        shutil.copy2(absolute, target)
        return StageMethod.COPY


__all__ = ["LinkStager", "StageMethod", "TargetCollisionError"]
