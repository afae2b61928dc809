# Copyright (c) 2025 Stephen Clau
#
# This file is part of File Source Agent.
#
# File Source Agent is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
File identity and rotation classification.

The detector compares what a path resolves to on this poll against what the
tailer saw before. Identity (device + inode) is the primary signal; size is
only consulted when the identity is unchanged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class RotationClass(str, Enum):
    """Outcome of comparing a path across two polls."""
    UNCHANGED = "unchanged"
    GROWN = "grown"
    ROTATED_RENAME = "rotated_rename"
    ROTATED_TRUNCATE = "rotated_truncate"
    MISSING = "missing"


@dataclass(frozen=True, slots=True)
class FileIdentity:
    """Comparable fingerprint of the physical file a path denotes."""
    device: int
    inode: int
    # Only set when the platform reports no inode (st_ino == 0).
    created_ns: int = 0
    path: str = ""

    @classmethod
    def from_stat(cls, stat: os.stat_result, path: Path | str = "") -> "FileIdentity":
        if stat.st_ino:
            return cls(device=stat.st_dev, inode=stat.st_ino)
        created = getattr(stat, "st_birthtime_ns", None) or stat.st_ctime_ns
        return cls(device=stat.st_dev, inode=0, created_ns=created, path=str(path))

    @property
    def fingerprint(self) -> str:
        """Stable string form used by the position store."""
        if self.inode:
            return f"{self.device}:{self.inode}"
        return f"{self.device}:ctime:{self.created_ns}:{self.path}"


@dataclass(frozen=True, slots=True)
class FileObservation:
    """What the path resolved to during one poll."""
    identity: FileIdentity
    size: int


class RotationDetector:
    """Resolve a path and classify how it changed since the previous poll."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def observe(self) -> Optional[FileObservation]:
        """
        Stat the path.

        Returns:
            FileObservation, or None if the path does not resolve to a file.

        Raises:
            OSError: For failures other than the file being absent.
        """
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return None
        return FileObservation(FileIdentity.from_stat(stat, self.path), stat.st_size)

    @staticmethod
    def classify(
        previous: Optional[FileIdentity],
        offset: int,
        current: Optional[FileObservation],
    ) -> RotationClass:
        """
        Classify the change between the previous identity and this poll.

        Args:
            previous: Identity seen on the previous poll, None on the first one.
            offset: Read offset into the previous file.
            current: This poll's observation, None if the path is missing.

        Returns:
            RotationClass for this tick.
        """
        if current is None:
            return RotationClass.MISSING

        if previous is None:
            return RotationClass.GROWN if current.size > offset else RotationClass.UNCHANGED

        # Identity wins over size: a replaced file is a rename even if larger.
        if current.identity != previous:
            return RotationClass.ROTATED_RENAME

        if current.size < offset:
            return RotationClass.ROTATED_TRUNCATE

        if current.size == offset:
            return RotationClass.UNCHANGED

        return RotationClass.GROWN
