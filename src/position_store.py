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
Durable checkpoint storage for tailed files.

Positions are kept in a small JSON side file keyed by the absolute source
path. Every commit rewrites the file through a temporary sibling that is
fsynced and atomically renamed over the previous state, so a crash leaves
either the old or the new checkpoint on disk, never a torn one.

The store is single-writer: one tailer owns one store handle.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger()

STATE_VERSION = 1


@dataclass(frozen=True, slots=True)
class PersistedPosition:
    """Last confirmed offset for one file identity."""
    fingerprint: str
    offset: int


def _key(path: Path | str) -> str:
    return os.path.abspath(os.fspath(path))


class PositionStore:
    """JSON-backed mapping of source path -> PersistedPosition."""

    def __init__(self, state_file: Path) -> None:
        """
        Initialize position store.

        Args:
            state_file: Side file holding the checkpoints. Created on first commit.
        """
        self.state_file = Path(state_file)
        self._positions: Dict[str, PersistedPosition] = {}

    def load(self, path: Path | str) -> Optional[PersistedPosition]:
        """
        Read the checkpoint for ``path`` from disk.

        Unreadable or malformed state is treated as "no checkpoint".

        Raises:
            OSError: If the state file exists but cannot be read.
        """
        self._positions = self._read()
        return self._positions.get(_key(path))

    def commit(self, path: Path | str, fingerprint: str, offset: int) -> None:
        """
        Durably record ``offset`` for ``path``. Last write wins.

        Raises:
            OSError: If the state could not be written and synced.
        """
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        self._positions[_key(path)] = PersistedPosition(fingerprint=fingerprint, offset=offset)
        self._write()
        logger.debug(
            "position_committed",
            path=_key(path),
            fingerprint=fingerprint,
            offset=offset,
        )

    def _read(self) -> Dict[str, PersistedPosition]:
        try:
            raw = self.state_file.read_bytes()
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(
                "position_state_unreadable",
                state_file=str(self.state_file),
                error=str(e),
            )
            return {}

        entries = data.get("positions") if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            logger.warning(
                "position_state_unreadable",
                state_file=str(self.state_file),
                error="missing 'positions' mapping",
            )
            return {}

        positions: Dict[str, PersistedPosition] = {}
        for key, entry in entries.items():
            position = self._parse_entry(entry)
            if position is None:
                logger.warning(
                    "position_entry_ignored",
                    state_file=str(self.state_file),
                    path=key,
                )
                continue
            positions[key] = position
        return positions

    @staticmethod
    def _parse_entry(entry: Any) -> Optional[PersistedPosition]:
        if not isinstance(entry, dict):
            return None
        fingerprint = entry.get("fingerprint")
        offset = entry.get("offset")
        if not isinstance(fingerprint, str) or not fingerprint:
            return None
        # bool is an int subclass
        if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
            return None
        return PersistedPosition(fingerprint=fingerprint, offset=offset)

    def _write(self) -> None:
        now = datetime.now(timezone.utc).isoformat()
        data = {
            "version": STATE_VERSION,
            "positions": {
                key: {
                    "fingerprint": position.fingerprint,
                    "offset": position.offset,
                    "updated_at": now,
                }
                for key, position in self._positions.items()
            },
        }

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.state_file.with_name(self.state_file.name + ".tmp")
        with temp_file.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_file, self.state_file)
        self._sync_directory()

    def _sync_directory(self) -> None:
        # Directory fsync makes the rename itself durable; POSIX only.
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self.state_file.parent, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
