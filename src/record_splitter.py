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
Newline record splitting for tailed byte streams.

Turns arbitrary byte deltas into complete records, holding back the bytes
after the last delimiter until a later delta terminates them.
"""

from __future__ import annotations

from typing import List, Tuple

DELIMITER = b"\n"


class RecordSplitter:
    """Stateful splitter that carries a partial tail between feeds."""

    def __init__(self, delimiter: bytes = DELIMITER) -> None:
        if len(delimiter) != 1:
            raise ValueError(f"delimiter must be a single byte, got {delimiter!r}")
        self.delimiter = delimiter
        self._partial = b""

    @property
    def partial_tail(self) -> bytes:
        """Bytes read but not yet terminated by a delimiter."""
        return self._partial

    def feed(self, data: bytes) -> Tuple[List[bytes], bytes]:
        """
        Split ``data`` (prefixed by the held-back tail) into records.

        Args:
            data: Newly read bytes, possibly empty.

        Returns:
            Tuple of (complete records without delimiter, leftover bytes).
        """
        if not data:
            return [], self._partial

        buffer = self._partial + data
        *records, self._partial = buffer.split(self.delimiter)
        return records, self._partial

    def reset(self) -> bytes:
        """Drop the held-back tail and return what was dropped."""
        dropped, self._partial = self._partial, b""
        return dropped
