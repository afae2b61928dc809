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
One poll iteration of the tailing engine.

A TailCycle classifies the watched path, reads whatever delta the
classification calls for (draining a renamed-away file first), splits it
into records, decodes and dispatches them, and finally commits the
processed offset to the position store.

All blocking file and store I/O goes through ``asyncio.to_thread`` so the
event loop that owns the tailer is never blocked by the filesystem.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, BinaryIO, Callable, List, Optional, Tuple

import structlog

try:  # pragma: no cover - import wiring
    from .decoders import Decoder, DecodeError
    from .position_store import PersistedPosition, PositionStore
    from .record_splitter import RecordSplitter
    from .rotation_detector import FileIdentity, FileObservation, RotationClass, RotationDetector
except ImportError:  # pragma: no cover - import wiring
    from decoders import Decoder, DecodeError  # type: ignore[no-redef]
    from position_store import PersistedPosition, PositionStore  # type: ignore[no-redef]
    from record_splitter import RecordSplitter  # type: ignore[no-redef]
    from rotation_detector import (  # type: ignore[no-redef]
        FileIdentity,
        FileObservation,
        RotationClass,
        RotationDetector,
    )

logger = structlog.get_logger()

READ_CHUNK_SIZE = 64 * 1024


class InitialPosition(str, Enum):
    """Where to start reading when no usable checkpoint exists."""
    BEGINNING = "beginning"
    END = "end"


@dataclass
class CycleStats:
    """Counters surfaced through the tailer status."""
    records_dispatched: int = 0
    decode_failures: int = 0
    rotations: int = 0
    bytes_read: int = 0
    failed_cycles: int = 0


@dataclass
class TailState:
    """In-memory state of one running tailer. Mutated only by TailCycle."""
    path: Path
    identity: Optional[FileIdentity] = None
    offset: int = 0
    missing_warned: bool = False
    splitter: RecordSplitter = field(default_factory=RecordSplitter)
    handle: Optional[BinaryIO] = None
    checkpoint: Optional[PersistedPosition] = None
    committed: Optional[Tuple[str, int]] = None

    @property
    def partial_tail(self) -> bytes:
        return self.splitter.partial_tail

    @property
    def processed_offset(self) -> int:
        """End of the last complete record; what is safe to checkpoint."""
        return self.offset - len(self.splitter.partial_tail)

    def close(self) -> None:
        if self.handle is not None:
            self.handle.close()
            self.handle = None


def _read(handle: BinaryIO, position: int, length: int) -> bytes:
    handle.seek(position)
    return handle.read(length)


def _size_of(handle: BinaryIO) -> int:
    return os.fstat(handle.fileno()).st_size


def _open(path: Path) -> Tuple[BinaryIO, FileObservation]:
    handle = open(path, "rb")
    try:
        stat = os.fstat(handle.fileno())
    except OSError:
        handle.close()
        raise
    return handle, FileObservation(FileIdentity.from_stat(stat, path), stat.st_size)


class TailCycle:
    """Executes poll iterations against a TailState."""

    def __init__(
        self,
        state: TailState,
        decoder: Decoder,
        notify: Callable[[Any], Awaitable[None]],
        store: Optional[PositionStore] = None,
        initial_position: InitialPosition = InitialPosition.BEGINNING,
        should_stop: Optional[Callable[[], bool]] = None,
        log: Any = None,
    ) -> None:
        """
        Initialize tail cycle.

        Args:
            state: Tail state owned by the calling tailer
            decoder: Record decoder
            notify: Coroutine fanning one decoded value out to subscribers
            store: Optional position store for checkpoints
            initial_position: Start policy when no usable checkpoint exists
            should_stop: Polled between records to bound shutdown latency
            log: Bound structlog logger (defaults to the module logger)
        """
        self.state = state
        self.decoder = decoder
        self.notify = notify
        self.store = store
        self.initial_position = initial_position
        self.should_stop = should_stop or (lambda: False)
        self.log = log if log is not None else logger.bind(path=str(state.path))
        self.detector = RotationDetector(state.path)
        self.stats = CycleStats()

    # ------------------------------------------------------------------
    # Establishing the starting position
    # ------------------------------------------------------------------

    async def establish(self) -> bool:
        """
        Open the file at the path and choose the starting offset.

        A checkpoint is honoured only if its fingerprint matches the file
        now at the path; otherwise the initial position policy applies.

        Returns:
            True if the file was opened, False if it does not exist.
        """
        try:
            handle, observation = await asyncio.to_thread(_open, self.state.path)
        except FileNotFoundError:
            return False

        checkpoint = self.state.checkpoint
        fingerprint = observation.identity.fingerprint

        if checkpoint is not None and checkpoint.fingerprint == fingerprint:
            offset = checkpoint.offset
            self.state.committed = (fingerprint, checkpoint.offset)
            source = "checkpoint"
        else:
            offset = self._policy_offset(observation.size)
            source = self.initial_position.value
            if checkpoint is not None:
                self.log.info(
                    "checkpoint_identity_mismatch",
                    checkpoint_fingerprint=checkpoint.fingerprint,
                    fingerprint=fingerprint,
                )

        # The checkpoint describes the file seen at start only.
        self.state.checkpoint = None
        self.state.close()
        self.state.handle = handle
        self.state.identity = observation.identity
        self.state.offset = offset
        self.state.splitter.reset()

        self.log.info(
            "tailer_file_opened",
            fingerprint=fingerprint,
            size=observation.size,
            offset=offset,
            position_source=source,
        )
        return True

    def _policy_offset(self, size: int) -> int:
        if self.initial_position is InitialPosition.END:
            return size
        return 0

    # ------------------------------------------------------------------
    # One tick
    # ------------------------------------------------------------------

    async def run(self) -> RotationClass:
        """
        Execute one poll iteration.

        Returns:
            The RotationClass observed at the start of the tick.

        Raises:
            OSError: If the source file could not be read; nothing is committed.
        """
        state = self.state

        observation = await asyncio.to_thread(self.detector.observe)
        if state.identity is None and observation is not None:
            # Missing at start (or lost mid-rotation): resolve the position now.
            if not await self.establish():
                observation = None

        rotation = RotationDetector.classify(state.identity, state.offset, observation)

        if rotation is RotationClass.MISSING:
            self._on_missing()
            return rotation

        assert observation is not None

        if state.missing_warned:
            state.missing_warned = False
            self.log.info("tailer_file_reappeared", fingerprint=observation.identity.fingerprint)

        if rotation is RotationClass.ROTATED_RENAME:
            if not await self._on_rename(observation):
                return rotation
        elif rotation is RotationClass.ROTATED_TRUNCATE:
            self._on_truncate(observation)

        if rotation is not RotationClass.UNCHANGED and state.handle is not None:
            size = await asyncio.to_thread(_size_of, state.handle)
            if size > state.offset:
                # A stop request may cut the batch short; commit what was dispatched.
                await self._consume(state.handle, state.offset, size)

        await self._commit()
        return rotation

    def _on_missing(self) -> None:
        if not self.state.missing_warned:
            self.state.missing_warned = True
            self.log.warning("tailer_file_not_found", path=str(self.state.path))

    async def _on_rename(self, observation: FileObservation) -> bool:
        """Drain the old file, then switch to the new one. False if stopped."""
        state = self.state
        old_identity = state.identity
        drained = 0

        if state.handle is not None:
            old_size = await asyncio.to_thread(_size_of, state.handle)
            if old_size > state.offset:
                drained = old_size - state.offset
                if await self._consume(state.handle, state.offset, old_size):
                    return False

        dropped = state.splitter.reset()
        if dropped:
            self.log.warning(
                "partial_record_discarded",
                fingerprint=old_identity.fingerprint if old_identity else None,
                bytes=len(dropped),
            )

        state.close()
        state.identity = None
        state.offset = 0
        state.committed = None
        self.stats.rotations += 1

        log_method = self.log.info if drained or dropped else self.log.debug
        log_method(
            "tailer_file_rotated",
            rotation="rename",
            old_fingerprint=old_identity.fingerprint if old_identity else None,
            new_fingerprint=observation.identity.fingerprint,
            drained_bytes=drained,
        )

        try:
            handle, current = await asyncio.to_thread(_open, state.path)
        except FileNotFoundError:
            # Replaced again before we could open it; the next tick re-resolves.
            return False
        state.handle = handle
        state.identity = current.identity
        state.offset = self._policy_offset(current.size)
        return True

    def _on_truncate(self, observation: FileObservation) -> None:
        state = self.state
        self.stats.rotations += 1
        self.log.info(
            "tailer_file_rotated",
            rotation="truncate",
            fingerprint=observation.identity.fingerprint,
            previous_offset=state.offset,
            size=observation.size,
        )
        state.splitter.reset()
        state.offset = 0

    async def _consume(self, handle: BinaryIO, start: int, end: int) -> bool:
        """
        Read ``[start, end)`` from ``handle`` and dispatch complete records.

        Returns:
            True if a stop request interrupted dispatch.
        """
        state = self.state
        position = start

        while position < end:
            chunk = await asyncio.to_thread(
                _read, handle, position, min(READ_CHUNK_SIZE, end - position)
            )
            if not chunk:
                break

            buffer_start = position - len(state.splitter.partial_tail)
            records, _ = state.splitter.feed(chunk)
            position += len(chunk)
            state.offset = position
            self.stats.bytes_read += len(chunk)

            dispatched = await self._dispatch(records)
            if dispatched < len(records):
                state.offset = buffer_start + sum(len(r) + 1 for r in records[:dispatched])
                state.splitter.reset()
                return True

            if self.should_stop():
                return True

        return False

    async def _dispatch(self, records: List[bytes]) -> int:
        """Decode and notify records in order. Returns how many were handled."""
        for index, record in enumerate(records):
            if self.should_stop():
                return index

            try:
                value = self.decoder.decode(record)
            except DecodeError as e:
                self.stats.decode_failures += 1
                self.log.warning("record_decode_failed", error=str(e), record=record[:100])
                continue
            except Exception as e:
                self.stats.decode_failures += 1
                self.log.error(
                    "record_decode_failed",
                    error=str(e),
                    record=record[:100],
                    exc_info=True,
                )
                continue

            await self.notify(value)
            self.stats.records_dispatched += 1

        return len(records)

    async def _commit(self) -> None:
        """Persist the processed offset if it changed since the last commit."""
        state = self.state
        if self.store is None or state.identity is None:
            return

        checkpoint = (state.identity.fingerprint, state.processed_offset)
        if checkpoint == state.committed:
            return

        try:
            await asyncio.to_thread(self.store.commit, state.path, *checkpoint)
        except OSError as e:
            self.log.error(
                "position_commit_failed",
                state_file=str(self.store.state_file),
                offset=checkpoint[1],
                error=str(e),
            )
            return
        state.committed = checkpoint
