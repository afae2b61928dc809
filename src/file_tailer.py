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
File tailer scheduling loop.

Runs one TailCycle, waits a fixed delay, and repeats until stopped.
The delay is measured from the end of one cycle to the start of the next,
so slow decoders or subscribers throttle polling instead of piling up work.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

try:  # pragma: no cover - import wiring
    from .decoders import Decoder
    from .position_store import PositionStore
    from .tail_cycle import InitialPosition, TailCycle, TailState
except ImportError:  # pragma: no cover - import wiring
    from decoders import Decoder  # type: ignore[no-redef]
    from position_store import PositionStore  # type: ignore[no-redef]
    from tail_cycle import InitialPosition, TailCycle, TailState  # type: ignore[no-redef]

logger = structlog.get_logger()


class TailerState(str, Enum):
    """Lifecycle of a FileTailer. STOPPED is terminal."""
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class TailerStateError(RuntimeError):
    """Raised on an invalid lifecycle transition."""
    pass


class FileTailer:
    """
    Asynchronous polling tailer for a single file.

    Owns the TailState and the position store handle; the loop task is the
    only code that touches either while running.
    """

    def __init__(
        self,
        log_path: Path,
        decoder: Decoder,
        notify: Callable[[Any], Awaitable[None]],
        poll_interval: float = 0.5,
        store: Optional[PositionStore] = None,
        initial_position: InitialPosition = InitialPosition.BEGINNING,
        log: Any = None,
    ):
        """
        Initialize file tailer.

        Args:
            log_path: Path to the file to monitor
            decoder: Decoder applied to each complete record
            notify: Async function called with each decoded value
            poll_interval: Delay between the end of one poll and the next (seconds)
            store: Optional position store for checkpoints
            initial_position: Where to start without a usable checkpoint
            log: Bound structlog logger
        """
        self.log_path = Path(log_path)
        self.poll_interval = poll_interval
        self.store = store
        self.log = log if log is not None else logger.bind(path=str(self.log_path))
        self._state = TailerState.CREATED
        self._task: Optional[asyncio.Task] = None
        self._starting = False
        self._stop_event = asyncio.Event()
        self._tail_state = TailState(path=self.log_path)
        self.cycle = TailCycle(
            state=self._tail_state,
            decoder=decoder,
            notify=notify,
            store=store,
            initial_position=initial_position,
            should_stop=self._stop_event.is_set,
            log=self.log,
        )

    @property
    def state(self) -> TailerState:
        return self._state

    async def start(self) -> None:
        """
        Load the checkpoint, open the file and schedule the tail loop.

        Returns once the loop task is scheduled, not once it has ticked.

        Raises:
            TailerStateError: If the tailer was already started or stopped.
        """
        if self._state is not TailerState.CREATED or self._starting:
            raise TailerStateError(f"Cannot start tailer in state '{self._state.value}'")
        self._starting = True

        if self.store is not None:
            try:
                self._tail_state.checkpoint = await asyncio.to_thread(
                    self.store.load, self.log_path
                )
            except OSError as e:
                self.log.warning(
                    "position_state_unreadable",
                    state_file=str(self.store.state_file),
                    error=str(e),
                )

        try:
            await self.cycle.establish()
        except OSError as e:
            # Retried by the first tick.
            self.log.warning("tailer_open_failed", error=str(e))

        # stop() may have run while the checkpoint or file was loading.
        if self._stop_event.is_set():
            self._tail_state.close()
            self.log.info("log_tailer_start_aborted")
            return

        self._state = TailerState.RUNNING
        self._task = asyncio.create_task(self._tail_loop())
        self.log.info(
            "log_tailer_started",
            poll_interval=self.poll_interval,
            initial_position=self.cycle.initial_position.value,
        )

    async def stop(self) -> None:
        """
        Stop tailing and wait for the in-flight cycle to finish.

        Idempotent. The loop is never cancelled mid-cycle.
        """
        if self._state is TailerState.STOPPED:
            return

        self._state = TailerState.STOPPED
        self._stop_event.set()

        if self._task is not None:
            await self._task

        self._tail_state.close()
        self.log.info("log_tailer_stopped", offset=self._tail_state.offset)

    async def _tail_loop(self) -> None:
        """Main tailing loop."""
        while not self._stop_event.is_set():
            try:
                await self.cycle.run()
            except Exception as e:
                self.cycle.stats.failed_cycles += 1
                self.log.error(
                    "tail_cycle_failed",
                    error=str(e),
                    exc_info=True,
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        self.log.debug("tail_loop_exited")

    def is_healthy(self) -> bool:
        """True while running with a live loop task."""
        return (
            self._state is TailerState.RUNNING
            and self._task is not None
            and not self._task.done()
        )

    def status(self) -> Dict[str, Any]:
        """Snapshot of the tailer for status reporting."""
        tail_state = self._tail_state
        stats = self.cycle.stats
        return {
            "state": self._state.value,
            "path": str(self.log_path),
            "fingerprint": tail_state.identity.fingerprint if tail_state.identity else None,
            "offset": tail_state.offset,
            "committed_offset": tail_state.committed[1] if tail_state.committed else None,
            "missing": tail_state.missing_warned,
            "records_dispatched": stats.records_dispatched,
            "decode_failures": stats.decode_failures,
            "rotations": stats.rotations,
            "bytes_read": stats.bytes_read,
            "failed_cycles": stats.failed_cycles,
        }
