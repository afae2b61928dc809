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
File source: the public entry point of the tailing engine.

Binds a decoder and a list of subscribers to one watched file and
supervises the FileTailer that polls it.

Example:
    source = FileSource(
        FileSourceConfig(
            source_file=Path("/var/log/app.log"),
            state_file=Path("/var/lib/agent/app.log.state"),
            decoder="json",
            interval=0.5,
        )
    )

    def on_value(source: FileSource, value: Any) -> None:
        print(source.config.source_file, value)

    source.attach(on_value)
    await source.start()
    ...
    await source.stop()
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

try:  # pragma: no cover - import wiring
    from .config import ConfigurationError
    from .decoders import DecoderBinding, resolve_decoder
    from .file_tailer import FileTailer, TailerStateError
    from .position_store import PositionStore
    from .tail_cycle import InitialPosition
except ImportError:  # pragma: no cover - import wiring
    from config import ConfigurationError  # type: ignore[no-redef]
    from decoders import DecoderBinding, resolve_decoder  # type: ignore[no-redef]
    from file_tailer import FileTailer, TailerStateError  # type: ignore[no-redef]
    from position_store import PositionStore  # type: ignore[no-redef]
    from tail_cycle import InitialPosition  # type: ignore[no-redef]

logger = structlog.get_logger()

Subscriber = Callable[["FileSource", Any], Any]


@dataclass(frozen=True)
class FileSourceConfig:
    """Immutable configuration of one file source."""

    source_file: Path
    """File to tail."""

    decoder: DecoderBinding
    """Decoder object, callable, 'utf8', 'json' or 'module:Name'. Resolved at start()."""

    state_file: Optional[Path] = None
    """Checkpoint side file. Without it every restart applies initial_position."""

    interval: float = 0.5
    """Delay between the end of one poll and the start of the next (seconds)."""

    initial_position: InitialPosition = InitialPosition.BEGINNING
    """Where to start when no checkpoint matches the current file."""

    def __post_init__(self) -> None:
        """Validate and normalise fields."""
        if self.source_file is None or str(self.source_file) in ("", "."):
            raise ConfigurationError("source_file is required")
        if not isinstance(self.source_file, Path):
            object.__setattr__(self, "source_file", Path(self.source_file))

        if self.state_file is not None and not isinstance(self.state_file, Path):
            object.__setattr__(self, "state_file", Path(self.state_file))

        if self.decoder is None:
            raise ConfigurationError(f"Source {self.source_file}: decoder is required")

        if isinstance(self.interval, bool) or not isinstance(self.interval, (int, float)):
            raise ConfigurationError(
                f"Source {self.source_file}: interval must be a number, "
                f"got {type(self.interval).__name__}"
            )
        if self.interval <= 0:
            raise ConfigurationError(
                f"Source {self.source_file}: interval must be > 0, got {self.interval}"
            )

        if not isinstance(self.initial_position, InitialPosition):
            try:
                position = InitialPosition(str(self.initial_position).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Source {self.source_file}: initial_position must be 'beginning' or 'end', "
                    f"got '{self.initial_position}'"
                )
            object.__setattr__(self, "initial_position", position)


class FileSource:
    """Tail one file, decode each record and notify subscribers."""

    def __init__(self, config: FileSourceConfig, log: Any = None) -> None:
        """
        Initialize file source.

        Args:
            config: Validated source configuration
            log: Optional structlog logger; defaults to one bound to the source path
        """
        self.config = config
        self.log = log if log is not None else logger.bind(source=str(config.source_file))
        self._subscribers: List[Subscriber] = []
        self._tailer: Optional[FileTailer] = None

    @property
    def subscribers(self) -> Tuple[Subscriber, ...]:
        return tuple(self._subscribers)

    @property
    def tailer(self) -> Optional[FileTailer]:
        return self._tailer

    def attach(self, subscriber: Subscriber) -> None:
        """Register ``subscriber(source, value)``; notified in registration order."""
        self._subscribers.append(subscriber)

    def detach(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def start(self) -> None:
        """
        Resolve the decoder and start tailing.

        Raises:
            ConfigurationError: If the decoder binding cannot be resolved.
            TailerStateError: If this source was already started.
        """
        if self._tailer is not None:
            raise TailerStateError(f"Source {self.config.source_file} was already started")

        decoder = resolve_decoder(self.config.decoder)
        store = PositionStore(self.config.state_file) if self.config.state_file else None

        self._tailer = FileTailer(
            log_path=self.config.source_file,
            decoder=decoder,
            notify=self._notify,
            poll_interval=float(self.config.interval),
            store=store,
            initial_position=self.config.initial_position,
            log=self.log,
        )
        await self._tailer.start()

    async def stop(self) -> None:
        """Stop tailing; waits for the in-flight poll. Safe to call repeatedly."""
        if self._tailer is not None:
            await self._tailer.stop()

    async def _notify(self, value: Any) -> None:
        for subscriber in tuple(self._subscribers):
            try:
                result = subscriber(self, value)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.log.error(
                    "subscriber_failed",
                    subscriber=getattr(subscriber, "__name__", repr(subscriber)),
                    error=str(e),
                    exc_info=True,
                )

    def status(self) -> Dict[str, Any]:
        if self._tailer is None:
            return {
                "state": "created",
                "path": str(self.config.source_file),
                "subscribers": len(self._subscribers),
            }
        status = self._tailer.status()
        status["subscribers"] = len(self._subscribers)
        return status

    def __repr__(self) -> str:
        return f"FileSource(source_file={str(self.config.source_file)!r})"
