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

"""Multi-source coordinator managing several FileSource instances by tag.

Starts and stops every configured source together so the application only
deals with one object.
"""

import asyncio
from typing import Dict, Any, List

import structlog

try:  # pragma: no cover - import wiring
    from .file_source import FileSource
except ImportError:  # pragma: no cover - import wiring
    from file_source import FileSource  # type: ignore[no-redef]

logger = structlog.get_logger()


class MultiFileSource:
    """Manage FileSource instances for multiple watched files.

    Example:
        sources = {
            'app': FileSource(FileSourceConfig(source_file=Path('/var/log/app.log'), decoder='utf8')),
            'access': FileSource(FileSourceConfig(source_file=Path('/var/log/access.log'), decoder='json')),
        }

        multi = MultiFileSource(sources)
        await multi.start()
        await multi.stop()
    """

    def __init__(self, sources: Dict[str, FileSource]) -> None:
        """Initialize multi-source coordinator.

        Args:
            sources: Dictionary mapping source tag to FileSource.

        Raises:
            ValueError: If sources is empty or contains a non-FileSource value.
        """
        if not sources:
            raise ValueError("sources cannot be empty")

        for tag, source in sources.items():
            if not isinstance(source, FileSource):
                raise ValueError(
                    f"Source '{tag}' must be a FileSource, got {type(source).__name__}"
                )

        self.sources = sources
        self.started: List[str] = []

        logger.info(
            "multi_file_source_initialized",
            source_count=len(sources),
            sources=list(sources.keys()),
        )

    async def start(self) -> None:
        """Start all sources concurrently.

        If any source fails to start, the ones that did start are stopped
        again and the first error is raised.
        """
        logger.info("starting_file_sources", count=len(self.sources))

        tags = list(self.sources.keys())
        results = await asyncio.gather(
            *(self.sources[tag].start() for tag in tags),
            return_exceptions=True,
        )

        failures = []
        for tag, result in zip(tags, results):
            if isinstance(result, Exception):
                failures.append((tag, result))
                logger.error(
                    "failed_to_start_file_source",
                    source=tag,
                    error=str(result),
                )
            else:
                self.started.append(tag)

        if failures:
            # Clean up any partially started sources
            await self.stop()
            raise failures[0][1]

        logger.info("all_file_sources_started")

    async def stop(self) -> None:
        """Stop all started sources concurrently.

        Logs errors but does not raise.
        """
        logger.info("stopping_file_sources", count=len(self.started))

        tags = list(self.started)
        results = await asyncio.gather(
            *(self.sources[tag].stop() for tag in tags),
            return_exceptions=True,
        )

        for tag, result in zip(tags, results):
            if isinstance(result, Exception):
                logger.error(
                    "error_stopping_file_source",
                    source=tag,
                    error=str(result),
                    exc_info=result,
                )

        self.started.clear()
        logger.info("all_file_sources_stopped")

    def is_healthy(self) -> bool:
        """True if every started source still has a live tailer."""
        return bool(self.started) and all(
            self.sources[tag].tailer is not None and self.sources[tag].tailer.is_healthy()
            for tag in self.started
        )

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Get status of all sources.

        Returns:
            Dictionary mapping source tag to status dict.
        """
        return {tag: source.status() for tag, source in self.sources.items()}
