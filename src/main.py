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
File Source Agent - Main Entry Point

Tails the files configured in sources.yml, decodes each appended record and
publishes it to subscribers, with checkpoints that survive restarts and
file rotation.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

import structlog

# Import helpers with support for package vs. flat layout
try:
    # Package-style imports (python -m src.main)
    from .config import Config, load_config, validate_config  # type: ignore
    from .file_source import FileSource, FileSourceConfig  # type: ignore
    from .health import HealthCheckServer  # type: ignore
    from .multi_source import MultiFileSource  # type: ignore
except ImportError:
    # Flat layout (tests and direct execution)
    from config import Config, load_config, validate_config  # type: ignore
    from file_source import FileSource, FileSourceConfig  # type: ignore
    from health import HealthCheckServer  # type: ignore
    from multi_source import MultiFileSource  # type: ignore

logger = structlog.get_logger()


def setup_logging(log_level: str, log_format: str) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (debug, info, warning, error, critical)
        log_format: Output format ("json" or "console")
    """
    level_map: dict[str, int] = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    min_level = level_map.get(log_level.lower(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger.info("logging_configured", level=log_level, format=log_format)


def build_sources(config: Config) -> Dict[str, FileSource]:
    """
    Create one FileSource per configured source.

    Raises:
        ConfigurationError: If a source configuration is invalid.
    """
    sources: Dict[str, FileSource] = {}
    for tag, source_config in config.sources.items():
        source = FileSource(
            FileSourceConfig(
                source_file=source_config.path,
                decoder=source_config.decoder,
                state_file=source_config.state_file,
                interval=source_config.interval,
                initial_position=source_config.initial_position,
            ),
            log=logger.bind(source=tag, path=str(source_config.path)),
        )
        sources[tag] = source
    return sources


def log_record(source: FileSource, value: Any) -> None:
    """Default subscriber: emit each decoded record as a debug event."""
    logger.debug(
        "record_received",
        path=str(source.config.source_file),
        value=value,
    )


class Application:
    """Main application orchestrator."""

    def __init__(self) -> None:
        """Initialize application components."""
        self.config: Optional[Config] = None
        self.health_server: Optional[HealthCheckServer] = None
        self.sources: Optional[MultiFileSource] = None
        self.shutdown_event: asyncio.Event = asyncio.Event()

    async def setup(self) -> None:
        """Load configuration and initialize core components."""
        logger.info("application_starting")

        try:
            self.config = load_config()
            if not validate_config(self.config):
                raise ValueError("Configuration validation failed")
        except Exception as e:
            logger.error("config_load_failed", error=str(e))
            raise

        setup_logging(self.config.log_level, self.config.log_format)

        file_sources = build_sources(self.config)
        for source in file_sources.values():
            source.attach(log_record)
        self.sources = MultiFileSource(file_sources)

        self.health_server = HealthCheckServer(
            host=self.config.health_check_host,
            port=self.config.health_check_port,
            health_check=self.sources.is_healthy,
            status_provider=self.sources.get_status,
        )

        logger.info(
            "application_configured",
            health_port=self.config.health_check_port,
            sources_count=len(file_sources),
        )

    async def start(self) -> None:
        """Start all application components."""
        assert self.config is not None, "Config not loaded"
        assert self.health_server is not None, "Health server not initialized"
        assert self.sources is not None, "Sources not initialized"

        # Sources first so /health never reports a source that is still starting.
        await self.sources.start()
        await self.health_server.start()

        logger.info("application_running", sources=list(self.config.sources.keys()))

    async def stop(self) -> None:
        """Gracefully stop all components, in reverse start order."""
        logger.info("application_stopping")

        if self.health_server is not None:
            try:
                await self.health_server.stop()
            except Exception as e:
                logger.error("health_server_stop_failed", error=str(e))

            logger.debug("health_server_stopped")

        if self.sources is not None:
            await self.sources.stop()
            logger.debug("file_sources_stopped")

        logger.info("application_stopped")

    async def run(self) -> None:
        """Main application run loop."""
        try:
            await self.setup()
            await self.start()
            await self.shutdown_event.wait()
        except Exception as e:
            logger.error("application_error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()


async def main() -> None:
    """Main async entry point."""
    app = Application()

    loop = asyncio.get_running_loop()

    def _signal_handler(signum: int) -> None:
        logger.info("received_signal", signal=signal.Signals(signum).name)
        app.shutdown_event.set()

    # add_signal_handler is unavailable on Windows event loops
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _signal_handler, signum)
        except NotImplementedError:
            signal.signal(signum, lambda s, _frame: _signal_handler(s))

    try:
        await app.run()
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        sys.exit(1)


def cli() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
