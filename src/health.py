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
Health check HTTP server for container orchestration.

Provides /health for liveness checks and /sources for per-source tailing status.
"""
from typing import Any, Callable, Dict, Optional

from aiohttp import web
import structlog

logger = structlog.get_logger()

SERVICE_NAME = "file-source-agent"


class HealthCheckServer:
    """Simple HTTP server for health checks and source status."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        health_check: Optional[Callable[[], bool]] = None,
        status_provider: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        """
        Initialize health check server.

        Args:
            host: Host to bind to (default: 0.0.0.0)
            port: Port to bind to (default: 8080)
            health_check: Returns False when any tailer died unexpectedly
            status_provider: Returns per-source status for /sources
        """
        self.host = host
        self.port = port
        self.health_check = health_check
        self.status_provider = status_provider
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes."""
        self.app.router.add_get("/health", self.health_handler)
        self.app.router.add_get("/sources", self.sources_handler)
        self.app.router.add_get("/", self.root_handler)

    async def health_handler(self, request: web.Request) -> web.Response:
        """
        Health check endpoint.

        Returns:
            200 OK when healthy, 503 when degraded
        """
        healthy = self.health_check() if self.health_check is not None else True
        return web.json_response(
            {
                "status": "healthy" if healthy else "degraded",
                "service": SERVICE_NAME,
            },
            status=200 if healthy else 503,
        )

    async def sources_handler(self, request: web.Request) -> web.Response:
        """Per-source tailing status."""
        sources = self.status_provider() if self.status_provider is not None else {}
        return web.json_response({"sources": sources})

    async def root_handler(self, request: web.Request) -> web.Response:
        """
        Root endpoint.

        Returns:
            200 OK with service info
        """
        return web.json_response({
            "service": SERVICE_NAME,
            "endpoints": {
                "health": "/health",
                "sources": "/sources",
            }
        })

    async def start(self) -> None:
        """Start the health check server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(
            self.runner,
            self.host,
            self.port
        )
        await self.site.start()

        logger.info(
            "health_server_started",
            host=self.host,
            port=self.port
        )

    async def stop(self) -> None:
        """Stop the health check server."""
        if self.site is not None:
            await self.site.stop()

        if self.runner is not None:
            await self.runner.cleanup()

        logger.info("health_server_stopped")
