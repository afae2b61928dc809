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


import pytest
from unittest.mock import Mock
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from health import SERVICE_NAME, HealthCheckServer


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def health_server():
    """Create a HealthCheckServer instance."""
    return HealthCheckServer()


# ============================================================================
# HealthCheckServer Initialization Tests
# ============================================================================

class TestHealthCheckServerInit:
    """Test HealthCheckServer initialization."""

    def test_init_default_params(self):
        """Test initialization with default parameters."""
        server = HealthCheckServer()

        assert server.host == "0.0.0.0"
        assert server.port == 8080
        assert isinstance(server.app, web.Application)
        assert server.runner is None
        assert server.site is None
        assert server.health_check is None
        assert server.status_provider is None

    def test_init_custom_host_port(self):
        """Test initialization with custom host and port."""
        server = HealthCheckServer(host="127.0.0.1", port=9000)

        assert server.host == "127.0.0.1"
        assert server.port == 9000

    def test_routes_registered(self, health_server):
        """Test that all routes are registered."""
        paths = {route.resource.canonical for route in health_server.app.router.routes()}

        assert {"/", "/health", "/sources"} <= paths


# ============================================================================
# /health Tests
# ============================================================================

class TestHealthEndpoint:
    """Test the /health endpoint."""

    @pytest.mark.asyncio
    async def test_healthy_without_check(self, health_server):
        """Test that /health reports healthy when no check is configured."""
        async with TestClient(TestServer(health_server.app)) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            data = await resp.json()

        assert data == {"status": "healthy", "service": SERVICE_NAME}

    @pytest.mark.asyncio
    async def test_healthy_when_check_passes(self):
        """Test 200 when the health check returns True."""
        server = HealthCheckServer(health_check=lambda: True)

        async with TestClient(TestServer(server.app)) as client:
            resp = await client.get("/health")
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_degraded_when_check_fails(self):
        """Test 503 when a tailer died."""
        check = Mock(return_value=False)
        server = HealthCheckServer(health_check=check)

        async with TestClient(TestServer(server.app)) as client:
            resp = await client.get("/health")
            assert resp.status == 503
            data = await resp.json()

        assert data["status"] == "degraded"
        check.assert_called_once()


# ============================================================================
# /sources Tests
# ============================================================================

class TestSourcesEndpoint:
    """Test the /sources endpoint."""

    @pytest.mark.asyncio
    async def test_sources_without_provider(self, health_server):
        """Test empty status when no provider is configured."""
        async with TestClient(TestServer(health_server.app)) as client:
            resp = await client.get("/sources")
            assert resp.status == 200
            data = await resp.json()

        assert data == {"sources": {}}

    @pytest.mark.asyncio
    async def test_sources_reports_provider_status(self):
        """Test that provider output is returned verbatim."""
        status = {
            "app": {"state": "running", "offset": 42, "missing": False},
            "access": {"state": "running", "offset": 0, "missing": True},
        }
        server = HealthCheckServer(status_provider=lambda: status)

        async with TestClient(TestServer(server.app)) as client:
            resp = await client.get("/sources")
            data = await resp.json()

        assert data == {"sources": status}


# ============================================================================
# / Tests
# ============================================================================

class TestRootEndpoint:
    """Test the root endpoint."""

    @pytest.mark.asyncio
    async def test_root_lists_endpoints(self, health_server):
        async with TestClient(TestServer(health_server.app)) as client:
            resp = await client.get("/")
            assert resp.status == 200
            data = await resp.json()

        assert data["service"] == SERVICE_NAME
        assert data["endpoints"] == {"health": "/health", "sources": "/sources"}


# ============================================================================
# Lifecycle Tests
# ============================================================================

class TestServerLifecycle:
    """Test start() and stop()."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test that start() binds a site and stop() cleans up."""
        # Port 0 picks a free port
        server = HealthCheckServer(host="127.0.0.1", port=0)

        await server.start()

        assert isinstance(server.runner, web.AppRunner)
        assert isinstance(server.site, web.TCPSite)

        await server.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, health_server):
        """Test that stop() is safe to call without start()."""
        await health_server.stop()

        assert health_server.runner is None
