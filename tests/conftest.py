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

"""pytest configuration shared by the tailing engine tests.

This module provides:
- src/ on sys.path so modules import by bare name, as the application does
- Log file / state file fixtures under tmp_path
- A bounded ``wait_until`` helper for timing-based tailer scenarios
- structlog reset between tests so capture_logs() always sees every event
"""

import asyncio
import sys
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Generator

import pytest
import structlog

# Add src/ to Python path for absolute imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo any structlog.configure() a test (or main.setup_logging) performed."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    """Path of an empty, existing log file."""
    path = tmp_path / "source.log"
    path.write_bytes(b"")
    return path


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    """Path of a (not yet existing) checkpoint file."""
    return tmp_path / "source.log.state"


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[bool]]:
    """Return a coroutine that polls ``predicate`` until true or timeout."""

    async def _wait_until(
        predicate: Callable[[], Any],
        timeout: float = 3.0,
        interval: float = 0.01,
    ) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return bool(predicate())

    return _wait_until
