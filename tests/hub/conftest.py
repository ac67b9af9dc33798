"""Shared fixtures for tests/hub/ test suite.

Provides the API hub mock and test client used by test_api.py, and a real
MonitorHub on a temp directory with a pinned clock for analytics tests.
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from openwatch.hub.api import create_api
from openwatch.hub.core import MonitorHub

# Friday afternoon, local time
FIXED_NOW = datetime(2024, 3, 15, 14, 0)


@pytest.fixture
def api_hub():
    """Create a mock MonitorHub for API endpoint tests."""
    mock_hub = MagicMock(spec=MonitorHub)
    mock_hub.modules = {}
    mock_hub.module_status = {}
    mock_hub.subscribers = {}
    mock_hub.subscribe = MagicMock()
    mock_hub.get_module = MagicMock(return_value=None)
    mock_hub.clock = MagicMock(return_value=FIXED_NOW)
    mock_hub._request_count = 0
    mock_hub.get_uptime_seconds = MagicMock(return_value=0)
    return mock_hub


@pytest.fixture
def api_client(api_hub):
    """Create a FastAPI TestClient backed by api_hub."""
    app = create_api(api_hub)
    return TestClient(app)


@pytest_asyncio.fixture
async def hub(tmp_path):
    """Real MonitorHub with both stores on tmp_path and the clock pinned to FIXED_NOW."""
    h = MonitorHub(str(tmp_path / "hub.db"), clock=lambda: FIXED_NOW)
    await h.initialize()
    yield h
    if h.is_running():
        await h.shutdown()
