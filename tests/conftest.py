"""Pytest configuration for test discovery."""

import sys
from pathlib import Path

import httpx
import pytest

# Ensure the project root is in sys.path for proper imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from stampede.config import reset_settings  # noqa: E402
from stampede.metrics import MetricSink  # noqa: E402
from tests.services.log_service import create_log_service  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def sink():
    return MetricSink()


@pytest.fixture
def log_app():
    return create_log_service()


@pytest.fixture
def log_transport(log_app):
    return httpx.ASGITransport(app=log_app)
