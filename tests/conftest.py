"""
Pytest fixtures and configuration for the Missing Money search test suite.
"""

import pytest
import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep test runs from writing into the project log directory
os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "missing_money_test_logs"))

from fakes import FakePage, SleepRecorder, search_form_page  # noqa: E402


# === Test Data Fixtures ===

@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def form_page():
    return search_form_page()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def search_request():
    """Scenario request: Ben Smith in Austin, TX."""
    from core.models import SearchRequest
    return SearchRequest.create(first_name="Ben", last_name="Smith", city="Austin", state="TX")


@pytest.fixture
def mock_browser_manager(fake_page):
    """Browser manager that hands out a FakePage without launching Chromium."""
    mock = MagicMock()
    mock.launch_session = AsyncMock(return_value=MagicMock(page=fake_page, session_id="mm_test"))
    mock.close_session = AsyncMock()
    mock.capture_screenshot = AsyncMock(return_value="")
    mock.save_html = AsyncMock(return_value="")
    return mock


@pytest.fixture
def mock_solver():
    """Configured solver returning a long token."""
    from core.models import SolverResult
    solver = MagicMock()
    solver.is_configured.return_value = True
    solver.solve = AsyncMock(return_value=SolverResult(token="0.tok" + "x" * 60))
    return solver


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "stealth: Anti-detection tests")
    config.addinivalue_line("markers", "resilience: Failure and cleanup tests")
    config.addinivalue_line("markers", "performance: Concurrency and timing tests")
