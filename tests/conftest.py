import pytest
from pathlib import Path
from typing import List
from unittest.mock import MagicMock
from typer.testing import CliRunner

from apishield.domain.interfaces.user_interface import UserInterface
from apishield.infrastructure.config import settings


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def recording_sleep():
    return RecordingSleep()

@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path

@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)

@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()

@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keeps tests away from the user's ~/.apishield/config.yaml and .env files."""
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", True)
    for name in list(settings.os.environ):
        if name.startswith(settings.ENV_PREFIX):
            monkeypatch.delenv(name, raising=False)
    yield
    settings.clear_test_config()
