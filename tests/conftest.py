"""
Pytest configuration and shared fixtures for PillHub tests.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pillhub.core.config import ProvisioningSettings  # noqa: E402
from pillhub.core.context import Announcer, HapticFeedback, ProvisioningContext  # noqa: E402
from pillhub.storage.base import StaticSessionProvider  # noqa: E402
from pillhub.storage.memory import (  # noqa: E402
    MemoryDocumentStore,
    MemoryKeyValueStorage,
    MemoryRealtimeStore,
)


NOW_MS = 1_700_000_000_000
USER_ID = "patient-a"


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    config_path = temp_dir / "config.yaml"
    config_path.write_text("""
version: 1
provisioning:
  debounce_ms: 250
  retry_max_attempts: 5
firebase:
  project_id: pillhub-test
  database_url: https://pillhub-test.firebaseio.com
storage:
  data_dir: /tmp/pillhub-test
logging:
  level: INFO
""")
    return config_path


# ============================================================================
# Clock Fixtures
# ============================================================================

class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, now: int = NOW_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Collaborator Fixtures
# ============================================================================

class RecordingAnnouncer(Announcer):
    def __init__(self):
        self.messages = []

    def announce(self, message: str) -> None:
        self.messages.append(message)


class RecordingHaptics(HapticFeedback):
    def __init__(self):
        self.events = []

    def trigger(self, feedback) -> None:
        self.events.append(feedback)


@pytest.fixture
def documents() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def realtime() -> MemoryRealtimeStore:
    return MemoryRealtimeStore()


@pytest.fixture
def storage() -> MemoryKeyValueStorage:
    return MemoryKeyValueStorage()


@pytest.fixture
def session() -> StaticSessionProvider:
    return StaticSessionProvider(USER_ID)


@pytest.fixture
def settings() -> ProvisioningSettings:
    """Settings with the debounce shortened for tests."""
    return ProvisioningSettings(debounce_ms=10)


@pytest.fixture
def context(session, documents, realtime, storage, settings, clock) -> ProvisioningContext:
    """Provisioning context wired to in-memory collaborators."""
    return ProvisioningContext(
        session=session,
        documents=documents,
        realtime=realtime,
        storage=storage,
        settings=settings,
        announcer=RecordingAnnouncer(),
        haptics=RecordingHaptics(),
        clock=clock,
    )


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that records delays without waiting."""
    return AsyncMock(return_value=None)


# ============================================================================
# Clean Environment Fixture
# ============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Ensure clean environment for each test."""
    # Remove any PillHub-specific env vars that might interfere
    for key in list(os.environ.keys()):
        if key.startswith("PILLHUB_"):
            monkeypatch.delenv(key, raising=False)
