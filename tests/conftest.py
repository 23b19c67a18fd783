"""Pytest configuration and fixtures."""

import os
import sys
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import UNICOM_TIMEZONE
from domains.unicom import engine
from domains.unicom.errors import DeliveryError
from domains.unicom.models import Credential, UsageReading, UserConfig
from domains.unicom.notifier import Notifier
from domains.unicom.source import UsageSource
from domains.unicom.store import SnapshotStore

USER = "discord_1001"
BOT = "discord_9009"

BASE_TIME = datetime(2026, 3, 1, 10, 0, tzinfo=UNICOM_TIMEZONE)


def make_reading(minutes: float = 0, paid: float = 1.0, free: float = 0.5, **overrides) -> UsageReading:
    """Reading taken ``minutes`` after BASE_TIME with the given paid/free GB."""
    values = dict(
        package_name="Test Plan 39",
        time=BASE_TIME + timedelta(minutes=minutes),
        total_used=paid + free,
        free_used=free,
        paid_used=paid,
        limited_used=free,
        unlimited_used=paid,
        total_allotted=40.0,
        free_allotted=10.0,
        paid_allotted=30.0,
        limited_allotted=10.0,
        unlimited_allotted=30.0,
    )
    values.update(overrides)
    return UsageReading(**values)


class FakeSource(UsageSource):
    """Scripted source: each fetch pops the next reading or exception."""

    def __init__(self, results=None, credential=None):
        self.results = list(results or [])
        self.credential = credential or Credential(cookie="fresh=1", token_online="rotated-token")
        self.reauth_error = None
        self.fetch_cookies = []
        self.reauth_calls = []

    async def fetch(self, cookie: str) -> UsageReading:
        self.fetch_cookies.append(cookie)
        if not self.results:
            raise AssertionError("FakeSource ran out of scripted results")
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def reauthenticate(self, token_online: str, app_id: str) -> Credential:
        self.reauth_calls.append((token_online, app_id))
        if self.reauth_error is not None:
            raise self.reauth_error
        return self.credential


class RecordingNotifier(Notifier):
    """Collects sent messages; raises DeliveryError while ``fail`` is set."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, user: str, bot: str, text: str) -> None:
        if self.fail:
            raise DeliveryError(f"cannot reach {user}")
        self.sent.append((user, bot, text))


@pytest.fixture
def store(tmp_path):
    """Fresh sqlite store per test."""
    snapshot_store = SnapshotStore(tmp_path / "unicom.db")
    yield snapshot_store
    snapshot_store.close()


@pytest.fixture
def user_config():
    return UserConfig(
        user=USER,
        bot=BOT,
        cookie="old=1",
        token_online="refresh-token",
        app_id="app-id",
    )


@pytest.fixture
def registered(store, user_config):
    """Store with the test user already registered."""
    store.insert_config(user_config)
    return store


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx client."""
    with patch('httpx.AsyncClient') as mock:
        client = AsyncMock()
        mock.return_value.__aenter__.return_value = client
        yield client


@pytest.fixture(autouse=True)
def fresh_refresh_locks():
    """Session refresh locks belong to one event loop; each test gets its own."""
    engine._refresh_locks.clear()
    yield
    engine._refresh_locks.clear()
