"""Pytest configuration for the Audit Recovery Toolkit."""

from datetime import datetime, timedelta, timezone

import pytest

from audit_recovery.config import RecoveryConfig, set_config


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Add custom markers
    config.addinivalue_line("markers", "sql: test runs against the SQLite store")


class FakeClock:
    """Controllable clock. Call it for the current time; ``advance`` moves it."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock starting at 2024-05-01 12:00 UTC."""
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def recovery_config():
    """Install a test configuration on the global and reset it afterwards."""
    config = RecoveryConfig(
        environment="test", storage_backend="memory", database_url=None
    )
    set_config(config)
    yield config
    set_config(None)
