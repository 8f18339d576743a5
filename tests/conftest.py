"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta

import pytest  # type: ignore[import-not-found]


class FakeClock:
    """Manually advanced clock for deterministic timer tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest."""
    config.addinivalue_line("markers", "integration: Integration tests")


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at a fixed instant."""
    return FakeClock(datetime(2026, 10, 19, 9, 0, 0))
