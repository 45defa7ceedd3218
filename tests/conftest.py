"""Shared test fixtures and configuration.

Sets up environment variables before any cadence import, so settings are
deterministic, and provides temp-file stores and a controllable clock.
"""

import os

# Patch env vars BEFORE any cadence imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("SNOOZE_MINUTES", "60")
os.environ.setdefault("REPLENISHMENT_HOUR", "6")
os.environ.setdefault("REPLENISHMENT_MINUTE", "0")
os.environ.setdefault("CASCADE_COMPLETION", "false")

from datetime import datetime, timedelta, timezone

import pytest


class FixedClock:
    """Clock whose time only moves when a test moves it."""

    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def today(self):
        return self.current.date()

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    """Monday 2024-01-01 09:00 UTC."""
    return FixedClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_cadence.db")


@pytest.fixture
def item_db(tmp_db_path):
    """Return an ItemDB instance backed by a temp file."""
    from cadence.data.db import ItemDB
    return ItemDB(db_path=tmp_db_path)


@pytest.fixture
def pending_db(tmp_db_path):
    """Return a PendingRecurrenceDB sharing the ItemDB file."""
    from cadence.data.db import PendingRecurrenceDB
    return PendingRecurrenceDB(db_path=tmp_db_path)


@pytest.fixture
def materializer(pending_db, clock):
    from cadence.core.materializer import RecurrenceMaterializer
    return RecurrenceMaterializer(pending_db, clock)


@pytest.fixture
def tracker(item_db, clock):
    from cadence.core.streaks import StreakTracker
    return StreakTracker(item_db, clock)
