"""System clock adapter — implements Clock in the configured time zone."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from cadence.config import settings


class SystemClock:
    """Wall-clock time, with calendar days taken in ``settings.TIMEZONE``."""

    def __init__(self, time_zone: str | None = None) -> None:
        self._zone = ZoneInfo(time_zone or settings.TIMEZONE)

    def now(self) -> datetime:
        return datetime.now(self._zone)

    def today(self) -> date:
        return self.now().date()
