"""
Cadence — Recurrence Rule Evaluator.

Computes occurrence dates from a declarative rule. Every comparison happens
at calendar-day granularity in the rule's reference time zone, so daylight
saving transitions never shift an occurrence.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta
from enum import Enum, IntEnum
from itertools import islice
from typing import Annotated, Iterator, Literal, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer, field_validator

from cadence.config import settings


class RepeatMode(str, Enum):
    """Which date the next occurrence is computed from."""

    FROM_ANCHOR_DATE = "from_anchor"          # fixed cadence, never drifts
    FROM_COMPLETION_DATE = "from_completion"  # cadence restarts on completion


class Weekday(IntEnum):
    """Day of week, numbered like ``date.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def short_name(self) -> str:
        return calendar.day_abbr[self.value]


def as_day(value: date | datetime, zone: str | None = None) -> date:
    """Reduce a date or datetime to its calendar day in *zone*.

    Naive datetimes are taken to be local to the zone already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(zone or settings.TIMEZONE))
        return value.date()
    return value


def _ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _clamped(year: int, month: int, day: int) -> date:
    """Build a date, pulling *day* back to the month's last day if needed."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


# ---------------------------------------------------------------------------
# Rule variants
# ---------------------------------------------------------------------------


class BaseRule(BaseModel):
    """Fields and operations shared by every rule variant."""

    model_config = ConfigDict(frozen=True)

    interval: int = 1
    max_occurrences: int | None = Field(default=None, ge=1)
    repeat_mode: RepeatMode = RepeatMode.FROM_ANCHOR_DATE
    end_date: date | None = None
    preferred_time: time | None = None       # time of day for reminders
    recreate_if_incomplete: bool = True
    time_zone: str = Field(default_factory=lambda: settings.TIMEZONE)

    @field_validator("interval", mode="before")
    @classmethod
    def clamp_interval(cls, v: int | str) -> int:
        return max(1, int(v))

    # -- public contract ---------------------------------------------------

    def day_of(self, value: date | datetime) -> date:
        return as_day(value, self.time_zone)

    def iter_occurrences(
        self, start: date | datetime, anchor: date | datetime | None = None,
    ) -> Iterator[date]:
        """Lazily yield ascending occurrences on or after *start*.

        Each call is independent: the generator holds no shared state, so it
        can be restarted freely. It only ends at ``end_date``; callers bound
        it with ``islice`` or ``occurrences(limit=...)``.
        """
        start_day = self.day_of(start)
        anchor_day = self.day_of(anchor) if anchor is not None else start_day
        first = max(start_day, anchor_day)
        for day in self._candidates(first, anchor_day):
            if self.end_date is not None and day > self.end_date:
                return
            yield day

    def occurrences(
        self,
        start: date | datetime,
        limit: int = 50,
        anchor: date | datetime | None = None,
    ) -> list[date]:
        """Return up to *limit* ascending occurrences on or after *start*.

        *anchor* is the date the rule is measured from (interval windows,
        month day, yearly date). It defaults to *start*.
        """
        if limit <= 0:
            return []
        return list(islice(self.iter_occurrences(start, anchor), limit))

    def matches(self, day: date | datetime, relative_to: date | datetime) -> bool:
        """True iff *day* is an occurrence of the rule anchored at *relative_to*.

        Closed form per variant; nothing is enumerated.
        """
        d = self.day_of(day)
        a = self.day_of(relative_to)
        if d < a:
            return False
        if self.end_date is not None and d > self.end_date:
            return False
        return self._matches(d, a)

    def next_occurrence(
        self, after: date | datetime, anchor: date | datetime | None = None,
    ) -> date | None:
        """First occurrence strictly after *after*, or None past ``end_date``.

        Without an explicit *anchor* the rule is anchored at *after* itself,
        which is how a completed instance hands its cadence to the next one.
        """
        after_day = self.day_of(after)
        found = self.occurrences(
            after_day + timedelta(days=1),
            limit=1,
            anchor=anchor if anchor is not None else after_day,
        )
        return found[0] if found else None

    def describe(self) -> str:
        """Human description, e.g. "Every 2 weeks on Mon, Wed at 09:00"."""
        text = self._describe_frequency()
        if self.preferred_time is not None:
            text += f" at {self.preferred_time.strftime('%H:%M')}"
        if self.repeat_mode is RepeatMode.FROM_COMPLETION_DATE:
            text += " after completion"
        return text

    # -- per-variant hooks -------------------------------------------------

    def _candidates(self, first: date, anchor: date) -> Iterator[date]:
        raise NotImplementedError

    def _matches(self, day: date, anchor: date) -> bool:
        raise NotImplementedError

    def _describe_frequency(self) -> str:
        raise NotImplementedError


class _DayIntervalRule(BaseRule):
    """Occurrences every ``interval`` days from the anchor."""

    def _candidates(self, first: date, anchor: date) -> Iterator[date]:
        offset = (first - anchor).days
        steps = -(-offset // self.interval)  # ceiling division
        day = anchor + timedelta(days=steps * self.interval)
        step = timedelta(days=self.interval)
        while True:
            yield day
            day += step

    def _matches(self, day: date, anchor: date) -> bool:
        return (day - anchor).days % self.interval == 0


class DailyRule(_DayIntervalRule):
    frequency: Literal["daily"] = "daily"

    def _describe_frequency(self) -> str:
        return "Daily" if self.interval == 1 else f"Every {self.interval} days"


class CustomRule(_DayIntervalRule):
    """Free-form day interval; behaves like a daily rule."""

    frequency: Literal["custom"] = "custom"

    def _describe_frequency(self) -> str:
        return f"Every {self.interval} days (custom)"


class WeeklyRule(BaseRule):
    """Selected weekdays in every ``interval``-th week from the anchor's week.

    An empty ``days_of_week`` is the explicit ``every_day`` case: every day of
    each qualifying week is an occurrence.
    """

    frequency: Literal["weekly"] = "weekly"
    days_of_week: frozenset[Weekday] = frozenset()

    @field_serializer("days_of_week")
    def _serialize_days(self, days: frozenset[Weekday]) -> list[int]:
        return sorted(int(d) for d in days)

    @property
    def every_day(self) -> bool:
        return not self.days_of_week

    def _qualifies(self, day: date) -> bool:
        return self.every_day or Weekday(day.weekday()) in self.days_of_week

    @staticmethod
    def _week_start(day: date) -> date:
        return day - timedelta(days=day.weekday())

    def _week_index(self, day: date, anchor: date) -> int:
        return (self._week_start(day) - self._week_start(anchor)).days // 7

    def _candidates(self, first: date, anchor: date) -> Iterator[date]:
        day = first
        while True:
            index = self._week_index(day, anchor)
            if index % self.interval:
                index += self.interval - index % self.interval
                day = self._week_start(anchor) + timedelta(weeks=index)
                continue
            if self._qualifies(day):
                yield day
            day += timedelta(days=1)

    def _matches(self, day: date, anchor: date) -> bool:
        return self._week_index(day, anchor) % self.interval == 0 and self._qualifies(day)

    def _describe_frequency(self) -> str:
        if self.every_day:
            return "Every day" if self.interval == 1 else f"Every day, every {self.interval} weeks"
        names = ", ".join(d.short_name for d in sorted(self.days_of_week))
        prefix = "Weekly on" if self.interval == 1 else f"Every {self.interval} weeks on"
        return f"{prefix} {names}"


class MonthlyRule(BaseRule):
    """One day per ``interval``-th month; short months clamp to their last day."""

    frequency: Literal["monthly"] = "monthly"
    day_of_month: int | None = Field(default=None, ge=1, le=31)

    def _target(self, year: int, month: int, anchor: date) -> date:
        return _clamped(year, month, self.day_of_month or anchor.day)

    @staticmethod
    def _month_index(day: date, anchor: date) -> int:
        return (day.year - anchor.year) * 12 + day.month - anchor.month

    def _candidates(self, first: date, anchor: date) -> Iterator[date]:
        index = self._month_index(first, anchor)
        if index % self.interval:
            index += self.interval - index % self.interval
        while True:
            total = anchor.year * 12 + anchor.month - 1 + index
            day = self._target(total // 12, total % 12 + 1, anchor)
            if day >= first:
                yield day
            index += self.interval

    def _matches(self, day: date, anchor: date) -> bool:
        return (
            self._month_index(day, anchor) % self.interval == 0
            and day == self._target(day.year, day.month, anchor)
        )

    def _describe_frequency(self) -> str:
        base = "Monthly" if self.interval == 1 else f"Every {self.interval} months"
        if self.day_of_month is not None:
            return f"{base} on the {_ordinal(self.day_of_month)}"
        return base


class YearlyRule(BaseRule):
    """The anchor's month and day every ``interval`` years (Feb 29 → Feb 28)."""

    frequency: Literal["yearly"] = "yearly"

    def _candidates(self, first: date, anchor: date) -> Iterator[date]:
        index = first.year - anchor.year
        if index % self.interval:
            index += self.interval - index % self.interval
        while True:
            day = _clamped(anchor.year + index, anchor.month, anchor.day)
            if day >= first:
                yield day
            index += self.interval

    def _matches(self, day: date, anchor: date) -> bool:
        return (
            (day.year - anchor.year) % self.interval == 0
            and day == _clamped(day.year, anchor.month, anchor.day)
        )

    def _describe_frequency(self) -> str:
        return "Yearly" if self.interval == 1 else f"Every {self.interval} years"


RecurrenceRule = Annotated[
    Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule, CustomRule],
    Field(discriminator="frequency"),
]

_RULE_ADAPTER: TypeAdapter = TypeAdapter(RecurrenceRule)


def rule_to_json(rule: BaseRule | None) -> str | None:
    """Serialize a rule for storage (None stays None)."""
    if rule is None:
        return None
    return rule.model_dump_json()


def rule_from_json(raw: str | None) -> BaseRule | None:
    """Parse a stored rule; the ``frequency`` tag selects the variant."""
    if not raw:
        return None
    return _RULE_ADAPTER.validate_json(raw)


def parse_rule(data: dict) -> BaseRule:
    """Validate a plain dict (e.g. from an API payload) into a rule."""
    return _RULE_ADAPTER.validate_python(data)
