"""
Cadence — Streak & Grace Tracker.

Decides whether a habit's streak survives each new completion. Only
*scheduled* days can break a streak: for a Mon/Wed/Fri habit, an empty
Tuesday never counts. Skips for vacation, sickness or emergencies excuse the
skipped day and the ``grace_period_days`` after it.

The streak fields stored on an item are a cache; ``recalculate_streak``
rebuilds them from the completion history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from cadence.core.recurrence import BaseRule, as_day
from cadence.data.models import CompletionEntry, SkipEntry, SkipReason, StreakState
from cadence.ports.store_port import StoreError

if TYPE_CHECKING:
    from datetime import datetime

    from cadence.data.models import RecurringItem
    from cadence.ports.clock_port import Clock
    from cadence.ports.store_port import ItemStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure streak arithmetic
# ---------------------------------------------------------------------------


def _excused_days(skips: Iterable[SkipEntry], grace_period_days: int) -> set[date]:
    """Days covered by a streak-preserving skip or the grace window after it."""
    excused: set[date] = set()
    for skip in skips:
        if skip.reason is None or not skip.reason.preserves_streak:
            continue
        for offset in range(max(0, grace_period_days) + 1):
            excused.add(skip.skipped_date + timedelta(days=offset))
    return excused


def _scheduled_between(
    start: date, end: date, rule: BaseRule | None, anchor: date | None,
) -> Iterable[date]:
    """Scheduled days strictly between *start* and *end*."""
    first = start + timedelta(days=1)
    if rule is None:
        # Flexible item: every day counts.
        for offset in range((end - first).days):
            yield first + timedelta(days=offset)
        return
    for day in rule.iter_occurrences(first, anchor if anchor is not None else start):
        if day >= end:
            return
        yield day


def update_streak(
    state: StreakState,
    new_completion: date | datetime,
    rule: BaseRule | None = None,
    history: Iterable[date] = (),
    *,
    anchor: date | None = None,
    skips: Iterable[SkipEntry] = (),
    grace_period_days: int = 0,
) -> StreakState:
    """Return the streak state after one more completion.

    *history* holds the days already completed (the new one may be among
    them). A completion earlier than the last one rebuilds the state from
    the whole history instead.
    """
    day = as_day(new_completion, rule.time_zone if rule is not None else None)
    last = state.last_completed_date

    if last is not None and day < last:
        return recalculate_streak(
            set(history) | {day}, rule,
            anchor=anchor, skips=skips, grace_period_days=grace_period_days,
        )
    if last == day:
        return state

    if last is None:
        current = 1
    else:
        done = set(history)
        excused = _excused_days(skips, grace_period_days)
        missed = any(
            d not in done and d not in excused
            for d in _scheduled_between(last, day, rule, anchor)
        )
        current = 1 if missed else state.current_streak + 1

    return StreakState(
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_completed_date=day,
    )


def recalculate_streak(
    history: Iterable[date],
    rule: BaseRule | None = None,
    *,
    anchor: date | None = None,
    skips: Iterable[SkipEntry] = (),
    grace_period_days: int = 0,
) -> StreakState:
    """Rebuild the streak state by replaying every completion in order."""
    days = sorted(set(history))
    skips = list(skips)
    state = StreakState()
    for day in days:
        state = update_streak(
            state, day, rule, days,
            anchor=anchor, skips=skips, grace_period_days=grace_period_days,
        )
    return state


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class SkipImpact(str, Enum):
    RARE = "rare"
    OCCASIONAL = "occasional"
    WORRYING = "worrying"
    CONCERNING = "concerning"
    ALARMING = "alarming"
    PROBLEMATIC = "problematic"


def skip_impact(skips: Iterable[SkipEntry], today: date, days: int = 30) -> SkipImpact:
    """Classify how often a habit was skipped over the last *days* days.

    Below 10% is rare (occasional when every skip gave a reason), up to 30%
    worrying or concerning, above that alarming or problematic.
    """
    window_start = today - timedelta(days=days)
    recent = [s for s in skips if window_start <= s.skipped_date <= today]
    rate = len(recent) / days if days > 0 else 0.0
    with_reasons = bool(recent) and all(s.reason is not None for s in recent)

    if rate < 0.1:
        return SkipImpact.OCCASIONAL if with_reasons else SkipImpact.RARE
    if rate <= 0.3:
        return SkipImpact.CONCERNING if with_reasons else SkipImpact.WORRYING
    return SkipImpact.PROBLEMATIC if with_reasons else SkipImpact.ALARMING


def completion_rate(
    item: RecurringItem, completions: Iterable[CompletionEntry], days: int, today: date,
) -> float:
    """Completed share of the scheduled days in the last *days* days."""
    start = today - timedelta(days=days)
    done = {c.completed_date for c in completions if start <= c.completed_date <= today}
    rule = item.recurrence_rule
    if rule is None:
        due = days
    else:
        window = _scheduled_between(
            start - timedelta(days=1), today + timedelta(days=1), rule, item.anchor_date,
        )
        due = sum(1 for _ in window)
    if due <= 0:
        return 0.0
    return min(1.0, len(done) / due)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


@dataclass
class DayStatus:
    completed: bool
    skipped: bool


class StreakTracker:
    """Records completions and skips, keeping each habit's streak cache current.

    Persistence failures are logged, kept in ``last_error`` and reported as
    a ``None``/``False`` result.
    """

    def __init__(self, store: ItemStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock
        self.last_error: StoreError | None = None

    def _day(self, item: RecurringItem, day: date | datetime | None) -> date:
        if day is None:
            day = self._clock.now()
        zone = item.recurrence_rule.time_zone if item.recurrence_rule else None
        return as_day(day, zone)

    def _status(self, item: RecurringItem, day: date) -> DayStatus:
        return DayStatus(
            completed=any(c.completed_date == day for c in self._store.completions(item.id)),
            skipped=any(s.skipped_date == day for s in self._store.skips(item.id)),
        )

    # -- gates ---------------------------------------------------------------

    def can_mark_completed(self, item: RecurringItem, day: date | None = None) -> bool:
        status = self._status(item, self._day(item, day))
        return not (status.completed or status.skipped)

    def can_skip(self, item: RecurringItem, day: date | None = None) -> bool:
        """Skipping is allowed only for a day with no completion and no skip.

        Mutually exclusive with ``can_mark_completed`` once either exists;
        on an untouched day both are open until one of them is used.
        """
        return self.can_mark_completed(item, day)

    # -- writes --------------------------------------------------------------

    def _compute(self, item: RecurringItem, day: date) -> StreakState:
        history = [c.completed_date for c in self._store.completions(item.id)]
        return update_streak(
            StreakState.of(item),
            day,
            item.recurrence_rule,
            history,
            anchor=item.anchor_date,
            skips=self._store.skips(item.id),
            grace_period_days=item.grace_period_days,
        )

    def record_completion(
        self, item: RecurringItem, day: date | datetime | None = None, notes: str = "",
    ) -> StreakState | None:
        """Record a completion and update the streak; None if not permitted."""
        when = self._day(item, day)
        previous = StreakState.of(item), item.grace_expiry_date
        try:
            if not self.can_mark_completed(item, when):
                logger.debug("Item %s already completed or skipped on %s", item.id, when)
                return None
            state = self._compute(item, when)
            state.apply_to(item)
            item.grace_expiry_date = None
            self._store.record_completion(
                CompletionEntry(item_id=item.id, completed_date=when, notes=notes), item,
            )
        except StoreError as exc:
            logger.error("Failed to record completion of %s: %s", item.id, exc)
            self.last_error = exc
            self._restore(item, *previous)
            return None
        logger.info(
            "Item %s completed on %s: streak %d (best %d)",
            item.id, when, state.current_streak, state.longest_streak,
        )
        return state

    def record_skip(
        self,
        item: RecurringItem,
        day: date | datetime | None = None,
        reason: SkipReason | None = None,
        notes: str = "",
    ) -> SkipEntry | None:
        """Record a skip for a habit; None if not a habit or not permitted."""
        if not item.is_habit:
            logger.debug("Skip ignored for non-habit %s", item.id)
            return None
        when = self._day(item, day)
        entry = SkipEntry(item_id=item.id, skipped_date=when, reason=reason, notes=notes)
        previous = StreakState.of(item), item.grace_expiry_date
        try:
            if not self.can_skip(item, when):
                logger.debug("Item %s already completed or skipped on %s", item.id, when)
                return None
            self._open_grace_window(item, when, reason)
            self._store.record_skip(entry, item)
        except StoreError as exc:
            logger.error("Failed to record skip of %s: %s", item.id, exc)
            self.last_error = exc
            self._restore(item, *previous)
            return None
        return entry

    @staticmethod
    def _restore(item: RecurringItem, state: StreakState, grace_expiry: date | None) -> None:
        # Nothing was written, so the in-memory item goes back to match the store.
        state.apply_to(item)
        item.grace_expiry_date = grace_expiry

    @staticmethod
    def _open_grace_window(item: RecurringItem, day: date, reason: SkipReason | None) -> None:
        expiry = day + timedelta(days=item.grace_period_days)
        if reason is not None and reason.preserves_streak:
            item.grace_expiry_date = expiry
        elif not item.in_grace_period(day):
            # Informational only: misses are excused by preserving skips alone.
            item.grace_expiry_date = expiry

    def undo_completion(self, item: RecurringItem, day: date | datetime | None = None) -> bool:
        """Remove the completion for *day* (default today) and rebuild the streak."""
        when = self._day(item, day)
        try:
            if not self._store.delete_completion(item.id, when):
                return False
            self.recalculate(item)
        except StoreError as exc:
            logger.error("Failed to undo completion of %s: %s", item.id, exc)
            self.last_error = exc
            return False
        return True

    def recalculate(self, item: RecurringItem) -> StreakState:
        """Rebuild the cached streak from the stored history and save it."""
        state = recalculate_streak(
            [c.completed_date for c in self._store.completions(item.id)],
            item.recurrence_rule,
            anchor=item.anchor_date,
            skips=self._store.skips(item.id),
            grace_period_days=item.grace_period_days,
        )
        state.apply_to(item)
        self._store.save_item(item)
        return state

    def reset_streak(self, item: RecurringItem) -> bool:
        item.current_streak = 0
        item.last_completed_date = None
        try:
            self._store.save_item(item)
        except StoreError as exc:
            logger.error("Failed to reset streak of %s: %s", item.id, exc)
            self.last_error = exc
            return False
        logger.info("Streak of %s reset", item.id)
        return True
