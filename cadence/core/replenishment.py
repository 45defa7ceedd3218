"""
Cadence — Habit Replenishment.

Once a day, after the configured replenishment time, each habit that is due
today gets a fresh current instance: its delivery and snooze state is reset.
A habit whose previous instance is still open (neither completed nor
skipped) keeps it. Runs opportunistically on every activation.
"""

from __future__ import annotations

import logging
from datetime import time
from typing import TYPE_CHECKING

from cadence.config import settings
from cadence.core.recurrence import as_day
from cadence.data.models import ItemKind
from cadence.ports.store_port import StoreError

if TYPE_CHECKING:
    from datetime import date, datetime

    from cadence.data.models import RecurringItem
    from cadence.ports.clock_port import Clock
    from cadence.ports.store_port import ItemStore

logger = logging.getLogger(__name__)


class HabitReplenisher:
    """Resets habit instance state at the start of each habit day."""

    def __init__(
        self, store: ItemStore, clock: Clock, replenish_at: time | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self.replenish_at = replenish_at or time(
            settings.REPLENISHMENT_HOUR, settings.REPLENISHMENT_MINUTE,
        )
        self.last_error: StoreError | None = None

    def _previous_instance_closed(self, habit: RecurringItem) -> bool:
        instance = habit.current_instance_date
        if instance is None:
            return True
        if habit.last_completed_date is not None and habit.last_completed_date >= instance:
            return True
        return any(s.skipped_date >= instance for s in self._store.skips(habit.id))

    def _due_on(self, habit: RecurringItem, day: date) -> bool:
        rule = habit.recurrence_rule
        if rule is None:
            return True
        return rule.matches(day, habit.anchor_date)

    def needs_replenishment(self, habit: RecurringItem, today: date) -> bool:
        if habit.current_instance_date is not None and habit.current_instance_date >= today:
            return False
        return self._due_on(habit, today) and self._previous_instance_closed(habit)

    def replenish(self, now: datetime | None = None) -> list[str]:
        """Start today's instance of every eligible habit; return their ids."""
        now = now or self._clock.now()
        if now.time() < self.replenish_at:
            logger.debug("Before replenishment time %s; nothing to do", self.replenish_at)
            return []
        today = as_day(now)

        refreshed: list[str] = []
        try:
            for habit in self._store.list_items(ItemKind.HABIT):
                if not self.needs_replenishment(habit, today):
                    continue
                habit.current_instance_date = today
                habit.notification_fired = False
                habit.snoozed_until = None
                self._store.save_item(habit)
                refreshed.append(habit.id)
        except StoreError as exc:
            logger.error("Habit replenishment failed: %s", exc)
            self.last_error = exc
        if refreshed:
            logger.info("Replenished %d habits for %s", len(refreshed), today)
        return refreshed
