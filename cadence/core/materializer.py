"""
Cadence — Deferred Recurrence Materializer.

Completing a recurring item does not create its next instance right away.
It stores a pending snapshot scheduled for the next occurrence, and a later
``sweep`` (run on every activation) turns ready snapshots into live items.
Each snapshot is deleted in the same transaction that inserts its item, so
sweeping any number of times never creates an instance twice.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cadence.core.recurrence import as_day
from cadence.data.models import PendingRecurrence
from cadence.ports.store_port import StoreError

if TYPE_CHECKING:
    from datetime import date, datetime

    from cadence.data.models import RecurringItem
    from cadence.ports.clock_port import Clock
    from cadence.ports.store_port import PendingRecurrenceStore

logger = logging.getLogger(__name__)


class RecurrenceMaterializer:
    """Schedules and materializes the next instances of recurring items.

    Persistence failures are logged, kept in ``last_error`` and reported as
    ``None`` or an omitted id. Retrying is left to the caller.
    """

    def __init__(self, store: PendingRecurrenceStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock
        self.last_error: StoreError | None = None

    def _today(self, now: date | datetime | None = None) -> date:
        return as_day(now if now is not None else self._clock.now())

    def next_scheduled_date(self, item: RecurringItem) -> date | None:
        """Due date of the instance after *item*, or None when the chain ends."""
        rule = item.recurrence_rule
        if rule is None:
            return None
        if rule.max_occurrences is not None and item.occurrence_index >= rule.max_occurrences:
            return None
        return item.next_recurrence(self._today())

    def on_item_completed(self, item: RecurringItem) -> PendingRecurrence | None:
        """Persist the snapshot of *item*'s next instance, if there is one.

        Returns None when the chain ends or that occurrence is already pending.
        """
        rule = item.recurrence_rule
        if rule is None:
            return None
        if not item.is_completed and not rule.recreate_if_incomplete:
            logger.debug("Item %s not completed and not recreated when incomplete", item.id)
            return None
        scheduled = self.next_scheduled_date(item)
        if scheduled is None:
            logger.info("Recurrence chain of %s ends at occurrence %d", item.id, item.occurrence_index)
            return None

        pending = PendingRecurrence.snapshot(item, scheduled, created_date=self._today())
        try:
            if not self._store.add_pending(pending):
                return None
        except StoreError as exc:
            logger.error("Failed to schedule next instance of %s: %s", item.id, exc)
            self.last_error = exc
            return None
        return pending

    def sweep(self, now: date | datetime | None = None) -> list[str]:
        """Materialize every snapshot scheduled on or before *now*.

        Returns the ids of the items created by this call only.
        """
        today = self._today(now)
        try:
            ready = self._store.list_pending(ready_on=today)
        except StoreError as exc:
            logger.error("Failed to list ready recurrences: %s", exc)
            self.last_error = exc
            return []

        created: list[str] = []
        for pending in ready:
            item = pending.to_item(list(pending.tag_ids))
            try:
                if self._store.consume(pending.id, item):
                    created.append(item.id)
            except StoreError as exc:
                logger.error("Failed to materialize pending recurrence %s: %s", pending.id, exc)
                self.last_error = exc
        if created:
            logger.info("Sweep on %s created %d items", today, len(created))
        return created

    def cancel_for_source(self, item_id: str) -> int:
        try:
            return self._store.delete_for_source(item_id)
        except StoreError as exc:
            logger.error("Failed to cancel pending recurrences of %s: %s", item_id, exc)
            self.last_error = exc
            return 0

    def cancel_all(self) -> int:
        try:
            return self._store.delete_all()
        except StoreError as exc:
            logger.error("Failed to clear pending recurrences: %s", exc)
            self.last_error = exc
            return 0

    def list_pending(self) -> list[PendingRecurrence]:
        return self._store.list_pending()

    def list_ready(self, now: date | datetime | None = None) -> list[PendingRecurrence]:
        return self._store.list_pending(ready_on=self._today(now))

    def pending_count(self) -> int:
        return self._store.count_pending()

    def ready_count(self, now: date | datetime | None = None) -> int:
        return self._store.count_pending(ready_on=self._today(now))
