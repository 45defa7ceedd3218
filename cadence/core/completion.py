"""
Cadence — Task completion.

How completing a parent task relates to its subtasks is a policy choice:

- ``IndependentCompletion``: parents and subtasks change independently.
- ``CascadingCompletion``: completing or uncompleting a parent applies to all
  of its subtasks, and uncompleting a subtask reopens its parent.

``TaskCompletionService`` applies the chosen policy and hands every recurring
task it completes, subtasks included, to the materializer. Reopening a
recurring task cancels the next instance that completion scheduled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from cadence.config import settings
from cadence.core.recurrence import as_day
from cadence.ports.store_port import StoreError

if TYPE_CHECKING:
    from datetime import date

    from cadence.core.materializer import RecurrenceMaterializer
    from cadence.data.models import RecurringItem
    from cadence.ports.clock_port import Clock
    from cadence.ports.store_port import ItemStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class CompletionPolicy(Protocol):
    """Returns the related items it changed; the service saves them."""

    def on_completed(self, store: ItemStore, item: RecurringItem) -> list[RecurringItem]: ...

    def on_uncompleted(self, store: ItemStore, item: RecurringItem) -> list[RecurringItem]: ...


class IndependentCompletion:
    def on_completed(self, store: ItemStore, item: RecurringItem) -> list[RecurringItem]:
        return []

    def on_uncompleted(self, store: ItemStore, item: RecurringItem) -> list[RecurringItem]:
        return []


class CascadingCompletion:
    def on_completed(self, store: ItemStore, item: RecurringItem) -> list[RecurringItem]:
        changed = []
        for sub in store.list_subtasks(item.id):
            if sub.completed_date != item.completed_date:
                sub.completed_date = item.completed_date
                changed.append(sub)
        return changed

    def on_uncompleted(self, store: ItemStore, item: RecurringItem) -> list[RecurringItem]:
        changed = []
        for sub in store.list_subtasks(item.id):
            if sub.is_completed:
                sub.completed_date = None
                changed.append(sub)
        if item.parent_id is not None:
            parent = store.get_item(item.parent_id)
            if parent is not None and parent.is_completed:
                parent.completed_date = None
                changed.append(parent)
        return changed


def policy_from_settings() -> CompletionPolicy:
    if settings.CASCADE_COMPLETION:
        return CascadingCompletion()
    return IndependentCompletion()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TaskCompletionService:
    """Completes and reopens tasks under one completion policy."""

    def __init__(
        self,
        store: ItemStore,
        materializer: RecurrenceMaterializer,
        clock: Clock,
        policy: CompletionPolicy | None = None,
    ) -> None:
        self._store = store
        self._materializer = materializer
        self._clock = clock
        self.policy = policy if policy is not None else policy_from_settings()
        self.last_error: StoreError | None = None

    def _today(self, item: RecurringItem) -> date:
        zone = item.recurrence_rule.time_zone if item.recurrence_rule else None
        return as_day(self._clock.now(), zone)

    def _save(self, item: RecurringItem, related: list[RecurringItem]) -> None:
        self._store.save_item(item)
        for other in related:
            self._store.save_item(other)

    def complete_task(self, item_id: str) -> bool:
        """Complete a task; False if it is missing or already completed."""
        try:
            item = self._store.get_item(item_id)
            if item is None:
                logger.debug("complete_task: item %s not found", item_id)
                return False
            if item.is_completed:
                return False
            item.completed_date = self._today(item)
            related = self.policy.on_completed(self._store, item)
            self._save(item, related)
        except StoreError as exc:
            logger.error("Failed to complete task %s: %s", item_id, exc)
            self.last_error = exc
            return False
        logger.info("Task %s '%s' completed on %s", item.id, item.title, item.completed_date)
        for done in [item, *related]:
            if done.recurrence_rule is not None:
                self._materializer.on_item_completed(done)
        return True

    def uncomplete_task(self, item_id: str) -> bool:
        try:
            item = self._store.get_item(item_id)
            if item is None or not item.is_completed:
                return False
            item.completed_date = None
            related = self.policy.on_uncompleted(self._store, item)
            self._save(item, related)
        except StoreError as exc:
            logger.error("Failed to reopen task %s: %s", item_id, exc)
            self.last_error = exc
            return False
        logger.info("Task %s '%s' reopened", item.id, item.title)
        # A reopened task gets a fresh snapshot when it is completed again.
        for reopened in [item, *related]:
            if reopened.recurrence_rule is not None:
                self._materializer.cancel_for_source(reopened.id)
        return True

    def toggle_task(self, item_id: str) -> bool:
        """Flip a task's completion state; False if nothing changed."""
        try:
            item = self._store.get_item(item_id)
        except StoreError as exc:
            logger.error("Failed to load task %s: %s", item_id, exc)
            self.last_error = exc
            return False
        if item is None:
            logger.debug("toggle_task: item %s not found", item_id)
            return False
        if item.is_completed:
            return self.uncomplete_task(item_id)
        return self.complete_task(item_id)
