"""
Cadence — Cold-Start Action Queue.

Notification actions can arrive before the services that apply them exist,
e.g. when a tap on a reminder launches the process. Until
``on_services_ready`` is called every action and delivery mark is queued in
arrival order; afterwards both queues are drained once, marks first, and
later arrivals are applied inline.

All methods run on the engine's event loop. Callers on other threads use
``submit_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from cadence.config import settings
from cadence.data.models import ActionKind, ItemKind, PendingAction
from cadence.ports.store_port import StoreError

if TYPE_CHECKING:
    from cadence.core.completion import TaskCompletionService
    from cadence.core.retry_queue import SaveRetryQueue
    from cadence.core.streaks import StreakTracker
    from cadence.data.models import RecurringItem
    from cadence.ports.clock_port import Clock
    from cadence.ports.navigation_port import NavigatorPort
    from cadence.ports.reminder_port import ReminderPort
    from cadence.ports.store_port import ItemStore

logger = logging.getLogger(__name__)


class QueueState(Enum):
    NOT_READY = "not_ready"
    READY = "ready"


@dataclass
class ActionServices:
    """Everything the queue needs to apply an action."""

    store: ItemStore
    tracker: StreakTracker
    tasks: TaskCompletionService
    reminders: ReminderPort
    navigator: NavigatorPort
    clock: Clock
    snooze_minutes: int = field(default_factory=lambda: settings.SNOOZE_MINUTES)
    retry_queue: SaveRetryQueue | None = None


class ActionQueue:
    """Buffers actions until services are ready, then replays them in order."""

    def __init__(self) -> None:
        self.state = QueueState.NOT_READY
        self._services: ActionServices | None = None
        self._actions: list[PendingAction] = []
        self._marks: list[str] = []

    @property
    def queued_actions(self) -> list[PendingAction]:
        return list(self._actions)

    @property
    def queued_marks(self) -> list[str]:
        return list(self._marks)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def enqueue_or_apply(self, action: PendingAction) -> None:
        if self.state is QueueState.READY and self._services is not None:
            await self._apply(self._services, action)
            return
        self._actions.append(action)
        logger.debug("Queued %s for %s (%d waiting)", action.kind.value, action.item_id, len(self._actions))

    async def mark_delivered(self, item_id: str) -> None:
        if self.state is QueueState.READY and self._services is not None:
            await self._apply_mark(self._services, item_id)
            return
        self._marks.append(item_id)
        logger.debug("Queued delivery mark for %s (%d waiting)", item_id, len(self._marks))

    async def on_services_ready(self, services: ActionServices) -> None:
        """Inject the services, replay everything queued, then go READY.

        Each pass swaps a queue for an empty list before iterating it, so
        anything queued while a pass is running lands in the next pass.
        """
        if self._services is not None:
            logger.warning("Action queue services already injected; ignoring")
            return
        self._services = services
        replayed = 0
        while self._marks or self._actions:
            marks, self._marks = self._marks, []
            for item_id in marks:
                await self._apply_mark(services, item_id)
            actions, self._actions = self._actions, []
            for action in actions:
                await self._apply(services, action)
            replayed += len(marks) + len(actions)
        self.state = QueueState.READY
        logger.info("Action queue ready; replayed %d queued entries", replayed)

    def submit_threadsafe(
        self, loop: asyncio.AbstractEventLoop, action: PendingAction,
    ) -> Future:
        """Hand *action* to the queue from a thread that is not running *loop*."""
        return asyncio.run_coroutine_threadsafe(self.enqueue_or_apply(action), loop)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    @staticmethod
    def _lookup(
        services: ActionServices, item_id: str, kind: ItemKind | None = None,
    ) -> RecurringItem | None:
        try:
            item = services.store.get_item(item_id)
        except StoreError as exc:
            logger.error("Failed to load %s: %s", item_id, exc)
            return None
        if item is None or (kind is not None and item.kind is not kind):
            logger.debug("Dropping action for unknown %s %s", kind.value if kind else "item", item_id)
            return None
        return item

    @staticmethod
    def _save(services: ActionServices, item: RecurringItem) -> None:
        try:
            services.store.save_item(item)
        except StoreError as exc:
            logger.error("Failed to save %s: %s", item.id, exc)
            if services.retry_queue is not None:
                services.retry_queue.enqueue(f"save {item.id}", lambda: services.store.save_item(item))

    async def _apply(self, services: ActionServices, action: PendingAction) -> None:
        kind = action.kind

        if kind is ActionKind.COMPLETE_TASK:
            services.tasks.complete_task(action.item_id)
            return

        item = self._lookup(services, action.item_id, kind.target_kind)
        if item is None:
            return

        if kind is ActionKind.COMPLETE_HABIT:
            services.tracker.record_completion(item)
        elif kind is ActionKind.SKIP_HABIT:
            services.tracker.record_skip(item)
        elif kind in (ActionKind.SNOOZE_HABIT, ActionKind.SNOOZE_TASK):
            await self._snooze(services, item)
        elif kind in (ActionKind.OPEN_HABIT, ActionKind.OPEN_TASK):
            await services.navigator.open_item(item.kind, item.id)

    async def _snooze(self, services: ActionServices, item: RecurringItem) -> None:
        # Delivery stays unmarked: the reminder comes back.
        until = services.clock.now() + timedelta(minutes=services.snooze_minutes)
        item.snoozed_until = until
        self._save(services, item)
        await services.reminders.schedule(item, until)
        logger.info("%s %s snoozed until %s", item.kind.value.title(), item.id, until)

    async def _apply_mark(self, services: ActionServices, item_id: str) -> None:
        item = self._lookup(services, item_id)
        if item is None:
            return
        item.notification_fired = True
        if item.kind is ItemKind.TASK:
            item.snoozed_until = None
        self._save(services, item)
        logger.debug("Delivery marked for %s", item_id)
