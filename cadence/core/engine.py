"""
Cadence — Engine.

Wires the stores, services and action queue together and owns their
lifecycle: CONSTRUCTED → READY → TORN_DOWN. Everything runs on the event loop
that called ``start``; other threads reach it through ``submit_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from typing import TYPE_CHECKING

from cadence.config import Settings, settings as default_settings
from cadence.core.action_queue import ActionQueue, ActionServices
from cadence.core.completion import CascadingCompletion, IndependentCompletion, TaskCompletionService
from cadence.core.materializer import RecurrenceMaterializer
from cadence.core.notification_router import NotificationRouter
from cadence.core.replenishment import HabitReplenisher
from cadence.core.retry_queue import SaveRetryQueue
from cadence.core.streaks import StreakTracker
from cadence.ports.store_port import StoreError

if TYPE_CHECKING:
    from datetime import datetime

    from cadence.data.models import PendingAction
    from cadence.ports.clock_port import Clock
    from cadence.ports.navigation_port import NavigatorPort
    from cadence.ports.reminder_port import ReminderPort
    from cadence.ports.store_port import ItemStore, PendingRecurrenceStore

logger = logging.getLogger(__name__)


class EngineState(Enum):
    CONSTRUCTED = "constructed"
    READY = "ready"
    TORN_DOWN = "torn_down"


class EngineStateError(RuntimeError):
    """Raised when an operation is called in the wrong lifecycle state."""


@dataclass
class ActivationReport:
    retried: int = 0
    created_ids: list[str] = field(default_factory=list)
    replenished_ids: list[str] = field(default_factory=list)
    reminders_armed: int = 0


class Engine:
    def __init__(
        self,
        items: ItemStore,
        pending: PendingRecurrenceStore,
        reminders: ReminderPort,
        navigator: NavigatorPort,
        clock: Clock,
        config: Settings | None = None,
    ) -> None:
        cfg = config or default_settings
        self.state = EngineState.CONSTRUCTED
        self._loop: asyncio.AbstractEventLoop | None = None

        self.items = items
        self.reminders = reminders
        self.navigator = navigator
        self.clock = clock
        self.snooze_minutes = cfg.SNOOZE_MINUTES

        policy = CascadingCompletion() if cfg.CASCADE_COMPLETION else IndependentCompletion()
        self.materializer = RecurrenceMaterializer(pending, clock)
        self.tracker = StreakTracker(items, clock)
        self.tasks = TaskCompletionService(items, self.materializer, clock, policy)
        self.replenisher = HabitReplenisher(
            items, clock, time(cfg.REPLENISHMENT_HOUR, cfg.REPLENISHMENT_MINUTE),
        )
        self.retry_queue = SaveRetryQueue(cfg.SAVE_MAX_RETRIES)
        self.queue = ActionQueue()
        self.router = NotificationRouter(self.queue)

    def _require(self, state: EngineState, operation: str) -> None:
        if self.state is not state:
            raise EngineStateError(
                f"Cannot {operation} while engine is {self.state.value} (needs {state.value})"
            )

    async def start(self) -> None:
        """Bind to the running loop and replay actions that arrived early."""
        self._require(EngineState.CONSTRUCTED, "start")
        self._loop = asyncio.get_running_loop()
        await self.queue.on_services_ready(ActionServices(
            store=self.items,
            tracker=self.tracker,
            tasks=self.tasks,
            reminders=self.reminders,
            navigator=self.navigator,
            clock=self.clock,
            snooze_minutes=self.snooze_minutes,
            retry_queue=self.retry_queue,
        ))
        self.state = EngineState.READY
        logger.info("Engine ready")

    async def activate(self, now: datetime | None = None) -> ActivationReport:
        """One activation pass: retry failed writes, sweep, replenish habits."""
        self._require(EngineState.READY, "activate")
        now = now or self.clock.now()
        report = ActivationReport()
        report.retried = self.retry_queue.process()
        report.created_ids = self.materializer.sweep(now)
        report.replenished_ids = self.replenisher.replenish(now)

        for item_id in report.created_ids:
            try:
                item = self.items.get_item(item_id)
            except StoreError as exc:
                logger.error("Failed to load new item %s: %s", item_id, exc)
                continue
            fire_at = item.reminder_at() if item is not None else None
            if fire_at is not None:
                await self.reminders.schedule(item, fire_at)
                report.reminders_armed += 1

        logger.info(
            "Activation: %d retried, %d created, %d replenished, %d reminders armed",
            report.retried, len(report.created_ids),
            len(report.replenished_ids), report.reminders_armed,
        )
        return report

    def submit_threadsafe(self, action: PendingAction) -> Future:
        """Apply *action* on the engine loop from any other thread."""
        self._require(EngineState.READY, "submit actions")
        if self._loop is None:
            raise EngineStateError("Cannot submit actions: engine has no running loop")
        return self.queue.submit_threadsafe(self._loop, action)

    async def shutdown(self) -> None:
        if self.state is EngineState.TORN_DOWN:
            return
        self.state = EngineState.TORN_DOWN
        self._loop = None
        logger.info("Engine shut down (%d writes left unretried)", len(self.retry_queue))
