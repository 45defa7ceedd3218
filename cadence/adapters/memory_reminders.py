"""In-process reminder adapter — implements ReminderPort.

Keeps one armed reminder per item. Delivery itself is out of scope; a host
application polls ``due()`` and feeds what fired into the notification router.
"""

from __future__ import annotations

import logging
from datetime import datetime

from cadence.data.models import RecurringItem

logger = logging.getLogger(__name__)


class InMemoryReminderScheduler:
    """Dictionary-backed implementation of ReminderPort."""

    def __init__(self) -> None:
        self._armed: dict[str, datetime] = {}

    async def schedule(self, item: RecurringItem, fire_at: datetime) -> None:
        self._armed[item.id] = fire_at
        logger.info("Reminder for %s '%s' armed at %s", item.id, item.title, fire_at)

    async def cancel(self, item_id: str) -> None:
        if self._armed.pop(item_id, None) is not None:
            logger.info("Reminder for %s cancelled", item_id)

    def armed_at(self, item_id: str) -> datetime | None:
        return self._armed.get(item_id)

    def due(self, now: datetime) -> list[str]:
        """Ids whose reminder time has been reached, earliest first."""
        ready = [(when, item_id) for item_id, when in self._armed.items() if when <= now]
        return [item_id for _, item_id in sorted(ready)]
