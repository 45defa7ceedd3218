"""Reminder port — abstract interface for arming local reminders.

Core modules depend on this protocol, never on a specific delivery mechanism.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from cadence.data.models import RecurringItem


class ReminderPort(Protocol):
    """Abstract reminder interface used by core modules."""

    async def schedule(self, item: RecurringItem, fire_at: datetime) -> None: ...

    async def cancel(self, item_id: str) -> None: ...
