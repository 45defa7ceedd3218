"""
Cadence — Notification Router.

Translates reminder deliveries and the user's responses to them into
action-queue calls. Payloads carry the item id under ``habit_id`` or
``task_id``; anything else is ignored.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Mapping

from cadence.data.models import ActionKind, PendingAction

if TYPE_CHECKING:
    from cadence.core.action_queue import ActionQueue

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "default"

# Action identifiers sent by the delivery layer
_RESPONSE_ACTIONS = {
    "complete_habit": ActionKind.COMPLETE_HABIT,
    "skip_habit": ActionKind.SKIP_HABIT,
    "snooze_habit": ActionKind.SNOOZE_HABIT,
    "complete_task": ActionKind.COMPLETE_TASK,
    "snooze_task": ActionKind.SNOOZE_TASK,
}

_SNOOZES = {ActionKind.SNOOZE_HABIT, ActionKind.SNOOZE_TASK}


def _target(payload: Mapping) -> tuple[str, str] | None:
    for key in ("habit_id", "task_id"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return key, value
    return None


class NotificationRouter:
    """The action source feeding an ``ActionQueue``."""

    def __init__(self, queue: ActionQueue) -> None:
        self._queue = queue

    async def on_presented(self, payload: Mapping) -> None:
        """A reminder was shown."""
        target = _target(payload)
        if target is None:
            logger.debug("Ignoring presented notification without item id: %r", payload)
            return
        await self._queue.mark_delivered(target[1])

    async def on_response(self, payload: Mapping, action_identifier: str) -> None:
        """The user acted on a reminder, or tapped it."""
        target = _target(payload)
        if target is None:
            logger.debug("Ignoring response without item id: %r", payload)
            return
        key, item_id = target

        if action_identifier == DEFAULT_ACTION:
            kind = ActionKind.OPEN_HABIT if key == "habit_id" else ActionKind.OPEN_TASK
        else:
            kind = _RESPONSE_ACTIONS.get(action_identifier)
            if kind is None:
                logger.warning("Unknown notification action %r for %s", action_identifier, item_id)
                return

        if kind not in _SNOOZES:
            await self._queue.mark_delivered(item_id)
        await self._queue.enqueue_or_apply(PendingAction(kind, item_id))

    async def on_delivered_batch(self, payloads: Iterable[Mapping]) -> int:
        """Mark every reminder still shown to the user; return how many."""
        marked = 0
        for payload in payloads:
            target = _target(payload)
            if target is not None:
                await self._queue.mark_delivered(target[1])
                marked += 1
        return marked
