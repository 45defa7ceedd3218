"""Logging navigation adapter — implements NavigatorPort.

Hosts without a UI record where a tapped reminder would take the user.
"""

from __future__ import annotations

import logging

from cadence.data.models import ItemKind

logger = logging.getLogger(__name__)


class LogNavigator:
    """Remembers the last requested destination and logs every request."""

    def __init__(self) -> None:
        self.last_opened: tuple[ItemKind, str] | None = None

    async def open_item(self, kind: ItemKind, item_id: str) -> None:
        self.last_opened = (kind, item_id)
        logger.info("Navigate to %s %s", kind.value, item_id)
