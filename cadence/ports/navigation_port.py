"""Navigation port — where a tapped reminder takes the user."""

from __future__ import annotations

from typing import Protocol

from cadence.data.models import ItemKind


class NavigatorPort(Protocol):
    async def open_item(self, kind: ItemKind, item_id: str) -> None: ...
