"""Store ports — abstract interfaces for item and pending-recurrence storage.

Core modules depend on these protocols, never on SQLite directly.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from cadence.data.models import (
    CompletionEntry,
    ItemKind,
    PendingRecurrence,
    RecurringItem,
    SkipEntry,
)


class StoreError(Exception):
    """Raised when any persistence operation fails."""


class ItemStore(Protocol):
    """Recurring items plus their completion and skip history."""

    def add_item(self, item: RecurringItem) -> RecurringItem: ...

    def get_item(self, item_id: str) -> RecurringItem | None: ...

    def save_item(self, item: RecurringItem) -> None: ...

    def delete_item(self, item_id: str) -> bool: ...

    def list_items(self, kind: ItemKind | None = None) -> list[RecurringItem]: ...

    def list_subtasks(self, parent_id: str) -> list[RecurringItem]: ...

    def add_completion(self, entry: CompletionEntry) -> None: ...

    def record_completion(self, entry: CompletionEntry, item: RecurringItem) -> None:
        """Write the entry and the updated item atomically."""
        ...

    def delete_completion(self, item_id: str, day: date) -> bool: ...

    def completions(self, item_id: str) -> list[CompletionEntry]: ...

    def add_skip(self, entry: SkipEntry) -> None: ...

    def record_skip(self, entry: SkipEntry, item: RecurringItem) -> None: ...

    def skips(self, item_id: str) -> list[SkipEntry]: ...


class PendingRecurrenceStore(Protocol):
    """Snapshots of not-yet-materialized recurrence instances."""

    def add_pending(self, pending: PendingRecurrence) -> bool: ...

    def list_pending(self, ready_on: date | None = None) -> list[PendingRecurrence]: ...

    def count_pending(self, ready_on: date | None = None) -> int: ...

    def consume(self, pending_id: str, item: RecurringItem) -> bool: ...

    def delete_for_source(self, source_item_id: str) -> int: ...

    def delete_all(self) -> int: ...
