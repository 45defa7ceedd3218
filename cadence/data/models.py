"""
Cadence — Data Models.

Recurring items, their completion/skip history, and the deferred
recurrence snapshots persist in SQLite across restarts. Streak fields on an
item are a cache: they can always be rebuilt from the completion history.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum

from cadence.config import settings
from cadence.core.recurrence import BaseRule, RepeatMode


def new_id() -> str:
    return str(uuid.uuid4())


class ItemKind(str, Enum):
    TASK = "task"
    HABIT = "habit"


class Priority(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SkipReason(str, Enum):
    """Why a habit was skipped.

    Vacation, sickness and emergencies open a grace window; the rest leave
    the ordinary missed-occurrence rule in charge.
    """

    VACATION = "vacation"
    SICK = "sick"
    EMERGENCY = "emergency"
    NO_TIME = "no_time"
    FORGOT = "forgot_to"
    NOT_MOTIVATED = "not_motivated"
    OTHER = "other"

    @property
    def preserves_streak(self) -> bool:
        return self in (SkipReason.VACATION, SkipReason.SICK, SkipReason.EMERGENCY)


class DeleteRule(str, Enum):
    CASCADE = "cascade"   # children are deleted with the item
    NULLIFY = "nullify"   # children survive, their reference is cleared


@dataclass(frozen=True)
class Relationship:
    """A child table that references an item, and what happens on delete."""

    table: str
    column: str
    delete_rule: DeleteRule


# Applied in order by ItemDB.delete_item, inside one transaction.
ITEM_RELATIONSHIPS: tuple[Relationship, ...] = (
    Relationship("completions", "item_id", DeleteRule.CASCADE),
    Relationship("skips", "item_id", DeleteRule.CASCADE),
    Relationship("items", "parent_id", DeleteRule.CASCADE),
    Relationship("pending_recurrences", "source_item_id", DeleteRule.NULLIFY),
)


@dataclass
class RecurringItem:
    """A task or habit, optionally recurring.

    ``occurrence_index`` is 1-based and grows along a recurrence chain; the
    materializer keeps it within the rule's ``max_occurrences``.
    """

    title: str
    kind: ItemKind = ItemKind.TASK
    id: str = field(default_factory=new_id)
    description: str = ""
    priority: Priority = Priority.NONE
    recurrence_rule: BaseRule | None = None
    due_date: date | None = None                  # anchor for FROM_ANCHOR_DATE
    completed_date: date | None = None
    occurrence_index: int = 1
    reminder_offset: timedelta | None = None      # before the due moment
    alert_time: time | None = None                # time of day of the due moment
    notification_fired: bool = False
    snoozed_until: datetime | None = None
    tag_ids: list[str] = field(default_factory=list)
    parent_id: str | None = None                  # one level of subtasks
    created_date: date = field(default_factory=date.today)

    # Habit streak cache
    current_streak: int = 0
    longest_streak: int = 0
    last_completed_date: date | None = None

    # Habit grace window
    grace_period_days: int = field(default_factory=lambda: settings.DEFAULT_GRACE_PERIOD_DAYS)
    grace_expiry_date: date | None = None

    # Habit replenishment
    current_instance_date: date | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_date is not None

    @property
    def is_habit(self) -> bool:
        return self.kind is ItemKind.HABIT

    @property
    def anchor_date(self) -> date:
        return self.due_date or self.created_date

    def in_grace_period(self, day: date) -> bool:
        return self.grace_expiry_date is not None and day <= self.grace_expiry_date

    def next_recurrence(self, today: date | None = None) -> date | None:
        """Next due date per the rule's repeat mode, or None if not recurring."""
        rule = self.recurrence_rule
        if rule is None:
            return None
        if rule.repeat_mode is RepeatMode.FROM_COMPLETION_DATE:
            base = self.completed_date or today or date.today()
        else:
            base = self.anchor_date
        return rule.next_occurrence(base)

    def reminder_at(self) -> datetime | None:
        """The moment the reminder should fire, if one is configured."""
        if self.due_date is None:
            return None
        moment = self.alert_time
        if moment is None and self.recurrence_rule is not None:
            moment = self.recurrence_rule.preferred_time
        if moment is None:
            return None
        when = datetime.combine(self.due_date, moment)
        if self.reminder_offset is not None:
            when -= self.reminder_offset
        return when


@dataclass(frozen=True)
class StreakState:
    """Cached streak counters; ``longest_streak >= current_streak`` always."""

    current_streak: int = 0
    longest_streak: int = 0
    last_completed_date: date | None = None

    @classmethod
    def of(cls, item: RecurringItem) -> StreakState:
        return cls(item.current_streak, item.longest_streak, item.last_completed_date)

    def apply_to(self, item: RecurringItem) -> None:
        item.current_streak = self.current_streak
        item.longest_streak = self.longest_streak
        item.last_completed_date = self.last_completed_date


@dataclass(frozen=True)
class CompletionEntry:
    """One completion of an item on one calendar day."""

    item_id: str
    completed_date: date
    id: str = field(default_factory=new_id)
    notes: str = ""
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class SkipEntry:
    """One skip of a habit on one calendar day."""

    item_id: str
    skipped_date: date
    id: str = field(default_factory=new_id)
    reason: SkipReason | None = None
    notes: str = ""
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class PendingRecurrence:
    """Snapshot of the next instance of a recurrence chain.

    The item fields are denormalized so the instance can still be created
    after its source item is deleted.
    """

    scheduled_date: date
    source_item_id: str | None
    title: str
    occurrence_index: int
    kind: ItemKind = ItemKind.TASK
    id: str = field(default_factory=new_id)
    description: str = ""
    priority: Priority = Priority.NONE
    recurrence_rule: BaseRule | None = None
    tag_ids: list[str] = field(default_factory=list)
    reminder_offset: timedelta | None = None
    alert_time: time | None = None
    created_date: date = field(default_factory=date.today)

    def is_ready(self, today: date) -> bool:
        return self.scheduled_date <= today

    @classmethod
    def snapshot(
        cls, item: RecurringItem, scheduled_date: date, created_date: date,
    ) -> PendingRecurrence:
        return cls(
            scheduled_date=scheduled_date,
            source_item_id=item.id,
            title=item.title,
            occurrence_index=item.occurrence_index + 1,
            kind=item.kind,
            description=item.description,
            priority=item.priority,
            recurrence_rule=item.recurrence_rule,
            tag_ids=list(item.tag_ids),
            reminder_offset=item.reminder_offset,
            alert_time=item.alert_time,
            created_date=created_date,
        )

    def to_item(self, tag_ids: list[str]) -> RecurringItem:
        """Build the live instance; *tag_ids* are the ones that still exist."""
        return RecurringItem(
            title=self.title,
            kind=self.kind,
            description=self.description,
            priority=self.priority,
            recurrence_rule=self.recurrence_rule,
            due_date=self.scheduled_date,
            occurrence_index=self.occurrence_index,
            reminder_offset=self.reminder_offset,
            alert_time=self.alert_time,
            tag_ids=tag_ids,
            created_date=self.scheduled_date,
        )


@dataclass(frozen=True)
class Tag:
    id: str
    name: str


class ActionKind(str, Enum):
    """Notification actions, by their stored string value."""

    COMPLETE_HABIT = "complete_habit"
    SKIP_HABIT = "skip_habit"
    SNOOZE_HABIT = "snooze_habit"
    COMPLETE_TASK = "complete_task"
    SNOOZE_TASK = "snooze_task"
    OPEN_HABIT = "open_habit"
    OPEN_TASK = "open_task"

    @property
    def target_kind(self) -> ItemKind:
        return ItemKind.HABIT if self.value.endswith("_habit") else ItemKind.TASK


@dataclass(frozen=True)
class PendingAction:
    kind: ActionKind
    item_id: str
