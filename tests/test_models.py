"""Tests for cadence.data.models — item and snapshot dataclasses."""

from datetime import date, datetime, time, timedelta

from cadence.core.recurrence import DailyRule, RepeatMode
from cadence.data.models import (
    ActionKind,
    ItemKind,
    PendingRecurrence,
    RecurringItem,
    SkipReason,
    StreakState,
)


def test_item_defaults():
    item = RecurringItem(title="Laundry")
    assert item.kind is ItemKind.TASK
    assert item.occurrence_index == 1
    assert item.notification_fired is False
    assert item.tag_ids == []
    assert item.grace_period_days == 1
    assert item.id != RecurringItem(title="Laundry").id


def test_next_recurrence_from_anchor():
    item = RecurringItem(
        title="Bins", recurrence_rule=DailyRule(interval=7),
        due_date=date(2024, 1, 1), completed_date=date(2024, 1, 3),
    )
    assert item.next_recurrence() == date(2024, 1, 8)


def test_next_recurrence_from_completion():
    rule = DailyRule(interval=7, repeat_mode=RepeatMode.FROM_COMPLETION_DATE)
    item = RecurringItem(title="Bins", recurrence_rule=rule, due_date=date(2024, 1, 1))
    assert item.next_recurrence(today=date(2024, 1, 4)) == date(2024, 1, 11)
    item.completed_date = date(2024, 1, 3)
    assert item.next_recurrence(today=date(2024, 1, 4)) == date(2024, 1, 10)


def test_next_recurrence_without_rule():
    assert RecurringItem(title="Once").next_recurrence() is None


def test_reminder_at():
    item = RecurringItem(
        title="Dentist", due_date=date(2024, 3, 5),
        alert_time=time(10, 0), reminder_offset=timedelta(hours=1),
    )
    assert item.reminder_at() == datetime(2024, 3, 5, 9, 0)
    item.alert_time = None
    assert item.reminder_at() is None


def test_reminder_falls_back_to_rule_time():
    item = RecurringItem(
        title="Pills", due_date=date(2024, 3, 5),
        recurrence_rule=DailyRule(preferred_time=time(21, 0)),
    )
    assert item.reminder_at() == datetime(2024, 3, 5, 21, 0)


def test_snapshot_and_back():
    item = RecurringItem(title="Bins", kind=ItemKind.HABIT, occurrence_index=2, tag_ids=["t"])
    pending = PendingRecurrence.snapshot(item, date(2024, 1, 8), created_date=date(2024, 1, 1))
    assert pending.source_item_id == item.id
    assert pending.occurrence_index == 3
    assert pending.is_ready(date(2024, 1, 8))
    assert not pending.is_ready(date(2024, 1, 7))

    live = pending.to_item(["t"])
    assert live.id != item.id
    assert live.kind is ItemKind.HABIT
    assert live.due_date == date(2024, 1, 8)
    assert live.completed_date is None


def test_streak_state_apply():
    item = RecurringItem(title="Run")
    StreakState(2, 5, date(2024, 1, 2)).apply_to(item)
    assert StreakState.of(item) == StreakState(2, 5, date(2024, 1, 2))


def test_enum_values():
    assert SkipReason.VACATION.preserves_streak
    assert not SkipReason.NOT_MOTIVATED.preserves_streak
    assert SkipReason("forgot_to") is SkipReason.FORGOT
    assert ActionKind.SNOOZE_TASK.target_kind is ItemKind.TASK
    assert ActionKind.OPEN_HABIT.target_kind is ItemKind.HABIT
