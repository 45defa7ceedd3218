"""Tests for cadence.core.replenishment — daily habit instance reset."""

from datetime import date, datetime, time, timezone

import pytest

from cadence.core.recurrence import Weekday, WeeklyRule
from cadence.core.replenishment import HabitReplenisher
from cadence.data.models import ItemKind, RecurringItem, SkipEntry

TUESDAY_7AM = datetime(2024, 1, 2, 7, 0, tzinfo=timezone.utc)
MONDAY = date(2024, 1, 1)
TUESDAY = date(2024, 1, 2)


@pytest.fixture
def replenisher(item_db, clock):
    clock.current = TUESDAY_7AM
    return HabitReplenisher(item_db, clock, replenish_at=time(6, 0))


def _habit(item_db, **fields):
    return item_db.add_item(RecurringItem(
        title="Journal", kind=ItemKind.HABIT, created_date=MONDAY, **fields,
    ))


class TestReplenish:
    def test_nothing_before_replenishment_time(self, replenisher, item_db):
        _habit(item_db)
        assert replenisher.replenish(datetime(2024, 1, 2, 5, 59, tzinfo=timezone.utc)) == []

    def test_new_habit_gets_first_instance(self, replenisher, item_db):
        habit = _habit(item_db, notification_fired=True)
        assert replenisher.replenish() == [habit.id]
        stored = item_db.get_item(habit.id)
        assert stored.current_instance_date == TUESDAY
        assert stored.notification_fired is False
        assert stored.snoozed_until is None

    def test_only_once_per_day(self, replenisher, item_db):
        _habit(item_db)
        replenisher.replenish()
        assert replenisher.replenish() == []

    def test_open_previous_instance_is_kept(self, replenisher, item_db):
        _habit(item_db, current_instance_date=MONDAY, notification_fired=True)
        assert replenisher.replenish() == []

    def test_completed_previous_instance(self, replenisher, item_db):
        habit = _habit(item_db, current_instance_date=MONDAY, last_completed_date=MONDAY)
        assert replenisher.replenish() == [habit.id]

    def test_skipped_previous_instance(self, replenisher, item_db):
        habit = _habit(item_db, current_instance_date=MONDAY)
        item_db.add_skip(SkipEntry(item_id=habit.id, skipped_date=MONDAY))
        assert replenisher.replenish() == [habit.id]

    def test_not_due_today(self, replenisher, item_db):
        _habit(item_db, recurrence_rule=WeeklyRule(days_of_week={Weekday.MONDAY}))
        assert replenisher.replenish() == []

    def test_tasks_are_ignored(self, replenisher, item_db):
        item_db.add_item(RecurringItem(title="Task", created_date=MONDAY))
        assert replenisher.replenish() == []

    def test_default_time_from_settings(self, item_db, clock):
        assert HabitReplenisher(item_db, clock).replenish_at == time(6, 0)
