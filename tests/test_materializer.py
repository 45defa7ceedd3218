"""Tests for cadence.core.materializer — deferred recurrence creation."""

from datetime import date, time, timedelta
from unittest.mock import MagicMock

from cadence.core.materializer import RecurrenceMaterializer
from cadence.core.recurrence import DailyRule, RepeatMode, Weekday, WeeklyRule
from cadence.data.models import ItemKind, Priority, RecurringItem
from cadence.ports.store_port import StoreError


def _daily_task(**overrides) -> RecurringItem:
    fields = dict(
        title="Water plants",
        recurrence_rule=DailyRule(max_occurrences=3),
        due_date=date(2024, 1, 1),
        completed_date=date(2024, 1, 1),
        occurrence_index=1,
    )
    fields.update(overrides)
    return RecurringItem(**fields)


class TestOnItemCompleted:
    def test_schedules_next_instance(self, materializer):
        pending = materializer.on_item_completed(_daily_task())
        assert pending.scheduled_date == date(2024, 1, 2)
        assert pending.occurrence_index == 2
        assert materializer.pending_count() == 1

    def test_chain_ends_at_max_occurrences(self, materializer):
        assert materializer.on_item_completed(_daily_task(occurrence_index=3)) is None
        assert materializer.pending_count() == 0

    def test_non_recurring_item(self, materializer):
        assert materializer.on_item_completed(RecurringItem(title="Once")) is None

    def test_from_completion_date(self, materializer):
        rule = DailyRule(interval=3, repeat_mode=RepeatMode.FROM_COMPLETION_DATE)
        task = _daily_task(recurrence_rule=rule, completed_date=date(2024, 1, 5))
        assert materializer.on_item_completed(task).scheduled_date == date(2024, 1, 8)

    def test_from_anchor_date_ignores_late_completion(self, materializer):
        rule = WeeklyRule(days_of_week={Weekday.MONDAY, Weekday.THURSDAY})
        task = _daily_task(recurrence_rule=rule, completed_date=date(2024, 1, 3))
        assert materializer.on_item_completed(task).scheduled_date == date(2024, 1, 4)

    def test_incomplete_item_respects_recreate_flag(self, materializer):
        keep = _daily_task(completed_date=None)
        assert materializer.on_item_completed(keep) is not None

        rule = DailyRule(recreate_if_incomplete=False)
        drop = _daily_task(recurrence_rule=rule, completed_date=None)
        assert materializer.on_item_completed(drop) is None

    def test_end_date_passed(self, materializer):
        rule = DailyRule(end_date=date(2024, 1, 1))
        assert materializer.on_item_completed(_daily_task(recurrence_rule=rule)) is None

    def test_store_failure_reported(self, clock):
        store = MagicMock()
        store.add_pending.side_effect = StoreError("locked")
        materializer = RecurrenceMaterializer(store, clock)
        assert materializer.on_item_completed(_daily_task()) is None
        assert isinstance(materializer.last_error, StoreError)


class TestSweep:
    def test_sweep_is_idempotent(self, materializer, item_db):
        task = item_db.add_item(_daily_task())
        materializer.on_item_completed(task)

        created = materializer.sweep(date(2024, 1, 3))
        assert len(created) == 1
        assert materializer.pending_count() == 0
        assert materializer.sweep(date(2024, 1, 3)) == []
        assert len(item_db.list_items(ItemKind.TASK)) == 2

        new_task = item_db.get_item(created[0])
        assert new_task.due_date == date(2024, 1, 2)
        assert new_task.occurrence_index == 2
        assert new_task.completed_date is None
        assert new_task.recurrence_rule == task.recurrence_rule

    def test_not_ready_before_scheduled_date(self, materializer):
        materializer.on_item_completed(_daily_task())
        assert materializer.sweep(date(2024, 1, 1)) == []
        assert materializer.ready_count(date(2024, 1, 1)) == 0
        assert materializer.ready_count(date(2024, 1, 2)) == 1
        assert materializer.pending_count() == 1

    def test_default_now_from_clock(self, materializer, clock):
        materializer.on_item_completed(_daily_task())
        assert materializer.sweep() == []
        clock.advance(days=1)
        assert len(materializer.sweep()) == 1

    def test_snapshot_fields_carried_forward(self, materializer, item_db):
        home = item_db.add_tag("home")
        task = _daily_task(
            description="both balconies",
            priority=Priority.HIGH,
            tag_ids=[home.id, "deleted-tag"],
            reminder_offset=timedelta(minutes=15),
            alert_time=time(8, 30),
        )
        materializer.on_item_completed(task)
        [new_id] = materializer.sweep(date(2024, 1, 2))

        new_task = item_db.get_item(new_id)
        assert new_task.description == "both balconies"
        assert new_task.priority is Priority.HIGH
        assert new_task.tag_ids == [home.id]
        assert new_task.reminder_offset == timedelta(minutes=15)
        assert new_task.alert_time == time(8, 30)

    def test_pending_survives_source_deletion(self, materializer, item_db):
        task = item_db.add_item(_daily_task())
        materializer.on_item_completed(task)
        assert item_db.delete_item(task.id)

        [pending] = materializer.list_pending()
        assert pending.source_item_id is None
        assert len(materializer.sweep(date(2024, 1, 2))) == 1

    def test_full_chain_of_three(self, materializer, item_db):
        task = item_db.add_item(_daily_task())
        current = task
        for expected_index in (2, 3):
            materializer.on_item_completed(current)
            [new_id] = materializer.sweep(current.due_date + timedelta(days=1))
            current = item_db.get_item(new_id)
            assert current.occurrence_index == expected_index
            current.completed_date = current.due_date
        assert materializer.on_item_completed(current) is None


class TestCancellation:
    def test_cancel_for_source(self, materializer):
        task = _daily_task()
        materializer.on_item_completed(task)
        materializer.on_item_completed(_daily_task(title="Other"))
        assert materializer.cancel_for_source(task.id) == 1
        assert materializer.pending_count() == 1

    def test_cancel_all(self, materializer):
        materializer.on_item_completed(_daily_task())
        materializer.on_item_completed(_daily_task())
        assert materializer.cancel_all() == 2
        assert materializer.list_ready(date(2024, 12, 31)) == []
