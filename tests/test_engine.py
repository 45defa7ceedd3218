"""Tests for cadence.core.engine — lifecycle and activation."""

from datetime import date, datetime, time, timezone
from unittest.mock import AsyncMock

import pytest

from cadence.config import Settings
from cadence.core.completion import CascadingCompletion
from cadence.core.engine import Engine, EngineState, EngineStateError
from cadence.core.recurrence import DailyRule
from cadence.data.models import ActionKind, PendingAction, RecurringItem


@pytest.fixture
def engine(item_db, pending_db, clock):
    return Engine(
        items=item_db,
        pending=pending_db,
        reminders=AsyncMock(),
        navigator=AsyncMock(),
        clock=clock,
        config=Settings(),
    )


def _recurring_task(item_db, **fields):
    return item_db.add_item(RecurringItem(
        title="Check mail",
        recurrence_rule=DailyRule(),
        due_date=date(2024, 1, 1),
        **fields,
    ))


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_transitions(self, engine):
        assert engine.state is EngineState.CONSTRUCTED
        await engine.start()
        assert engine.state is EngineState.READY
        await engine.shutdown()
        assert engine.state is EngineState.TORN_DOWN
        await engine.shutdown()
        assert engine.state is EngineState.TORN_DOWN

    @pytest.mark.asyncio
    async def test_operations_outside_ready_raise(self, engine):
        with pytest.raises(EngineStateError):
            await engine.activate()
        with pytest.raises(EngineStateError):
            engine.submit_threadsafe(PendingAction(ActionKind.COMPLETE_TASK, "x"))

        await engine.start()
        with pytest.raises(EngineStateError):
            await engine.start()

        await engine.shutdown()
        with pytest.raises(EngineStateError):
            await engine.activate()

    def test_submit_without_loop_raises(self, engine):
        engine.state = EngineState.READY
        with pytest.raises(EngineStateError):
            engine.submit_threadsafe(PendingAction(ActionKind.COMPLETE_TASK, "x"))

    def test_cascade_policy_from_config(self, item_db, pending_db, clock):
        engine = Engine(
            item_db, pending_db, AsyncMock(), AsyncMock(), clock,
            config=Settings(CASCADE_COMPLETION="yes"),
        )
        assert isinstance(engine.tasks.policy, CascadingCompletion)


class TestColdStartThroughEngine:
    @pytest.mark.asyncio
    async def test_early_response_applied_on_start(self, engine, item_db):
        task = _recurring_task(item_db)
        await engine.router.on_response({"task_id": task.id}, "complete_task")
        assert item_db.get_item(task.id).completed_date is None

        await engine.start()

        stored = item_db.get_item(task.id)
        assert stored.completed_date == date(2024, 1, 1)
        assert stored.notification_fired is True
        assert engine.materializer.pending_count() == 1


class TestActivate:
    @pytest.mark.asyncio
    async def test_sweeps_and_arms_reminders(self, engine, item_db, clock):
        task = _recurring_task(item_db, alert_time=time(8, 0))
        await engine.start()
        engine.tasks.complete_task(task.id)

        clock.current = datetime(2024, 1, 2, 7, 0, tzinfo=timezone.utc)
        report = await engine.activate()

        assert len(report.created_ids) == 1
        assert report.reminders_armed == 1
        new_task = item_db.get_item(report.created_ids[0])
        engine.reminders.schedule.assert_awaited_once_with(new_task, datetime(2024, 1, 2, 8, 0))

        again = await engine.activate()
        assert again.created_ids == []

    @pytest.mark.asyncio
    async def test_replenishes_habits(self, engine, item_db):
        from cadence.data.models import ItemKind

        habit = item_db.add_item(RecurringItem(title="Yoga", kind=ItemKind.HABIT))
        await engine.start()
        report = await engine.activate(datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc))
        assert report.replenished_ids == [habit.id]
