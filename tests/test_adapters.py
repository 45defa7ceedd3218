"""Tests for cadence.adapters — clock, reminders and navigation."""

from datetime import datetime, timezone

import pytest

from cadence.adapters.log_navigator import LogNavigator
from cadence.adapters.memory_reminders import InMemoryReminderScheduler
from cadence.adapters.system_clock import SystemClock
from cadence.data.models import ItemKind, RecurringItem


def test_system_clock_is_zone_aware():
    clock = SystemClock("Asia/Tokyo")
    now = clock.now()
    assert now.tzinfo is not None
    assert clock.today() == now.date()


class TestInMemoryReminders:
    @pytest.mark.asyncio
    async def test_schedule_and_cancel(self):
        reminders = InMemoryReminderScheduler()
        item = RecurringItem(title="Stand up")
        at = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        await reminders.schedule(item, at)
        assert reminders.armed_at(item.id) == at
        assert reminders.due(at) == [item.id]

        await reminders.cancel(item.id)
        assert reminders.armed_at(item.id) is None
        assert reminders.due(at) == []

    @pytest.mark.asyncio
    async def test_reschedule_replaces(self):
        reminders = InMemoryReminderScheduler()
        item = RecurringItem(title="Stand up")
        await reminders.schedule(item, datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))
        await reminders.schedule(item, datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))
        assert reminders.due(datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)) == []


@pytest.mark.asyncio
async def test_navigator_records_destination():
    navigator = LogNavigator()
    await navigator.open_item(ItemKind.TASK, "t1")
    assert navigator.last_opened == (ItemKind.TASK, "t1")
