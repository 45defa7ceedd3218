"""
Cadence — Application glue.

Runs one activation pass against the configured database: start the engine,
materialize ready recurrences, replenish habits, and log what happened.
"""

from __future__ import annotations

import asyncio
import logging

from cadence.adapters.log_navigator import LogNavigator
from cadence.adapters.memory_reminders import InMemoryReminderScheduler
from cadence.adapters.system_clock import SystemClock
from cadence.config import settings
from cadence.core.engine import ActivationReport, Engine
from cadence.data.db import ItemDB, PendingRecurrenceDB

logger = logging.getLogger(__name__)


def build_engine(db_path: str | None = None) -> Engine:
    """Create an engine over the SQLite stores at *db_path*."""
    path = db_path or settings.DATABASE_PATH
    return Engine(
        items=ItemDB(db_path=path),
        pending=PendingRecurrenceDB(db_path=path),
        reminders=InMemoryReminderScheduler(),
        navigator=LogNavigator(),
        clock=SystemClock(),
    )


async def run_once(engine: Engine) -> ActivationReport:
    await engine.start()
    try:
        report = await engine.activate()
        pending = engine.materializer.pending_count()
        logger.info("%d recurrences still pending", pending)
        return report
    finally:
        await engine.shutdown()


def main() -> None:
    logger.info("Cadence activation using %s (%s)", settings.DATABASE_PATH, settings.TIMEZONE)
    asyncio.run(run_once(build_engine()))
