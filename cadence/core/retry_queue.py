"""
Cadence — Save Retry Queue.

Holds persistence writes that failed so they can be retried on a later
activation. A write is dropped after ``SAVE_MAX_RETRIES`` failed retries.
The core services never retry on their own; the engine owns this queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from cadence.config import settings
from cadence.ports.store_port import StoreError

logger = logging.getLogger(__name__)


@dataclass
class RetryEntry:
    description: str
    operation: Callable[[], object]
    retry_count: int = 0


class SaveRetryQueue:
    """FIFO of failed writes with a bounded number of retries each."""

    def __init__(self, max_retries: int | None = None) -> None:
        self.max_retries = settings.SAVE_MAX_RETRIES if max_retries is None else max_retries
        self._entries: list[RetryEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def enqueue(self, description: str, operation: Callable[[], object]) -> None:
        self._entries.append(RetryEntry(description, operation))
        logger.info("Queued '%s' for retry (%d waiting)", description, len(self._entries))

    def process(self) -> int:
        """Retry every queued write once; return how many succeeded."""
        entries, self._entries = self._entries, []
        succeeded = 0
        for entry in entries:
            try:
                entry.operation()
            except StoreError as exc:
                entry.retry_count += 1
                if entry.retry_count >= self.max_retries:
                    logger.warning(
                        "Dropping '%s' after %d failed retries: %s",
                        entry.description, entry.retry_count, exc,
                    )
                    continue
                logger.info("Retry %d of '%s' failed: %s", entry.retry_count, entry.description, exc)
                self._entries.append(entry)
            else:
                succeeded += 1
        return succeeded
