"""
Cadence — Item and Recurrence Database.

Items, their completion/skip history, tags, and pending recurrence snapshots
persist in SQLite across restarts. Both stores share one database file.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Iterator

from cadence.core.recurrence import rule_from_json, rule_to_json
from cadence.data.models import (
    ITEM_RELATIONSHIPS,
    CompletionEntry,
    DeleteRule,
    ItemKind,
    PendingRecurrence,
    Priority,
    RecurringItem,
    SkipEntry,
    SkipReason,
    Tag,
    new_id,
)
from cadence.ports.store_port import StoreError

logger = logging.getLogger(__name__)


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS items (
        id                   TEXT    PRIMARY KEY,
        kind                 TEXT    NOT NULL,
        title                TEXT    NOT NULL,
        description          TEXT    NOT NULL DEFAULT '',
        priority             TEXT    NOT NULL DEFAULT 'none',
        recurrence_rule      TEXT,
        due_date             TEXT,
        completed_date       TEXT,
        occurrence_index     INTEGER NOT NULL DEFAULT 1,
        reminder_offset      REAL,
        alert_time           TEXT,
        notification_fired   INTEGER NOT NULL DEFAULT 0,
        snoozed_until        TEXT,
        tag_ids              TEXT    NOT NULL DEFAULT '[]',
        parent_id            TEXT,
        created_date         TEXT    NOT NULL,
        current_streak       INTEGER NOT NULL DEFAULT 0,
        longest_streak       INTEGER NOT NULL DEFAULT 0,
        last_completed_date  TEXT,
        grace_period_days    INTEGER NOT NULL DEFAULT 1,
        grace_expiry_date    TEXT,
        current_instance_date TEXT
    );
    CREATE TABLE IF NOT EXISTS completions (
        id              TEXT PRIMARY KEY,
        item_id         TEXT NOT NULL,
        completed_date  TEXT NOT NULL,
        notes           TEXT NOT NULL DEFAULT '',
        created_at      TEXT NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS completions_item_day
        ON completions (item_id, completed_date);
    CREATE TABLE IF NOT EXISTS skips (
        id              TEXT PRIMARY KEY,
        item_id         TEXT NOT NULL,
        skipped_date    TEXT NOT NULL,
        reason          TEXT,
        notes           TEXT NOT NULL DEFAULT '',
        created_at      TEXT NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS skips_item_day
        ON skips (item_id, skipped_date);
    CREATE TABLE IF NOT EXISTS tags (
        id    TEXT PRIMARY KEY,
        name  TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS pending_recurrences (
        id                TEXT    PRIMARY KEY,
        scheduled_date    TEXT    NOT NULL,
        source_item_id    TEXT,
        kind              TEXT    NOT NULL,
        title             TEXT    NOT NULL,
        description       TEXT    NOT NULL DEFAULT '',
        priority          TEXT    NOT NULL DEFAULT 'none',
        recurrence_rule   TEXT,
        tag_ids           TEXT    NOT NULL DEFAULT '[]',
        reminder_offset   REAL,
        alert_time        TEXT,
        occurrence_index  INTEGER NOT NULL,
        created_date      TEXT    NOT NULL
    );
"""

# Columns added after the first release; created on open when missing.
_ADDED_COLUMNS = {
    "items": {
        "grace_period_days": "INTEGER NOT NULL DEFAULT 1",
        "grace_expiry_date": "TEXT",
        "current_instance_date": "TEXT",
        "alert_time": "TEXT",
    },
    "pending_recurrences": {
        "alert_time": "TEXT",
    },
}


# ---------------------------------------------------------------------------
# Column codecs
# ---------------------------------------------------------------------------


def _iso(value: date | datetime | time | None) -> str | None:
    return value.isoformat() if value is not None else None


def _to_date(raw: str | None) -> date | None:
    return date.fromisoformat(raw) if raw else None


def _to_datetime(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def _to_time(raw: str | None) -> time | None:
    return time.fromisoformat(raw) if raw else None


def _seconds(value: timedelta | None) -> float | None:
    return value.total_seconds() if value is not None else None


def _to_timedelta(raw: float | None) -> timedelta | None:
    return timedelta(seconds=raw) if raw is not None else None


def _item_params(item: RecurringItem) -> tuple:
    return (
        item.id,
        item.kind.value,
        item.title,
        item.description,
        item.priority.value,
        rule_to_json(item.recurrence_rule),
        _iso(item.due_date),
        _iso(item.completed_date),
        item.occurrence_index,
        _seconds(item.reminder_offset),
        _iso(item.alert_time),
        int(item.notification_fired),
        _iso(item.snoozed_until),
        json.dumps(item.tag_ids),
        item.parent_id,
        _iso(item.created_date),
        item.current_streak,
        item.longest_streak,
        _iso(item.last_completed_date),
        item.grace_period_days,
        _iso(item.grace_expiry_date),
        _iso(item.current_instance_date),
    )


_ITEM_COLUMNS = (
    "id, kind, title, description, priority, recurrence_rule, due_date, "
    "completed_date, occurrence_index, reminder_offset, alert_time, "
    "notification_fired, snoozed_until, tag_ids, parent_id, created_date, "
    "current_streak, longest_streak, last_completed_date, grace_period_days, "
    "grace_expiry_date, current_instance_date"
)


def _insert_item(conn: sqlite3.Connection, item: RecurringItem, replace: bool = False) -> None:
    verb = "INSERT OR REPLACE" if replace else "INSERT"
    placeholders = ", ".join("?" * len(_ITEM_COLUMNS.split(",")))
    conn.execute(
        f"{verb} INTO items ({_ITEM_COLUMNS}) VALUES ({placeholders})",
        _item_params(item),
    )


def _insert_completion(conn: sqlite3.Connection, entry: CompletionEntry) -> None:
    conn.execute(
        "INSERT INTO completions (id, item_id, completed_date, notes, created_at) "
        "VALUES (?, ?, ?, ?, ?)",
        (
            entry.id, entry.item_id, entry.completed_date.isoformat(),
            entry.notes, entry.created_at.isoformat(),
        ),
    )


def _insert_skip(conn: sqlite3.Connection, entry: SkipEntry) -> None:
    conn.execute(
        "INSERT INTO skips (id, item_id, skipped_date, reason, notes, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            entry.id, entry.item_id, entry.skipped_date.isoformat(),
            entry.reason.value if entry.reason else None,
            entry.notes, entry.created_at.isoformat(),
        ),
    )


def _existing_tags(conn: sqlite3.Connection, tag_ids: list[str]) -> list[str]:
    """Keep the ids that still name a tag, in their original order."""
    if not tag_ids:
        return []
    marks = ", ".join("?" * len(tag_ids))
    found = {
        row["id"]
        for row in conn.execute(f"SELECT id FROM tags WHERE id IN ({marks})", tag_ids)
    }
    return [t for t in tag_ids if t in found]


class _SQLiteStore:
    """Connection handling and schema setup shared by the stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from cadence.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back and raise StoreError on any SQLite error."""
        conn = self._connect()
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("SQLite error while trying to %s: %s", action, exc)
            raise StoreError(f"Failed to {action}: {exc}") from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create the tables if they don't exist, and migrate schema."""
        with self._transaction("initialize schema") as conn:
            conn.executescript(_SCHEMA)
            # Migrate existing DBs: add new columns if missing
            for table, columns in _ADDED_COLUMNS.items():
                existing_cols = {
                    row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
                }
                for name, decl in columns.items():
                    if name not in existing_cols:
                        conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
        logger.debug("Cadence tables initialized at %s", self._db_path)


class ItemDB(_SQLiteStore):
    """SQLite-backed storage for tasks, habits, tags and their history."""

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> RecurringItem:
        return RecurringItem(
            id=row["id"],
            kind=ItemKind(row["kind"]),
            title=row["title"],
            description=row["description"],
            priority=Priority(row["priority"]),
            recurrence_rule=rule_from_json(row["recurrence_rule"]),
            due_date=_to_date(row["due_date"]),
            completed_date=_to_date(row["completed_date"]),
            occurrence_index=row["occurrence_index"],
            reminder_offset=_to_timedelta(row["reminder_offset"]),
            alert_time=_to_time(row["alert_time"]),
            notification_fired=bool(row["notification_fired"]),
            snoozed_until=_to_datetime(row["snoozed_until"]),
            tag_ids=json.loads(row["tag_ids"]),
            parent_id=row["parent_id"],
            created_date=_to_date(row["created_date"]),
            current_streak=row["current_streak"],
            longest_streak=row["longest_streak"],
            last_completed_date=_to_date(row["last_completed_date"]),
            grace_period_days=row["grace_period_days"],
            grace_expiry_date=_to_date(row["grace_expiry_date"]),
            current_instance_date=_to_date(row["current_instance_date"]),
        )

    # -- items ---------------------------------------------------------------

    def add_item(self, item: RecurringItem) -> RecurringItem:
        """Insert a new item; the caller supplies its id."""
        with self._transaction("add item") as conn:
            _insert_item(conn, item)
        logger.info("%s added: %s '%s'", item.kind.value.title(), item.id, item.title)
        return item

    def get_item(self, item_id: str) -> RecurringItem | None:
        """Fetch a single item by ID."""
        with self._transaction("fetch item") as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_item(row)

    def save_item(self, item: RecurringItem) -> None:
        """Write every field of *item* back, inserting it if it is new."""
        with self._transaction("save item") as conn:
            _insert_item(conn, item, replace=True)
        logger.debug("Item %s saved", item.id)

    def list_items(self, kind: ItemKind | None = None) -> list[RecurringItem]:
        """List all items, optionally filtered to one kind."""
        query = "SELECT * FROM items"
        params: list = []
        if kind is not None:
            query += " WHERE kind = ?"
            params.append(kind.value)
        query += " ORDER BY created_date, title"
        with self._transaction("list items") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    def list_subtasks(self, parent_id: str) -> list[RecurringItem]:
        with self._transaction("list subtasks") as conn:
            rows = conn.execute(
                "SELECT * FROM items WHERE parent_id = ? ORDER BY created_date, title",
                (parent_id,),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def delete_item(self, item_id: str) -> bool:
        """Permanently delete an item, applying each relationship's delete rule."""
        with self._transaction("delete item") as conn:
            row = conn.execute("SELECT id FROM items WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                return False
            targets = [item_id] + [
                r["id"]
                for r in conn.execute("SELECT id FROM items WHERE parent_id = ?", (item_id,))
            ]
            for target in targets:
                for rel in ITEM_RELATIONSHIPS:
                    if rel.delete_rule is DeleteRule.CASCADE:
                        conn.execute(
                            f"DELETE FROM {rel.table} WHERE {rel.column} = ?", (target,),
                        )
                    else:
                        conn.execute(
                            f"UPDATE {rel.table} SET {rel.column} = NULL WHERE {rel.column} = ?",
                            (target,),
                        )
                conn.execute("DELETE FROM items WHERE id = ?", (target,))
        logger.info("Item %s deleted (%d subtasks)", item_id, len(targets) - 1)
        return True

    # -- history -------------------------------------------------------------

    def add_completion(self, entry: CompletionEntry) -> None:
        with self._transaction("add completion") as conn:
            _insert_completion(conn, entry)
        logger.info("Completion recorded: item %s on %s", entry.item_id, entry.completed_date)

    def record_completion(self, entry: CompletionEntry, item: RecurringItem) -> None:
        """Insert *entry* and save *item* together; neither is kept on failure."""
        with self._transaction("record completion") as conn:
            _insert_completion(conn, entry)
            _insert_item(conn, item, replace=True)
        logger.info("Completion recorded: item %s on %s", entry.item_id, entry.completed_date)

    def delete_completion(self, item_id: str, day: date) -> bool:
        with self._transaction("delete completion") as conn:
            cursor = conn.execute(
                "DELETE FROM completions WHERE item_id = ? AND completed_date = ?",
                (item_id, day.isoformat()),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Completion removed: item %s on %s", item_id, day)
        return deleted

    def completions(self, item_id: str) -> list[CompletionEntry]:
        """Completion history of an item, oldest first."""
        with self._transaction("list completions") as conn:
            rows = conn.execute(
                "SELECT * FROM completions WHERE item_id = ? ORDER BY completed_date",
                (item_id,),
            ).fetchall()
        return [
            CompletionEntry(
                id=r["id"],
                item_id=r["item_id"],
                completed_date=date.fromisoformat(r["completed_date"]),
                notes=r["notes"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    def add_skip(self, entry: SkipEntry) -> None:
        with self._transaction("add skip") as conn:
            _insert_skip(conn, entry)
        logger.info(
            "Skip recorded: item %s on %s (%s)",
            entry.item_id, entry.skipped_date, entry.reason.value if entry.reason else "no reason",
        )

    def record_skip(self, entry: SkipEntry, item: RecurringItem) -> None:
        """Insert *entry* and save *item* together; neither is kept on failure."""
        with self._transaction("record skip") as conn:
            _insert_skip(conn, entry)
            _insert_item(conn, item, replace=True)
        logger.info("Skip recorded: item %s on %s", entry.item_id, entry.skipped_date)

    def skips(self, item_id: str) -> list[SkipEntry]:
        """Skip history of an item, oldest first."""
        with self._transaction("list skips") as conn:
            rows = conn.execute(
                "SELECT * FROM skips WHERE item_id = ? ORDER BY skipped_date",
                (item_id,),
            ).fetchall()
        return [
            SkipEntry(
                id=r["id"],
                item_id=r["item_id"],
                skipped_date=date.fromisoformat(r["skipped_date"]),
                reason=SkipReason(r["reason"]) if r["reason"] else None,
                notes=r["notes"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    # -- tags ----------------------------------------------------------------

    def add_tag(self, name: str) -> Tag:
        tag = Tag(id=new_id(), name=name.strip())
        with self._transaction("add tag") as conn:
            conn.execute("INSERT INTO tags (id, name) VALUES (?, ?)", (tag.id, tag.name))
        logger.info("Tag added: %s '%s'", tag.id, tag.name)
        return tag

    def delete_tag(self, tag_id: str) -> bool:
        with self._transaction("delete tag") as conn:
            cursor = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        return cursor.rowcount > 0

    def list_tags(self) -> list[Tag]:
        with self._transaction("list tags") as conn:
            rows = conn.execute("SELECT * FROM tags ORDER BY name").fetchall()
        return [Tag(id=r["id"], name=r["name"]) for r in rows]


class PendingRecurrenceDB(_SQLiteStore):
    """SQLite-backed storage for pending recurrence snapshots."""

    @staticmethod
    def _row_to_pending(row: sqlite3.Row) -> PendingRecurrence:
        return PendingRecurrence(
            id=row["id"],
            scheduled_date=date.fromisoformat(row["scheduled_date"]),
            source_item_id=row["source_item_id"],
            kind=ItemKind(row["kind"]),
            title=row["title"],
            description=row["description"],
            priority=Priority(row["priority"]),
            recurrence_rule=rule_from_json(row["recurrence_rule"]),
            tag_ids=json.loads(row["tag_ids"]),
            reminder_offset=_to_timedelta(row["reminder_offset"]),
            alert_time=_to_time(row["alert_time"]),
            occurrence_index=row["occurrence_index"],
            created_date=date.fromisoformat(row["created_date"]),
        )

    def add_pending(self, pending: PendingRecurrence) -> bool:
        """Store a snapshot; False if its source already has one for that occurrence."""
        with self._transaction("add pending recurrence") as conn:
            cursor = conn.execute(
                """
                INSERT INTO pending_recurrences
                    (id, scheduled_date, source_item_id, kind, title, description,
                     priority, recurrence_rule, tag_ids, reminder_offset, alert_time,
                     occurrence_index, created_date)
                SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM pending_recurrences
                    WHERE source_item_id = ? AND occurrence_index = ?
                )
                """,
                (
                    pending.id,
                    pending.scheduled_date.isoformat(),
                    pending.source_item_id,
                    pending.kind.value,
                    pending.title,
                    pending.description,
                    pending.priority.value,
                    rule_to_json(pending.recurrence_rule),
                    json.dumps(pending.tag_ids),
                    _seconds(pending.reminder_offset),
                    _iso(pending.alert_time),
                    pending.occurrence_index,
                    pending.created_date.isoformat(),
                    pending.source_item_id,
                    pending.occurrence_index,
                ),
            )
        if cursor.rowcount == 0:
            logger.debug(
                "Occurrence #%d of %s already pending", pending.occurrence_index, pending.source_item_id,
            )
            return False
        logger.info(
            "Pending recurrence %s: '%s' #%d on %s",
            pending.id, pending.title, pending.occurrence_index, pending.scheduled_date,
        )
        return True

    def list_pending(self, ready_on: date | None = None) -> list[PendingRecurrence]:
        """All snapshots, or only those scheduled on or before *ready_on*."""
        query = "SELECT * FROM pending_recurrences"
        params: list = []
        if ready_on is not None:
            query += " WHERE scheduled_date <= ?"
            params.append(ready_on.isoformat())
        query += " ORDER BY scheduled_date, occurrence_index"
        with self._transaction("list pending recurrences") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_pending(r) for r in rows]

    def count_pending(self, ready_on: date | None = None) -> int:
        query = "SELECT COUNT(*) FROM pending_recurrences"
        params: list = []
        if ready_on is not None:
            query += " WHERE scheduled_date <= ?"
            params.append(ready_on.isoformat())
        with self._transaction("count pending recurrences") as conn:
            return conn.execute(query, params).fetchone()[0]

    def consume(self, pending_id: str, item: RecurringItem) -> bool:
        """Delete the snapshot and insert its live item in one transaction.

        Returns False when the snapshot was already consumed, in which case
        nothing is inserted. Tags that no longer exist are dropped from
        ``item.tag_ids``.
        """
        with self._transaction("materialize pending recurrence") as conn:
            cursor = conn.execute(
                "DELETE FROM pending_recurrences WHERE id = ?", (pending_id,),
            )
            if cursor.rowcount == 0:
                return False
            item.tag_ids = _existing_tags(conn, item.tag_ids)
            _insert_item(conn, item)
        logger.info(
            "Pending recurrence %s materialized as %s '%s' due %s",
            pending_id, item.id, item.title, item.due_date,
        )
        return True

    def delete_for_source(self, source_item_id: str) -> int:
        with self._transaction("cancel pending recurrences") as conn:
            cursor = conn.execute(
                "DELETE FROM pending_recurrences WHERE source_item_id = ?",
                (source_item_id,),
            )
        if cursor.rowcount:
            logger.info("Cancelled %d pending recurrences of %s", cursor.rowcount, source_item_id)
        return cursor.rowcount

    def delete_all(self) -> int:
        with self._transaction("clear pending recurrences") as conn:
            cursor = conn.execute("DELETE FROM pending_recurrences")
        logger.info("Cleared %d pending recurrences", cursor.rowcount)
        return cursor.rowcount
