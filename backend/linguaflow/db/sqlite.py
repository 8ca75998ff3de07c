"""
SQLite review-item store.

Every query is scoped by owner_id; look-ups for a missing owner or item return
None / empty results instead of raising. Driver failures surface as
StoreUnavailableError and leave the previously committed state in place.
"""
from __future__ import annotations

import contextlib
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from linguaflow.config import settings
from linguaflow.models.review_item import (
    GeometricSchedule,
    MemorySchedule,
    ReviewEvent,
    ReviewItem,
    ReviewMode,
    Schedule,
)
from linguaflow.services.clock import as_utc

_db_path: Path | None = None

_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS review_items (
    id               TEXT PRIMARY KEY,
    owner_id         TEXT NOT NULL,
    payload_key      TEXT NOT NULL,
    payload          TEXT NOT NULL DEFAULT '{}',
    mode             TEXT NOT NULL,
    interval         INTEGER,
    stability        REAL,
    difficulty       REAL,
    reps             INTEGER NOT NULL DEFAULT 0,
    lapses           INTEGER NOT NULL DEFAULT 0,
    last_grade       INTEGER,
    review_count     INTEGER NOT NULL DEFAULT 0,
    last_reviewed    TEXT,
    next_review_date TEXT NOT NULL,
    version          INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    UNIQUE (owner_id, payload_key)
);
CREATE INDEX IF NOT EXISTS idx_review_items_due ON review_items(owner_id, next_review_date);

CREATE TABLE IF NOT EXISTS review_events (
    id                TEXT PRIMARY KEY,
    item_id           TEXT NOT NULL REFERENCES review_items(id) ON DELETE CASCADE,
    owner_id          TEXT NOT NULL,
    mode              TEXT NOT NULL,
    grade             INTEGER NOT NULL,
    reviewed_at       TEXT NOT NULL,
    interval_before   INTEGER,
    interval_after    INTEGER NOT NULL,
    stability_before  REAL,
    stability_after   REAL,
    difficulty_before REAL,
    difficulty_after  REAL,
    retrievability    REAL
);
CREATE INDEX IF NOT EXISTS idx_review_events_item ON review_events(item_id, reviewed_at);
CREATE INDEX IF NOT EXISTS idx_review_events_owner_time ON review_events(owner_id, reviewed_at);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
INSERT OR IGNORE INTO schema_version(version) VALUES (1);
"""


class StoreUnavailableError(Exception):
    """Raised when the underlying SQLite database cannot be read or written."""


async def init_sqlite(data_dir: Path) -> None:
    global _db_path
    _db_path = data_dir / settings.sqlite_filename
    try:
        async with aiosqlite.connect(_db_path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()
    except aiosqlite.Error as e:
        raise StoreUnavailableError(f"Failed to initialise {_db_path}: {e}") from e


@asynccontextmanager
async def connect() -> AsyncIterator[aiosqlite.Connection]:
    assert _db_path is not None, "SQLite not initialized"
    try:
        db = await aiosqlite.connect(_db_path)
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys=ON")
    except aiosqlite.Error as e:
        raise StoreUnavailableError(f"Failed to open {_db_path}: {e}") from e
    try:
        yield db
    finally:
        await db.close()


async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    async with connect() as db:
        yield db


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).strftime(_TS_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


async def _fetchall(db: aiosqlite.Connection, sql: str, params: tuple = ()) -> list:
    try:
        cursor = await db.execute(sql, params)
        return list(await cursor.fetchall())
    except aiosqlite.Error as e:
        raise StoreUnavailableError(f"Query failed: {e}") from e


async def _fetchone(db: aiosqlite.Connection, sql: str, params: tuple = ()):
    try:
        cursor = await db.execute(sql, params)
        return await cursor.fetchone()
    except aiosqlite.Error as e:
        raise StoreUnavailableError(f"Query failed: {e}") from e


async def _rollback(db: aiosqlite.Connection) -> None:
    # The original driver error is what the caller needs to see.
    with contextlib.suppress(aiosqlite.Error):
        await db.rollback()


# --- Row mapping ---


def _row_to_schedule(d: dict[str, Any]) -> Schedule:
    mode = d["mode"]
    if mode == ReviewMode.GEOMETRIC.value:
        return GeometricSchedule(interval=d["interval"])
    if mode == ReviewMode.MEMORY_MODEL.value:
        return MemorySchedule(
            interval=d["interval"],
            stability=d["stability"],
            difficulty=d["difficulty"],
            reps=d["reps"],
            lapses=d["lapses"],
            last_grade=d["last_grade"],
        )
    raise ValueError(f"Unknown review mode {mode!r} for item {d['id']}")


def _schedule_columns(schedule: Schedule) -> dict[str, Any]:
    if isinstance(schedule, MemorySchedule):
        return {
            "interval": schedule.interval,
            "stability": schedule.stability,
            "difficulty": schedule.difficulty,
            "reps": schedule.reps,
            "lapses": schedule.lapses,
            "last_grade": schedule.last_grade,
        }
    return {
        "interval": schedule.interval,
        "stability": None,
        "difficulty": None,
        "reps": 0,
        "lapses": 0,
        "last_grade": None,
    }


def _row_to_item(row: aiosqlite.Row) -> ReviewItem:
    d = dict(row)
    return ReviewItem(
        id=d["id"],
        owner_id=d["owner_id"],
        payload_key=d["payload_key"],
        payload=json.loads(d["payload"] or "{}"),
        schedule=_row_to_schedule(d),
        last_reviewed=_parse_ts(d["last_reviewed"]),
        next_review_date=_parse_ts(d["next_review_date"]),
        review_count=d["review_count"],
        version=d["version"],
        created_at=_parse_ts(d["created_at"]),
        updated_at=_parse_ts(d["updated_at"]),
    )


def _row_to_event(row: aiosqlite.Row) -> ReviewEvent:
    d = dict(row)
    d["reviewed_at"] = _parse_ts(d["reviewed_at"])
    return ReviewEvent(**d)


# --- Review items ---


async def find_items(db: aiosqlite.Connection, owner_id: str) -> list[ReviewItem]:
    """Return the owner's whole collection, oldest first."""
    rows = await _fetchall(
        db,
        "SELECT * FROM review_items WHERE owner_id = ? ORDER BY created_at ASC, rowid ASC",
        (owner_id,),
    )
    return [_row_to_item(r) for r in rows]


async def find_item_by_id(
    db: aiosqlite.Connection, owner_id: str, item_id: str
) -> ReviewItem | None:
    row = await _fetchone(
        db,
        "SELECT * FROM review_items WHERE id = ? AND owner_id = ?",
        (item_id, owner_id),
    )
    return _row_to_item(row) if row else None


async def find_item_by_payload_key(
    db: aiosqlite.Connection, owner_id: str, payload_key: str
) -> ReviewItem | None:
    row = await _fetchone(
        db,
        "SELECT * FROM review_items WHERE owner_id = ? AND payload_key = ?",
        (owner_id, payload_key),
    )
    return _row_to_item(row) if row else None


async def list_items(
    db: aiosqlite.Connection, owner_id: str, offset: int = 0, limit: int = 50
) -> tuple[list[ReviewItem], int]:
    count_row = await _fetchone(
        db, "SELECT COUNT(*) FROM review_items WHERE owner_id = ?", (owner_id,)
    )
    total = count_row[0] if count_row else 0
    rows = await _fetchall(
        db,
        "SELECT * FROM review_items WHERE owner_id = ? "
        "ORDER BY created_at ASC, rowid ASC LIMIT ? OFFSET ?",
        (owner_id, limit, offset),
    )
    return [_row_to_item(r) for r in rows], total


async def append_item(db: aiosqlite.Connection, item: ReviewItem) -> bool:
    """Insert a new item. Returns False if (owner_id, payload_key) already exists."""
    cols = _schedule_columns(item.schedule)
    try:
        cursor = await db.execute(
            """INSERT INTO review_items
               (id, owner_id, payload_key, payload, mode, interval, stability,
                difficulty, reps, lapses, last_grade, review_count, last_reviewed,
                next_review_date, version, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(owner_id, payload_key) DO NOTHING""",
            (
                item.id,
                item.owner_id,
                item.payload_key,
                json.dumps(item.payload, ensure_ascii=False),
                item.schedule.mode,
                cols["interval"],
                cols["stability"],
                cols["difficulty"],
                cols["reps"],
                cols["lapses"],
                cols["last_grade"],
                item.review_count,
                _ts(item.last_reviewed),
                _ts(item.next_review_date),
                item.version,
                _ts(item.created_at),
                _ts(item.updated_at),
            ),
        )
        inserted = (cursor.rowcount or 0) > 0
        await db.commit()
    except aiosqlite.Error as e:
        await _rollback(db)
        raise StoreUnavailableError(f"Failed to append review item: {e}") from e
    return inserted


async def replace_item(
    db: aiosqlite.Connection,
    owner_id: str,
    item_id: str,
    new_state: ReviewItem,
    expected_version: int,
    event: ReviewEvent | None = None,
) -> bool:
    """Conditionally overwrite an item's scheduling state.

    The write only lands if the stored version still equals expected_version;
    the stored version becomes expected_version + 1. The optional review event
    is written in the same transaction. Returns False on a version conflict
    or if the item does not exist for this owner.
    """
    cols = _schedule_columns(new_state.schedule)
    try:
        # Write lock up front; competing graders queue on the busy timeout.
        await db.execute("BEGIN IMMEDIATE")
        cursor = await db.execute(
            """UPDATE review_items
               SET interval = ?, stability = ?, difficulty = ?, reps = ?, lapses = ?,
                   last_grade = ?, review_count = ?, last_reviewed = ?,
                   next_review_date = ?, version = ?, updated_at = ?
               WHERE id = ? AND owner_id = ? AND version = ?""",
            (
                cols["interval"],
                cols["stability"],
                cols["difficulty"],
                cols["reps"],
                cols["lapses"],
                cols["last_grade"],
                new_state.review_count,
                _ts(new_state.last_reviewed),
                _ts(new_state.next_review_date),
                expected_version + 1,
                _ts(new_state.updated_at),
                item_id,
                owner_id,
                expected_version,
            ),
        )
        if (cursor.rowcount or 0) == 0:
            await _rollback(db)
            return False

        if event is not None:
            await db.execute(
                """INSERT INTO review_events
                   (id, item_id, owner_id, mode, grade, reviewed_at,
                    interval_before, interval_after, stability_before, stability_after,
                    difficulty_before, difficulty_after, retrievability)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event.id,
                    item_id,
                    owner_id,
                    event.mode.value,
                    event.grade,
                    _ts(event.reviewed_at),
                    event.interval_before,
                    event.interval_after,
                    event.stability_before,
                    event.stability_after,
                    event.difficulty_before,
                    event.difficulty_after,
                    event.retrievability,
                ),
            )
        await db.commit()
    except aiosqlite.Error as e:
        await _rollback(db)
        raise StoreUnavailableError(f"Failed to persist review item {item_id}: {e}") from e
    return True


# --- Review events ---


async def list_review_events(
    db: aiosqlite.Connection, owner_id: str, item_id: str
) -> list[ReviewEvent]:
    rows = await _fetchall(
        db,
        "SELECT * FROM review_events WHERE owner_id = ? AND item_id = ? "
        "ORDER BY reviewed_at DESC, rowid DESC",
        (owner_id, item_id),
    )
    return [_row_to_event(r) for r in rows]


async def count_review_events_since(
    db: aiosqlite.Connection, owner_id: str, since: datetime
) -> int:
    row = await _fetchone(
        db,
        "SELECT COUNT(*) FROM review_events WHERE owner_id = ? AND reviewed_at >= ?",
        (owner_id, _ts(since)),
    )
    return row[0] if row else 0
