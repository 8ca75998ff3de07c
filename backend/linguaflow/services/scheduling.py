"""
Review scheduling service.

Entry points used by the HTTP layer:
  save_for_review   idempotently start tracking an item (due immediately)
  get_due           the owner's due items, most overdue first
  submit_grade      the only mutating operation; dispatches on the item's mode

Grading is a read-modify-write guarded by the item's version column: if another
writer got there first, the item is reloaded and the grade re-applied to the
freshly persisted state.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

import aiosqlite

from linguaflow.config import settings
from linguaflow.db.sqlite import (
    append_item,
    count_review_events_since,
    find_item_by_id,
    find_item_by_payload_key,
    find_items,
    list_review_events,
    replace_item,
)
from linguaflow.models.review_item import (
    GeometricSchedule,
    Grade,
    MemorySchedule,
    ReviewEvent,
    ReviewItem,
    ReviewMode,
    ReviewStats,
    SaveResult,
)
from linguaflow.services.clock import as_utc, start_of_day
from linguaflow.services.due_selector import select_due
from linguaflow.services.interval_policy import apply_geometric
from linguaflow.services.memory_model import (
    MemoryModelParams,
    apply_memory_model,
    elapsed_days,
    retrievability,
)

logger = logging.getLogger(__name__)

_GEOMETRIC_GRADES = {"correct": True, "incorrect": False}
_MEMORY_GRADE_NAMES = {
    "again": Grade.AGAIN,
    "hard": Grade.HARD,
    "good": Grade.GOOD,
    "easy": Grade.EASY,
}


class SchedulingError(Exception):
    """Base class for rejected scheduling operations."""


class ItemNotFoundError(SchedulingError):
    """The item does not exist or belongs to another owner."""


class InvalidGradeError(SchedulingError):
    """The grade is outside the domain of the item's mode."""


class ConcurrentUpdateError(SchedulingError):
    """The item kept changing underneath us; retries were exhausted."""


# --- Grade validation ---


def parse_geometric_grade(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _GEOMETRIC_GRADES:
        return _GEOMETRIC_GRADES[value.strip().lower()]
    raise InvalidGradeError(
        f"Geometric items take 'correct' or 'incorrect', got {value!r}"
    )


def parse_memory_grade(value: Any) -> Grade:
    if isinstance(value, bool):
        raise InvalidGradeError(f"Memory-model items take a grade 1-4, got {value!r}")
    if isinstance(value, int) and 1 <= value <= 4:
        return Grade(value)
    if isinstance(value, str) and value.strip().lower() in _MEMORY_GRADE_NAMES:
        return _MEMORY_GRADE_NAMES[value.strip().lower()]
    raise InvalidGradeError(f"Memory-model items take a grade 1-4, got {value!r}")


def memory_params() -> MemoryModelParams:
    return MemoryModelParams.from_settings(settings)


def current_retrievability(item: ReviewItem, now: datetime) -> float:
    """Predicted recall probability at `now`; 1.0 when there is no memory state."""
    schedule = item.schedule
    if not isinstance(schedule, MemorySchedule) or schedule.stability is None:
        return 1.0
    return retrievability(
        elapsed_days(item.last_reviewed, as_utc(now)), schedule.stability, memory_params()
    )


def _transition(
    item: ReviewItem, raw_grade: Any, now: datetime
) -> tuple[ReviewItem, ReviewEvent]:
    schedule = item.schedule
    stability_before = difficulty_before = None
    r: float | None = None

    if isinstance(schedule, GeometricSchedule):
        correct = parse_geometric_grade(raw_grade)
        new_schedule, next_review = apply_geometric(
            schedule,
            correct,
            now,
            base_interval=settings.base_interval_minutes,
            max_interval=settings.max_interval_minutes,
        )
        grade_value = int(correct)
    elif isinstance(schedule, MemorySchedule):
        grade = parse_memory_grade(raw_grade)
        result = apply_memory_model(schedule, grade, item.last_reviewed, now, memory_params())
        new_schedule, next_review, r = (
            result.schedule,
            result.next_review_date,
            result.retrievability,
        )
        stability_before, difficulty_before = schedule.stability, schedule.difficulty
        grade_value = int(grade)
    else:
        raise TypeError(f"No scheduling policy for mode {schedule.mode!r}")

    new_item = item.model_copy(
        update={
            "schedule": new_schedule,
            "last_reviewed": now,
            "next_review_date": next_review,
            "review_count": item.review_count + 1,
            "version": item.version + 1,
            "updated_at": now,
        }
    )
    event = ReviewEvent(
        id=str(uuid.uuid4()),
        item_id=item.id,
        owner_id=item.owner_id,
        mode=item.mode,
        grade=grade_value,
        reviewed_at=now,
        interval_before=schedule.interval,
        interval_after=new_schedule.interval,
        stability_before=stability_before,
        stability_after=getattr(new_schedule, "stability", None),
        difficulty_before=difficulty_before,
        difficulty_after=getattr(new_schedule, "difficulty", None),
        retrievability=r,
    )
    return new_item, event


# --- Service operations ---


async def save_for_review(
    db: aiosqlite.Connection,
    owner_id: str,
    payload_key: str,
    payload: dict[str, Any],
    mode: ReviewMode,
    now: datetime,
) -> SaveResult:
    now = as_utc(now)
    schedule = GeometricSchedule() if mode == ReviewMode.GEOMETRIC else MemorySchedule()
    item = ReviewItem(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        payload_key=payload_key,
        payload=payload,
        schedule=schedule,
        last_reviewed=None,
        next_review_date=now,
        created_at=now,
        updated_at=now,
    )
    if await append_item(db, item):
        logger.info("Tracking new %s item %s for owner %s", mode.value, item.id, owner_id)
        return SaveResult(status="created", item=item)

    existing = await find_item_by_payload_key(db, owner_id, payload_key)
    if existing is None:
        raise ConcurrentUpdateError(
            f"Item with key {payload_key!r} was removed while being saved"
        )
    return SaveResult(status="already_exists", item=existing)


async def get_due(
    db: aiosqlite.Connection,
    owner_id: str,
    now: datetime,
    limit: int | None = None,
) -> list[ReviewItem]:
    items = await find_items(db, owner_id)
    return select_due(items, as_utc(now), limit=limit)


async def get_item(db: aiosqlite.Connection, owner_id: str, item_id: str) -> ReviewItem:
    item = await find_item_by_id(db, owner_id, item_id)
    if item is None:
        raise ItemNotFoundError(f"Review item {item_id} not found")
    return item


async def submit_grade(
    db: aiosqlite.Connection,
    owner_id: str,
    item_id: str,
    grade: Any,
    now: datetime,
) -> ReviewItem:
    """Apply a grade to one item and persist it. Returns the updated item.

    Raises ItemNotFoundError, InvalidGradeError, ConcurrentUpdateError or
    StoreUnavailableError; in every case the stored item is left unchanged.
    """
    now = as_utc(now)
    attempts = max(1, settings.max_grade_retries)
    for attempt in range(1, attempts + 1):
        item = await get_item(db, owner_id, item_id)
        new_item, event = _transition(item, grade, now)
        if await replace_item(db, owner_id, item_id, new_item, item.version, event):
            logger.info(
                "Graded item %s (%s) grade=%s interval=%s next=%s",
                item_id,
                item.mode.value,
                event.grade,
                new_item.schedule.interval,
                new_item.next_review_date.isoformat(),
            )
            return new_item
        logger.warning(
            "Version conflict grading item %s (attempt %d/%d), reloading",
            item_id,
            attempt,
            attempts,
        )
    raise ConcurrentUpdateError(
        f"Item {item_id} changed concurrently {attempts} times; grade not applied"
    )


async def review_history(
    db: aiosqlite.Connection, owner_id: str, item_id: str
) -> list[ReviewEvent]:
    await get_item(db, owner_id, item_id)
    return await list_review_events(db, owner_id, item_id)


async def review_stats(
    db: aiosqlite.Connection, owner_id: str, now: datetime
) -> ReviewStats:
    now = as_utc(now)
    items = await find_items(db, owner_id)
    return ReviewStats(
        total_items=len(items),
        due_now=len(select_due(items, now)),
        geometric_items=sum(1 for i in items if i.mode == ReviewMode.GEOMETRIC),
        memory_model_items=sum(1 for i in items if i.mode == ReviewMode.MEMORY_MODEL),
        reviews_today=await count_review_events_since(db, owner_id, start_of_day(now)),
    )
