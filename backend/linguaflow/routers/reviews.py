"""
Review scheduling router.

Endpoints:
  POST /reviews                  save an item for review (idempotent per payload_key)
  GET  /reviews                  list the caller's tracked items
  GET  /reviews/due              items due now, most overdue first
  GET  /reviews/stats            totals, due count, reviews today
  GET  /reviews/{id}             single item with current retrievability
  GET  /reviews/{id}/history     graded submissions, newest first
  POST /reviews/{id}/grade       submit a grade, returns the new schedule

The caller is identified by the X-User-Id header set by the authenticating proxy.
Store failures are turned into 503 responses by the app-level exception handler.
"""
from __future__ import annotations

from datetime import datetime

import aiosqlite
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response

from linguaflow.db.sqlite import get_db, list_items
from linguaflow.models.review_item import (
    GradeRequest,
    GradeResult,
    ReviewEventList,
    ReviewItemCreate,
    ReviewItemList,
    ReviewItemView,
    ReviewStats,
    SaveResult,
)
from linguaflow.services.clock import utc_now
from linguaflow.services.scheduling import (
    ConcurrentUpdateError,
    InvalidGradeError,
    ItemNotFoundError,
    current_retrievability,
    get_due,
    get_item,
    review_history,
    review_stats,
    save_for_review,
    submit_grade,
)

router = APIRouter()


def get_owner_id(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_now() -> datetime:
    return utc_now()


@router.post("", response_model=SaveResult, status_code=201)
async def save_item(
    body: ReviewItemCreate,
    response: Response,
    owner_id: str = Depends(get_owner_id),
    now: datetime = Depends(get_now),
    db: aiosqlite.Connection = Depends(get_db),
) -> SaveResult:
    try:
        result = await save_for_review(
            db, owner_id, body.payload_key, body.payload, body.mode, now
        )
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    if result.status == "already_exists":
        response.status_code = 200
    return result


@router.get("", response_model=ReviewItemList)
async def list_review_items(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewItemList:
    items, total = await list_items(db, owner_id, offset=offset, limit=limit)
    return ReviewItemList(items=items, total=total)


@router.get("/due", response_model=ReviewItemList)
async def list_due(
    limit: int | None = Query(default=None, ge=1, le=500),
    owner_id: str = Depends(get_owner_id),
    now: datetime = Depends(get_now),
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewItemList:
    """Return items due now, most overdue first."""
    items = await get_due(db, owner_id, now, limit=limit)
    return ReviewItemList(items=items, total=len(items))


@router.get("/stats", response_model=ReviewStats)
async def stats(
    owner_id: str = Depends(get_owner_id),
    now: datetime = Depends(get_now),
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewStats:
    return await review_stats(db, owner_id, now)


@router.get("/{item_id}", response_model=ReviewItemView)
async def get_review_item(
    item_id: str,
    owner_id: str = Depends(get_owner_id),
    now: datetime = Depends(get_now),
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewItemView:
    try:
        item = await get_item(db, owner_id, item_id)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail="Review item not found") from e
    return ReviewItemView(
        **item.model_dump(), retrievability=current_retrievability(item, now)
    )


@router.get("/{item_id}/history", response_model=ReviewEventList)
async def get_review_history(
    item_id: str,
    owner_id: str = Depends(get_owner_id),
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewEventList:
    try:
        events = await review_history(db, owner_id, item_id)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail="Review item not found") from e
    return ReviewEventList(items=events, total=len(events))


@router.post("/{item_id}/grade", response_model=GradeResult)
async def grade_item(
    item_id: str,
    body: GradeRequest,
    owner_id: str = Depends(get_owner_id),
    now: datetime = Depends(get_now),
    db: aiosqlite.Connection = Depends(get_db),
) -> GradeResult:
    """Submit a review grade. Runs the item's scheduling policy and persists the result."""
    try:
        item = await submit_grade(db, owner_id, item_id, body.grade, now)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail="Review item not found") from e
    except InvalidGradeError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return GradeResult(
        id=item.id,
        mode=item.mode,
        interval=item.schedule.interval,
        next_review_date=item.next_review_date,
        last_reviewed=item.last_reviewed,
        item=item,
    )
