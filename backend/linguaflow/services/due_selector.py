from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from linguaflow.models.review_item import ReviewItem


def select_due(
    items: Iterable[ReviewItem], now: datetime, limit: int | None = None
) -> list[ReviewItem]:
    """Items with next_review_date <= now, most overdue first.

    sorted() is stable, so items sharing a due date keep their input order.
    """
    due = sorted(
        (item for item in items if item.next_review_date <= now),
        key=lambda item: item.next_review_date,
    )
    if limit is not None:
        return due[:limit]
    return due
