"""
Geometric-interval scheduling.

Binary grading: a correct answer doubles the interval, an incorrect one
resets it to the base interval. Intervals are whole minutes.
"""
from __future__ import annotations

from datetime import datetime, timedelta

from linguaflow.models.review_item import GeometricSchedule

DEFAULT_BASE_INTERVAL = 15  # minutes
# 100 years, same as the memory model's default ceiling. Doubling saturates
# here so next_review_date stays a valid datetime.
MAX_GEOMETRIC_INTERVAL = 100 * 365 * 24 * 60


def apply_geometric(
    schedule: GeometricSchedule,
    correct: bool,
    now: datetime,
    base_interval: int = DEFAULT_BASE_INTERVAL,
    max_interval: int | None = None,
) -> tuple[GeometricSchedule, datetime]:
    """
    Return (new_schedule, next_review_date) for a graded review at `now`.

    A fresh schedule (interval None) is seeded with base_interval before the
    grade is applied. max_interval caps doubling when set; every interval is
    also held to MAX_GEOMETRIC_INTERVAL.
    """
    if base_interval <= 0:
        raise ValueError(f"base_interval must be positive, got {base_interval}")

    current = schedule.interval if schedule.interval else base_interval

    if correct:
        new_interval = current * 2
        if max_interval is not None:
            new_interval = min(new_interval, max(max_interval, base_interval))
    else:
        new_interval = base_interval
    new_interval = min(new_interval, MAX_GEOMETRIC_INTERVAL)

    return (
        GeometricSchedule(interval=new_interval),
        now + timedelta(minutes=new_interval),
    )
