from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class ReviewMode(str, Enum):
    GEOMETRIC = "geometric"
    MEMORY_MODEL = "memory-model"


class Grade(IntEnum):
    """Memory-model recall grade."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


class GeometricSchedule(BaseModel):
    mode: Literal["geometric"] = "geometric"
    interval: int | None = None  # minutes; None until first grade


class MemorySchedule(BaseModel):
    mode: Literal["memory-model"] = "memory-model"
    interval: int | None = None  # days
    stability: float | None = None
    difficulty: float | None = None  # 1-10
    reps: int = 0
    lapses: int = 0
    last_grade: int | None = None


Schedule = Annotated[
    Union[GeometricSchedule, MemorySchedule], Field(discriminator="mode")
]


class ReviewItem(BaseModel):
    id: str
    owner_id: str
    payload_key: str
    payload: dict[str, Any]
    schedule: Schedule
    last_reviewed: datetime | None = None
    next_review_date: datetime
    review_count: int = 0
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def mode(self) -> ReviewMode:
        return ReviewMode(self.schedule.mode)


class ReviewItemCreate(BaseModel):
    payload_key: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    mode: ReviewMode = ReviewMode.GEOMETRIC


class ReviewItemView(ReviewItem):
    retrievability: float


class ReviewItemList(BaseModel):
    items: list[ReviewItem]
    total: int


class SaveResult(BaseModel):
    status: Literal["created", "already_exists"]
    item: ReviewItem


class GradeRequest(BaseModel):
    # true/false or "correct"/"incorrect" for geometric items,
    # 1-4 or "again"/"hard"/"good"/"easy" for memory-model items
    grade: bool | int | str


class GradeResult(BaseModel):
    id: str
    mode: ReviewMode
    interval: int
    next_review_date: datetime
    last_reviewed: datetime
    item: ReviewItem


class ReviewEvent(BaseModel):
    id: str
    item_id: str
    owner_id: str
    mode: ReviewMode
    grade: int
    reviewed_at: datetime
    interval_before: int | None
    interval_after: int
    stability_before: float | None = None
    stability_after: float | None = None
    difficulty_before: float | None = None
    difficulty_after: float | None = None
    retrievability: float | None = None


class ReviewEventList(BaseModel):
    items: list[ReviewEvent]
    total: int


class ReviewStats(BaseModel):
    total_items: int
    due_now: int
    geometric_items: int
    memory_model_items: int
    reviews_today: int
