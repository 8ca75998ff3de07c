from linguaflow.models.review_item import (
    GeometricSchedule,
    Grade,
    GradeRequest,
    GradeResult,
    MemorySchedule,
    ReviewEvent,
    ReviewEventList,
    ReviewItem,
    ReviewItemCreate,
    ReviewItemList,
    ReviewItemView,
    ReviewMode,
    ReviewStats,
    SaveResult,
    Schedule,
)

__all__ = [
    "GeometricSchedule",
    "Grade",
    "GradeRequest",
    "GradeResult",
    "MemorySchedule",
    "ReviewEvent",
    "ReviewEventList",
    "ReviewItem",
    "ReviewItemCreate",
    "ReviewItemList",
    "ReviewItemView",
    "ReviewMode",
    "ReviewStats",
    "SaveResult",
    "Schedule",
]
