"""Pydantic models for the application."""

from app.models.base import ErrorDetail, StrictRequest, StrictResponse
from app.models.progression import (
    ActionResult,
    DeletionOutcome,
    ImpactReport,
    PendingAction,
    RatingOutcome,
    StackStateResponse,
    SweepResult,
    TestResultOutcome,
    UserProgressResponse,
)

__all__ = [
    "ErrorDetail",
    "StrictRequest",
    "StrictResponse",
    "ActionResult",
    "DeletionOutcome",
    "ImpactReport",
    "PendingAction",
    "RatingOutcome",
    "StackStateResponse",
    "SweepResult",
    "TestResultOutcome",
    "UserProgressResponse",
]
