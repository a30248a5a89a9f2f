"""
Progression Engine API Models (Pydantic)

Request/response schemas for the streak and mastery API including:
- Daily progress and streak snapshots
- Stack mastery and test state
- Impact reports and pending confirmations (two-phase check/confirm)

ARCHITECTURE NOTE:
    This file contains PYDANTIC models for API validation.
    There is a corresponding SQLAlchemy file: app/db/models.py

    Data flows: API Request → Pydantic → Service → SQLAlchemy → Database

API Contract:
    Request models use StrictRequest (extra="forbid") to reject unknown fields.
    This catches frontend/backend mismatches early with clear 422 errors.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import Field, field_validator

from app.enums.progression import (
    CardRating,
    GuardState,
    ImpactWarning,
    PendingActionKind,
    StackStatus,
    StackTestStatus,
)
from app.models.base import StrictRequest, StrictResponse


# ===========================================
# Request Models
# ===========================================


class TimezoneUpdate(StrictRequest):
    """Request to change the timezone used for a user's calendar days."""

    timezone: str = Field(..., min_length=1, description="IANA timezone name")


class RegisterStackRequest(StrictRequest):
    """
    Request to start tracking a stack.

    Sent by the content collaborator once a stack's cards exist. Every card
    starts at the lowest rating.
    """

    stack_id: str = Field(..., min_length=1, max_length=64)
    title: Optional[str] = Field(None, max_length=500)
    card_ids: list[str] = Field(..., min_length=1, description="Card identifiers")

    @field_validator("card_ids")
    @classmethod
    def card_ids_unique(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("card_ids must be unique")
        return v


class RatingRequest(StrictRequest):
    """
    Request to rate a card.

    Ratings are self-assessed on a 1-5 scale; 4 and 5 count as mastered.

    Note: Uses StrictRequest - unknown fields will be rejected with 422.
    """

    rating: CardRating = Field(..., description="Self-assessment rating (1-5)")


class TestResultRequest(StrictRequest):
    """Request to submit a mastery test score."""

    score: float = Field(..., ge=0, le=100, description="Score in percent")


class ConfirmRequest(StrictRequest):
    """
    Confirmation of a pending action.

    Deletions that reset the streak must be acknowledged explicitly.
    """

    reset_streak_if_warned: bool = False


# ===========================================
# Progress Models
# ===========================================


class StreakTimeRemainingResponse(StrictResponse):
    """Countdown until the next streak cutoff."""

    hours: int
    minutes: int
    seconds: int
    total_seconds: int
    deadline: datetime


class UserProgressResponse(StrictResponse):
    """
    Authoritative per-user snapshot.

    Clients must not cache these values across requests. Every read resyncs
    from the store after applying the lazy day rollover and freeze pass.
    """

    user_id: str
    timezone: str
    cards_mastered_today: int
    daily_requirement: int
    cards_needed: int
    streak_awarded_today: bool
    current_streak: int
    longest_streak: int
    streak_frozen: bool
    frozen_stack_ids: list[str] = Field(default_factory=list)
    last_credited_date: Optional[date] = None
    display_deadline: datetime
    streak_deadline: datetime
    in_grace_period: bool
    time_remaining: StreakTimeRemainingResponse


# ===========================================
# Stack Models
# ===========================================


class CardStateResponse(StrictResponse):
    card_id: str
    rating: int
    mastered: bool


class StackTestResponse(StrictResponse):
    status: StackTestStatus
    can_unfreeze_streak: bool
    attempts: int
    last_score: Optional[float] = None


class StackStateResponse(StrictResponse):
    """Mastery and test state of one stack."""

    stack_id: str
    user_id: str
    title: Optional[str] = None
    status: StackStatus
    mastered_count: int
    total_cards: int
    mastery_reached_at: Optional[datetime] = None
    test_deadline: Optional[datetime] = None
    last_test_score: Optional[float] = None
    completion_date: Optional[datetime] = None
    is_overdue: bool = False
    test: Optional[StackTestResponse] = None
    cards: list[CardStateResponse] = Field(default_factory=list)


# ===========================================
# Guarded Mutation Models
# ===========================================


class ImpactReport(StrictResponse):
    """
    Precomputed consequences of an action, shown before confirmation.

    The report is stored with its pending action and returned unchanged on
    confirm. It is never re-derived at confirm time.
    """

    requires_confirmation: bool
    warning_type: ImpactWarning = ImpactWarning.NONE
    message: str
    cards_today_before: int
    cards_today_after: int
    current_streak_before: int
    current_streak_after: int
    longest_streak: int
    mastery_lost: bool = False
    unfreezes_stack: bool = False


class PendingAction(StrictResponse):
    """
    An action awaiting confirmation, together with the report shown for it.

    `state_fingerprint` identifies the state the report was computed
    against. Confirming after that state changed is rejected.
    """

    action_id: str
    user_id: str
    kind: PendingActionKind
    stack_id: str
    card_id: Optional[str] = None
    rating: Optional[int] = None
    impact: ImpactReport
    state_fingerprint: str
    state: GuardState = GuardState.CHECKING
    created_at: datetime
    expires_at: datetime


# ===========================================
# Outcome Models
# ===========================================


class RatingOutcome(StrictResponse):
    """
    Result of a rating submission.

    When `applied` is false nothing was written and `pending_action` holds
    the impact report to confirm or cancel.
    """

    applied: bool
    card_id: str
    rating: int
    previous_rating: int
    crossed_threshold: bool = False
    streak_incremented: bool = False
    streak_decremented: bool = False
    mastery_triggered: bool = False
    mastery_lost: bool = False
    progress: UserProgressResponse
    stack: StackStateResponse
    pending_action: Optional[PendingAction] = None


class DeletionOutcome(StrictResponse):
    """Result of a confirmed stack deletion."""

    stack_id: str
    deleted: bool
    streak_reset: bool
    message: str
    progress: UserProgressResponse


class ActionResult(StrictResponse):
    """Result of confirming or cancelling a pending action."""

    action_id: str
    kind: PendingActionKind
    state: GuardState
    rating_outcome: Optional[RatingOutcome] = None
    deletion_outcome: Optional[DeletionOutcome] = None


class TestResultOutcome(StrictResponse):
    """Result of a test submission."""

    passed: bool
    score: float
    attempts: int
    was_overdue: bool
    is_legacy: bool
    unfrozen: bool
    stack: StackStateResponse
    progress: UserProgressResponse


class SweepResult(StrictResponse):
    """Summary of a periodic rollover/freeze sweep."""

    users_processed: int = 0
    users_failed: int = 0
    streaks_reset: int = 0
    freezes_changed: int = 0
    started_at: datetime
    duration_seconds: float = 0.0
