"""
Progression API Router

Endpoints for daily progress, streaks, stack mastery and guarded actions.

Endpoints:
- GET /api/progression/users/{user_id} - Progress and streak snapshot
- PUT /api/progression/users/{user_id}/timezone - Change the user's timezone
- POST /api/progression/users/{user_id}/stacks - Register a stack
- GET /api/progression/users/{user_id}/stacks/{stack_id} - Stack state
- POST /api/progression/users/{user_id}/stacks/{stack_id}/cards/{card_id}/rating - Rate a card
- POST /api/progression/users/{user_id}/stacks/{stack_id}/test-result - Submit a test score
- POST /api/progression/users/{user_id}/stacks/{stack_id}/deletion-check - Check a deletion
- POST /api/progression/users/{user_id}/actions/{action_id}/confirm - Confirm a pending action
- POST /api/progression/users/{user_id}/actions/{action_id}/cancel - Cancel a pending action
- POST /api/progression/sweep - Run the rollover/freeze sweep for all users

Errors are raised as ServiceError subclasses and rendered by the error
handling middleware.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.base import get_db
from app.dependencies import RequireAPIKey
from app.enums import RateLimitType
from app.middleware.rate_limit import limiter
from app.models.base import ErrorDetail
from app.models.progression import (
    ActionResult,
    ConfirmRequest,
    PendingAction,
    RatingOutcome,
    RatingRequest,
    RegisterStackRequest,
    StackStateResponse,
    SweepResult,
    TestResultOutcome,
    TestResultRequest,
    TimezoneUpdate,
    UserProgressResponse,
)
from app.services.progression import PendingActionStore, ProgressionService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/progression",
    tags=["progression"],
    dependencies=[RequireAPIKey],
    responses={
        404: {"model": ErrorDetail, "description": "Unknown user resource"},
        409: {"model": ErrorDetail, "description": "Conflict or confirmation required"},
        422: {"model": ErrorDetail, "description": "Validation error"},
    },
)


# ===========================================
# Dependency Injection
# ===========================================


async def get_pending_action_store() -> PendingActionStore:
    """Get the Redis-backed pending action store."""
    return PendingActionStore()


async def get_progression_service(
    db: AsyncSession = Depends(get_db),
    store: PendingActionStore = Depends(get_pending_action_store),
) -> ProgressionService:
    """Get progression service."""
    return ProgressionService(db, store)


# ===========================================
# Progress Endpoints
# ===========================================


@router.get("/users/{user_id}", response_model=UserProgressResponse)
@limiter.limit(settings.get_rate_limit(RateLimitType.DEFAULT))
async def get_user_progress(
    request: Request,
    user_id: str,
    service: ProgressionService = Depends(get_progression_service),
) -> UserProgressResponse:
    """
    Get a user's progress snapshot.

    Always resyncs from the store (day rollover and freeze pass applied), so
    clients should refetch rather than cache.
    """
    return await service.get_user_progress(user_id)


@router.put("/users/{user_id}/timezone", response_model=UserProgressResponse)
@limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
async def set_timezone(
    request: Request,
    user_id: str,
    body: TimezoneUpdate,
    service: ProgressionService = Depends(get_progression_service),
) -> UserProgressResponse:
    """Change the IANA timezone that defines the user's calendar days."""
    return await service.set_timezone(user_id, body.timezone)


# ===========================================
# Stack Endpoints
# ===========================================


@router.post("/users/{user_id}/stacks", response_model=StackStateResponse, status_code=201)
@limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
async def register_stack(
    request: Request,
    user_id: str,
    body: RegisterStackRequest,
    service: ProgressionService = Depends(get_progression_service),
) -> StackStateResponse:
    """Start tracking a stack's mastery. Every card starts at rating 1."""
    return await service.register_stack(
        user_id, body.stack_id, body.card_ids, title=body.title
    )


@router.get("/users/{user_id}/stacks/{stack_id}", response_model=StackStateResponse)
@limiter.limit(settings.get_rate_limit(RateLimitType.DEFAULT))
async def get_stack_state(
    request: Request,
    user_id: str,
    stack_id: str,
    service: ProgressionService = Depends(get_progression_service),
) -> StackStateResponse:
    """Get a stack's status, mastery time, test deadline and card ratings."""
    return await service.get_stack_state(user_id, stack_id)


@router.post(
    "/users/{user_id}/stacks/{stack_id}/cards/{card_id}/rating",
    response_model=RatingOutcome,
)
@limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
async def submit_rating(
    request: Request,
    user_id: str,
    stack_id: str,
    card_id: str,
    body: RatingRequest,
    service: ProgressionService = Depends(get_progression_service),
) -> RatingOutcome:
    """
    Rate a card (1-5).

    If the change would cost a streak day, nothing is written and the
    response carries a `pending_action` to confirm or cancel.
    """
    return await service.submit_rating(user_id, stack_id, card_id, int(body.rating))


@router.post(
    "/users/{user_id}/stacks/{stack_id}/test-result",
    response_model=TestResultOutcome,
)
@limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
async def submit_test_result(
    request: Request,
    user_id: str,
    stack_id: str,
    body: TestResultRequest,
    service: ProgressionService = Depends(get_progression_service),
) -> TestResultOutcome:
    """Submit a mastery test score. 100% completes the stack."""
    return await service.submit_test_result(user_id, stack_id, body.score)


@router.post(
    "/users/{user_id}/stacks/{stack_id}/deletion-check",
    response_model=PendingAction,
)
@limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
async def check_stack_deletion(
    request: Request,
    user_id: str,
    stack_id: str,
    service: ProgressionService = Depends(get_progression_service),
) -> PendingAction:
    """
    First phase of deleting a stack.

    Returns the impact report as a pending action. Nothing is deleted until
    the action is confirmed.
    """
    return await service.check_stack_deletion(user_id, stack_id)


# ===========================================
# Guarded Action Endpoints
# ===========================================


@router.post("/users/{user_id}/actions/{action_id}/confirm", response_model=ActionResult)
@limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
async def confirm_action(
    request: Request,
    user_id: str,
    action_id: str,
    body: ConfirmRequest,
    service: ProgressionService = Depends(get_progression_service),
) -> ActionResult:
    """
    Confirm a pending action exactly as it was checked.

    Deletions that reset the streak require `reset_streak_if_warned: true`.
    """
    return await service.confirm_action(
        user_id, action_id, reset_streak_if_warned=body.reset_streak_if_warned
    )


@router.post("/users/{user_id}/actions/{action_id}/cancel", response_model=ActionResult)
@limiter.limit(settings.get_rate_limit(RateLimitType.MUTATION))
async def cancel_action(
    request: Request,
    user_id: str,
    action_id: str,
    service: ProgressionService = Depends(get_progression_service),
) -> ActionResult:
    """Abandon a pending action without side effects."""
    return await service.cancel_action(user_id, action_id)


# ===========================================
# Maintenance Endpoints
# ===========================================


@router.post("/sweep", response_model=SweepResult)
@limiter.limit(settings.get_rate_limit(RateLimitType.BATCH))
async def run_sweep(
    request: Request,
    service: ProgressionService = Depends(get_progression_service),
) -> SweepResult:
    """
    Apply the day rollover and freeze pass for every user.

    The scheduler runs this periodically; the endpoint allows a manual run.
    """
    logger.info("Manual streak sweep requested")
    return await service.sweep_all_users()
