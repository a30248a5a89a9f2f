"""
Guarded Mutation Layer

Any action that could silently reduce the streak or drop today's counter
below the daily requirement goes through a two-phase flow:

    IDLE ──check()──> CHECKING ──confirm()──> COMMITTING
                          │
                          └──cancel() / expiry──> CANCELLED

`check_*` functions are pure: they read rows and return an ImpactReport
without mutating anything, so they can be called repeatedly for re-renders
and retries. The report travels inside a PendingAction together with a
fingerprint of the state it was computed from. Confirm compares fingerprints
instead of recomputing the report, so what gets applied is exactly what the
user was shown.
"""

import hashlib
import json
import logging
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import uuid4

from app.config import settings
from app.db.models import (
    CardRatingRecord,
    FreezeState,
    StackMastery,
    StreakLedger,
    UserProgress,
)
from app.enums.progression import (
    GuardState,
    ImpactWarning,
    PendingActionKind,
    StackStatus,
)
from app.middleware.error_handling import (
    GuardViolationError,
    StaleConfirmationError,
)
from app.models.progression import ImpactReport, PendingAction
from app.services.progression import clock
from app.services.progression.daily_counter import preview_downgrade
from app.services.progression.mastery_scheduler import is_mastered

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    GuardState.IDLE: {GuardState.CHECKING},
    GuardState.CHECKING: {GuardState.COMMITTING, GuardState.CANCELLED},
    GuardState.COMMITTING: set(),
    GuardState.CANCELLED: set(),
}


def advance(action: PendingAction, to_state: GuardState) -> PendingAction:
    """
    Move a pending action to its next guard state.

    Raises:
        GuardViolationError: If the transition is not allowed, e.g.
            confirming an action that was already cancelled or committed.
    """
    if to_state not in _ALLOWED_TRANSITIONS[action.state]:
        raise GuardViolationError(
            f"Action {action.action_id} is {action.state.value} and cannot move to "
            f"{to_state.value}",
            details={"action_id": action.action_id, "state": action.state.value},
        )
    return action.model_copy(update={"state": to_state})


def _contributed_today(card: CardRatingRecord, today: date) -> bool:
    return card.contributed_on is not None and card.contributed_on == today


def check_rating_change(
    progress: UserProgress,
    ledger: StreakLedger,
    stack: StackMastery,
    card: CardRatingRecord,
    new_rating: int,
    today: date,
) -> ImpactReport:
    """
    Compute the impact of changing one card's rating.

    Only a card that counted toward today's total can take it away again.
    Downgrading such a card after today's award fired, to below the daily
    requirement, costs a streak day and needs confirmation.

    Args:
        progress: The user's (rolled-over) counter row.
        ledger: The user's streak ledger.
        stack: The card's stack.
        card: The card being rated.
        new_rating: The rating the user selected.
        today: The user's local calendar day.

    Returns:
        ImpactReport; `requires_confirmation` is set for streak-impacting
        downgrades only.
    """
    was_mastered = is_mastered(card.rating)
    now_mastered = is_mastered(new_rating)
    cards_before = progress.cards_mastered_today
    streak_before = ledger.current_streak

    if was_mastered and not now_mastered:
        removed = 1 if _contributed_today(card, today) else 0
        preview = preview_downgrade(progress, removed)
        mastery_lost = (
            stack.mastery_reached_at is not None
            and stack.status != StackStatus.COMPLETED.value
        )

        if preview.streak_impacting:
            streak_after = max(0, streak_before - 1)
            return ImpactReport(
                requires_confirmation=True,
                warning_type=ImpactWarning.STREAK_DECREMENT,
                message=(
                    f"Lowering this card to {new_rating} drops today's progress to "
                    f"{preview.cards_today}/{settings.STREAK_DAILY_REQUIREMENT}. "
                    f"Your streak will go from {streak_before} to {streak_after} "
                    f"until you master another card today."
                ),
                cards_today_before=cards_before,
                cards_today_after=preview.cards_today,
                current_streak_before=streak_before,
                current_streak_after=streak_after,
                longest_streak=ledger.longest_streak,
                mastery_lost=mastery_lost,
            )

        return ImpactReport(
            requires_confirmation=False,
            message="Rating lowered. Your streak is not affected.",
            cards_today_before=cards_before,
            cards_today_after=preview.cards_today,
            current_streak_before=streak_before,
            current_streak_after=streak_before,
            longest_streak=ledger.longest_streak,
            mastery_lost=mastery_lost,
        )

    cards_after = cards_before + (1 if now_mastered and not was_mastered else 0)
    crosses = (
        cards_after == settings.STREAK_DAILY_REQUIREMENT
        and cards_after != cards_before
        and not progress.streak_awarded_today
    )
    return ImpactReport(
        requires_confirmation=False,
        message="Daily goal reached!" if crosses else "Rating updated.",
        cards_today_before=cards_before,
        cards_today_after=cards_after,
        current_streak_before=streak_before,
        current_streak_after=streak_before + (1 if crosses else 0),
        longest_streak=ledger.longest_streak,
    )


def check_stack_deletion(
    progress: UserProgress,
    ledger: StreakLedger,
    freeze: FreezeState,
    stack: StackMastery,
    today: date,
) -> ImpactReport:
    """
    Compute the impact of deleting a stack.

    Deleting a stack resets an active streak when the stack contributed to
    today's count or holds a pending test that counts for the streak.
    Completed stacks are always safe. A legacy test is reported but needs no
    acknowledgement.
    """
    streak = ledger.current_streak
    longest = ledger.longest_streak
    cards_before = progress.cards_mastered_today
    unfreezes = stack.id in (freeze.frozen_stack_ids or [])
    contributed = sum(1 for card in stack.cards if _contributed_today(card, today))
    test = stack.test
    pending = stack.status == StackStatus.PENDING_TEST.value

    base = dict(
        cards_today_before=cards_before,
        current_streak_before=streak,
        longest_streak=longest,
        unfreezes_stack=unfreezes,
    )

    if stack.status == StackStatus.COMPLETED.value:
        return ImpactReport(
            requires_confirmation=False,
            message="Stack completed - safe to delete",
            cards_today_after=cards_before,
            current_streak_after=streak,
            **base,
        )

    if streak > 0 and (
        contributed > 0 or (pending and test is not None and test.can_unfreeze_streak)
    ):
        return ImpactReport(
            requires_confirmation=True,
            warning_type=ImpactWarning.STREAK_RESET,
            message=(
                f"Deleting this stack will reset your {streak}-day streak to 0. "
                f"Your longest streak of {longest} days will remain safe."
            ),
            cards_today_after=0,
            current_streak_after=0,
            **base,
        )

    cards_after = max(0, cards_before - contributed)
    if pending and test is not None and not test.can_unfreeze_streak:
        return ImpactReport(
            requires_confirmation=False,
            warning_type=ImpactWarning.LEGACY_TEST,
            message=(
                "This stack has a legacy test. Complete it anytime to properly "
                "unlock. Deleting won't affect your current streak."
            ),
            cards_today_after=cards_after,
            current_streak_after=streak,
            **base,
        )

    return ImpactReport(
        requires_confirmation=False,
        message="Safe to delete",
        cards_today_after=cards_after,
        current_streak_after=streak,
        **base,
    )


def state_fingerprint(
    progress: UserProgress,
    ledger: StreakLedger,
    freeze: FreezeState,
    stack: StackMastery,
    card: Optional[CardRatingRecord] = None,
) -> str:
    """
    Hash the fields an impact report depends on.

    Built from field values rather than version counters, so writes to
    unrelated rows (another stack's ratings) leave it unchanged.
    """

    def _iso(value):
        return value.isoformat() if value is not None else None

    test = stack.test
    state = {
        "progress": [
            progress.cards_mastered_today,
            _iso(progress.last_mastery_date),
            progress.streak_awarded_today,
            _iso(progress.last_credited_date),
        ],
        "ledger": [ledger.current_streak, ledger.longest_streak],
        "frozen": sorted(freeze.frozen_stack_ids or []),
        "stack": [
            stack.id,
            stack.status,
            stack.mastered_count,
            _iso(stack.mastery_reached_at),
            test is not None,
            test.can_unfreeze_streak if test is not None else None,
            sorted(
                (c.id, c.rating, _iso(c.contributed_on)) for c in stack.cards
            ),
        ],
        "card": [card.id, card.rating, _iso(card.contributed_on)] if card else None,
    }
    encoded = json.dumps(state, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()


def verify_fingerprint(action: PendingAction, current: str) -> None:
    """
    Reject a confirmation whose report no longer matches the stored state.

    Raises:
        StaleConfirmationError: If anything the report depends on changed.
    """
    if action.state_fingerprint != current:
        logger.info(
            f"Stale confirmation for action {action.action_id} ({action.kind.value})"
        )
        raise StaleConfirmationError(
            "The state changed since this action was checked. Check it again.",
            details={"action_id": action.action_id},
        )


def new_pending_action(
    user_id: str,
    kind: PendingActionKind,
    stack_id: str,
    impact: ImpactReport,
    fingerprint: str,
    card_id: Optional[str] = None,
    rating: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PendingAction:
    """Build a pending action in the CHECKING state."""
    now = now or clock.utc_now()
    return PendingAction(
        action_id=str(uuid4()),
        user_id=user_id,
        kind=kind,
        stack_id=stack_id,
        card_id=card_id,
        rating=rating,
        impact=impact,
        state_fingerprint=fingerprint,
        state=GuardState.CHECKING,
        created_at=now,
        expires_at=now + timedelta(seconds=settings.PENDING_ACTION_TTL_SECONDS),
    )
