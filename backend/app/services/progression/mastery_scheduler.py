"""
Mastery and Deadline Scheduler

Per-stack lifecycle:

    in_progress ──(every card rated >= threshold, first time)──> pending_test
    pending_test ──(test scored 100%)──────────────────────────> completed
    pending_test ──(any card drops below threshold)────────────> in_progress

Reaching mastery schedules a one-shot test deadline that grows with the stack
size (see clock.calculate_test_deadline). A failed test clears the deadline
without setting a new one; only losing and regaining mastery schedules
another. Completed stacks are terminal.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from app.config import settings
from app.db.models import CardRatingRecord, StackMastery, StackTest
from app.enums.progression import StackStatus, StackTestStatus
from app.middleware.error_handling import GuardViolationError, ValidationError
from app.services.progression import clock

logger = logging.getLogger(__name__)


@dataclass
class MasteryTransition:
    """Tagged result of recomputing a stack's mastery."""

    mastered_count: int
    total_cards: int
    mastery_triggered: bool = False
    mastery_lost: bool = False
    test_deadline: Optional[datetime] = None


@dataclass
class TestOutcome:
    """Result of grading a mastery test."""

    score: float
    passed: bool
    attempts: int
    was_overdue: bool
    is_legacy: bool


def is_mastered(rating: int) -> bool:
    """A card is mastered at or above the configured threshold (4 of 5)."""
    return rating >= settings.MASTERY_RATING_THRESHOLD


def _schedule_test(stack: StackMastery, has_active_streak: bool) -> None:
    if stack.test is None:
        stack.test = StackTest(
            user_id=stack.user_id,
            status=StackTestStatus.PENDING.value,
            can_unfreeze_streak=has_active_streak,
            attempts=0,
            last_score=None,
        )
    else:
        stack.test.status = StackTestStatus.PENDING.value
        stack.test.can_unfreeze_streak = has_active_streak


def revert_mastery(stack: StackMastery) -> MasteryTransition:
    """
    Undo a stack's mastery after a card dropped below the threshold.

    Clears the mastery timestamp and deadline, moves the stack back to
    in_progress and drops its pending test. Completed stacks keep their
    status.
    """
    if stack.status == StackStatus.COMPLETED.value:
        return MasteryTransition(
            mastered_count=stack.mastered_count, total_cards=stack.total_cards
        )

    logger.info(
        f"Stack {stack.id} lost mastery: {stack.status} -> in_progress "
        f"(deadline {stack.test_deadline} cleared)"
    )
    stack.mastery_reached_at = None
    stack.test_deadline = None
    stack.status = StackStatus.IN_PROGRESS.value
    stack.test = None
    return MasteryTransition(
        mastered_count=stack.mastered_count,
        total_cards=stack.total_cards,
        mastery_lost=True,
    )


def recompute_mastery(
    stack: StackMastery,
    cards: Optional[Iterable[CardRatingRecord]],
    now: datetime,
    has_active_streak: bool = False,
) -> MasteryTransition:
    """
    Recompute a stack's mastered count after a rating change.

    Args:
        stack: The stack whose card changed.
        cards: The stack's cards (defaults to `stack.cards`).
        now: Current instant, recorded as the mastery time on a transition.
        has_active_streak: Whether the user has a streak right now. A test
            scheduled during a streak can affect it; otherwise it is a legacy
            test from the start.

    Returns:
        MasteryTransition with `mastery_triggered` or `mastery_lost` set on
        the edge, never on a repeat.
    """
    cards = list(stack.cards if cards is None else cards)
    stack.mastered_count = sum(1 for card in cards if is_mastered(card.rating))
    stack.total_cards = len(cards)
    all_mastered = stack.total_cards > 0 and stack.mastered_count == stack.total_cards

    if (
        all_mastered
        and stack.mastery_reached_at is None
        and stack.status != StackStatus.COMPLETED.value
    ):
        stack.mastery_reached_at = now
        stack.test_deadline = clock.calculate_test_deadline(now, stack.total_cards)
        stack.status = StackStatus.PENDING_TEST.value
        _schedule_test(stack, has_active_streak)
        logger.info(
            f"Stack {stack.id} mastered ({stack.total_cards} cards): "
            f"test due {stack.test_deadline.isoformat()}"
        )
        return MasteryTransition(
            mastered_count=stack.mastered_count,
            total_cards=stack.total_cards,
            mastery_triggered=True,
            test_deadline=stack.test_deadline,
        )

    if not all_mastered and stack.mastery_reached_at is not None:
        return revert_mastery(stack)

    return MasteryTransition(
        mastered_count=stack.mastered_count,
        total_cards=stack.total_cards,
        test_deadline=stack.test_deadline,
    )


def submit_test(stack: StackMastery, score: float, now: datetime) -> TestOutcome:
    """
    Grade a mastery test.

    Any submission clears the deadline. A perfect score completes the stack;
    anything else leaves it pending with no new deadline.

    Raises:
        ValidationError: If the score is outside 0-100.
        GuardViolationError: If the stack has no pending test.
    """
    if not 0 <= score <= 100:
        raise ValidationError(
            f"Test score must be between 0 and 100, got {score}",
            details={"stack_id": stack.id, "score": score},
        )
    if stack.status != StackStatus.PENDING_TEST.value:
        raise GuardViolationError(
            f"Stack {stack.id} has no pending test (status: {stack.status})",
            details={"stack_id": stack.id, "status": stack.status},
        )

    if stack.test is None:
        _schedule_test(stack, has_active_streak=False)

    was_overdue = stack.test_deadline is not None and now > stack.test_deadline
    passed = score >= 100

    stack.test_deadline = None
    stack.last_test_score = score
    stack.test.attempts = (stack.test.attempts or 0) + 1
    stack.test.last_score = score

    if passed:
        stack.status = StackStatus.COMPLETED.value
        stack.completion_date = now
        stack.test.status = StackTestStatus.PASSED.value
        logger.info(f"Stack {stack.id} completed with a perfect test")
    else:
        logger.info(f"Stack {stack.id} test scored {score}%, stays pending")

    return TestOutcome(
        score=score,
        passed=passed,
        attempts=stack.test.attempts,
        was_overdue=was_overdue,
        is_legacy=not stack.test.can_unfreeze_streak,
    )
