"""
Unit tests for the mastery and deadline scheduler.

Tests:
- Mastery edge schedules a test deadline scaled to stack size
- Losing mastery clears the deadline and drops the test
- Test grading: perfect score completes, anything else clears the deadline
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.enums.progression import StackStatus, StackTestStatus
from app.middleware.error_handling import GuardViolationError, ValidationError
from app.services.progression.mastery_scheduler import (
    is_mastered,
    recompute_mastery,
    revert_mastery,
    submit_test,
)

T = datetime(2024, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mastered_stack(make_stack):
    """A 10-card stack that reached mastery at T."""
    stack = make_stack(cards=10, ratings=[4] * 10)
    recompute_mastery(stack, None, T, has_active_streak=True)
    return stack


class TestIsMastered:
    @pytest.mark.parametrize("rating,expected", [(1, False), (3, False), (4, True), (5, True)])
    def test_threshold(self, rating, expected):
        assert is_mastered(rating) is expected


class TestRecomputeMastery:
    def test_full_mastery_schedules_test(self, make_stack):
        stack = make_stack(cards=10, ratings=[4] * 9 + [5])

        transition = recompute_mastery(stack, None, T, has_active_streak=True)

        assert transition.mastery_triggered is True
        assert stack.status == StackStatus.PENDING_TEST.value
        assert stack.mastery_reached_at == T
        assert stack.test_deadline == T + timedelta(hours=24 + 4 * 10)
        assert stack.test.status == StackTestStatus.PENDING.value
        assert stack.test.can_unfreeze_streak is True

    def test_partial_mastery_stays_in_progress(self, make_stack):
        stack = make_stack(cards=3, ratings=[4, 5, 3])

        transition = recompute_mastery(stack, None, T)

        assert transition.mastery_triggered is False
        assert transition.mastered_count == 2
        assert stack.status == StackStatus.IN_PROGRESS.value
        assert stack.test_deadline is None
        assert stack.test is None

    def test_mastery_fires_once(self, mastered_stack):
        later = T + timedelta(hours=1)

        transition = recompute_mastery(mastered_stack, None, later)

        assert transition.mastery_triggered is False
        assert mastered_stack.mastery_reached_at == T

    def test_test_without_streak_is_legacy_from_start(self, make_stack):
        stack = make_stack(cards=2, ratings=[4, 4])

        recompute_mastery(stack, None, T, has_active_streak=False)

        assert stack.test.can_unfreeze_streak is False

    def test_downgrade_reverts_mastery(self, mastered_stack):
        mastered_stack.cards[0].rating = 2

        transition = recompute_mastery(mastered_stack, None, T + timedelta(hours=1))

        assert transition.mastery_lost is True
        assert mastered_stack.status == StackStatus.IN_PROGRESS.value
        assert mastered_stack.mastery_reached_at is None
        assert mastered_stack.test_deadline is None
        assert mastered_stack.test is None
        assert mastered_stack.mastered_count == 9

    def test_remastery_schedules_new_deadline(self, mastered_stack):
        mastered_stack.cards[0].rating = 2
        recompute_mastery(mastered_stack, None, T + timedelta(hours=1))

        mastered_stack.cards[0].rating = 4
        later = T + timedelta(hours=2)
        transition = recompute_mastery(mastered_stack, None, later)

        assert transition.mastery_triggered is True
        assert mastered_stack.test_deadline == later + timedelta(hours=64)

    def test_completed_stack_is_terminal(self, mastered_stack):
        submit_test(mastered_stack, 100, T + timedelta(hours=1))
        mastered_stack.cards[0].rating = 1

        transition = recompute_mastery(mastered_stack, None, T + timedelta(hours=2))

        assert transition.mastery_lost is False
        assert mastered_stack.status == StackStatus.COMPLETED.value
        assert revert_mastery(mastered_stack).mastery_lost is False


class TestSubmitTest:
    def test_perfect_score_completes(self, mastered_stack):
        outcome = submit_test(mastered_stack, 100, T + timedelta(hours=3))

        assert outcome.passed is True
        assert outcome.attempts == 1
        assert outcome.was_overdue is False
        assert mastered_stack.status == StackStatus.COMPLETED.value
        assert mastered_stack.test_deadline is None
        assert mastered_stack.completion_date == T + timedelta(hours=3)
        assert mastered_stack.test.status == StackTestStatus.PASSED.value

    def test_failed_test_clears_deadline_without_rescheduling(self, mastered_stack):
        outcome = submit_test(mastered_stack, 80, T + timedelta(hours=3))

        assert outcome.passed is False
        assert mastered_stack.status == StackStatus.PENDING_TEST.value
        assert mastered_stack.test_deadline is None
        assert mastered_stack.last_test_score == 80

    def test_overdue_submission_is_flagged(self, mastered_stack):
        outcome = submit_test(mastered_stack, 100, T + timedelta(days=5))

        assert outcome.was_overdue is True
        assert outcome.passed is True

    def test_retry_counts_attempts(self, mastered_stack):
        submit_test(mastered_stack, 50, T + timedelta(hours=1))
        outcome = submit_test(mastered_stack, 100, T + timedelta(hours=2))

        assert outcome.attempts == 2
        assert outcome.passed is True

    @pytest.mark.parametrize("score", [-1, 100.5, 250])
    def test_score_out_of_range(self, mastered_stack, score):
        with pytest.raises(ValidationError):
            submit_test(mastered_stack, score, T)

    def test_stack_without_pending_test(self, make_stack):
        stack = make_stack(cards=2)

        with pytest.raises(GuardViolationError):
            submit_test(stack, 100, T)
