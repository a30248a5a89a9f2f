"""
Progression Service

Transactional entry point for the streak and mastery engine.

Every operation:
1. Loads the user's rows (UserProgress, StreakLedger, FreezeState and all
   stacks with their cards and tests), creating missing per-user rows lazily.
2. Resyncs: runs the freeze pass and the lazy day rollover.
3. Asks the guard for an impact report and either applies the mutation or
   returns a PendingAction without writing the mutation.
4. Commits once.

Concurrency:
    Rows are versioned (SQLAlchemy version_id_col). A concurrent writer makes
    the flush fail with StaleDataError; the transaction is rolled back and
    the whole operation is recomputed from freshly read rows. All transitions
    are derived from current state, never replayed deltas, so a recomputation
    cannot double-count. Retries are bounded; exhaustion surfaces as
    ConcurrencyConflictError.

Usage:
    from app.services.progression import ProgressionService

    service = ProgressionService(db)
    outcome = await service.submit_rating(user_id, stack_id, card_id, 4)
    if outcome.pending_action:
        ...  # show outcome.pending_action.impact, then confirm or cancel
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.db.models import (
    CardRatingRecord,
    FreezeState,
    StackMastery,
    StackTest,
    StreakLedger,
    UserProgress,
)
from app.enums.progression import (
    CardRating,
    GuardState,
    ImpactWarning,
    PendingActionKind,
    StackStatus,
    StackTestStatus,
)
from app.middleware.error_handling import (
    ConcurrencyConflictError,
    GuardViolationError,
    NotFoundError,
    StaleConfirmationError,
    ValidationError,
)
from app.models.progression import (
    ActionResult,
    CardStateResponse,
    DeletionOutcome,
    PendingAction,
    RatingOutcome,
    StackStateResponse,
    StackTestResponse,
    StreakTimeRemainingResponse,
    SweepResult,
    TestResultOutcome,
    UserProgressResponse,
)
from app.services.progression import clock, guard
from app.services.progression.daily_counter import record_downgrade, record_mastery
from app.services.progression.freeze_manager import (
    FreezeTransition,
    is_overdue,
    refresh_freeze,
)
from app.services.progression.mastery_scheduler import (
    is_mastered,
    recompute_mastery,
    submit_test,
)
from app.services.progression.pending_actions import PendingActionStore
from app.services.progression.streak_ledger import (
    RolloverResult,
    apply_day_rollover,
    on_streak_impacting_downgrade,
    on_threshold_crossed,
    reset_streak,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class UserState:
    """All rows the engine reads for one user, loaded in one transaction."""

    progress: UserProgress
    ledger: StreakLedger
    freeze: FreezeState
    stacks: list[StackMastery] = field(default_factory=list)

    @property
    def tests(self) -> list[StackTest]:
        return [s.test for s in self.stacks if s.test is not None]

    def stack(self, stack_id: str) -> StackMastery:
        for stack in self.stacks:
            if stack.id == stack_id:
                return stack
        raise NotFoundError(
            f"Stack {stack_id} not found for user {self.progress.user_id}",
            details={"stack_id": stack_id},
        )


class ProgressionService:
    """
    Service for daily progress, streaks, stack mastery and freezes.

    Bound to one AsyncSession. Pending confirmations are kept in Redis via
    PendingActionStore.
    """

    def __init__(self, db: AsyncSession, store: Optional[PendingActionStore] = None):
        """
        Initialize the progression service.

        Args:
            db: SQLAlchemy async database session.
            store: Pending action store (defaults to the shared Redis pool).
        """
        self.db = db
        self.store = store or PendingActionStore()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def _atomic(self, operation: Callable[..., Awaitable[T]], *args) -> T:
        """
        Run `operation` in one transaction, recomputing on version conflicts.

        Raises:
            ConcurrencyConflictError: If every attempt hit a conflict.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((StaleDataError, IntegrityError)),
                stop=stop_after_attempt(settings.STREAK_MUTATION_MAX_RETRIES),
                wait=wait_exponential(multiplier=0.02, max=0.5),
                reraise=True,
            ):
                with attempt:
                    try:
                        result = await operation(*args)
                        await self.db.commit()
                    except (StaleDataError, IntegrityError) as e:
                        await self.db.rollback()
                        logger.warning(
                            f"Conflict in {operation.__name__} "
                            f"(attempt {attempt.retry_state.attempt_number}): {e}"
                        )
                        raise
                    except Exception:
                        await self.db.rollback()
                        raise
                    return result
        except (StaleDataError, IntegrityError) as e:
            raise ConcurrencyConflictError(
                f"Concurrent updates kept conflicting in {operation.__name__}",
                details={"attempts": settings.STREAK_MUTATION_MAX_RETRIES},
            ) from e

    async def _commit_claimed(
        self, operation: Callable[[PendingAction], Awaitable[T]], action: PendingAction
    ) -> T:
        """
        Apply a claimed action in one transaction.

        A stale confirmation removes the action, so the caller has to check
        again. Any other failure leaves nothing written and puts the action
        back into CHECKING.
        """
        try:
            return await self._atomic(operation, action)
        except StaleConfirmationError:
            await self.store.delete(action.action_id)
            raise
        except Exception:
            await self.store.release(action)
            raise

    async def _get_or_create(self, model, user_id: str):
        row = await self.db.get(model, user_id, populate_existing=True)
        if row is None:
            if model is UserProgress:
                row = UserProgress.for_user(user_id, settings.DEFAULT_TIMEZONE)
            else:
                row = model.for_user(user_id)
            self.db.add(row)
        return row

    async def _load_user(self, user_id: str) -> UserState:
        progress = await self._get_or_create(UserProgress, user_id)
        ledger = await self._get_or_create(StreakLedger, user_id)
        freeze = await self._get_or_create(FreezeState, user_id)

        result = await self.db.execute(
            select(StackMastery)
            .where(StackMastery.user_id == user_id)
            .order_by(StackMastery.created_at)
            .execution_options(populate_existing=True)
        )
        stacks = list(result.scalars().all())
        return UserState(progress=progress, ledger=ledger, freeze=freeze, stacks=stacks)

    def _sync(
        self, state: UserState, now: datetime
    ) -> tuple[RolloverResult, FreezeTransition]:
        """Freeze pass first, so an overdue test suspends the rollover reset."""
        transition = refresh_freeze(state.freeze, state.stacks, now)
        rollover = apply_day_rollover(
            state.progress, state.ledger, state.freeze, state.tests, now
        )
        return rollover, transition

    # ------------------------------------------------------------------
    # Response builders
    # ------------------------------------------------------------------

    def _progress_response(self, state: UserState, now: datetime) -> UserProgressResponse:
        progress, ledger, freeze = state.progress, state.ledger, state.freeze
        requirement = settings.STREAK_DAILY_REQUIREMENT
        met_today = (
            progress.streak_awarded_today
            or progress.cards_mastered_today >= requirement
        )

        credited = progress.last_credited_date if ledger.current_streak > 0 else None
        display = clock.display_deadline(credited, progress.timezone, now)
        actual = clock.streak_deadline(credited, progress.timezone, now)
        remaining = clock.get_streak_time_remaining(
            ledger.current_streak, met_today, progress.timezone, now
        )

        return UserProgressResponse(
            user_id=progress.user_id,
            timezone=progress.timezone,
            cards_mastered_today=progress.cards_mastered_today,
            daily_requirement=requirement,
            cards_needed=max(0, requirement - progress.cards_mastered_today),
            streak_awarded_today=progress.streak_awarded_today,
            current_streak=ledger.current_streak,
            longest_streak=ledger.longest_streak,
            streak_frozen=freeze.streak_frozen,
            frozen_stack_ids=list(freeze.frozen_stack_ids or []),
            last_credited_date=progress.last_credited_date,
            display_deadline=display,
            streak_deadline=actual,
            in_grace_period=clock.is_in_grace_period(display, actual, now),
            time_remaining=StreakTimeRemainingResponse.model_validate(remaining),
        )

    @staticmethod
    def _stack_response(stack: StackMastery, now: datetime) -> StackStateResponse:
        test = stack.test
        return StackStateResponse(
            stack_id=stack.id,
            user_id=stack.user_id,
            title=stack.title,
            status=StackStatus(stack.status),
            mastered_count=stack.mastered_count,
            total_cards=stack.total_cards,
            mastery_reached_at=stack.mastery_reached_at,
            test_deadline=stack.test_deadline,
            last_test_score=stack.last_test_score,
            completion_date=stack.completion_date,
            is_overdue=is_overdue(stack, now),
            test=(
                StackTestResponse(
                    status=StackTestStatus(test.status),
                    can_unfreeze_streak=test.can_unfreeze_streak,
                    attempts=test.attempts or 0,
                    last_score=test.last_score,
                )
                if test is not None
                else None
            ),
            cards=[
                CardStateResponse(
                    card_id=card.id, rating=card.rating, mastered=is_mastered(card.rating)
                )
                for card in stack.cards
            ],
        )

    @staticmethod
    def _find_card(stack: StackMastery, card_id: str) -> CardRatingRecord:
        card = stack.find_card(card_id)
        if card is None:
            raise NotFoundError(
                f"Card {card_id} not found in stack {stack.id}",
                details={"stack_id": stack.id, "card_id": card_id},
            )
        return card

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def get_user_progress(self, user_id: str) -> UserProgressResponse:
        """
        Return the authoritative progress snapshot for a user.

        Reads resync: the freeze pass and the lazy day rollover are applied
        and committed before the snapshot is built.
        """
        return await self._atomic(self._run_freeze_pass, user_id)

    async def run_freeze_pass(self, user_id: str) -> UserProgressResponse:
        """Recompute a user's frozen stacks and settle the day rollover."""
        return await self._atomic(self._run_freeze_pass, user_id)

    async def _run_freeze_pass(self, user_id: str) -> UserProgressResponse:
        now = clock.utc_now()
        state = await self._load_user(user_id)
        self._sync(state, now)
        return self._progress_response(state, now)

    async def set_timezone(self, user_id: str, timezone: str) -> UserProgressResponse:
        """
        Change the timezone used for a user's calendar days.

        Raises:
            ValidationError: If `timezone` is not a known IANA name.
        """
        if not clock.is_valid_timezone(timezone):
            raise ValidationError(
                f"Unknown timezone: {timezone}", details={"timezone": timezone}
            )
        return await self._atomic(self._set_timezone, user_id, timezone)

    async def _set_timezone(self, user_id: str, timezone: str) -> UserProgressResponse:
        now = clock.utc_now()
        state = await self._load_user(user_id)
        before = state.progress.timezone
        state.progress.timezone = timezone
        self._sync(state, now)
        logger.info(f"Timezone for {user_id}: {before} -> {timezone}")
        return self._progress_response(state, now)

    # ------------------------------------------------------------------
    # Stacks
    # ------------------------------------------------------------------

    async def register_stack(
        self,
        user_id: str,
        stack_id: str,
        card_ids: list[str],
        title: Optional[str] = None,
    ) -> StackStateResponse:
        """
        Start tracking a stack and its cards, all at the lowest rating.

        Raises:
            ValidationError: Empty or duplicate card ids, or ids already in use.
        """
        if not card_ids:
            raise ValidationError("A stack needs at least one card", details={"stack_id": stack_id})
        if len(set(card_ids)) != len(card_ids):
            raise ValidationError("Card ids must be unique", details={"stack_id": stack_id})
        return await self._atomic(self._register_stack, user_id, stack_id, card_ids, title)

    async def _register_stack(
        self, user_id: str, stack_id: str, card_ids: list[str], title: Optional[str]
    ) -> StackStateResponse:
        await self._load_user(user_id)

        if await self.db.get(StackMastery, stack_id) is not None:
            raise ValidationError(
                f"Stack {stack_id} is already registered", details={"stack_id": stack_id}
            )
        for card_id in card_ids:
            if await self.db.get(CardRatingRecord, card_id) is not None:
                raise ValidationError(
                    f"Card {card_id} already belongs to a stack",
                    details={"card_id": card_id},
                )

        stack = StackMastery.new(stack_id, user_id, card_ids, title=title)
        self.db.add(stack)
        logger.info(f"Registered stack {stack_id} for {user_id} ({len(card_ids)} cards)")
        return self._stack_response(stack, clock.utc_now())

    async def get_stack_state(self, user_id: str, stack_id: str) -> StackStateResponse:
        """Return `{status, mastery_reached_at, test_deadline, ...}` for one stack."""
        stack = await self.db.get(StackMastery, stack_id, populate_existing=True)
        if stack is None or stack.user_id != user_id:
            raise NotFoundError(
                f"Stack {stack_id} not found for user {user_id}",
                details={"stack_id": stack_id},
            )
        return self._stack_response(stack, clock.utc_now())

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    async def submit_rating(
        self, user_id: str, stack_id: str, card_id: str, rating: int
    ) -> RatingOutcome:
        """
        Rate a card.

        Safe changes are applied immediately. A streak-impacting downgrade is
        not written: the outcome carries a PendingAction whose impact report
        must be confirmed through confirm_action().

        Raises:
            ValidationError: Rating outside 1-5.
            NotFoundError: Unknown stack or card.
        """
        rating = self._validate_rating(rating)
        outcome = await self._atomic(
            self._submit_rating, user_id, stack_id, card_id, rating
        )
        if outcome.pending_action is not None:
            await self.store.save(outcome.pending_action)
            logger.info(
                f"Rating {rating} for card {card_id} needs confirmation "
                f"(action {outcome.pending_action.action_id})"
            )
        return outcome

    @staticmethod
    def _validate_rating(rating) -> int:
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError(
                f"Rating must be an integer 1-5, got {rating!r}",
                details={"rating": str(rating)},
            )
        if rating not in {r.value for r in CardRating}:
            raise ValidationError(
                f"Rating must be between 1 and 5, got {rating}",
                details={"rating": rating},
            )
        return int(rating)

    async def _submit_rating(
        self, user_id: str, stack_id: str, card_id: str, rating: int
    ) -> RatingOutcome:
        now = clock.utc_now()
        state = await self._load_user(user_id)
        self._sync(state, now)
        stack = state.stack(stack_id)
        card = self._find_card(stack, card_id)
        today = clock.today(state.progress.timezone, now)

        report = guard.check_rating_change(
            state.progress, state.ledger, stack, card, rating, today
        )
        if report.requires_confirmation:
            action = guard.new_pending_action(
                user_id,
                PendingActionKind.RATING_CHANGE,
                stack_id,
                report,
                guard.state_fingerprint(
                    state.progress, state.ledger, state.freeze, stack, card
                ),
                card_id=card_id,
                rating=rating,
                now=now,
            )
            return RatingOutcome(
                applied=False,
                card_id=card_id,
                rating=rating,
                previous_rating=card.rating,
                mastery_lost=report.mastery_lost,
                progress=self._progress_response(state, now),
                stack=self._stack_response(stack, now),
                pending_action=action,
            )

        return self._apply_rating(state, stack, card, rating, today, now)

    def _apply_rating(
        self,
        state: UserState,
        stack: StackMastery,
        card: CardRatingRecord,
        rating: int,
        today,
        now: datetime,
        confirmed: bool = False,
    ) -> RatingOutcome:
        progress, ledger = state.progress, state.ledger
        previous = card.rating
        was_mastered = is_mastered(previous)
        now_mastered = is_mastered(rating)
        card.rating = rating

        crossed = incremented = decremented = False
        if now_mastered and not was_mastered:
            result = record_mastery(progress, today)
            card.contributed_on = today
            crossed = result.crossed_threshold
            if crossed:
                on_threshold_crossed(progress, ledger, now, state.tests)
                incremented = True
        elif was_mastered and not now_mastered:
            removed = 1 if card.contributed_on == today else 0
            card.contributed_on = None
            result = record_downgrade(progress, removed)
            if result.streak_impacting:
                if not confirmed:
                    raise GuardViolationError(
                        "Streak-impacting downgrade requires confirmation",
                        details={"card_id": card.id},
                    )
                on_streak_impacting_downgrade(progress, ledger)
                decremented = True

        transition = recompute_mastery(
            stack, None, now, has_active_streak=ledger.current_streak > 0
        )
        refresh_freeze(state.freeze, state.stacks, now)

        logger.debug(
            f"Card {card.id} rated {previous} -> {rating} for {progress.user_id}: "
            f"cards_today={progress.cards_mastered_today}, streak={ledger.current_streak}"
        )
        return RatingOutcome(
            applied=True,
            card_id=card.id,
            rating=rating,
            previous_rating=previous,
            crossed_threshold=crossed,
            streak_incremented=incremented,
            streak_decremented=decremented,
            mastery_triggered=transition.mastery_triggered,
            mastery_lost=transition.mastery_lost,
            progress=self._progress_response(state, now),
            stack=self._stack_response(stack, now),
        )

    # ------------------------------------------------------------------
    # Guarded actions
    # ------------------------------------------------------------------

    async def check_stack_deletion(self, user_id: str, stack_id: str) -> PendingAction:
        """
        First phase of deleting a stack.

        Nothing is deleted. The returned PendingAction carries the impact
        report and must be passed to execute_stack_deletion() or cancelled.
        """
        action = await self._atomic(self._check_stack_deletion, user_id, stack_id)
        await self.store.save(action)
        return action

    async def _check_stack_deletion(self, user_id: str, stack_id: str) -> PendingAction:
        now = clock.utc_now()
        state = await self._load_user(user_id)
        self._sync(state, now)
        stack = state.stack(stack_id)
        today = clock.today(state.progress.timezone, now)

        report = guard.check_stack_deletion(
            state.progress, state.ledger, state.freeze, stack, today
        )
        return guard.new_pending_action(
            user_id,
            PendingActionKind.STACK_DELETION,
            stack_id,
            report,
            guard.state_fingerprint(state.progress, state.ledger, state.freeze, stack),
            now=now,
        )

    async def execute_stack_deletion(
        self, user_id: str, action_id: str, reset_streak_if_warned: bool = False
    ) -> DeletionOutcome:
        """
        Second phase of deleting a stack.

        Raises:
            GuardViolationError: The check warned about a streak reset and
                `reset_streak_if_warned` is false. The action stays pending.
            StaleConfirmationError: State changed since the check.
        """
        action = await self.store.get(action_id, user_id)
        if action.kind != PendingActionKind.STACK_DELETION:
            raise ValidationError(
                f"Action {action_id} is not a stack deletion",
                details={"action_id": action_id, "kind": action.kind.value},
            )
        if action.impact.requires_confirmation and not reset_streak_if_warned:
            raise GuardViolationError(
                "Deleting this stack resets the streak; confirm with reset_streak_if_warned",
                details={
                    "action_id": action_id,
                    "warning_type": action.impact.warning_type.value,
                },
            )

        claimed = await self.store.claim(action_id, user_id, GuardState.COMMITTING)
        return await self._commit_claimed(self._delete_stack, claimed)

    async def _delete_stack(self, action: PendingAction) -> DeletionOutcome:
        now = clock.utc_now()
        state = await self._load_user(action.user_id)
        self._sync(state, now)
        stack = state.stack(action.stack_id)
        guard.verify_fingerprint(
            action,
            guard.state_fingerprint(state.progress, state.ledger, state.freeze, stack),
        )

        progress = state.progress
        today = clock.today(progress.timezone, now)
        streak_reset = action.impact.warning_type == ImpactWarning.STREAK_RESET

        if streak_reset:
            reset_streak(state.ledger, state.tests, reason=f"stack {stack.id} deleted")
            progress.cards_mastered_today = 0
            progress.streak_awarded_today = False
            progress.last_credited_date = None
            progress.previous_credited_date = None
            for other in state.stacks:
                for card in other.cards:
                    if card.contributed_on == today:
                        card.contributed_on = None
        else:
            progress.cards_mastered_today = action.impact.cards_today_after

        state.stacks.remove(stack)
        await self.db.delete(stack)
        refresh_freeze(state.freeze, state.stacks, now)

        logger.info(
            f"Deleted stack {stack.id} for {action.user_id} (streak_reset={streak_reset})"
        )
        return DeletionOutcome(
            stack_id=stack.id,
            deleted=True,
            streak_reset=streak_reset,
            message=(
                "Stack deleted. Streak reset. Longest streak preserved."
                if streak_reset
                else "Stack deleted successfully."
            ),
            progress=self._progress_response(state, now),
        )

    async def confirm_action(
        self, user_id: str, action_id: str, reset_streak_if_warned: bool = False
    ) -> ActionResult:
        """
        Confirm a pending action exactly as it was checked.

        Raises:
            NotFoundError: Unknown or expired action.
            GuardViolationError: Already resolved, or a warned deletion
                without acknowledgement.
            StaleConfirmationError: State changed since the check.
        """
        action = await self.store.get(action_id, user_id)

        if action.kind == PendingActionKind.STACK_DELETION:
            deletion = await self.execute_stack_deletion(
                user_id, action_id, reset_streak_if_warned
            )
            return ActionResult(
                action_id=action_id,
                kind=action.kind,
                state=GuardState.COMMITTING,
                deletion_outcome=deletion,
            )

        claimed = await self.store.claim(action_id, user_id, GuardState.COMMITTING)
        outcome = await self._commit_claimed(self._confirm_rating, claimed)
        return ActionResult(
            action_id=action_id,
            kind=action.kind,
            state=GuardState.COMMITTING,
            rating_outcome=outcome,
        )

    async def _confirm_rating(self, action: PendingAction) -> RatingOutcome:
        now = clock.utc_now()
        state = await self._load_user(action.user_id)
        self._sync(state, now)
        stack = state.stack(action.stack_id)
        card = self._find_card(stack, action.card_id)
        guard.verify_fingerprint(
            action,
            guard.state_fingerprint(
                state.progress, state.ledger, state.freeze, stack, card
            ),
        )
        today = clock.today(state.progress.timezone, now)
        return self._apply_rating(
            state, stack, card, action.rating, today, now, confirmed=True
        )

    async def cancel_action(self, user_id: str, action_id: str) -> ActionResult:
        """Abandon a pending action. Nothing is written to the database."""
        action = await self.store.claim(action_id, user_id, GuardState.CANCELLED)
        return ActionResult(
            action_id=action_id, kind=action.kind, state=GuardState.CANCELLED
        )

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    async def submit_test_result(
        self, user_id: str, stack_id: str, score: float
    ) -> TestResultOutcome:
        """
        Grade a stack's mastery test.

        Raises:
            ValidationError: Score outside 0-100.
            NotFoundError: Unknown stack.
            GuardViolationError: The stack has no pending test.
        """
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
            raise ValidationError(
                f"Test score must be between 0 and 100, got {score!r}",
                details={"stack_id": stack_id},
            )
        return await self._atomic(self._submit_test_result, user_id, stack_id, float(score))

    async def _submit_test_result(
        self, user_id: str, stack_id: str, score: float
    ) -> TestResultOutcome:
        now = clock.utc_now()
        state = await self._load_user(user_id)
        self._sync(state, now)
        stack = state.stack(stack_id)

        outcome = submit_test(stack, score, now)
        transition = refresh_freeze(state.freeze, state.stacks, now)

        return TestResultOutcome(
            passed=outcome.passed,
            score=outcome.score,
            attempts=outcome.attempts,
            was_overdue=outcome.was_overdue,
            is_legacy=outcome.is_legacy,
            unfrozen=stack.id in transition.unfrozen,
            stack=self._stack_response(stack, now),
            progress=self._progress_response(state, now),
        )

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep_all_users(self) -> SweepResult:
        """
        Apply the rollover and freeze pass for every user.

        Each user is processed in its own transaction. A failure is logged
        and counted and does not stop the sweep.
        """
        started = clock.utc_now()
        start = time.monotonic()
        result = await self.db.execute(select(UserProgress.user_id))
        user_ids = list(result.scalars().all())

        summary = SweepResult(started_at=started)
        for user_id in user_ids:
            try:
                rollover, transition = await self._atomic(self._sweep_user, user_id)
            except Exception as e:
                summary.users_failed += 1
                logger.error(f"Streak sweep failed for {user_id}: {type(e).__name__}: {e}")
                continue

            summary.users_processed += 1
            if rollover.streak_reset:
                summary.streaks_reset += 1
            if transition.changed:
                summary.freezes_changed += 1

        summary.duration_seconds = round(time.monotonic() - start, 3)
        logger.info(
            f"Streak sweep complete: {summary.users_processed} users, "
            f"{summary.streaks_reset} resets, {summary.freezes_changed} freeze changes, "
            f"{summary.users_failed} failures"
        )
        return summary

    async def _sweep_user(self, user_id: str) -> tuple[RolloverResult, FreezeTransition]:
        now = clock.utc_now()
        state = await self._load_user(user_id)
        return self._sync(state, now)
