"""
Streak Ledger

Maintains the user's current and longest streak.

Transitions:
- apply_day_rollover: lazy, on first access of a new local day. Restarts the
  daily counter and settles the streak: if a day closed (its cutoff, end of
  day plus grace, has passed) without the requirement being met, the streak
  is reset to 0. The settle is level-checked against `last_credited_date`,
  so replaying it is a no-op.
- on_threshold_crossed: edge-triggered, fires once per local day when the
  counter first reaches the daily requirement.
- on_streak_impacting_downgrade: only after an explicit confirmation.
- reset_streak: zeroes the streak and turns pending tests into legacy tests.

Invariants:
- longest_streak >= current_streak after every transition
- longest_streak never decreases

Every change to `current_streak` is logged at INFO with before/after values.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from app.db.models import FreezeState, StackTest, StreakLedger, UserProgress
from app.enums.progression import StackTestStatus
from app.services.progression import clock
from app.services.progression.daily_counter import roll_counter

logger = logging.getLogger(__name__)


@dataclass
class RolloverResult:
    """What a lazy day rollover changed."""

    today: date
    counter_reset: bool
    streak_reset: bool
    streak_before: int
    streak_after: int


@dataclass
class StreakTransition:
    """Tagged result of an edge-triggered streak change."""

    fired: bool
    current_before: int
    current_after: int
    longest_streak: int
    restarted: bool = False


def reset_streak(
    ledger: StreakLedger, tests: Iterable[StackTest] = (), reason: str = ""
) -> int:
    """
    Reset the current streak to 0, keeping the longest streak.

    Pending tests scheduled during the lost streak become legacy tests: they
    can still complete their stack but no longer matter for the streak.

    Returns:
        Number of tests marked as legacy.
    """
    before = ledger.current_streak
    ledger.current_streak = 0

    legacy = 0
    for test in tests:
        if test.status == StackTestStatus.PENDING.value and test.can_unfreeze_streak:
            test.can_unfreeze_streak = False
            legacy += 1

    logger.info(
        f"Streak reset for {ledger.user_id}: current_streak {before} -> 0 "
        f"(longest={ledger.longest_streak}, legacy_tests={legacy}, reason={reason})"
    )
    return legacy


def apply_day_rollover(
    progress: UserProgress,
    ledger: StreakLedger,
    freeze: FreezeState,
    tests: Iterable[StackTest] = (),
    now: Optional[datetime] = None,
) -> RolloverResult:
    """
    Bring the user's counters up to date with the current local day.

    Args:
        progress: The user's daily counter row.
        ledger: The user's streak ledger.
        freeze: The user's freeze state. While frozen the streak reset is
            suspended; the missed day is still older than the last credit,
            so the reset lands on the first settle after the freeze lifts.
        tests: The user's stack tests, marked legacy on reset.
        now: Current instant (defaults to clock.utc_now()).

    Returns:
        RolloverResult describing what changed.
    """
    now = now or clock.utc_now()
    local_today = clock.today(progress.timezone, now)
    counter_reset = roll_counter(progress, local_today)

    before = ledger.current_streak
    streak_reset = False
    if ledger.current_streak > 0 and not freeze.streak_frozen:
        closed = clock.latest_closed_day(progress.timezone, now)
        credited = progress.last_credited_date
        if credited is None or credited < closed:
            reset_streak(
                ledger,
                tests,
                reason=f"requirement missed (last credited {credited}, closed through {closed})",
            )
            streak_reset = True

    return RolloverResult(
        today=local_today,
        counter_reset=counter_reset,
        streak_reset=streak_reset,
        streak_before=before,
        streak_after=ledger.current_streak,
    )


def on_threshold_crossed(
    progress: UserProgress,
    ledger: StreakLedger,
    now: datetime,
    tests: Iterable[StackTest] = (),
) -> StreakTransition:
    """
    Credit today toward the streak.

    Must only be called for a `crossed_threshold` result, inside the same
    transaction as the counter update. If a day after the last credited one
    has already closed (possible while frozen, when the reset was suspended)
    the old streak is broken first and the new one starts at 1. A day still
    inside its grace window has not closed, so meeting the requirement then
    extends the streak.
    """
    today = clock.today(progress.timezone, now)
    before = ledger.current_streak
    restarted = False

    credited = progress.last_credited_date
    closed = clock.latest_closed_day(progress.timezone, now)
    if ledger.current_streak > 0 and credited is not None and credited < closed:
        reset_streak(
            ledger,
            tests,
            reason=f"gap since last credited day {credited} (closed through {closed})",
        )
        restarted = True

    ledger.current_streak += 1
    ledger.longest_streak = max(ledger.longest_streak, ledger.current_streak)
    progress.streak_awarded_today = True
    if credited != today:
        progress.previous_credited_date = credited
        progress.last_credited_date = today

    logger.info(
        f"Streak incremented for {ledger.user_id}: current_streak {before} -> "
        f"{ledger.current_streak} (longest={ledger.longest_streak}, day={today})"
    )
    return StreakTransition(
        fired=True,
        current_before=before,
        current_after=ledger.current_streak,
        longest_streak=ledger.longest_streak,
        restarted=restarted,
    )


def on_streak_impacting_downgrade(
    progress: UserProgress, ledger: StreakLedger
) -> StreakTransition:
    """
    Take back today's streak credit after a confirmed downgrade.

    The longest streak is never decremented. Today's credit is withdrawn so a
    later re-mastery can fire the edge again.
    """
    before = ledger.current_streak
    ledger.current_streak = max(0, ledger.current_streak - 1)
    progress.streak_awarded_today = False
    progress.last_credited_date = progress.previous_credited_date

    logger.info(
        f"Streak decremented for {ledger.user_id}: current_streak {before} -> "
        f"{ledger.current_streak} (longest={ledger.longest_streak})"
    )
    return StreakTransition(
        fired=True,
        current_before=before,
        current_after=ledger.current_streak,
        longest_streak=ledger.longest_streak,
    )
