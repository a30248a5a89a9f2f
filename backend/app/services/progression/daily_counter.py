"""
Daily Progress Counter

Tracks how many cards a user has mastered on the current local day.

The counter belongs to `UserProgress.last_mastery_date`. Whenever the local
day advances past that date the counter restarts at 0 and today's award flag
is cleared. The reset is gated on the date itself, so applying it twice for
the same day transition is a no-op.

Every operation returns a tagged result (`crossed_threshold`,
`streak_impacting`) so callers never infer transitions by comparing
before/after snapshots.
"""

import logging
from dataclasses import dataclass
from datetime import date

from app.config import settings
from app.db.models import UserProgress

logger = logging.getLogger(__name__)


@dataclass
class MasteryRecordResult:
    """Outcome of counting one newly mastered card."""

    cards_today: int
    crossed_threshold: bool


@dataclass
class DowngradeResult:
    """Outcome of removing mastered cards from today's count."""

    cards_today: int
    streak_impacting: bool


def roll_counter(progress: UserProgress, today: date) -> bool:
    """
    Restart the counter if `today` is past the counter's day.

    Returns:
        True if the counter was reset, False if it already belonged to today.
    """
    if progress.last_mastery_date is not None and progress.last_mastery_date >= today:
        return False

    logger.debug(
        f"Daily counter rollover for {progress.user_id}: "
        f"{progress.last_mastery_date} ({progress.cards_mastered_today} cards) -> {today}"
    )
    progress.cards_mastered_today = 0
    progress.streak_awarded_today = False
    progress.last_mastery_date = today
    return True


def record_mastery(progress: UserProgress, today: date) -> MasteryRecordResult:
    """
    Count a card that just crossed into mastery.

    Args:
        progress: The user's counter row (rollover is applied if needed).
        today: The user's local calendar day.

    Returns:
        MasteryRecordResult. `crossed_threshold` is true only for the single
        increment that first reaches the daily requirement today.
    """
    roll_counter(progress, today)
    progress.cards_mastered_today += 1

    crossed = (
        progress.cards_mastered_today == settings.STREAK_DAILY_REQUIREMENT
        and not progress.streak_awarded_today
    )
    return MasteryRecordResult(
        cards_today=progress.cards_mastered_today, crossed_threshold=crossed
    )


def preview_downgrade(progress: UserProgress, count: int = 1) -> DowngradeResult:
    """
    Compute the effect of removing `count` cards without mutating anything.

    A downgrade is streak-impacting when today's award has fired and the
    counter would fall below the daily requirement.
    """
    after = max(0, progress.cards_mastered_today - count)
    impacting = (
        count > 0
        and progress.streak_awarded_today
        and after < settings.STREAK_DAILY_REQUIREMENT
    )
    return DowngradeResult(cards_today=after, streak_impacting=impacting)


def record_downgrade(progress: UserProgress, count: int = 1) -> DowngradeResult:
    """
    Remove `count` cards from today's count, floored at 0.

    The caller decides what to do with a streak-impacting result. Impacting
    downgrades must only reach this function after an explicit confirmation.
    """
    result = preview_downgrade(progress, count)
    progress.cards_mastered_today = result.cards_today
    return result
