"""
Clock and Calendar Adapter

Resolves "today" in a user's timezone and derives the day-boundary instants
the rest of the engine reasons about. Every function here is pure: the
current instant is passed in (or read once through `utc_now`), never cached.

Calendar days are always local to the user. Two users mastering cards at the
same UTC instant can be on different calendar days.

Derived deadlines (never persisted):
- display_deadline: end of the local day after the last credited day. This
  is what the UI shows.
- streak_deadline: display_deadline + GRACE_PERIOD_HOURS. The streak is only
  reset once this instant has passed.

Usage:
    from app.services.progression import clock

    local_today = clock.today("Europe/Berlin")
    if clock.is_new_day(progress.last_mastery_date, progress.timezone):
        ...
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")


@dataclass
class StreakTimeRemaining:
    """Countdown until the next streak cutoff, split for display."""

    hours: int
    minutes: int
    seconds: int
    total_seconds: int
    deadline: datetime


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def is_valid_timezone(name: Optional[str]) -> bool:
    """Check whether `name` is a known IANA timezone."""
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Missing or unknown names are not fatal: the configured default (UTC
    unless overridden) is used and a warning is logged, so a misconfigured
    profile degrades to server days instead of failing the request.

    Args:
        name: IANA timezone name, e.g. "America/New_York".

    Returns:
        The resolved ZoneInfo.
    """
    if is_valid_timezone(name):
        return ZoneInfo(name)

    logger.warning(
        f"Unknown timezone {name!r}, falling back to {settings.DEFAULT_TIMEZONE}"
    )
    if is_valid_timezone(settings.DEFAULT_TIMEZONE):
        return ZoneInfo(settings.DEFAULT_TIMEZONE)
    return UTC


def local_now(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Return `now` (default: current time) converted to the user's timezone."""
    now = now or utc_now()
    return now.astimezone(resolve_timezone(tz_name))


def today(tz_name: Optional[str], now: Optional[datetime] = None) -> date:
    """Return the user's current local calendar day."""
    return local_now(tz_name, now).date()


def is_new_day(
    last_date: Optional[date], tz_name: Optional[str], now: Optional[datetime] = None
) -> bool:
    """
    Check whether the local day has advanced past `last_date`.

    A missing `last_date` (no activity recorded yet) counts as a new day.
    """
    if last_date is None:
        return True
    return today(tz_name, now) > last_date


def end_of_local_day(day: date, tz_name: Optional[str]) -> datetime:
    """Return the UTC instant of the last microsecond of `day` in the user's timezone."""
    zone = resolve_timezone(tz_name)
    return datetime.combine(day, time.max, tzinfo=zone).astimezone(timezone.utc)


def grace_period() -> timedelta:
    return timedelta(hours=settings.GRACE_PERIOD_HOURS)


def latest_closed_day(tz_name: Optional[str], now: Optional[datetime] = None) -> date:
    """
    Return the most recent local day whose streak cutoff has passed.

    Day D closes at end_of_local_day(D) + grace. Shortly after midnight
    (inside the grace window) yesterday is still open.
    """
    now = now or utc_now()
    shifted = (now - grace_period()).astimezone(resolve_timezone(tz_name))
    return shifted.date() - timedelta(days=1)


def calculate_test_deadline(mastered_at: datetime, card_count: int) -> datetime:
    """
    Calculate the mastery-test deadline for a stack.

    Bigger stacks get proportionally more time, bounded by a maximum window:
        mastered_at + base + per_card * card_count, capped at mastered_at + max

    Args:
        mastered_at: When every card of the stack reached mastery.
        card_count: Number of cards in the stack.

    Returns:
        Deadline as a timezone-aware datetime.
    """
    window = timedelta(
        hours=settings.TEST_DEADLINE_BASE_HOURS
        + settings.TEST_DEADLINE_PER_CARD_HOURS * max(card_count, 0)
    )
    cap = timedelta(days=settings.TEST_DEADLINE_MAX_DAYS)
    return mastered_at + min(window, cap)


def display_deadline(
    last_credited_date: Optional[date],
    tz_name: Optional[str],
    now: Optional[datetime] = None,
) -> datetime:
    """
    Deadline shown to the user: end of the day after the last credited day.

    Users without any credit must act today.
    """
    if last_credited_date is None:
        return end_of_local_day(today(tz_name, now), tz_name)
    return end_of_local_day(last_credited_date + timedelta(days=1), tz_name)


def streak_deadline(
    last_credited_date: Optional[date],
    tz_name: Optional[str],
    now: Optional[datetime] = None,
) -> datetime:
    """Actual cutoff: the display deadline plus the grace buffer."""
    return display_deadline(last_credited_date, tz_name, now) + grace_period()


def is_in_grace_period(
    display: datetime, actual: datetime, now: Optional[datetime] = None
) -> bool:
    """True between the displayed deadline and the actual cutoff."""
    now = now or utc_now()
    return display < now <= actual


def get_streak_time_remaining(
    current_streak: int,
    has_met_today_goal: bool,
    tz_name: Optional[str],
    now: Optional[datetime] = None,
) -> StreakTimeRemaining:
    """
    Countdown for the streak widget.

    Users with an active streak, or who already met today's goal, get until
    the end of tomorrow. Everyone else has until the end of today.

    Args:
        current_streak: The user's current streak.
        has_met_today_goal: Whether today's requirement is already met.
        tz_name: User's IANA timezone.
        now: Current instant (defaults to utc_now()).

    Returns:
        StreakTimeRemaining, never negative.
    """
    now = now or utc_now()
    local_today = today(tz_name, now)
    if current_streak > 0 or has_met_today_goal:
        deadline = end_of_local_day(local_today + timedelta(days=1), tz_name)
    else:
        deadline = end_of_local_day(local_today, tz_name)

    total = max(0, int((deadline - now).total_seconds()))
    return StreakTimeRemaining(
        hours=total // 3600,
        minutes=(total % 3600) // 60,
        seconds=total % 60,
        total_seconds=total,
        deadline=deadline,
    )
