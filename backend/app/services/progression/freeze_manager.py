"""
Freeze Manager

A user's streak is frozen while at least one of their stacks has an overdue
mastery test. The frozen set is recomputed from scratch on every pass, so it
can never drift from the stacks' deadlines, and `streak_frozen` is derived
from the set rather than stored.

While frozen, the day-rollover streak reset is suspended (see
streak_ledger.apply_day_rollover). The daily requirement still applies.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from app.db.models import FreezeState, StackMastery
from app.services.progression import clock

logger = logging.getLogger(__name__)


@dataclass
class FreezeTransition:
    """What a freeze pass changed."""

    was_frozen: bool
    is_frozen: bool
    newly_frozen: list[str] = field(default_factory=list)
    unfrozen: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.newly_frozen or self.unfrozen)


def is_overdue(stack: StackMastery, now: Optional[datetime] = None) -> bool:
    """A stack is overdue once its test deadline has passed."""
    now = now or clock.utc_now()
    return stack.test_deadline is not None and now > stack.test_deadline


def refresh_freeze(
    freeze: FreezeState,
    stacks: Iterable[StackMastery],
    now: Optional[datetime] = None,
) -> FreezeTransition:
    """
    Recompute the user's frozen stack set.

    Args:
        freeze: The user's freeze row (mutated).
        stacks: All of the user's stacks.
        now: Current instant.

    Returns:
        FreezeTransition listing stacks that entered or left the set.
    """
    now = now or clock.utc_now()
    before = list(freeze.frozen_stack_ids or [])
    was_frozen = bool(before)

    frozen = sorted(stack.id for stack in stacks if is_overdue(stack, now))
    transition = FreezeTransition(
        was_frozen=was_frozen,
        is_frozen=bool(frozen),
        newly_frozen=[s for s in frozen if s not in before],
        unfrozen=[s for s in before if s not in frozen],
    )

    if transition.changed:
        # Reassign rather than mutate so the JSON column is flagged dirty
        freeze.frozen_stack_ids = frozen
        logger.info(
            f"Freeze state for {freeze.user_id}: frozen_stack_ids {before} -> {frozen} "
            f"(streak_frozen {was_frozen} -> {transition.is_frozen})"
        )

    return transition
