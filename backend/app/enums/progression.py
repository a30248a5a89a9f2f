"""
Progression Engine Enums

Defines enums for card ratings, stack lifecycle, pending tests, and the
two-phase confirmation flow used by the guarded mutation layer.
"""

from enum import Enum


class CardRating(int, Enum):
    """
    Self-assessed card ratings on a 1-5 scale.

    A card counts as mastered once its rating reaches KINDA_KNOW
    (the configured MASTERY_RATING_THRESHOLD).
    """

    REALLY_DONT_KNOW = 1
    DONT_KNOW = 2
    NEUTRAL = 3
    KINDA_KNOW = 4
    REALLY_KNOW = 5


class StackStatus(str, Enum):
    """
    Stack lifecycle states.

    State transitions:
    - IN_PROGRESS → PENDING_TEST (every card first reaches mastery)
    - PENDING_TEST → COMPLETED (test scored 100%)
    - PENDING_TEST → IN_PROGRESS (a card is downgraded below mastery)
    """

    IN_PROGRESS = "in_progress"
    PENDING_TEST = "pending_test"
    COMPLETED = "completed"


class StackTestStatus(str, Enum):
    """Status of a stack's mastery test record."""

    PENDING = "pending"
    PASSED = "passed"


class GuardState(str, Enum):
    """
    Guarded mutation layer states.

    IDLE → CHECKING (impact computed, awaiting the caller)
    CHECKING → COMMITTING (confirmed) or CANCELLED (cancelled or expired)
    """

    IDLE = "idle"
    CHECKING = "checking"
    COMMITTING = "committing"
    CANCELLED = "cancelled"


class PendingActionKind(str, Enum):
    """Actions that can require explicit confirmation."""

    RATING_CHANGE = "rating_change"
    STACK_DELETION = "stack_deletion"


class ImpactWarning(str, Enum):
    """
    Warning category shown to the user before a guarded action.

    - NONE: safe, no confirmation needed
    - STREAK_DECREMENT: today's award is reverted (streak - 1)
    - STREAK_RESET: the streak drops to 0 (longest is preserved)
    - LEGACY_TEST: the stack holds a test that can no longer unfreeze the
      streak; deleting it is harmless but worth mentioning
    """

    NONE = "none"
    STREAK_DECREMENT = "streak_decrement"
    STREAK_RESET = "streak_reset"
    LEGACY_TEST = "legacy_test"
