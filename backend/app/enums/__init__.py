"""
Centralized enum definitions for the application.

All enums are organized by domain:
- progression.py: Card ratings, stack lifecycle, guarded actions
- api.py: Rate limit categories

Usage:
    from app.enums import StackStatus, GuardState

    # Or import from specific module
    from app.enums.progression import ImpactWarning
"""

from app.enums.api import RateLimitType
from app.enums.progression import (
    CardRating,
    GuardState,
    ImpactWarning,
    PendingActionKind,
    StackStatus,
    StackTestStatus,
)

__all__ = [
    # API
    "RateLimitType",
    # Progression
    "CardRating",
    "GuardState",
    "ImpactWarning",
    "PendingActionKind",
    "StackStatus",
    "StackTestStatus",
]
