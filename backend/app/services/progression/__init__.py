"""
Streak & Mastery Progression Engine

Turns per-card ratings into a daily practice counter, a multi-day streak and
per-stack mastery tests, and protects the streak from silent corruption.

Components (leaf-first):
- clock: per-user calendar days, deadlines and countdowns
- daily_counter: cards mastered on the current local day
- streak_ledger: current/longest streak transitions
- mastery_scheduler: per-stack mastery detection and test deadlines
- freeze_manager: overdue stacks and the derived freeze flag
- guard / pending_actions: two-phase check/confirm for risky actions
- service: transactional orchestration (ProgressionService)
"""

from app.services.progression.pending_actions import PendingActionStore
from app.services.progression.service import ProgressionService, UserState

__all__ = ["PendingActionStore", "ProgressionService", "UserState"]
