"""
Pending Action Store

Redis-backed storage for actions awaiting confirmation.

Why Redis?
    - Multiple API processes (and a user's multiple devices) must see the
      same pending action: the check may hit one worker and the confirm
      another.
    - TTL expiry is the abandonment path. An action that is never confirmed
      simply disappears with no side effect.

Lifecycle:
    1. check → save() stores the action in the CHECKING state
    2. confirm/cancel → claim() atomically swaps in the final state
       (COMMITTING or CANCELLED) and returns the action as it was stored
    3. The claimed record stays until its TTL runs out, so a second confirm
       is rejected as a guard violation instead of looking like an unknown id
    4. If the confirmed mutation fails to commit, release() puts the action
       back into CHECKING; a stale confirmation deletes it instead, since the
       impact report no longer applies and the caller must check again

Keys are stored as "{prefix}:{action_id}".

Usage:
    store = PendingActionStore()
    await store.save(action)
    action = await store.claim(action_id, user_id, GuardState.COMMITTING)
"""

import logging
from typing import Optional

from app.config import settings
from app.db.redis import get_redis
from app.enums.progression import GuardState
from app.middleware.error_handling import (
    GuardViolationError,
    NotFoundError,
    ValidationError,
)
from app.models.progression import PendingAction
from app.services.progression.guard import advance

logger = logging.getLogger(__name__)


class PendingActionStore:
    """Redis store for two-phase confirmations."""

    def __init__(self, redis=None, prefix: str = "pending_action") -> None:
        """
        Initialize the store.

        Args:
            redis: Redis client to use. Defaults to the shared connection pool.
            prefix: Redis key prefix for namespacing.
        """
        self._redis = redis
        self.prefix = prefix
        self.ttl = settings.PENDING_ACTION_TTL_SECONDS

    async def _client(self):
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    def _make_key(self, action_id: str) -> str:
        """Generate a namespaced Redis key for an action."""
        return f"{self.prefix}:{action_id}"

    async def save(self, action: PendingAction) -> PendingAction:
        """Store a freshly checked action until it is confirmed, cancelled or expires."""
        r = await self._client()
        await r.setex(self._make_key(action.action_id), self.ttl, action.model_dump_json())
        logger.debug(
            f"Saved pending action {action.action_id} ({action.kind.value}) "
            f"for {action.user_id}"
        )
        return action

    async def get(self, action_id: str, user_id: str) -> PendingAction:
        """
        Load an action owned by `user_id`.

        Raises:
            NotFoundError: If the action does not exist or has expired.
            ValidationError: If the action belongs to another user.
        """
        r = await self._client()
        raw = await r.get(self._make_key(action_id))
        if raw is None:
            raise NotFoundError(
                f"Pending action {action_id} not found or expired",
                details={"action_id": action_id},
            )

        action = PendingAction.model_validate_json(raw)
        if action.user_id != user_id:
            raise ValidationError(
                f"Pending action {action_id} does not belong to user {user_id}",
                details={"action_id": action_id},
            )
        return action

    async def claim(
        self, action_id: str, user_id: str, to_state: GuardState
    ) -> PendingAction:
        """
        Atomically move an action out of CHECKING.

        The stored record is swapped for its final state in one GETSET, so of
        two concurrent confirmations exactly one sees CHECKING.

        Args:
            action_id: The pending action's id.
            user_id: The user confirming or cancelling.
            to_state: COMMITTING or CANCELLED.

        Returns:
            The action as it was when checked (state CHECKING).

        Raises:
            NotFoundError: Unknown or expired action.
            ValidationError: Action owned by another user.
            GuardViolationError: Action already confirmed or cancelled.
        """
        action = await self.get(action_id, user_id)
        claimed = advance(action, to_state)

        r = await self._client()
        key = self._make_key(action_id)
        previous_raw = await r.getset(key, claimed.model_dump_json())
        await r.expire(key, self.ttl)

        previous: Optional[PendingAction] = (
            PendingAction.model_validate_json(previous_raw) if previous_raw else None
        )
        if previous is None or previous.state != GuardState.CHECKING:
            raise GuardViolationError(
                f"Pending action {action_id} was already resolved",
                details={"action_id": action_id},
            )

        logger.info(
            f"Pending action {action_id} ({action.kind.value}) for {user_id}: "
            f"{action.state.value} -> {to_state.value}"
        )
        return previous

    async def release(self, action: PendingAction) -> None:
        """
        Put a claimed action back into CHECKING after its commit failed.

        Nothing was written for the action, so the user may confirm or
        cancel it again until the TTL runs out.
        """
        restored = action.model_copy(update={"state": GuardState.CHECKING})
        await self.save(restored)
        logger.info(
            f"Pending action {action.action_id} for {action.user_id} released "
            f"back to {GuardState.CHECKING.value}"
        )

    async def delete(self, action_id: str) -> None:
        r = await self._client()
        await r.delete(self._make_key(action_id))
