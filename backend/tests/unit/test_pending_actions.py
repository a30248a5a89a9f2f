"""
Unit tests for the Redis-backed pending action store.

All Redis operations go to an in-memory stand-in.
"""

from datetime import datetime, timezone

import pytest

from app.enums.progression import GuardState, PendingActionKind
from app.middleware.error_handling import (
    GuardViolationError,
    NotFoundError,
    ValidationError,
)
from app.models.progression import ImpactReport
from app.services.progression import guard

NOON = datetime(2024, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def action():
    report = ImpactReport(
        requires_confirmation=False,
        message="Safe to delete",
        cards_today_before=0,
        cards_today_after=0,
        current_streak_before=0,
        current_streak_after=0,
        longest_streak=0,
    )
    return guard.new_pending_action(
        "user-1", PendingActionKind.STACK_DELETION, "stack-1", report, "abc", now=NOON
    )


class TestPendingActionStore:
    @pytest.mark.asyncio
    async def test_save_sets_ttl(self, store, fake_redis, action):
        await store.save(action)

        key = f"pending_action:{action.action_id}"
        assert key in fake_redis.data
        assert fake_redis.ttls[key] == 900

    @pytest.mark.asyncio
    async def test_get_round_trips(self, store, action):
        await store.save(action)

        loaded = await store.get(action.action_id, "user-1")

        assert loaded == action

    @pytest.mark.asyncio
    async def test_unknown_action(self, store):
        with pytest.raises(NotFoundError):
            await store.get("missing", "user-1")

    @pytest.mark.asyncio
    async def test_other_users_action(self, store, action):
        await store.save(action)

        with pytest.raises(ValidationError):
            await store.get(action.action_id, "user-2")

    @pytest.mark.asyncio
    async def test_claim_returns_checked_action(self, store, fake_redis, action):
        await store.save(action)

        claimed = await store.claim(action.action_id, "user-1", GuardState.COMMITTING)

        assert claimed.state == GuardState.CHECKING
        stored = await store.get(action.action_id, "user-1")
        assert stored.state == GuardState.COMMITTING

    @pytest.mark.asyncio
    async def test_second_claim_is_rejected(self, store, action):
        await store.save(action)
        await store.claim(action.action_id, "user-1", GuardState.COMMITTING)

        with pytest.raises(GuardViolationError):
            await store.claim(action.action_id, "user-1", GuardState.COMMITTING)

    @pytest.mark.asyncio
    async def test_cancelled_action_cannot_be_confirmed(self, store, action):
        await store.save(action)
        await store.claim(action.action_id, "user-1", GuardState.CANCELLED)

        with pytest.raises(GuardViolationError):
            await store.claim(action.action_id, "user-1", GuardState.COMMITTING)

    @pytest.mark.asyncio
    async def test_released_action_can_be_claimed_again(self, store, action):
        await store.save(action)
        claimed = await store.claim(action.action_id, "user-1", GuardState.COMMITTING)

        await store.release(claimed)
        again = await store.claim(action.action_id, "user-1", GuardState.COMMITTING)

        assert again.action_id == action.action_id
        assert again.state == GuardState.CHECKING

    @pytest.mark.asyncio
    async def test_concurrent_claim_loses_race(self, store, fake_redis, action):
        """Only the GETSET that swaps out CHECKING wins."""
        await store.save(action)
        key = f"pending_action:{action.action_id}"
        checked = fake_redis.data[key]
        real_getset = fake_redis.getset

        async def racing_getset(k, value):
            # Another worker committed between our GET and GETSET
            fake_redis.data[k] = guard.advance(
                action, GuardState.COMMITTING
            ).model_dump_json()
            return await real_getset(k, value)

        fake_redis.getset = racing_getset

        with pytest.raises(GuardViolationError):
            await store.claim(action.action_id, "user-1", GuardState.COMMITTING)
        assert checked != fake_redis.data[key]

    @pytest.mark.asyncio
    async def test_delete(self, store, action):
        await store.save(action)
        await store.delete(action.action_id)

        with pytest.raises(NotFoundError):
            await store.get(action.action_id, "user-1")
