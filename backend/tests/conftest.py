"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across the unit tests:
- Environment overrides applied before the app is imported
- In-memory stand-ins for the async SQLAlchemy session and Redis client
- Builders for transient progression rows
- A controllable clock
"""

import copy
import os
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from sqlalchemy import inspect as sa_inspect

# Add the backend directory to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Forcefully set test environment variables (override .env values) before any
# app module reads settings
os.environ.update(
    {
        "DEBUG": "false",
        "RATE_LIMIT_ENABLED": "false",
        "SCHEDULER_ENABLED": "false",
        "PROGRESSION_API_KEY": "",
        "DEFAULT_TIMEZONE": "UTC",
        "REDIS_URL": "redis://localhost:6379/1",
    }
)

from app.db.models import (  # noqa: E402
    CardRatingRecord,
    FreezeState,
    StackMastery,
    StreakLedger,
    UserProgress,
)
from app.services.progression import clock  # noqa: E402
from app.services.progression.pending_actions import PendingActionStore  # noqa: E402
from app.services.progression.service import ProgressionService  # noqa: E402

USER_ID = "user-1"

# Local noon keeps every scenario clear of the post-midnight grace window
NOON = datetime(2024, 3, 14, 12, 0, tzinfo=timezone.utc)
TODAY = date(2024, 3, 14)


# ============================================================================
# In-memory Session
# ============================================================================


class FakeResult:
    """Mimics the subset of sqlalchemy.engine.Result used by the service."""

    def __init__(self, values: list[Any]):
        self._values = list(values)

    def scalars(self) -> "FakeResult":
        return self

    def all(self) -> list[Any]:
        return list(self._values)


class FakeSession:
    """
    Dictionary-backed stand-in for AsyncSession.

    Rows are keyed by (model, primary key). A transaction starts at the first
    access after a commit or rollback; rollback restores every row (and each
    stack's test) to its column values at that point, and forgets rows added
    or deleted since. `commit_failures` holds exceptions raised by successive
    commits, to simulate optimistic-lock conflicts.
    """

    def __init__(self):
        self.rows: dict[tuple[type, str], Any] = {}
        self.commits = 0
        self.rollbacks = 0
        self.deleted: list[Any] = []
        self.commit_failures: list[Exception] = []
        self._snapshot: Optional[tuple[dict, list]] = None

    @staticmethod
    def _key(obj) -> str:
        if isinstance(obj, (UserProgress, StreakLedger, FreezeState)):
            return obj.user_id
        return obj.id

    @staticmethod
    def _columns(obj) -> dict[str, Any]:
        state = {
            attr.key: copy.copy(getattr(obj, attr.key))
            for attr in sa_inspect(obj).mapper.column_attrs
        }
        if isinstance(obj, StackMastery):
            state["test"] = obj.test
        return state

    def _begin(self) -> None:
        if self._snapshot is not None:
            return
        objs = list(self.rows.values())
        objs += [
            obj.test for obj in objs if isinstance(obj, StackMastery) and obj.test
        ]
        self._snapshot = (
            dict(self.rows),
            [(obj, self._columns(obj)) for obj in objs],
        )

    def _add(self, obj) -> None:
        self.rows[(type(obj), self._key(obj))] = obj
        if isinstance(obj, StackMastery):
            for card in obj.cards:
                self.rows[(CardRatingRecord, card.id)] = card

    def add(self, obj) -> None:
        self._begin()
        self._add(obj)

    def seed(self, *objs) -> None:
        """Store rows as already committed."""
        for obj in objs:
            self._add(obj)
        self._snapshot = None

    async def get(self, model, key, **kwargs):
        self._begin()
        return self.rows.get((model, key))

    async def delete(self, obj) -> None:
        self._begin()
        self.deleted.append(obj)
        self.rows.pop((type(obj), self._key(obj)), None)
        if isinstance(obj, StackMastery):
            for card in obj.cards:
                self.rows.pop((CardRatingRecord, card.id), None)

    async def execute(self, stmt) -> FakeResult:
        self._begin()
        descriptions = getattr(stmt, "column_descriptions", None)
        if not descriptions:
            return FakeResult([])

        first = descriptions[0]
        if first["entity"] is StackMastery:
            user_id = stmt.whereclause.right.value
            return FakeResult(
                obj
                for (model, _), obj in self.rows.items()
                if model is StackMastery and obj.user_id == user_id
            )
        if first["entity"] is UserProgress and first["name"] == "user_id":
            return FakeResult(
                key for (model, key) in self.rows if model is UserProgress
            )
        return FakeResult([])

    async def commit(self) -> None:
        if self.commit_failures:
            raise self.commit_failures.pop(0)
        self.commits += 1
        self._snapshot = None

    async def rollback(self) -> None:
        self.rollbacks += 1
        if self._snapshot is None:
            return
        rows, states = self._snapshot
        self.rows = dict(rows)
        for obj, state in states:
            for key, value in state.items():
                setattr(obj, key, value)
        self._snapshot = None

    async def close(self) -> None:
        pass


class FakeRedis:
    """Dictionary-backed stand-in for the redis.asyncio client."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def getset(self, key: str, value: str) -> Optional[str]:
        previous = self.data.get(key)
        self.data[key] = value
        return previous

    async def expire(self, key: str, ttl: int) -> bool:
        if key not in self.data:
            return False
        self.ttls[key] = ttl
        return True

    async def delete(self, key: str) -> int:
        return 1 if self.data.pop(key, None) is not None else 0

    async def ping(self) -> bool:
        return True


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_db() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis) -> PendingActionStore:
    return PendingActionStore(redis=fake_redis)


@pytest.fixture
def service(fake_db, store) -> ProgressionService:
    return ProgressionService(fake_db, store)


@pytest.fixture
def set_now(monkeypatch) -> Callable[[datetime], None]:
    """
    Pin the engine's clock.

    Every module reads the current instant through clock.utc_now(), so
    patching it there moves the whole engine.
    """

    def _set(now: datetime) -> None:
        monkeypatch.setattr(clock, "utc_now", lambda: now)

    _set(NOON)
    return _set


@pytest.fixture
def user_rows() -> Callable[..., tuple[UserProgress, StreakLedger, FreezeState]]:
    """Factory for a user's progress, ledger and freeze rows."""

    def _build(
        user_id: str = USER_ID,
        tz: str = "UTC",
        cards_today: int = 0,
        last_mastery_date: Optional[date] = None,
        awarded: bool = False,
        last_credited: Optional[date] = None,
        previous_credited: Optional[date] = None,
        current: int = 0,
        longest: Optional[int] = None,
        frozen: tuple[str, ...] = (),
    ):
        progress = UserProgress.for_user(user_id, tz)
        progress.cards_mastered_today = cards_today
        progress.last_mastery_date = last_mastery_date
        progress.streak_awarded_today = awarded
        progress.last_credited_date = last_credited
        progress.previous_credited_date = previous_credited
        ledger = StreakLedger(
            user_id=user_id,
            current_streak=current,
            longest_streak=current if longest is None else longest,
        )
        freeze = FreezeState(user_id=user_id, frozen_stack_ids=list(frozen))
        return progress, ledger, freeze

    return _build


@pytest.fixture
def make_stack() -> Callable[..., StackMastery]:
    """Factory for a stack whose card ids are '<stack_id>-card-<n>'."""

    def _build(
        stack_id: str = "stack-1",
        user_id: str = USER_ID,
        cards: int = 3,
        ratings: Optional[list[int]] = None,
        title: Optional[str] = None,
    ) -> StackMastery:
        card_ids = [f"{stack_id}-card-{i}" for i in range(1, cards + 1)]
        stack = StackMastery.new(stack_id, user_id, card_ids, title=title)
        for card, rating in zip(stack.cards, ratings or []):
            card.rating = rating
        return stack

    return _build
