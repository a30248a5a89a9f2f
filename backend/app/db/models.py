"""
SQLAlchemy Database Models for the Progression Engine

These models define the PostgreSQL schema for daily progress, streaks,
freezes and per-stack mastery.

Tables:
- user_progress: Per-user daily mastery counter (one row per user)
- streak_ledgers: Per-user current/longest streak (one row per user)
- freeze_states: Per-user set of stacks with overdue tests (one row per user)
- stack_mastery: Per-stack mastery/test lifecycle
- card_ratings: Per-card 1-5 self-assessed rating
- stack_tests: Pending/passed mastery test record for a stack

CONCURRENCY NOTE:
    Every mutable row carries a `version` column registered as SQLAlchemy's
    version_id_col. UPDATEs are issued as `... WHERE version = :old` and a
    concurrent writer surfaces as StaleDataError on flush, which the service
    layer retries by re-reading and recomputing.

ARCHITECTURE NOTE:
    This file contains SQLALCHEMY models for database persistence.
    There is a corresponding Pydantic file: app/models/progression.py

    Data flows: Service Layer → Pydantic → SQLAlchemy → Database
"""

from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.enums.progression import StackStatus, StackTestStatus


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# ===========================================
# Per-user state
# ===========================================


class UserProgress(Base):
    """
    Daily mastery counter for one user.

    Attributes:
        user_id: Primary key, the user's identifier (owned by the auth system).
        timezone: IANA timezone name used to decide calendar-day boundaries.
        cards_mastered_today: Cards that crossed into mastery on
            `last_mastery_date`. Never negative.
        last_mastery_date: Local calendar day the counter belongs to. The
            counter is reset whenever "today" advances past it.
        streak_awarded_today: True once today's edge-trigger has fired.
        last_credited_date: Last local day on which the daily requirement
            was met. Used to detect missed days across multi-day gaps.
        previous_credited_date: The credit before `last_credited_date`,
            restored if today's award is reverted by a confirmed downgrade.
    """

    __tablename__ = "user_progress"
    __table_args__ = (
        CheckConstraint(
            "cards_mastered_today >= 0", name="ck_user_progress_counter_non_negative"
        ),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")

    cards_mastered_today: Mapped[int] = mapped_column(Integer, default=0)
    last_mastery_date: Mapped[Optional[date]] = mapped_column(Date)
    streak_awarded_today: Mapped[bool] = mapped_column(Boolean, default=False)
    last_credited_date: Mapped[Optional[date]] = mapped_column(Date)
    previous_credited_date: Mapped[Optional[date]] = mapped_column(Date)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def for_user(cls, user_id: str, timezone: str = "UTC") -> "UserProgress":
        """Build a fresh counter row with every column populated."""
        return cls(
            user_id=user_id,
            timezone=timezone,
            cards_mastered_today=0,
            streak_awarded_today=False,
        )


class StreakLedger(Base):
    """
    Current and longest streak for one user.

    Invariant: longest_streak >= current_streak, and longest_streak never
    decreases.
    """

    __tablename__ = "streak_ledgers"
    __table_args__ = (
        CheckConstraint(
            "longest_streak >= current_streak", name="ck_streak_longest_ge_current"
        ),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def for_user(cls, user_id: str) -> "StreakLedger":
        return cls(user_id=user_id, current_streak=0, longest_streak=0)


class FreezeState(Base):
    """
    Stacks whose mastery test is overdue, for one user.

    The global freeze flag is derived from the set and is never stored.
    """

    __tablename__ = "freeze_states"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    frozen_stack_ids: Mapped[list] = mapped_column(JSON, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def for_user(cls, user_id: str) -> "FreezeState":
        return cls(user_id=user_id, frozen_stack_ids=[])

    @property
    def streak_frozen(self) -> bool:
        return bool(self.frozen_stack_ids)


# ===========================================
# Per-stack state
# ===========================================


class StackMastery(Base):
    """
    Mastery and test lifecycle for one stack.

    Attributes:
        id: Primary key, the stack identifier.
        user_id: Owning user.
        title: Display title supplied by the content collaborator.
        status: in_progress, pending_test or completed.
        mastered_count: Cards currently rated at or above the threshold.
        total_cards: Number of cards in the stack.
        mastery_reached_at: When every card first reached mastery. Cleared
            by a downgrade below the threshold.
        test_deadline: Deadline for the mastery test. One-shot: cleared by
            any test submission.
        last_test_score: Most recent test score (0-100).
        completion_date: When the stack was completed (100% test).
        cards: CardRatingRecord rows belonging to the stack.
        test: The StackTest record, if a test has been scheduled.
    """

    __tablename__ = "stack_mastery"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[Optional[str]] = mapped_column(String(500))

    status: Mapped[str] = mapped_column(
        String(20), default=StackStatus.IN_PROGRESS.value
    )
    mastered_count: Mapped[int] = mapped_column(Integer, default=0)
    total_cards: Mapped[int] = mapped_column(Integer, default=0)

    mastery_reached_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    test_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), index=True
    )
    last_test_score: Mapped[Optional[float]] = mapped_column(Float)
    completion_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )

    # Relationships (eager: async sessions cannot lazy load)
    cards: Mapped[List["CardRatingRecord"]] = relationship(
        back_populates="stack", cascade="all, delete-orphan", lazy="selectin"
    )
    test: Mapped[Optional["StackTest"]] = relationship(
        back_populates="stack",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def new(
        cls,
        stack_id: str,
        user_id: str,
        card_ids: list[str],
        title: Optional[str] = None,
    ) -> "StackMastery":
        """
        Build an in-progress stack with every card at the lowest rating.

        Args:
            stack_id: Stack identifier from the content collaborator.
            user_id: Owning user.
            card_ids: Identifiers of the stack's cards.
            title: Optional display title.

        Returns:
            A transient StackMastery with its CardRatingRecord children.
        """
        stack = cls(
            id=stack_id,
            user_id=user_id,
            title=title,
            status=StackStatus.IN_PROGRESS.value,
            mastered_count=0,
            total_cards=len(card_ids),
            mastery_reached_at=None,
            test_deadline=None,
            last_test_score=None,
            completion_date=None,
        )
        stack.cards = [
            CardRatingRecord(id=card_id, rating=1, contributed_on=None)
            for card_id in card_ids
        ]
        return stack

    def find_card(self, card_id: str) -> Optional["CardRatingRecord"]:
        return next((card for card in self.cards if card.id == card_id), None)


class CardRatingRecord(Base):
    """
    Current rating of one card.

    Attributes:
        id: Primary key, the card identifier.
        stack_id: Owning stack.
        rating: Self-assessed rating, 1-5.
        contributed_on: Local day on which this card counted toward the daily
            counter. Set when the card crosses into mastery and cleared when
            it drops out, so only cards that actually fed today's count can
            take it away again.
    """

    __tablename__ = "card_ratings"
    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_card_ratings_rating"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stack_id: Mapped[str] = mapped_column(
        ForeignKey("stack_mastery.id", ondelete="CASCADE"), index=True
    )
    rating: Mapped[int] = mapped_column(Integer, default=1)
    contributed_on: Mapped[Optional[date]] = mapped_column(Date)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    stack: Mapped["StackMastery"] = relationship(back_populates="cards")


class StackTest(Base):
    """
    Mastery test record for a stack.

    Created when the stack transitions to pending_test and dropped if the
    stack loses mastery before the test is passed.

    Attributes:
        can_unfreeze_streak: True when the test was scheduled while the user
            had an active streak. Cleared ("legacy test") when the streak is
            reset, after which the test no longer matters for the streak.
    """

    __tablename__ = "stack_tests"

    id: Mapped[int] = mapped_column(primary_key=True)
    stack_id: Mapped[str] = mapped_column(
        ForeignKey("stack_mastery.id", ondelete="CASCADE"), unique=True
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    status: Mapped[str] = mapped_column(
        String(20), default=StackTestStatus.PENDING.value
    )
    can_unfreeze_streak: Mapped[bool] = mapped_column(Boolean, default=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_score: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )

    stack: Mapped["StackMastery"] = relationship(back_populates="test")
