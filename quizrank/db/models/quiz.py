"""
Quiz models: categories, items, sessions and the attempt ledger.

Session statuses:
- active: accepting answers
- paused: temporarily not accepting answers (resumable)
- completed / abandoned: terminal

The attempts table is append-only. Its unique (session_id, item_id) index is
what guarantees an item is scored at most once per session, even when several
connections submit the same answer at the same time.
"""
from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

SESSION_TYPES = ("practice", "diagnostic", "timed", "quick-test")
SESSION_STATUSES = ("active", "paused", "completed", "abandoned")


class Category(Base):
    """Skill category. The integer id is the only category identifier used internally."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    items: Mapped[list[Item]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<Category id={self.id} slug={self.slug}>"


class Item(Base):
    """A practice question whose difficulty is rated like a subject."""

    __tablename__ = "items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text)

    difficulty_value: Mapped[int] = mapped_column(Integer, nullable=False)
    k_factor: Mapped[int] = mapped_column(Integer, nullable=False, default=40)
    times_answered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    times_correct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    category: Mapped[Category] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("times_answered >= 0", name="times_answered_non_negative"),
        CheckConstraint("times_correct <= times_answered", name="times_correct_bounded"),
        Index("idx_items_category_difficulty", "category_id", "difficulty_value"),
    )

    def __repr__(self) -> str:
        return f"<Item id={self.id} category={self.category_id} difficulty={self.difficulty_value}>"

    @property
    def accuracy(self) -> float:
        if self.times_answered:
            return self.times_correct / self.times_answered
        return 0.0


class QuizSession(Base):
    """A bounded, ordered run of attempts owned by one subject."""

    __tablename__ = "quiz_sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    session_type: Mapped[str] = mapped_column(Text, nullable=False, default="practice")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")
    max_items: Mapped[int | None] = mapped_column(Integer)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_pause_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    attempts: Mapped[list[Attempt]] = relationship(
        back_populates="session", order_by="Attempt.id"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'paused', 'completed', 'abandoned')", name="status_valid"
        ),
        Index("idx_quiz_sessions_subject_status", "subject_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<QuizSession id={self.id} subject={self.subject_id} status={self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class Attempt(Base):
    """Immutable record of one subject answering one item within one session."""

    __tablename__ = "attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[UUID] = mapped_column(
        ForeignKey("items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    subject_id: Mapped[str] = mapped_column(Text, nullable=False)

    submitted_answer: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    rating_before: Mapped[int] = mapped_column(Integer, nullable=False)
    rating_after: Mapped[int] = mapped_column(Integer, nullable=False)
    category_rating_before: Mapped[int] = mapped_column(Integer, nullable=False)
    category_rating_after: Mapped[int] = mapped_column(Integer, nullable=False)
    item_rating_before: Mapped[int] = mapped_column(Integer, nullable=False)
    item_rating_after: Mapped[int] = mapped_column(Integer, nullable=False)
    expected_score: Mapped[float] = mapped_column(Float, nullable=False)

    answered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    session: Mapped[QuizSession] = relationship(back_populates="attempts")
    item: Mapped[Item] = relationship()

    __table_args__ = (
        UniqueConstraint("session_id", "item_id", name="uq_attempt_session_item"),
        Index("idx_attempts_subject_answered", "subject_id", "answered_at"),
    )

    def __repr__(self) -> str:
        return f"<Attempt session={self.session_id} item={self.item_id} correct={self.is_correct}>"
