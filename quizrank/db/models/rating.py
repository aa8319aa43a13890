"""
Rating models.

- OverallRating: one rating per subject across all categories
- CategoryRating: one "micro-rating" per (subject, category)

Both rows are created lazily with the policy's default rating and only
mutated by the attempt recorder. k_factor always mirrors the volatility
implied by sample_count; it is stored for reporting, never edited directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

if TYPE_CHECKING:
    from .quiz import Category


class OverallRating(Base):
    """Overall rating of a subject."""

    __tablename__ = "ratings_overall"

    subject_id: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    k_factor: Mapped[int] = mapped_column(Integer, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (CheckConstraint("sample_count >= 0", name="sample_count_non_negative"),)

    def __repr__(self) -> str:
        return f"<OverallRating subject={self.subject_id} value={self.value} n={self.sample_count}>"


class CategoryRating(Base):
    """Per-category micro-rating of a subject."""

    __tablename__ = "ratings_category"

    subject_id: Mapped[str] = mapped_column(Text, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True
    )
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    k_factor: Mapped[int] = mapped_column(Integer, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    category: Mapped[Category] = relationship()

    __table_args__ = (CheckConstraint("sample_count >= 0", name="sample_count_non_negative"),)

    def __repr__(self) -> str:
        return (
            f"<CategoryRating subject={self.subject_id} category={self.category_id} "
            f"value={self.value} n={self.sample_count}>"
        )
