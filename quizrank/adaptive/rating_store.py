"""
Rating Store.

Persistence of overall and per-category ratings plus the read-side
aggregates derived from the attempt ledger.

All methods run inside the caller's SQLAlchemy Session: the store flushes
but never commits, so a caller can combine rating reads and writes with
other work in one transaction. Rating rows are created lazily with
INSERT ... ON CONFLICT DO NOTHING so two connections reading the same
missing rating at once both succeed and both see the same row.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from quizrank.adaptive.elo import difficulty_level, subject_confidence, subject_volatility
from quizrank.adaptive.errors import NotFoundError, PersistenceError, ValidationError
from quizrank.adaptive.policy import DEFAULT_POLICY, RatingPolicy
from quizrank.db.models import Attempt, Category, CategoryRating, Item, OverallRating

# Attempts that make up "recent performance" in the confidence estimate
RECENT_WINDOW = 10


@dataclass
class CategoryRatingSummary:
    """Category rating joined with ledger-derived practice statistics."""

    category_id: int
    slug: str
    name: str
    rating: int
    k_factor: int
    sample_count: int
    attempts: int
    correct: int
    success_rate: float
    last_attempt_at: datetime | None
    difficulty_level: str


@dataclass
class CategoryLedgerStats:
    attempts: int = 0
    correct: int = 0
    last_attempt_at: datetime | None = None

    @property
    def success_rate(self) -> float:
        return self.correct / self.attempts if self.attempts else 0.0


@dataclass
class PerformanceSummary:
    """Overall performance of a subject, derived from the attempt ledger."""

    subject_id: str
    overall_rating: int
    sample_count: int
    total_attempts: int
    correct_attempts: int
    success_rate: float
    best_rating: int
    current_streak: int
    categories_practiced: int
    avg_time_seconds: float
    confidence: float


@dataclass
class RatingPoint:
    """One step of a subject's overall rating progression."""

    attempt_id: int
    session_id: UUID
    item_id: UUID
    is_correct: bool
    rating_before: int
    rating_after: int
    answered_at: datetime

    @property
    def delta(self) -> int:
        return self.rating_after - self.rating_before


@dataclass
class ItemHistory:
    """
    A subject's standing with one item across all sessions.

    A correct answer retires the item. Each miss since the last correct
    answer raises its queue priority, up to the policy maximum.
    """

    item_id: UUID
    retired: bool = False
    queue_priority: int = 0


class RatingStore:
    """
    Overall and per-category rating persistence.

    Args:
        session: Caller-owned SQLAlchemy session (never committed here)
        policy: Rating bounds and default rating
    """

    def __init__(self, session: Session, policy: RatingPolicy = DEFAULT_POLICY):
        self.session = session
        self.policy = policy

    # ========================================
    # Lazy initialization
    # ========================================

    def get_or_init(self, subject_id: str, for_update: bool = False) -> OverallRating:
        """
        Get a subject's overall rating, creating it with the default rating if missing.

        Args:
            subject_id: Subject identifier
            for_update: Lock the row until the surrounding transaction ends

        Returns:
            OverallRating row
        """
        _require_subject(subject_id)
        stmt = select(OverallRating).where(OverallRating.subject_id == subject_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            rating = self.session.scalars(stmt).one_or_none()
            if rating is None:
                self._insert_ignore(OverallRating, self._initial_values(subject_id), ["subject_id"])
                rating = self.session.scalars(stmt).one()
                logger.debug(f"Initialized overall rating for {subject_id} at {rating.value}")
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load overall rating for {subject_id}") from exc
        return rating

    def get_or_init_category(
        self, subject_id: str, category_id: int, for_update: bool = False
    ) -> CategoryRating:
        """
        Get a subject's rating in one category, creating it with the default rating if missing.

        Raises:
            NotFoundError: The category does not exist
        """
        _require_subject(subject_id)
        stmt = select(CategoryRating).where(
            CategoryRating.subject_id == subject_id,
            CategoryRating.category_id == category_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            rating = self.session.scalars(stmt).one_or_none()
            if rating is None:
                if self.session.get(Category, category_id) is None:
                    raise NotFoundError("category", category_id)
                values = self._initial_values(subject_id)
                values["category_id"] = category_id
                self._insert_ignore(CategoryRating, values, ["subject_id", "category_id"])
                rating = self.session.scalars(stmt).one()
                logger.debug(
                    f"Initialized category {category_id} rating for {subject_id} at {rating.value}"
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to load category {category_id} rating for {subject_id}"
            ) from exc
        return rating

    def initialize_all_categories(self, subject_id: str) -> int:
        """
        Create the overall rating and every missing category rating for a subject.

        Idempotent: running it again creates nothing.

        Returns:
            Number of category ratings created
        """
        self.get_or_init(subject_id)
        try:
            known = set(self.session.scalars(select(Category.id)))
            existing = set(
                self.session.scalars(
                    select(CategoryRating.category_id).where(CategoryRating.subject_id == subject_id)
                )
            )
            missing = sorted(known - existing)
            for category_id in missing:
                values = self._initial_values(subject_id)
                values["category_id"] = category_id
                self._insert_ignore(CategoryRating, values, ["subject_id", "category_id"])
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to initialize category ratings for {subject_id}") from exc

        if missing:
            logger.info(f"Initialized {len(missing)} category ratings for {subject_id}")
        return len(missing)

    # ========================================
    # Mutation
    # ========================================

    def update(
        self,
        subject_id: str,
        new_value: float,
        new_volatility: int,
        sample_increment: int = 1,
        category_id: int | None = None,
    ) -> OverallRating | CategoryRating:
        """
        Persist a new rating value.

        The value is clamped to the policy bounds; sample_count only grows.

        Args:
            subject_id: Subject identifier
            new_value: New rating (clamped, rounded)
            new_volatility: K-factor implied by the new sample count
            sample_increment: Attempts to add to sample_count (>= 0)
            category_id: Update this category rating instead of the overall one

        Returns:
            The updated row
        """
        if sample_increment < 0:
            raise ValidationError("sample_increment must not be negative")

        if category_id is None:
            rating: OverallRating | CategoryRating = self.get_or_init(subject_id, for_update=True)
        else:
            rating = self.get_or_init_category(subject_id, category_id, for_update=True)

        rating.value = self.policy.clamp(new_value)
        rating.k_factor = new_volatility
        rating.sample_count += sample_increment

        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update rating for {subject_id}") from exc
        return rating

    # ========================================
    # Read-only lookups (no lazy creation)
    # ========================================

    def overall_value(self, subject_id: str) -> int:
        """Current overall rating, or the default when the subject has none yet."""
        rating = self.session.get(OverallRating, subject_id)
        return rating.value if rating else self.policy.default_rating

    def category_values(self, subject_id: str) -> dict[int, int]:
        """Existing category ratings of a subject, keyed by category id."""
        rows = self.session.execute(
            select(CategoryRating.category_id, CategoryRating.value).where(
                CategoryRating.subject_id == subject_id
            )
        )
        return {category_id: value for category_id, value in rows}

    def category_ledger_stats(self, subject_id: str) -> dict[int, CategoryLedgerStats]:
        """Attempt count, correct count and last attempt time per category."""
        stmt = (
            select(
                Item.category_id,
                func.count(Attempt.id),
                func.sum(case((Attempt.is_correct, 1), else_=0)),
                func.max(Attempt.answered_at),
            )
            .join(Item, Item.id == Attempt.item_id)
            .where(Attempt.subject_id == subject_id)
            .group_by(Item.category_id)
        )
        return {
            category_id: CategoryLedgerStats(int(count), int(correct or 0), last)
            for category_id, count, correct, last in self.session.execute(stmt)
        }

    def item_history(self, subject_id: str) -> dict[UUID, ItemHistory]:
        """Retirement and review queue state per answered item, replayed from the ledger."""
        rows = self.session.execute(
            select(Attempt.item_id, Attempt.is_correct)
            .where(Attempt.subject_id == subject_id)
            .order_by(Attempt.id)
        )
        history: dict[UUID, ItemHistory] = {}
        for item_id, is_correct in rows:
            entry = history.setdefault(item_id, ItemHistory(item_id))
            if is_correct:
                entry.retired = True
                entry.queue_priority = 0
            else:
                entry.retired = False
                entry.queue_priority = min(entry.queue_priority + 1, self.policy.max_queue_priority)
        return history

    def resolve_category_id(self, ref: int | str) -> int:
        """
        Resolve a category reference (id or slug) to its integer id.

        Raises:
            NotFoundError: No category matches the reference
        """
        try:
            if isinstance(ref, int) or (isinstance(ref, str) and ref.strip().isdigit()):
                category_id = self.session.scalar(select(Category.id).where(Category.id == int(ref)))
            else:
                category_id = self.session.scalar(
                    select(Category.id).where(Category.slug == str(ref).strip().lower())
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to resolve category {ref!r}") from exc

        if category_id is None:
            raise NotFoundError("category", ref)
        return category_id

    # ========================================
    # Ledger-derived reports
    # ========================================

    def list_category_ratings(self, subject_id: str) -> list[CategoryRatingSummary]:
        """
        List a subject's rating in every known category.

        Categories the subject has never practiced report the default rating.
        Attempt counts come from the ledger, not from stored counters.
        Sorted by rating (highest first), then category id.
        """
        _require_subject(subject_id)
        try:
            ratings = {
                r.category_id: r
                for r in self.session.scalars(
                    select(CategoryRating).where(CategoryRating.subject_id == subject_id)
                )
            }
            stats = self.category_ledger_stats(subject_id)
            categories = self.session.scalars(select(Category).order_by(Category.id)).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list category ratings for {subject_id}") from exc

        summaries = []
        for category in categories:
            rating = ratings.get(category.id)
            ledger = stats.get(category.id, CategoryLedgerStats())
            sample_count = rating.sample_count if rating else 0
            value = rating.value if rating else self.policy.default_rating
            summaries.append(
                CategoryRatingSummary(
                    category_id=category.id,
                    slug=category.slug,
                    name=category.name,
                    rating=value,
                    k_factor=rating.k_factor
                    if rating
                    else subject_volatility(0, self.policy.volatility_smoothing),
                    sample_count=sample_count,
                    attempts=ledger.attempts,
                    correct=ledger.correct,
                    success_rate=ledger.success_rate,
                    last_attempt_at=ledger.last_attempt_at,
                    difficulty_level=difficulty_level(
                        value, self.policy.rating_floor, self.policy.rating_ceiling
                    ),
                )
            )

        summaries.sort(key=lambda s: (-s.rating, s.category_id))
        return summaries

    def performance_summary(self, subject_id: str) -> PerformanceSummary:
        """Totals, success rate, best rating and current correct streak of a subject."""
        overall = self.get_or_init(subject_id)
        try:
            total, correct, best, avg_time = self.session.execute(
                select(
                    func.count(Attempt.id),
                    func.sum(case((Attempt.is_correct, 1), else_=0)),
                    func.max(Attempt.rating_after),
                    func.avg(Attempt.time_spent_seconds),
                ).where(Attempt.subject_id == subject_id)
            ).one()
            categories_practiced = self.session.scalar(
                select(func.count(func.distinct(Item.category_id)))
                .select_from(Attempt)
                .join(Item, Item.id == Attempt.item_id)
                .where(Attempt.subject_id == subject_id)
            )
            recent = self.session.scalars(
                select(Attempt.is_correct)
                .where(Attempt.subject_id == subject_id)
                .order_by(Attempt.id.desc())
            ).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to summarize performance for {subject_id}") from exc

        streak = 0
        for is_correct in recent:
            if not is_correct:
                break
            streak += 1
        last = recent[:RECENT_WINDOW]
        recent_performance = sum(last) / len(last) if last else 0.5

        total = int(total or 0)
        correct = int(correct or 0)
        return PerformanceSummary(
            subject_id=subject_id,
            overall_rating=overall.value,
            sample_count=overall.sample_count,
            total_attempts=total,
            correct_attempts=correct,
            success_rate=correct / total if total else 0.0,
            best_rating=max(int(best), overall.value) if best is not None else overall.value,
            current_streak=streak,
            categories_practiced=int(categories_practiced or 0),
            avg_time_seconds=float(avg_time or 0.0),
            confidence=subject_confidence(overall.sample_count, recent_performance),
        )

    def rating_history(self, subject_id: str, limit: int = 50) -> list[RatingPoint]:
        """Overall rating progression from the ledger, newest first."""
        _require_subject(subject_id)
        try:
            attempts = self.session.scalars(
                select(Attempt)
                .where(Attempt.subject_id == subject_id)
                .order_by(Attempt.id.desc())
                .limit(limit)
            ).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load rating history for {subject_id}") from exc

        return [
            RatingPoint(
                attempt_id=a.id,
                session_id=a.session_id,
                item_id=a.item_id,
                is_correct=a.is_correct,
                rating_before=a.rating_before,
                rating_after=a.rating_after,
                answered_at=a.answered_at,
            )
            for a in attempts
        ]

    # ========================================
    # Helpers
    # ========================================

    def _initial_values(self, subject_id: str) -> dict[str, Any]:
        return {
            "subject_id": subject_id,
            "value": self.policy.default_rating,
            "k_factor": subject_volatility(0, self.policy.volatility_smoothing),
            "sample_count": 0,
        }

    def _insert_ignore(self, model: type, values: dict[str, Any], conflict_columns: list[str]) -> None:
        """INSERT a row unless one with the same key already exists."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            # No portable upsert: fall back to a savepoint around a plain insert
            try:
                with self.session.begin_nested():
                    self.session.add(model(**values))
            except IntegrityError:
                pass
            return

        stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        self.session.execute(stmt)


def _require_subject(subject_id: str) -> None:
    if not isinstance(subject_id, str) or not subject_id.strip():
        raise ValidationError("subject_id must be a non-empty string")
