"""
Candidate Selector.

Scores unattempted items against a subject's ratings and picks the
best-matched one:

1. Subject rating for the item's category (falls back to the overall rating)
2. Expected score of the subject against the item
3. Appropriateness: 1.0 inside the tolerance window, else a linear decay
   with the rating gap down to a floor
4. Relevance: category weight * appropriateness
5. Composite: weighted sum of appropriateness, relevance and random jitter

Also computes per-category practice priorities used to steer next-best
selection towards the categories with the most room to improve.
"""
from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quizrank.adaptive.elo import (
    difficulty_level,
    difficulty_range,
    expected_score,
    is_appropriate,
    item_reliability,
)
from quizrank.adaptive.errors import PersistenceError, SelectionError, ValidationError
from quizrank.adaptive.policy import DEFAULT_POLICY, RatingPolicy
from quizrank.adaptive.rating_store import CategoryLedgerStats, ItemHistory, RatingStore
from quizrank.db.models import Attempt, Category, Item, QuizSession

DIFFICULTY_TARGETS = ("auto", "easy", "medium", "hard")

# Recommended action thresholds
EXPLORE_BELOW_ATTEMPTS = 5
FOCUS_BELOW_SUCCESS_RATE = 0.6


@dataclass
class ScoredCandidate:
    """An item with its selection scores for one subject."""

    item_id: UUID
    category_id: int
    prompt: str
    difficulty: int
    subject_rating: int
    expected_score: float
    appropriateness: float
    relevance: float
    composite: float
    item_reliability: float = 0.0
    queue_priority: int = 0


@dataclass
class CategoryPriority:
    """How urgently a subject should practice a category."""

    category_id: int
    slug: str
    name: str
    rating: int
    attempts: int
    success_rate: float
    available_items: int
    improvement: float
    priority: float
    recommended_action: str
    recommended_difficulty: str


class CandidateSelector:
    """
    Adaptive item selection.

    Args:
        session: Caller-owned SQLAlchemy session (read-only use)
        policy: Scoring weights, tolerance and pool size
        rng: Source of selection jitter; seed it for reproducible selections
    """

    def __init__(
        self,
        session: Session,
        policy: RatingPolicy = DEFAULT_POLICY,
        rng: random.Random | None = None,
    ):
        self.session = session
        self.policy = policy
        self.rng = rng or random.Random()
        self.store = RatingStore(session, policy)

    # ========================================
    # Scoring
    # ========================================

    def appropriateness(self, subject_rating: float, item_rating: float) -> float:
        """1.0 within tolerance, otherwise 1 - gap/decay_span bounded below by the floor."""
        if is_appropriate(subject_rating, item_rating, self.policy.tolerance):
            return 1.0
        gap = abs(subject_rating - item_rating)
        return max(self.policy.appropriateness_floor, 1.0 - gap / self.policy.decay_span)

    def composite(self, appropriateness: float, relevance: float, jitter: float = 0.0) -> float:
        p = self.policy
        return (
            p.weight_appropriateness * appropriateness
            + p.weight_relevance * relevance
            + p.weight_jitter * jitter
        )

    def score(
        self,
        item: Item,
        subject_rating: int,
        category_weight: float = 1.0,
        queue_priority: int = 0,
    ) -> ScoredCandidate:
        """Score one item for a subject rated subject_rating in the item's category."""
        appropriateness = self.appropriateness(subject_rating, item.difficulty_value)
        relevance = category_weight * appropriateness
        jitter = self.rng.random() if self.policy.weight_jitter > 0 else 0.0
        return ScoredCandidate(
            item_id=item.id,
            category_id=item.category_id,
            prompt=item.prompt,
            difficulty=item.difficulty_value,
            subject_rating=subject_rating,
            expected_score=expected_score(subject_rating, item.difficulty_value),
            appropriateness=appropriateness,
            relevance=relevance,
            composite=self.composite(appropriateness, relevance, jitter),
            item_reliability=item_reliability(item.times_answered or 0),
            queue_priority=queue_priority,
        )

    # ========================================
    # Selection
    # ========================================

    def rank(
        self,
        subject_id: str,
        session_id: UUID,
        candidates: Sequence[Item] | None = None,
        category_weights: dict[int, float] | None = None,
        target_difficulty: str = "auto",
        limit: int | None = None,
    ) -> list[ScoredCandidate]:
        """
        Score and sort candidates, best first.

        Args:
            subject_id: Subject to select for
            session_id: Session whose attempted items are excluded from the pool
                (items the subject has mastered are excluded too)
            candidates: Explicit pool (skips the database pool query)
            category_weights: Relevance weight per category id (default 1.0)
            target_difficulty: "auto" or a difficulty band (easy/medium/hard)
            limit: Return only the top N

        Returns:
            Candidates sorted by composite score; ties broken by item id

        Raises:
            SelectionError: The database could not be read
        """
        if target_difficulty not in DIFFICULTY_TARGETS:
            raise ValidationError(f"Unknown target difficulty: {target_difficulty}")
        weights = category_weights or {}

        try:
            overall = self.store.overall_value(subject_id)
            by_category = self.store.category_values(subject_id)
            history = self.store.item_history(subject_id)
            pool = (
                list(candidates)
                if candidates is not None
                else self._candidate_pool(session_id, target_difficulty, overall, history)
            )
        except (SQLAlchemyError, PersistenceError) as exc:
            raise SelectionError(f"Failed to load selection candidates for {subject_id}") from exc

        scored = [
            self.score(
                item,
                by_category.get(item.category_id, overall),
                weights.get(item.category_id, 1.0),
                history[item.id].queue_priority if item.id in history else 0,
            )
            for item in pool
        ]
        scored.sort(key=lambda c: (-c.composite, str(c.item_id)))

        logger.debug(
            f"Ranked {len(scored)} candidates for {subject_id} "
            f"(target={target_difficulty}, weights={weights})"
        )
        return scored[:limit] if limit is not None else scored

    def select(
        self,
        subject_id: str,
        session_id: UUID,
        candidates: Sequence[Item] | None = None,
        category_weights: dict[int, float] | None = None,
        target_difficulty: str = "auto",
    ) -> ScoredCandidate | None:
        """Best candidate, or None when the pool is empty."""
        ranked = self.rank(
            subject_id,
            session_id,
            candidates=candidates,
            category_weights=category_weights,
            target_difficulty=target_difficulty,
            limit=1,
        )
        return ranked[0] if ranked else None

    def select_next_best(
        self,
        subject_id: str,
        session_id: UUID,
        target_category_id: int | None = None,
        target_difficulty: str | None = None,
    ) -> ScoredCandidate | None:
        """
        Select for focused practice on one category.

        Without a target category the highest-priority category is used. The
        target is weighted up and, unless target_difficulty overrides it,
        restricted to the subject's recommended difficulty band.

        Returns:
            Best candidate, or None when the session is full or nothing is available
        """
        if not self.has_capacity(session_id):
            logger.debug(f"Session {session_id} reached its item limit")
            return None

        if target_category_id is None:
            priorities = self.category_priorities(subject_id)
            if not priorities or priorities[0].available_items == 0:
                return None
            target_category_id = priorities[0].category_id

        level = target_difficulty or self.recommended_difficulty(subject_id, target_category_id)
        return self.select(
            subject_id,
            session_id,
            category_weights={target_category_id: self.policy.target_category_weight},
            target_difficulty=level,
        )

    def has_capacity(self, session_id: UUID) -> bool:
        """Whether the session can take another attempt (no max_items means unbounded)."""
        try:
            max_items = self.session.scalar(
                select(QuizSession.max_items).where(QuizSession.id == session_id)
            )
            if max_items is None:
                return True
            answered = self.session.scalar(
                select(func.count(Attempt.id)).where(Attempt.session_id == session_id)
            )
        except SQLAlchemyError as exc:
            raise SelectionError(f"Failed to read session {session_id}") from exc
        return answered < max_items

    # ========================================
    # Category priorities
    # ========================================

    def recommended_difficulty(self, subject_id: str, category_id: int) -> str:
        """Difficulty band matching the subject's rating in a category."""
        try:
            rating = self.store.category_values(subject_id).get(
                category_id, self.store.overall_value(subject_id)
            )
        except SQLAlchemyError as exc:
            raise SelectionError(f"Failed to read ratings for {subject_id}") from exc
        return difficulty_level(rating, self.policy.rating_floor, self.policy.rating_ceiling)

    def category_priorities(self, subject_id: str) -> list[CategoryPriority]:
        """
        Rank categories by practice priority, highest first.

        priority = improvement * experience boost * availability factor, where
        improvement is the share of the rating scale still above the subject.
        """
        p = self.policy
        try:
            categories = self.session.scalars(select(Category).order_by(Category.id)).all()
            ratings = self.store.category_values(subject_id)
            stats = self.store.category_ledger_stats(subject_id)
            available = dict(
                self.session.execute(
                    select(Item.category_id, func.count(Item.id)).group_by(Item.category_id)
                ).all()
            )
        except SQLAlchemyError as exc:
            raise SelectionError(f"Failed to compute category priorities for {subject_id}") from exc

        priorities = []
        for category in categories:
            rating = ratings.get(category.id, p.default_rating)
            ledger = stats.get(category.id, CategoryLedgerStats())
            items = int(available.get(category.id, 0))

            improvement = (p.rating_ceiling - rating) / (p.rating_ceiling - p.rating_floor)
            boost = p.inexperience_boost if ledger.attempts < p.inexperience_threshold else 1.0
            availability = 1.0 if items > 0 else p.unavailable_factor
            level = difficulty_level(rating, p.rating_floor, p.rating_ceiling)

            priorities.append(
                CategoryPriority(
                    category_id=category.id,
                    slug=category.slug,
                    name=category.name,
                    rating=rating,
                    attempts=ledger.attempts,
                    success_rate=ledger.success_rate,
                    available_items=items,
                    improvement=improvement,
                    priority=improvement * boost * availability,
                    recommended_action=recommended_action(ledger, items, level),
                    recommended_difficulty=level,
                )
            )

        priorities.sort(key=lambda c: (-c.priority, c.category_id))
        return priorities

    # ========================================
    # Pool
    # ========================================

    def _candidate_pool(
        self,
        session_id: UUID,
        target_difficulty: str,
        overall: int,
        history: dict[UUID, ItemHistory],
    ) -> list[Item]:
        """
        Unattempted items of the session, capped at the policy pool size.

        Items the subject has already mastered in any session are left out.
        Queued items (missed before) come first, highest queue priority first,
        then the rest by distance to the overall rating.
        """
        attempted = select(Attempt.item_id).where(Attempt.session_id == session_id)
        stmt = select(Item).where(Item.id.not_in(attempted))

        if self.policy.retire_mastered:
            retired = [h.item_id for h in history.values() if h.retired]
            if retired:
                stmt = stmt.where(Item.id.not_in(retired))

        queued = [
            (Item.id == h.item_id, h.queue_priority) for h in history.values() if h.queue_priority
        ]
        queue_order = case(*queued, else_=0).desc() if queued else None

        if target_difficulty != "auto":
            low, high = difficulty_range(
                target_difficulty, self.policy.rating_floor, self.policy.rating_ceiling
            )
            stmt = stmt.where(Item.difficulty_value >= low, Item.difficulty_value < high)

        if queue_order is not None:
            stmt = stmt.order_by(queue_order)
        stmt = stmt.order_by(func.abs(Item.difficulty_value - overall), Item.id).limit(
            self.policy.pool_size
        )
        return list(self.session.scalars(stmt))


def recommended_action(ledger: CategoryLedgerStats, available_items: int, level: str) -> str:
    """Human-readable next step for a category."""
    if available_items == 0:
        return "No items available"
    if ledger.attempts < EXPLORE_BELOW_ATTEMPTS:
        return "Explore fundamentals"
    if ledger.success_rate < FOCUS_BELOW_SUCCESS_RATE:
        return "Focus on improvement"
    return {
        "easy": "Build foundation",
        "medium": "Strengthen skills",
        "hard": "Master advanced concepts",
    }[level]
