"""
Rating Engine.

Facade over the store, selector, recorder and session manager. Owns the
session factory, the resolved RatingPolicy and the selection RNG, so
callers (CLI, services) only deal with subject ids, session ids and
category references.
"""
from __future__ import annotations

import random
from collections.abc import Generator
from contextlib import contextmanager
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from quizrank.adaptive.attempt_recorder import AttemptOutcome, AttemptRecorder
from quizrank.adaptive.candidate_selector import (
    CandidateSelector,
    CategoryPriority,
    ScoredCandidate,
)
from quizrank.adaptive.errors import PersistenceError, SessionStateError
from quizrank.adaptive.policy import DEFAULT_POLICY, RatingPolicy
from quizrank.adaptive.rating_store import (
    CategoryRatingSummary,
    PerformanceSummary,
    RatingPoint,
    RatingStore,
)
from quizrank.adaptive.session_manager import SessionManager
from quizrank.db.database import session_scope
from quizrank.db.models import OverallRating


class RatingEngine:
    """
    Adaptive rating and selection engine.

    Args:
        session_factory: Factory for per-operation transactions
        policy: Rating and selection tuning
        rng: Selection jitter source (seed it for reproducible runs)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: RatingPolicy = DEFAULT_POLICY,
        rng: random.Random | None = None,
    ):
        self.session_factory = session_factory
        self.policy = policy
        self.rng = rng or random.Random()
        self.recorder = AttemptRecorder(session_factory, policy)
        self.sessions = SessionManager(session_factory)

    @classmethod
    def from_settings(cls, settings=None) -> RatingEngine:
        """Build an engine on the application database and settings."""
        from config import get_settings
        from quizrank.db.database import get_session_factory

        settings = settings or get_settings()
        return cls(
            get_session_factory(),
            RatingPolicy.from_settings(settings),
            random.Random(settings.selection_seed),
        )

    # ========================================
    # Selection
    # ========================================

    def select_next(
        self,
        subject_id: str,
        session_id: UUID,
        target_category_id: int | str | None = None,
        relax: bool = True,
    ) -> ScoredCandidate | None:
        """
        Pick the next item for a subject in an active session.

        Tries the recommended difficulty band of the target (or top-priority)
        category first. With relax=True a miss is retried once across the
        whole unattempted pool, still favoring the target category.

        Returns:
            Best candidate, or None when the session is full or exhausted

        Raises:
            SessionStateError: The session is not active or not the subject's
            SelectionError: Selection failed (distinct from "nothing to select")
        """
        quiz_session = self.sessions.get_session(session_id, subject_id)
        if quiz_session.status != "active":
            raise SessionStateError(f"Session {session_id} is {quiz_session.status}, not active")

        with self._scope() as session:
            selector = CandidateSelector(session, self.policy, self.rng)
            category_id = (
                selector.store.resolve_category_id(target_category_id)
                if target_category_id is not None
                else None
            )
            chosen = selector.select_next_best(subject_id, quiz_session.id, category_id)
            if chosen is None and relax and selector.has_capacity(quiz_session.id):
                logger.debug(f"No match in the recommended band for {subject_id}, relaxing")
                weights = (
                    {category_id: self.policy.target_category_weight}
                    if category_id is not None
                    else None
                )
                chosen = selector.select(subject_id, quiz_session.id, category_weights=weights)

        if chosen is not None:
            logger.info(
                f"Selected item {chosen.item_id} (difficulty {chosen.difficulty}) "
                f"for {subject_id} at {chosen.subject_rating}"
            )
        return chosen

    # ========================================
    # Recording
    # ========================================

    def record_attempt(
        self,
        session_id: UUID | str,
        item_id: UUID | str,
        subject_id: str,
        answer: str,
        time_spent_seconds: int = 0,
    ) -> AttemptOutcome:
        return self.recorder.record_attempt(
            session_id, item_id, subject_id, answer, time_spent_seconds
        )

    # ========================================
    # Ratings and reports
    # ========================================

    def get_overall_rating(self, subject_id: str) -> OverallRating:
        """Overall rating of a subject, created at the default rating on first read."""
        with self._scope() as session:
            return RatingStore(session, self.policy).get_or_init(subject_id)

    def initialize_ratings(self, subject_id: str) -> int:
        with self._scope() as session:
            return RatingStore(session, self.policy).initialize_all_categories(subject_id)

    def list_category_ratings(self, subject_id: str) -> list[CategoryRatingSummary]:
        with self._scope() as session:
            return RatingStore(session, self.policy).list_category_ratings(subject_id)

    def category_priorities(self, subject_id: str) -> list[CategoryPriority]:
        with self._scope() as session:
            return CandidateSelector(session, self.policy, self.rng).category_priorities(subject_id)

    def performance_summary(self, subject_id: str) -> PerformanceSummary:
        with self._scope() as session:
            return RatingStore(session, self.policy).performance_summary(subject_id)

    def rating_history(self, subject_id: str, limit: int = 50) -> list[RatingPoint]:
        with self._scope() as session:
            return RatingStore(session, self.policy).rating_history(subject_id, limit)

    @contextmanager
    def _scope(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Database failure: {exc}") from exc
