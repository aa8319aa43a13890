"""
Attempt Recorder.

Records an answered attempt and applies the resulting rating changes in a
single transaction:

1. Validate inputs, item and session
2. Score the answer
3. Lock overall rating, category rating and item (in that order)
4. Reject a pair already in the ledger, then insert the attempt and flush,
   before touching any rating
5. Persist overall rating, category rating and item difficulty/counters
6. Commit

The unique (session_id, item_id) index on attempts makes step 4 the
arbiter between concurrent submissions of the same pair: exactly one
insert succeeds, every other transaction fails there and is rolled back
with ConflictError before it has mutated anything.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from quizrank.adaptive.elo import ItemStats, SubjectStats, combined_update
from quizrank.adaptive.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    SessionStateError,
    ValidationError,
)
from quizrank.adaptive.policy import DEFAULT_POLICY, RatingPolicy
from quizrank.adaptive.rating_store import RatingStore
from quizrank.db.database import session_scope
from quizrank.db.models import Attempt, Item, QuizSession

_WHITESPACE = re.compile(r"\s+")


def normalize_answer(answer: str) -> str:
    """Strip, collapse inner whitespace and casefold."""
    return _WHITESPACE.sub(" ", answer.strip()).casefold()


def is_correct_answer(submitted: str, correct: str) -> bool:
    return normalize_answer(submitted) == normalize_answer(correct)


@dataclass(frozen=True)
class RatingChange:
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before


@dataclass
class AttemptOutcome:
    """Result of a recorded attempt."""

    attempt_id: int
    session_id: UUID
    item_id: UUID
    is_correct: bool
    correct_answer: str
    explanation: str | None
    expected_score: float
    overall: RatingChange
    category: RatingChange
    item: RatingChange
    item_accuracy: float = 0.0

    @property
    def deltas(self) -> dict[str, RatingChange]:
        return {"overall": self.overall, "category": self.category, "item": self.item}


class AttemptRecorder:
    """
    Atomic, idempotent attempt recording.

    Each call runs in its own transaction from session_factory.

    Args:
        session_factory: Factory for the per-attempt transaction
        policy: Rating law parameters
    """

    def __init__(self, session_factory: sessionmaker[Session], policy: RatingPolicy = DEFAULT_POLICY):
        self.session_factory = session_factory
        self.policy = policy

    def record_attempt(
        self,
        session_id: UUID | str,
        item_id: UUID | str,
        subject_id: str,
        answer: str,
        time_spent_seconds: int = 0,
    ) -> AttemptOutcome:
        """
        Score an answer and update all affected ratings.

        Args:
            session_id: Active session owned by the subject
            item_id: Item being answered
            subject_id: Answering subject
            answer: Submitted answer text
            time_spent_seconds: Time spent on the item

        Returns:
            AttemptOutcome with the before/after of every rating touched

        Raises:
            ValidationError: Malformed input
            NotFoundError: Unknown item or session
            SessionStateError: Session not active, not owned by the subject, or full
            ConflictError: The item was already answered in this session
            PersistenceError: The transaction failed and was rolled back (retryable)
        """
        session_id = _as_uuid(session_id, "session_id")
        item_id = _as_uuid(item_id, "item_id")
        if not isinstance(subject_id, str) or not subject_id.strip():
            raise ValidationError("subject_id must be a non-empty string")
        if not isinstance(answer, str):
            raise ValidationError("answer must be a string")
        if not isinstance(time_spent_seconds, int) or time_spent_seconds < 0:
            raise ValidationError("time_spent_seconds must be a non-negative integer")

        try:
            with session_scope(self.session_factory) as session:
                outcome = self._record(
                    session, session_id, item_id, subject_id, answer, time_spent_seconds
                )
        except SQLAlchemyError as exc:
            logger.error(f"Attempt on item {item_id} in session {session_id} rolled back: {exc}")
            raise PersistenceError(f"Failed to record attempt: {exc}") from exc

        logger.info(
            f"Recorded attempt {outcome.attempt_id}: subject={subject_id} item={item_id} "
            f"correct={outcome.is_correct} overall {outcome.overall.before}->{outcome.overall.after}"
        )
        return outcome

    def _record(
        self,
        session: Session,
        session_id: UUID,
        item_id: UUID,
        subject_id: str,
        answer: str,
        time_spent_seconds: int,
    ) -> AttemptOutcome:
        item = session.get(Item, item_id)
        if item is None:
            raise NotFoundError("item", item_id)
        quiz_session = session.get(QuizSession, session_id)
        if quiz_session is None:
            raise NotFoundError("session", session_id)
        if quiz_session.subject_id != subject_id:
            raise SessionStateError(f"Session {session_id} does not belong to {subject_id}")
        if quiz_session.status != "active":
            raise SessionStateError(f"Session {session_id} is {quiz_session.status}, not active")

        correct = is_correct_answer(answer, item.correct_answer)

        # Lock order: overall rating, category rating, item
        store = RatingStore(session, self.policy)
        overall = store.get_or_init(subject_id, for_update=True)
        category = store.get_or_init_category(subject_id, item.category_id, for_update=True)
        item = session.scalars(
            select(Item)
            .where(Item.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).one()

        # A repeat of an answered pair is a conflict even when the session is full
        already_answered = session.scalar(
            select(Attempt.id).where(Attempt.session_id == session_id, Attempt.item_id == item_id)
        )
        if already_answered is not None:
            logger.debug(f"Duplicate attempt on item {item_id} in session {session_id}")
            raise ConflictError(session_id, item_id)

        if quiz_session.max_items is not None:
            answered = session.scalar(
                select(func.count(Attempt.id)).where(Attempt.session_id == session_id)
            )
            if answered >= quiz_session.max_items:
                raise SessionStateError(
                    f"Session {session_id} already holds {quiz_session.max_items} attempts"
                )

        item_stats = ItemStats(item.difficulty_value, item.times_answered)
        law = {
            "max_change": self.policy.max_change,
            "floor": self.policy.rating_floor,
            "ceiling": self.policy.rating_ceiling,
            "smoothing": self.policy.volatility_smoothing,
        }
        overall_update = combined_update(
            SubjectStats(overall.value, overall.sample_count), item_stats, correct, **law
        )
        category_update = combined_update(
            SubjectStats(category.value, category.sample_count), item_stats, correct, **law
        )

        attempt = Attempt(
            session_id=session_id,
            item_id=item_id,
            subject_id=subject_id,
            submitted_answer=answer,
            is_correct=correct,
            time_spent_seconds=time_spent_seconds,
            rating_before=overall.value,
            rating_after=overall_update.subject_new_rating,
            category_rating_before=category.value,
            category_rating_after=category_update.subject_new_rating,
            item_rating_before=item.difficulty_value,
            item_rating_after=overall_update.item_new_rating,
            expected_score=overall_update.expected_score,
        )
        session.add(attempt)
        try:
            session.flush()
        except IntegrityError as exc:
            logger.debug(f"Duplicate attempt on item {item_id} in session {session_id}")
            raise ConflictError(session_id, item_id) from exc

        overall_change = RatingChange(overall.value, overall_update.subject_new_rating)
        category_change = RatingChange(category.value, category_update.subject_new_rating)
        item_change = RatingChange(item.difficulty_value, overall_update.item_new_rating)

        store.update(subject_id, overall_update.subject_new_rating, overall_update.subject_new_volatility)
        store.update(
            subject_id,
            category_update.subject_new_rating,
            category_update.subject_new_volatility,
            category_id=item.category_id,
        )

        item.difficulty_value = overall_update.item_new_rating
        item.k_factor = overall_update.item_new_volatility
        item.times_answered += 1
        item.times_correct += int(correct)
        session.flush()

        return AttemptOutcome(
            attempt_id=attempt.id,
            session_id=session_id,
            item_id=item_id,
            is_correct=correct,
            correct_answer=item.correct_answer,
            explanation=item.explanation,
            expected_score=overall_update.expected_score,
            overall=overall_change,
            category=category_change,
            item=item_change,
            item_accuracy=item.accuracy,
        )


def _as_uuid(value: UUID | str, name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"{name} is not a valid UUID: {value!r}") from exc
