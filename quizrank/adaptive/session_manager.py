"""
Session Manager.

Lifecycle of quiz sessions:

    active <-> paused
    active | paused -> completed | abandoned

Pause time is accumulated on resume (and on completing a paused session)
so elapsed time only counts active time. Session scores are derived from
the attempt ledger.
"""
from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from quizrank.adaptive.errors import (
    NotFoundError,
    PersistenceError,
    SessionStateError,
    ValidationError,
)
from quizrank.db.database import session_scope
from quizrank.db.models import SESSION_TYPES, Attempt, QuizSession
from quizrank.db.models.base import utcnow


@dataclass
class SessionScore:
    """Ledger-derived result of a session."""

    session_id: UUID
    status: str
    total_attempts: int
    correct_attempts: int
    percentage: float
    rating_start: int | None
    rating_end: int | None
    elapsed_seconds: int

    @property
    def rating_change(self) -> int:
        if self.rating_start is None or self.rating_end is None:
            return 0
        return self.rating_end - self.rating_start


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionManager:
    """Quiz session lifecycle; every call runs in its own transaction."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def create_session(
        self,
        subject_id: str,
        session_type: str = "practice",
        max_items: int | None = None,
    ) -> QuizSession:
        """
        Start a new active session.

        Args:
            subject_id: Owner of the session
            session_type: practice, diagnostic, timed or quick-test
            max_items: Optional cap on attempts in the session

        Returns:
            The created QuizSession
        """
        if not isinstance(subject_id, str) or not subject_id.strip():
            raise ValidationError("subject_id must be a non-empty string")
        if session_type not in SESSION_TYPES:
            raise ValidationError(f"Unknown session type: {session_type}")
        if max_items is not None and max_items < 1:
            raise ValidationError("max_items must be at least 1")

        quiz_session = QuizSession(
            subject_id=subject_id,
            session_type=session_type,
            status="active",
            max_items=max_items,
            started_at=utcnow(),
            total_pause_seconds=0,
        )
        with self._scope() as session:
            session.add(quiz_session)
            session.flush()

        logger.info(f"Started {session_type} session {quiz_session.id} for {subject_id}")
        return quiz_session

    def get_session(self, session_id: UUID, subject_id: str | None = None) -> QuizSession:
        with self._scope() as session:
            return self._load(session, session_id, subject_id)

    def pause(self, session_id: UUID, subject_id: str | None = None) -> QuizSession:
        with self._scope() as session:
            quiz_session = self._load(session, session_id, subject_id)
            if quiz_session.status != "active":
                raise SessionStateError(f"Cannot pause a {quiz_session.status} session")
            quiz_session.status = "paused"
            quiz_session.paused_at = utcnow()
        logger.info(f"Paused session {session_id}")
        return quiz_session

    def resume(self, session_id: UUID, subject_id: str | None = None) -> QuizSession:
        with self._scope() as session:
            quiz_session = self._load(session, session_id, subject_id)
            if quiz_session.status != "paused":
                raise SessionStateError(f"Cannot resume a {quiz_session.status} session")
            self._accumulate_pause(quiz_session)
            quiz_session.status = "active"
        logger.info(f"Resumed session {session_id}")
        return quiz_session

    def complete(self, session_id: UUID, subject_id: str | None = None) -> QuizSession:
        return self._finish(session_id, subject_id, "completed")

    def abandon(self, session_id: UUID, subject_id: str | None = None) -> QuizSession:
        return self._finish(session_id, subject_id, "abandoned")

    def elapsed_seconds(self, session_id: UUID, now: datetime | None = None) -> int:
        """Active time of a session, excluding pauses."""
        quiz_session = self.get_session(session_id)
        return _elapsed(quiz_session, now or utcnow())

    def attempted_item_ids(self, session_id: UUID) -> list[UUID]:
        """Items answered in the session, in answer order."""
        with self._scope() as session:
            self._load(session, session_id)
            return list(
                session.scalars(
                    select(Attempt.item_id)
                    .where(Attempt.session_id == session_id)
                    .order_by(Attempt.id)
                )
            )

    def has_attempted(self, session_id: UUID, item_id: UUID) -> bool:
        with self._scope() as session:
            found = session.scalar(
                select(Attempt.id).where(
                    Attempt.session_id == session_id, Attempt.item_id == item_id
                )
            )
        return found is not None

    def session_score(self, session_id: UUID) -> SessionScore:
        """Totals, percentage and rating movement of a session."""
        with self._scope() as session:
            quiz_session = self._load(session, session_id)
            total, correct = session.execute(
                select(
                    func.count(Attempt.id),
                    func.sum(case((Attempt.is_correct, 1), else_=0)),
                ).where(Attempt.session_id == session_id)
            ).one()
            first = session.scalar(
                select(Attempt.rating_before)
                .where(Attempt.session_id == session_id)
                .order_by(Attempt.id)
                .limit(1)
            )
            last = session.scalar(
                select(Attempt.rating_after)
                .where(Attempt.session_id == session_id)
                .order_by(Attempt.id.desc())
                .limit(1)
            )

        total = int(total or 0)
        correct = int(correct or 0)
        return SessionScore(
            session_id=session_id,
            status=quiz_session.status,
            total_attempts=total,
            correct_attempts=correct,
            percentage=round(correct / total * 100, 1) if total else 0.0,
            rating_start=first,
            rating_end=last,
            elapsed_seconds=_elapsed(quiz_session, utcnow()),
        )

    # ========================================
    # Helpers
    # ========================================

    def _finish(self, session_id: UUID, subject_id: str | None, status: str) -> QuizSession:
        with self._scope() as session:
            quiz_session = self._load(session, session_id, subject_id)
            if quiz_session.status not in ("active", "paused"):
                raise SessionStateError(f"Session {session_id} is already {quiz_session.status}")
            if quiz_session.status == "paused":
                self._accumulate_pause(quiz_session)
            quiz_session.status = status
            quiz_session.ended_at = utcnow()
        logger.info(f"Session {session_id} {status}")
        return quiz_session

    @staticmethod
    def _accumulate_pause(quiz_session: QuizSession) -> None:
        if quiz_session.paused_at is not None:
            paused_for = utcnow() - as_utc(quiz_session.paused_at)
            quiz_session.total_pause_seconds += max(0, int(paused_for.total_seconds()))
        quiz_session.paused_at = None

    @staticmethod
    def _load(session: Session, session_id: UUID, subject_id: str | None = None) -> QuizSession:
        quiz_session = session.get(QuizSession, session_id)
        if quiz_session is None:
            raise NotFoundError("session", session_id)
        if subject_id is not None and quiz_session.subject_id != subject_id:
            raise SessionStateError(f"Session {session_id} does not belong to {subject_id}")
        return quiz_session

    @contextmanager
    def _scope(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Session store failure: {exc}") from exc


def _elapsed(quiz_session: QuizSession, now: datetime) -> int:
    end = as_utc(quiz_session.ended_at) if quiz_session.ended_at else now
    seconds = (end - as_utc(quiz_session.started_at)).total_seconds()
    seconds -= quiz_session.total_pause_seconds
    if quiz_session.status == "paused" and quiz_session.paused_at is not None:
        seconds -= (now - as_utc(quiz_session.paused_at)).total_seconds()
    return max(0, int(seconds))
