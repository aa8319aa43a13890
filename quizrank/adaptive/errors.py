"""
Error taxonomy for the rating engine.

- ValidationError: malformed input, rejected before any computation
- NotFoundError: unknown item, session, subject or category
- SessionStateError: session not active, not owned by the subject, or full
- ConflictError: the (session, item) pair was already answered
- PersistenceError: transaction or commit failure; always rolled back, retryable
- SelectionError: the selection algorithm itself failed (distinct from "no candidates")

RatingMath never raises and missing rating rows are initialized, not reported.
"""
from __future__ import annotations


class RatingEngineError(Exception):
    """Base class for all engine errors."""

    retryable: bool = False


class ValidationError(RatingEngineError):
    pass


class NotFoundError(RatingEngineError):
    def __init__(self, kind: str, identifier: object):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class SessionStateError(RatingEngineError):
    pass


class ConflictError(RatingEngineError):
    """Raised when an attempt for the same (session, item) pair already exists."""

    def __init__(self, session_id: object, item_id: object):
        self.session_id = session_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} already answered in session {session_id}")


class PersistenceError(RatingEngineError):
    retryable = True


class SelectionError(RatingEngineError):
    retryable = True
