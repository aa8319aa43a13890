"""
Adaptive Rating Engine.

ELO-style paired-comparison ratings for subjects and items, with
difficulty-matched item selection.

Components:
- elo: Pure rating math (expected score, update law, volatility schedules)
- RatingStore: Overall and per-category rating persistence
- CandidateSelector: Candidate scoring, ranking and category priorities
- AttemptRecorder: Atomic, idempotent attempt recording
- SessionManager: Quiz session lifecycle and scoring
- RatingEngine: Main orchestration layer
"""
from quizrank.adaptive.attempt_recorder import (
    AttemptOutcome,
    AttemptRecorder,
    RatingChange,
    normalize_answer,
)
from quizrank.adaptive.candidate_selector import (
    CandidateSelector,
    CategoryPriority,
    ScoredCandidate,
)
from quizrank.adaptive.engine import RatingEngine
from quizrank.adaptive.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    RatingEngineError,
    SelectionError,
    SessionStateError,
    ValidationError,
)
from quizrank.adaptive.policy import DEFAULT_POLICY, RatingPolicy
from quizrank.adaptive.rating_store import (
    CategoryRatingSummary,
    ItemHistory,
    PerformanceSummary,
    RatingPoint,
    RatingStore,
)
from quizrank.adaptive.session_manager import SessionManager, SessionScore
from quizrank.adaptive.simulation import SimulationResult, simulate_learner

__all__ = [
    # Engine
    "RatingEngine",
    "RatingPolicy",
    "DEFAULT_POLICY",
    # Components
    "RatingStore",
    "CandidateSelector",
    "AttemptRecorder",
    "SessionManager",
    # Results
    "AttemptOutcome",
    "RatingChange",
    "ScoredCandidate",
    "CategoryPriority",
    "CategoryRatingSummary",
    "ItemHistory",
    "PerformanceSummary",
    "RatingPoint",
    "SessionScore",
    "SimulationResult",
    # Helpers
    "normalize_answer",
    "simulate_learner",
    # Errors
    "RatingEngineError",
    "ValidationError",
    "NotFoundError",
    "SessionStateError",
    "ConflictError",
    "PersistenceError",
    "SelectionError",
]
