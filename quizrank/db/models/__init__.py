# SQLAlchemy models
from .base import Base
from .quiz import (
    SESSION_STATUSES,
    SESSION_TYPES,
    Attempt,
    Category,
    Item,
    QuizSession,
)
from .rating import CategoryRating, OverallRating

__all__ = [
    # Base
    "Base",
    # Ratings
    "OverallRating",
    "CategoryRating",
    # Quiz
    "Category",
    "Item",
    "QuizSession",
    "Attempt",
    "SESSION_TYPES",
    "SESSION_STATUSES",
]
