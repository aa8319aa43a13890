"""
Rating Policy.

Immutable tuning for the rating law, candidate selection and category
priorities. Built once at startup (usually from Settings) and injected into
RatingStore, CandidateSelector and AttemptRecorder, so no component reads
configuration or schema metadata on its own.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from quizrank.adaptive.elo import DEFAULT_RATING, RATING_CEILING, RATING_FLOOR

if TYPE_CHECKING:
    from config import Settings


@dataclass(frozen=True)
class RatingPolicy:
    """Deployment-tunable parameters of the engine."""

    # Rating law
    default_rating: int = DEFAULT_RATING
    rating_floor: int = RATING_FLOOR
    rating_ceiling: int = RATING_CEILING
    max_change: int | None = None
    volatility_smoothing: bool = True

    # Candidate scoring
    tolerance: int = 200
    decay_span: int = 400
    appropriateness_floor: float = 0.1
    weight_appropriateness: float = 0.6
    weight_relevance: float = 0.3
    weight_jitter: float = 0.1
    pool_size: int = 50
    target_category_weight: float = 2.0
    retire_mastered: bool = True
    max_queue_priority: int = 3

    # Category priorities
    inexperience_threshold: int = 10
    inexperience_boost: float = 1.2
    unavailable_factor: float = 0.0

    def clamp(self, value: float) -> int:
        return int(max(self.rating_floor, min(self.rating_ceiling, round(value))))

    @classmethod
    def from_settings(cls, settings: Settings) -> RatingPolicy:
        """Resolve the policy from application settings."""
        return cls(
            default_rating=settings.rating_default,
            rating_floor=settings.rating_floor,
            rating_ceiling=settings.rating_ceiling,
            max_change=settings.rating_max_change,
            volatility_smoothing=settings.volatility_smoothing,
            tolerance=settings.selection_tolerance,
            decay_span=settings.selection_decay_span,
            appropriateness_floor=settings.selection_appropriateness_floor,
            weight_appropriateness=settings.selection_weight_appropriateness,
            weight_relevance=settings.selection_weight_relevance,
            weight_jitter=settings.selection_weight_jitter,
            pool_size=settings.selection_pool_size,
            target_category_weight=settings.selection_target_category_weight,
            retire_mastered=settings.selection_retire_mastered,
            max_queue_priority=settings.selection_max_queue_priority,
            inexperience_threshold=settings.priority_inexperience_threshold,
            inexperience_boost=settings.priority_inexperience_boost,
            unavailable_factor=settings.priority_unavailable_factor,
        )


DEFAULT_POLICY = RatingPolicy()
