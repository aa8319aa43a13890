"""
ELO Rating Math.

Pure functions for the paired-comparison rating law used by the engine:
- Expected score (logistic, base 10, scale 400)
- Rating update with optional change cap and range clamp
- Experience-based volatility (K-factor) schedules for subjects and items
- Combined subject/item update for a single answered attempt

Nothing here touches the database and nothing here raises: out-of-range
inputs degrade numerically (clamping) instead of failing.
"""
from __future__ import annotations

from dataclasses import dataclass

DEFAULT_RATING = 500
RATING_FLOOR = 200
RATING_CEILING = 800

SUBJECT_K_MAX = 100
SUBJECT_K_MIN = 10

# (from_count, to_count, k_at_start, k_at_end)
SUBJECT_K_STAGES: tuple[tuple[int, int, int, int], ...] = (
    (44, 200, 100, 60),
    (200, 400, 60, 40),
    (400, 600, 40, 24),
    (600, 800, 24, 16),
    (800, 1000, 16, 10),
)

ITEM_K_HIGH = 40
ITEM_K_MEDIUM = 20
ITEM_K_LOW = 10


@dataclass(frozen=True)
class SubjectStats:
    """Rating state of the answering side (overall or category rating)."""

    rating: float
    sample_count: int


@dataclass(frozen=True)
class ItemStats:
    """Rating state of the item being answered."""

    rating: float
    times_rated: int


@dataclass(frozen=True)
class RatingUpdate:
    """Result of one combined subject/item update."""

    subject_new_rating: int
    item_new_rating: int
    expected_score: float
    actual_score: int
    subject_delta: int
    item_delta: int
    subject_new_volatility: int
    item_new_volatility: int


def clamp(value: float, floor: float = RATING_FLOOR, ceiling: float = RATING_CEILING) -> float:
    return max(floor, min(ceiling, value))


def expected_score(rating_a: float, rating_b: float) -> float:
    """
    Probability that side A beats side B.

    E = 1 / (1 + 10^((Rb - Ra) / 400))

    Args:
        rating_a: Rating of the side whose expectation is computed
        rating_b: Rating of the opponent

    Returns:
        Expected score in [0, 1]; exactly 0.5 for equal ratings
    """
    exponent = (rating_b - rating_a) / 400.0
    try:
        score = 1.0 / (1.0 + 10.0**exponent)
    except OverflowError:
        # Opponent is astronomically stronger
        score = 0.0
    return max(0.0, min(1.0, score))


def new_rating(
    current: float,
    k: float,
    actual: float,
    expected: float,
    max_change: float | None = None,
    floor: int = RATING_FLOOR,
    ceiling: int = RATING_CEILING,
) -> int:
    """
    Apply one ELO step: R' = R + K(S - E).

    Args:
        current: Current rating
        k: Volatility (K-factor) for this step
        actual: Observed score (1 win, 0 loss)
        expected: Expected score from expected_score()
        max_change: Optional cap on the magnitude of the change
        floor: Lowest allowed rating
        ceiling: Highest allowed rating

    Returns:
        New rating, rounded to the nearest integer and clamped to [floor, ceiling]
    """
    delta = k * (actual - expected)
    if max_change is not None and abs(delta) > max_change:
        delta = max_change if delta > 0 else -max_change
    return int(clamp(round(current + delta), floor, ceiling))


def subject_volatility(sample_count: int, smoothing: bool = True) -> int:
    """
    K-factor for a subject rating given its experience.

    New subjects move fast (K=100 through 44 attempts); the factor then
    decays by stage until it settles at K=10. With smoothing the factor is
    linearly interpolated inside each stage, otherwise it steps at the stage
    boundaries. Both variants are non-increasing in sample_count.
    """
    if sample_count <= SUBJECT_K_STAGES[0][0]:
        return SUBJECT_K_MAX
    if sample_count >= SUBJECT_K_STAGES[-1][1]:
        return SUBJECT_K_MIN

    for start, end, k_start, k_end in SUBJECT_K_STAGES:
        if start <= sample_count <= end:
            if not smoothing:
                return k_end
            progress = (sample_count - start) / (end - start)
            return round(k_start + (k_end - k_start) * progress)

    return SUBJECT_K_MIN


def item_volatility(times_rated: int) -> int:
    """K-factor for an item: coarse three-tier schedule, items settle faster than subjects."""
    if times_rated < 20:
        return ITEM_K_HIGH
    if times_rated < 50:
        return ITEM_K_MEDIUM
    return ITEM_K_LOW


def combined_update(
    subject: SubjectStats,
    item: ItemStats,
    is_correct: bool,
    max_change: float | None = None,
    floor: int = RATING_FLOOR,
    ceiling: int = RATING_CEILING,
    smoothing: bool = True,
) -> RatingUpdate:
    """
    Update both sides of one answered attempt.

    The item "wins" when the subject answers incorrectly, so its actual score
    is the complement of the subject's and its expectation is
    1 - expected_score(subject, item). The two updates are computed
    independently, each with the volatility implied by its own current count.

    Args:
        subject: Current subject rating and sample count
        item: Current item rating and times rated
        is_correct: Whether the subject answered correctly
        max_change: Optional per-step change cap applied to both sides
        floor: Lowest allowed rating
        ceiling: Highest allowed rating
        smoothing: Subject volatility variant (see subject_volatility)

    Returns:
        RatingUpdate with new ratings, deltas and next volatilities
    """
    expected = expected_score(subject.rating, item.rating)
    actual = 1 if is_correct else 0

    subject_k = subject_volatility(subject.sample_count, smoothing)
    item_k = item_volatility(item.times_rated)

    subject_after = new_rating(subject.rating, subject_k, actual, expected, max_change, floor, ceiling)
    item_after = new_rating(item.rating, item_k, 1 - actual, 1.0 - expected, max_change, floor, ceiling)

    return RatingUpdate(
        subject_new_rating=subject_after,
        item_new_rating=item_after,
        expected_score=expected,
        actual_score=actual,
        subject_delta=subject_after - round(subject.rating),
        item_delta=item_after - round(item.rating),
        subject_new_volatility=subject_volatility(subject.sample_count + 1, smoothing),
        item_new_volatility=item_volatility(item.times_rated + 1),
    )


# ========================================
# Reporting helpers
# ========================================


def item_reliability(times_rated: int) -> float:
    """How far an item's difficulty can be trusted (0.0 to 0.95)."""
    return min(0.95, max(0, times_rated) / 100)


def subject_confidence(sample_count: int, recent_performance: float = 0.5) -> float:
    """
    Confidence in a subject's rating (0.0 to 0.95).

    Experience saturates at 50 attempts and carries 70% of the weight;
    recent performance carries the remaining 30%.
    """
    experience = min(1.0, max(0, sample_count) / 50)
    return min(0.95, experience * 0.7 + recent_performance * 0.3)


def is_appropriate(subject_rating: float, item_rating: float, tolerance: float = 200) -> bool:
    return abs(subject_rating - item_rating) <= tolerance


def difficulty_level(rating: float, floor: int = RATING_FLOOR, ceiling: int = RATING_CEILING) -> str:
    """Coarse difficulty label for a rating: the scale split into thirds."""
    third = (ceiling - floor) / 3
    if rating < floor + third:
        return "easy"
    if rating < floor + 2 * third:
        return "medium"
    return "hard"


def difficulty_range(level: str, floor: int = RATING_FLOOR, ceiling: int = RATING_CEILING) -> tuple[float, float]:
    """Inclusive-exclusive rating range for a difficulty label (hard includes the ceiling)."""
    third = (ceiling - floor) / 3
    ranges = {
        "easy": (floor, floor + third),
        "medium": (floor + third, floor + 2 * third),
        "hard": (floor + 2 * third, ceiling + 1),
    }
    return ranges[level]
