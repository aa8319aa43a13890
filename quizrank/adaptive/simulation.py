"""
Rating evolution simulator.

Replays the rating law for a synthetic learner with a fixed true ability
against a bank of items, choosing at every step the item whose difficulty
is closest to the learner's current estimate. Runs entirely in memory;
used for tuning the policy and by the `simulate` CLI command.
"""
from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass, field

from quizrank.adaptive.elo import ItemStats, SubjectStats, combined_update, expected_score
from quizrank.adaptive.errors import ValidationError
from quizrank.adaptive.policy import DEFAULT_POLICY, RatingPolicy


@dataclass
class SimulationStep:
    step: int
    item_index: int
    item_rating: int
    is_correct: bool
    expected_score: float
    rating_before: int
    rating_after: int


@dataclass
class SimulationResult:
    true_ability: float
    start_rating: int
    steps: list[SimulationStep] = field(default_factory=list)

    @property
    def final_rating(self) -> int:
        return self.steps[-1].rating_after if self.steps else self.start_rating

    @property
    def error(self) -> float:
        """Distance between the final estimate and the true ability."""
        return abs(self.final_rating - self.true_ability)

    @property
    def accuracy(self) -> float:
        if not self.steps:
            return 0.0
        return sum(s.is_correct for s in self.steps) / len(self.steps)

    @property
    def trajectory(self) -> list[int]:
        return [self.start_rating] + [s.rating_after for s in self.steps]


def simulate_learner(
    true_ability: float,
    item_difficulties: Sequence[float],
    attempts: int,
    rng: random.Random | None = None,
    policy: RatingPolicy = DEFAULT_POLICY,
    start_rating: int | None = None,
) -> SimulationResult:
    """
    Simulate a learner answering adaptively chosen items.

    The learner answers correctly with probability
    expected_score(true_ability, item_rating). Item ratings evolve with the
    same law as the learner's.

    Args:
        true_ability: Hidden rating of the synthetic learner
        item_difficulties: Initial ratings of the item bank
        attempts: Number of answered items
        rng: Random source (seed it for reproducible runs)
        policy: Rating law parameters
        start_rating: Initial estimate (defaults to the policy default)

    Returns:
        SimulationResult with one step per attempt
    """
    if not item_difficulties:
        raise ValidationError("item_difficulties must not be empty")
    if attempts < 0:
        raise ValidationError("attempts must not be negative")

    rng = rng or random.Random()
    start = start_rating if start_rating is not None else policy.default_rating
    items = [policy.clamp(d) for d in item_difficulties]
    times_rated = [0] * len(items)

    result = SimulationResult(true_ability=true_ability, start_rating=start)
    rating = start
    for step in range(attempts):
        index = min(range(len(items)), key=lambda i: (abs(items[i] - rating), rng.random()))
        correct = rng.random() < expected_score(true_ability, items[index])

        update = combined_update(
            SubjectStats(rating, step),
            ItemStats(items[index], times_rated[index]),
            correct,
            max_change=policy.max_change,
            floor=policy.rating_floor,
            ceiling=policy.rating_ceiling,
            smoothing=policy.volatility_smoothing,
        )
        result.steps.append(
            SimulationStep(
                step=step + 1,
                item_index=index,
                item_rating=items[index],
                is_correct=correct,
                expected_score=update.expected_score,
                rating_before=rating,
                rating_after=update.subject_new_rating,
            )
        )
        rating = update.subject_new_rating
        items[index] = update.item_new_rating
        times_rated[index] += 1

    return result
