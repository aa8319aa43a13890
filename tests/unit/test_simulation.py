"""
Unit tests for the offline rating simulator.
"""

import random

import pytest

from quizrank.adaptive.errors import ValidationError
from quizrank.adaptive.policy import RatingPolicy
from quizrank.adaptive.simulation import simulate_learner


def item_bank(seed: int = 1, size: int = 80) -> list[float]:
    rng = random.Random(seed)
    return [rng.uniform(200, 800) for _ in range(size)]


class TestSimulateLearner:
    def test_reproducible_with_seed(self):
        first = simulate_learner(650, item_bank(), 50, rng=random.Random(7))
        second = simulate_learner(650, item_bank(), 50, rng=random.Random(7))

        assert first.trajectory == second.trajectory

    def test_trajectory_shape(self):
        result = simulate_learner(650, item_bank(), 30, rng=random.Random(3))

        assert len(result.steps) == 30
        assert len(result.trajectory) == 31
        assert result.trajectory[0] == 500
        assert [s.step for s in result.steps] == list(range(1, 31))

    def test_ratings_stay_in_bounds(self):
        for ability in (100, 900):
            result = simulate_learner(ability, item_bank(), 150, rng=random.Random(11))
            assert all(200 <= r <= 800 for r in result.trajectory)

    def test_strong_learner_rises(self):
        result = simulate_learner(780, item_bank(), 200, rng=random.Random(5))
        assert result.final_rating > 600

    def test_weak_learner_falls(self):
        result = simulate_learner(220, item_bank(), 200, rng=random.Random(5))
        assert result.final_rating < 400

    def test_each_step_follows_previous(self):
        result = simulate_learner(500, item_bank(), 40, rng=random.Random(2))
        for previous, current in zip(result.steps, result.steps[1:]):
            assert current.rating_before == previous.rating_after

    def test_zero_attempts(self):
        result = simulate_learner(700, [500], 0, start_rating=420)

        assert result.final_rating == 420
        assert result.accuracy == 0.0
        assert result.error == 280

    def test_policy_bounds(self):
        policy = RatingPolicy(default_rating=1200, rating_floor=100, rating_ceiling=2000)
        result = simulate_learner(1900, [1800, 1900, 2000], 100, rng=random.Random(1), policy=policy)
        assert all(100 <= r <= 2000 for r in result.trajectory)

    def test_empty_bank_rejected(self):
        with pytest.raises(ValidationError):
            simulate_learner(500, [], 10)

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValidationError):
            simulate_learner(500, [500], -1)
