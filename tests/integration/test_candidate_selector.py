"""
Integration tests for CandidateSelector.

Seeded catalog (conftest.py): fractions 300/500/700, geometry 500/650,
statistics without items. Jitter is disabled, so rankings are deterministic.
"""

import random

import pytest
from sqlalchemy.exc import OperationalError

from quizrank.adaptive.candidate_selector import CandidateSelector
from quizrank.adaptive.errors import SelectionError, ValidationError
from quizrank.adaptive.policy import RatingPolicy
from quizrank.adaptive.rating_store import RatingStore
from quizrank.db.database import session_scope
from quizrank.db.models import Item

pytestmark = pytest.mark.integration


@pytest.fixture
def selector_scope(session_factory, policy, seeded):
    def _open(selector_policy=None, rng=None):
        return _SelectorScope(session_factory, selector_policy or policy, rng)

    return _open


class _SelectorScope:
    def __init__(self, factory, policy, rng):
        self._scope = session_scope(factory)
        self._policy = policy
        self._rng = rng

    def __enter__(self) -> CandidateSelector:
        session = self._scope.__enter__()
        return CandidateSelector(session, self._policy, self._rng or random.Random(0))

    def __exit__(self, *exc):
        return self._scope.__exit__(*exc)


class TestRank:
    def test_all_items_ranked_for_fresh_subject(self, selector_scope, quiz_session, seeded):
        with selector_scope() as selector:
            ranked = selector.rank("alice", quiz_session.id)

        assert {c.item_id for c in ranked} == set(seeded.items.values())
        # Every seeded item is within 200 of 500
        assert all(c.appropriateness == 1.0 for c in ranked)
        assert all(c.composite == pytest.approx(0.9) for c in ranked)
        # Ties broken by item id
        assert [str(c.item_id) for c in ranked] == sorted(str(c.item_id) for c in ranked)

    def test_category_weight_wins(self, selector_scope, quiz_session, seeded):
        geometry = seeded.categories["geometry"]
        with selector_scope() as selector:
            best = selector.select("alice", quiz_session.id, category_weights={geometry: 2.0})

        assert best.category_id == geometry
        assert best.relevance == 2.0
        assert best.composite == pytest.approx(1.2)

    def test_uses_category_rating_over_overall(self, selector_scope, quiz_session, seeded, session_factory, policy):
        with session_scope(session_factory) as session:
            RatingStore(session, policy).update(
                "alice", 800, 100, category_id=seeded.categories["fractions"]
            )

        with selector_scope() as selector:
            ranked = {c.item_id: c for c in selector.rank("alice", quiz_session.id)}

        f_easy = ranked[seeded.items["f_easy"]]
        assert f_easy.subject_rating == 800
        assert f_easy.appropriateness == pytest.approx(0.1)
        # Geometry has no category rating yet: falls back to the overall 500
        assert ranked[seeded.items["g_mid"]].subject_rating == 500

    def test_excludes_items_attempted_in_session(self, selector_scope, rating_engine, quiz_session, seeded):
        rating_engine.record_attempt(quiz_session.id, seeded.items["f_mid"], "alice", "one half")

        with selector_scope() as selector:
            ranked = selector.rank("alice", quiz_session.id)

        assert seeded.items["f_mid"] not in {c.item_id for c in ranked}
        assert len(ranked) == len(seeded.items) - 1

    def test_difficulty_band(self, selector_scope, quiz_session, seeded):
        with selector_scope() as selector:
            hard = selector.rank("alice", quiz_session.id, target_difficulty="hard")
            easy = selector.rank("alice", quiz_session.id, target_difficulty="easy")

        assert {c.item_id for c in hard} == {seeded.items["f_hard"], seeded.items["g_hard"]}
        assert {c.item_id for c in easy} == {seeded.items["f_easy"]}

    def test_pool_size_cap_keeps_closest_items(self, selector_scope, quiz_session, seeded):
        with selector_scope(RatingPolicy(weight_jitter=0.0, pool_size=2)) as selector:
            ranked = selector.rank("alice", quiz_session.id)

        assert {c.item_id for c in ranked} == {seeded.items["f_mid"], seeded.items["g_mid"]}

    def test_explicit_candidates(self, selector_scope, quiz_session, session_factory, seeded):
        with session_scope(session_factory) as session:
            far = session.get(Item, seeded.items["f_hard"])
            far.difficulty_value = 800

        with selector_scope() as selector:
            item = selector.session.get(Item, seeded.items["f_hard"])
            scored = selector.select("alice", quiz_session.id, candidates=[item])

        assert scored.item_id == seeded.items["f_hard"]
        assert scored.appropriateness == pytest.approx(0.25)

    def test_limit(self, selector_scope, quiz_session):
        with selector_scope() as selector:
            assert len(selector.rank("alice", quiz_session.id, limit=3)) == 3

    def test_unknown_target_difficulty(self, selector_scope, quiz_session):
        with pytest.raises(ValidationError):
            with selector_scope() as selector:
                selector.rank("alice", quiz_session.id, target_difficulty="brutal")


class TestEmptyPool:
    def test_explicit_empty_pool(self, selector_scope, quiz_session):
        with selector_scope() as selector:
            assert selector.select("alice", quiz_session.id, candidates=[]) is None

    def test_exhausted_session(self, selector_scope, rating_engine, quiz_session, seeded):
        for item_id in seeded.items.values():
            rating_engine.record_attempt(quiz_session.id, item_id, "alice", "?")

        with selector_scope() as selector:
            assert selector.select("alice", quiz_session.id) is None

    def test_database_failure_is_not_an_empty_pool(self, selector_scope, quiz_session, monkeypatch):
        def broken(self, subject_id):
            raise OperationalError("SELECT", {}, Exception("connection reset"))

        monkeypatch.setattr(RatingStore, "category_values", broken)

        with pytest.raises(SelectionError) as exc_info:
            with selector_scope() as selector:
                selector.select("alice", quiz_session.id)
        assert exc_info.value.retryable


class TestCategoryPriorities:
    def test_fresh_subject(self, selector_scope, seeded):
        with selector_scope() as selector:
            priorities = selector.category_priorities("alice")

        assert [p.slug for p in priorities] == ["fractions", "geometry", "statistics"]
        fractions, geometry, statistics = priorities
        assert fractions.improvement == pytest.approx(0.5)
        assert fractions.priority == pytest.approx(0.6)
        assert fractions.available_items == 3
        assert fractions.recommended_action == "Explore fundamentals"
        assert fractions.recommended_difficulty == "medium"
        assert statistics.priority == 0.0
        assert statistics.recommended_action == "No items available"

    def test_lower_rating_ranks_first(self, selector_scope, session_factory, policy, seeded):
        with session_scope(session_factory) as session:
            store = RatingStore(session, policy)
            store.update("alice", 700, 100, category_id=seeded.categories["fractions"])
            store.update("alice", 300, 100, category_id=seeded.categories["geometry"])

        with selector_scope() as selector:
            priorities = selector.category_priorities("alice")

        assert priorities[0].slug == "geometry"
        assert priorities[0].improvement == pytest.approx(500 / 600)
        assert priorities[0].recommended_difficulty == "easy"

    def test_experience_boost_expires(self, selector_scope, seeded):
        policy = RatingPolicy(weight_jitter=0.0, inexperience_threshold=0)
        with selector_scope(policy) as selector:
            fractions = selector.category_priorities("alice")[0]
        assert fractions.priority == pytest.approx(0.5)

    def test_unavailable_factor(self, selector_scope, seeded):
        policy = RatingPolicy(weight_jitter=0.0, unavailable_factor=0.1)
        with selector_scope(policy) as selector:
            statistics = selector.category_priorities("alice")[-1]
        assert statistics.slug == "statistics"
        assert statistics.priority == pytest.approx(0.06)


class TestSelectNextBest:
    def test_targets_top_priority_category_and_band(self, selector_scope, quiz_session, seeded):
        with selector_scope() as selector:
            best = selector.select_next_best("alice", quiz_session.id)

        # fractions ties geometry on priority and wins on id; band medium holds only f_mid
        assert best.item_id == seeded.items["f_mid"]

    def test_explicit_target(self, selector_scope, quiz_session, seeded):
        with selector_scope() as selector:
            best = selector.select_next_best(
                "alice", quiz_session.id, target_category_id=seeded.categories["geometry"]
            )
        assert best.item_id == seeded.items["g_mid"]

    def test_full_session(self, selector_scope, rating_engine, seeded):
        short = rating_engine.sessions.create_session("alice", max_items=1)
        rating_engine.record_attempt(short.id, seeded.items["g_mid"], "alice", "180")

        with selector_scope() as selector:
            assert not selector.has_capacity(short.id)
            assert selector.select_next_best("alice", short.id) is None


class TestLearnerHistory:
    def test_mastered_items_stay_out_of_new_sessions(self, selector_scope, rating_engine, quiz_session, seeded):
        rating_engine.record_attempt(quiz_session.id, seeded.items["f_mid"], "alice", "one half")
        later = rating_engine.sessions.create_session("alice")

        with selector_scope() as selector:
            ranked = selector.rank("alice", later.id)

        assert seeded.items["f_mid"] not in {c.item_id for c in ranked}
        assert len(ranked) == len(seeded.items) - 1

    def test_other_subjects_are_unaffected(self, selector_scope, rating_engine, quiz_session, seeded):
        rating_engine.record_attempt(quiz_session.id, seeded.items["f_mid"], "alice", "one half")
        bobs = rating_engine.sessions.create_session("bob")

        with selector_scope() as selector:
            ranked = selector.rank("bob", bobs.id)

        assert len(ranked) == len(seeded.items)

    def test_retirement_can_be_disabled(self, selector_scope, rating_engine, quiz_session, seeded):
        rating_engine.record_attempt(quiz_session.id, seeded.items["f_mid"], "alice", "one half")
        later = rating_engine.sessions.create_session("alice")

        keep_all = RatingPolicy(weight_jitter=0.0, retire_mastered=False)
        with selector_scope(keep_all) as selector:
            ranked = selector.rank("alice", later.id)

        assert seeded.items["f_mid"] in {c.item_id for c in ranked}

    def test_missed_items_enter_the_pool_first(self, selector_scope, rating_engine, quiz_session, seeded):
        rating_engine.record_attempt(quiz_session.id, seeded.items["g_hard"], "alice", "90")
        later = rating_engine.sessions.create_session("alice")

        # A one-item pool would otherwise hold the item closest to alice's rating
        with selector_scope(RatingPolicy(weight_jitter=0.0, pool_size=1)) as selector:
            ranked = selector.rank("alice", later.id)

        assert [c.item_id for c in ranked] == [seeded.items["g_hard"]]
        assert ranked[0].queue_priority == 1

    def test_fresh_items_have_no_queue_priority(self, selector_scope, quiz_session):
        with selector_scope() as selector:
            ranked = selector.rank("alice", quiz_session.id)

        assert all(c.queue_priority == 0 for c in ranked)
        assert all(c.item_reliability == 0.0 for c in ranked)
