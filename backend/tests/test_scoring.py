import asyncio
import math

import pytest
from backend.app.places.types import PlaceCandidate
from backend.app.scoring import (
    CommunityStats,
    StaticCommunityStats,
    community_boost,
    distance_score,
    pick_recommendation,
    rank_candidates,
    rating_score,
    recommend,
    refine_candidates,
    review_confidence,
    score_candidate,
)

MAX_DISTANCE = 3000.0


def _place(place_id, *, distance=None, rating=None, reviews=None, open_now=None, price=None):
    return PlaceCandidate(
        place_id=place_id,
        name=place_id.title(),
        rating=rating,
        review_count=reviews,
        open_now=open_now,
        price_level=price,
        distance_meters=distance,
    )


class TestComponentScores:
    def test_distance_score_falls_off_linearly(self):
        assert distance_score(0, MAX_DISTANCE) == 1.0
        assert distance_score(1500, MAX_DISTANCE) == pytest.approx(0.5)
        assert distance_score(9000, MAX_DISTANCE) == 0.0
        assert distance_score(None, MAX_DISTANCE) == 0.0

    def test_rating_and_review_scores(self):
        assert rating_score(5.0) == 1.0
        assert rating_score(None) == 0.0
        assert review_confidence(0) == 0.0
        assert review_confidence(999) == pytest.approx(1.0)
        assert review_confidence(99) == pytest.approx(2 / 3)

    def test_community_boost_is_capped(self):
        assert community_boost(None) == 0.0
        assert community_boost(CommunityStats(average_rating=4.0, rating_count=0)) == 0.0
        assert community_boost(CommunityStats(average_rating=5.0, rating_count=10_000)) == pytest.approx(0.3)


class TestRanking:
    def test_closer_place_ranks_higher_all_else_equal(self):
        near = _place("near", distance=200, rating=4.2, reviews=80)
        far = _place("far", distance=2500, rating=4.2, reviews=80)
        ranked = rank_candidates([far, near], max_distance=MAX_DISTANCE)
        assert [r.candidate.place_id for r in ranked] == ["near", "far"]

    def test_better_rated_place_ranks_higher_all_else_equal(self):
        good = _place("good", distance=800, rating=4.8, reviews=80)
        poor = _place("poor", distance=800, rating=3.1, reviews=80)
        ranked = rank_candidates([poor, good], max_distance=MAX_DISTANCE)
        assert [r.candidate.place_id for r in ranked] == ["good", "poor"]

    def test_open_now_adds_boost(self):
        closed = score_candidate(_place("a", distance=500, rating=4.0), max_distance=MAX_DISTANCE)
        opened = score_candidate(
            _place("a", distance=500, rating=4.0, open_now=True), max_distance=MAX_DISTANCE
        )
        assert opened.score - closed.score == pytest.approx(0.1)
        assert "open now" in opened.reasons

    def test_equal_scores_keep_backend_order(self):
        items = [_place(name, distance=1000, rating=4.0) for name in ("first", "second", "third")]
        ranked = rank_candidates(items, max_distance=MAX_DISTANCE)
        assert [r.candidate.place_id for r in ranked] == ["first", "second", "third"]

    def test_community_stats_can_reorder(self):
        a = _place("a", distance=1000, rating=4.0)
        b = _place("b", distance=1000, rating=4.0)
        provider = StaticCommunityStats({"b": CommunityStats(average_rating=4.9, rating_count=40)})
        stats = asyncio.run(provider.stats_for(["a", "b"]))
        ranked = rank_candidates([a, b], max_distance=MAX_DISTANCE, stats=stats)
        assert ranked[0].candidate.place_id == "b"
        assert "popular with the community" in ranked[0].reasons

    def test_explanation_lists_known_facts(self):
        result = score_candidate(
            _place("noodle", distance=420.4, rating=4.56, open_now=True), max_distance=MAX_DISTANCE
        )
        assert result.explanation == "Noodle is 420m away, 4.6★, open now."
        bare = score_candidate(_place("mystery"), max_distance=MAX_DISTANCE)
        assert bare.explanation == "Mystery matches your search."
        assert bare.score == 0.0

    def test_recommend_primary_and_alternatives(self):
        items = [_place(f"p{i}", distance=100 * i, rating=4.0) for i in range(1, 6)]
        picks = recommend(items, max_distance=MAX_DISTANCE)
        assert picks.primary.candidate.place_id == "p1"
        assert [r.candidate.place_id for r in picks.alternatives] == ["p2", "p3"]
        assert len(picks.results) == 3
        assert recommend([], max_distance=MAX_DISTANCE).results == []

    def test_pick_recommendation_keeps_ranked_order(self):
        ranked = rank_candidates(
            [_place("far", distance=2500, rating=4.0), _place("near", distance=100, rating=4.0)],
            max_distance=MAX_DISTANCE,
        )
        picks = pick_recommendation(ranked, alternatives=1)
        assert picks.primary is ranked[0]
        assert picks.alternatives == [ranked[1]]
        assert pick_recommendation([]).primary is None


class TestRefine:
    ITEMS = [
        _place("pricey", distance=300, rating=4.9, price=4, open_now=False),
        _place("cheap", distance=1200, rating=3.9, price=1, open_now=True),
        _place("unknown", distance=None, rating=None, price=None, open_now=None),
        _place("mid", distance=700, rating=4.4, price=2, open_now=True),
    ]

    def test_cheaper_puts_unknown_price_last(self):
        ordered = refine_candidates(self.ITEMS, "cheaper")
        assert [c.place_id for c in ordered] == ["cheap", "mid", "pricey", "unknown"]

    def test_closer(self):
        ordered = refine_candidates(self.ITEMS, "closer")
        assert [c.place_id for c in ordered] == ["pricey", "mid", "cheap", "unknown"]

    def test_open_now_filters(self):
        assert [c.place_id for c in refine_candidates(self.ITEMS, "open_now")] == ["cheap", "mid"]

    def test_top_rated(self):
        ordered = refine_candidates(self.ITEMS, "top_rated")
        assert [c.place_id for c in ordered] == ["pricey", "mid", "cheap", "unknown"]

    def test_unknown_refinement_keeps_order(self):
        assert refine_candidates(self.ITEMS, "quieter") == self.ITEMS


def test_scores_are_finite():
    for item in TestRefine.ITEMS:
        assert math.isfinite(score_candidate(item, max_distance=MAX_DISTANCE).score)
