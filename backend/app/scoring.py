from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from .places.types import PlaceCandidate

OPEN_NOW_BOOST = 0.1
COMMUNITY_BOOST_CAP = 0.3


@dataclass(frozen=True, slots=True)
class RankingWeights:
    distance: float = 0.4
    rating: float = 0.35
    reviews: float = 0.15


DEFAULT_WEIGHTS = RankingWeights()


@dataclass(frozen=True, slots=True)
class CommunityStats:
    average_rating: float
    rating_count: int


class CommunityStatsProvider(Protocol):
    async def stats_for(self, place_ids: Sequence[str]) -> Mapping[str, CommunityStats]: ...


class NoCommunityStats:
    async def stats_for(self, place_ids: Sequence[str]) -> Mapping[str, CommunityStats]:
        return {}


class StaticCommunityStats:
    def __init__(self, stats: Mapping[str, CommunityStats]) -> None:
        self._stats = dict(stats)

    async def stats_for(self, place_ids: Sequence[str]) -> Mapping[str, CommunityStats]:
        return {pid: self._stats[pid] for pid in place_ids if pid in self._stats}


@dataclass(slots=True)
class RankedResult:
    candidate: PlaceCandidate
    score: float
    explanation: str
    reasons: list[str]


@dataclass(slots=True)
class Recommendation:
    primary: RankedResult | None
    alternatives: list[RankedResult]

    @property
    def results(self) -> list[RankedResult]:
        return ([self.primary] if self.primary else []) + self.alternatives


def distance_score(distance_meters: float | None, max_distance: float) -> float:
    """Linear falloff to zero at max_distance; unknown distance scores zero."""
    if distance_meters is None or max_distance <= 0:
        return 0.0
    return 1.0 - min(max(distance_meters, 0.0) / max_distance, 1.0)


def rating_score(rating: float | None) -> float:
    if not rating:
        return 0.0
    return min(rating / 5.0, 1.0)


def review_confidence(count: int | None) -> float:
    if not count or count <= 0:
        return 0.0
    return min(math.log10(count + 1) / 3.0, 1.0)


def open_now_boost(open_now: bool | None) -> float:
    return OPEN_NOW_BOOST if open_now else 0.0


def community_boost(stats: CommunityStats | None) -> float:
    if stats is None or stats.rating_count <= 0:
        return 0.0
    average = min(max(stats.average_rating, 0.0) / 5.0, 1.0)
    confidence = min(math.log10(stats.rating_count + 1) / 2.0, 1.0)
    return average * confidence * COMMUNITY_BOOST_CAP


def score_distance(
    candidate: PlaceCandidate, max_distance: float, weights: RankingWeights
) -> tuple[float, list[str]]:
    if candidate.distance_meters is None:
        return 0.0, []
    score = weights.distance * distance_score(candidate.distance_meters, max_distance)
    return score, [f"{round(candidate.distance_meters)}m away"]


def score_rating(candidate: PlaceCandidate, weights: RankingWeights) -> tuple[float, list[str]]:
    if not candidate.rating:
        return 0.0, []
    return weights.rating * rating_score(candidate.rating), [f"{candidate.rating:.1f}★"]


def score_reviews(candidate: PlaceCandidate, weights: RankingWeights) -> tuple[float, list[str]]:
    return weights.reviews * review_confidence(candidate.review_count), []


def score_open_now(candidate: PlaceCandidate) -> tuple[float, list[str]]:
    boost = open_now_boost(candidate.open_now)
    return boost, ["open now"] if boost else []


def score_community(stats: CommunityStats | None) -> tuple[float, list[str]]:
    boost = community_boost(stats)
    return boost, ["popular with the community"] if boost > 0 else []


def build_explanation(name: str, reasons: Sequence[str]) -> str:
    if not reasons:
        return f"{name} matches your search."
    return f"{name} is {', '.join(reasons)}."


def score_candidate(
    candidate: PlaceCandidate,
    *,
    max_distance: float,
    stats: CommunityStats | None = None,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> RankedResult:
    total = 0.0
    reasons: list[str] = []
    for score, parts in (
        score_distance(candidate, max_distance, weights),
        score_rating(candidate, weights),
        score_reviews(candidate, weights),
        score_open_now(candidate),
        score_community(stats),
    ):
        total += score
        reasons.extend(parts)
    return RankedResult(
        candidate=candidate,
        score=total,
        explanation=build_explanation(candidate.name, reasons),
        reasons=reasons,
    )


def rank_candidates(
    candidates: Sequence[PlaceCandidate],
    *,
    max_distance: float,
    stats: Mapping[str, CommunityStats] | None = None,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> list[RankedResult]:
    """
    Score and sort descending; equal scores keep backend order.

    `stats` holds community aggregates fetched beforehand, keyed by place id.
    """
    stats = stats or {}
    scored = [
        score_candidate(c, max_distance=max_distance, stats=stats.get(c.place_id), weights=weights)
        for c in candidates
    ]
    return sorted(scored, key=lambda result: result.score, reverse=True)


def recommend(
    candidates: Sequence[PlaceCandidate],
    *,
    max_distance: float,
    stats: Mapping[str, CommunityStats] | None = None,
    alternatives: int = 2,
) -> Recommendation:
    ranked = rank_candidates(candidates, max_distance=max_distance, stats=stats)
    return pick_recommendation(ranked, alternatives=alternatives)


def pick_recommendation(ranked: Sequence[RankedResult], *, alternatives: int = 2) -> Recommendation:
    """Primary pick plus alternatives from an already ranked list."""
    if not ranked:
        return Recommendation(primary=None, alternatives=[])
    return Recommendation(primary=ranked[0], alternatives=list(ranked[1 : 1 + alternatives]))


REFINEMENTS = ("cheaper", "closer", "open_now", "top_rated")


def _price_key(candidate: PlaceCandidate) -> float:
    return float(candidate.price_level) if candidate.price_level is not None else math.inf


def _distance_key(candidate: PlaceCandidate) -> float:
    return candidate.distance_meters if candidate.distance_meters is not None else math.inf


def refine_candidates(
    candidates: Sequence[PlaceCandidate], refinement: str
) -> list[PlaceCandidate]:
    """
    Re-order a remembered list for a refinement request without searching again.

    `open_now` keeps only places known to be open; the others re-sort with
    unknown values last. Sorting is stable.
    """
    items = list(candidates)
    if refinement == "cheaper":
        return sorted(items, key=_price_key)
    if refinement == "closer":
        return sorted(items, key=_distance_key)
    if refinement == "open_now":
        return [c for c in items if c.open_now]
    if refinement == "top_rated":
        return sorted(items, key=lambda c: -(c.rating or 0.0))
    return items
