"""Answer questions about the most recently shown list without searching again."""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from ..places.types import PlaceCandidate

ListQuestionKind = Literal[
    "compare", "top_n", "highest_rating", "closest", "most_reviews", "recommend_one", "vibe"
]

MIN_REFERENCE_SCORE = 0.35

WORD_NUMBERS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}
COMPARE_PATTERNS = (
    re.compile(r"compare\s+(.+?)\s+vs\.?\s+(.+)", re.IGNORECASE),
    re.compile(r"compare\s+(.+?)\s+and\s+(.+)", re.IGNORECASE),
    re.compile(r"(.+?)\s+vs\.?\s+(.+)", re.IGNORECASE),
    re.compile(r"between\s+(.+?)\s+and\s+(.+)", re.IGNORECASE),
)
TOP_N_RE = re.compile(r"\b(?:top|best)\s+(\d+|one|two|three|four|five|six|seven|eight|nine|ten)\b")
HIGHEST_RATING_RE = re.compile(
    r"\b(highest rating|best rating|top rated|highest rated|best rated)\b"
)
CLOSEST_RE = re.compile(r"\b(closest|nearest|near me|nearby)\b")
MOST_REVIEWS_RE = re.compile(r"\b(most reviews|most people|popular|most reviewed)\b")
RECOMMEND_ONE_RE = re.compile(
    r"\b(recommend one|pick one|choose one|which one should i choose|which should i choose"
    r"|which one should i pick|which is better|better one)\b"
)
VIBE_RE = re.compile(r"\b(date|romantic|family|working|quiet|work|study)\b")


@dataclass(frozen=True, slots=True)
class ListQuestion:
    kind: ListQuestionKind
    top_n: int | None = None
    compare_targets: tuple[str, str] | None = None


@dataclass(slots=True)
class ListAnswer:
    message: str
    places: list[PlaceCandidate] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PlaceReference:
    place: PlaceCandidate
    score: float


def _normalize(value: str) -> str:
    return re.sub(r"[^\w]+", " ", value.lower()).strip()


def _tokens(value: str) -> list[str]:
    return _normalize(value).split()


def _compare_targets(message: str) -> tuple[str, str] | None:
    for pattern in COMPARE_PATTERNS:
        match = pattern.search(message)
        if not match:
            continue
        left = match.group(1).strip().rstrip("?.!")
        right = match.group(2).strip().rstrip("?.!")
        if left and right:
            return left, right
    return None


def _top_n(normalized: str) -> int | None:
    match = TOP_N_RE.search(normalized)
    if not match:
        return None
    raw = match.group(1)
    if raw.isdigit():
        return max(1, int(raw))
    return WORD_NUMBERS.get(raw)


def detect_list_question(message: str) -> ListQuestion | None:
    """Recognise questions that rank or compare the last shown places."""
    normalized = _normalize(message)
    if not normalized:
        return None
    targets = _compare_targets(message)
    if targets:
        return ListQuestion("compare", compare_targets=targets)
    top_n = _top_n(normalized)
    if top_n:
        return ListQuestion("top_n", top_n=top_n)
    if HIGHEST_RATING_RE.search(normalized):
        return ListQuestion("highest_rating")
    if CLOSEST_RE.search(normalized):
        return ListQuestion("closest")
    if MOST_REVIEWS_RE.search(normalized):
        return ListQuestion("most_reviews")
    if RECOMMEND_ONE_RE.search(normalized):
        return ListQuestion("recommend_one")
    if VIBE_RE.search(normalized):
        return ListQuestion("vibe")
    return None


def format_distance(distance_meters: float | None) -> str:
    if distance_meters is None or math.isnan(distance_meters):
        return "distance unknown"
    if distance_meters < 1000:
        return f"{round(distance_meters)}m"
    return f"{distance_meters / 1000:.1f}km"


def format_rating(rating: float | None) -> str:
    return f"{rating:.1f}★" if rating is not None else "no rating"


def format_reviews(count: int | None) -> str:
    return f"{count} reviews" if count is not None else "no review count"


def _dice(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    left = Counter(a[i : i + 2] for i in range(len(a) - 1))
    right = Counter(b[i : i + 2] for i in range(len(b) - 1))
    overlap = sum((left & right).values())
    return 2 * overlap / (len(a) + len(b) - 2)


def _jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    left, right = set(a), set(b)
    union = left | right
    return len(left & right) / len(union) if union else 0.0


def resolve_place_reference(
    text: str, places: Sequence[PlaceCandidate], *, min_score: float = MIN_REFERENCE_SCORE
) -> PlaceReference | None:
    """
    Find the remembered place a user is referring to.

    Each name is scored by the best of exact match, containment (0.9), token
    Jaccard and character-bigram Dice; the highest score wins if it reaches
    `min_score`.
    """
    normalized = _normalize(text)
    if not normalized or not places:
        return None
    tokens = normalized.split()
    best: PlaceReference | None = None
    for place in places:
        name = _normalize(place.name)
        if not name:
            continue
        score = 0.0
        if normalized == name:
            score = 1.0
        elif normalized in name or name in normalized:
            score = 0.9
        score = max(score, _jaccard(tokens, name.split()), _dice(normalized, name))
        if best is None or score > best.score:
            best = PlaceReference(place, score)
    if best is None or best.score < min_score:
        return None
    return best


def _rating_key(place: PlaceCandidate) -> tuple[float, int]:
    return (place.rating if place.rating is not None else -1.0, place.review_count or 0)


def _distance_key(place: PlaceCandidate) -> float:
    return place.distance_meters if place.distance_meters is not None else math.inf


def _reviews_key(place: PlaceCandidate) -> int:
    return place.review_count if place.review_count is not None else -1


def _pick_score(place: PlaceCandidate) -> float:
    distance_penalty = (place.distance_meters or 0.0) / 2000
    return (place.rating or 0.0) * 2 + math.log10((place.review_count or 0) + 1) - distance_penalty


def _summary_line(place: PlaceCandidate) -> str:
    parts = [
        format_rating(place.rating),
        format_reviews(place.review_count),
        format_distance(place.distance_meters),
    ]
    if place.address:
        parts.append(place.address)
    return f"{place.name}: {' · '.join(parts)}"


def answer_list_question(question: ListQuestion, places: Sequence[PlaceCandidate]) -> ListAnswer:
    if not places:
        return ListAnswer(
            "I don't have a recent list to compare yet. "
            "Run a search and I can rank or compare the results for you."
        )
    items = list(places)

    if question.kind == "highest_rating":
        top = sorted(items, key=_rating_key, reverse=True)[0]
        if top.rating is None:
            return ListAnswer("I don't see ratings for these results yet. Want me to search again?")
        note = ""
        if top.review_count is not None and top.review_count < 5:
            note = " It only has a small number of reviews, so take it with a grain of salt."
        return ListAnswer(
            f"{top.name} has the highest rating at {top.rating:.1f}★.{note} Want another comparison?",
            [top],
        )

    if question.kind == "closest":
        known = [p for p in items if p.distance_meters is not None]
        if not known:
            return ListAnswer(
                "I don't have distance data for these results, so I can't tell which is closest. "
                "Want me to search again?"
            )
        top = min(known, key=_distance_key)
        return ListAnswer(
            f"{top.name} looks closest at about {format_distance(top.distance_meters)}. "
            "Want the next closest too?",
            [top],
        )

    if question.kind == "most_reviews":
        top = sorted(items, key=_reviews_key, reverse=True)[0]
        if top.review_count is None:
            return ListAnswer(
                "I don't have review counts for these results yet. Want me to search again?"
            )
        return ListAnswer(
            f"{top.name} has the most reviews ({top.review_count}). "
            "Want the top few by popularity?",
            [top],
        )

    if question.kind == "top_n":
        count = max(question.top_n or 3, 1)
        ordered = sorted(items, key=lambda p: (*_rating_key(p), -_distance_key(p)), reverse=True)
        selected = ordered[:count]
        return ListAnswer(
            f"Here are the top {count} options based on rating and reviews. "
            "Want me to narrow it down further?",
            selected,
        )

    if question.kind == "recommend_one":
        top = sorted(items, key=_pick_score, reverse=True)[0]
        if top.distance_meters is not None:
            distance_note = f"and it's about {format_distance(top.distance_meters)} away"
        else:
            distance_note = "and it's not too far"
        return ListAnswer(
            f"I'd go with {top.name}. It has a solid rating with enough reviews, {distance_note}. "
            "Want a couple of backups too?",
            [top],
        )

    if question.kind == "compare":
        if not question.compare_targets:
            return ListAnswer("Tell me the two places you'd like to compare.")
        left_ref = resolve_place_reference(question.compare_targets[0], items)
        right_ref = resolve_place_reference(question.compare_targets[1], items)
        if left_ref is None or right_ref is None:
            return ListAnswer(
                "I couldn't match both of those names to your last results. "
                "Try the exact place names?"
            )
        pair = [left_ref.place, right_ref.place]
        lean = sorted(pair, key=_rating_key, reverse=True)[0]
        lines = "\n".join(_summary_line(p) for p in pair)
        return ListAnswer(
            f"Here's a quick comparison:\n{lines}\n"
            f"Based on ratings and reviews, I'd lean toward {lean.name}. "
            "Want me to factor in distance instead?",
            pair,
        )

    top = sorted(items, key=_rating_key, reverse=True)[0]
    return ListAnswer(
        f"I can't reliably see ambience details from the map data, but {top.name} has one of "
        "the strongest ratings and reviews. Want me to prioritize rating, distance, "
        "or review count?",
        [top],
    )


def describe_place(place: PlaceCandidate) -> str:
    """Short fact line for a follow-up about one remembered place."""
    facts = [format_rating(place.rating), format_reviews(place.review_count)]
    if place.distance_meters is not None:
        facts.append(f"about {format_distance(place.distance_meters)} away")
    if place.open_now is True:
        facts.append("open now")
    elif place.open_now is False:
        facts.append("currently closed")
    text = f"{place.name}: {', '.join(facts)}."
    if place.address:
        text += f" Address: {place.address}."
    if place.maps_url:
        text += f" Map: {place.maps_url}"
    return text
