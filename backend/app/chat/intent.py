from __future__ import annotations

import logging
import re
import string
from dataclasses import dataclass, field
from typing import Literal

from .. import llm_intent
from ..deadline import TurnDeadline
from ..metrics import llm_fallbacks_total
from ..places.search import has_food_intent
from ..settings import settings
from .list_qna import ListQuestion, detect_list_question

logger = logging.getLogger(__name__)

IntentName = Literal[
    "smalltalk",
    "food_search",
    "refine",
    "place_followup",
    "list_question",
    "needs_location",
]
IntentSource = Literal["heuristic", "llm", "fallback"]
Budget = Literal["cheap", "mid", "high"]

GREETING_PHRASES = frozenset(
    {
        "hi", "hello", "hey", "yo", "sup", "ok", "okay", "thanks", "thank you", "thx",
        "good morning", "good afternoon", "good evening", "good night",
        "hola", "bonjour", "mingalaba", "mingalarbar",
        "မင်္ဂလာပါ", "ဟယ်လို", "ကျေးဇူးတင်ပါတယ်",
    }
)

GREETING_PARTICLES = frozenset(
    {
        "there", "friend", "buddy", "pal", "bro", "sis", "sir", "madam", "please",
        "ya", "yeah", "hey", "hi", "hello", "ok", "okay", "thanks", "thank", "you",
    }
)

GENERIC_FOOD_TERMS = frozenset(
    {
        "food", "foods", "restaurant", "restaurants", "place", "places", "eat", "eats",
        "eating", "hungry", "meal", "meals", "lunch", "dinner", "breakfast", "snack",
        "cuisine", "စားသောက်ဆိုင်", "စားသောက်", "အစားအစာ",
    }
)

STOPWORDS = GENERIC_FOOD_TERMS | GREETING_PARTICLES | frozenset(
    {
        "near", "nearby", "around", "here", "there", "in", "at", "for", "to", "the",
        "a", "an", "my", "me", "please", "any", "some", "i", "we", "you", "want",
        "need", "looking", "find", "recommend",
    }
)

SMALLTALK_RE = re.compile(
    r"\b(thanks|thank you|hello|hi|hey|how are you|what do you like|who are you)\b"
)
REFINE_PATTERNS: tuple[tuple[re.Pattern[str], str | None], ...] = (
    (re.compile(r"\b(cheaper|less expensive|more affordable)\b"), "cheaper"),
    (re.compile(r"\b(closer|nearer)\b"), "closer"),
    (re.compile(r"\b(open now|still open|open right now)\b"), "open_now"),
    (re.compile(r"\b(better rated|higher rated|top rated)\b"), "top_rated"),
    (re.compile(r"\b(more like|spicy|spicier|family|quiet|quieter|not crowded)\b"), None),
)
FOLLOWUP_RE = re.compile(
    r"^(?:tell me (?:more )?about|how about|what about|details (?:on|for)|more about)\s+(?P<name>.+?)\??$"
    r"|^is\s+(?P<name2>.+?)\s+(?:any\s+)?good\??$"
)
LOCATION_HINT_RE = re.compile(r"\b(near|nearby|around)\b|\b(in|at)\s+[a-z]")
SEARCH_VERB_RE = re.compile(r"\b(find|recommend|suggest|where|best|top|craving|want|looking for)\b")

CUISINE_TERMS = (
    "dim sum", "hotpot", "hot pot", "sushi", "pizza", "noodles", "noodle", "ramen",
    "coffee", "cafe", "thai", "korean", "indian", "burmese", "burger", "bbq",
    "seafood", "mohinga", "shan", "chinese", "japanese", "tea",
)
BUDGET_TERMS: tuple[tuple[re.Pattern[str], Budget], ...] = (
    (re.compile(r"\b(cheap|budget|affordable|inexpensive)\b"), "cheap"),
    (re.compile(r"\b(mid|moderate|mid-range|midrange)\b"), "mid"),
    (re.compile(r"\b(expensive|high-end|fancy|upscale|luxury)\b"), "high"),
)
VIBE_TERMS = ("cozy", "quiet", "romantic", "family-friendly", "family", "lively", "date")
DIETARY_TERMS = ("vegan", "vegetarian", "halal", "gluten-free")
KM_RE = re.compile(r"(\d+(?:\.\d+)?)\s*km\b")
METERS_RE = re.compile(r"(\d+)\s*m\b")

_PUNCTUATION = str.maketrans({ch: " " for ch in string.punctuation if ch not in "-'"})


@dataclass(slots=True)
class Extraction:
    cuisine: str | None = None
    dish: str | None = None
    budget: Budget | None = None
    place_name: str | None = None
    vibe: str | None = None
    dietary: str | None = None
    radius_m: int | None = None


@dataclass(slots=True)
class IntentMemory:
    """What the classifier may know about the conversation so far."""

    has_location: bool = False
    last_intent: str | None = None
    last_place_names: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ClassifiedIntent:
    intent: IntentName
    extracted: Extraction = field(default_factory=Extraction)
    source: IntentSource = "heuristic"
    refinement: str | None = None
    list_question: ListQuestion | None = None


def normalize_text(text: str | None) -> str:
    lowered = (text or "").strip().lower()
    return re.sub(r"\s+", " ", lowered.translate(_PUNCTUATION)).strip()


def is_greeting(text: str | None) -> bool:
    """True for a bare greeting or thanks, optionally padded with particles."""
    compact = normalize_text(text)
    if not compact:
        return False
    if compact in GREETING_PHRASES:
        return True
    tokens = compact.split()
    return all(token in GREETING_PARTICLES for token in tokens)


def _filter_tokens(value: str) -> list[str]:
    return [token for token in value.split() if token and token not in STOPWORDS]


def is_too_vague_for_search(text: str | None) -> bool:
    compact = normalize_text(text)
    if not compact or len(compact) < 3:
        return True
    if is_greeting(compact) or compact in GENERIC_FOOD_TERMS:
        return True
    filtered = _filter_tokens(compact)
    if not filtered:
        return True
    return len(filtered) == 1 and filtered[0] in GENERIC_FOOD_TERMS


def extract_search_keyword(text: str | None) -> str | None:
    """Strip greetings, filler and location words; None when nothing specific remains."""
    compact = normalize_text(text)
    if not compact:
        return None
    for phrase in sorted(GREETING_PHRASES, key=len, reverse=True):
        compact = re.sub(rf"(?<!\w){re.escape(phrase)}(?!\w)", " ", compact)
    keyword = " ".join(_filter_tokens(compact)).strip()
    if len(keyword) < 3 or keyword in GENERIC_FOOD_TERMS:
        return None
    return keyword


def extract_radius_m(text: str) -> int | None:
    km = KM_RE.search(text)
    if km:
        return int(round(float(km.group(1)) * 1000))
    meters = METERS_RE.search(text)
    if meters:
        return int(meters.group(1))
    return None


def extract_budget(text: str) -> Budget | None:
    for pattern, tier in BUDGET_TERMS:
        if pattern.search(text):
            return tier
    return None


def _first_term(text: str, terms: tuple[str, ...]) -> str | None:
    for term in terms:
        if re.search(rf"\b{re.escape(term)}\b", text):
            return term
    return None


def extract_preferences(text: str) -> Extraction:
    lowered = normalize_text(text)
    return Extraction(
        cuisine=_first_term(lowered, CUISINE_TERMS),
        budget=extract_budget(lowered),
        vibe=_first_term(lowered, VIBE_TERMS),
        dietary=_first_term(lowered, DIETARY_TERMS),
        radius_m=extract_radius_m(text.lower()),
    )


def has_location_hint(text: str) -> bool:
    return bool(LOCATION_HINT_RE.search(text.lower()))


def looks_like_search(text: str) -> bool:
    lowered = normalize_text(text)
    if SEARCH_VERB_RE.search(lowered):
        return True
    if _first_term(lowered, CUISINE_TERMS) or _first_term(lowered, DIETARY_TERMS):
        return True
    return has_food_intent(lowered) or any(token in GENERIC_FOOD_TERMS for token in lowered.split())


def _search_intent(text: str, memory: IntentMemory, extracted: Extraction) -> ClassifiedIntent:
    if memory.has_location or has_location_hint(text):
        return ClassifiedIntent("food_search", extracted)
    return ClassifiedIntent("needs_location", extracted)


def classify_heuristic(message: str, memory: IntentMemory | None = None) -> ClassifiedIntent | None:
    """Ordered pattern families; None when no family matches."""
    memory = memory or IntentMemory()
    text = (message or "").strip()
    lowered = normalize_text(text)
    if not lowered:
        return ClassifiedIntent("smalltalk")
    if is_greeting(text):
        return ClassifiedIntent("smalltalk")

    extracted = extract_preferences(text)
    searchy = looks_like_search(text)

    if SMALLTALK_RE.search(lowered) and not searchy:
        return ClassifiedIntent("smalltalk")

    if memory.last_place_names:
        question = detect_list_question(text)
        # "sushi nearby" is a new search, not a question about the old list
        if question is not None and (question.kind == "compare" or not extracted.cuisine):
            return ClassifiedIntent("list_question", extracted, list_question=question)

    if memory.last_place_names and not (searchy and has_location_hint(text)):
        for pattern, refinement in REFINE_PATTERNS:
            if pattern.search(lowered):
                return ClassifiedIntent("refine", extracted, refinement=refinement)

    followup = FOLLOWUP_RE.match(lowered)
    if followup:
        name = (followup.group("name") or followup.group("name2") or "").strip()
        if name:
            extracted.place_name = name
            return ClassifiedIntent("place_followup", extracted)

    if searchy:
        return _search_intent(text, memory, extracted)
    return None


async def classify_intent(
    message: str,
    memory: IntentMemory | None = None,
    *,
    llm_enabled: bool | None = None,
    timeout: float | None = None,
    deadline: TurnDeadline | None = None,
) -> ClassifiedIntent:
    """
    Classify a chat message.

    Heuristics run first. When none match, one bounded model call is made;
    any model failure (or a disabled model) yields smalltalk, never a search.
    """
    memory = memory or IntentMemory()
    heuristic = classify_heuristic(message, memory)
    if heuristic is not None:
        return heuristic

    enabled = settings.llm_available if llm_enabled is None else llm_enabled
    if not enabled:
        return ClassifiedIntent("smalltalk", source="fallback")

    budget = timeout if timeout is not None else settings.CLASSIFIER_TIMEOUT_SECONDS
    if deadline is not None:
        budget = deadline.timeout_for(budget)
    try:
        result = await llm_intent.classify_with_llm(message, memory.has_location, timeout=budget)
    except llm_intent.IntentUnavailable as exc:
        logger.info("Intent classifier fell back to smalltalk: %s", exc)
        llm_fallbacks_total.labels(purpose="classify").inc()
        return ClassifiedIntent("smalltalk", source="fallback")

    extracted = Extraction(
        cuisine=result.cuisine,
        dish=result.dish,
        budget=result.budget,
        place_name=result.place_name,
        vibe=result.vibe,
        dietary=result.dietary,
        radius_m=int(result.radius) if result.radius else None,
    )
    intent: IntentName = result.intent if result.intent != "search" else "food_search"
    if intent in ("food_search", "needs_location"):
        intent = "food_search" if memory.has_location or has_location_hint(message) else "needs_location"
    if intent == "list_question" and not memory.last_place_names:
        intent = "smalltalk"
    return ClassifiedIntent(intent, extracted, source="llm")
