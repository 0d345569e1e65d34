from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Union

from ..places.types import Coords, PlaceCandidate, make_coords
from ..settings import settings
from .location import parse_query

PENDING_RECOMMEND = "RECOMMEND_PLACES"
RECOMMEND_ACTION = "recommend_places"
MAX_REMEMBERED_PLACES = 10

CANCEL_RE = re.compile(
    r"^\s*(cancel|never ?mind|nevermind|stop|forget it|no thanks|nothing)\s*[.!]*\s*$",
    re.IGNORECASE,
)


@dataclass(slots=True)
class ConversationSession:
    """
    Stored conversation state for one session id.

    `pending_keyword` is set exactly when `pending_action` is; both are cleared
    together once a search runs or the prompt is cancelled or expires.
    """

    session_id: str
    channel: str = "WEB"
    pending_action: str | None = None
    pending_keyword: str | None = None
    pending_since: float | None = None
    last_query: str | None = None
    last_lat: float | None = None
    last_lng: float | None = None
    last_radius_m: int | None = None
    last_location_label: str | None = None
    next_page_token: str | None = None
    last_intent: str | None = None
    last_places: list[PlaceCandidate] = field(default_factory=list)

    @property
    def last_coords(self) -> Coords | None:
        return make_coords(self.last_lat, self.last_lng)

    def state_payload(self) -> dict[str, Any]:
        return {
            "pending_action": self.pending_action,
            "pending_keyword": self.pending_keyword,
            "pending_since": self.pending_since,
            "last_query": self.last_query,
            "last_lat": self.last_lat,
            "last_lng": self.last_lng,
            "last_radius_m": self.last_radius_m,
            "last_location_label": self.last_location_label,
            "next_page_token": self.next_page_token,
            "last_intent": self.last_intent,
            "last_places": [p.to_dict() for p in self.last_places],
        }

    @classmethod
    def from_state(cls, session_id: str, channel: str, state: dict[str, Any]) -> ConversationSession:
        places = []
        for raw in state.get("last_places") or []:
            if isinstance(raw, dict):
                place = PlaceCandidate.from_dict(raw)
                if place is not None:
                    places.append(place)
        radius = state.get("last_radius_m")
        session = cls(
            session_id=session_id,
            channel=channel,
            pending_action=state.get("pending_action"),
            pending_keyword=state.get("pending_keyword"),
            pending_since=state.get("pending_since"),
            last_query=state.get("last_query"),
            last_lat=state.get("last_lat"),
            last_lng=state.get("last_lng"),
            last_radius_m=int(radius) if isinstance(radius, (int, float)) else None,
            last_location_label=state.get("last_location_label"),
            next_page_token=state.get("next_page_token"),
            last_intent=state.get("last_intent"),
            last_places=places,
        )
        if not (session.pending_action and session.pending_keyword):
            return clear_pending(session)
        return session


def new_session(session_id: str, channel: str = "WEB") -> ConversationSession:
    return ConversationSession(session_id=session_id, channel=channel)


@dataclass(frozen=True, slots=True)
class AskLocation:
    keyword: str


@dataclass(frozen=True, slots=True)
class Geocode:
    keyword: str
    location_text: str


SearchSource = Literal["request", "session", "geocoded"]


@dataclass(frozen=True, slots=True)
class Search:
    keyword: str
    coords: Coords
    radius_m: int | None
    source: SearchSource


RecommendDecision = Union[AskLocation, Geocode, Search]


@dataclass(frozen=True, slots=True)
class DecisionInput:
    message: str
    session: ConversationSession | None = None
    action: str | None = None
    keyword: str | None = None
    request_coords: Coords | None = None
    request_location_text: str | None = None
    radius_m: int | None = None
    allow_session_location: bool = True
    now: float | None = None


def is_cancel_phrase(message: str | None) -> bool:
    return bool(message and CANCEL_RE.match(message))


def pending_keyword(
    session: ConversationSession | None, now: float | None = None, ttl: float | None = None
) -> str | None:
    """The pending keyword if a location prompt is outstanding and not expired."""
    if session is None or session.pending_action != PENDING_RECOMMEND or not session.pending_keyword:
        return None
    ttl = settings.PENDING_TTL_SECONDS if ttl is None else ttl
    if session.pending_since is not None and ttl > 0:
        current = time.time() if now is None else now
        if current - session.pending_since > ttl:
            return None
    return session.pending_keyword


def resolve_recommend_decision(inp: DecisionInput) -> RecommendDecision | None:
    """
    Decide the next step of a recommendation turn.

    Pure: the caller applies the result to the session and persists it.
    Returns None when the turn carries no keyword at all.
    """
    pending = pending_keyword(inp.session, inp.now)
    parsed = parse_query(inp.message)
    keyword = pending or inp.keyword or parsed.keyword
    if not keyword and inp.action == RECOMMEND_ACTION:
        keyword = inp.message.strip() or None
    if not keyword:
        return None

    location_text = inp.request_location_text or parsed.location_text
    if pending and not inp.request_location_text:
        # the whole reply to a location prompt is the location
        location_text = inp.message.strip() or None

    if inp.request_coords is not None:
        return Search(keyword, inp.request_coords, inp.radius_m, "request")

    session_coords = inp.session.last_coords if inp.session else None
    if inp.allow_session_location and session_coords is not None:
        radius = inp.session.last_radius_m or inp.radius_m
        return Search(keyword, session_coords, radius, "session")

    if location_text:
        return Geocode(keyword, location_text)
    return AskLocation(keyword)


def clear_pending(session: ConversationSession) -> ConversationSession:
    return replace(session, pending_action=None, pending_keyword=None, pending_since=None)


def set_pending(
    session: ConversationSession, keyword: str, now: float | None = None
) -> ConversationSession:
    return replace(
        session,
        pending_action=PENDING_RECOMMEND,
        pending_keyword=keyword,
        pending_since=time.time() if now is None else now,
    )


def apply_decision(
    session: ConversationSession, decision: RecommendDecision, now: float | None = None
) -> ConversationSession:
    """Session state implied by a decision, before any search result is known."""
    if isinstance(decision, Search):
        return clear_pending(session)
    return set_pending(session, decision.keyword, now)


def record_search(
    session: ConversationSession,
    *,
    query: str,
    coords: Coords,
    radius_m: int | None,
    next_page_token: str | None,
    places: list[PlaceCandidate],
    location_label: str | None = None,
) -> ConversationSession:
    """Remember a completed search; clears any pending prompt."""
    updated = replace(
        clear_pending(session),
        last_query=query,
        last_lat=coords.lat,
        last_lng=coords.lng,
        last_radius_m=radius_m,
        next_page_token=next_page_token,
        last_intent="food_search",
        last_places=list(places[:MAX_REMEMBERED_PLACES]),
    )
    if location_label:
        updated.last_location_label = location_label
    return updated


def remember_location(
    session: ConversationSession, coords: Coords, label: str | None = None
) -> ConversationSession:
    return replace(
        session,
        last_lat=coords.lat,
        last_lng=coords.lng,
        last_location_label=label or session.last_location_label,
    )
