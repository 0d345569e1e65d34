from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from ..deadline import TurnDeadline
from ..events import RecommendationEvent
from ..logging_config import get_logger
from ..metrics import chat_turn_duration_seconds, chat_turns_total
from ..places.geocode import GeocodeContext, LocationResolver
from ..places.search import SearchOrchestrator, SearchRequest
from ..places.types import (
    Coords,
    GeoLocation,
    LocationText,
    NoLocation,
    PlaceCandidate,
    SearchAttempt,
    normalize_geo_location,
)
from ..schemas import ChatRequest, ChatResponse
from ..scoring import (
    CommunityStatsProvider,
    RankedResult,
    pick_recommendation,
    rank_candidates,
    refine_candidates,
    score_candidate,
)
from ..session_store import SessionStore
from ..settings import settings
from ..utils import get_request_id
from . import narration
from .intent import (
    ClassifiedIntent,
    IntentMemory,
    classify_intent,
    extract_search_keyword,
    is_greeting,
    is_too_vague_for_search,
    looks_like_search,
)
from .list_qna import (
    answer_list_question,
    describe_place,
    detect_list_question,
    resolve_place_reference,
)
from .location import parse_query, resolve_search_coords
from .session import (
    RECOMMEND_ACTION,
    AskLocation,
    ConversationSession,
    DecisionInput,
    Geocode,
    Search,
    apply_decision,
    clear_pending,
    is_cancel_phrase,
    new_session,
    pending_keyword,
    record_search,
    remember_location,
    resolve_recommend_decision,
)

logger = get_logger(__name__)

MORE_ACTIONS = frozenset({"more", "show_more", "next_page"})
MORE_RE = re.compile(
    r"^\s*(show( me)? more|more( options| please)?|next( page)?|another( one)?)\s*[.!?]*\s*$",
    re.IGNORECASE,
)
REFINE_LABELS = {
    "cheaper": "cheapest",
    "closer": "closest",
    "open_now": "open now",
    "top_rated": "best rated",
}


@dataclass(slots=True)
class TurnResult:
    response: ChatResponse
    session: ConversationSession
    event: RecommendationEvent


@dataclass(slots=True)
class _Turn:
    request: ChatRequest
    message: str
    deadline: TurnDeadline
    location: GeoLocation
    user_hash: str | None
    intent: str | None = None
    attempts: list[SearchAttempt] = field(default_factory=list)
    keyword: str | None = None

    @property
    def request_coords(self) -> Coords | None:
        return self.location if isinstance(self.location, Coords) else None

    @property
    def request_location_text(self) -> str | None:
        return self.location.value if isinstance(self.location, LocationText) else None


def _ranked_in_order(places: list[PlaceCandidate]) -> list[RankedResult]:
    return [score_candidate(p, max_distance=settings.MAX_DISTANCE_METERS) for p in places]


def request_location(request: ChatRequest) -> GeoLocation:
    lat, lng = request.latitude, request.longitude
    if (lat is None or lng is None) and request.location is not None:
        lat, lng = request.location.lat, request.location.lng
    if request.location_enabled is False:
        lat = lng = None
    return normalize_geo_location(lat, lng, request.location_text or request.neighborhood)


class ChatService:
    """
    One conversational turn: classify, decide, resolve, search, rank, reply.

    Upstream failures never escape `handle`; they end as a conversational
    message. Session state is saved after every branch.
    """

    def __init__(
        self,
        *,
        orchestrator: SearchOrchestrator,
        resolver: LocationResolver,
        store: SessionStore,
        community: CommunityStatsProvider | None = None,
        llm_enabled: bool | None = None,
        narration_enabled: bool | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.resolver = resolver
        self.store = store
        self.community = community
        self.llm_enabled = llm_enabled
        self.narration_enabled = narration_enabled

    async def handle(self, request: ChatRequest, *, user_hash: str | None = None) -> TurnResult:
        started = time.perf_counter()
        message = (request.message or "").strip()
        turn = _Turn(
            request=request,
            message=message,
            deadline=TurnDeadline.for_turn(message, request.action),
            location=request_location(request),
            user_hash=user_hash,
        )
        session_id = request.session_id or request.anon_id or uuid.uuid4().hex
        session = await self.store.load(session_id) or new_session(session_id, request.channel)

        response, session = await self._dispatch(turn, session)
        session.last_intent = turn.intent or session.last_intent
        await self.store.save(session, user_hash=user_hash)

        mode = response.meta.mode or "unknown"
        latency_ms = turn.deadline.elapsed_ms()
        response.meta.request_id = get_request_id()
        response.meta.latency_ms = latency_ms
        chat_turns_total.labels(mode=mode).inc()
        chat_turn_duration_seconds.observe(time.perf_counter() - started)
        logger.info(
            "chat_turn_complete",
            session_id=session.session_id,
            mode=mode,
            intent=turn.intent,
            places=len(response.places),
            attempts=len(turn.attempts),
            latency_ms=latency_ms,
        )
        event = RecommendationEvent(
            mode=mode,
            session_id=session.session_id,
            request_id=response.meta.request_id,
            user_hash=user_hash,
            channel=session.channel,
            query=message,
            latency_ms=latency_ms,
            result_count=len(response.places),
            payload={
                "intent": turn.intent,
                "keyword": turn.keyword,
                "attempts": [a.to_dict() for a in turn.attempts],
                "place_ids": [p.place_id for p in response.places],
            },
        )
        return TurnResult(response=response, session=session, event=event)

    async def _dispatch(
        self, turn: _Turn, session: ConversationSession
    ) -> tuple[ChatResponse, ConversationSession]:
        action = (turn.request.action or "").lower() or None
        if action in MORE_ACTIONS or MORE_RE.match(turn.message):
            turn.intent = "more"
            return await self._more(turn, session)

        pending = pending_keyword(session)
        if session.pending_action and pending is None:
            session = clear_pending(session)
        if pending and is_cancel_phrase(turn.message):
            turn.intent = "cancel"
            return self._reply(narration.CANCELLED, session, "cancelled"), clear_pending(session)
        if (
            pending
            and isinstance(turn.location, NoLocation)
            and not is_greeting(turn.message)
            and is_too_vague_for_search(turn.message)
        ):
            # "near me" without coordinates: nothing to geocode, ask again
            turn.intent = "location_reply"
            return (
                self._reply(narration.LOCATION_PROMPT, session, "needs_location", needs_location=True),
                session,
            )
        searchy = looks_like_search(turn.message)
        if pending and (turn.request_coords or not (searchy or is_greeting(turn.message))):
            turn.intent = "location_reply"
            return await self._recommend(turn, session, keyword=None, radius_m=None)
        if pending and searchy:
            # a fresh search replaces the unanswered prompt
            session = clear_pending(session)

        memory = IntentMemory(
            has_location=bool(
                turn.request_coords or turn.request_location_text or session.last_coords
            ),
            last_intent=session.last_intent,
            last_place_names=[p.name for p in session.last_places],
        )
        classified = await classify_intent(
            turn.message, memory, llm_enabled=self.llm_enabled, deadline=turn.deadline
        )
        turn.intent = classified.intent
        logger.debug("intent_classified", intent=classified.intent, source=classified.source)

        if classified.intent == "smalltalk":
            if action == RECOMMEND_ACTION:
                return await self._recommend(turn, session, keyword=None, radius_m=None)
            return self._reply(narration.SMALLTALK_REPLY, session, "smalltalk"), session
        if classified.intent == "list_question":
            question = classified.list_question or detect_list_question(turn.message)
            if question is None:
                return self._reply(narration.LIST_QUESTION_UNCLEAR, session, "list_answer"), session
            answer = answer_list_question(question, session.last_places)
            return (
                self._reply(answer.message, session, "list_answer", _ranked_in_order(answer.places)),
                session,
            )
        if classified.intent == "place_followup":
            return await self._followup(turn, session, classified)
        if classified.intent == "refine":
            return await self._refine(turn, session, classified)

        keyword = self._search_keyword(turn.message, classified)
        return await self._recommend(
            turn, session, keyword=keyword, radius_m=classified.extracted.radius_m
        )

    def _search_keyword(self, message: str, classified: ClassifiedIntent) -> str | None:
        parsed = parse_query(message)
        keyword = extract_search_keyword(parsed.keyword or "")
        extracted = classified.extracted
        if keyword is None:
            keyword = extracted.dish or extracted.cuisine
        if keyword and extracted.dietary and extracted.dietary not in keyword:
            keyword = f"{extracted.dietary} {keyword}"
        return keyword

    def _reply(
        self,
        message: str,
        session: ConversationSession,
        mode: str,
        results: list[RankedResult] | None = None,
        **meta: Any,
    ) -> ChatResponse:
        return narration.build_response(
            message, session_id=session.session_id, results=results or [], mode=mode, **meta
        )

    async def _followup(
        self, turn: _Turn, session: ConversationSession, classified: ClassifiedIntent
    ) -> tuple[ChatResponse, ConversationSession]:
        name = classified.extracted.place_name or ""
        reference = resolve_place_reference(name, session.last_places)
        if reference is not None:
            return (
                self._reply(
                    describe_place(reference.place),
                    session,
                    "place_followup",
                    _ranked_in_order([reference.place]),
                ),
                session,
            )
        if not name:
            return self._reply(narration.FOLLOWUP_NOT_FOUND, session, "place_followup"), session
        return await self._recommend(turn, session, keyword=name, radius_m=None)

    async def _refine(
        self, turn: _Turn, session: ConversationSession, classified: ClassifiedIntent
    ) -> tuple[ChatResponse, ConversationSession]:
        refinement = classified.refinement
        if refinement is None:
            # vibe refinements need a new search with the extra word
            extra = classified.extracted.vibe or extract_search_keyword(turn.message) or ""
            keyword = " ".join(part for part in (extra, session.last_query or "") if part).strip()
            return await self._recommend(
                turn, session, keyword=keyword or None, radius_m=classified.extracted.radius_m
            )
        refined = refine_candidates(session.last_places, refinement)
        if not refined:
            return (
                self._reply(
                    "None of the places I showed are known to be open right now. "
                    "Want me to search again?",
                    session,
                    "refine",
                ),
                session,
            )
        label = REFINE_LABELS.get(refinement, refinement)
        results = _ranked_in_order(refined[:3])
        message = f"Here are the {label} picks from your last results:\n" + "\n".join(
            f"{i}. {r.explanation}" for i, r in enumerate(results, start=1)
        )
        return self._reply(message, session, "refine", results), session

    async def _recommend(
        self,
        turn: _Turn,
        session: ConversationSession,
        *,
        keyword: str | None,
        radius_m: int | None,
    ) -> tuple[ChatResponse, ConversationSession]:
        parsed = parse_query(turn.message)
        pending = pending_keyword(session)
        location_text = turn.request_location_text
        decision = resolve_recommend_decision(
            DecisionInput(
                message=turn.message,
                session=session,
                action=turn.request.action,
                keyword=keyword,
                request_coords=turn.request_coords,
                request_location_text=location_text,
                radius_m=radius_m or turn.request.radius_m,
                allow_session_location=not (location_text or parsed.location_text or pending),
            )
        )
        if decision is None:
            return self._reply(narration.SMALLTALK_REPLY, session, "smalltalk"), session

        turn.keyword = decision.keyword
        session = apply_decision(session, decision)

        if isinstance(decision, AskLocation):
            return (
                self._reply(narration.LOCATION_PROMPT, session, "needs_location", needs_location=True),
                session,
            )

        label: str | None = None
        confirm: str | None = None
        if isinstance(decision, Geocode):
            # remembered coordinates are not a fallback for a place the user named
            located = await resolve_search_coords(
                request_coords=None,
                location_text=decision.location_text,
                session_coords=None,
                geocode=lambda text, context: self.resolver.resolve(text, context, turn.deadline),
                context=GeocodeContext(locale=turn.request.locale, coords=session.last_coords),
            )
            if located.coords is None:
                return (
                    self._reply(
                        narration.GEOCODE_FAILED, session, "geocode_failed", needs_location=True
                    ),
                    session,
                )
            label, confirm = located.label, located.confirm_message
            decision = Search(
                decision.keyword, located.coords, radius_m or turn.request.radius_m, "geocoded"
            )
        elif decision.source == "session":
            label = session.last_location_label

        return await self._search(
            turn, session, decision, label=label, confirm=confirm, open_now=parsed.open_now
        )

    async def _search(
        self,
        turn: _Turn,
        session: ConversationSession,
        decision: Search,
        *,
        label: str | None,
        confirm: str | None,
        open_now: bool,
    ) -> tuple[ChatResponse, ConversationSession]:
        outcome = await self.orchestrator.search(
            SearchRequest(
                keyword=decision.keyword,
                coords=decision.coords,
                radius_m=decision.radius_m,
                location_text=label,
                open_now=True if open_now else None,
            ),
            turn.deadline,
        )
        turn.attempts.extend(outcome.attempts)
        logger.info(
            "search_outcome",
            keyword=decision.keyword,
            source=decision.source,
            status=outcome.status,
            strategy=outcome.strategy,
            radius_m=outcome.used_radius_m,
            results=len(outcome.candidates),
        )

        if outcome.status in ("unavailable", "no_tools"):
            session = remember_location(session, decision.coords, label)
            return self._reply(narration.SEARCH_UNAVAILABLE, session, "search_unavailable"), session

        ranked = await self._rank(outcome.candidates)
        session = record_search(
            session,
            query=decision.keyword,
            coords=decision.coords,
            radius_m=outcome.used_radius_m,
            next_page_token=outcome.next_page_token,
            places=[r.candidate for r in ranked],
            location_label=label,
        )
        if not ranked:
            return self._reply(narration.NO_RESULTS, session, "no_results"), session

        picks = pick_recommendation(ranked).results
        summary = await narration.narrate(
            decision.keyword, picks, deadline=turn.deadline, enabled=self.narration_enabled
        )
        parts = [confirm] if confirm else []
        parts.append(narration.intro_line(outcome.used_radius_m, label or session.last_location_label))
        parts.append(summary)
        return (
            self._reply(
                "\n\n".join(parts),
                session,
                "recommend",
                picks,
                next_page_token=outcome.next_page_token,
            ),
            session,
        )

    async def _rank(self, candidates: list[PlaceCandidate]) -> list[RankedResult]:
        stats = {}
        if self.community is not None and candidates:
            stats = await self.community.stats_for([c.place_id for c in candidates])
        return rank_candidates(candidates, max_distance=settings.MAX_DISTANCE_METERS, stats=stats)

    async def _more(
        self, turn: _Turn, session: ConversationSession
    ) -> tuple[ChatResponse, ConversationSession]:
        coords = turn.request_coords or session.last_coords
        if not session.last_query or coords is None:
            return self._reply(narration.NEED_SEARCH_FIRST, session, "more"), session
        turn.keyword = session.last_query
        outcome = await self.orchestrator.fetch_more(
            keyword=session.last_query,
            coords=coords,
            radius_m=session.last_radius_m,
            page_token=session.next_page_token,
            exclude_ids=frozenset(p.place_id for p in session.last_places),
            deadline=turn.deadline,
        )
        turn.attempts.extend(outcome.attempts)
        if outcome.status in ("unavailable", "no_tools"):
            return self._reply(narration.SEARCH_UNAVAILABLE, session, "search_unavailable"), session

        ranked = await self._rank(outcome.candidates)
        session = record_search(
            session,
            query=session.last_query,
            coords=coords,
            radius_m=outcome.used_radius_m,
            next_page_token=outcome.next_page_token,
            places=[r.candidate for r in ranked] or session.last_places,
            location_label=session.last_location_label,
        )
        if not ranked:
            return self._reply(narration.NO_MORE_RESULTS, session, "more"), session
        picks = pick_recommendation(ranked).results
        summary = await narration.narrate(
            session.last_query, picks, deadline=turn.deadline, enabled=self.narration_enabled
        )
        message = "\n\n".join(
            [narration.intro_line(outcome.used_radius_m, session.last_location_label), summary]
        )
        return (
            self._reply(message, session, "more", picks, next_page_token=outcome.next_page_token),
            session,
        )
