from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ...chat import narration
from ...chat.service import ChatService
from ...deps import get_chat_service, get_event_recorder, get_rate_limiter
from ...events import EventRecorder
from ...logging_config import get_logger
from ...rate_limit import RateLimiter
from ...schemas import MAX_MESSAGE_LENGTH, ChatRequest, ChatResponse
from ...utils import hash_user_id

router = APIRouter(tags=["chat"])
logger = get_logger(__name__)


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    body = narration.error_response(message)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def _rate_limit_key(body: dict[str, Any], request: Request) -> str:
    raw = body.get("anon_id")
    if not isinstance(raw, str) or not raw.strip():
        raw = request.client.host if request.client else "anonymous"
    return hash_user_id(raw)


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: Request,
    background_tasks: BackgroundTasks,
    service: ChatService = Depends(get_chat_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    recorder: EventRecorder = Depends(get_event_recorder),
):
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Request body must be JSON.")
    if not isinstance(body, dict):
        return _error(400, "Request body must be a JSON object.")

    user_hash = _rate_limit_key(body, request)
    decision = await limiter.check(user_hash)
    if not decision.allowed:
        logger.info("chat_rate_limited", user_hash=user_hash[:12], retry_after=decision.retry_after)
        return _error(429, narration.RATE_LIMITED, {"Retry-After": str(decision.retry_after)})

    try:
        payload = ChatRequest.model_validate(body)
    except ValidationError as exc:
        return JSONResponse(
            status_code=422, content={"detail": jsonable_encoder(exc.errors(include_url=False))}
        )
    if not payload.message or len(payload.message) > MAX_MESSAGE_LENGTH:
        return _error(400, narration.INVALID_MESSAGE)

    result = await service.handle(payload, user_hash=user_hash)
    background_tasks.add_task(recorder.record, result.event)
    return result.response
