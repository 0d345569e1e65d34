from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ...deps import get_feedback_store, get_rate_limiter
from ...feedback import FeedbackStore, PlaceFeedback, comment_contains_url
from ...logging_config import get_logger
from ...rate_limit import RateLimiter
from ...schemas import FeedbackRequest, FeedbackResponse
from ...utils import hash_user_id

router = APIRouter(tags=["feedback"])
logger = get_logger(__name__)


@router.post("/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    payload: FeedbackRequest,
    store: FeedbackStore = Depends(get_feedback_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> FeedbackResponse:
    """Record a 1-5 community rating for a place shown in chat."""
    if comment_contains_url(payload.comment_text):
        raise HTTPException(status_code=400, detail="Comments cannot include links")

    user_hash = hash_user_id(payload.anon_id)
    decision = await limiter.check(f"feedback:{user_hash}")
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(decision.retry_after)},
        )

    stored = await store.record(
        PlaceFeedback(
            place_id=payload.place_id,
            user_hash=user_hash,
            rating=payload.rating,
            channel=payload.channel,
            comment_text=payload.comment_text,
            tags=payload.tags,
        )
    )
    if not stored:
        raise HTTPException(status_code=500, detail="Failed to store feedback")
    logger.info("feedback_recorded", place_id=payload.place_id, rating=payload.rating)
    return FeedbackResponse(ok=True)
