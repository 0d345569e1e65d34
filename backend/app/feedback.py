from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .db.core import get_session
from .db.models import PlaceAggregateRecord, PlaceFeedbackRecord
from .metrics import db_operations_total
from .scoring import CommunityStats
from .session_store import SessionFactory

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 300
MAX_TAG_LENGTH = 50
PROFANITY_WORDS = ("shit", "fuck", "bitch", "asshole", "bastard", "damn")

_PROFANITY_RE = re.compile(r"\b(?:" + "|".join(PROFANITY_WORDS) + r")\b", re.IGNORECASE)
_URL_RE = re.compile(r"https?://|www\.", re.IGNORECASE)


def comment_contains_url(comment: str | None) -> bool:
    return bool(comment and _URL_RE.search(comment))


def sanitize_comment(comment: str | None) -> str | None:
    """Trim, cap at MAX_COMMENT_LENGTH and mask profanity; blank becomes None."""
    if not comment:
        return None
    cleaned = _PROFANITY_RE.sub("***", comment.strip()[:MAX_COMMENT_LENGTH])
    return cleaned or None


def normalize_tags(tags: Sequence[str] | None) -> list[str] | None:
    if not tags:
        return None
    cleaned = [tag.strip()[:MAX_TAG_LENGTH] for tag in tags if tag and tag.strip()]
    return cleaned or None


@dataclass(slots=True)
class PlaceFeedback:
    place_id: str
    user_hash: str
    rating: int
    channel: str = "WEB"
    comment_text: str | None = None
    tags: list[str] | None = None


class FeedbackStore:
    """
    Community ratings for places shown in chat.

    Each submission is stored and the place's aggregate is recomputed from its
    active feedback in the same transaction. The aggregates feed the ranking
    boost through `stats_for`. Database failures are logged; writes report
    False and reads return no stats.
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or get_session

    async def record(self, feedback: PlaceFeedback) -> bool:
        try:
            async with self._session_factory() as db:
                db.add(
                    PlaceFeedbackRecord(
                        place_id=feedback.place_id,
                        channel=feedback.channel,
                        user_hash=feedback.user_hash,
                        rating=feedback.rating,
                        comment_text=sanitize_comment(feedback.comment_text),
                        tags=normalize_tags(feedback.tags),
                    )
                )
                await recalculate_place_aggregate(db, feedback.place_id)
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to store feedback for place %s", feedback.place_id)
            db_operations_total.labels(operation="feedback_write", status="error").inc()
            return False
        db_operations_total.labels(operation="feedback_write", status="ok").inc()
        return True

    async def stats_for(self, place_ids: Sequence[str]) -> Mapping[str, CommunityStats]:
        ids = [pid for pid in dict.fromkeys(place_ids) if pid]
        if not ids:
            return {}
        try:
            async with self._session_factory() as db:
                rows = (
                    await db.execute(
                        select(PlaceAggregateRecord).where(PlaceAggregateRecord.place_id.in_(ids))
                    )
                ).scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to load community stats for %d places", len(ids))
            db_operations_total.labels(operation="community_stats", status="error").inc()
            return {}
        db_operations_total.labels(operation="community_stats", status="ok").inc()
        return {
            row.place_id: CommunityStats(
                average_rating=float(row.community_rating_avg or 0.0),
                rating_count=int(row.community_rating_count or 0),
            )
            for row in rows
        }


async def recalculate_place_aggregate(db: AsyncSession, place_id: str) -> PlaceAggregateRecord:
    """Rebuild a place's average, count and tag counts from its active feedback."""
    rows = (
        await db.execute(
            select(PlaceFeedbackRecord.rating, PlaceFeedbackRecord.tags).where(
                PlaceFeedbackRecord.place_id == place_id,
                PlaceFeedbackRecord.moderation_status == "ACTIVE",
            )
        )
    ).all()
    count = len(rows)
    average = sum(rating for rating, _ in rows) / count if count else 0.0
    tag_counts: dict[str, int] = {}
    for _, tags in rows:
        for tag in tags or []:
            if not isinstance(tag, str):
                continue
            key = tag.strip()[:MAX_TAG_LENGTH].lower()
            if key:
                tag_counts[key] = tag_counts.get(key, 0) + 1

    aggregate = await db.get(PlaceAggregateRecord, place_id)
    if aggregate is None:
        aggregate = PlaceAggregateRecord(place_id=place_id)
        db.add(aggregate)
    aggregate.community_rating_avg = average
    aggregate.community_rating_count = count
    aggregate.tag_counts = tag_counts
    return aggregate


__all__ = [
    "FeedbackStore",
    "PlaceFeedback",
    "comment_contains_url",
    "normalize_tags",
    "recalculate_place_aggregate",
    "sanitize_comment",
]
