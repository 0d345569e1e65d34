from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .db.core import get_session
from .db.models import RecommendationEventRecord
from .metrics import db_operations_total
from .session_store import SessionFactory

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecommendationEvent:
    mode: str
    session_id: str | None = None
    request_id: str | None = None
    user_hash: str | None = None
    channel: str = "WEB"
    query: str | None = None
    latency_ms: int | None = None
    result_count: int = 0
    payload: dict[str, Any] = field(default_factory=dict)


class EventRecorder:
    """Append-only audit trail of chat turns; failures are logged, never raised."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or get_session

    async def record(self, event: RecommendationEvent) -> None:
        try:
            async with self._session_factory() as db:
                db.add(
                    RecommendationEventRecord(
                        request_id=event.request_id,
                        session_id=event.session_id,
                        user_hash=event.user_hash,
                        channel=event.channel,
                        mode=event.mode,
                        query=(event.query or "")[:500] or None,
                        latency_ms=event.latency_ms,
                        result_count=event.result_count,
                        payload=event.payload,
                    )
                )
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record %s event for session %s", event.mode, event.session_id)
            db_operations_total.labels(operation="event_write", status="error").inc()
            return
        db_operations_total.labels(operation="event_write", status="ok").inc()
