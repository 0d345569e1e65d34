from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .chat.session import ConversationSession
from .db.core import get_session
from .db.models import SearchSessionRecord
from .metrics import db_operations_total

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SessionStore:
    """
    Conversation state persistence.

    Reads and writes never raise: a missing table or unreachable database is
    logged and the turn carries on without stored state.
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or get_session

    async def load(self, session_id: str) -> ConversationSession | None:
        try:
            async with self._session_factory() as db:
                record = await db.get(SearchSessionRecord, session_id)
        except SQLAlchemyError:
            logger.exception("Failed to load session %s; continuing statelessly", session_id)
            db_operations_total.labels(operation="session_load", status="error").inc()
            return None
        db_operations_total.labels(operation="session_load", status="ok").inc()
        if record is None:
            return None
        state: dict[str, Any] = dict(record.state or {})
        return ConversationSession.from_state(record.id, record.channel or "WEB", state)

    async def save(self, session: ConversationSession, user_hash: str | None = None) -> bool:
        state = session.state_payload()
        try:
            async with self._session_factory() as db:
                record = await db.get(SearchSessionRecord, session.session_id)
                if record is None:
                    record = SearchSessionRecord(id=session.session_id, channel=session.channel)
                    db.add(record)
                record.user_hash = user_hash or record.user_hash
                record.pending_action = session.pending_action
                record.pending_keyword = session.pending_keyword
                record.last_query = session.last_query
                record.last_lat = session.last_lat
                record.last_lng = session.last_lng
                record.last_radius_m = session.last_radius_m
                record.next_page_token = session.next_page_token
                record.state = state
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to save session %s", session.session_id)
            db_operations_total.labels(operation="session_save", status="error").inc()
            return False
        db_operations_total.labels(operation="session_save", status="ok").inc()
        return True
