from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, func, text

from .core import Base


class SearchSessionRecord(Base):
    __tablename__ = "search_sessions"

    id = Column(String(128), primary_key=True)
    channel = Column(String(20), nullable=False, default="WEB", server_default=text("'WEB'"))
    user_hash = Column(String(64), nullable=True, index=True)
    pending_action = Column(String(32), nullable=True)
    pending_keyword = Column(String(200), nullable=True)
    last_query = Column(String(500), nullable=True)
    last_lat = Column(Float, nullable=True)
    last_lng = Column(Float, nullable=True)
    last_radius_m = Column(Integer, nullable=True)
    next_page_token = Column(String(512), nullable=True)
    state = Column(JSON, nullable=False, default=dict, server_default=text("'{}'"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class RecommendationEventRecord(Base):
    __tablename__ = "recommendation_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String(64), nullable=True, index=True)
    session_id = Column(String(128), nullable=True, index=True)
    user_hash = Column(String(64), nullable=True, index=True)
    channel = Column(String(20), nullable=False, default="WEB")
    mode = Column(String(32), nullable=False)
    query = Column(String(500), nullable=True)
    latency_ms = Column(Integer, nullable=True)
    result_count = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PlaceFeedbackRecord(Base):
    __tablename__ = "place_feedback"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    place_id = Column(String(256), nullable=False, index=True)
    channel = Column(String(20), nullable=False, default="WEB")
    user_hash = Column(String(64), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment_text = Column(String(300), nullable=True)
    tags = Column(JSON, nullable=True)
    moderation_status = Column(
        String(16), nullable=False, default="ACTIVE", server_default=text("'ACTIVE'"), index=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PlaceAggregateRecord(Base):
    __tablename__ = "place_aggregates"

    place_id = Column(String(256), primary_key=True)
    community_rating_avg = Column(Float, nullable=False, default=0.0)
    community_rating_count = Column(Integer, nullable=False, default=0)
    tag_counts = Column(JSON, nullable=False, default=dict)
    last_updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
