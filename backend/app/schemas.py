from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_MESSAGE_LENGTH = 500


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ChatRequest(BaseModel):
    """Body of POST /v1/chat. Length/emptiness of `message` is checked by the route."""

    model_config = ConfigDict(extra="ignore")

    anon_id: str | None = Field(default=None, max_length=128)
    session_id: str | None = Field(default=None, max_length=128)
    channel: Literal["WEB", "TELEGRAM", "VIBER", "MESSENGER"] = "WEB"
    message: str | None = None
    action: str | None = Field(default=None, max_length=40)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    location: LatLng | None = None
    location_text: str | None = Field(default=None, max_length=200)
    neighborhood: str | None = Field(default=None, max_length=200)
    radius_m: float | None = None
    location_enabled: bool | None = None
    locale: str | None = Field(default=None, max_length=20)

    @field_validator("message", "location_text", "neighborhood", "action", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class PlaceOut(BaseModel):
    place_id: str
    name: str
    lat: float | None = None
    lng: float | None = None
    rating: float | None = None
    review_count: int | None = None
    price_level: int | None = None
    open_now: bool | None = None
    address: str | None = None
    maps_url: str | None = None
    distance_meters: float | None = None
    explanation: str | None = None
    score: float | None = None


class ChatMeta(BaseModel):
    session_id: str | None = None
    next_page_token: str | None = None
    mode: str | None = None
    needs_location: bool | None = None
    request_id: str | None = None
    latency_ms: int | None = None


class ChatResponse(BaseModel):
    status: Literal["ok", "error"] = "ok"
    message: str
    places: list[PlaceOut] = Field(default_factory=list)
    meta: ChatMeta = Field(default_factory=ChatMeta)


class IntentExtraction(BaseModel):
    """Structured payload expected from the language-model classifier."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    intent: Literal[
        "smalltalk",
        "food_search",
        "search",
        "refine",
        "place_followup",
        "list_question",
        "needs_location",
    ]
    cuisine: str | None = None
    dish: str | None = None
    place_name: str | None = Field(default=None, alias="placeName")
    vibe: str | None = None
    budget: Literal["cheap", "mid", "high"] | None = None
    dietary: str | None = None
    radius: float | None = Field(default=None, ge=0, le=50_000, allow_inf_nan=False)


class ToolRole(BaseModel):
    name: str
    parameters: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)


class ToolsResponse(BaseModel):
    configured: bool
    tools: list[ToolRole] = Field(default_factory=list)
    resolved: dict[str, str | None] = Field(default_factory=dict)
    error: str | None = None


class FeedbackRequest(BaseModel):
    """Body of POST /v1/feedback: one community rating for a place."""

    model_config = ConfigDict(extra="ignore")

    anon_id: str = Field(min_length=1, max_length=128)
    channel: Literal["WEB"] = "WEB"
    place_id: str = Field(min_length=1, max_length=256)
    rating: int = Field(ge=1, le=5, strict=True)
    comment_text: str | None = Field(default=None, max_length=2000)
    tags: list[str] | None = Field(default=None, max_length=20)

    @field_validator("anon_id", "place_id", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class FeedbackResponse(BaseModel):
    ok: bool = True
