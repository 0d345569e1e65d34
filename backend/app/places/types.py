from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass(frozen=True, slots=True)
class Coords:
    lat: float
    lng: float

    def as_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True, slots=True)
class LocationText:
    value: str


@dataclass(frozen=True, slots=True)
class NoLocation:
    pass


NO_LOCATION = NoLocation()

GeoLocation = Union[Coords, LocationText, NoLocation]


def _coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def make_coords(lat: Any, lng: Any) -> Coords | None:
    """Build Coords when both values are finite and inside WGS84 bounds."""
    lat_f = _coerce_float(lat)
    lng_f = _coerce_float(lng)
    if lat_f is None or lng_f is None:
        return None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        return None
    return Coords(lat_f, lng_f)


def normalize_geo_location(
    lat: Any = None,
    lng: Any = None,
    text: str | None = None,
) -> GeoLocation:
    """Coordinates beat text; blank text counts as no location."""
    coords = make_coords(lat, lng)
    if coords is not None:
        return coords
    if isinstance(text, str) and text.strip():
        return LocationText(text.strip())
    return NO_LOCATION


@dataclass(frozen=True, slots=True)
class ToolCatalogEntry:
    name: str
    parameter_names: tuple[str, ...] = ()
    description: str | None = None
    required: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ToolCatalogEntry | None:
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        schema = payload.get("inputSchema") or payload.get("input_schema") or {}
        properties = schema.get("properties") if isinstance(schema, dict) else None
        names = tuple(properties.keys()) if isinstance(properties, dict) else ()
        required_raw = schema.get("required") if isinstance(schema, dict) else None
        required = (
            tuple(item for item in required_raw if isinstance(item, str))
            if isinstance(required_raw, list)
            else ()
        )
        description = payload.get("description")
        return cls(
            name=name.strip(),
            parameter_names=names,
            description=description if isinstance(description, str) else None,
            required=required,
        )


@dataclass(frozen=True, slots=True)
class ResolvedTools:
    nearby_search: ToolCatalogEntry | None = None
    text_search: ToolCatalogEntry | None = None
    geocode: ToolCatalogEntry | None = None
    place_details: ToolCatalogEntry | None = None

    def roles(self) -> dict[str, str | None]:
        return {
            "nearby_search": self.nearby_search.name if self.nearby_search else None,
            "text_search": self.text_search.name if self.text_search else None,
            "geocode": self.geocode.name if self.geocode else None,
            "place_details": self.place_details.name if self.place_details else None,
        }


@dataclass(slots=True)
class PlaceCandidate:
    place_id: str
    name: str
    coords: Coords | None = None
    rating: float | None = None
    review_count: int | None = None
    price_level: int | None = None
    open_now: bool | None = None
    address: str | None = None
    maps_url: str | None = None
    types: list[str] = field(default_factory=list)
    distance_meters: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "place_id": self.place_id,
            "name": self.name,
            "lat": self.coords.lat if self.coords else None,
            "lng": self.coords.lng if self.coords else None,
            "rating": self.rating,
            "review_count": self.review_count,
            "price_level": self.price_level,
            "open_now": self.open_now,
            "address": self.address,
            "maps_url": self.maps_url,
            "types": list(self.types),
            "distance_meters": self.distance_meters,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlaceCandidate | None:
        place_id = data.get("place_id")
        name = data.get("name")
        if not isinstance(place_id, str) or not isinstance(name, str):
            return None
        review_count = data.get("review_count")
        price_level = data.get("price_level")
        return cls(
            place_id=place_id,
            name=name,
            coords=make_coords(data.get("lat"), data.get("lng")),
            rating=_coerce_float(data.get("rating")),
            review_count=int(review_count) if isinstance(review_count, (int, float)) else None,
            price_level=int(price_level) if isinstance(price_level, (int, float)) else None,
            open_now=data.get("open_now") if isinstance(data.get("open_now"), bool) else None,
            address=data.get("address"),
            maps_url=data.get("maps_url"),
            types=[t for t in data.get("types") or [] if isinstance(t, str)],
            distance_meters=_coerce_float(data.get("distance_meters")),
        )


Strategy = Literal["nearby", "text", "details", "geocode"]
AttemptStatus = Literal["ok", "empty", "error", "skipped"]


@dataclass(slots=True)
class SearchAttempt:
    tool: str | None
    strategy: Strategy
    radius_m: int | None
    result_count: int
    status: AttemptStatus
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "strategy": self.strategy,
            "radius_m": self.radius_m,
            "result_count": self.result_count,
            "status": self.status,
            "error": self.error,
        }


OutcomeStatus = Literal["ok", "no_results", "no_tools", "unavailable"]


@dataclass(slots=True)
class SearchOutcome:
    candidates: list[PlaceCandidate]
    attempts: list[SearchAttempt]
    status: OutcomeStatus
    used_radius_m: int | None = None
    strategy: Strategy | None = None
    next_page_token: str | None = None
    dropped_by_distance: int = 0
