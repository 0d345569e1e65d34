from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from typing import TypeVar

from .types import Coords

EARTH_RADIUS_METERS = 6_371_000.0

T = TypeVar("T")


def haversine_meters(a: Coords, b: Coords) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.lng - a.lng)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def filter_by_max_distance(
    origin: Coords | None,
    items: Iterable[T],
    point_of: Callable[[T], Coords | None],
    max_distance_meters: float,
) -> tuple[list[T], int]:
    """
    Keep items within `max_distance_meters` of origin.

    Items without coordinates are kept; text-only listings carry none.
    Returns (kept, dropped_count). Without an origin nothing is dropped.
    """
    materialized = list(items)
    if origin is None:
        return materialized, 0
    kept: list[T] = []
    dropped = 0
    for item in materialized:
        point = point_of(item)
        if point is not None and haversine_meters(origin, point) > max_distance_meters:
            dropped += 1
            continue
        kept.append(item)
    return kept, dropped
