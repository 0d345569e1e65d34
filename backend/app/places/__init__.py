"""Place search over a runtime-discovered tool catalog."""

from .catalog import ToolCatalog, classify_tools
from .geocode import LocationResolver, ResolvedLocation, build_geocode_query
from .mcp_client import McpClient, ToolCallError
from .search import SearchOrchestrator, SearchRequest
from .types import (
    NO_LOCATION,
    Coords,
    GeoLocation,
    LocationText,
    NoLocation,
    PlaceCandidate,
    SearchAttempt,
    SearchOutcome,
    ToolCatalogEntry,
)

__all__ = [
    "Coords",
    "GeoLocation",
    "LocationResolver",
    "LocationText",
    "McpClient",
    "NO_LOCATION",
    "NoLocation",
    "PlaceCandidate",
    "ResolvedLocation",
    "SearchAttempt",
    "SearchOrchestrator",
    "SearchOutcome",
    "SearchRequest",
    "ToolCallError",
    "ToolCatalog",
    "ToolCatalogEntry",
    "build_geocode_query",
    "classify_tools",
]
