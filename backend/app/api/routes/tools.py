from __future__ import annotations

from fastapi import APIRouter, Depends

from ...deps import get_tool_catalog
from ...places.catalog import ToolCatalog, classify_tools
from ...places.mcp_client import ToolCallError
from ...schemas import ToolRole, ToolsResponse
from ...settings import settings

router = APIRouter(tags=["tools"])


@router.get("/tools", response_model=ToolsResponse)
async def list_tools(catalog: ToolCatalog = Depends(get_tool_catalog)) -> ToolsResponse:
    """Discovered tools and the search role each one was classified into."""
    if not settings.mcp_url:
        return ToolsResponse(configured=False, error="MCP_URL not configured")
    try:
        entries = await catalog.list_tools(timeout=settings.MCP_TIMEOUT_SECONDS)
    except ToolCallError as exc:
        return ToolsResponse(configured=True, error=str(exc))
    roles = classify_tools(entries).roles()
    return ToolsResponse(
        configured=True,
        tools=[
            ToolRole(
                name=entry.name,
                parameters=list(entry.parameter_names),
                roles=[role for role, name in roles.items() if name == entry.name],
            )
            for entry in entries
        ],
        resolved=roles,
    )
