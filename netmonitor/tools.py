"""Network query tools exported for LLM tool calling."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, List, Optional, Union

from langchain_core.tools import StructuredTool

from .state import ContextRegistry, default_registry

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def mcp_tool(
    _func: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    examples: Optional[List[str]] = None,
) -> Any:
    """Mark a query method for export; `name` defaults to the method name."""

    def _mark(func: Callable[..., Any]) -> Callable[..., Any]:
        func._mcp_spec = (name or func.__name__, tuple(examples or ()))  # type: ignore[attr-defined]
        return func

    return _mark if _func is None else _mark(_func)


def _tool_description(method: Callable[..., Any], tool_name: str, examples: Any) -> str:
    lines = [inspect.getdoc(method) or f"Network tool: {tool_name}"]
    if examples:
        lines.append("")
        lines.append("Examples:")
        lines.extend(f"- {example}" for example in examples)
    return "\n".join(lines)


class NetworkToolsFeature:
    """Query captured traffic for one browser context."""

    def __init__(self, registry: Optional[ContextRegistry] = None):
        self.registry = registry or default_registry
        self._context: Any = None
        self._tools: List[Any] = []

    def set_context(self, context: Any) -> None:
        """Bind the browser context whose traffic the tools read."""
        self._context = context

    def _require_context(self) -> Any:
        if self._context is None:
            raise RuntimeError("NetworkToolsFeature context is not set")
        return self._context

    def get_tools(self) -> List[Any]:
        """Export the network query tools as `StructuredTool`s, ordered by name."""
        if not self._tools:
            marked = []
            for attr in vars(type(self)).values():
                spec = getattr(attr, "_mcp_spec", None)
                if spec is not None:
                    marked.append((spec, getattr(self, attr.__name__)))
            self._tools = [
                StructuredTool.from_function(
                    name=tool_name,
                    description=_tool_description(method, tool_name, examples),
                    coroutine=method,
                )
                for (tool_name, examples), method in sorted(marked, key=lambda item: item[0][0])
            ]
        return self._tools

    @mcp_tool(
        name="browser_network_get_requests",
        examples=[
            "browser_network_get_requests(limit=20)",
            "browser_network_get_requests(url_pattern='*/api/*', method='POST')",
        ],
    )
    async def mcp_browser_network_get_requests(
        self,
        page_id: Optional[str] = None,
        url_pattern: Optional[str] = None,
        method: Optional[str] = None,
        status: Optional[int] = None,
        resource_type: Optional[str] = None,
        since: Optional[Union[int, float, str]] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Return recent network requests, newest first, with filtering options.

        Args:
            page_id (optional): Page identifier (see `browser_network_get_stats`).
            url_pattern (optional): Case-insensitive URL wildcard, `*` matches anything.
            method (optional): HTTP method, case-insensitive.
            status (optional): Exact HTTP status. Failed requests use `0`.
            resource_type (optional): Playwright resource type
                (`document`, `script`, `xhr`, `fetch`, `image`, ...).
            since (optional): Epoch milliseconds or ISO-8601 timestamp.
            search (optional): Case-insensitive regex/text search in URL and bodies.
            limit (optional): Max records to return. Range: [1..200]. Default: `50`.

        Returns:
            Dict with `ok`, `total` (matches before limit), `limit`, `results`.
        """
        storage = self.registry.get_request_storage(self._require_context())
        safe_limit = _clamp_limit(limit)
        found = storage.query_requests(
            page_id=page_id,
            url_pattern=url_pattern,
            method=method,
            status=status,
            resource_type=resource_type,
            since=since,
            search=search,
            limit=safe_limit,
        )
        return {
            "ok": True,
            "total": found["total"],
            "limit": safe_limit,
            "results": found["results"],
        }

    @mcp_tool(
        name="browser_network_get_request_details",
        examples=["browser_network_get_request_details(request_id='req-3')"],
    )
    async def mcp_browser_network_get_request_details(self, request_id: str) -> Dict[str, Any]:
        """
        Return full details for a captured request by id.

        Args:
            request_id: Identifier returned by `browser_network_get_requests`.
        """
        storage = self.registry.get_request_storage(self._require_context())
        record = storage.get_request(str(request_id or ""))
        if record is None:
            return {"ok": False, "error": "request_not_found", "request_id": request_id}
        return {"ok": True, "request": dict(record)}

    @mcp_tool(
        name="browser_network_clear_requests",
        examples=[
            "browser_network_clear_requests()",
            "browser_network_clear_requests(page_id='page-2')",
        ],
    )
    async def mcp_browser_network_clear_requests(self, page_id: Optional[str] = None) -> Dict[str, Any]:
        """Clear recorded requests globally or for a specific page."""
        storage = self.registry.get_request_storage(self._require_context())
        removed = storage.clear_requests(page_id=page_id)
        return {"ok": True, "removed": removed, "page_id": page_id}

    @mcp_tool(name="browser_network_get_stats")
    async def mcp_browser_network_get_stats(self) -> Dict[str, Any]:
        """Summary statistics and memory usage for recorded requests."""
        context = self._require_context()
        return {
            "ok": True,
            "stats": self.registry.get_request_storage(context).get_stats(),
            "pages": self.registry.get_tracked_pages(context),
        }


def _clamp_limit(limit: Any) -> int:
    try:
        value = int(limit) if limit is not None else DEFAULT_LIMIT
    except (TypeError, ValueError):
        value = DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, value))
