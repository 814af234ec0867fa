"""Per-context in-memory store for captured traffic records."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Pattern

_BYTE_FIELDS = (
    ("request_body", "request_body_bytes", "request_body_size"),
    ("response_body", "response_body_bytes", "response_body_size"),
)


class RequestStorage:
    """Insertion-ordered record store scoped to one browser context."""

    def __init__(self) -> None:
        self._requests: Dict[str, Dict[str, Any]] = {}
        self._request_counter = 0
        self._active_page_monitors: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def save_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Store a new record and return it; later updates mutate it in place."""
        self._request_counter += 1
        request_id = f"req-{self._request_counter}"
        record: Dict[str, Any] = dict(data or {})
        # id and timestamp belong to the store.
        record["id"] = request_id
        record["timestamp"] = _now_ms()
        for body_key, bytes_key, size_key in _BYTE_FIELDS:
            if not _is_number(record.get(bytes_key)):
                record[bytes_key] = _byte_length(record.get(body_key))
            if not _is_number(record.get(size_key)):
                record[size_key] = record[bytes_key]
        self._requests[request_id] = record
        return record

    def update_request(self, request_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        existing = self._requests.get(request_id)
        if existing is None:
            return None
        changes = {k: v for k, v in (patch or {}).items() if k not in ("id", "timestamp")}
        existing.update(changes)
        for body_key, bytes_key, size_key in _BYTE_FIELDS:
            if body_key in changes and not _is_number(existing.get(bytes_key)):
                existing[bytes_key] = _byte_length(existing.get(body_key))
            if size_key in changes and not _is_number(existing.get(size_key)):
                existing[size_key] = existing.get(bytes_key) or 0
        return existing

    def get_request(self, request_id: str) -> Optional[Dict[str, Any]]:
        return self._requests.get(request_id)

    def query_requests(
        self,
        *,
        page_id: Optional[str] = None,
        url_pattern: Optional[str] = None,
        method: Optional[str] = None,
        status: Optional[int] = None,
        resource_type: Optional[str] = None,
        since: Any = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Filter stored records, newest first.

        Args:
            page_id: Exact page identifier.
            url_pattern: Case-insensitive URL pattern where `*` matches any
                substring; every other character is literal.
            method: HTTP method, compared case-insensitively.
            status: Exact numeric status.
            resource_type: Exact Playwright resource type.
            since: Inclusive lower bound on `timestamp`, as epoch milliseconds
                or an ISO-8601 string. Unparseable values are ignored.
            search: Case-insensitive regex (or literal text when the regex is
                invalid) matched against URL, request body and response body.
            limit: Positive cap on returned results; `total` is unaffected.

        Returns:
            Dict with `total` (filtered count) and `results` (shallow copies).
        """
        results = list(self._requests.values())

        if page_id:
            results = [r for r in results if r.get("page_id") == page_id]

        if url_pattern:
            pattern = _wildcard_pattern(url_pattern)
            if pattern is not None:
                results = [r for r in results if pattern.search(str(r.get("url") or ""))]

        if method:
            method_norm = str(method).upper()
            results = [r for r in results if str(r.get("method") or "").upper() == method_norm]

        if _is_number(status):
            results = [r for r in results if r.get("status") == status]

        if resource_type:
            results = [r for r in results if r.get("resource_type") == resource_type]

        if since:
            since_ts = _normalize_timestamp(since)
            if since_ts:
                results = [r for r in results if r.get("timestamp", 0) >= since_ts]

        if search:
            pattern = _search_pattern(search)
            if pattern is not None:
                results = [r for r in results if _matches_search(r, pattern)]

        results.sort(key=lambda r: r.get("timestamp", 0), reverse=True)

        total = len(results)
        if _is_number(limit) and limit > 0:
            results = results[: int(limit)]

        return {
            "total": total,
            "results": [dict(r) for r in results],
        }

    def clear_requests(self, page_id: Optional[str] = None) -> int:
        if not page_id:
            total = len(self._requests)
            self._requests.clear()
            return total

        doomed = [rid for rid, r in self._requests.items() if r.get("page_id") == page_id]
        for rid in doomed:
            del self._requests[rid]
        return len(doomed)

    def register_page_monitor(self, page_id: str, monitor_id: str) -> None:
        self._active_page_monitors[page_id] = monitor_id

    def unregister_page_monitor(self, page_id: str) -> None:
        self._active_page_monitors.pop(page_id, None)

    def reset(self) -> None:
        self._requests.clear()
        self._active_page_monitors.clear()
        self._request_counter = 0

    def get_stats(self) -> Dict[str, Any]:
        by_method: Dict[str, int] = {}
        by_status: Dict[str, int] = {}
        by_resource_type: Dict[str, int] = {}
        by_page: Dict[str, Dict[str, Any]] = {}

        for record in self._requests.values():
            method = str(record.get("method") or "unknown").upper()
            by_method[method] = by_method.get(method, 0) + 1

            status = record.get("status")
            status_key = str(status) if _is_number(status) else "unknown"
            by_status[status_key] = by_status.get(status_key, 0) + 1

            resource_type = record.get("resource_type") or "unknown"
            by_resource_type[resource_type] = by_resource_type.get(resource_type, 0) + 1

            page_key = record.get("page_id") or "unknown"
            page = by_page.setdefault(page_key, {"count": 0, "title": None, "url": None})
            page["count"] += 1
            page["title"] = record.get("page_title") or page["title"]
            page["url"] = record.get("page_url") or page["url"]

        return {
            "total": len(self._requests),
            "by_method": by_method,
            "by_status": by_status,
            "by_resource_type": by_resource_type,
            "by_page": by_page,
            "active_monitors": len(self._active_page_monitors),
            "usage": self.get_usage(),
        }

    def get_usage(self) -> Dict[str, int]:
        """Sum saved vs. original body bytes; the estimate ignores headers and metadata."""
        request_bytes = 0
        response_bytes = 0
        request_original_bytes = 0
        response_original_bytes = 0
        request_truncated = 0
        response_truncated = 0

        for record in self._requests.values():
            req_saved = int(record.get("request_body_bytes") or 0)
            res_saved = int(record.get("response_body_bytes") or 0)
            req_original = record.get("request_body_size")
            res_original = record.get("response_body_size")
            request_bytes += req_saved
            response_bytes += res_saved
            request_original_bytes += int(req_original) if _is_number(req_original) else req_saved
            response_original_bytes += int(res_original) if _is_number(res_original) else res_saved
            if record.get("request_body_truncated"):
                request_truncated += 1
            if record.get("response_body_truncated"):
                response_truncated += 1

        return {
            "total_requests": len(self._requests),
            "request_bytes": request_bytes,
            "request_original_bytes": request_original_bytes,
            "request_truncated": request_truncated,
            "response_bytes": response_bytes,
            "response_original_bytes": response_original_bytes,
            "response_truncated": response_truncated,
            "estimated_memory_bytes": request_bytes + response_bytes,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _byte_length(body: Any) -> int:
    if not body or not isinstance(body, str):
        return 0
    return len(body.encode("utf-8", errors="replace"))


def _wildcard_pattern(pattern: str) -> Optional[Pattern[str]]:
    try:
        escaped = re.escape(str(pattern)).replace(r"\*", ".*")
        return re.compile(escaped, re.IGNORECASE)
    except re.error:
        return None


def _search_pattern(query: str) -> Optional[Pattern[str]]:
    if not query:
        return None
    try:
        return re.compile(str(query), re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(str(query)), re.IGNORECASE)


def _matches_search(record: Dict[str, Any], pattern: Pattern[str]) -> bool:
    for key in ("url", "request_body", "response_body"):
        value = record.get(key)
        if isinstance(value, str) and value and pattern.search(value):
            return True
    return False


def _normalize_timestamp(value: Any) -> Optional[float]:
    if _is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp() * 1000
    return None
