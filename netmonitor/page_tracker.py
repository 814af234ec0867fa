"""Per-page capture pipeline.

A tracker subscribes to one Playwright page's `request`, `response` and
`requestfailed` events and writes traffic records into its context's store.
Each request moves through observed -> completed | failed; response or
failure events for requests the tracker never saw start are ignored.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import weakref
from typing import Any, Callable, Dict, Optional, Set, Tuple

from .models import (
    FAILED_STATUS,
    FAILED_STATUS_TEXT,
    STATE_COMPLETED,
    STATE_FAILED,
    NetworkLimits,
    PageSnapshot,
    new_request_record,
)
from .storage import RequestStorage, _byte_length

logger = logging.getLogger(__name__)

_tracker_counter = itertools.count(1)

_TIMING_PHASES = (
    ("domain_lookup", "domainLookupStart"),
    ("connect_start", "connectStart"),
    ("connect_end", "connectEnd"),
    ("request_start", "requestStart"),
    ("response_start", "responseStart"),
    ("response_end", "responseEnd"),
)


class PageTracker:
    """Capture network traffic for a single page."""

    def __init__(
        self,
        *,
        page: Any,
        page_id: str,
        storage: RequestStorage,
        limits: Optional[NetworkLimits] = None,
    ):
        self.page = page
        self.page_id = page_id
        self.storage = storage
        self.limits = limits or NetworkLimits()
        self.monitor_id = f"monitor-{next(_tracker_counter)}"
        self._disposed = False
        self._record_ids: "weakref.WeakKeyDictionary[Any, str]" = weakref.WeakKeyDictionary()
        self._tasks: Set[asyncio.Task[Any]] = set()

        self.latest_url = _safe_page_url(page)
        self.latest_title: Optional[str] = None

        self._handlers: Dict[str, Callable[..., Any]] = {
            "request": self._on_request,
            "response": self._on_response,
            "requestfailed": self._on_request_failed,
        }
        for event, handler in self._handlers.items():
            page.on(event, handler)
        self.storage.register_page_monitor(self.page_id, self.monitor_id)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        for event, handler in self._handlers.items():
            try:
                self.page.remove_listener(event, handler)
            except Exception as e:
                logger.debug("Failed to remove %s listener for %s: %s", event, self.page_id, e)
        self.storage.unregister_page_monitor(self.page_id)

    async def wait_idle(self) -> None:
        """Wait for in-flight response captures to settle."""
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def snapshot(self) -> PageSnapshot:
        self.latest_url = _safe_page_url(self.page) or self.latest_url
        return PageSnapshot(
            page_id=self.page_id,
            url=self.latest_url,
            title=self.latest_title or self.latest_url,
        )

    def _on_request(self, request: Any) -> None:
        try:
            self.latest_url = _safe_page_url(self.page)
            body, body_size, truncated = truncate_text(
                safe_call(lambda: request.post_data, None, what="request.post_data"),
                self.limits.max_request_body_bytes,
            )
            headers = safe_call(lambda: request.headers, None, what="request.headers")
            record = self.storage.save_request(
                new_request_record(
                    page_id=self.page_id,
                    page_url=self.latest_url,
                    page_title=self.latest_title or self.latest_url,
                    url=str(safe_call(lambda: request.url, "", what="request.url") or ""),
                    method=str(safe_call(lambda: request.method, "", what="request.method") or ""),
                    resource_type=safe_call(lambda: request.resource_type, None, what="request.resource_type"),
                    is_navigation_request=_is_navigation(request),
                    frame_url=_safe_frame_url(request),
                    request_headers=_safe_clone(headers),
                    request_body=body,
                    request_body_truncated=truncated,
                    request_body_size=body_size,
                )
            )
            self._record_ids[request] = record["id"]
        except Exception as e:
            logger.warning("Failed to capture request on %s: %s", self.page_id, e)

    def _on_response(self, response: Any) -> None:
        try:
            request = safe_call(lambda: response.request, None, what="response.request")
            record_id = self._claim(request)
            if record_id is None:
                logger.debug("Ignoring response for untracked request on %s", self.page_id)
                return
            task = asyncio.ensure_future(self._capture_response(record_id, request, response))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        except Exception as e:
            logger.warning("Failed to capture response on %s: %s", self.page_id, e)

    def _on_request_failed(self, request: Any) -> None:
        try:
            self.latest_url = _safe_page_url(self.page)
            record_id = self._claim(request)
            if record_id is None:
                logger.debug("Ignoring failure for untracked request on %s", self.page_id)
                return
            self.storage.update_request(
                record_id,
                {
                    "state": STATE_FAILED,
                    "status": FAILED_STATUS,
                    "status_text": FAILED_STATUS_TEXT,
                    "error": _failure_text(request) or "Request failed",
                },
            )
        except Exception as e:
            logger.warning("Failed to capture failed request on %s: %s", self.page_id, e)

    async def _capture_response(self, record_id: str, request: Any, response: Any) -> None:
        try:
            self.latest_url = _safe_page_url(self.page)
            headers = _safe_clone(safe_call(lambda: response.headers, None, what="response.headers"))
            status = safe_call(lambda: response.status, None, what="response.status")
            status_text = safe_call(lambda: response.status_text, None, what="response.status_text")

            body: Optional[str] = None
            body_size = 0
            truncated = False
            body_error: Optional[str] = None
            try:
                text = await response.text()
                body, body_size, truncated = truncate_text(text, self.limits.max_response_body_bytes)
            except Exception as e:
                body_error = str(e) or type(e).__name__

            # Record ids restart after a store reset; a disposed tracker must not write.
            if self._disposed:
                logger.debug("Dropping response for %s captured after dispose", record_id)
                return

            timing = normalize_timing(safe_call(lambda: request.timing, None, what="request.timing"))
            patch = {
                "state": STATE_COMPLETED,
                "status": status,
                "status_text": status_text,
                "response_headers": headers,
                "response_body": body,
                "response_body_truncated": truncated,
                "response_body_error": body_error,
                "response_body_bytes": _byte_length(body),
                "response_body_size": body_size,
                "content_type": get_header(headers, "content-type"),
                "timing": timing,
                "duration_ms": timing.get("duration") if timing else None,
            }
            self.storage.update_request(record_id, patch)

            if _is_navigation(request):
                await self._refresh_title()
        except Exception as e:
            logger.warning("Failed to capture response on %s: %s", self.page_id, e)

    async def _refresh_title(self) -> None:
        try:
            title = await self.page.title()
        except Exception as e:
            logger.debug("Could not read title for %s: %s", self.page_id, e)
            return
        if title:
            self.latest_title = str(title)

    def _claim(self, request: Any) -> Optional[str]:
        """Take the record id for a request, moving it out of the observed state."""
        if request is None:
            return None
        try:
            return self._record_ids.pop(request, None)
        except TypeError:
            return None


def safe_call(fn: Callable[[], Any], default: Any = None, *, what: str = "value") -> Any:
    """Read from the live browser object graph, returning `default` on failure."""
    try:
        return fn()
    except Exception as e:
        logger.debug("Could not read %s: %s", what, e)
        return default


def truncate_text(value: Any, max_bytes: int) -> Tuple[Optional[str], int, bool]:
    """
    Cut text to at most `max_bytes` UTF-8 bytes.

    Returns `(text, original_byte_length, truncated)`. A multi-byte character
    split by the limit is dropped entirely.
    """
    if not isinstance(value, str) or not value:
        return (value if isinstance(value, str) else None), 0, False
    encoded = value.encode("utf-8", errors="replace")
    original = len(encoded)
    if original <= max_bytes:
        return value, original, False
    clipped = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return clipped, original, True


def normalize_timing(timing: Any) -> Optional[Dict[str, Any]]:
    """
    Convert a Playwright ResourceTiming dict into offsets from request start.

    Playwright reports each phase in milliseconds relative to `startTime`
    with -1 for unavailable phases.
    """
    if not isinstance(timing, dict):
        return None
    start_time = timing.get("startTime")
    out: Dict[str, Any] = {"start_time": start_time if _is_offset(start_time) else None}
    for key, source in _TIMING_PHASES:
        value = timing.get(source)
        out[key] = value if _is_offset(value) else None
    response_end = out["response_end"]
    out["duration"] = response_end if response_end is not None and out["start_time"] is not None else None
    return out


def get_header(headers: Any, name: str) -> Optional[str]:
    if not headers:
        return None
    wanted = name.lower()
    try:
        for key, value in dict(headers).items():
            if str(key).lower() == wanted:
                return value
    except Exception:
        return None
    return None


def _is_offset(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0


def _safe_page_url(page: Any) -> str:
    url = safe_call(lambda: page.url, None, what="page.url")
    return str(url) if url else "about:blank"


def _is_navigation(request: Any) -> bool:
    return bool(safe_call(lambda: request.is_navigation_request(), False, what="request.is_navigation_request"))


def _safe_frame_url(request: Any) -> Optional[str]:
    frame = safe_call(lambda: request.frame, None, what="request.frame")
    if frame is None:
        return None
    url = safe_call(lambda: frame.url, None, what="frame.url")
    return str(url) if url else None


def _safe_clone(value: Any) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        return copy.deepcopy(dict(value))
    except Exception:
        return None


def _failure_text(request: Any) -> Optional[str]:
    failure = safe_call(lambda: request.failure, None, what="request.failure")
    if callable(failure):
        failure = safe_call(failure, None, what="request.failure()")
    if isinstance(failure, dict):
        failure = failure.get("errorText")
    return str(failure) if failure else None
