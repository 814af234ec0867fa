"""Shared models for the network monitor runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .storage import RequestStorage

DEFAULT_MAX_REQUEST_BODY_BYTES = 32 * 1024
DEFAULT_MAX_RESPONSE_BODY_BYTES = 64 * 1024

# Capture state machine values stored on each record under "state".
STATE_OBSERVED = "observed"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"

FAILED_STATUS = 0
FAILED_STATUS_TEXT = "FAILED"


@dataclass(frozen=True)
class NetworkLimits:
    """Immutable body capture ceilings, in bytes."""

    max_request_body_bytes: int = DEFAULT_MAX_REQUEST_BODY_BYTES
    max_response_body_bytes: int = DEFAULT_MAX_RESPONSE_BODY_BYTES


@dataclass(frozen=True)
class SessionConfig:
    """Immutable session-level configuration."""

    start_url: Optional[str] = None
    headless: bool = True
    timeout_ms: int = 30000
    max_request_kb: Optional[float] = None
    max_response_kb: Optional[float] = None


@dataclass
class PageSnapshot:
    """Reporting view of a tracked page."""

    page_id: str
    url: Optional[str] = None
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"page_id": self.page_id, "url": self.url, "title": self.title}


@dataclass
class ContextState:
    """Per-context capture state: one store plus the trackers keyed by page."""

    storage: RequestStorage
    trackers: Dict[Any, Any] = field(default_factory=dict)


def new_request_record(**fields: Any) -> Dict[str, Any]:
    """Return a traffic record skeleton with an empty response facet."""
    record: Dict[str, Any] = {
        "state": STATE_OBSERVED,
        "page_id": None,
        "page_url": None,
        "page_title": None,
        "url": "",
        "method": "",
        "resource_type": None,
        "is_navigation_request": False,
        "frame_url": None,
        "request_headers": None,
        "request_body": None,
        "request_body_truncated": False,
        "status": None,
        "status_text": None,
        "response_headers": None,
        "response_body": None,
        "response_body_truncated": False,
        "response_body_error": None,
        "content_type": None,
        "timing": None,
        "duration_ms": None,
        "error": None,
    }
    record.update(fields)
    return record
