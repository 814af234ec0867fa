"""Process-wide body capture limits.

Trackers snapshot the limits in effect when they are created; changing the
limits afterwards only affects pages attached later. Environment overrides
are read once per process, before the first structured override, so
explicit values always win.
"""

from __future__ import annotations

import logging
import math
import os
from typing import Any, Mapping, Optional

from .models import (
    DEFAULT_MAX_REQUEST_BODY_BYTES,
    DEFAULT_MAX_RESPONSE_BODY_BYTES,
    NetworkLimits,
)

logger = logging.getLogger(__name__)

ENV_MAX_REQUEST_KB = "NETWORK_MONITOR_MAX_REQUEST_KB"
ENV_MAX_RESPONSE_KB = "NETWORK_MONITOR_MAX_RESPONSE_KB"

_limits = NetworkLimits()
_env_applied = False


def get_network_limits() -> NetworkLimits:
    return _limits


def configure_network_limits(
    max_request_kb: Any = None,
    max_response_kb: Any = None,
) -> NetworkLimits:
    """
    Override the capture limits from kilobyte values.

    Invalid or non-positive values are ignored and the previous limit stays
    in effect. Returns the effective limits.
    """
    apply_env_limits_once()
    return _apply_kb(max_request_kb, max_response_kb)


def configure_network_limits_from_env(env: Optional[Mapping[str, str]] = None) -> NetworkLimits:
    source = os.environ if env is None else env
    return _apply_kb(source.get(ENV_MAX_REQUEST_KB), source.get(ENV_MAX_RESPONSE_KB))


def apply_env_limits_once() -> NetworkLimits:
    """Apply environment overrides the first time this is called in a process."""
    global _env_applied
    if not _env_applied:
        _env_applied = True
        configure_network_limits_from_env()
    return _limits


def reset_network_limits() -> NetworkLimits:
    """Restore the defaults; environment overrides are read again on next use."""
    global _limits, _env_applied
    _env_applied = False
    _limits = NetworkLimits(
        max_request_body_bytes=DEFAULT_MAX_REQUEST_BODY_BYTES,
        max_response_body_bytes=DEFAULT_MAX_RESPONSE_BODY_BYTES,
    )
    return _limits


def _apply_kb(max_request_kb: Any, max_response_kb: Any) -> NetworkLimits:
    global _limits
    request_bytes = _kb_to_bytes(max_request_kb)
    response_bytes = _kb_to_bytes(max_response_kb)
    if max_request_kb is not None and request_bytes is None:
        logger.warning("Ignoring invalid request body limit: %r", max_request_kb)
    if max_response_kb is not None and response_bytes is None:
        logger.warning("Ignoring invalid response body limit: %r", max_response_kb)
    _limits = NetworkLimits(
        max_request_body_bytes=request_bytes or _limits.max_request_body_bytes,
        max_response_body_bytes=response_bytes or _limits.max_response_body_bytes,
    )
    return _limits


def _kb_to_bytes(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    # Round half up to whole kilobytes.
    kb = int(math.floor(number + 0.5))
    if kb < 1:
        return None
    return kb * 1024
