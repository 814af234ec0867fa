"""Browser network capture runtime package."""

from .install import ContextMonitor, install_network_monitoring
from .limits import (
    apply_env_limits_once,
    configure_network_limits,
    configure_network_limits_from_env,
    get_network_limits,
    reset_network_limits,
)
from .models import NetworkLimits, PageSnapshot, SessionConfig
from .page_tracker import PageTracker
from .session import MonitoredSession
from .state import (
    ContextRegistry,
    attach_page,
    detach_page,
    get_request_storage,
    get_tracked_pages,
    reset_context,
)
from .storage import RequestStorage
from .tools import NetworkToolsFeature

__all__ = [
    "ContextMonitor",
    "ContextRegistry",
    "MonitoredSession",
    "NetworkLimits",
    "NetworkToolsFeature",
    "PageSnapshot",
    "PageTracker",
    "RequestStorage",
    "SessionConfig",
    "apply_env_limits_once",
    "attach_page",
    "configure_network_limits",
    "configure_network_limits_from_env",
    "detach_page",
    "get_network_limits",
    "get_request_storage",
    "get_tracked_pages",
    "install_network_monitoring",
    "reset_context",
    "reset_network_limits",
]
