"""Bind capture state to a Playwright browser context's page lifecycle."""

from __future__ import annotations

import logging
import weakref
from typing import Any, Callable, Dict, Optional

from .limits import apply_env_limits_once
from .page_tracker import PageTracker
from .state import ContextRegistry, default_registry

logger = logging.getLogger(__name__)

_monitors: "weakref.WeakKeyDictionary[Any, ContextMonitor]" = weakref.WeakKeyDictionary()


class ContextMonitor:
    """Listener registrations that keep one context's trackers in sync with its pages."""

    def __init__(self, context: Any, registry: ContextRegistry):
        self.context = context
        self.registry = registry
        self._installed = False
        self._page_close_handlers: Dict[Any, Callable[..., Any]] = {}

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> "ContextMonitor":
        if self._installed:
            return self
        for page in list(getattr(self.context, "pages", None) or []):
            self._on_page_created(page)
        self.context.on("page", self._on_page_created)
        self.context.on("close", self._on_context_closed)
        self._installed = True
        return self

    def uninstall(self) -> None:
        """Stop listening and drop all captured state for the context."""
        if not self._installed:
            return
        self._installed = False
        for event, handler in (("page", self._on_page_created), ("close", self._on_context_closed)):
            try:
                self.context.remove_listener(event, handler)
            except Exception as e:
                logger.debug("Failed to remove context %s listener: %s", event, e)
        self._teardown()

    def _on_page_created(self, page: Any) -> Optional[PageTracker]:
        try:
            tracker = self.registry.attach_page(self.context, page)
        except Exception as e:
            logger.warning("Failed to attach network monitor to page: %s", e)
            return None
        if page not in self._page_close_handlers:

            def _on_close(*_args: Any) -> None:
                self._on_page_closed(page)

            self._page_close_handlers[page] = _on_close
            try:
                page.on("close", _on_close)
            except Exception as e:
                logger.warning("Failed to watch page close for %s: %s", tracker.page_id, e)
        return tracker

    def _on_page_closed(self, page: Any) -> None:
        handler = self._page_close_handlers.pop(page, None)
        if handler is not None:
            try:
                page.remove_listener("close", handler)
            except Exception as e:
                logger.debug("Failed to remove page close listener: %s", e)
        try:
            self.registry.detach_page(self.context, page)
        except Exception as e:
            logger.warning("Failed to detach network monitor from page: %s", e)

    def _on_context_closed(self, *_args: Any) -> None:
        self._installed = False
        self._teardown()

    def _teardown(self) -> None:
        for page in list(self._page_close_handlers):
            handler = self._page_close_handlers.pop(page)
            try:
                page.remove_listener("close", handler)
            except Exception as e:
                logger.debug("Failed to remove page close listener: %s", e)
        try:
            self.registry.reset_context(self.context)
        except Exception as e:
            logger.warning("Failed to reset network monitor state: %s", e)
        _monitors.pop(self.context, None)


def install_network_monitoring(
    context: Any,
    registry: Optional[ContextRegistry] = None,
) -> ContextMonitor:
    """
    Start capturing traffic for every current and future page of `context`.

    Installing twice on the same context returns the existing monitor.
    Environment limit overrides are applied once per process.
    """
    apply_env_limits_once()

    monitor = _monitors.get(context)
    if monitor is not None and monitor.installed:
        return monitor
    monitor = ContextMonitor(context, registry or default_registry)
    _monitors[context] = monitor
    return monitor.install()
