"""Per-context capture state: one store and one tracker per page."""

from __future__ import annotations

import itertools
import logging
import weakref
from typing import Any, Dict, List, Optional

from .limits import get_network_limits
from .models import ContextState
from .page_tracker import PageTracker
from .storage import RequestStorage

logger = logging.getLogger(__name__)

_page_counter = itertools.count(1)


class ContextRegistry:
    """
    Map browser contexts to their capture state.

    Contexts are held weakly; state is torn down explicitly through
    `reset_context` when a context closes.
    """

    def __init__(self) -> None:
        self._states: "weakref.WeakKeyDictionary[Any, ContextState]" = weakref.WeakKeyDictionary()

    def ensure_context_state(self, context: Any) -> ContextState:
        state = self._states.get(context)
        if state is None:
            state = ContextState(storage=RequestStorage())
            self._states[context] = state
        return state

    def attach_page(self, context: Any, page: Any) -> PageTracker:
        state = self.ensure_context_state(context)
        tracker = state.trackers.get(page)
        if tracker is not None:
            return tracker
        tracker = PageTracker(
            page=page,
            page_id=f"page-{next(_page_counter)}",
            storage=state.storage,
            limits=get_network_limits(),
        )
        state.trackers[page] = tracker
        logger.debug("Attached %s (%s)", tracker.page_id, tracker.monitor_id)
        return tracker

    def detach_page(self, context: Any, page: Any) -> None:
        state = self._states.get(context)
        if state is None:
            return
        tracker = state.trackers.pop(page, None)
        if tracker is None:
            return
        tracker.dispose()
        logger.debug("Detached %s", tracker.page_id)

    def reset_context(self, context: Any) -> None:
        state = self._states.get(context)
        if state is None:
            return
        for tracker in list(state.trackers.values()):
            tracker.dispose()
        state.trackers.clear()
        state.storage.reset()

    def get_request_storage(self, context: Any) -> RequestStorage:
        return self.ensure_context_state(context).storage

    def get_tracker(self, context: Any, page: Any) -> Optional[PageTracker]:
        state = self._states.get(context)
        if state is None:
            return None
        return state.trackers.get(page)

    def get_tracked_pages(self, context: Any) -> List[Dict[str, Any]]:
        state = self._states.get(context)
        if state is None:
            return []
        return [tracker.snapshot().to_dict() for tracker in state.trackers.values()]


default_registry = ContextRegistry()


def attach_page(context: Any, page: Any) -> PageTracker:
    return default_registry.attach_page(context, page)


def detach_page(context: Any, page: Any) -> None:
    default_registry.detach_page(context, page)


def reset_context(context: Any) -> None:
    default_registry.reset_context(context)


def get_request_storage(context: Any) -> RequestStorage:
    return default_registry.get_request_storage(context)


def get_tracked_pages(context: Any) -> List[Dict[str, Any]]:
    return default_registry.get_tracked_pages(context)
