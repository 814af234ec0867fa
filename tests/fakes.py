"""Shared fakes for Playwright pages, contexts, requests and responses."""

import asyncio
from typing import Any, Callable, Dict, List, Optional


class FakeEmitter:
    """Minimal stand-in for Playwright's on/remove_listener event API."""

    def __init__(self):
        self.listeners: Dict[str, List[Callable[..., Any]]] = {}

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[..., Any]) -> None:
        self.listeners.get(event, []).remove(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(*args)

    def listener_count(self, event: str) -> int:
        return len(self.listeners.get(event, []))


class FakePage(FakeEmitter):
    def __init__(self, url: str = "https://example.com/", title: str = "Example"):
        super().__init__()
        self.url = url
        self._title = title
        self.closed = False

    async def title(self) -> str:
        return self._title

    def is_closed(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True
        self.emit("close", self)


class FakeContext(FakeEmitter):
    def __init__(self):
        super().__init__()
        self.pages: List[FakePage] = []

    def open_page(self, url: str = "https://example.com/") -> FakePage:
        page = FakePage(url=url)
        self.pages.append(page)
        self.emit("page", page)
        return page

    def close(self) -> None:
        self.emit("close", self)


class FakeFrame:
    def __init__(self, url: str):
        self.url = url


class FakeRequest:
    def __init__(
        self,
        url: str = "https://example.com/api/items",
        method: str = "GET",
        resource_type: str = "fetch",
        headers: Optional[Dict[str, str]] = None,
        post_data: Optional[str] = None,
        frame_url: Optional[str] = "https://example.com/",
        navigation: bool = False,
        timing: Optional[Dict[str, float]] = None,
        failure: Optional[str] = None,
    ):
        self.url = url
        self.method = method
        self.resource_type = resource_type
        self.headers = headers if headers is not None else {"accept": "*/*"}
        self.post_data = post_data
        self.frame = FakeFrame(frame_url) if frame_url else None
        self.timing = timing
        self.failure = failure
        self._navigation = navigation

    def is_navigation_request(self) -> bool:
        return self._navigation


class FakeResponse:
    def __init__(
        self,
        request: FakeRequest,
        status: int = 200,
        status_text: str = "OK",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = "",
        body_error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.request = request
        self.status = status
        self.status_text = status_text
        self.headers = headers if headers is not None else {"content-type": "application/json"}
        self._body = body
        self._body_error = body_error
        self._gate = gate

    async def text(self) -> Optional[str]:
        if self._gate is not None:
            await self._gate.wait()
        if self._body_error is not None:
            raise self._body_error
        return self._body

