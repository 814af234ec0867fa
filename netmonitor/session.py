"""Playwright session lifecycle with network monitoring installed."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .install import ContextMonitor, install_network_monitoring
from .limits import configure_network_limits
from .models import SessionConfig
from .state import ContextRegistry, default_registry

logger = logging.getLogger(__name__)

try:
    from playwright.async_api import async_playwright
except ImportError:
    async_playwright = None  # type: ignore


class MonitoredSession:
    """Launch Chromium and capture traffic for every page of its context."""

    def __init__(self, registry: Optional[ContextRegistry] = None):
        self.registry = registry or default_registry
        self.playwright: Any = None
        self.browser: Any = None
        self.context: Any = None
        self.page: Any = None
        self.monitor: Optional[ContextMonitor] = None
        self._timeout_ms = 30000

    async def start(self, config: Optional[SessionConfig] = None) -> Any:
        """Launch the browser, install monitoring, and return the first page."""
        if async_playwright is None:
            raise ImportError(
                "Playwright is not available. Install with: pip install playwright "
                "and install browser binaries."
            )
        config = config or SessionConfig()
        if config.max_request_kb is not None or config.max_response_kb is not None:
            configure_network_limits(
                max_request_kb=config.max_request_kb,
                max_response_kb=config.max_response_kb,
            )

        self._timeout_ms = int(config.timeout_ms)
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=bool(config.headless),
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
        self.context = await self.browser.new_context()
        self.context.set_default_timeout(float(self._timeout_ms))
        self.context.set_default_navigation_timeout(float(self._timeout_ms))

        self.monitor = install_network_monitoring(self.context, registry=self.registry)

        page = await self.new_page()
        if config.start_url:
            await page.goto(config.start_url, wait_until="domcontentloaded")
        return page

    async def new_page(self) -> Any:
        if self.context is None:
            raise RuntimeError("Browser context is not initialized")
        page = await self.context.new_page()
        page.set_default_timeout(float(self._timeout_ms))
        page.set_default_navigation_timeout(float(self._timeout_ms))
        self.page = page
        return page

    def get_active_page(self) -> Any:
        page = self.page
        if page is not None:
            try:
                if not page.is_closed():
                    return page
            except Exception as e:
                logger.debug("Could not check page state: %s", e)

        if self.context is None:
            return None
        for candidate in list(self.context.pages):
            if not candidate.is_closed():
                self.page = candidate
                return candidate
        return None

    async def shutdown(self) -> None:
        if self.monitor is not None:
            self.monitor.uninstall()
            self.monitor = None

        try:
            if self.context is not None:
                await self.context.close()
        except Exception as e:
            logger.warning("Failed to close context: %s", e)

        try:
            if self.browser is not None:
                await self.browser.close()
        except Exception as e:
            logger.warning("Failed to close browser: %s", e)

        try:
            if self.playwright is not None:
                await self.playwright.stop()
        except Exception as e:
            logger.warning("Failed to stop playwright: %s", e)

        self.context = None
        self.browser = None
        self.playwright = None
        self.page = None
