# services/web2md/browser.py
"""
Headless Chromium rendering for script-heavy pages.

Whether a browser can be launched is decided once, in ``start()``; the
result is kept as ``BrowserRenderer.capability`` so the pipeline can skip the
stage without probing Playwright on every request.  Each render gets its own
browser context which is always closed, and every request the page makes is
checked against the same public-address rules as the HTTP fetcher.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright
from prometheus_client import Counter, Gauge, Histogram

from core.exceptions import EngineUnavailable, FetchTimeout, NetworkError, Web2MdException
from .safe_fetch import SafeFetcher

BLOCKED_RESOURCE_TYPES = {"image", "media", "font"}

BROWSER_AVAILABLE = Gauge("web2md_browser_available", "1 when headless Chromium launched at startup")
BROWSER_PAGES_ACTIVE = Gauge("web2md_browser_pages_active", "Browser contexts currently rendering")
BROWSER_RENDERS = Counter("web2md_browser_renders_total", "Browser renders by outcome", ["outcome"])
BROWSER_BLOCKED_REQUESTS = Counter(
    "web2md_browser_blocked_requests_total", "Sub-requests aborted by the address check"
)
PAGE_LOAD_DURATION = Histogram("web2md_page_load_duration_seconds", "Time taken for browser page loads")


@dataclass
class BrowserCapability:
    available: bool
    reason: Optional[str] = None


@dataclass
class RenderedPage:
    html: str
    final_url: str
    status: Optional[int] = None


class BrowserRenderer:
    """Owns one Playwright Chromium process for the lifetime of the service."""

    def __init__(self, fetcher: SafeFetcher, max_pages: int = 2):
        self._fetcher = fetcher
        self._playwright = None
        self._browser = None
        self._semaphore = asyncio.Semaphore(max_pages)
        self.capability = BrowserCapability(available=False, reason="not_started")

    async def start(self) -> BrowserCapability:
        """Launch Chromium once.  Failure leaves the renderer unavailable."""
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=True,
                args=[
                    "--disable-gpu",
                    "--no-sandbox",
                    "--disable-dev-shm-usage",
                    "--disable-blink-features=AutomationControlled",
                ],
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(f"Headless browser unavailable, browser stage disabled: {exc}")
            await self.close()
            self.capability = BrowserCapability(available=False, reason=str(exc).splitlines()[0])
            return self.capability

        logger.info("Headless Chromium launched for browser rendering")
        BROWSER_AVAILABLE.set(1)
        self.capability = BrowserCapability(available=True)
        return self.capability

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                logger.warning(f"Error closing browser: {exc}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        BROWSER_AVAILABLE.set(0)
        if self.capability.available:
            self.capability = BrowserCapability(available=False, reason="closed")

    async def _guard_request(self, route) -> None:
        request = route.request
        if request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
            return
        if request.url.startswith(("http://", "https://")):
            try:
                await self._fetcher.assert_public_target(request.url)
            except Web2MdException as exc:
                BROWSER_BLOCKED_REQUESTS.inc()
                logger.warning(f"Browser request to {request.url} aborted: {exc.message}")
                await route.abort("blockedbyclient")
                return
        await route.continue_()

    async def render(self, url: str, headers: Dict[str, str], timeout: float) -> RenderedPage:
        if not self.capability.available or self._browser is None:
            raise EngineUnavailable(f"browser_unavailable: {self.capability.reason}")

        await self._fetcher.assert_public_target(url)
        extra_headers = {
            name: value for name, value in headers.items() if name.lower() != "user-agent"
        }

        async with self._semaphore:
            context = await self._browser.new_context(
                user_agent=headers.get("User-Agent"),
                extra_http_headers=extra_headers,
                java_script_enabled=True,
                viewport={"width": 1280, "height": 1024},
            )
            BROWSER_PAGES_ACTIVE.inc()
            start = time.perf_counter()
            try:
                page = await context.new_page()
                await page.route("**/*", self._guard_request)
                response = await page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
                html = await page.content()
                BROWSER_RENDERS.labels(outcome="ok").inc()
                return RenderedPage(
                    html=html,
                    final_url=page.url,
                    status=response.status if response is not None else None,
                )
            except PlaywrightTimeoutError as exc:
                BROWSER_RENDERS.labels(outcome="timeout").inc()
                raise FetchTimeout(f"Browser render of {url} timed out.") from exc
            except PlaywrightError as exc:
                BROWSER_RENDERS.labels(outcome="error").inc()
                raise NetworkError(f"Browser render of {url} failed: {exc.message}") from exc
            finally:
                PAGE_LOAD_DURATION.observe(time.perf_counter() - start)
                BROWSER_PAGES_ACTIVE.dec()
                await context.close()
