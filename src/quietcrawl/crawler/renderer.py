"""
Renderer - Playwright-backed page loading for the frontier scheduler.

For every URL the renderer opens a fresh page, navigates, waits for the page
to stabilize and extracts outgoing links. Failures are raised as
NavigationError with a FailureKind the scheduler uses to decide on retries.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Protocol, Tuple
from urllib.parse import urlsplit

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)
import structlog

from .models import FailureKind, PageVisit
from .stabilizer import StabilizationDetector, apply_deterministic_context


# Non-HTML resources that are never worth navigating to
BINARY_EXTENSIONS = (
    '.pdf', '.zip', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp', '.ico',
    '.mp4', '.mp3', '.avi', '.mov', '.wav', '.webm',
    '.rar', '.tar', '.gz', '.7z', '.exe', '.dmg', '.msi',
)

EXTRACT_LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href]')).map(a => a.href)
"""

DEFAULT_USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 quietcrawl/1.0'


class NavigationError(Exception):
    """Raised when a page cannot be loaded"""

    def __init__(self, kind: FailureKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class Renderer(Protocol):
    """What the frontier scheduler needs from a page loader"""

    async def extract(self, url: str) -> PageVisit:
        ...


def classify_status(status: Optional[int]) -> Optional[FailureKind]:
    """
    Map an HTTP status to a failure kind.

    Returns:
        FailureKind for 401/403/404/410/5xx, None for anything that can be rendered
    """
    if status is None:
        return None
    if status in (401, 403):
        return FailureKind.AUTH_REQUIRED
    if status in (404, 410):
        return FailureKind.NOT_FOUND
    if status >= 500:
        return FailureKind.SERVER_ERROR
    return None


def filter_links(hrefs: Iterable[str]) -> List[str]:
    """
    Keep absolute http(s) links to non-binary resources, deduplicated in order.

    Args:
        hrefs: Raw href values (already resolved by the browser)

    Returns:
        Filtered list of links
    """
    links = []
    seen = set()
    for href in hrefs:
        if not isinstance(href, str):
            continue
        if not href.startswith(('http://', 'https://')):
            continue
        try:
            path = urlsplit(href).path.lower()
        except ValueError:
            continue
        if path.endswith(BINARY_EXTENSIONS):
            continue
        if href in seen:
            continue
        seen.add(href)
        links.append(href)
    return links


class PlaywrightRenderer:
    """
    Page renderer using a shared Playwright browser context.

    Example:
        >>> async with PlaywrightRenderer() as renderer:
        ...     visit = await renderer.extract("https://example.com")
        ...     print(visit.links)
    """

    def __init__(
        self,
        headless: bool = True,
        navigation_timeout_ms: int = 45000,
        recovery_wait_ms: int = 2000,
        link_extraction_timeout_ms: int = 10000,
        user_agent: Optional[str] = None,
        stabilizer: Optional[StabilizationDetector] = None,
        deterministic_context: bool = True,
        browser_type: str = "chromium",
    ):
        """
        Initialize the renderer.

        Args:
            headless: Run browser in headless mode
            navigation_timeout_ms: Timeout for page.goto()
            recovery_wait_ms: Grace period before re-checking a timed-out page
            link_extraction_timeout_ms: Budget for reading links off a rendered page
            user_agent: Browser user agent (a default is used if None)
            stabilizer: Detector used after navigation (defaults if None)
            deterministic_context: Apply fixed viewport/motion/language per page
            browser_type: chromium, firefox or webkit
        """
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.recovery_wait_ms = recovery_wait_ms
        self.link_extraction_timeout_ms = link_extraction_timeout_ms
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.stabilizer = stabilizer or StabilizationDetector()
        self.deterministic_context = deterministic_context
        self.browser_type = browser_type

        # Playwright instances
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

        self.logger = structlog.get_logger(__name__)

    async def initialize(self):
        """Start Playwright and create the browser context"""
        self.logger.info("initializing_renderer", headless=self.headless, browser=self.browser_type)

        self.playwright = await async_playwright().start()
        launcher = getattr(self.playwright, self.browser_type)
        self.browser = await launcher.launch(
            headless=self.headless,
            args=['--disable-dev-shm-usage', '--no-sandbox'] if self.browser_type == "chromium" else None,
        )
        self.context = await self.browser.new_context(
            viewport={'width': 1920, 'height': 1080},
            user_agent=self.user_agent,
        )

        self.logger.info("renderer_initialized")

    async def close(self):
        """Close Playwright browser and cleanup"""
        if self.context:
            await self.context.close()
            self.context = None
        if self.browser:
            await self.browser.close()
            self.browser = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None

        self.logger.info("renderer_closed")

    async def __aenter__(self) -> "PlaywrightRenderer":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @asynccontextmanager
    async def open_page(self, url: str) -> AsyncIterator[Tuple[Page, Optional[int]]]:
        """
        Open a new page navigated to url; the page is closed on exit.

        Yields:
            (page, status_code) where status_code is None if unknown

        Raises:
            NavigationError: If navigation failed or returned an error status
            RuntimeError: If the renderer is not initialized
        """
        if not self.context:
            raise RuntimeError("Renderer not initialized. Call initialize() first.")

        page = await self.context.new_page()
        try:
            if self.deterministic_context:
                await apply_deterministic_context(page)
            status = await self.navigate(page, url)
            yield page, status
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                self.logger.debug("page_close_failed", url=url, error=str(e))

    async def navigate(self, page: Page, url: str) -> Optional[int]:
        """
        Navigate and classify the outcome.

        A navigation that times out but leaves a usable document
        (readyState interactive/complete or a non-empty title) succeeds.

        Returns:
            HTTP status code, or None if there was no response

        Raises:
            NavigationError: On timeout, network error or 401/403/404/410/5xx
        """
        self.logger.debug("navigating", url=url)
        response = None

        try:
            response = await page.goto(url, wait_until='domcontentloaded', timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            if not await self._loaded_despite_timeout(page):
                raise NavigationError(FailureKind.TIMEOUT, f"Navigation timeout: {e}") from e
            self.logger.info("navigation_timeout_recovered", url=url)
        except PlaywrightError as e:
            raise NavigationError(FailureKind.NETWORK_ERROR, f"Network error: {e}") from e

        if response is None:
            return None

        status = response.status
        kind = classify_status(status)
        if kind is not None:
            raise NavigationError(kind, f"HTTP {status}", status_code=status)

        if page.url != url and not page.url.startswith(url):
            self.logger.debug("redirect_detected", url=url, final_url=page.url)

        return status

    async def _loaded_despite_timeout(self, page: Page) -> bool:
        try:
            await page.wait_for_timeout(self.recovery_wait_ms)
        except PlaywrightError:
            return False

        try:
            ready_state = await asyncio.wait_for(
                page.evaluate("() => document.readyState"),
                timeout=self.link_extraction_timeout_ms / 1000,
            )
        except (PlaywrightError, asyncio.TimeoutError):
            ready_state = None
        try:
            title = await page.title()
        except PlaywrightError:
            title = ""

        return ready_state in ("interactive", "complete") or bool(title)

    async def extract_links(self, page: Page) -> List[str]:
        """
        Extract outgoing links from the current page.

        Returns:
            Absolute http(s) URLs, binary resources excluded, deduplicated

        Raises:
            NavigationError: TIMEOUT if the page does not answer in time
        """
        try:
            hrefs = await asyncio.wait_for(
                page.evaluate(EXTRACT_LINKS_JS),
                timeout=self.link_extraction_timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise NavigationError(
                FailureKind.TIMEOUT,
                f"Link extraction timed out after {self.link_extraction_timeout_ms}ms",
            ) from e
        links = filter_links(hrefs or [])
        self.logger.debug("links_extracted", count=len(links))
        return links

    async def extract(self, url: str) -> PageVisit:
        """
        Navigate, stabilize and extract links for one URL.

        Raises:
            NavigationError: If the page could not be loaded
        """
        try:
            async with self.open_page(url) as (page, status):
                report = await self.stabilizer.wait_for_quiet(page)
                links = await self.extract_links(page)
                return PageVisit(
                    url=url,
                    final_url=page.url,
                    status_code=status,
                    links=links,
                    quiet=report.quiet,
                )
        except PlaywrightTimeoutError as e:
            raise NavigationError(FailureKind.TIMEOUT, f"Timeout: {e}") from e
        except PlaywrightError as e:
            raise NavigationError(FailureKind.NETWORK_ERROR, f"Page error: {e}") from e
