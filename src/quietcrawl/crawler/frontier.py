"""
Frontier Scheduler - Breadth-first site exploration under budgets.

The scheduler owns all crawl state (discovered/visited sets, retry counters,
failure records, robots rules) and resets it at the start of every crawl.
One frontier item is processed at a time:

    pop → depth/scope/robots gate → renderer.extract → canonicalize links
        → scope/robots/dedup gate → enqueue at depth + 1

The loop stops when the frontier is empty, the page budget is used up or the
wall-clock budget runs out. Every outcome ends up in the CrawlResult; no
exception other than cancellation escapes crawl().
"""

from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

import structlog

from .models import (
    CrawlBudget,
    CrawlOptions,
    CrawlResult,
    FailedEntry,
    FailureKind,
    FrontierItem,
    GateDecision,
    PageVisit,
    StopReason,
)
from .renderer import NavigationError, PlaywrightRenderer, Renderer
from .robots import RobotsPolicy
from .sitemap import SitemapSeeder
from .stabilizer import monotonic_ms
from .url_utils import canonicalize_url, in_scope, origin_of


# Transient failures are retried this many times before a URL is retired
MAX_RETRIES = 1


class FrontierScheduler:
    """
    Breadth-first crawl scheduler.

    Example:
        >>> async with PlaywrightRenderer() as renderer:
        ...     scheduler = FrontierScheduler(renderer)
        ...     result = await scheduler.crawl("https://example.com", max_pages=20)
        >>> result.visited_urls, result.unvisited_urls, result.failed_urls
    """

    def __init__(
        self,
        renderer: Renderer,
        robots: Optional[RobotsPolicy] = None,
        sitemap_seeder: Optional[SitemapSeeder] = None,
        rate_limiter: Optional[Any] = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        """
        Initialize the scheduler.

        Args:
            renderer: Page loader used for every attempt
            robots: robots.txt policy (default RobotsPolicy if None)
            sitemap_seeder: Sitemap seed source (default SitemapSeeder if None)
            rate_limiter: Optional AdaptiveRateLimiter awaited before each attempt
            clock: Millisecond clock used for the time budget
        """
        self.renderer = renderer
        self.robots = robots or RobotsPolicy()
        self.sitemap_seeder = sitemap_seeder or SitemapSeeder()
        self.rate_limiter = rate_limiter
        self.clock = clock

        self.observers: List[Callable[[str, Dict[str, Any]], None]] = []
        self.logger = structlog.get_logger(__name__)

        self._reset_state(CrawlBudget(), "")

    def _reset_state(self, budget: CrawlBudget, start_url: str):
        self.budget = budget
        self.start_url = start_url
        self.discovered_order: List[str] = []
        self.discovered: Set[str] = set()
        self.visited: Set[str] = set()
        self.retry_counts: Dict[str, int] = {}
        self.failed: List[FailedEntry] = []
        self.frontier: Deque[FrontierItem] = deque()
        self.attempts: Dict[str, int] = {}
        self.robots.reset()
        if self.rate_limiter is not None:
            self.rate_limiter.reset()

    def subscribe(self, observer: Callable[[str, Dict[str, Any]], None]):
        """
        Subscribe to crawl events.

        Events: crawl_started, page_visited, page_retry, page_failed, crawl_completed

        Args:
            observer: Callback receiving (event, data)
        """
        self.observers.append(observer)

    def _notify(self, event: str, data: Dict[str, Any]):
        for observer in self.observers:
            try:
                observer(event, data)
            except Exception as e:
                self.logger.error(
                    "observer_error",
                    observer=getattr(observer, "__name__", repr(observer)),
                    error=str(e),
                )

    async def crawl(
        self,
        start_url: str,
        max_pages: int = 50,
        include_subdomains: bool = False,
        options: Optional[CrawlOptions] = None,
    ) -> CrawlResult:
        """
        Crawl a site breadth-first within the given budgets.

        Args:
            start_url: Where to start; canonicalized before use
            max_pages: Maximum number of URLs retired (visited or failed)
            include_subdomains: Registrable-domain scope instead of exact host
            options: Depth/time budgets and robots/sitemap switches

        Returns:
            CrawlResult partitioning every discovered URL
        """
        options = options or CrawlOptions()
        budget = CrawlBudget(
            max_pages=max_pages,
            max_depth=options.max_depth,
            max_time_ms=options.max_time_ms,
            include_subdomains=include_subdomains,
            respect_robots_txt=options.respect_robots_txt,
            use_sitemap=options.use_sitemap,
        )

        start = canonicalize_url(start_url)
        self._reset_state(budget, start)
        started_at = self.clock()

        self.logger.info(
            "crawl_started",
            start_url=start,
            max_pages=budget.max_pages,
            max_depth=budget.max_depth,
            max_time_ms=budget.max_time_ms,
            include_subdomains=budget.include_subdomains,
        )
        self._notify("crawl_started", {"start_url": start, "budget": budget})

        origin = origin_of(start)
        if origin and budget.respect_robots_txt:
            await self._load_robots(origin)

        self._discover(start, depth=0)

        if origin and budget.use_sitemap:
            await self._seed_from_sitemap(origin)

        stop_reason = await self._run(started_at)

        result = CrawlResult.assemble(
            discovered=self.discovered_order,
            visited=self.visited,
            failed=self.failed,
            duration_ms=self.clock() - started_at,
            stop_reason=stop_reason,
        )

        self.logger.info(
            "crawl_completed",
            visited=len(result.visited_urls),
            unvisited=len(result.unvisited_urls),
            failed=len(result.failed_urls),
            stop_reason=stop_reason.value,
            duration_ms=round(result.duration_ms, 1),
        )
        self._notify("crawl_completed", {"result": result})

        return result

    async def _load_robots(self, origin: str):
        try:
            await self.robots.load(origin)
        except Exception as e:
            self.logger.warning("robots_load_error", origin=origin, error=str(e))
            self.robots.reset()
            return

        if self.rate_limiter is not None:
            self.rate_limiter.apply_crawl_delay(self.robots.crawl_delay_s)

    async def _seed_from_sitemap(self, origin: str):
        try:
            seeds = await self.sitemap_seeder.fetch(origin, extra_locations=self.robots.sitemaps)
        except Exception as e:
            self.logger.warning("sitemap_seed_error", origin=origin, error=str(e))
            return

        added = 0
        for url in seeds.urls:
            canonical = canonicalize_url(url)
            if canonical in self.discovered:
                continue
            if self._gate(canonical, depth=1, check_depth=False) is not GateDecision.ALLOWED:
                continue
            self._discover(canonical, depth=1)
            added += 1

        self.logger.info("sitemap_seeded", seeds=len(seeds.urls), added=added)

    async def _run(self, started_at: float) -> StopReason:
        budget = self.budget

        while True:
            if len(self.visited) >= budget.max_pages:
                return StopReason.PAGE_BUDGET
            if self.clock() - started_at >= budget.max_time_ms:
                return StopReason.TIME_BUDGET
            if not self.frontier:
                return StopReason.FRONTIER_EXHAUSTED

            item = self.frontier.popleft()
            if item.url in self.visited:
                continue

            decision = self._gate(item.url, item.depth)
            if decision is not GateDecision.ALLOWED:
                self.logger.debug("url_excluded", url=item.url, depth=item.depth, reason=decision.value)
                continue

            await self._attempt(item)

    def _gate(self, url: str, depth: int, check_depth: bool = True) -> GateDecision:
        """Policy check shared by the frontier pop and link discovery"""
        if check_depth and depth > self.budget.max_depth:
            return GateDecision.TOO_DEEP
        if not in_scope(self.start_url, url, self.budget.include_subdomains):
            return GateDecision.OUT_OF_SCOPE
        if self.budget.respect_robots_txt and self.robots.is_disallowed(url):
            return GateDecision.ROBOTS_DISALLOWED
        return GateDecision.ALLOWED

    def _discover(self, url: str, depth: int, referrer: Optional[str] = None):
        self.discovered.add(url)
        self.discovered_order.append(url)
        # Too-deep URLs stay discovered (reported as unvisited) but never queue
        if depth <= self.budget.max_depth:
            self.frontier.append(FrontierItem(url=url, depth=depth, referrer=referrer))

    async def _attempt(self, item: FrontierItem):
        if self.rate_limiter is not None:
            await self.rate_limiter.wait()

        self.attempts[item.url] = self.attempts.get(item.url, 0) + 1
        self.logger.info(
            "crawling",
            url=item.url,
            depth=item.depth,
            progress=f"{len(self.visited) + 1}/{self.budget.max_pages}",
        )

        attempt_started = self.clock()
        try:
            visit = await self.renderer.extract(item.url)
        except NavigationError as e:
            self._record_failure(item, e.kind, str(e), e.status_code)
            return
        except Exception as e:
            self.logger.error("unexpected_render_error", url=item.url, error=str(e), exc_info=True)
            self._record_failure(item, FailureKind.NETWORK_ERROR, str(e) or type(e).__name__, None)
            return

        self._record_success(item, visit, self.clock() - attempt_started)

    def _record_success(self, item: FrontierItem, visit: PageVisit, elapsed_ms: float):
        self.visited.add(item.url)
        self.retry_counts.pop(item.url, None)
        if self.rate_limiter is not None:
            self.rate_limiter.on_success(response_time=elapsed_ms / 1000)

        next_depth = item.depth + 1
        added = 0
        for link in visit.links:
            canonical = canonicalize_url(link)
            if canonical in self.discovered:
                continue
            if self._gate(canonical, next_depth, check_depth=False) is not GateDecision.ALLOWED:
                continue
            self._discover(canonical, next_depth, referrer=item.url)
            added += 1

        self.logger.debug(
            "page_visited",
            url=item.url,
            links=len(visit.links),
            new_urls=added,
            quiet=visit.quiet,
        )
        self._notify("page_visited", {"url": item.url, "depth": item.depth, "new_urls": added})

    def _record_failure(
        self,
        item: FrontierItem,
        kind: FailureKind,
        reason: str,
        status_code: Optional[int],
    ):
        if self.rate_limiter is not None:
            self.rate_limiter.on_error(status_code)

        retries = self.retry_counts.get(item.url, 0)
        if kind.is_transient:
            retries += 1
            self.retry_counts[item.url] = retries
            if retries <= MAX_RETRIES:
                self.frontier.append(FrontierItem(url=item.url, depth=item.depth, referrer=item.referrer))
                self.logger.warning(
                    "page_retry",
                    url=item.url,
                    attempt=retries,
                    max_retries=MAX_RETRIES,
                    reason=reason,
                )
                self._notify("page_retry", {"url": item.url, "attempt": retries, "reason": reason})
                return

        entry = FailedEntry(
            url=item.url,
            reason=reason,
            retry_count=min(retries, MAX_RETRIES),
            status_code=status_code,
            kind=kind,
        )
        self.failed.append(entry)
        self.visited.add(item.url)
        self.retry_counts.pop(item.url, None)

        self.logger.warning(
            "page_failed",
            url=item.url,
            kind=kind.value,
            status_code=status_code,
            retry_count=entry.retry_count,
            reason=reason,
        )
        self._notify("page_failed", {"url": item.url, "entry": entry})

    def get_stats(self) -> Dict[str, Any]:
        """
        Get scheduler statistics for the current or last crawl.

        Returns:
            Dictionary with statistics
        """
        return {
            "start_url": self.start_url,
            "discovered": len(self.discovered),
            "visited": len(self.visited),
            "queued": len(self.frontier),
            "failed": len(self.failed),
            "robots_outcome": self.robots.outcome.value,
            "max_pages": self.budget.max_pages,
            "max_depth": self.budget.max_depth,
        }


async def crawl(
    start_url: str,
    max_pages: int = 50,
    include_subdomains: bool = False,
    options: Optional[CrawlOptions] = None,
    renderer: Optional[Renderer] = None,
) -> CrawlResult:
    """
    Crawl a site with a default scheduler.

    A PlaywrightRenderer is started and closed around the crawl unless a
    renderer is supplied.
    """
    if renderer is not None:
        return await FrontierScheduler(renderer).crawl(start_url, max_pages, include_subdomains, options)

    async with PlaywrightRenderer() as playwright_renderer:
        scheduler = FrontierScheduler(playwright_renderer)
        return await scheduler.crawl(start_url, max_pages, include_subdomains, options)
