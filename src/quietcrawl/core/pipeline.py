"""
Audit Pipeline - Crawl a site, then analyze every page once it is quiet.

Phases:
1. Crawling: FrontierScheduler with robots, sitemap and politeness delay
2. Analysis: each successfully visited page is reopened, stabilized and
   handed to a PageAnalyzer, with bounded concurrency

The analyzer is an external collaborator: whatever it returns is stored as
the page's findings. SnapshotAnalyzer is the built-in default.

Usage:
    pipeline = AuditPipeline(target="https://example.com")
    run = await pipeline.run()
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import structlog

from ..crawler import (
    CrawlResult,
    FrontierScheduler,
    NavigationError,
    PlaywrightRenderer,
    RobotsPolicy,
    SitemapSeeder,
    StabilizationDetector,
)
from .config import Settings
from .rate_limiter import AdaptiveRateLimiter


class PageAnalyzer(Protocol):
    """Inspects a stabilized page and returns findings"""

    async def analyze(self, page: Any, url: str) -> Dict[str, Any]:
        ...


class SnapshotAnalyzer:
    """Records basic facts about a rendered page"""

    async def analyze(self, page: Any, url: str) -> Dict[str, Any]:
        title = await page.title()
        content = await page.content()
        return {
            "title": title,
            "final_url": page.url,
            "content_length": len(content),
        }


@dataclass
class PageAnalysis:
    """Analysis outcome for one page"""
    url: str
    ok: bool
    quiet: bool = False
    stabilization_ms: float = 0.0
    status_code: Optional[int] = None
    findings: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "ok": self.ok,
            "quiet": self.quiet,
            "stabilization_ms": round(self.stabilization_ms, 1),
            "status_code": self.status_code,
            "findings": self.findings,
            "error": self.error,
        }


@dataclass
class AuditRun:
    """Everything produced by one pipeline run"""
    run_id: str
    target: str
    crawl: CrawlResult
    pages: List[PageAnalysis] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "target": self.target,
            "timestamp": datetime.now().isoformat(),
            "crawl": self.crawl.to_dict(),
            "pages": [page.to_dict() for page in self.pages],
        }


class AuditPipeline:
    """
    Crawl + analyze pipeline.

    Example:
        >>> pipeline = AuditPipeline("https://example.com")
        >>> run = await pipeline.run()
        >>> print(pipeline.get_summary())
    """

    def __init__(
        self,
        target: str,
        settings: Optional[Settings] = None,
        analyzer: Optional[PageAnalyzer] = None,
        renderer: Optional[Any] = None,
        max_pages: Optional[int] = None,
        include_subdomains: bool = False,
        analyze_pages: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            target: Start URL
            settings: Application settings (defaults if None)
            analyzer: Page analyzer (SnapshotAnalyzer if None)
            renderer: Pre-built renderer; a PlaywrightRenderer is managed if None
            max_pages: Page budget (settings default if None)
            include_subdomains: Registrable-domain scope
            analyze_pages: Run phase 2; False stops after crawling
        """
        self.target = target
        self.settings = settings or Settings()
        self.analyzer = analyzer or SnapshotAnalyzer()
        self.renderer = renderer
        self.max_pages = max_pages or self.settings.crawl.max_pages_default
        self.include_subdomains = include_subdomains
        self.analyze_pages = analyze_pages

        self.detector = StabilizationDetector(self.settings.stability.to_options())
        self.run_id = f"audit_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        self.result: Optional[AuditRun] = None

        self.observers: List[Any] = []
        self.logger = structlog.get_logger(__name__)

    def subscribe(self, observer):
        """Forward crawl events (see FrontierScheduler.subscribe)"""
        self.observers.append(observer)

    def _build_renderer(self) -> PlaywrightRenderer:
        renderer_settings = self.settings.renderer
        return PlaywrightRenderer(
            headless=renderer_settings.headless,
            navigation_timeout_ms=renderer_settings.navigation_timeout_ms,
            recovery_wait_ms=renderer_settings.recovery_wait_ms,
            link_extraction_timeout_ms=renderer_settings.link_extraction_timeout_ms,
            user_agent=renderer_settings.user_agent,
            stabilizer=self.detector,
            browser_type=renderer_settings.browser_type,
        )

    def _build_scheduler(self, renderer: Any) -> FrontierScheduler:
        crawl_settings = self.settings.crawl
        scheduler = FrontierScheduler(
            renderer,
            robots=RobotsPolicy(
                agent_token=crawl_settings.agent_token,
                timeout_s=crawl_settings.fetch_timeout_s,
            ),
            sitemap_seeder=SitemapSeeder(
                max_urls=crawl_settings.sitemap_max_urls,
                max_fetches=crawl_settings.sitemap_max_fetches,
                timeout_s=crawl_settings.fetch_timeout_s,
            ),
            rate_limiter=AdaptiveRateLimiter(crawl_settings.to_rate_limit_config()),
        )
        for observer in self.observers:
            scheduler.subscribe(observer)
        return scheduler

    async def run(self) -> AuditRun:
        """
        Run the complete pipeline.

        Returns:
            AuditRun with the crawl result and per-page analyses
        """
        self.logger.info(
            "audit_started",
            run_id=self.run_id,
            target=self.target,
            max_pages=self.max_pages,
        )

        if self.renderer is not None:
            return await self._run_with(self.renderer)

        async with self._build_renderer() as renderer:
            return await self._run_with(renderer)

    async def _run_with(self, renderer: Any) -> AuditRun:
        # Phase 1: Crawling
        scheduler = self._build_scheduler(renderer)
        crawl_result = await scheduler.crawl(
            self.target,
            max_pages=self.max_pages,
            include_subdomains=self.include_subdomains,
            options=self.settings.crawl.to_options(),
        )
        self.result = AuditRun(run_id=self.run_id, target=self.target, crawl=crawl_result)

        # Phase 2: Analysis
        if self.analyze_pages:
            self.result.pages = await self._analyze_all(renderer, crawl_result.successful_urls)

        self.logger.info(
            "audit_complete",
            run_id=self.run_id,
            visited=len(crawl_result.visited_urls),
            analyzed=sum(1 for page in self.result.pages if page.ok),
        )
        return self.result

    async def _analyze_all(self, renderer: Any, urls: List[str]) -> List[PageAnalysis]:
        semaphore = asyncio.Semaphore(self.settings.audit.concurrency)

        async def bounded(url: str) -> PageAnalysis:
            async with semaphore:
                return await self._analyze_page(renderer, url)

        return list(await asyncio.gather(*(bounded(url) for url in urls)))

    async def _analyze_page(self, renderer: Any, url: str) -> PageAnalysis:
        try:
            async with renderer.open_page(url) as (page, status):
                report = await self.detector.wait_for_quiet(page)
                findings = await self.analyzer.analyze(page, url)
        except NavigationError as e:
            self.logger.warning("page_analysis_navigation_failed", url=url, kind=e.kind.value, error=str(e))
            return PageAnalysis(url=url, ok=False, status_code=e.status_code, error=str(e))
        except Exception as e:
            self.logger.error("page_analysis_failed", url=url, error=str(e), exc_info=True)
            return PageAnalysis(url=url, ok=False, error=str(e) or type(e).__name__)

        return PageAnalysis(
            url=url,
            ok=True,
            quiet=report.quiet,
            stabilization_ms=report.elapsed_ms,
            status_code=status,
            findings=findings,
        )

    def get_results(self) -> Dict[str, Any]:
        """
        Get results in structured format.

        Returns:
            Dictionary suitable for JSON output
        """
        if self.result is None:
            return {"run_id": self.run_id, "target": self.target}
        return self.result.to_dict()

    def get_summary(self) -> str:
        """
        Get human-readable summary of the run.

        Returns:
            Formatted summary string
        """
        if self.result is None:
            return f"Audit {self.run_id} has not run yet\n"

        crawl = self.result.crawl
        quiet_pages = sum(1 for page in self.result.pages if page.quiet)

        summary = f"""
========================================
quietcrawl Audit Results
========================================
Run ID: {self.run_id}
Target: {self.target}

Crawling:
  • Visited: {len(crawl.visited_urls)}
  • Discovered but not visited: {len(crawl.unvisited_urls)}
  • Failed: {len(crawl.failed_urls)}
  • Stopped by: {crawl.stop_reason.value}

Analysis:
  • Pages analyzed: {sum(1 for page in self.result.pages if page.ok)}
  • Pages reaching quiet state: {quiet_pages}
"""

        if crawl.failed_urls:
            summary += "\nFailed URLs:\n"
            for entry in crawl.failed_urls:
                summary += f"  • {entry.url} ({entry.kind.value}, retries: {entry.retry_count})\n"

        summary += "========================================\n"
        return summary
