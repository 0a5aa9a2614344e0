"""
Crawler module - Frontier scheduling and page rendering.

This package contains the crawl engine:
- FrontierScheduler: Breadth-first crawl under page/depth/time budgets
- RobotsPolicy / SitemapSeeder: robots.txt rules and sitemap seeds
- StabilizationDetector: Waits until a rendered page goes quiet
- PlaywrightRenderer: Headless browser page loader
"""

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
from .url_utils import canonicalize_url, get_registrable_domain, in_scope
from .robots import RobotsOutcome, RobotsPolicy, RobotsRuleSet, parse_robots
from .sitemap import SitemapOutcome, SitemapSeeder, SitemapSeeds, parse_sitemap
from .stabilizer import (
    PageActivityMonitor,
    QuietPageOptions,
    StabilizationDetector,
    StabilizationReport,
    apply_deterministic_context,
    wait_for_quiet_page,
)
from .renderer import NavigationError, PlaywrightRenderer, Renderer
from .frontier import MAX_RETRIES, FrontierScheduler, crawl


__all__ = [
    # Scheduling
    "FrontierScheduler",
    "crawl",
    "MAX_RETRIES",
    # Data structures
    "CrawlBudget",
    "CrawlOptions",
    "CrawlResult",
    "FailedEntry",
    "FailureKind",
    "FrontierItem",
    "GateDecision",
    "PageVisit",
    "StopReason",
    # URL handling
    "canonicalize_url",
    "get_registrable_domain",
    "in_scope",
    # Robots / sitemap
    "RobotsOutcome",
    "RobotsPolicy",
    "RobotsRuleSet",
    "parse_robots",
    "SitemapOutcome",
    "SitemapSeeder",
    "SitemapSeeds",
    "parse_sitemap",
    # Stabilization
    "PageActivityMonitor",
    "QuietPageOptions",
    "StabilizationDetector",
    "StabilizationReport",
    "apply_deterministic_context",
    "wait_for_quiet_page",
    # Rendering
    "NavigationError",
    "PlaywrightRenderer",
    "Renderer",
]
