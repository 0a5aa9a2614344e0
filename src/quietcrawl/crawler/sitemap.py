"""
Sitemap Seeder - Best-effort extra seed URLs from a site's sitemap.

Fetches <origin>/sitemap.xml (plus any sitemap declared in robots.txt),
follows sitemap index files a few levels deep (at most max_fetches documents)
and returns up to max_urls <loc> entries. Any failure yields an empty list; seeding never aborts a crawl.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple
from xml.etree import ElementTree as ET

import aiohttp
import structlog


DEFAULT_MAX_URLS = 1000
MAX_INDEX_DEPTH = 2
MAX_SITEMAP_FETCHES = 50


class SitemapOutcome(Enum):
    """How sitemap seeding ended"""
    LOADED = "loaded"
    MISSING = "missing"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SitemapSeeds:
    """Seed URLs extracted from sitemaps"""
    urls: List[str] = field(default_factory=list)
    outcome: SitemapOutcome = SitemapOutcome.SKIPPED


def _local_name(tag: str) -> str:
    return tag.split('}', 1)[-1] if '}' in tag else tag


def parse_sitemap(content: str) -> Tuple[str, List[str]]:
    """
    Parse sitemap XML.

    Args:
        content: Raw XML text

    Returns:
        (root element name, list of <loc> values in document order)

    Raises:
        ET.ParseError: If the content is not well-formed XML
    """
    root = ET.fromstring(content.strip())
    locations = []
    for element in root.iter():
        if _local_name(element.tag) == 'loc' and element.text:
            loc = element.text.strip()
            if loc:
                locations.append(loc)
    return _local_name(root.tag), locations


class SitemapSeeder:
    """
    Collects seed URLs from sitemap.xml.

    Example:
        >>> seeder = SitemapSeeder(max_urls=500)
        >>> seeds = await seeder.fetch("https://example.com")
        >>> print(f"Found {len(seeds.urls)} seed URLs")
    """

    def __init__(
        self,
        max_urls: int = DEFAULT_MAX_URLS,
        timeout_s: float = 10.0,
        max_fetches: int = MAX_SITEMAP_FETCHES,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the sitemap seeder.

        Args:
            max_urls: Safety cap on the number of returned URLs
            timeout_s: Total timeout per sitemap request
            max_fetches: Safety cap on the number of sitemap documents requested
            session: Shared aiohttp session (a private one is created if None)
        """
        self.max_urls = max_urls
        self.timeout_s = timeout_s
        self.max_fetches = max_fetches
        self.session = session

        self.logger = structlog.get_logger(__name__)

    async def fetch(self, origin: str, extra_locations: Iterable[str] = ()) -> SitemapSeeds:
        """
        Fetch seed URLs for a site.

        Args:
            origin: scheme://host[:port] of the crawled site
            extra_locations: Additional sitemap URLs (e.g. from robots.txt)

        Returns:
            SitemapSeeds (never raises)
        """
        locations = [f"{origin.rstrip('/')}/sitemap.xml"]
        for location in extra_locations:
            if location not in locations:
                locations.append(location)

        try:
            if self.session is not None:
                return await self._collect(self.session, locations)
            async with aiohttp.ClientSession() as session:
                return await self._collect(session, locations)
        except Exception as e:
            self.logger.warning("sitemap_seed_failed", origin=origin, error=str(e))
            return SitemapSeeds(outcome=SitemapOutcome.FAILED)

    async def _collect(self, session: aiohttp.ClientSession, locations: List[str]) -> SitemapSeeds:
        urls: List[str] = []
        seen: Set[str] = set()
        visited_sitemaps: Set[str] = set()
        outcome = SitemapOutcome.MISSING

        pending = [(location, 0) for location in locations]
        while pending and len(urls) < self.max_urls:
            location, depth = pending.pop(0)
            if location in visited_sitemaps:
                continue
            if len(visited_sitemaps) >= self.max_fetches:
                self.logger.warning(
                    "sitemap_fetch_limit_reached",
                    limit=self.max_fetches,
                    skipped=len(pending) + 1,
                )
                break
            visited_sitemaps.add(location)

            try:
                content = await self._get(session, location)
            except Exception as e:
                self.logger.debug("sitemap_fetch_failed", url=location, error=str(e))
                outcome = SitemapOutcome.FAILED if outcome is SitemapOutcome.MISSING else outcome
                continue

            if content is None:
                continue

            try:
                root_name, locs = parse_sitemap(content)
            except ET.ParseError as e:
                self.logger.warning("sitemap_parse_failed", url=location, error=str(e))
                outcome = SitemapOutcome.FAILED if outcome is SitemapOutcome.MISSING else outcome
                continue

            outcome = SitemapOutcome.LOADED

            if root_name == 'sitemapindex':
                if depth < MAX_INDEX_DEPTH:
                    pending.extend((loc, depth + 1) for loc in locs)
                continue

            for loc in locs:
                if loc in seen:
                    continue
                seen.add(loc)
                urls.append(loc)
                if len(urls) >= self.max_urls:
                    self.logger.warning("sitemap_limit_reached", limit=self.max_urls)
                    break

        self.logger.info("sitemap_seeds_collected", urls=len(urls), outcome=outcome.value)
        return SitemapSeeds(urls=urls, outcome=outcome)

    async def _get(self, session: aiohttp.ClientSession, url: str) -> Optional[str]:
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        async with session.get(url, timeout=timeout, allow_redirects=True) as response:
            if response.status != 200:
                return None
            return await response.text(errors="replace")
