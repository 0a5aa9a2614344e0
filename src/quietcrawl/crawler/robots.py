"""
Robots Policy - Load and apply a site's robots.txt exclusion rules.

Loading is best-effort: a missing file, a non-200 response, a network error
or garbage content all produce an empty rule set, so the crawl never aborts
because of robots.txt.

Group selection:
1. The group whose User-agent token is the most specific match for our agent
2. Otherwise the union of all "*" groups
3. Otherwise no rules
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from urllib.parse import urlsplit

import aiohttp
import structlog


DEFAULT_AGENT_TOKEN = "quietcrawl"


class RobotsOutcome(Enum):
    """How the robots.txt load ended"""
    LOADED = "loaded"    # Fetched and parsed
    MISSING = "missing"  # 404 or similar, everything allowed
    FAILED = "failed"    # Network/parse error tolerated, everything allowed
    SKIPPED = "skipped"  # respect_robots_txt disabled


@dataclass
class RobotsRuleSet:
    """Rules that apply to our user agent"""
    disallowed: List[str] = field(default_factory=list)
    crawl_delay_s: Optional[float] = None
    sitemaps: List[str] = field(default_factory=list)

    def is_disallowed(self, url: str) -> bool:
        """True iff the URL path starts with any stored, non-empty prefix."""
        if not self.disallowed:
            return False
        try:
            path = urlsplit(url).path or "/"
        except (ValueError, TypeError, AttributeError):
            return False
        return any(prefix and path.startswith(prefix) for prefix in self.disallowed)


@dataclass
class _Group:
    agents: List[str] = field(default_factory=list)
    disallowed: List[str] = field(default_factory=list)
    crawl_delay_s: Optional[float] = None


def parse_robots(content: str, agent_token: str = DEFAULT_AGENT_TOKEN) -> RobotsRuleSet:
    """
    Parse robots.txt content into the rule set for one agent.

    Args:
        content: Raw robots.txt text
        agent_token: Our crawler's product token (case-insensitive)

    Returns:
        RobotsRuleSet for the selected group(s)
    """
    groups: List[_Group] = []
    sitemaps: List[str] = []
    current: Optional[_Group] = None
    last_was_agent = False

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue

        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            # Consecutive User-agent lines share one group
            if current is None or not last_was_agent:
                current = _Group()
                groups.append(current)
            current.agents.append(value.lower())
            last_was_agent = True
            continue

        last_was_agent = False

        if key == "sitemap":
            if value:
                sitemaps.append(value)
        elif current is None:
            continue
        elif key == "disallow":
            if value:
                current.disallowed.append(value)
        elif key == "crawl-delay":
            try:
                current.crawl_delay_s = float(value)
            except ValueError:
                pass

    rules = RobotsRuleSet(sitemaps=sitemaps)
    token = agent_token.lower()

    # Most specific named group wins
    best: Optional[_Group] = None
    best_len = 0
    for group in groups:
        for agent in group.agents:
            if agent != "*" and agent in token and len(agent) > best_len:
                best, best_len = group, len(agent)

    if best is not None:
        rules.disallowed = list(best.disallowed)
        rules.crawl_delay_s = best.crawl_delay_s
        return rules

    for group in groups:
        if "*" in group.agents:
            rules.disallowed.extend(group.disallowed)
            if group.crawl_delay_s is not None and rules.crawl_delay_s is None:
                rules.crawl_delay_s = group.crawl_delay_s

    return rules


class RobotsPolicy:
    """
    Fetches robots.txt for a site origin and answers is_disallowed() queries.

    Example:
        >>> policy = RobotsPolicy()
        >>> outcome = await policy.load("https://example.com")
        >>> policy.is_disallowed("https://example.com/private/x")
    """

    def __init__(
        self,
        agent_token: str = DEFAULT_AGENT_TOKEN,
        timeout_s: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the robots policy.

        Args:
            agent_token: Product token matched against User-agent groups
            timeout_s: Total timeout for the robots.txt request
            session: Shared aiohttp session (a private one is created if None)
        """
        self.agent_token = agent_token
        self.timeout_s = timeout_s
        self.session = session
        self.rules = RobotsRuleSet()
        self.outcome = RobotsOutcome.SKIPPED

        self.logger = structlog.get_logger(__name__)

    def reset(self):
        """Forget rules from a previous crawl"""
        self.rules = RobotsRuleSet()
        self.outcome = RobotsOutcome.SKIPPED

    async def load(self, origin: str) -> RobotsOutcome:
        """
        Fetch and parse <origin>/robots.txt.

        Args:
            origin: scheme://host[:port] of the crawled site

        Returns:
            RobotsOutcome describing what happened (never raises)
        """
        self.reset()
        robots_url = f"{origin.rstrip('/')}/robots.txt"

        try:
            content = await self._fetch(robots_url)
        except Exception as e:
            self.logger.warning("robots_fetch_failed", url=robots_url, error=str(e))
            self.outcome = RobotsOutcome.FAILED
            return self.outcome

        if content is None:
            self.logger.info("robots_missing", url=robots_url)
            self.outcome = RobotsOutcome.MISSING
            return self.outcome

        try:
            self.rules = parse_robots(content, self.agent_token)
        except Exception as e:
            self.logger.warning("robots_parse_failed", url=robots_url, error=str(e))
            self.rules = RobotsRuleSet()
            self.outcome = RobotsOutcome.FAILED
            return self.outcome

        self.outcome = RobotsOutcome.LOADED
        self.logger.info(
            "robots_loaded",
            url=robots_url,
            disallowed=len(self.rules.disallowed),
            crawl_delay=self.rules.crawl_delay_s,
            sitemaps=len(self.rules.sitemaps),
        )
        return self.outcome

    async def _fetch(self, robots_url: str) -> Optional[str]:
        """Return the body of a 200 response, None for any other status"""
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)

        if self.session is not None:
            return await self._get(self.session, robots_url, timeout)

        async with aiohttp.ClientSession() as session:
            return await self._get(session, robots_url, timeout)

    async def _get(
        self,
        session: aiohttp.ClientSession,
        url: str,
        timeout: aiohttp.ClientTimeout,
    ) -> Optional[str]:
        async with session.get(url, timeout=timeout, allow_redirects=True) as response:
            if response.status != 200:
                self.logger.debug("robots_status", url=url, status=response.status)
                return None
            return await response.text(errors="replace")

    def is_disallowed(self, url: str) -> bool:
        """True iff the loaded rules exclude this URL's path"""
        return self.rules.is_disallowed(url)

    @property
    def crawl_delay_s(self) -> Optional[float]:
        return self.rules.crawl_delay_s

    @property
    def sitemaps(self) -> List[str]:
        return list(self.rules.sitemaps)
