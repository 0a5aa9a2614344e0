"""
Crawl data structures shared by the frontier scheduler and its collaborators.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set


class FailureKind(Enum):
    """Classification of a failed page fetch"""
    AUTH_REQUIRED = "auth_required"  # 401/403
    NOT_FOUND = "not_found"          # 404/410
    SERVER_ERROR = "server_error"    # 5xx
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"

    @property
    def is_transient(self) -> bool:
        """Transient failures are retried, terminal ones are not"""
        return self in (FailureKind.SERVER_ERROR, FailureKind.TIMEOUT, FailureKind.NETWORK_ERROR)


class StopReason(Enum):
    """Why the frontier loop ended"""
    FRONTIER_EXHAUSTED = "frontier_exhausted"
    PAGE_BUDGET = "page_budget"
    TIME_BUDGET = "time_budget"


class GateDecision(Enum):
    """Outcome of the scope/robots/depth gate"""
    ALLOWED = "allowed"
    TOO_DEEP = "too_deep"
    OUT_OF_SCOPE = "out_of_scope"
    ROBOTS_DISALLOWED = "robots_disallowed"


@dataclass
class FrontierItem:
    """A URL waiting in the frontier queue"""
    url: str
    depth: int = 0
    referrer: Optional[str] = None


@dataclass(frozen=True)
class CrawlBudget:
    """Budgets and scope options, fixed for the duration of one crawl"""
    max_pages: int = 50
    max_depth: int = 3
    max_time_ms: int = 120000
    include_subdomains: bool = False
    respect_robots_txt: bool = True
    use_sitemap: bool = True


@dataclass(frozen=True)
class CrawlOptions:
    """Optional knobs for crawl(); mirrors the keyword options of the entry point"""
    max_depth: int = 3
    max_time_ms: int = 120000
    respect_robots_txt: bool = True
    use_sitemap: bool = True


@dataclass
class FailedEntry:
    """A URL retired after exhausting its retries or hitting a terminal error"""
    url: str
    reason: str
    retry_count: int
    status_code: Optional[int] = None
    kind: FailureKind = FailureKind.NETWORK_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "reason": self.reason,
            "retry_count": self.retry_count,
            "status_code": self.status_code,
            "kind": self.kind.value,
        }


@dataclass
class PageVisit:
    """Successful render of one page, as returned by a Renderer"""
    url: str
    final_url: str
    status_code: Optional[int] = None
    links: List[str] = field(default_factory=list)
    quiet: bool = False


@dataclass
class CrawlResult:
    """Final partition of scheduler state"""
    visited_urls: List[str] = field(default_factory=list)
    unvisited_urls: List[str] = field(default_factory=list)
    failed_urls: List[FailedEntry] = field(default_factory=list)
    duration_ms: float = 0.0
    stop_reason: StopReason = StopReason.FRONTIER_EXHAUSTED

    @classmethod
    def assemble(
        cls,
        discovered: Iterable[str],
        visited: Set[str],
        failed: List[FailedEntry],
        duration_ms: float = 0.0,
        stop_reason: StopReason = StopReason.FRONTIER_EXHAUSTED,
    ) -> "CrawlResult":
        """
        Build a result from the scheduler's sets.

        Args:
            discovered: Discovered URLs in discovery order
            visited: URLs retired from the frontier (success or terminal failure)
            failed: Failure records, all of which must also be in visited
            duration_ms: Wall-clock duration of the crawl
            stop_reason: Why the loop ended

        Returns:
            CrawlResult with visited/unvisited kept in discovery order
        """
        visited_urls = []
        unvisited_urls = []
        for url in discovered:
            if url in visited:
                visited_urls.append(url)
            else:
                unvisited_urls.append(url)

        return cls(
            visited_urls=visited_urls,
            unvisited_urls=unvisited_urls,
            failed_urls=list(failed),
            duration_ms=duration_ms,
            stop_reason=stop_reason,
        )

    @property
    def successful_urls(self) -> List[str]:
        """Visited URLs that were actually rendered"""
        failed = {entry.url for entry in self.failed_urls}
        return [url for url in self.visited_urls if url not in failed]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "visited_urls": list(self.visited_urls),
            "unvisited_urls": list(self.unvisited_urls),
            "failed_urls": [entry.to_dict() for entry in self.failed_urls],
            "duration_ms": round(self.duration_ms, 1),
            "stop_reason": self.stop_reason.value,
        }
