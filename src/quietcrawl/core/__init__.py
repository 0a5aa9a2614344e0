"""
Core module - Configuration, politeness and the audit pipeline.

This package contains the components that wire the crawler into a run.
"""

from .rate_limiter import AdaptiveRateLimiter, RateLimitConfig
from .config import ConfigError, CrawlRequest, Settings, load_settings
from .logging import configure_logging
from .pipeline import AuditPipeline, AuditRun, PageAnalysis, PageAnalyzer, SnapshotAnalyzer


__all__ = [
    # Rate limiting
    "AdaptiveRateLimiter",
    "RateLimitConfig",
    # Configuration
    "ConfigError",
    "CrawlRequest",
    "Settings",
    "load_settings",
    "configure_logging",
    # Pipeline
    "AuditPipeline",
    "AuditRun",
    "PageAnalysis",
    "PageAnalyzer",
    "SnapshotAnalyzer",
]
