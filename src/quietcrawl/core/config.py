"""
Configuration - Pydantic settings with YAML file and environment overrides.

Priority (highest to lowest):
1. Environment variables  QUIETCRAWL__{SECTION}__{KEY}, e.g. QUIETCRAWL__CRAWL__MAX_DEPTH=2
2. YAML configuration file
3. Defaults defined below
"""

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, field_validator

from .rate_limiter import RateLimitConfig
from ..crawler.models import CrawlOptions
from ..crawler.stabilizer import QuietPageOptions


ENV_PREFIX = "QUIETCRAWL"


class ConfigError(Exception):
    """Raised when a configuration file cannot be used"""
    pass


class CrawlSettings(BaseModel):
    """Frontier budgets and politeness"""

    max_pages_default: int = Field(default=50, ge=1, le=1000)
    max_pages_limit: int = Field(default=100, ge=1, le=1000)
    max_depth: int = Field(default=3, ge=0, le=50)
    max_time_ms: int = Field(default=120000, ge=1000, le=3600000)
    respect_robots_txt: bool = True
    use_sitemap: bool = True
    sitemap_max_urls: int = Field(default=1000, ge=0, le=50000)
    sitemap_max_fetches: int = Field(default=50, ge=1, le=1000)
    fetch_timeout_s: float = Field(default=10.0, gt=0, le=120)
    agent_token: str = "quietcrawl"
    base_delay_s: float = Field(default=0.5, ge=0, le=60)
    max_delay_s: float = Field(default=10.0, ge=0, le=300)

    def to_options(self) -> CrawlOptions:
        return CrawlOptions(
            max_depth=self.max_depth,
            max_time_ms=self.max_time_ms,
            respect_robots_txt=self.respect_robots_txt,
            use_sitemap=self.use_sitemap,
        )

    def to_rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(base_delay=self.base_delay_s, max_delay=max(self.max_delay_s, self.base_delay_s))


class StabilitySettings(BaseModel):
    """Page stabilization budgets (milliseconds)"""

    timeout_ms: int = Field(default=30000, ge=0, le=300000)
    max_inflight_requests: int = Field(default=2, ge=0, le=100)
    dom_quiet_window_ms: int = Field(default=800, ge=0, le=60000)
    extra_wait_ms: int = Field(default=200, ge=0, le=10000)

    def to_options(self) -> QuietPageOptions:
        return QuietPageOptions(
            timeout_ms=self.timeout_ms,
            max_inflight_requests=self.max_inflight_requests,
            dom_quiet_window_ms=self.dom_quiet_window_ms,
            extra_wait_ms=self.extra_wait_ms,
        )


class RendererSettings(BaseModel):
    """Playwright browser configuration"""

    headless: bool = True
    browser_type: Literal["chromium", "firefox", "webkit"] = "chromium"
    navigation_timeout_ms: int = Field(default=45000, ge=5000, le=300000)
    recovery_wait_ms: int = Field(default=2000, ge=0, le=30000)
    link_extraction_timeout_ms: int = Field(default=10000, ge=100, le=120000)
    user_agent: Optional[str] = None


class AuditSettings(BaseModel):
    """Page analysis after the crawl"""

    concurrency: int = Field(default=3, ge=1, le=10)


class LoggingSettings(BaseModel):
    """structlog output"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class Settings(BaseModel):
    """Complete application configuration"""

    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    stability: StabilitySettings = Field(default_factory=StabilitySettings)
    renderer: RendererSettings = Field(default_factory=RendererSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class CrawlRequest(BaseModel):
    """A validated crawl request from a user"""

    url: str
    max_pages: int = Field(default=50, ge=1, le=1000)
    include_subdomains: bool = False

    @field_validator("url")
    @classmethod
    def http_url(cls, value: str) -> str:
        parsed = urlsplit(value.strip())
        if parsed.scheme not in ("http", "https"):
            raise ValueError("Only HTTP and HTTPS protocols are allowed")
        if not parsed.netloc:
            raise ValueError("Invalid URL format")
        return value.strip()


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_env_value(value: str) -> Any:
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def _load_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    prefix_with_sep = f"{prefix}__"

    for key, value in os.environ.items():
        if not key.startswith(prefix_with_sep):
            continue

        key_path = key[len(prefix_with_sep):].lower().split("__")
        if len(key_path) < 2:
            continue

        current = overrides
        for part in key_path[:-1]:
            current = current.setdefault(part, {})
        current[key_path[-1]] = _parse_env_value(value)

    return overrides


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"Configuration file must contain a mapping, got: {type(content).__name__}")
    return content


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    env_prefix: str = ENV_PREFIX,
) -> Settings:
    """
    Load settings from defaults, an optional YAML file and the environment.

    Args:
        config_path: Path to a YAML file (None for defaults + env only)
        env_prefix: Environment variable prefix

    Returns:
        Validated Settings

    Raises:
        ConfigError: If the file is missing or not a YAML mapping
        pydantic.ValidationError: If a value is out of range
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        data = _deep_merge(data, _load_yaml_file(Path(config_path)))
    data = _deep_merge(data, _load_env_overrides(env_prefix))

    settings = Settings(**data)
    if settings.crawl.max_pages_default > settings.crawl.max_pages_limit:
        raise ConfigError(
            f"max_pages_default ({settings.crawl.max_pages_default}) "
            f"exceeds max_pages_limit ({settings.crawl.max_pages_limit})"
        )
    return settings
