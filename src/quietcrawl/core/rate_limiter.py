"""
Adaptive Rate Limiter - Politeness delay between page navigations.

The delay adapts to how the site behaves: it creeps down towards the base
delay while pages load quickly, grows on 429 and 5xx responses, and never
drops below a robots.txt Crawl-delay once one is known.

Unlike a scanner throttle this limiter never aborts: a crawl always ends in
a CrawlResult, so errors only slow it down.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Optional

import structlog


@dataclass
class RateLimitConfig:
    """Configuration for rate limiter (seconds)"""
    base_delay: float = 0.5      # Delay between navigations
    min_delay: float = 0.0       # Lower bound after speedups
    max_delay: float = 10.0      # Upper bound after slowdowns
    jitter_range: float = 0.1    # Random jitter (+/- seconds)
    speedup_threshold: int = 10  # Fast successes before speeding up
    speedup_factor: float = 0.9
    slowdown_factor_429: float = 2.0
    slowdown_factor_5xx: float = 1.5


class AdaptiveRateLimiter:
    """
    Adaptive politeness delay for the frontier scheduler.

    Example:
        >>> limiter = AdaptiveRateLimiter()
        >>> await limiter.wait()           # before each navigation
        >>> limiter.on_success(response_time=0.4)
        >>> limiter.on_error(status_code=503)
    """

    def __init__(self, config: Optional[RateLimitConfig] = None):
        """
        Initialize the rate limiter.

        Args:
            config: Rate limit configuration (uses defaults if None)
        """
        self.config = config or RateLimitConfig()
        self.current_delay = self.config.base_delay
        self.floor_delay = self.config.min_delay
        self.error_count = 0
        self.success_count = 0
        self.request_count = 0
        self.last_request_time: Optional[float] = None

        self.logger = structlog.get_logger(__name__)

    def apply_crawl_delay(self, crawl_delay: Optional[float]):
        """
        Honour a robots.txt Crawl-delay (seconds) as a hard lower bound.

        Args:
            crawl_delay: Delay from robots.txt, or None to leave limits unchanged
        """
        if crawl_delay is None or crawl_delay <= 0:
            return

        self.floor_delay = max(self.config.min_delay, min(crawl_delay, self.config.max_delay))
        self.current_delay = max(self.current_delay, self.floor_delay)

        self.logger.info(
            "crawl_delay_applied",
            crawl_delay=crawl_delay,
            current_delay=f"{self.current_delay:.2f}s",
        )

    def next_delay(self) -> float:
        """Delay to use for the next request, jitter included and clamped"""
        jitter = random.uniform(-self.config.jitter_range, self.config.jitter_range)
        delay = self.current_delay + jitter
        return max(self.floor_delay, min(self.config.max_delay, delay))

    async def wait(self):
        """
        Sleep until the next navigation may start.

        The delay counts from the previous request, so time already spent
        rendering a page is not slept again.
        """
        delay = self.next_delay()

        if self.last_request_time is not None:
            elapsed = time.monotonic() - self.last_request_time
            remaining = delay - elapsed
            if remaining > 0:
                self.logger.debug(
                    "rate_limit_wait",
                    delay=f"{remaining:.2f}s",
                    current_delay=f"{self.current_delay:.2f}s",
                )
                await asyncio.sleep(remaining)

        self.last_request_time = time.monotonic()
        self.request_count += 1

    def on_success(self, response_time: float):
        """
        Record a successful page load and possibly speed up.

        Args:
            response_time: Page load time in seconds
        """
        self.success_count += 1
        self.error_count = 0

        if response_time < 1.0 and self.success_count >= self.config.speedup_threshold:
            old_delay = self.current_delay
            self.current_delay = max(
                self.floor_delay,
                min(self.config.base_delay, self.current_delay * self.config.speedup_factor),
            )

            if old_delay != self.current_delay:
                self.logger.debug(
                    "rate_limit_speedup",
                    old_delay=f"{old_delay:.2f}s",
                    new_delay=f"{self.current_delay:.2f}s",
                )

    def on_error(self, status_code: Optional[int] = None):
        """
        Record a failed page load and slow down on 429/5xx.

        Args:
            status_code: HTTP status code, None for network errors and timeouts
        """
        self.error_count += 1
        self.success_count = 0

        old_delay = self.current_delay

        if status_code == 429:
            self.current_delay *= self.config.slowdown_factor_429
        elif status_code is not None and status_code >= 500:
            self.current_delay *= self.config.slowdown_factor_5xx
        else:
            return

        # A zero base delay would otherwise never grow
        self.current_delay = max(self.current_delay, 0.25)
        self.current_delay = min(self.config.max_delay, self.current_delay)

        self.logger.warning(
            "rate_limit_slowdown",
            status_code=status_code,
            old_delay=f"{old_delay:.2f}s",
            new_delay=f"{self.current_delay:.2f}s",
        )

    def reset(self):
        """Reset the rate limiter to initial state"""
        self.current_delay = self.config.base_delay
        self.floor_delay = self.config.min_delay
        self.error_count = 0
        self.success_count = 0
        self.request_count = 0
        self.last_request_time = None

    def get_stats(self) -> dict:
        """
        Get rate limiter statistics.

        Returns:
            Dictionary with current statistics
        """
        return {
            "current_delay": f"{self.current_delay:.2f}s",
            "floor_delay": f"{self.floor_delay:.2f}s",
            "error_count": self.error_count,
            "success_count": self.success_count,
            "request_count": self.request_count,
        }
