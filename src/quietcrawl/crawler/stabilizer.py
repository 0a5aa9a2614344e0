"""
Stabilization Detector - Decide when a freshly navigated page is quiet.

A page can report "loaded" long before client-side rendering has settled.
The detector combines two signals and gives up after a hard time budget:

1. Network quiescence: in-flight request counter <= max_inflight_requests
2. DOM quiescence: no observed mutation for dom_quiet_window_ms

Both signals are collected by a PageActivityMonitor, an async context
manager that subscribes to the page on entry and unsubscribes exactly once
on exit, whichever way the wait ends.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog


_monitor_ids = itertools.count(1)

INSTALL_OBSERVER_JS = """
([binding, handle]) => {
    const mark = () => {
        const fn = window[binding];
        if (typeof fn === 'function') {
            fn();
        }
    };
    const observer = new MutationObserver(mark);
    observer.observe(document.documentElement, {
        attributes: true,
        childList: true,
        subtree: true,
        characterData: true,
    });
    window[handle] = observer;
}
"""

RELEASE_OBSERVER_JS = """
(handle) => {
    const observer = window[handle];
    if (observer) {
        observer.disconnect();
        delete window[handle];
    }
}
"""

FONTS_READY_JS = """
async () => {
    if (document.fonts && document.fonts.ready && typeof document.fonts.ready.then === 'function') {
        await document.fonts.ready;
    }
}
"""

NETWORK_EVENTS_DONE = ("requestfinished", "requestfailed")

# Lower bound for installing or releasing the page hooks, even past the deadline
HOOK_TIMEOUT_FLOOR_MS = 250


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class QuietPageOptions:
    """Tuning knobs for the stabilization wait (all durations in ms)"""
    timeout_ms: int = 30000
    max_inflight_requests: int = 2
    dom_quiet_window_ms: int = 800
    extra_wait_ms: int = 200
    poll_interval_ms: int = 100
    load_state_cap_ms: int = 8000


@dataclass
class StabilizationReport:
    """What the detector observed; truthy when the page became quiet"""
    quiet: bool = False
    load_state_reached: bool = False
    fonts_ready: bool = False
    dom_observed: bool = False
    elapsed_ms: float = 0.0

    def __bool__(self) -> bool:
        return self.quiet


class PageActivityMonitor:
    """
    Tracks in-flight requests and DOM mutations on one page.

    Example:
        >>> async with PageActivityMonitor(page) as monitor:
        ...     monitor.network_quiet(2), monitor.dom_quiet_for()
    """

    def __init__(
        self,
        page: Any,
        clock: Callable[[], float] = monotonic_ms,
        deadline: Optional[float] = None,
    ):
        self.page = page
        self.clock = clock
        self.deadline = deadline

        monitor_id = next(_monitor_ids)
        self.binding_name = f"__quietcrawl_mark_{monitor_id}"
        self.observer_handle = f"__quietcrawl_observer_{monitor_id}"

        self.inflight = 0
        self.last_mutation_ms = clock()
        self.dom_observed = False
        self.subscribed = False
        self.released = False

        self.logger = structlog.get_logger(__name__)

    async def __aenter__(self) -> "PageActivityMonitor":
        self._subscribe_network()
        try:
            await asyncio.wait_for(self._install_mutation_hook(), timeout=self._hook_timeout_s())
        except Exception as e:
            # DOM signal unavailable: quiet window is measured from subscription time
            self.logger.warning("mutation_hook_unavailable", error=str(e))
        except BaseException:
            await self.release()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.release()
        return False

    def _on_request(self, *_args):
        self.inflight += 1

    def _on_request_done(self, *_args):
        self.inflight = max(0, self.inflight - 1)

    def _mark_mutation(self, *_args):
        if not self.released:
            self.last_mutation_ms = self.clock()

    def _subscribe_network(self):
        self.page.on("request", self._on_request)
        for event in NETWORK_EVENTS_DONE:
            self.page.on(event, self._on_request_done)
        self.subscribed = True

    def _hook_timeout_s(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(self.deadline - self.clock(), HOOK_TIMEOUT_FLOOR_MS) / 1000

    async def _install_mutation_hook(self):
        await self.page.expose_function(self.binding_name, self._mark_mutation)
        await self.page.evaluate(INSTALL_OBSERVER_JS, [self.binding_name, self.observer_handle])
        self.dom_observed = True
        self.last_mutation_ms = self.clock()

    async def release(self):
        """Unsubscribe everything; safe to call more than once"""
        if self.released:
            return
        self.released = True

        if self.subscribed:
            self.page.remove_listener("request", self._on_request)
            for event in NETWORK_EVENTS_DONE:
                self.page.remove_listener(event, self._on_request_done)
            self.subscribed = False

        if self.dom_observed:
            try:
                await asyncio.wait_for(
                    self.page.evaluate(RELEASE_OBSERVER_JS, self.observer_handle),
                    timeout=self._hook_timeout_s(),
                )
            except Exception as e:
                # Page closed or unresponsive: the observer dies with it
                self.logger.debug("mutation_hook_release_failed", error=str(e))

    def network_quiet(self, max_inflight_requests: int) -> bool:
        return self.inflight <= max_inflight_requests

    def dom_quiet_for(self) -> float:
        return self.clock() - self.last_mutation_ms


class StabilizationDetector:
    """
    Waits, within a hard budget, until a page is network- and DOM-quiet.

    Example:
        >>> detector = StabilizationDetector(QuietPageOptions(timeout_ms=5000))
        >>> report = await detector.wait_for_quiet(page)
        >>> if report.quiet: ...
    """

    def __init__(
        self,
        options: Optional[QuietPageOptions] = None,
        clock: Callable[[], float] = monotonic_ms,
    ):
        """
        Initialize the detector.

        Args:
            options: Timing options (defaults if None)
            clock: Millisecond clock, injectable for tests
        """
        self.options = options or QuietPageOptions()
        self.clock = clock
        self.logger = structlog.get_logger(__name__)

    async def wait_for_quiet(self, page: Any) -> StabilizationReport:
        """
        Wait until the page is quiet or the budget runs out.

        Failures of the load-state and font waits are tolerated and recorded
        in the report. Errors from the polling loop propagate, after the
        observation hooks have been released.

        Args:
            page: Playwright page (or anything with the same event/evaluate API)

        Returns:
            StabilizationReport; report.quiet is False on timeout
        """
        options = self.options
        start = self.clock()
        deadline = start + options.timeout_ms
        report = StabilizationReport()

        async with PageActivityMonitor(page, clock=self.clock, deadline=deadline) as monitor:
            report.dom_observed = monitor.dom_observed

            try:
                await page.wait_for_load_state(
                    "domcontentloaded",
                    timeout=max(1, min(options.load_state_cap_ms, options.timeout_ms)),
                )
                report.load_state_reached = True
            except Exception as e:
                self.logger.debug("load_state_wait_failed", error=str(e))

            remaining_ms = deadline - self.clock()
            if remaining_ms > 0:
                try:
                    await asyncio.wait_for(page.evaluate(FONTS_READY_JS), timeout=remaining_ms / 1000)
                    report.fonts_ready = True
                except Exception as e:
                    self.logger.debug("fonts_wait_failed", error=str(e))

            report.quiet = await self._poll_until_quiet(page, monitor, deadline)

            if report.quiet and options.extra_wait_ms > 0:
                await page.wait_for_timeout(options.extra_wait_ms)

        report.elapsed_ms = self.clock() - start

        self.logger.debug(
            "page_stabilization_done",
            quiet=report.quiet,
            elapsed_ms=round(report.elapsed_ms, 1),
            inflight=monitor.inflight,
            dom_observed=report.dom_observed,
        )
        return report

    async def _poll_until_quiet(self, page: Any, monitor: PageActivityMonitor, deadline: float) -> bool:
        options = self.options
        while self.clock() < deadline:
            network_quiet = monitor.network_quiet(options.max_inflight_requests)
            if network_quiet and monitor.dom_quiet_for() >= options.dom_quiet_window_ms:
                return True
            await page.wait_for_timeout(options.poll_interval_ms)
        return False


async def wait_for_quiet_page(page: Any, **options) -> bool:
    """Convenience wrapper: wait with QuietPageOptions(**options), return quiet flag"""
    report = await StabilizationDetector(QuietPageOptions(**options)).wait_for_quiet(page)
    return report.quiet


async def apply_deterministic_context(page: Any):
    """Standard viewport, reduced motion and language to cut render flakiness"""
    await page.set_viewport_size({"width": 1366, "height": 768})
    await page.emulate_media(reduced_motion="reduce")
    await page.set_extra_http_headers({"Accept-Language": "en-US,en;q=0.9"})
