"""
Integration test for the full crawl + audit pipeline.

This test verifies that the quietcrawl pipeline works end-to-end against a
small local site served by aiohttp:
1. robots.txt and sitemap.xml are honoured
2. Playwright renders pages and extracts links
3. Dynamic content is waited out by the stabilization detector
4. Failures land in failed_urls

Requires browsers: playwright install chromium
Run with: pytest tests/integration -m integration -v
"""

from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from quietcrawl.core.config import CrawlSettings, Settings, StabilitySettings
from quietcrawl.core.pipeline import AuditPipeline
from quietcrawl.crawler import CrawlOptions, PlaywrightRenderer, StabilizationDetector, crawl


HOME = """
<html><head><title>Home</title></head><body>
  <a href="/about">About</a>
  <a href="/dynamic">Dynamic</a>
  <a href="/private/secret">Secret</a>
  <a href="/missing">Missing</a>
  <a href="/manual.pdf">Manual</a>
  <a href="https://elsewhere.invalid/">Elsewhere</a>
</body></html>
"""

ABOUT = """
<html><head><title>About</title></head><body>
  <a href="/">Home</a>
  <a href="/about/team">Team</a>
</body></html>
"""

DYNAMIC = """
<html><head><title>Dynamic</title></head><body>
  <div id="list"></div>
  <script>
    let added = 0;
    const timer = setInterval(() => {
      const item = document.createElement('a');
      item.href = '/generated-' + added;
      item.textContent = 'generated ' + added;
      document.getElementById('list').appendChild(item);
      added += 1;
      if (added === 3) { clearInterval(timer); }
    }, 150);
  </script>
</body></html>
"""

SIMPLE = "<html><head><title>{title}</title></head><body>{title}</body></html>"

ROBOTS = "User-agent: *\nDisallow: /private\n"


def build_site():
    app = web.Application()

    def page(body):
        async def handler(request):
            return web.Response(text=body, content_type="text/html")
        return handler

    async def sitemap(request):
        origin = f"http://{request.host}"
        body = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            f"<url><loc>{origin}/from-sitemap</loc></url>"
            "</urlset>"
        )
        return web.Response(text=body, content_type="application/xml")

    async def robots(request):
        return web.Response(text=ROBOTS)

    app.router.add_get("/", page(HOME))
    app.router.add_get("/about", page(ABOUT))
    app.router.add_get("/about/team", page(SIMPLE.format(title="Team")))
    app.router.add_get("/dynamic", page(DYNAMIC))
    app.router.add_get("/from-sitemap", page(SIMPLE.format(title="From sitemap")))
    app.router.add_get("/private/secret", page(SIMPLE.format(title="Secret")))
    for i in range(3):
        app.router.add_get(f"/generated-{i}", page(SIMPLE.format(title=f"Generated {i}")))
    app.router.add_get("/robots.txt", robots)
    app.router.add_get("/sitemap.xml", sitemap)
    return app


async def require_browser():
    try:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True)
            await browser.close()
    except PlaywrightError as e:
        pytest.skip(f"Playwright browser unavailable: {e}")


@asynccontextmanager
async def local_site():
    server = TestServer(build_site())
    await server.start_server()
    try:
        yield f"http://{server.host}:{server.port}"
    finally:
        await server.close()


def fast_stabilizer():
    return StabilizationDetector(
        StabilitySettings(timeout_ms=5000, dom_quiet_window_ms=300, extra_wait_ms=50).to_options()
    )


@pytest.mark.integration
@pytest.mark.asyncio
async def test_crawl_local_site():
    """
    Test a real browser crawl: robots, sitemap, dynamic links and failures.
    """
    await require_browser()

    async with local_site() as origin:
        async with PlaywrightRenderer(stabilizer=fast_stabilizer(), navigation_timeout_ms=15000) as renderer:
            result = await crawl(
                f"{origin}/",
                max_pages=20,
                options=CrawlOptions(max_depth=2, max_time_ms=60000),
                renderer=renderer,
            )

    visited = set(result.visited_urls)
    failed = {entry.url: entry for entry in result.failed_urls}

    # Pages reachable within depth 2
    assert f"{origin}/" in visited
    assert f"{origin}/about" in visited
    assert f"{origin}/dynamic" in visited
    assert f"{origin}/from-sitemap" in visited

    # Links added by script after load were seen thanks to stabilization
    assert f"{origin}/generated-0" in visited
    assert f"{origin}/generated-2" in visited

    # Excluded by policy: never reported anywhere
    everything = visited | set(result.unvisited_urls)
    assert f"{origin}/private/secret" not in everything
    assert "https://elsewhere.invalid/" not in everything
    assert f"{origin}/manual.pdf" not in everything

    # 404 is terminal
    assert failed[f"{origin}/missing"].status_code == 404
    assert failed[f"{origin}/missing"].retry_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_audit_pipeline_local_site():
    """
    Test the audit pipeline analyzes every successfully visited page.
    """
    await require_browser()

    settings = Settings(
        crawl=CrawlSettings(max_depth=1, base_delay_s=0),
        stability=StabilitySettings(timeout_ms=5000, dom_quiet_window_ms=300, extra_wait_ms=50),
    )

    async with local_site() as origin:
        pipeline = AuditPipeline(f"{origin}/", settings=settings, max_pages=10)
        run = await pipeline.run()

    titles = {page.url: page.findings.get("title") for page in run.pages if page.ok}
    assert titles[f"{origin}/"] == "Home"
    assert titles[f"{origin}/about"] == "About"
    assert all(page.ok for page in run.pages)
    assert "quietcrawl Audit Results" in pipeline.get_summary()


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-m", "integration"])
