"""
Unit tests for sitemap parsing and seeding.

Run with: pytest tests/unit/test_sitemap.py -v
"""

from contextlib import asynccontextmanager
from xml.etree import ElementTree as ET

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from quietcrawl.crawler.sitemap import MAX_SITEMAP_FETCHES, SitemapOutcome, SitemapSeeder, parse_sitemap


NS = 'xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"'


def urlset(*locs):
    entries = "".join(f"<url><loc> {loc} </loc></url>" for loc in locs)
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset {NS}>{entries}</urlset>'


def sitemap_index(*locs):
    entries = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex {NS}>{entries}</sitemapindex>'


@asynccontextmanager
async def serve(pages, requested=None):
    """Serve {path: xml body or callable(request) -> body} and yield the origin"""

    @web.middleware
    async def record(request, handler):
        if requested is not None:
            requested.append(request.path)
        return await handler(request)

    app = web.Application(middlewares=[record])

    for path, body in pages.items():
        async def handler(request, body=body):
            text = body(request) if callable(body) else body
            return web.Response(text=text, content_type="application/xml")
        app.router.add_get(path, handler)

    server = TestServer(app)
    await server.start_server()
    try:
        yield f"http://{server.host}:{server.port}"
    finally:
        await server.close()


class TestParseSitemap:
    """Test suite for parse_sitemap()"""

    def test_urlset(self):
        """Test <loc> values are extracted in order and stripped"""
        root, locs = parse_sitemap(urlset("https://example.com/a", "https://example.com/b"))

        assert root == "urlset"
        assert locs == ["https://example.com/a", "https://example.com/b"]

    def test_index(self):
        """Test sitemap index root is reported"""
        root, locs = parse_sitemap(sitemap_index("https://example.com/s1.xml"))

        assert root == "sitemapindex"
        assert locs == ["https://example.com/s1.xml"]

    def test_without_namespace(self):
        """Test plain tags work too"""
        root, locs = parse_sitemap("<urlset><url><loc>https://example.com/</loc></url></urlset>")

        assert root == "urlset"
        assert locs == ["https://example.com/"]

    def test_malformed_xml_raises(self):
        """Test malformed XML raises ParseError"""
        with pytest.raises(ET.ParseError):
            parse_sitemap("<urlset><url>")


class TestSitemapSeeder:
    """Test suite for SitemapSeeder.fetch()"""

    @pytest.mark.asyncio
    async def test_fetch_urlset(self):
        """Test seeds from /sitemap.xml"""
        async with serve({"/sitemap.xml": urlset("https://example.com/a", "https://example.com/a", "https://example.com/b")}) as origin:
            seeds = await SitemapSeeder(timeout_s=5).fetch(origin)

        assert seeds.outcome is SitemapOutcome.LOADED
        assert seeds.urls == ["https://example.com/a", "https://example.com/b"]

    @pytest.mark.asyncio
    async def test_missing_sitemap(self):
        """Test a 404 gives no seeds"""
        async with serve({}) as origin:
            seeds = await SitemapSeeder(timeout_s=5).fetch(origin)

        assert seeds.outcome is SitemapOutcome.MISSING
        assert seeds.urls == []

    @pytest.mark.asyncio
    async def test_malformed_sitemap(self):
        """Test broken XML is tolerated"""
        async with serve({"/sitemap.xml": "<urlset><url>"}) as origin:
            seeds = await SitemapSeeder(timeout_s=5).fetch(origin)

        assert seeds.outcome is SitemapOutcome.FAILED
        assert seeds.urls == []

    @pytest.mark.asyncio
    async def test_unreachable_host(self):
        """Test connection errors are tolerated"""
        async with serve({}) as origin:
            pass

        seeds = await SitemapSeeder(timeout_s=5).fetch(origin)

        assert seeds.outcome is SitemapOutcome.FAILED
        assert seeds.urls == []

    @pytest.mark.asyncio
    async def test_follows_sitemap_index(self):
        """Test index files are followed to child sitemaps"""
        pages = {
            "/sitemap.xml": lambda request: sitemap_index(
                f"http://{request.host}/part-1.xml",
                f"http://{request.host}/part-2.xml",
            ),
            "/part-1.xml": urlset("https://example.com/1"),
            "/part-2.xml": urlset("https://example.com/2"),
        }
        async with serve(pages) as origin:
            seeds = await SitemapSeeder(timeout_s=5).fetch(origin)

        assert seeds.outcome is SitemapOutcome.LOADED
        assert seeds.urls == ["https://example.com/1", "https://example.com/2"]

    @pytest.mark.asyncio
    async def test_extra_locations(self):
        """Test sitemaps declared in robots.txt are fetched too"""
        async with serve({"/custom-map.xml": urlset("https://example.com/from-robots")}) as origin:
            seeds = await SitemapSeeder(timeout_s=5).fetch(origin, extra_locations=[f"{origin}/custom-map.xml"])

        assert seeds.outcome is SitemapOutcome.LOADED
        assert seeds.urls == ["https://example.com/from-robots"]

    @pytest.mark.asyncio
    async def test_max_urls_cap(self):
        """Test the safety cap limits the number of seeds"""
        locs = [f"https://example.com/page-{i}" for i in range(20)]
        async with serve({"/sitemap.xml": urlset(*locs)}) as origin:
            seeds = await SitemapSeeder(max_urls=5, timeout_s=5).fetch(origin)

        assert seeds.urls == locs[:5]

    @pytest.mark.asyncio
    async def test_max_fetches_cap(self):
        """Test a huge index of dead child sitemaps stops after max_fetches requests"""
        requested = []
        pages = {
            "/sitemap.xml": lambda request: sitemap_index(
                *(f"http://{request.host}/dead-{i}.xml" for i in range(400))
            ),
        }
        async with serve(pages, requested) as origin:
            seeds = await SitemapSeeder(timeout_s=5, max_fetches=10).fetch(origin)

        assert len(requested) == 10
        assert requested[0] == "/sitemap.xml"
        assert seeds.urls == []
        assert seeds.outcome is SitemapOutcome.LOADED

    @pytest.mark.asyncio
    async def test_default_fetch_cap(self):
        """Test the default cap bounds index following"""
        requested = []
        pages = {
            "/sitemap.xml": lambda request: sitemap_index(
                *(f"http://{request.host}/dead-{i}.xml" for i in range(400))
            ),
        }
        async with serve(pages, requested) as origin:
            await SitemapSeeder(timeout_s=5).fetch(origin)

        assert len(requested) == MAX_SITEMAP_FETCHES


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
