from __future__ import annotations

import warnings

import httpx
import pytest
from bs4 import XMLParsedAsHTMLWarning

from sitechat.discovery import UrlDiscoverer, site_origin

from conftest import SiteTransport


def _xml(body: str) -> tuple[int, str, str]:
    return (200, f"<?xml version='1.0' encoding='UTF-8'?>{body}", "application/xml")


async def _discover(routes: dict[str, object], root: str = "https://example.com/blog/", **kwargs) -> tuple[list[str], SiteTransport]:
    site = SiteTransport(routes)
    async with httpx.AsyncClient(transport=site.transport()) as client:
        urls = await UrlDiscoverer(client, **kwargs).discover(root)
    return urls, site


def test_site_origin_strips_path() -> None:
    assert site_origin("https://example.com/blog/post?x=1") == "https://example.com"


@pytest.mark.asyncio
async def test_reads_urlset_from_site_root() -> None:
    routes = {
        "https://example.com/sitemap.xml": _xml(
            "<urlset>"
            "<url><loc>https://example.com/a</loc></url>"
            "<url><loc>https://example.com/b</loc></url>"
            "<url><loc>https://example.com/a</loc></url>"
            "<url><loc>mailto:someone@example.com</loc></url>"
            "</urlset>"
        )
    }

    urls, _ = await _discover(routes)

    assert urls == ["https://example.com/a", "https://example.com/b"]


@pytest.mark.asyncio
async def test_follows_sitemap_index() -> None:
    routes = {
        "https://example.com/sitemap_index.xml": _xml(
            "<sitemapindex>"
            "<sitemap><loc>https://example.com/pages.xml</loc></sitemap>"
            "<sitemap><loc>https://example.com/posts.xml</loc></sitemap>"
            "</sitemapindex>"
        ),
        "https://example.com/pages.xml": _xml("<urlset><url><loc>https://example.com/about</loc></url></urlset>"),
        "https://example.com/posts.xml": _xml("<urlset><url><loc>https://example.com/post-1</loc></url></urlset>"),
    }

    urls, _ = await _discover(routes)

    assert urls == ["https://example.com/about", "https://example.com/post-1"]


@pytest.mark.asyncio
async def test_falls_back_to_robots_sitemap_lines() -> None:
    routes = {
        "https://example.com/robots.txt": (
            200,
            "User-agent: *\nDisallow: /private\nSitemap: https://example.com/custom-map.xml\n",
            "text/plain",
        ),
        "https://example.com/custom-map.xml": _xml(
            "<urlset><url><loc>https://example.com/from-robots</loc></url></urlset>"
        ),
    }

    urls, site = await _discover(routes)

    assert urls == ["https://example.com/from-robots"]
    assert site.requested[:4] == [
        "https://example.com/sitemap.xml",
        "https://example.com/sitemap_index.xml",
        "https://example.com/sitemaps.xml",
        "https://example.com/robots.txt",
    ]


@pytest.mark.asyncio
async def test_index_recursion_is_bounded_by_depth() -> None:
    routes = {
        "https://example.com/sitemap.xml": _xml(
            "<sitemapindex><sitemap><loc>https://example.com/level1.xml</loc></sitemap></sitemapindex>"
        ),
        "https://example.com/level1.xml": _xml(
            "<sitemapindex><sitemap><loc>https://example.com/level2.xml</loc></sitemap>"
            "</sitemapindex><urlset><url><loc>https://example.com/one</loc></url></urlset>"
        ),
        "https://example.com/level2.xml": _xml("<urlset><url><loc>https://example.com/two</loc></url></urlset>"),
    }

    urls, site = await _discover(routes, max_depth=1)

    assert urls == ["https://example.com/one"]
    assert "https://example.com/level2.xml" not in site.requested


@pytest.mark.asyncio
async def test_self_referencing_index_terminates() -> None:
    routes = {
        "https://example.com/sitemap.xml": _xml(
            "<sitemapindex><sitemap><loc>https://example.com/sitemap.xml</loc></sitemap></sitemapindex>"
        ),
    }

    urls, site = await _discover(routes)

    assert urls == []
    assert site.requested.count("https://example.com/sitemap.xml") == 1


@pytest.mark.asyncio
async def test_unreachable_site_yields_nothing() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        urls = await UrlDiscoverer(client).discover("https://example.com/")

    assert urls == []


@pytest.mark.asyncio
async def test_namespaced_sitemap_parses_as_xml_without_warnings() -> None:
    routes = {
        "https://example.com/sitemap.xml": _xml(
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            "<url><loc>https://example.com/a</loc><lastmod>2024-01-01</lastmod></url>"
            "<url><loc> https://example.com/b </loc></url>"
            "</urlset>"
        )
    }

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        urls, _ = await _discover(routes)

    assert urls == ["https://example.com/a", "https://example.com/b"]
    assert not [item for item in caught if issubclass(item.category, XMLParsedAsHTMLWarning)]
