"""Sitemap and robots.txt based URL discovery."""

from __future__ import annotations

import logging
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

SITEMAP_CANDIDATES = ("sitemap.xml", "sitemap_index.xml", "sitemaps.xml")


def site_origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _is_web_url(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


class UrlDiscoverer:
    """Collect page URLs advertised by a site's sitemaps.

    Candidates are tried in order (``sitemap.xml``, ``sitemap_index.xml``,
    ``sitemaps.xml``, then ``Sitemap:`` lines of ``robots.txt``); the first one
    that yields URLs wins. Sitemap indexes are followed up to ``max_depth``
    levels and at most ``max_fetches`` sitemap documents are requested per
    discovery. Failures never propagate: an unreachable site yields ``[]``.
    """

    def __init__(self, client: httpx.AsyncClient, *, max_depth: int = 3, max_fetches: int = 25) -> None:
        self._client = client
        self._max_depth = max(0, max_depth)
        self._max_fetches = max(1, max_fetches)
        self._fetches = 0

    async def discover(self, root_url: str) -> list[str]:
        self._fetches = 0
        origin = site_origin(root_url)
        visited: set[str] = set()

        for name in SITEMAP_CANDIDATES:
            urls = await self._read_sitemap(f"{origin}/{name}", 0, visited)
            if urls:
                logger.info("discovery.sitemap.found url=%s/%s pages=%s", origin, name, len(urls))
                return _dedupe(urls)

        urls: list[str] = []
        for sitemap_url in await self._robots_sitemaps(f"{origin}/robots.txt"):
            urls.extend(await self._read_sitemap(sitemap_url, 0, visited))
        if urls:
            logger.info("discovery.robots.found origin=%s pages=%s", origin, len(urls))
        else:
            logger.info("discovery.none origin=%s", origin)
        return _dedupe(urls)

    async def _read_sitemap(self, url: str, depth: int, visited: set[str]) -> list[str]:
        if url in visited:
            return []
        visited.add(url)
        text = await self._fetch(url)
        if not text:
            return []

        soup = BeautifulSoup(text, "xml")
        urls: list[str] = []
        for entry in soup.find_all("url"):
            loc = entry.find("loc")
            if loc is None:
                continue
            value = loc.get_text(strip=True)
            if _is_web_url(value):
                urls.append(value)

        if depth >= self._max_depth:
            return urls
        for entry in soup.find_all("sitemap"):
            loc = entry.find("loc")
            if loc is None:
                continue
            child = loc.get_text(strip=True)
            if _is_web_url(child):
                urls.extend(await self._read_sitemap(child, depth + 1, visited))
        return urls

    async def _robots_sitemaps(self, url: str) -> list[str]:
        text = await self._fetch(url)
        if not text:
            return []
        sitemaps: list[str] = []
        for line in text.splitlines():
            key, sep, value = line.strip().partition(":")
            if not sep or key.strip().lower() != "sitemap":
                continue
            location = urljoin(url, value.strip())
            if _is_web_url(location):
                sitemaps.append(location)
        return sitemaps

    async def _fetch(self, url: str) -> str | None:
        if self._fetches >= self._max_fetches:
            logger.warning("discovery.fetch_budget_exhausted url=%s limit=%s", url, self._max_fetches)
            return None
        self._fetches += 1
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            logger.debug("discovery.fetch.failed url=%s error=%s", url, exc)
            return None
        if response.status_code >= 400:
            logger.debug("discovery.fetch.status url=%s status=%s", url, response.status_code)
            return None
        return response.text


def _dedupe(urls: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


__all__ = ["UrlDiscoverer", "SITEMAP_CANDIDATES", "site_origin"]
