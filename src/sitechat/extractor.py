"""HTML fetching and cleaning for single pages."""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from .errors import ContentTooThin, FetchError
from .models import Heading, NavLink, Page, utc_now

logger = logging.getLogger(__name__)

NAV_LINK_SELECTOR = "nav a, .nav a, .navigation a, .menu a"
CHROME_SELECTOR = "script, style, noscript, nav, header, footer, .advertisement, .ads"
CONTENT_SELECTORS = (
    "main",
    "article",
    ".content",
    ".main-content",
    "#content",
    "#main",
    ".post-content",
    ".entry-content",
)
_SKIPPED_HREF_PREFIXES = ("#", "mailto:", "tel:", "javascript:")
_WHITESPACE_RE = re.compile(r"\s+")
_TEXT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")


def _clean(text: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def _meta(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return _clean(tag.get("content"))


class PageExtractor:
    """Fetch a URL and reduce its HTML to a :class:`Page`."""

    def __init__(self, client: httpx.AsyncClient, *, min_word_count: int = 20) -> None:
        self._client = client
        self._min_word_count = max(0, min_word_count)

    async def extract(self, url: str) -> Page:
        html = await self.fetch(url)
        return self.parse(url, html)

    async def fetch(self, url: str) -> str:
        """Return the HTML body of ``url``; raise :class:`FetchError` otherwise."""

        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise FetchError(url, f"request failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise FetchError(url, f"HTTP {response.status_code}", status_code=response.status_code)
        content_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if content_type and content_type not in _TEXT_TYPES:
            raise FetchError(url, f"unsupported content type {content_type}", status_code=response.status_code)
        return response.text

    def parse(self, url: str, html: str) -> Page:
        soup = BeautifulSoup(html, "html.parser")

        nav_links: list[NavLink] = []
        seen_hrefs: set[str] = set()
        for anchor in soup.select(NAV_LINK_SELECTOR):
            href = anchor.get("href")
            text = _clean(anchor.get_text(" "))
            if not href or not text or href.startswith(_SKIPPED_HREF_PREFIXES):
                continue
            absolute = urljoin(url, href)
            if absolute in seen_hrefs:
                continue
            seen_hrefs.add(absolute)
            nav_links.append(NavLink(text=text, href=absolute))

        title = _clean(soup.title.get_text()) if soup.title else ""
        description = _meta(soup, name="description") or _meta(soup, property="og:description")
        keywords = _meta(soup, name="keywords")

        for tag in soup.select(CHROME_SELECTOR):
            tag.extract()

        headings: list[Heading] = []
        for tag in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
            text = _clean(tag.get_text(" "))
            if text:
                headings.append(Heading(level=int(tag.name[1]), text=text))

        body_text = ""
        for selector in CONTENT_SELECTORS:
            for element in soup.select(selector):
                text = _clean(element.get_text(" "))
                if len(text) > len(body_text):
                    body_text = text
        if not body_text:
            root = soup.body or soup
            body_text = _clean(root.get_text(" "))

        word_count = len(body_text.split())
        if word_count < self._min_word_count:
            raise ContentTooThin(url, word_count, self._min_word_count)

        return Page(
            url=url,
            title=title,
            description=description,
            keywords=keywords,
            body_text=body_text,
            headings=tuple(headings),
            nav_links=tuple(nav_links),
            word_count=word_count,
            scraped_at=utc_now(),
        )

    @staticmethod
    def extract_links(url: str, html: str) -> list[str]:
        """Return absolute http(s) targets of every anchor in ``html``."""

        soup = BeautifulSoup(html, "html.parser")
        links: list[str] = []
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith(_SKIPPED_HREF_PREFIXES):
                continue
            absolute = urljoin(url, href)
            if urlsplit(absolute).scheme in {"http", "https"}:
                links.append(absolute)
        return links


__all__ = ["PageExtractor", "CONTENT_SELECTORS", "CHROME_SELECTOR", "NAV_LINK_SELECTOR"]
