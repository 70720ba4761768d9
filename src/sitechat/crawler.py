"""Domain-bounded crawl orchestration: sitemap first, breadth-first fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Sequence
from urllib.parse import urlsplit, urlunsplit

import httpx

from .config import DEFAULT_EXCLUDE_PATTERNS, Settings
from .discovery import UrlDiscoverer
from .errors import ContentTooThin, FetchError, NoContentExtracted
from .extractor import PageExtractor
from .jobs import CancellationToken
from .models import CrawlError, CrawlResult, Page
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CrawlOptions:
    max_pages: int = 20
    include_subdomains: bool = False
    exclude_patterns: tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    keep_query: bool = False


def normalize_url(url: str, *, keep_query: bool = False) -> str | None:
    """Canonical form used for de-duplication, or None for non-web URLs.

    The fragment is always dropped and the query string unless ``keep_query``;
    scheme and host are lower-cased and an empty path becomes ``/``.
    """

    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme not in {"http", "https"} or not parts.netloc:
        return None
    query = parts.query if keep_query else ""
    return urlunsplit((scheme, parts.netloc.lower(), parts.path or "/", query, ""))


def base_domain(host: str) -> str:
    labels = [label for label in host.lower().split(".") if label]
    return ".".join(labels[-2:])


def is_allowed_host(host: str, root_host: str, *, include_subdomains: bool) -> bool:
    host = host.lower()
    root_host = root_host.lower()
    if host == root_host:
        return True
    if not include_subdomains:
        return False
    base = base_domain(root_host)
    return host == base or host.endswith(f".{base}")


def is_excluded(url: str, patterns: Sequence[str]) -> bool:
    """Match exclusion substrings against the path and query, never the host."""

    parts = urlsplit(url)
    target = f"{parts.path}?{parts.query}" if parts.query else parts.path
    return any(pattern and pattern in target for pattern in patterns)


class CrawlOrchestrator:
    """Produce the page corpus for one website."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._metrics = metrics

    def default_options(self, **overrides) -> CrawlOptions:
        values = {
            "max_pages": self._settings.default_max_pages,
            "exclude_patterns": tuple(self._settings.crawler_exclude_patterns),
            "keep_query": self._settings.crawler_keep_query,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        values["max_pages"] = max(1, min(int(values["max_pages"]), self._settings.crawler_max_pages))
        return CrawlOptions(**values)

    async def crawl(
        self,
        root_url: str,
        options: CrawlOptions | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> CrawlResult:
        """Crawl ``root_url`` and return accepted pages plus per-URL errors.

        Raises :class:`NoContentExtracted` when no page survives extraction.
        """

        options = options or self.default_options()
        root = normalize_url(root_url, keep_query=options.keep_query)
        if root is None:
            raise ValueError(f"Only http and https URLs can be crawled: {root_url!r}")

        start = time.perf_counter()
        logger.info(
            "crawl.start url=%s max_pages=%s subdomains=%s",
            root,
            options.max_pages,
            options.include_subdomains,
        )
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self._settings.crawler_timeout,
            headers={"User-Agent": self._settings.crawler_user_agent},
            follow_redirects=True,
        ) as client:
            discoverer = UrlDiscoverer(
                client,
                max_depth=self._settings.sitemap_max_depth,
                max_fetches=self._settings.sitemap_max_fetches,
            )
            extractor = PageExtractor(client, min_word_count=self._settings.min_word_count)
            run = _CrawlRun(root, options, extractor, self._settings.crawler_delay, token)

            sitemap_urls = self._admissible(await discoverer.discover(root), root, options)
            if sitemap_urls:
                await run.fetch_listed(sitemap_urls[: options.max_pages])
            else:
                await run.breadth_first()

        result = CrawlResult(
            base_url=root,
            pages=tuple(run.pages),
            errors=tuple(run.errors),
            sitemap_found=bool(sitemap_urls),
            rejected=run.rejected,
        )
        elapsed = time.perf_counter() - start
        logger.info(
            "crawl.completed url=%s pages=%s errors=%s rejected=%s sitemap=%s",
            root,
            len(result.pages),
            len(result.errors),
            result.rejected,
            result.sitemap_found,
        )
        if self._metrics:
            self._metrics.record_timing("crawl.duration", elapsed, sitemap=result.sitemap_found)
            self._metrics.increment("crawl.pages", value=len(result.pages))
            if result.errors:
                self._metrics.increment("crawl.errors", value=len(result.errors))
        if not result.pages:
            raise NoContentExtracted(root, result.errors)
        return result

    @staticmethod
    def _admissible(urls: Sequence[str], root: str, options: CrawlOptions) -> list[str]:
        root_host = urlsplit(root).hostname or ""
        admitted: list[str] = []
        seen: set[str] = set()
        for url in urls:
            normalized = normalize_url(url, keep_query=options.keep_query)
            if normalized is None or normalized in seen:
                continue
            host = urlsplit(normalized).hostname or ""
            if not is_allowed_host(host, root_host, include_subdomains=options.include_subdomains):
                continue
            if is_excluded(normalized, options.exclude_patterns):
                continue
            seen.add(normalized)
            admitted.append(normalized)
        return admitted


class _CrawlRun:
    """Mutable state of one crawl; never shared between crawls."""

    def __init__(
        self,
        root: str,
        options: CrawlOptions,
        extractor: PageExtractor,
        delay: float,
        token: CancellationToken | None,
    ) -> None:
        self.root = root
        self.root_host = urlsplit(root).hostname or ""
        self.options = options
        self.extractor = extractor
        self.delay = max(0.0, delay)
        self.token = token
        self.pages: list[Page] = []
        self.errors: list[CrawlError] = []
        self.rejected = 0
        self._fetches = 0

    @property
    def cancelled(self) -> bool:
        return self.token is not None and self.token.cancelled

    async def fetch_listed(self, urls: Sequence[str]) -> None:
        for url in urls:
            if self.cancelled:
                return
            html = await self._fetch(url)
            if html is not None:
                self._accept(url, html)

    async def breadth_first(self) -> None:
        frontier: deque[str] = deque([self.root])
        discovered: set[str] = {self.root}
        processed: set[str] = set()

        while frontier:
            if self.cancelled:
                return
            url = frontier.popleft()
            if url in processed:
                continue
            processed.add(url)

            html = await self._fetch(url)
            if html is None:
                continue

            for link in self.extractor.extract_links(url, html):
                if len(discovered) >= self.options.max_pages:
                    break
                candidate = self._admit(link)
                if candidate is not None and candidate not in discovered:
                    discovered.add(candidate)
                    frontier.append(candidate)

            self._accept(url, html)

    def _admit(self, link: str) -> str | None:
        normalized = normalize_url(link, keep_query=self.options.keep_query)
        if normalized is None:
            return None
        host = urlsplit(normalized).hostname or ""
        if not is_allowed_host(host, self.root_host, include_subdomains=self.options.include_subdomains):
            return None
        if is_excluded(normalized, self.options.exclude_patterns):
            return None
        return normalized

    async def _fetch(self, url: str) -> str | None:
        if self._fetches and self.delay:
            await asyncio.sleep(self.delay)
        self._fetches += 1
        try:
            return await self.extractor.fetch(url)
        except FetchError as exc:
            logger.warning("crawl.page.failed url=%s error=%s", url, exc)
            self.errors.append(CrawlError(url=url, message=str(exc)))
            return None

    def _accept(self, url: str, html: str) -> None:
        try:
            page = self.extractor.parse(url, html)
        except ContentTooThin as exc:
            logger.info("crawl.page.too_thin url=%s words=%s", url, exc.word_count)
            self.rejected += 1
            return
        self.pages.append(page)
        logger.debug("crawl.page.accepted url=%s words=%s", url, page.word_count)


__all__ = [
    "CrawlOptions",
    "CrawlOrchestrator",
    "base_domain",
    "is_allowed_host",
    "is_excluded",
    "normalize_url",
]
