"""Immutable records passed between the crawl, compile and index stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Final

FACT_CATEGORIES: Final[frozenset[str]] = frozenset(
    {"general", "navigation", "product", "service", "support", "about", "contact"}
)
DEFAULT_CATEGORY: Final[str] = "general"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_category(value: Any) -> str:
    """Map an arbitrary category label onto the known category set."""

    if not isinstance(value, str):
        return DEFAULT_CATEGORY
    cleaned = value.strip().lower()
    return cleaned if cleaned in FACT_CATEGORIES else DEFAULT_CATEGORY


@dataclass(frozen=True, slots=True)
class Heading:
    level: int
    text: str


@dataclass(frozen=True, slots=True)
class NavLink:
    text: str
    href: str


@dataclass(frozen=True, slots=True)
class Page:
    """Cleaned content of one crawled URL."""

    url: str
    title: str
    description: str
    keywords: str
    body_text: str
    headings: tuple[Heading, ...]
    nav_links: tuple[NavLink, ...]
    word_count: int
    scraped_at: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "keywords": self.keywords,
            "body_text": self.body_text,
            "headings": [{"level": item.level, "text": item.text} for item in self.headings],
            "nav_links": [{"text": item.text, "href": item.href} for item in self.nav_links],
            "word_count": self.word_count,
            "scraped_at": self.scraped_at,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Page":
        return cls(
            url=str(data.get("url", "")),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            keywords=str(data.get("keywords", "")),
            body_text=str(data.get("body_text", "")),
            headings=tuple(
                Heading(level=int(item.get("level", 1)), text=str(item.get("text", "")))
                for item in data.get("headings", [])
            ),
            nav_links=tuple(
                NavLink(text=str(item.get("text", "")), href=str(item.get("href", "")))
                for item in data.get("nav_links", [])
            ),
            word_count=int(data.get("word_count", 0)),
            scraped_at=str(data.get("scraped_at", "")),
        )


@dataclass(frozen=True, slots=True)
class QAFact:
    """A question/answer pair derived from one or more pages."""

    question: str
    answer: str
    category: str = DEFAULT_CATEGORY
    keywords: tuple[str, ...] = ()
    confidence: float = 0.8
    source_pages: tuple[str, ...] = ()
    generated_at: str = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.question.strip() or not self.answer.strip():
            raise ValueError("QAFact requires a non-empty question and answer")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"QAFact confidence {self.confidence} is outside [0, 1]")
        if self.category not in FACT_CATEGORIES:
            raise ValueError(f"Unknown fact category {self.category!r}")

    def to_payload(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "category": self.category,
            "keywords": list(self.keywords),
            "confidence": self.confidence,
            "source_pages": list(self.source_pages),
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "QAFact":
        return cls(
            question=str(data.get("question", "")),
            answer=str(data.get("answer", "")),
            category=normalize_category(data.get("category")),
            keywords=tuple(str(item) for item in data.get("keywords", [])),
            confidence=float(data.get("confidence", 0.8)),
            source_pages=tuple(str(item) for item in data.get("source_pages", [])),
            generated_at=str(data.get("generated_at") or utc_now()),
        )


@dataclass(frozen=True, slots=True)
class CrawlError:
    url: str
    message: str
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class CrawlResult:
    """Outcome of one crawl: the accepted pages plus per-URL failures."""

    base_url: str
    pages: tuple[Page, ...]
    errors: tuple[CrawlError, ...] = ()
    sitemap_found: bool = False
    rejected: int = 0
    scraped_at: str = field(default_factory=utc_now)

    @property
    def total_pages(self) -> int:
        return len(self.pages)


__all__ = [
    "FACT_CATEGORIES",
    "DEFAULT_CATEGORY",
    "Heading",
    "NavLink",
    "Page",
    "QAFact",
    "CrawlError",
    "CrawlResult",
    "normalize_category",
    "utc_now",
]
