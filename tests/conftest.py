from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Callable, Iterable

import httpx
import pytest
from qdrant_client import QdrantClient

from sitechat.config import Settings
from sitechat.embeddings import EmbeddingBackend
from sitechat.errors import EmbeddingFailure, ExternalServiceError
from sitechat.jobs import JobStore
from sitechat.knowledge_base import KnowledgeBaseIndex
from sitechat.prompts import OVERVIEW_SYSTEM_PROMPT, SUMMARY_SYSTEM_PROMPT

ROOT = "https://example.com/"


def words(topic: str, count: int = 30) -> str:
    return " ".join(f"{topic}{index}" if index % 5 else topic for index in range(count))


def html_page(title: str, body: str, *, links: Iterable[str] = (), description: str = "") -> str:
    anchors = "".join(f'<a href="{href}">{href}</a> ' for href in links)
    meta = f'<meta name="description" content="{description}">' if description else ""
    return (
        f"<html><head><title>{title}</title>{meta}</head><body>"
        f'<nav><a href="/">Home</a><a href="/about">About</a></nav>'
        f"<main><h1>{title}</h1><p>{body}</p><div>{anchors}</div></main>"
        "<footer>Copyright Example Co</footer></body></html>"
    )


def site_routes() -> dict[str, object]:
    """A small website: three content pages, one thin page and one broken link."""

    return {
        "https://example.com/": html_page(
            "Example Co",
            "Example Co builds widgets for teams. " + words("home"),
            links=[
                "/about",
                "/services",
                "/contact#form",
                "/thin",
                "/broken",
                "/admin/panel",
                "/files/brochure.pdf",
                "https://other.org/elsewhere",
                "mailto:hello@example.com",
            ],
            description="Widgets for teams",
        ),
        "https://example.com/about": html_page("About us", "We are a small team. " + words("about")),
        "https://example.com/services": html_page(
            "Services",
            "Our alpha plan includes hosting and support. " + words("service"),
        ),
        "https://example.com/contact": html_page("Contact", "Write to us any time. " + words("contact")),
        "https://example.com/thin": html_page("Thin", "Too short."),
        "https://example.com/broken": (500, "boom", "text/plain"),
    }


class SiteTransport:
    """``httpx.MockTransport`` handler serving a dict of URL -> body."""

    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.requested: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        entry = self.routes.get(url)
        if entry is None:
            return httpx.Response(404, text="not found", headers={"content-type": "text/plain"})
        if isinstance(entry, tuple):
            status, body, content_type = entry
            return httpx.Response(status, text=body, headers={"content-type": content_type})
        return httpx.Response(200, text=str(entry), headers={"content-type": "text/html; charset=utf-8"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class FakeEmbeddingService:
    """Three-dimensional keyword embeddings."""

    def __init__(self, *, fail_on: str | None = None) -> None:
        self.backend = EmbeddingBackend.HUGGINGFACE
        self.dimension = 3
        self.fail_on = fail_on
        self.calls: list[str] = []

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        return [self.embed_one(text) for text in texts]

    def embed_one(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise EmbeddingFailure(f"cannot embed {self.fail_on}")
        lowered = text.lower()
        if "alpha" in lowered:
            return [1.0, 0.0, 0.0]
        if "beta" in lowered:
            return [0.0, 1.0, 0.0]
        return [0.0, 0.0, 1.0]

    def close(self) -> None:
        return None


_URL_RE = re.compile(r"^URL: (\S+)$", re.MULTILINE)


def default_fact_reply(user_prompt: str) -> str:
    items = []
    for url in _URL_RE.findall(user_prompt):
        items.append(
            {
                "question": f"What can I find at {url}?",
                "answer": f"The page {url} describes part of Example Co.",
                "category": "navigation",
                "keywords": ["example", "page"],
                "confidence": 0.7,
            }
        )
    if "alpha plan" in user_prompt:
        items.append(
            {
                "question": "What does the alpha plan include?",
                "answer": "The alpha plan includes hosting and support.",
                "category": "product",
                "keywords": "alpha, plan",
                "confidence": 0.9,
            }
        )
    return json.dumps({"qa_pairs": items})


class FakeGenerationService:
    """Scripted replies keyed on the kind of prompt received."""

    def __init__(
        self,
        *,
        fact_reply: Callable[[str], str] = default_fact_reply,
        overview_reply: str | None = None,
        summary: str = "Example Co builds widgets for teams.",
        answer: str = "The alpha plan includes hosting.",
        fail_summary: bool = False,
        fail_answers: bool = False,
    ) -> None:
        self.fact_reply = fact_reply
        self.overview_reply = overview_reply or json.dumps(
            {"qa_pairs": [{"question": "What is this website about?", "answer": "Example Co builds widgets."}]}
        )
        self.summary = summary
        self.answer = answer
        self.fail_summary = fail_summary
        self.fail_answers = fail_answers
        self.calls: list[tuple[str, str]] = []

    def generate(self, system_prompt: str, user_prompt: str, *, temperature=None, max_tokens=None) -> str:
        self.calls.append((system_prompt, user_prompt))
        if system_prompt == SUMMARY_SYSTEM_PROMPT:
            if self.fail_summary:
                raise ExternalServiceError("fake", "summary backend down")
            return self.summary
        if system_prompt == OVERVIEW_SYSTEM_PROMPT:
            return self.overview_reply
        if '"qa_pairs"' in user_prompt:
            return self.fact_reply(user_prompt)
        if self.fail_answers:
            raise ExternalServiceError("fake", "chat backend down")
        return self.answer


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "data_dir": str(tmp_path),
        "qdrant_collection": "test",
        "crawler_delay": 0.0,
        "compiler_batch_delay": 0.0,
        "indexer_delay": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


def make_index(vector_size: int = 3) -> KnowledgeBaseIndex:
    return KnowledgeBaseIndex.create(
        QdrantClient(":memory:"),
        pages_collection="test_pages",
        facts_collection="test_facts",
        vector_size=vector_size,
    )


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture()
def site() -> SiteTransport:
    return SiteTransport(site_routes())


@pytest.fixture()
def embeddings() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture()
def generation() -> FakeGenerationService:
    return FakeGenerationService()


@pytest.fixture()
def index() -> KnowledgeBaseIndex:
    return make_index()


@pytest.fixture()
def job_store(tmp_path: Path) -> JobStore:
    return JobStore(tmp_path / "jobs")
