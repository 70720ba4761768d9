"""SiteChat: turn a website into a queryable question-answering knowledge base."""

from __future__ import annotations

from .config import Settings
from .models import CrawlResult, Page, QAFact
from .vector_store import QdrantVectorStore, SearchResult, VectorRecord

__all__ = [
    "Settings",
    "Page",
    "QAFact",
    "CrawlResult",
    "QdrantVectorStore",
    "VectorRecord",
    "SearchResult",
    "SiteChatService",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "SiteChatService":
        from .service import SiteChatService

        return SiteChatService
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'sitechat' has no attribute {name}")
