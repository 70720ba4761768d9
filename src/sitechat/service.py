"""Public entry points: start a job, poll it, query it, delete it."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from .compiler import KnowledgeCompiler
from .config import Settings
from .context import CONFIDENCE_FLOOR, assemble_context, confidence_for, extract_sources
from .crawler import CrawlOrchestrator, normalize_url
from .embeddings import EmbeddingService
from .errors import KnowledgeBaseNotReady
from .generation import GenerationService
from .indexer import KnowledgeBaseIndexer
from .interactions import AnalyticsService, InteractionLogger, InteractionLogStore
from .jobs import EDITABLE_FIELDS, PROTECTED_FIELDS, GenerationJob, JobRegistry, JobStatus, JobStore, apply_updates
from .knowledge_base import KnowledgeBaseIndex
from .models import Page, QAFact
from .observability import MetricsRecorder
from .pipeline import GenerationPipeline
from .prompts import normalize_bot_type, response_system_prompt
from .retrieval import RetrievalResult, SimilarityRetriever

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = (
    "I'm sorry, I'm having trouble answering that right now. Please try again in a moment."
)


@dataclass(slots=True)
class QueryAnswer:
    response: str
    confidence: float
    sources: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"response": self.response, "confidence": self.confidence, "sources": list(self.sources)}


@dataclass(slots=True)
class JobStatusView:
    """A job as reported to callers, with live knowledge-base counts."""

    job: GenerationJob
    total_qas: int
    total_pages: int
    active: bool

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def progress(self) -> int:
        return self.job.progress

    def to_dict(self) -> dict[str, Any]:
        payload = self.job.to_dict()
        payload["active"] = self.active
        payload["stats"] = {"totalQAs": self.total_qas, "totalPages": self.total_pages}
        return payload


def website_name_for(url: str) -> str:
    host = urlsplit(url).hostname or url
    return host[4:] if host.startswith("www.") else host


class SiteChatService:
    """Owns the job store, the running-job registry and the query path."""

    def __init__(
        self,
        settings: Settings,
        *,
        embeddings: EmbeddingService,
        generation: GenerationService,
        index: KnowledgeBaseIndex,
        job_store: JobStore,
        registry: JobRegistry | None = None,
        interactions: InteractionLogger | None = None,
        metrics: MetricsRecorder | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._embeddings = embeddings
        self._generation = generation
        self._index = index
        self._jobs = job_store
        self._metrics = metrics
        self._registry = registry or JobRegistry(metrics=metrics)
        self._interactions = interactions or InteractionLogger(
            InteractionLogStore(settings.interaction_log_path()),
            enabled=settings.interaction_logging_enabled,
            retention_days=settings.interaction_retention_days,
            metrics=metrics,
        )
        self._analytics = AnalyticsService(self._interactions)
        self._retriever = SimilarityRetriever(settings, embeddings, index, metrics=metrics)
        self._pipeline = GenerationPipeline(
            settings,
            store=job_store,
            crawler=CrawlOrchestrator(settings, transport=transport, metrics=metrics),
            compiler=KnowledgeCompiler(settings, generation, metrics=metrics),
            indexer=KnowledgeBaseIndexer(settings, embeddings, index, metrics=metrics),
            generation=generation,
            index=index,
            metrics=metrics,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> "SiteChatService":
        """Build the service with real backends described by ``settings``."""

        metrics = metrics or settings.build_metrics_recorder()
        embeddings = EmbeddingService(settings)
        return cls(
            settings,
            embeddings=embeddings,
            generation=GenerationService(settings, metrics=metrics),
            index=KnowledgeBaseIndex.from_settings(settings, vector_size=embeddings.dimension),
            job_store=JobStore(settings.jobs_path()),
            metrics=metrics,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def metrics(self) -> MetricsRecorder | None:
        return self._metrics

    # Jobs -------------------------------------------------------------

    def start_generation(
        self,
        website_url: str,
        bot_type: str = "general",
        max_pages: int | None = None,
        include_subdomains: bool = False,
        *,
        bot_name: str | None = None,
        description: str | None = None,
    ) -> str:
        """Persist a new job and schedule its pipeline on the running loop.

        Returns the job id immediately. Must be called from within an event loop.
        """

        url = normalize_url(website_url, keep_query=True)
        if url is None:
            raise ValueError(f"website_url must be an absolute http(s) URL: {website_url!r}")
        loop = asyncio.get_running_loop()
        requested = max_pages if max_pages is not None else self._settings.default_max_pages
        job = GenerationJob.new(
            website_url=url,
            website_name=(bot_name or "").strip() or website_name_for(url),
            bot_type=normalize_bot_type(bot_type),
            description=description,
            max_pages=max(1, min(int(requested), self._settings.crawler_max_pages)),
            include_subdomains=include_subdomains,
        )
        self._jobs.create(job)
        token = self._registry.register(job.id)
        task = loop.create_task(self._pipeline.run(job, token), name=f"sitechat-job-{job.id}")
        self._registry.attach(job.id, task)
        if self._metrics:
            self._metrics.increment("jobs.started", bot_type=job.bot_type)
        return job.id

    def get_job_status(self, job_id: str) -> JobStatusView | None:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return JobStatusView(
            job=job,
            total_qas=self._index.count_facts(job_id),
            total_pages=self._index.count_pages(job_id),
            active=self._registry.is_active(job_id),
        )

    def list_jobs(self) -> list[GenerationJob]:
        return self._jobs.list_jobs()

    def update_job(self, job_id: str, /, **fields: Any) -> GenerationJob | None:
        """Change a job's descriptive fields; return None when the job is unknown.

        ``id``, ``status``, ``progress`` and ``created_at`` are ignored. Any
        other field outside :data:`EDITABLE_FIELDS` raises :class:`ValueError`.
        """

        rejected = sorted(set(fields) - EDITABLE_FIELDS - PROTECTED_FIELDS)
        if rejected:
            raise ValueError(f"Job fields cannot be updated: {', '.join(rejected)}")
        updates = {key: value for key, value in fields.items() if key in EDITABLE_FIELDS}
        if "website_name" in updates:
            name = str(updates["website_name"] or "").strip()
            if not name:
                raise ValueError("website_name must not be empty")
            updates["website_name"] = name
        if "bot_type" in updates:
            updates["bot_type"] = normalize_bot_type(updates["bot_type"])
        if "description" in updates and updates["description"] is not None:
            updates["description"] = str(updates["description"]).strip() or None

        job = self._jobs.get(job_id)
        if job is None:
            return None
        apply_updates(job, updates)
        if not self._jobs.save(job):
            return None
        logger.info("job.updated job=%s fields=%s", job_id, ",".join(sorted(updates)) or "-")
        return job

    async def wait_for(self, job_id: str) -> GenerationJob | None:
        """Block until the job's pipeline has stopped; return its final record."""

        await self._registry.wait(job_id)
        return self._jobs.get(job_id)

    async def delete_knowledge_base(self, job_id: str) -> bool:
        """Cancel a running job, then remove its record, vectors and interactions.

        Returns False when the job was unknown.
        """

        was_running = self._registry.cancel(job_id)
        existed = self._jobs.delete(job_id)
        if was_running:
            await self._registry.wait(job_id)
        self._index.purge(job_id)
        self._interactions.delete(job_id)
        logger.info("kb.deleted job=%s existed=%s was_running=%s", job_id, existed, was_running)
        if self._metrics and existed:
            self._metrics.increment("jobs.deleted")
        return existed

    # Knowledge base reads ---------------------------------------------

    def list_facts(self, job_id: str, *, category: str | None = None, limit: int = 50) -> list[QAFact]:
        facts = sorted(
            self._index.iter_facts(job_id, category=category),
            key=lambda fact: fact.confidence,
            reverse=True,
        )
        return facts[: max(limit, 0)]

    def list_pages(self, job_id: str, *, limit: int = 50) -> list[Page]:
        pages = []
        for page in self._index.iter_pages(job_id):
            if len(pages) >= limit:
                break
            pages.append(page)
        return pages

    async def search(self, job_id: str, query: str, *, limit: int = 5) -> RetrievalResult:
        self._require_ready(job_id)
        return await self._retriever.retrieve(job_id, query, limit)

    def analytics(self, job_id: str, *, days: int = 7) -> dict[str, Any]:
        return self._analytics.build_summary(job_id, days=days)

    def platform_analytics(self) -> dict[str, Any]:
        return self._analytics.platform_summary(self._jobs.list_jobs())

    def usage_analytics(self, *, days: int = 30) -> dict[str, Any]:
        return self._analytics.usage(self._jobs.list_jobs(), days=days)

    # Queries ----------------------------------------------------------

    async def answer_query(self, job_id: str, user_query: str) -> QueryAnswer:
        """Answer ``user_query`` from the completed knowledge base ``job_id``.

        Raises :class:`KnowledgeBaseNotReady` when the job is unknown or not
        completed. Any other failure produces an apologetic low-confidence answer.
        """

        job = self._require_ready(job_id)
        start = time.perf_counter()
        try:
            result = await self._retriever.retrieve(job_id, user_query, self._settings.retrieval_limit)
            context = assemble_context(
                result,
                website_name=job.website_name,
                summary=job.summary,
                max_chars=self._settings.context_max_chars,
                excerpt_chars=self._settings.page_excerpt_chars,
            )
            system_prompt = response_system_prompt(
                website_name=job.website_name,
                bot_type=job.bot_type,
                description=job.description,
                context=context,
            )
            response = await asyncio.to_thread(
                self._generation.generate,
                system_prompt,
                user_query,
                temperature=self._settings.chat_temperature,
                max_tokens=self._settings.chat_max_tokens,
            )
            answer = QueryAnswer(
                response=response.strip(),
                confidence=confidence_for(result),
                sources=extract_sources(result, max_sources=self._settings.max_sources),
            )
        except Exception:
            logger.exception("chat.answer_failed job=%s", job_id)
            if self._metrics:
                self._metrics.increment("chat.fallback")
            answer = QueryAnswer(response=FALLBACK_RESPONSE, confidence=CONFIDENCE_FLOOR, sources=[])

        duration_ms = (time.perf_counter() - start) * 1000
        self._interactions.log_interaction(
            job_id=job_id,
            user_query=user_query,
            bot_response=answer.response,
            confidence=answer.confidence,
            sources=answer.sources,
            duration_ms=duration_ms,
        )
        logger.info("chat.answered job=%s confidence=%.2f sources=%s", job_id, answer.confidence, len(answer.sources))
        if self._metrics:
            self._metrics.record_timing("chat.duration", duration_ms / 1000)
        return answer

    def _require_ready(self, job_id: str) -> GenerationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise KnowledgeBaseNotReady(job_id, None, 0)
        if job.status is not JobStatus.COMPLETED:
            raise KnowledgeBaseNotReady(job_id, job.status.value, job.progress)
        return job

    def close(self) -> None:
        self._embeddings.close()


__all__ = [
    "FALLBACK_RESPONSE",
    "JobStatusView",
    "QueryAnswer",
    "SiteChatService",
    "website_name_for",
]
