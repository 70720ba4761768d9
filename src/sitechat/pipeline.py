"""Stage driver for one generation job: crawl, compile, index, summarise."""

from __future__ import annotations

import asyncio
import logging
import time

from .compiler import KnowledgeCompiler
from .config import Settings
from .crawler import CrawlOrchestrator
from .errors import EmbeddingFailure, QAGenerationFailed, SiteChatError
from .generation import GenerationService
from .indexer import KnowledgeBaseIndexer
from .jobs import CancellationToken, GenerationJob, JobStateMachine, JobStatus, JobStore
from .knowledge_base import KnowledgeBaseIndex
from .models import Page
from .observability import MetricsRecorder
from .prompts import SUMMARY_SYSTEM_PROMPT, summary_prompt

logger = logging.getLogger(__name__)


class GenerationPipeline:
    """Run the stages of a job in order, persisting status before each next stage.

    The first unrecoverable error moves the job to ``failed`` and stops the run.
    When the job's token is cancelled the run stops at the next stage boundary
    and anything already written to the index is purged.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: JobStore,
        crawler: CrawlOrchestrator,
        compiler: KnowledgeCompiler,
        indexer: KnowledgeBaseIndexer,
        generation: GenerationService,
        index: KnowledgeBaseIndex,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._crawler = crawler
        self._compiler = compiler
        self._indexer = indexer
        self._generation = generation
        self._index = index
        self._metrics = metrics

    async def run(self, job: GenerationJob, token: CancellationToken) -> None:
        machine = JobStateMachine(self._store, job.id, token, metrics=self._metrics)
        start = time.perf_counter()
        logger.info("pipeline.start job=%s url=%s bot_type=%s", job.id, job.website_url, job.bot_type)
        try:
            machine.advance(JobStatus.SCRAPING)
            options = self._crawler.default_options(
                max_pages=job.max_pages,
                include_subdomains=job.include_subdomains,
            )
            crawl = await self._crawler.crawl(job.website_url, options, token=token)
            if token.cancelled:
                return self._abandon(job.id)
            machine.advance(
                JobStatus.GENERATING_QA,
                pages_scraped=len(crawl.pages),
                sitemap_found=crawl.sitemap_found,
                crawl_errors=len(crawl.errors),
            )

            facts = await self._compiler.compile(crawl.pages, job.bot_type)
            if token.cancelled:
                return self._abandon(job.id)
            if not facts:
                raise QAGenerationFailed(f"No question/answer facts could be generated for {job.website_url}")
            machine.advance(JobStatus.STORING_DATA, qa_pairs_generated=len(facts))

            report = await self._indexer.index(job.id, crawl.pages, facts, token=token)
            if token.cancelled or report.cancelled:
                return self._abandon(job.id)
            if report.pages_indexed + report.facts_indexed == 0:
                raise EmbeddingFailure("No page or fact could be embedded")
            machine.advance(JobStatus.FINALIZING)

            summary = await self._summarise(crawl.pages)
            if token.cancelled:
                return self._abandon(job.id)
            machine.advance(JobStatus.COMPLETED, summary=summary)
        except asyncio.CancelledError:
            self._abandon(job.id)
            raise
        except SiteChatError as exc:
            machine.fail(str(exc))
            return None
        except Exception as exc:
            logger.exception("pipeline.unexpected_error job=%s", job.id)
            machine.fail(f"Unexpected error: {exc}")
            return None

        elapsed = time.perf_counter() - start
        logger.info("pipeline.completed job=%s seconds=%.2f", job.id, elapsed)
        if self._metrics:
            self._metrics.record_timing("pipeline.duration", elapsed)
            self._metrics.increment("jobs.completed")
        return None

    async def _summarise(self, pages: tuple[Page, ...]) -> str:
        prompt = summary_prompt(
            pages[: self._settings.summary_pages],
            page_chars=self._settings.summary_page_chars,
        )
        return await asyncio.to_thread(
            self._generation.generate,
            SUMMARY_SYSTEM_PROMPT,
            prompt,
            temperature=self._settings.chat_temperature,
            max_tokens=self._settings.summary_max_tokens,
        )

    def _abandon(self, job_id: str) -> None:
        logger.info("pipeline.abandoned job=%s", job_id)
        self._index.purge(job_id)


__all__ = ["GenerationPipeline"]
