"""FastAPI application exposing website knowledge-base generation and chat."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from .config import Settings
from .errors import KnowledgeBaseNotReady
from .observability import MetricsRecorder
from .retrieval import RetrievalResult
from .service import SiteChatService

logger = logging.getLogger(__name__)


_LOGGING_CONFIGURED = False

_JOB_FIELD_ALIASES = {
    "websiteName": "website_name",
    "bot_name": "website_name",
    "botName": "website_name",
    "botType": "bot_type",
}


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    sitechat_logger = logging.getLogger("sitechat")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        sitechat_logger.handlers = []
        for handler in handlers:
            sitechat_logger.addHandler(handler)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        sitechat_logger.addHandler(handler)

    if sitechat_logger.level == logging.NOTSET or sitechat_logger.level > logging.INFO:
        sitechat_logger.setLevel(logging.INFO)
    sitechat_logger.propagate = False
    _LOGGING_CONFIGURED = True


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        service: SiteChatService,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.service = service
        self.metrics = metrics


def create_app(
    *,
    settings: Settings | None = None,
    service: SiteChatService | None = None,
    metrics: MetricsRecorder | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or (service.metrics if service is not None else None) or settings.build_metrics_recorder()
    service = service or SiteChatService.from_settings(settings, metrics=metrics)
    logger.info("app.start data_dir=%s collection=%s", settings.data_dir, settings.qdrant_collection)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            service.close()

    app = FastAPI(lifespan=lifespan)
    app.state.services = ApplicationState(settings=settings, service=service, metrics=metrics)

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_service(request: Request) -> SiteChatService:
        return get_state(request).service

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    @app.get("/health", response_class=JSONResponse)
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.post("/api/generate", response_class=JSONResponse)
    async def generate(
        request: Request,
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        payload = await _json_body(request)
        website_url = str(payload.get("website_url") or payload.get("websiteUrl") or "").strip()
        if not website_url:
            raise HTTPException(status_code=400, detail="website_url is required")
        max_pages = _optional_positive_int(payload.get("max_pages", payload.get("maxPages")), "max_pages")
        try:
            job_id = service.start_generation(
                website_url,
                bot_type=str(payload.get("bot_type") or payload.get("botType") or "general"),
                max_pages=max_pages,
                include_subdomains=bool(payload.get("include_subdomains", payload.get("includeSubdomains", False))),
                bot_name=payload.get("bot_name") or payload.get("botName"),
                description=payload.get("description"),
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse({"job_id": job_id, "status": "created"}, status_code=202)

    @app.get("/api/jobs", response_class=JSONResponse)
    async def list_jobs(service: SiteChatService = Depends(get_service)) -> JSONResponse:
        return JSONResponse([job.to_dict() for job in service.list_jobs()])

    @app.get("/api/jobs/{job_id}", response_class=JSONResponse)
    async def job_status(job_id: str, service: SiteChatService = Depends(get_service)) -> JSONResponse:
        view = service.get_job_status(job_id)
        if view is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JSONResponse(view.to_dict())

    @app.put("/api/jobs/{job_id}", response_class=JSONResponse)
    async def update_job(
        job_id: str,
        request: Request,
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        payload = await _json_body(request)
        fields = {_JOB_FIELD_ALIASES.get(key, key): value for key, value in payload.items()}
        try:
            job = service.update_job(job_id, **fields)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JSONResponse(job.to_dict())

    @app.delete("/api/jobs/{job_id}", response_class=JSONResponse)
    async def delete_job(job_id: str, service: SiteChatService = Depends(get_service)) -> JSONResponse:
        if not await service.delete_knowledge_base(job_id):
            raise HTTPException(status_code=404, detail="Job not found")
        return JSONResponse({"status": "deleted", "job_id": job_id})

    @app.post("/api/jobs/{job_id}/chat", response_class=JSONResponse)
    async def chat(
        job_id: str,
        request: Request,
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        payload = await _json_body(request)
        message = str(payload.get("message") or payload.get("query") or "").strip()
        if not message:
            return JSONResponse({"error": "Message is required."}, status_code=400)
        try:
            answer = await service.answer_query(job_id, message)
        except KnowledgeBaseNotReady as exc:
            return _not_ready(exc)
        return JSONResponse(answer.to_dict())

    @app.post("/api/jobs/{job_id}/search", response_class=JSONResponse)
    async def search(
        job_id: str,
        request: Request,
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        payload = await _json_body(request)
        query = str(payload.get("query") or "").strip()
        if not query:
            raise HTTPException(status_code=400, detail="query is required")
        limit = _optional_positive_int(payload.get("limit"), "limit") or 5
        try:
            result = await service.search(job_id, query, limit=limit)
        except KnowledgeBaseNotReady as exc:
            return _not_ready(exc)
        return JSONResponse(_retrieval_to_dict(result))

    @app.get("/api/jobs/{job_id}/qa", response_class=JSONResponse)
    async def list_facts(
        job_id: str,
        category: str | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        _require_job(service, job_id)
        facts = service.list_facts(job_id, category=category, limit=limit)
        return JSONResponse({"job_id": job_id, "qa_pairs": [fact.to_payload() for fact in facts]})

    @app.get("/api/jobs/{job_id}/pages", response_class=JSONResponse)
    async def list_pages(
        job_id: str,
        limit: int = Query(50, ge=1, le=500),
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        _require_job(service, job_id)
        pages = service.list_pages(job_id, limit=limit)
        return JSONResponse(
            {
                "job_id": job_id,
                "pages": [
                    {
                        "url": page.url,
                        "title": page.title,
                        "description": page.description,
                        "word_count": page.word_count,
                        "scraped_at": page.scraped_at,
                    }
                    for page in pages
                ],
            }
        )

    @app.get("/api/jobs/{job_id}/analytics", response_class=JSONResponse)
    async def analytics(
        job_id: str,
        days: int = Query(7, ge=1),
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        _require_job(service, job_id)
        return JSONResponse(service.analytics(job_id, days=days))

    @app.get("/api/analytics/platform", response_class=JSONResponse)
    async def platform_analytics(service: SiteChatService = Depends(get_service)) -> JSONResponse:
        return JSONResponse(service.platform_analytics())

    @app.get("/api/analytics/usage", response_class=JSONResponse)
    async def usage_analytics(
        days: int = Query(30, ge=1, le=365),
        service: SiteChatService = Depends(get_service),
    ) -> JSONResponse:
        return JSONResponse(service.usage_analytics(days=days))

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        return Response(content=metrics.render_prometheus(), media_type=metrics.prometheus_content_type)

    return app


async def _json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return payload


def _optional_positive_int(value, name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"{name} must be an integer") from exc
    if parsed < 1:
        raise HTTPException(status_code=400, detail=f"{name} must be at least 1")
    return parsed


def _require_job(service: SiteChatService, job_id: str) -> None:
    if service.get_job_status(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")


def _not_ready(exc: KnowledgeBaseNotReady) -> JSONResponse:
    if exc.status is None:
        return JSONResponse({"error": "Job not found"}, status_code=404)
    return JSONResponse(
        {"error": "Knowledge base is not ready", "status": exc.status, "progress": exc.progress},
        status_code=409,
    )


def _retrieval_to_dict(result: RetrievalResult) -> dict:
    return {
        "qa_matches": [
            {
                "question": match.fact.question,
                "answer": match.fact.answer,
                "category": match.fact.category,
                "similarity": round(match.similarity, 4),
            }
            for match in result.qa_matches
        ],
        "page_matches": [
            {
                "url": match.page.url,
                "title": match.page.title,
                "similarity": round(match.similarity, 4),
            }
            for match in result.page_matches
        ],
    }


__all__ = ["ApplicationState", "create_app"]
