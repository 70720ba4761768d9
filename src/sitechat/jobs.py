"""Generation job records, their status machine and the registry of running jobs."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Final, Iterator
from uuid import uuid4

from .errors import InvalidTransition
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    CREATED = "created"
    SCRAPING = "scraping"
    GENERATING_QA = "generating_qa"
    STORING_DATA = "storing_data"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_PROGRESS: Final[dict[JobStatus, int]] = {
    JobStatus.CREATED: 0,
    JobStatus.SCRAPING: 10,
    JobStatus.GENERATING_QA: 40,
    JobStatus.STORING_DATA: 70,
    JobStatus.FINALIZING: 90,
    JobStatus.COMPLETED: 100,
}

TERMINAL_STATUSES: Final[frozenset[JobStatus]] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Owned by the job itself; field updates silently skip them.
PROTECTED_FIELDS: Final[frozenset[str]] = frozenset({"id", "status", "progress", "created_at"})

# Descriptive fields a client may change after creation.
EDITABLE_FIELDS: Final[frozenset[str]] = frozenset({"website_name", "description", "bot_type"})

_FORWARD: Final[dict[JobStatus, JobStatus]] = {
    JobStatus.CREATED: JobStatus.SCRAPING,
    JobStatus.SCRAPING: JobStatus.GENERATING_QA,
    JobStatus.GENERATING_QA: JobStatus.STORING_DATA,
    JobStatus.STORING_DATA: JobStatus.FINALIZING,
    JobStatus.FINALIZING: JobStatus.COMPLETED,
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True when ``current -> target`` is a legal status change."""

    if current in TERMINAL_STATUSES:
        return False
    if target is JobStatus.FAILED:
        return True
    return _FORWARD.get(current) is target


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class GenerationJob:
    """Persisted state of one website-to-knowledge-base run."""

    id: str
    website_url: str
    website_name: str
    bot_type: str
    description: str | None
    status: JobStatus
    progress: int
    created_at: str
    updated_at: str
    max_pages: int = 20
    include_subdomains: bool = False
    pages_scraped: int = 0
    qa_pairs_generated: int = 0
    crawl_errors: int = 0
    sitemap_found: bool | None = None
    error_message: str | None = None
    summary: str | None = None
    completed_at: str | None = None

    @classmethod
    def new(
        cls,
        *,
        website_url: str,
        website_name: str,
        bot_type: str,
        description: str | None = None,
        max_pages: int = 20,
        include_subdomains: bool = False,
    ) -> "GenerationJob":
        now = _now()
        return cls(
            id=uuid4().hex,
            website_url=website_url,
            website_name=website_name,
            bot_type=bot_type,
            description=description,
            status=JobStatus.CREATED,
            progress=STAGE_PROGRESS[JobStatus.CREATED],
            created_at=now,
            updated_at=now,
            max_pages=max_pages,
            include_subdomains=include_subdomains,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GenerationJob":
        known = {item.name for item in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["status"] = JobStatus(values.get("status", JobStatus.CREATED.value))
        return cls(**values)


class JobStore:
    """File-backed persistence, one JSON document per job."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()
        self._root.mkdir(parents=True, exist_ok=True)

    def create(self, job: GenerationJob) -> GenerationJob:
        with self._lock:
            self._write(job)
        logger.info("job.created job=%s url=%s", job.id, job.website_url)
        return job

    def get(self, job_id: str) -> GenerationJob | None:
        path = self._path_for(job_id)
        with self._lock:
            if not path.exists():
                return None
            data = json.loads(path.read_text(encoding="utf-8"))
        return GenerationJob.from_dict(data)

    def save(self, job: GenerationJob) -> bool:
        """Persist ``job`` if it still exists; a deleted job is never resurrected."""

        with self._lock:
            if not self._path_for(job.id).exists():
                return False
            job.updated_at = _now()
            self._write(job)
        return True

    def delete(self, job_id: str) -> bool:
        path = self._path_for(job_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        logger.info("job.deleted job=%s", job_id)
        return True

    def iter_jobs(self) -> Iterator[GenerationJob]:
        for path in sorted(self._root.glob("*.json")):
            job = self.get(path.stem)
            if job is not None:
                yield job

    def list_jobs(self) -> list[GenerationJob]:
        return sorted(self.iter_jobs(), key=lambda job: job.created_at, reverse=True)

    def _write(self, job: GenerationJob) -> None:
        path = self._path_for(job.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(job.to_dict(), ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    def _path_for(self, job_id: str) -> Path:
        safe_id = job_id.replace("/", "-").replace("\\", "-")
        return self._root / f"{safe_id}.json"


class CancellationToken:
    """Cooperative cancellation flag shared by a job's pipeline and its owner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class JobStateMachine:
    """Validated, monotonic status updates for a single job.

    Every write is dropped once the token is cancelled, so a job deleted while
    its pipeline is still running stays deleted.
    """

    def __init__(
        self,
        store: JobStore,
        job_id: str,
        token: CancellationToken,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._store = store
        self._job_id = job_id
        self._token = token
        self._metrics = metrics

    @property
    def job_id(self) -> str:
        return self._job_id

    def advance(self, status: JobStatus, **updates: Any) -> GenerationJob | None:
        """Move the job to ``status`` and apply field ``updates``."""

        if status is JobStatus.FAILED:
            return self.fail(str(updates.get("error_message") or "failed"))
        job = self._load()
        if job is None:
            return None
        if not can_transition(job.status, status):
            raise InvalidTransition(f"{job.status.value} -> {status.value}")
        job.status = status
        job.progress = max(job.progress, STAGE_PROGRESS[status])
        if status is JobStatus.COMPLETED:
            job.completed_at = _now()
        self._apply(job, updates)
        return self._persist(job)

    def update(self, **updates: Any) -> GenerationJob | None:
        """Apply field updates without changing status."""

        job = self._load()
        if job is None or job.is_terminal:
            return None
        self._apply(job, updates)
        return self._persist(job)

    def fail(self, message: str) -> GenerationJob | None:
        job = self._load()
        if job is None:
            return None
        if not can_transition(job.status, JobStatus.FAILED):
            raise InvalidTransition(f"{job.status.value} -> failed")
        job.status = JobStatus.FAILED
        job.error_message = message
        logger.warning("job.failed job=%s error=%s", job.id, message)
        if self._metrics:
            self._metrics.increment("jobs.failed")
        return self._persist(job)

    def _load(self) -> GenerationJob | None:
        if self._token.cancelled:
            return None
        return self._store.get(self._job_id)

    def _persist(self, job: GenerationJob) -> GenerationJob | None:
        if self._token.cancelled or not self._store.save(job):
            return None
        logger.info("job.status job=%s status=%s progress=%s", job.id, job.status.value, job.progress)
        return job

    @staticmethod
    def _apply(job: GenerationJob, updates: dict[str, Any]) -> None:
        apply_updates(job, updates)


def apply_updates(job: GenerationJob, updates: dict[str, Any]) -> None:
    """Set ``updates`` on ``job``, skipping protected fields.

    Raises :class:`AttributeError` for a name that is not a job field.
    """

    for key, value in updates.items():
        if key in PROTECTED_FIELDS:
            continue
        if not hasattr(job, key):
            raise AttributeError(f"GenerationJob has no field {key!r}")
        setattr(job, key, value)


class JobRegistry:
    """Tracks the cancellation token and asyncio task of every running job."""

    def __init__(self, *, metrics: MetricsRecorder | None = None) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()
        self._metrics = metrics

    def register(self, job_id: str) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            self._tokens[job_id] = token
        return token

    def attach(self, job_id: str, task: asyncio.Task) -> None:
        with self._lock:
            self._tasks[job_id] = task
            active = len(self._tasks)
        task.add_done_callback(lambda _task: self.complete(job_id))
        if self._metrics:
            self._metrics.set_gauge("jobs.active", active)

    def complete(self, job_id: str) -> None:
        with self._lock:
            self._tokens.pop(job_id, None)
            self._tasks.pop(job_id, None)

    def cancel(self, job_id: str) -> bool:
        """Cancel the job's token and task; return False when nothing was running."""

        with self._lock:
            token = self._tokens.get(job_id)
            task = self._tasks.get(job_id)
        if token is None and task is None:
            return False
        if token is not None:
            token.cancel()
        if task is not None and not task.done():
            task.cancel()
        logger.info("job.cancelled job=%s", job_id)
        return True

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def wait(self, job_id: str) -> None:
        """Wait for the job's task to finish, whatever its outcome."""

        with self._lock:
            task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})


__all__ = [
    "CancellationToken",
    "EDITABLE_FIELDS",
    "GenerationJob",
    "JobRegistry",
    "JobStateMachine",
    "JobStatus",
    "JobStore",
    "PROTECTED_FIELDS",
    "STAGE_PROGRESS",
    "TERMINAL_STATUSES",
    "apply_updates",
    "can_transition",
]
