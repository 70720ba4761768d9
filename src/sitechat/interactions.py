"""Interaction logging with per-knowledge-base and platform-wide analytics."""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, Sequence
from uuid import uuid4

from .jobs import GenerationJob, JobStatus
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.5


@dataclass(slots=True)
class InteractionRecord:
    """One answered query."""

    job_id: str
    user_query: str
    bot_response: str
    confidence: float
    sources: list[str]
    created_at: str
    id: str = field(default_factory=lambda: uuid4().hex)
    duration_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InteractionRecord":
        return cls(
            id=data.get("id", uuid4().hex),
            job_id=data.get("job_id", "unknown"),
            user_query=data.get("user_query", ""),
            bot_response=data.get("bot_response", ""),
            confidence=float(data.get("confidence") or 0.0),
            sources=[str(item) for item in data.get("sources", [])],
            created_at=data.get("created_at", _utc_now().isoformat()),
            duration_ms=data.get("duration_ms"),
        )


class InteractionLogStore:
    """JSON-lines file per knowledge base."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()
        self._root.mkdir(parents=True, exist_ok=True)

    def append(self, record: InteractionRecord) -> None:
        path = self._path_for(record.job_id)
        with self._lock:
            with path.open("a", encoding="utf-8") as handle:
                json.dump(record.to_dict(), handle, ensure_ascii=False)
                handle.write("\n")
        logger.debug("interaction.appended job=%s record_id=%s", record.job_id, record.id)

    def iter_records(self, job_id: str) -> Iterator[InteractionRecord]:
        path = self._path_for(job_id)
        if not path.exists():
            return
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("interaction.decode_failed path=%s", path)
                    continue
                yield InteractionRecord.from_dict(data)

    def rewrite_records(self, job_id: str, records: Sequence[InteractionRecord]) -> None:
        path = self._path_for(job_id)
        with self._lock:
            if not records:
                path.unlink(missing_ok=True)
                return
            with path.open("w", encoding="utf-8") as handle:
                for record in records:
                    json.dump(record.to_dict(), handle, ensure_ascii=False)
                    handle.write("\n")

    def delete(self, job_id: str) -> bool:
        path = self._path_for(job_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        return True

    def _path_for(self, job_id: str) -> Path:
        safe_id = job_id.replace("/", "-").replace("\\", "-")
        return self._root / f"{safe_id}.jsonl"


class InteractionLogger:
    """Best-effort recording of answered queries with retention pruning."""

    def __init__(
        self,
        store: InteractionLogStore,
        *,
        enabled: bool = True,
        retention_days: int = 90,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._store = store
        self._enabled = enabled
        self._retention_days = max(retention_days, 0)
        self._metrics = metrics

    @property
    def enabled(self) -> bool:
        return self._enabled

    def log_interaction(
        self,
        *,
        job_id: str,
        user_query: str,
        bot_response: str,
        confidence: float,
        sources: Sequence[str],
        duration_ms: float | None = None,
        timestamp: datetime | None = None,
    ) -> InteractionRecord | None:
        """Append a record; storage errors are logged and never raised."""

        if not self._enabled:
            return None
        recorded_at = timestamp or _utc_now()
        record = InteractionRecord(
            job_id=job_id,
            user_query=user_query.strip(),
            bot_response=bot_response.strip(),
            confidence=round(float(confidence), 4),
            sources=list(sources),
            created_at=recorded_at.isoformat(),
            duration_ms=round(duration_ms, 4) if duration_ms is not None else None,
        )
        try:
            self._store.append(record)
            if self._retention_days > 0:
                self._enforce_retention(job_id, recorded_at - timedelta(days=self._retention_days))
        except OSError as exc:
            logger.warning("interaction.log_failed job=%s error=%s", job_id, exc)
            return None

        if self._metrics:
            self._metrics.increment("chat.logged_interactions", job_id=job_id)
            if record.confidence < LOW_CONFIDENCE_THRESHOLD:
                self._metrics.increment("chat.low_confidence", job_id=job_id)
        return record

    def list_interactions(self, job_id: str, *, limit: int | None = None) -> list[InteractionRecord]:
        records = list(self._store.iter_records(job_id))
        records.sort(key=lambda item: item.created_at, reverse=True)
        if limit is not None and limit >= 0:
            return records[:limit]
        return records

    def delete(self, job_id: str) -> bool:
        return self._store.delete(job_id)

    def _enforce_retention(self, job_id: str, cutoff: datetime) -> None:
        records = list(self._store.iter_records(job_id))
        retained: list[InteractionRecord] = []
        for record in records:
            created = _coerce_datetime(record.created_at)
            if created is None or created >= cutoff:
                retained.append(record)
        if len(retained) != len(records):
            self._store.rewrite_records(job_id, retained)


class AnalyticsService:
    """Aggregate interaction logs for one knowledge base or the whole platform."""

    def __init__(self, interactions: InteractionLogger) -> None:
        self._interactions = interactions

    def build_summary(self, job_id: str, *, days: int = 7, top_limit: int = 10) -> dict[str, Any]:
        cutoff = _utc_now() - timedelta(days=days) if days > 0 else None
        records = []
        for record in self._interactions.list_interactions(job_id):
            created = _coerce_datetime(record.created_at)
            if created is None or (cutoff is not None and created < cutoff):
                continue
            records.append((created, record))

        top_queries: Counter[str] = Counter()
        daily: dict[str, dict[str, Any]] = {}
        confidence_total = 0.0
        low_confidence: list[dict[str, Any]] = []
        for created, record in records:
            top_queries[record.user_query.lower()] += 1
            confidence_total += record.confidence
            date_key = created.date().isoformat()
            stats = daily.setdefault(date_key, {"date": date_key, "interactions": 0, "confidence_total": 0.0})
            stats["interactions"] += 1
            stats["confidence_total"] += record.confidence
            if record.confidence < LOW_CONFIDENCE_THRESHOLD:
                low_confidence.append(
                    {
                        "query": record.user_query,
                        "response": record.bot_response,
                        "confidence": record.confidence,
                        "created_at": record.created_at,
                    }
                )

        total = len(records)
        daily_stats = [
            {
                "date": stats["date"],
                "interactions": stats["interactions"],
                "average_confidence": round(stats["confidence_total"] / stats["interactions"], 4),
            }
            for stats in sorted(daily.values(), key=lambda item: item["date"])
        ]
        return {
            "job_id": job_id,
            "days": max(days, 0),
            "generated_at": _utc_now().isoformat(),
            "total_interactions": total,
            "average_confidence": round(confidence_total / total, 4) if total else 0.0,
            "top_queries": [
                {"query": query, "count": count} for query, count in top_queries.most_common(max(top_limit, 1))
            ],
            "daily_stats": daily_stats,
            "low_confidence_queries": low_confidence,
        }

    def platform_summary(self, jobs: Sequence[GenerationJob], *, recent_limit: int = 10) -> dict[str, Any]:
        """Totals across every knowledge base.

        The bot type distribution counts completed jobs only.
        """

        completed = [job for job in jobs if job.status is JobStatus.COMPLETED]
        total_interactions = sum(len(self._interactions.list_interactions(job.id)) for job in jobs)
        newest = sorted(jobs, key=lambda job: job.created_at, reverse=True)[: max(recent_limit, 0)]
        distribution = Counter(job.bot_type for job in completed)
        return {
            "generated_at": _utc_now().isoformat(),
            "total_jobs": len(jobs),
            "completed_jobs": len(completed),
            "total_interactions": total_interactions,
            "success_rate": round(len(completed) / len(jobs) * 100, 1) if jobs else 0.0,
            "recent_activity": [
                {
                    "job_id": job.id,
                    "website_name": job.website_name,
                    "bot_type": job.bot_type,
                    "status": job.status.value,
                    "created_at": job.created_at,
                }
                for job in newest
            ],
            "bot_type_distribution": dict(sorted(distribution.items())),
        }

    def usage(self, jobs: Sequence[GenerationJob], *, days: int = 30) -> dict[str, Any]:
        """Jobs created and queries answered per UTC day, oldest day first.

        Every day of the window is present, including days with no activity.
        """

        days = max(days, 1)
        today = _utc_now().date()
        buckets = {
            (today - timedelta(days=offset)).isoformat(): {"jobs": 0, "interactions": 0}
            for offset in range(days - 1, -1, -1)
        }
        for job in jobs:
            created = _coerce_datetime(job.created_at)
            if created is not None and created.date().isoformat() in buckets:
                buckets[created.date().isoformat()]["jobs"] += 1
            for record in self._interactions.list_interactions(job.id):
                answered = _coerce_datetime(record.created_at)
                if answered is not None and answered.date().isoformat() in buckets:
                    buckets[answered.date().isoformat()]["interactions"] += 1
        return {
            "days": days,
            "daily_usage": [{"date": date, **counts} for date, counts in buckets.items()],
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


__all__ = [
    "AnalyticsService",
    "InteractionLogStore",
    "InteractionLogger",
    "InteractionRecord",
]
