from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from sitechat.interactions import AnalyticsService, InteractionLogger, InteractionLogStore
from sitechat.jobs import GenerationJob, JobStatus, JobStore


def test_logger_appends_and_lists_newest_first(tmp_path: Path) -> None:
    logger = InteractionLogger(InteractionLogStore(tmp_path), retention_days=30)
    now = datetime.now(timezone.utc)

    logger.log_interaction(
        job_id="kb-1",
        user_query="  What is alpha?  ",
        bot_response="Alpha is a plan.",
        confidence=0.91234,
        sources=["https://example.com/a"],
        timestamp=now - timedelta(minutes=5),
    )
    logger.log_interaction(
        job_id="kb-1",
        user_query="Who are you?",
        bot_response="A team.",
        confidence=0.3,
        sources=[],
        timestamp=now,
    )

    records = logger.list_interactions("kb-1")
    assert [record.user_query for record in records] == ["Who are you?", "What is alpha?"]
    assert records[1].confidence == 0.9123
    assert records[1].sources == ["https://example.com/a"]
    assert logger.list_interactions("kb-1", limit=1)[0].user_query == "Who are you?"
    assert logger.list_interactions("kb-other") == []


def test_disabled_logger_records_nothing(tmp_path: Path) -> None:
    logger = InteractionLogger(InteractionLogStore(tmp_path), enabled=False)

    assert logger.log_interaction(job_id="kb-1", user_query="q", bot_response="r", confidence=0.5, sources=[]) is None
    assert logger.list_interactions("kb-1") == []


def test_retention_prunes_old_records(tmp_path: Path) -> None:
    logger = InteractionLogger(InteractionLogStore(tmp_path), retention_days=7)
    now = datetime.now(timezone.utc)

    logger.log_interaction(
        job_id="kb-1", user_query="old", bot_response="r", confidence=0.5, sources=[], timestamp=now - timedelta(days=30)
    )
    logger.log_interaction(job_id="kb-1", user_query="new", bot_response="r", confidence=0.5, sources=[], timestamp=now)

    assert [record.user_query for record in logger.list_interactions("kb-1")] == ["new"]


def test_storage_errors_are_not_raised(tmp_path: Path) -> None:
    class BrokenStore(InteractionLogStore):
        def append(self, record) -> None:
            raise OSError("disk full")

    logger = InteractionLogger(BrokenStore(tmp_path))

    assert logger.log_interaction(job_id="kb-1", user_query="q", bot_response="r", confidence=0.5, sources=[]) is None


def test_delete_removes_log(tmp_path: Path) -> None:
    logger = InteractionLogger(InteractionLogStore(tmp_path))
    logger.log_interaction(job_id="kb-1", user_query="q", bot_response="r", confidence=0.5, sources=[])

    assert logger.delete("kb-1")
    assert logger.list_interactions("kb-1") == []
    assert not logger.delete("kb-1")


def test_analytics_summary(tmp_path: Path) -> None:
    logger = InteractionLogger(InteractionLogStore(tmp_path), retention_days=0)
    now = datetime.now(timezone.utc)
    entries = [
        ("What is alpha?", 0.9, now - timedelta(hours=1)),
        ("what is ALPHA?", 0.8, now - timedelta(hours=2)),
        ("Where are you?", 0.2, now - timedelta(days=1)),
        ("Ancient question", 0.9, now - timedelta(days=20)),
    ]
    for query, confidence, timestamp in entries:
        logger.log_interaction(
            job_id="kb-1",
            user_query=query,
            bot_response="answer",
            confidence=confidence,
            sources=[],
            timestamp=timestamp,
        )

    summary = AnalyticsService(logger).build_summary("kb-1", days=7)

    assert summary["total_interactions"] == 3
    assert summary["average_confidence"] == round((0.9 + 0.8 + 0.2) / 3, 4)
    assert summary["top_queries"][0] == {"query": "what is alpha?", "count": 2}
    assert [item["query"] for item in summary["low_confidence_queries"]] == ["Where are you?"]
    assert sum(day["interactions"] for day in summary["daily_stats"]) == 3
    dates = [day["date"] for day in summary["daily_stats"]]
    assert dates == sorted(dates)


def test_analytics_for_unknown_job_is_empty(tmp_path: Path) -> None:
    summary = AnalyticsService(InteractionLogger(InteractionLogStore(tmp_path))).build_summary("nobody")

    assert summary["total_interactions"] == 0
    assert summary["average_confidence"] == 0.0
    assert summary["top_queries"] == []
    assert summary["daily_stats"] == []


def _job(store: JobStore, name: str, bot_type: str, status: JobStatus) -> GenerationJob:
    job = store.create(GenerationJob.new(website_url=f"https://{name}/", website_name=name, bot_type=bot_type))
    job.status = status
    store.save(job)
    return job


def test_platform_summary_counts_every_knowledge_base(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "jobs")
    logger = InteractionLogger(InteractionLogStore(tmp_path / "interactions"))
    done = _job(store, "a.example", "support", JobStatus.COMPLETED)
    _job(store, "b.example", "sales", JobStatus.COMPLETED)
    _job(store, "c.example", "sales", JobStatus.FAILED)
    for query in ("one?", "two?"):
        logger.log_interaction(job_id=done.id, user_query=query, bot_response="yes", confidence=0.9, sources=[])

    summary = AnalyticsService(logger).platform_summary(store.list_jobs(), recent_limit=2)

    assert summary["total_jobs"] == 3
    assert summary["completed_jobs"] == 2
    assert summary["total_interactions"] == 2
    assert summary["success_rate"] == 66.7
    assert summary["bot_type_distribution"] == {"sales": 1, "support": 1}
    assert len(summary["recent_activity"]) == 2
    assert set(summary["recent_activity"][0]) == {"job_id", "website_name", "bot_type", "status", "created_at"}


def test_platform_summary_without_jobs(tmp_path: Path) -> None:
    summary = AnalyticsService(InteractionLogger(InteractionLogStore(tmp_path))).platform_summary([])

    assert summary["total_jobs"] == 0
    assert summary["success_rate"] == 0.0
    assert summary["recent_activity"] == []
    assert summary["bot_type_distribution"] == {}


def test_usage_has_one_entry_per_day(tmp_path: Path) -> None:
    store = JobStore(tmp_path / "jobs")
    logger = InteractionLogger(InteractionLogStore(tmp_path / "interactions"), retention_days=0)
    job = _job(store, "a.example", "general", JobStatus.COMPLETED)
    now = datetime.now(timezone.utc)
    for timestamp in (now, now, now - timedelta(days=2), now - timedelta(days=40)):
        logger.log_interaction(
            job_id=job.id, user_query="q", bot_response="a", confidence=0.9, sources=[], timestamp=timestamp
        )

    usage = AnalyticsService(logger).usage(store.list_jobs(), days=7)

    daily = usage["daily_usage"]
    assert usage["days"] == 7
    assert len(daily) == 7
    assert [day["date"] for day in daily] == sorted(day["date"] for day in daily)
    assert daily[-1]["date"] == now.date().isoformat()
    assert sum(day["jobs"] for day in daily) == 1
    assert sum(day["interactions"] for day in daily) == 3
    assert daily[-3]["interactions"] == 1
