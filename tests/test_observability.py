import io
import logging

from sitechat.observability import MetricsRecorder


def _capture_logger_output(logger_name: str):
    logger = logging.getLogger(logger_name)
    buffer = io.StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger, handler, buffer


def test_metrics_recorder_logs_when_enabled() -> None:
    metrics = MetricsRecorder(enabled=True, namespace="sitechat.test")
    logger, handler, buffer = _capture_logger_output("sitechat.metrics")

    try:
        metrics.increment("crawl.pages", value=4, job_id="job-1")
        metrics.record_timing("crawl.duration", 0.05, sitemap=True)
        metrics.set_gauge("jobs.active", 2)
    finally:
        logger.removeHandler(handler)

    output = buffer.getvalue()
    assert "sitechat.test.crawl.pages value=4 job_id=job-1" in output
    assert "sitechat.test.crawl.duration duration_ms=50 sitemap=True" in output
    assert "sitechat.test.jobs.active value=2" in output


def test_metrics_recorder_disabled_suppresses_logs() -> None:
    metrics = MetricsRecorder(enabled=False)
    logger, handler, buffer = _capture_logger_output("sitechat.metrics")

    try:
        metrics.increment("crawl.pages")
        metrics.record_timing("crawl.duration", 0.1)
        with metrics.track_timing("index.duration"):
            pass
    finally:
        logger.removeHandler(handler)

    assert buffer.getvalue() == ""


def test_prometheus_rendering() -> None:
    metrics = MetricsRecorder(namespace="sitechat", prometheus_enabled=True)

    metrics.increment("crawl.pages", value=3)
    metrics.increment("chat.low_confidence", job_id="kb-1")
    with metrics.track_timing("index.duration"):
        pass

    assert metrics.prometheus_enabled
    body = metrics.render_prometheus().decode("utf-8")
    assert "sitechat_crawl_pages_total 3.0" in body
    assert 'sitechat_chat_low_confidence_total{job_id="kb-1"} 1.0' in body
    assert "sitechat_index_duration_count 1.0" in body


def test_prometheus_disabled_by_default() -> None:
    metrics = MetricsRecorder()

    assert not metrics.prometheus_enabled
