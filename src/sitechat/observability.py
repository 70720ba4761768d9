"""Metrics emitted as structured log lines, optionally mirrored to Prometheus."""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Iterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")

_PROM_TYPES = {
    "counter": (Counter, "counter"),
    "histogram": (Histogram, "duration"),
    "gauge": (Gauge, "gauge"),
}


class MetricsRecorder:
    """Emit pipeline metrics via logging and (optionally) a Prometheus registry."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "sitechat",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "sitechat"
        self._logger = logger or logging.getLogger("sitechat.metrics")
        self._prometheus_enabled = prometheus_enabled
        if prometheus_enabled and registry is None:
            registry = CollectorRegistry()
        self._registry = registry if prometheus_enabled else None
        self._collectors: dict[tuple[str, str, tuple[str, ...]], Any] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._registry is not None

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if self._registry is None:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        """Increment a counter metric."""

        if not self._enabled:
            return
        clean_tags = _clean(tags)
        self._emit(metric, {"value": int(value)}, clean_tags)
        self._observe("counter", metric, clean_tags, lambda c: c.inc(float(max(int(value), 0))))

    def set_gauge(self, metric: str, value: float, **tags: Any) -> None:
        if not self._enabled:
            return
        clean_tags = _clean(tags)
        self._emit(metric, {"value": value}, clean_tags)
        self._observe("gauge", metric, clean_tags, lambda g: g.set(float(value)))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Emit a timing metric; logs carry milliseconds, Prometheus seconds."""

        if not self._enabled:
            return
        seconds = max(duration_seconds, 0.0)
        clean_tags = _clean(tags)
        self._emit(metric, {"duration_ms": round(seconds * 1000.0, 4)}, clean_tags)
        self._observe("histogram", metric, clean_tags, lambda h: h.observe(seconds))

    @contextmanager
    def track_timing(self, metric: str, **tags: Any) -> Iterator[None]:
        """Record the wall time spent inside the block."""

        if not self._enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    def _emit(self, metric: str, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={_stringify(value)}" for key, value in sorted(fields.items())]
        segments.extend(f"{key}={_stringify(value)}" for key, value in sorted(tags.items()))
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _observe(self, kind: str, metric: str, tags: dict[str, Any], apply) -> None:
        if self._registry is None:
            return
        label_keys = tuple(sorted(tags))
        label_names = tuple(_PROM_NAME_RE.sub("_", key) or "label" for key in label_keys)
        key = (kind, metric, label_names)
        collector = self._collectors.get(key)
        if collector is None:
            collector_cls, suffix = _PROM_TYPES[kind]
            collector = collector_cls(
                self._prom_name(metric),
                f"{metric} {suffix}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            self._collectors[key] = collector
        if label_names:
            values = {name: _stringify(tags[raw]) for name, raw in zip(label_names, label_keys)}
            apply(collector.labels(**values))
        else:
            apply(collector)

    def _prom_name(self, metric: str) -> str:
        namespace = _PROM_NAME_RE.sub("_", self._namespace)
        return f"{namespace}_{_PROM_NAME_RE.sub('_', metric)}".strip("_")


def _clean(tags: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in tags.items() if value is not None}


def _stringify(value: Any) -> str:
    if isinstance(value, float):
        return f"{int(value)}" if value.is_integer() else f"{value:.4f}"
    return str(value)


__all__ = ["MetricsRecorder"]
