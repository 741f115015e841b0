"""Metrics interface and provider selection.

Provides a thin metrics interface with a no-op default (NoopMetrics) and a
Prometheus-backed implementation enabled by environment variables.

Interface methods:
  - define_counter(name, description, labels: list | None = None)
  - inc(name, value: int = 1, labels: dict | None = None)
  - define_histogram(name, description, labels: list | None = None)
  - observe(name, value: float, labels: dict | None = None)

Environment variables:
  - OBS_ENABLE_PROMETHEUS=false (default, uses NoopMetrics)
  - PROMETHEUS_PORT=8000
  - PROMETHEUS_HTTP_SERVER=true
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from ..utils.env import get_bool, get_int
from .null_metrics import NoopMetrics

_degraded_mode = False
_degraded_reasons: list[str] = []


@runtime_checkable
class Metrics(Protocol):
    def define_counter(self, name: str, description: str, labels: Optional[list] = None) -> None: ...
    def inc(self, name: str, value: int = 1, labels: Optional[dict] = None) -> None: ...
    def define_histogram(self, name: str, description: str, labels: Optional[list] = None) -> None: ...
    def observe(self, name: str, value: float, labels: Optional[dict] = None) -> None: ...


def get_metrics() -> Metrics:
    """Return a metrics provider instance with environment-controlled selection.

    On Prometheus initialization failure (port bind, duplicate registry):
    warns, sets degraded mode, and falls back to Noop.
    """
    global _degraded_mode

    logger = logging.getLogger(__name__)

    prometheus_enabled = get_bool("OBS_ENABLE_PROMETHEUS", False)
    if not prometheus_enabled:
        logger.debug("📊 Prometheus disabled by config: using NoopMetrics", extra={"subsys": "metrics"})
        return NoopMetrics()

    from .prometheus_metrics import PrometheusMetrics

    try:
        prometheus_port = get_int("PROMETHEUS_PORT", 8000)
        http_server_enabled = get_bool("PROMETHEUS_HTTP_SERVER", True)
        metrics_instance = PrometheusMetrics(
            port=prometheus_port, enable_http_server=http_server_enabled
        )
        logger.info("📊 Prometheus metrics initialized", extra={"subsys": "metrics"})
        return metrics_instance
    except Exception as e:
        reason = f"Prometheus init failed: {e}"
        _degraded_mode = True
        _degraded_reasons.append(reason)
        logger.warning(
            f"📊 Prometheus failed to initialize, falling back to NoopMetrics: {reason}",
            extra={"subsys": "metrics"},
        )
        return NoopMetrics()


def is_degraded_mode() -> bool:
    """Return True if Prometheus was requested but failed to initialize."""
    return _degraded_mode


def get_degraded_reasons() -> list[str]:
    return _degraded_reasons.copy()


# Embed pipeline metric names
METRIC_URLS_RESOLVED = "embedfix_urls_resolved_total"
METRIC_URLS_FAILED = "embedfix_urls_failed_total"
METRIC_CACHE_HITS = "embedfix_cache_hits_total"
METRIC_BREAKER_REJECTIONS = "embedfix_breaker_rejections_total"
METRIC_RATE_LIMITED = "embedfix_rate_limited_total"
METRIC_URLS_SKIPPED = "embedfix_urls_skipped_total"
METRIC_DUPLICATES = "embedfix_duplicates_total"
METRIC_UPLOAD_BATCHES = "embedfix_upload_batches_total"
METRIC_RESOLVE_SECONDS = "embedfix_resolve_seconds"

# Outbound HTTP metric names
METRIC_HTTP_REQUESTS = "embedfix_http_requests_total"
METRIC_HTTP_BYTES = "embedfix_http_downloaded_bytes_total"
METRIC_HTTP_SECONDS = "embedfix_http_request_seconds"


def define_embedfix_metrics(metrics: Metrics) -> None:
    """Register every metric the embed pipeline records."""
    metrics.define_counter(METRIC_URLS_RESOLVED, "URLs resolved to a preview", ["platform"])
    metrics.define_counter(METRIC_URLS_FAILED, "URLs that failed to resolve", ["platform"])
    metrics.define_counter(METRIC_CACHE_HITS, "Preview cache hits")
    metrics.define_counter(METRIC_BREAKER_REJECTIONS, "Lookups skipped by an open breaker", ["platform"])
    metrics.define_counter(METRIC_RATE_LIMITED, "Messages rejected by the rate limiter")
    metrics.define_counter(METRIC_URLS_SKIPPED, "URLs dropped by the per-message cap")
    metrics.define_counter(METRIC_DUPLICATES, "Reposts answered with a duplicate notice")
    metrics.define_counter(METRIC_UPLOAD_BATCHES, "Upload batches created")
    metrics.define_histogram(METRIC_RESOLVE_SECONDS, "Time spent in platform handlers", ["platform"])


def define_http_metrics(metrics: Metrics) -> None:
    """Register the shared HTTP client's request counters and latency histogram."""
    metrics.define_counter(METRIC_HTTP_REQUESTS, "Outbound HTTP requests by outcome", ["kind", "outcome"])
    metrics.define_counter(METRIC_HTTP_BYTES, "Bytes received by size-capped downloads")
    metrics.define_histogram(METRIC_HTTP_SECONDS, "Outbound HTTP request latency", ["kind"])
