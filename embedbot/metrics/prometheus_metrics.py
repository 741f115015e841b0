"""Prometheus-based metrics implementation for bot monitoring."""

import logging
import re
from typing import Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)


class PrometheusMetrics:
    """Prometheus-based metrics provider."""

    def __init__(
        self,
        port: int = 8000,
        enable_http_server: bool = True,
        registry: Optional[CollectorRegistry] = None,
    ):
        """Initialize Prometheus metrics with optional HTTP server for scraping.

        Args:
            port: Port for Prometheus metrics HTTP server
            enable_http_server: Whether to start HTTP server for metrics scraping
            registry: Collector registry; defaults to the process-global one
        """
        self.port = port
        self.registry = registry or REGISTRY
        self._counters: Dict[str, Counter] = {}
        self._histograms: Dict[str, Histogram] = {}

        if enable_http_server:
            start_http_server(port, registry=self.registry)
            logger.info(f"✅ Prometheus HTTP server started on port {port}")

    def define_counter(self, name: str, description: str, labels: Optional[list] = None) -> None:
        norm_name = self._normalize_metric_name(name)
        if norm_name not in self._counters:
            self._counters[norm_name] = Counter(
                name=norm_name,
                documentation=description,
                labelnames=self._normalize_label_names(labels or []),
                registry=self.registry,
            )
            logger.debug(f"📈 Defined counter: {norm_name}")

    def define_histogram(
        self,
        name: str,
        description: str,
        labels: Optional[list] = None,
        buckets: Optional[tuple] = None,
    ) -> None:
        norm_name = self._normalize_metric_name(name)
        if norm_name not in self._histograms:
            kwargs = {
                "name": norm_name,
                "documentation": description,
                "labelnames": self._normalize_label_names(labels or []),
                "registry": self.registry,
            }
            if buckets:
                kwargs["buckets"] = buckets
            self._histograms[norm_name] = Histogram(**kwargs)

    def inc(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None) -> None:
        norm_name = self._normalize_metric_name(name)
        counter = self._counters.get(norm_name)
        if counter is None:
            logger.warning(f"⚠️  Counter '{name}' not defined")
            return
        if labels:
            counter.labels(**labels).inc(value)
        else:
            counter.inc(value)

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        norm_name = self._normalize_metric_name(name)
        histogram = self._histograms.get(norm_name)
        if histogram is None:
            logger.warning(f"⚠️  Histogram '{name}' not defined")
            return
        if labels:
            histogram.labels(**labels).observe(value)
        else:
            histogram.observe(value)

    def _normalize_metric_name(self, name: str) -> str:
        """Normalize metric name to Prometheus spec."""
        norm = re.sub(r"[^a-zA-Z0-9_:]", "_", name)
        if not re.match(r"^[a-zA-Z_:]", norm):
            norm = f"m_{norm}"
        return norm

    def _normalize_label_names(self, labels: list) -> list:
        normed = []
        for label in labels:
            if not isinstance(label, str):
                continue
            n = re.sub(r"[^a-zA-Z0-9_]", "_", label)
            if not re.match(r"^[a-zA-Z_]", n):
                n = f"l_{n}"
            normed.append(n)
        return normed
