"""Tests for environment-driven configuration and metrics provider selection."""

import pytest
from prometheus_client import CollectorRegistry

import embedbot.metrics as metrics_module
from embedbot.config import cdn_configured, load_config, storage_configured, validate_required_env
from embedbot.exceptions import ConfigurationError
from embedbot.metrics import (
    METRIC_RESOLVE_SECONDS,
    METRIC_URLS_RESOLVED,
    define_embedfix_metrics,
    get_metrics,
    is_degraded_mode,
)
from embedbot.metrics.null_metrics import NoopMetrics
from embedbot.metrics.prometheus_metrics import PrometheusMetrics


class TestConfig:
    def test_missing_token_is_rejected(self, monkeypatch):
        monkeypatch.delenv("DISCORD_TOKEN", raising=False)
        with pytest.raises(ConfigurationError):
            validate_required_env()

    def test_values_are_parsed_and_cleaned(self, monkeypatch):
        monkeypatch.setenv("EMBEDFIX_ALLOWED_CHANNELS", "Art, fanart ,")
        monkeypatch.setenv("EMBEDFIX_USER_RATE_LIMIT", "3  # per minute")
        monkeypatch.setenv("EMBEDFIX_CACHE_TTL_S", "not-a-number")
        monkeypatch.setenv("UPLOAD_PREFIX", "staging/up")

        config = load_config(force_reload=True)

        assert config["EMBEDFIX_ALLOWED_CHANNELS"] == ["art", "fanart"]
        assert config["EMBEDFIX_USER_RATE_LIMIT"] == 3
        assert config["EMBEDFIX_CACHE_TTL_S"] == 1800.0
        assert config["UPLOAD_PREFIX"] == "staging/up"

    def test_storage_and_cdn_are_checked_separately(self):
        config = {"S3_BUCKET": "b", "S3_ACCESS_KEY_ID": "k", "S3_SECRET_ACCESS_KEY": None, "CDN_DOMAIN_URL": None}
        assert not storage_configured(config)

        config["S3_SECRET_ACCESS_KEY"] = "s"
        assert storage_configured(config)
        assert not cdn_configured(config)

        config["CDN_DOMAIN_URL"] = "https://cdn.example"
        assert cdn_configured(config)


class TestMetrics:
    def test_disabled_by_default(self, monkeypatch):
        monkeypatch.delenv("OBS_ENABLE_PROMETHEUS", raising=False)
        assert isinstance(get_metrics(), NoopMetrics)

    def test_prometheus_failure_falls_back_to_noop(self, monkeypatch, mocker):
        monkeypatch.setenv("OBS_ENABLE_PROMETHEUS", "true")
        monkeypatch.setattr(metrics_module, "_degraded_mode", False)
        monkeypatch.setattr(metrics_module, "_degraded_reasons", [])
        mocker.patch("embedbot.metrics.prometheus_metrics.PrometheusMetrics", side_effect=OSError("port in use"))

        assert isinstance(get_metrics(), NoopMetrics)
        assert is_degraded_mode()
        assert "port in use" in metrics_module.get_degraded_reasons()[0]

    def test_pipeline_metrics_record_into_registry(self):
        registry = CollectorRegistry()
        prom = PrometheusMetrics(enable_http_server=False, registry=registry)
        define_embedfix_metrics(prom)

        prom.inc(METRIC_URLS_RESOLVED, labels={"platform": "twitter"})
        prom.observe(METRIC_RESOLVE_SECONDS, 0.25, labels={"platform": "twitter"})

        assert registry.get_sample_value("embedfix_urls_resolved_total", {"platform": "twitter"}) == 1
        assert registry.get_sample_value("embedfix_resolve_seconds_count", {"platform": "twitter"}) == 1

    def test_undefined_counter_is_ignored(self):
        prom = PrometheusMetrics(enable_http_server=False, registry=CollectorRegistry())
        prom.inc("never_defined_total")
