"""
Shared async HTTP client with pooled connections and explicit timeouts.

Every outbound call made by the embed pipeline goes through this client:
- one pooled httpx.AsyncClient for mirror APIs, CDN reads and video probes
- per-host concurrency limits so one slow mirror cannot starve the pool
- request outcomes, latency and downloaded bytes reported through Metrics
- every request carries an explicit timeout; a timeout surfaces as
  UpstreamTimeout so callers can count it as a failure
- size-capped streaming downloads for media

Retries are deliberately absent here; they belong to the handler that
knows whether an upstream answer is transient.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Optional, Any
from urllib.parse import urlparse

import httpx
from httpx import AsyncClient, Response, TimeoutException

from .exceptions import MediaTooLargeError, UpstreamTimeout, APIError
from .metrics import METRIC_HTTP_BYTES, METRIC_HTTP_REQUESTS, METRIC_HTTP_SECONDS, Metrics, define_http_metrics
from .metrics.null_metrics import NoopMetrics
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RequestConfig:
    """Timeout budget for individual HTTP requests."""

    connect_timeout: float = 3.0  # seconds
    read_timeout: float = 8.0  # seconds
    total_timeout: float = 8.0  # seconds


class SharedHttpClient:
    """Shared async HTTP client."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, metrics: Optional[Metrics] = None):
        self.config = config or {}
        self.client: Optional[AsyncClient] = None
        self.metrics = metrics or NoopMetrics()
        define_http_metrics(self.metrics)

        self.host_semaphores: Dict[str, asyncio.Semaphore] = {}
        self.max_per_host = int(self.config.get("HTTP_MAX_PER_HOST", 4))

        api_timeout = float(self.config.get("EMBEDFIX_API_TIMEOUT_S", 8))
        self.default_config = RequestConfig(
            connect_timeout=min(3.0, api_timeout),
            read_timeout=api_timeout,
            total_timeout=api_timeout,
        )

        self.max_connections = int(self.config.get("HTTP_MAX_CONNECTIONS", 64))
        self.max_keepalive = int(self.config.get("HTTP_MAX_KEEPALIVE_CONNECTIONS", 32))

        logger.debug("🌐 SharedHttpClient initialized", extra={"subsys": "http"})

    async def start(self) -> None:
        """Start the HTTP client."""
        if self.client is not None:
            return

        limits = httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive,
            keepalive_expiry=30.0,
        )

        timeout = httpx.Timeout(
            connect=self.default_config.connect_timeout,
            read=self.default_config.read_timeout,
            write=5.0,
            pool=1.0,
        )

        headers = {
            "User-Agent": "EmbedBot/1.0 (Discord embed enhancer)",
            "Accept": "application/json, image/*, video/*;q=0.9, */*;q=0.8",
        }

        self.client = AsyncClient(
            limits=limits,
            timeout=timeout,
            headers=headers,
            follow_redirects=True,
            max_redirects=5,
        )

        logger.info("✅ SharedHttpClient started", extra={"subsys": "http"})

    async def stop(self) -> None:
        """Stop the HTTP client and clean up resources."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("🛑 SharedHttpClient stopped", extra={"subsys": "http"})

    def _get_host_semaphore(self, host: str) -> asyncio.Semaphore:
        if host not in self.host_semaphores:
            self.host_semaphores[host] = asyncio.Semaphore(self.max_per_host)
        return self.host_semaphores[host]

    def _record(self, kind: str, outcome: str, started: Optional[float] = None) -> None:
        self.metrics.inc(METRIC_HTTP_REQUESTS, labels={"kind": kind, "outcome": outcome})
        if started is not None:
            self.metrics.observe(METRIC_HTTP_SECONDS, time.perf_counter() - started, labels={"kind": kind})

    async def request(
        self,
        method: str,
        url: str,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Response:
        """Make a single HTTP request bounded by ``timeout`` seconds.

        HTTP error statuses are returned to the caller untouched. Timeouts are
        raised as UpstreamTimeout; other transport failures propagate as
        httpx.TransportError.
        """
        if self.client is None:
            await self.start()

        host = urlparse(url).netloc.lower()
        budget = timeout if timeout is not None else self.default_config.total_timeout
        semaphore = self._get_host_semaphore(host)
        started = time.perf_counter()

        try:
            async with semaphore:
                response = await asyncio.wait_for(
                    self.client.request(method=method, url=url, **kwargs),
                    timeout=budget,
                )
        except (asyncio.TimeoutError, TimeoutException) as e:
            self._record("request", "timeout")
            logger.debug(
                f"⏱️ {method} {host} timed out after {budget:.1f}s",
                extra={"subsys": "http", "event": "http.timeout", "detail": {"url": url}},
            )
            raise UpstreamTimeout(f"{method} {url} timed out after {budget:.1f}s") from e
        except httpx.TransportError:
            self._record("request", "error")
            raise

        self._record("request", "ok", started)
        return response

    async def get(self, url: str, timeout: Optional[float] = None, **kwargs) -> Response:
        """Make GET request."""
        return await self.request("GET", url, timeout, **kwargs)

    async def head(self, url: str, timeout: Optional[float] = None, **kwargs) -> Response:
        """Make HEAD request."""
        return await self.request("HEAD", url, timeout, **kwargs)

    async def download(
        self, url: str, max_bytes: int, timeout: Optional[float] = None
    ) -> bytes:
        """Stream ``url`` into memory, refusing anything larger than ``max_bytes``.

        Raises MediaTooLargeError as soon as the declared or received size
        crosses the ceiling, APIError on non-2xx responses and UpstreamTimeout
        when the whole transfer exceeds ``timeout``.
        """
        if self.client is None:
            await self.start()

        budget = timeout if timeout is not None else self.default_config.total_timeout
        host = urlparse(url).netloc.lower()
        semaphore = self._get_host_semaphore(host)

        async def _stream() -> bytes:
            async with self.client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise APIError(
                        f"Download failed with HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise MediaTooLargeError(
                        f"Declared size {declared} exceeds {max_bytes}",
                        limit=max_bytes,
                        size=int(declared),
                    )

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > max_bytes:
                        raise MediaTooLargeError(
                            f"Received more than {max_bytes} bytes",
                            limit=max_bytes,
                            size=received,
                        )
                    chunks.append(chunk)
                return b"".join(chunks)

        started = time.perf_counter()
        try:
            async with semaphore:
                data = await asyncio.wait_for(_stream(), timeout=budget)
        except MediaTooLargeError:
            self._record("download", "too_large")
            raise
        except (asyncio.TimeoutError, TimeoutException) as e:
            self._record("download", "timeout")
            raise UpstreamTimeout(f"Download of {url} timed out after {budget:.1f}s") from e
        except (APIError, httpx.TransportError):
            self._record("download", "error")
            raise

        self._record("download", "ok", started)
        self.metrics.inc(METRIC_HTTP_BYTES, len(data))
        return data


# Global singleton instance
_http_client_instance: Optional[SharedHttpClient] = None


async def get_http_client(
    config: Optional[Dict[str, Any]] = None, metrics: Optional[Metrics] = None
) -> SharedHttpClient:
    """Get or create the shared HTTP client instance."""
    global _http_client_instance

    if _http_client_instance is None:
        _http_client_instance = SharedHttpClient(config, metrics)
        await _http_client_instance.start()

    return _http_client_instance


async def cleanup_http_client() -> None:
    """Clean up the shared HTTP client instance."""
    global _http_client_instance

    if _http_client_instance is not None:
        await _http_client_instance.stop()
        _http_client_instance = None
