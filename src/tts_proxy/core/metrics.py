"""
Prometheus Metrics for the Speech Proxy.

Metrics live in a private CollectorRegistry so importing this module in
tests or alongside other instrumented code never clashes with the default
registry.

Metrics Exposed:
    tts_proxy_requests_total              - Generate requests by outcome and error code
    tts_proxy_request_duration_seconds    - Time until the audio stream is handed off
    tts_proxy_upstream_attempts_total     - Upstream calls by result (ok/retryable/terminal)
    tts_proxy_rate_limited_total          - Rate-limit denials by limiter
    tts_proxy_quota_rejections_total      - Requests refused for quota
    tts_proxy_characters_consumed_total   - Characters charged against quotas
    tts_proxy_upstream_healthy            - Result of the last health probe

Usage:
    from tts_proxy.core.metrics import metrics

    metrics.record_request("success", duration=0.8)
    metrics.record_upstream_attempt("retryable")
    content, content_type = metrics.get_metrics_response()
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class ProxyMetrics:
    """
    Counters and histograms for the generate pipeline.

    All prometheus_client metric operations are thread-safe.
    """

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "tts_proxy_requests_total",
            "Generate requests by outcome",
            ["outcome", "code"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "tts_proxy_request_duration_seconds",
            "Time from request receipt to audio stream hand-off",
            ["outcome"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )
        self._upstream_attempts = Counter(
            "tts_proxy_upstream_attempts_total",
            "Upstream synthesis attempts by result",
            ["result"],
            registry=self._registry,
        )
        self._rate_limited = Counter(
            "tts_proxy_rate_limited_total",
            "Requests denied by a rate limiter",
            ["limiter"],
            registry=self._registry,
        )
        self._quota_rejections = Counter(
            "tts_proxy_quota_rejections_total",
            "Requests refused because the monthly quota would be exceeded",
            registry=self._registry,
        )
        self._characters_consumed = Counter(
            "tts_proxy_characters_consumed_total",
            "Characters charged against user quotas",
            registry=self._registry,
        )
        self._upstream_healthy = Gauge(
            "tts_proxy_upstream_healthy",
            "1 if the last upstream health probe succeeded, else 0",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(self, outcome: str, duration: float, code: str = "") -> None:
        """
        Record a finished generate request.

        Args:
            outcome: "success" or "error".
            duration: Seconds until the response was handed to the transport.
            code: Error code for failed requests.
        """
        self._requests_total.labels(outcome=outcome, code=code).inc()
        self._request_duration.labels(outcome=outcome).observe(duration)

    def record_upstream_attempt(self, result: str) -> None:
        self._upstream_attempts.labels(result=result).inc()

    def record_rate_limited(self, limiter: str) -> None:
        self._rate_limited.labels(limiter=limiter).inc()

    def record_quota_rejection(self) -> None:
        self._quota_rejections.inc()

    def record_characters(self, count: int) -> None:
        if count > 0:
            self._characters_consumed.inc(count)

    def set_upstream_healthy(self, healthy: bool) -> None:
        self._upstream_healthy.set(1 if healthy else 0)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus text format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Process-wide collector: from tts_proxy.core.metrics import metrics
metrics = ProxyMetrics()
