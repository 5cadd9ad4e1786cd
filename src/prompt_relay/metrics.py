from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "relay_server_requests_total",
    "Total HTTP requests handled by server",
    labelnames=["path", "status"],
)

server_errors_total = Counter(
    "relay_server_errors_total",
    "Total classified errors returned by server",
    labelnames=["kind"],
)

upstream_attempts_total = Counter(
    "relay_upstream_attempts_total",
    "Outbound chat-completion attempts by outcome",
    labelnames=["provider", "outcome"],
)

upstream_retry_wait_seconds = Histogram(
    "relay_upstream_retry_wait_seconds",
    "Computed wait before retrying an upstream call",
    buckets=[0.5, 1, 2, 4, 8, 10, 30, 60],
    labelnames=["provider"],
)

completion_latency_seconds = Histogram(
    "relay_completion_latency_seconds",
    "End-to-end latency of one completion including retries",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["provider"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
