from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

requests_total = Counter(
    "completion_requests_total",
    "Total completion calls issued by the client",
    labelnames=["mode", "status"],
)

request_latency_seconds = Histogram(
    "completion_request_latency_seconds",
    "Completion call latency until the result (blocking) or stream handle (streaming) is available",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
    labelnames=["mode"],
)

stream_events_total = Counter(
    "completion_stream_events_total",
    "Partial completion events delivered to stream consumers",
)

stream_outcomes_total = Counter(
    "completion_stream_outcomes_total",
    "How completion streams ended",
    labelnames=["outcome"],
)

transport_retries_total = Counter(
    "completion_transport_retries_total",
    "Upstream request retries",
    labelnames=["reason"],
)

circuit_breaker_events_total = Counter(
    "completion_circuit_breaker_events_total",
    "Circuit breaker events",
    labelnames=["event"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
