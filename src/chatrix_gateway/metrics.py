from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "server_requests_total",
    "Total HTTP requests handled by server",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "server_request_latency_seconds",
    "HTTP request latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120, 300],
    labelnames=["path"],
)

server_errors_total = Counter(
    "server_errors_total",
    "Total errors returned by server",
    labelnames=["type"],
)

backend_invocations_total = Counter(
    "gateway_backend_invocations_total",
    "Backend streaming invocations",
    labelnames=["model", "status"],
)

backend_latency_seconds = Histogram(
    "gateway_backend_latency_seconds",
    "Time from backend invocation to end of stream",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["model"],
)

tokens_total = Counter(
    "gateway_tokens_total",
    "Tokens accounted per model",
    labelnames=["model", "direction"],
)

cost_total = Counter(
    "gateway_cost_total",
    "Estimated spend per model",
    labelnames=["model", "currency"],
)

stream_client_disconnects_total = Counter(
    "gateway_stream_client_disconnects_total",
    "Streams stopped because the client went away",
    labelnames=["dialect"],
)

stream_decode_anomalies_total = Counter(
    "gateway_stream_decode_anomalies_total",
    "Backend stream events that could not be decoded",
    labelnames=["family"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
