from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "completion_server_requests_total",
    "Total HTTP requests handled by server",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "completion_server_request_latency_seconds",
    "HTTP request latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["path"],
)

server_errors_total = Counter(
    "completion_server_errors_total",
    "Total errors returned by server",
    labelnames=["type"],
)

orchestrations_total = Counter(
    "completion_orchestrations_total",
    "Orchestration calls by kind and terminal status",
    labelnames=["kind", "status"],
)

orchestration_latency_seconds = Histogram(
    "completion_orchestration_latency_seconds",
    "End-to-end orchestration latency",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["kind"],
)

attempts_total = Counter(
    "completion_attempts_total",
    "Fallback chain attempts by stage and outcome",
    labelnames=["stage", "outcome"],
)

extraction_strategy_total = Counter(
    "completion_extraction_strategy_total",
    "Extraction cascade strategy that produced the candidates",
    labelnames=["strategy"],
)

capability_registry_refresh_total = Counter(
    "capability_registry_refresh_total",
    "Model catalog refreshes",
    labelnames=["status"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
