"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration of the HTTP surface
- Routing Metrics: backend decisions and score margins
- Backend Metrics: adapter latency, outcomes, error kinds, fallbacks, polls
- Task Metrics: async task lifecycle and store size
- Rate Limit Metrics: rejected requests per endpoint
- Resource Metrics: CPU, memory

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
import psutil
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from dispatcher.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 180.0],
    registry=registry,
)

# ============================================================================
# ROUTING METRICS
# ============================================================================

routing_decisions_total = Counter(
    "routing_decisions_total",
    "Total number of routing decisions by chosen backend",
    ["backend"],
    registry=registry,
)

routing_confidence = Histogram(
    "routing_confidence",
    "Absolute score difference between backends for each decision",
    buckets=[0, 5, 10, 20, 30, 50, 75, 100, 150, 250],
    registry=registry,
)

# ============================================================================
# BACKEND METRICS
# ============================================================================

backend_requests_total = Counter(
    "backend_requests_total",
    "Total number of backend submissions by outcome",
    ["backend", "outcome"],  # outcome: "success" | "error"
    registry=registry,
)

backend_request_duration_seconds = Histogram(
    "backend_request_duration_seconds",
    "Backend submission latency in seconds",
    ["backend"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=registry,
)

backend_errors_total = Counter(
    "backend_errors_total",
    "Total number of backend failures by error kind",
    ["backend", "kind"],
    registry=registry,
)

backend_fallbacks_total = Counter(
    "backend_fallbacks_total",
    "Total number of cross-backend fallbacks",
    ["from_backend", "to_backend", "outcome"],
    registry=registry,
)

fast_variant_attempts_total = Counter(
    "fast_variant_attempts_total",
    "Fast backend model variant attempts by result",
    ["model", "result"],
    registry=registry,
)

agentic_polls_total = Counter(
    "agentic_polls_total",
    "Agentic task status polls by reported status",
    ["status"],
    registry=registry,
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0 = closed, 1 = half_open, 2 = open)",
    ["circuit_breaker"],
    registry=registry,
)

# ============================================================================
# TASK METRICS
# ============================================================================

tasks_created_total = Counter(
    "tasks_created_total",
    "Total number of async tasks created",
    registry=registry,
)

tasks_finished_total = Counter(
    "tasks_finished_total",
    "Total number of async tasks reaching a terminal state",
    ["status"],
    registry=registry,
)

tasks_swept_total = Counter(
    "tasks_swept_total",
    "Total number of tasks removed by the retention sweep",
    registry=registry,
)

tasks_in_store = Gauge(
    "tasks_in_store",
    "Number of tasks currently held by the task store",
    registry=registry,
)

# ============================================================================
# RATE LIMIT METRICS
# ============================================================================

rate_limit_hits_total = Counter(
    "rate_limit_hits_total",
    "Requests rejected by the per-client rate limit",
    ["endpoint"],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Task ids are replaced with a placeholder to avoid high cardinality.

    Examples:
        /api/task/0b8c... -> /api/task/{task_id}
        /api/chat?x=1 -> /api/chat
    """
    if "?" in path:
        path = path.split("?")[0]

    if path.startswith("/api/task/"):
        return "/api/task/{task_id}"

    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_routing_decision(backend: str, confidence: float) -> None:
    routing_decisions_total.labels(backend=backend).inc()
    routing_confidence.observe(confidence)


def record_backend_request(backend: str, success: bool, duration_seconds: float) -> None:
    """Record one backend submission (latency is recorded for failures too)."""
    backend_requests_total.labels(
        backend=backend,
        outcome="success" if success else "error",
    ).inc()
    backend_request_duration_seconds.labels(backend=backend).observe(duration_seconds)


def record_backend_error(backend: str, kind: str) -> None:
    backend_errors_total.labels(backend=backend, kind=kind).inc()


def record_fallback(from_backend: str, to_backend: str, outcome: str) -> None:
    backend_fallbacks_total.labels(
        from_backend=from_backend,
        to_backend=to_backend,
        outcome=outcome,
    ).inc()


def record_fast_variant_attempt(model: str, result: str) -> None:
    """
    Record one model variant attempt.

    Args:
        model: Model variant name
        result: "success", "quota", "revoked", "timeout", "unavailable", "circuit_open"
    """
    fast_variant_attempts_total.labels(model=model, result=result).inc()


def record_agentic_poll(status: str) -> None:
    agentic_polls_total.labels(status=status or "unknown").inc()


def record_circuit_breaker_state(name: str, state_value: int) -> None:
    circuit_breaker_state.labels(circuit_breaker=name).set(state_value)


def record_task_created() -> None:
    tasks_created_total.inc()


def record_task_finished(status: str) -> None:
    tasks_finished_total.labels(status=status).inc()


def record_tasks_swept(count: int) -> None:
    if count > 0:
        tasks_swept_total.inc(count)


def record_rate_limit_hit(endpoint: str) -> None:
    rate_limit_hits_total.labels(endpoint=normalize_endpoint(endpoint)).inc()


def update_task_store_size(size: int) -> None:
    tasks_in_store.set(size)


def update_resource_metrics() -> None:
    """
    Update system resource metrics (CPU, memory).

    Called on-demand when metrics are scraped.
    """
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
