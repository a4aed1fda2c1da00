from prometheus_client import Counter, Gauge

acehls_streams_started = Counter("acehls_streams_started_total", "stream sessions created after a successful engine start")
acehls_stream_start_failures = Counter("acehls_stream_start_failures_total", "engine start requests that failed")
acehls_streams_stopped = Counter("acehls_streams_stopped_total", "stream sessions stopped and removed")
acehls_active_sessions = Gauge("acehls_active_sessions", "Current number of registered stream sessions")
acehls_status_checks = Counter(
    "acehls_status_checks_total",
    "deferred status checks by outcome",
    ["result"],
)
acehls_proxy_requests = Counter(
    "acehls_proxy_requests_total",
    "HLS proxy requests by kind and outcome",
    ["kind", "outcome"],
)


def on_session_count(count: int):
    acehls_active_sessions.set(count)


def on_proxy_request(kind: str, outcome: str):
    acehls_proxy_requests.labels(kind=kind, outcome=outcome).inc()
