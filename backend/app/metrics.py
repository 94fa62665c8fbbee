"""Prometheus metrics for monitoring.

Tracks request latency, analysis throughput, profile contention and
similarity graph builds.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
APP_INFO = Info("devgraph_app", "DevGraph Engine application info")

# HTTP metrics
HTTP_REQUESTS_TOTAL = Counter(
    "devgraph_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "devgraph_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Analysis pipeline
SUBMISSIONS_TOTAL = Counter(
    "devgraph_submissions_total",
    "Code submissions accepted",
    ["language"],
)

ANALYSES_TOTAL = Counter(
    "devgraph_analyses_total",
    "Submissions analyzed",
    ["language", "outcome"],
)

ANALYSIS_DURATION = Histogram(
    "devgraph_analysis_duration_seconds",
    "Pattern detection duration",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)

QUEUE_DEPTH = Gauge(
    "devgraph_analysis_queue_depth",
    "Submissions waiting for analysis",
)

PROFILE_UPDATE_RETRIES = Counter(
    "devgraph_profile_update_retries_total",
    "Profile writes retried after losing a compare-and-set race",
)

# Similarity graph
GRAPH_BUILDS_TOTAL = Counter(
    "devgraph_graph_builds_total",
    "Similarity graph build attempts",
    ["status"],
)

GRAPH_BUILD_DURATION = Histogram(
    "devgraph_graph_build_duration_seconds",
    "Similarity graph build duration",
    buckets=(0.01, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0),
)

GRAPH_EDGES = Gauge(
    "devgraph_graph_edges",
    "Edges in the current similarity graph snapshot",
)

GRAPH_GENERATION = Gauge(
    "devgraph_graph_generation",
    "Generation number of the current similarity graph snapshot",
)
