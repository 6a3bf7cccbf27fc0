"""
Prometheus metrics definitions for the Compressed Context Engine.

Defines Counter and Histogram metrics for monitoring context requests,
per-layer retrieval, embedding generation and budget utilization.

Naming conventions: snake_case, context_engine_ prefix.
"""

from prometheus_client import Counter, Histogram

# ==============================================================================
# COUNTERS - Monotonically increasing values
# ==============================================================================

context_requests_total = Counter(
    "context_engine_requests_total",
    "Total compressed context requests",
    ["status"],
    # status: success, invalid, failed
)

layer_retrievals_total = Counter(
    "context_engine_layer_retrievals_total",
    "Total per-layer similarity queries",
    ["layer", "status"],
    # layer: L2, L3, L4
    # status: success, empty, failed
)

embedding_requests_total = Counter(
    "context_engine_embedding_requests_total",
    "Total query embedding requests",
    ["status"],
    # status: success, timeout, failed
)

failure_events_total = Counter(
    "context_engine_failure_events_total",
    "Total failure events for alerting",
    ["component", "error_code"],
    # component: qdrant, embedding, retriever
    # error_code: STORE_UNAVAILABLE, EMBEDDING_TIMEOUT, EMBEDDING_ERROR,
    #             EMBEDDING_MALFORMED, RETRIEVAL_FAILED
)

# ==============================================================================
# HISTOGRAMS - Distributions of observed values
# ==============================================================================

layer_retrieval_duration_seconds = Histogram(
    "context_engine_layer_retrieval_duration_seconds",
    "Time spent in one layer's similarity query",
    ["layer"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

embedding_duration_seconds = Histogram(
    "context_engine_embedding_duration_seconds",
    "Time spent generating the query embedding",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

context_tokens_selected = Histogram(
    "context_engine_tokens_selected",
    "Tokens admitted into a compressed context",
    buckets=[0, 100, 250, 500, 1000, 2000, 4000, 8000],
)

context_budget_utilization = Histogram(
    "context_engine_budget_utilization",
    "Fraction of the token budget consumed by the selection",
    buckets=[0.0, 0.1, 0.25, 0.5, 0.75, 0.9, 1.0],
)
