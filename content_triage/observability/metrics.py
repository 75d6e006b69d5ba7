"""
Prometheus metrics for content analysis and review.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Identification ───────────────────────────────────────────
analysis_jobs_total = Counter(
    "analysis_jobs_total",
    "Total identification passes run",
    ["source_table", "outcome"],
)

detections_total = Counter(
    "detections_total",
    "Total detections produced by the detector",
    ["detection_type"],
)

analysis_duration_seconds = Histogram(
    "analysis_duration_seconds",
    "Time to run detection and persist items for one source field",
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10],
)

# ── Review ───────────────────────────────────────────────────
resolutions_total = Counter(
    "resolutions_total",
    "Items resolved, by verb and detection type",
    ["resolution", "detection_type"],
)

reverts_total = Counter(
    "reverts_total",
    "Items reverted to pending",
    ["detection_type"],
)

# ── Enrichment ───────────────────────────────────────────────
enrichment_runs_total = Counter(
    "enrichment_runs_total",
    "Enrichment runs by final outcome",
    ["outcome"],
)

enrichment_suggestions_total = Counter(
    "enrichment_suggestions_total",
    "Enrichment suggestions persisted as items",
    ["detection_type"],
)

enrichment_runs_active = Gauge(
    "enrichment_runs_active",
    "Enrichment runs currently executing in this process",
)

# ── LLM ──────────────────────────────────────────────────────
llm_request_latency_seconds = Histogram(
    "llm_request_latency_seconds",
    "Latency of LLM generate calls",
    ["provider", "operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
)

llm_failures_total = Counter(
    "llm_failures_total",
    "LLM calls that raised ProviderError",
    ["provider", "operation"],
)

# ── Worker ───────────────────────────────────────────────────
worker_queue_depth = Gauge(
    "worker_queue_depth",
    "Number of enrichment jobs waiting in queue",
)
