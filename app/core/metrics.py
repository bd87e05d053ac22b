"""
Prometheus metrics for the sync and edge jobs.

Metrics exposed:
- Job run counters and duration histograms (written by the job ledger)
- Provider request outcomes per provider
- Match outcomes for the strict and fuzzy matchers
- Row-level ingestion outcomes
"""
from prometheus_client import Counter, Histogram

# Job metrics
job_runs_total = Counter(
    "job_runs_total",
    "Total finished job runs",
    ["job_name", "status"]
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Job run duration in seconds",
    ["job_name"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600)
)

# Provider metrics
provider_requests_total = Counter(
    "provider_requests_total",
    "Provider HTTP requests by outcome",
    ["provider", "outcome"]  # outcome: success, retry, abandoned
)

# Matching metrics
match_outcomes_total = Counter(
    "match_outcomes_total",
    "Matcher outcomes",
    ["matcher", "outcome"]  # matcher: strict, fuzzy
)

# Ingestion metrics
ingested_rows_total = Counter(
    "ingested_rows_total",
    "Provider rows processed by the ingestion engine",
    ["sport", "outcome"]  # outcome: inserted, updated, skipped, error
)

score_corrections_total = Counter(
    "score_corrections_total",
    "Stored scores corrected from the authoritative scoreboard",
    ["sport"]
)
