"""Prometheus metrics for the GPU price pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("gpuwatch", "GPUWatch pipeline info")

# Ingestion metrics
ingestion_runs_total = Counter(
    "ingestion_runs_total",
    "Total number of ingestion runs",
    ["source", "status"],
)

offers_persisted_total = Counter(
    "offers_persisted_total",
    "Total number of retailer offers upserted",
    ["source"],
)

ingestion_errors_total = Counter(
    "ingestion_errors_total",
    "Total number of per-item ingestion errors",
    ["source", "kind"],
)

ingestion_duration_seconds = Histogram(
    "ingestion_duration_seconds",
    "Wall-clock duration of the adapter fetch for one ingestion run",
    ["source"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

stale_offers = Gauge(
    "stale_offers",
    "Offers not checked within the staleness window at the last check",
)

# Scoring metrics
deal_scores_total = Counter(
    "deal_scores_total",
    "Total number of deal scores computed",
    ["retailer", "is_deal"],
)

# Alert metrics
alerts_enqueued_total = Counter(
    "alerts_enqueued_total",
    "Total number of alert-send jobs enqueued",
    ["retailer"],
)

alerts_sent_total = Counter(
    "alerts_sent_total",
    "Total number of alert emails sent",
    ["retailer", "status"],
)

# Queue metrics
jobs_total = Counter(
    "jobs_total",
    "Total number of job executions",
    ["queue", "status"],
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Job handler duration",
    ["queue"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

jobs_deduplicated_total = Counter(
    "jobs_deduplicated_total",
    "Enqueue attempts collapsed into an already pending job",
    ["queue"],
)

# Compaction metrics
compaction_buckets_total = Counter(
    "compaction_buckets_total",
    "Weekly history buckets written by compaction",
)

compaction_rows_pruned_total = Counter(
    "compaction_rows_pruned_total",
    "Raw price history rows pruned by compaction",
)

# Observability sink
captured_exceptions_total = Counter(
    "captured_exceptions_total",
    "Exceptions reported to the observability sink",
    ["component"],
)

captured_messages_total = Counter(
    "captured_messages_total",
    "Messages reported to the observability sink",
    ["level"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler fire",
    ["job_id"],
)


def record_ingestion_run(source: str, status: str, duration: float):
    """Record a finished ingestion run."""
    ingestion_runs_total.labels(source=source, status=status).inc()
    ingestion_duration_seconds.labels(source=source).observe(duration)


def record_offer_persisted(source: str):
    offers_persisted_total.labels(source=source).inc()


def record_ingestion_errors(source: str, kind: str, count: int = 1):
    if count:
        ingestion_errors_total.labels(source=source, kind=kind).inc(count)


def record_deal_score(retailer: str, is_deal: bool):
    deal_scores_total.labels(retailer=retailer, is_deal=str(is_deal).lower()).inc()


def record_alert_enqueued(retailer: str):
    alerts_enqueued_total.labels(retailer=retailer).inc()


def record_alert_sent(retailer: str, success: bool):
    """Record an alert email delivery attempt."""
    status = "success" if success else "error"
    alerts_sent_total.labels(retailer=retailer, status=status).inc()


def record_job(queue: str, status: str, duration: float):
    """Record a job execution outcome (completed, retried, failed)."""
    jobs_total.labels(queue=queue, status=status).inc()
    job_duration_seconds.labels(queue=queue).observe(duration)


def record_job_deduplicated(queue: str):
    jobs_deduplicated_total.labels(queue=queue).inc()


def record_compaction(buckets: int, pruned: int):
    compaction_buckets_total.inc(buckets)
    compaction_rows_pruned_total.inc(pruned)


def record_scheduler_fire(job_id: str):
    scheduler_last_run_timestamp.labels(job_id=job_id).set(time.time())
