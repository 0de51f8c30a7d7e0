"""Prometheus metrics for the invoice engine.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Invoice generation and validation outcomes per format
- Batch job, segment and credit ledger outcomes

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Generation metrics
invoices_generated_total = Counter(
    "invoices_generated_total",
    "Total invoice generation attempts",
    ["format", "status"],  # success, rejected
)

invoice_validation_issues_total = Counter(
    "invoice_validation_issues_total",
    "Validation findings reported",
    ["format", "severity"],
)

generation_duration_seconds = Histogram(
    "generation_duration_seconds",
    "Invoice rendering duration in seconds",
    ["format"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Batch metrics
batch_jobs_total = Counter(
    "batch_jobs_total",
    "Batch jobs finished",
    ["status"],  # completed, failed, partial_success
)

batch_segments_total = Counter(
    "batch_segments_total",
    "Batch invoice segments processed",
    ["status"],  # success, failed
)

credit_operations_total = Counter(
    "credit_operations_total",
    "Credit ledger operations",
    ["operation", "result"],  # deduct/refund x applied/replayed/insufficient
)


def record_validation_issues(format_id: str, errors: int, warnings: int) -> None:
    if errors:
        invoice_validation_issues_total.labels(format=format_id, severity="error").inc(errors)
    if warnings:
        invoice_validation_issues_total.labels(format=format_id, severity="warning").inc(warnings)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
