"""Prometheus metrics for the reconciliation service.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Job starts and terminal outcomes by kind
- Analysis calls by provider and outcome
- Discrepancies detected by type and severity
- Export rows written

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

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

# Job metrics
jobs_started_total = Counter(
    "jobs_started_total",
    "Total async jobs created",
    ["kind"],  # document_processing, bulk_export
)

jobs_finished_total = Counter(
    "jobs_finished_total",
    "Total async jobs reaching a terminal status",
    ["kind", "status"],  # completed, failed, cancelled
)

document_upload_size_bytes = Histogram(
    "document_upload_size_bytes",
    "Document upload size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

# Analysis metrics
extraction_requests_total = Counter(
    "extraction_requests_total",
    "Total document analysis calls",
    ["provider", "status"],  # success, failed
)

extraction_duration_seconds = Histogram(
    "extraction_duration_seconds",
    "Document analysis duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

# Reconciliation metrics
discrepancies_detected_total = Counter(
    "discrepancies_detected_total",
    "Total discrepancies detected by the comparator",
    ["type", "severity"],
)

# Export metrics
export_rows_written_total = Counter(
    "export_rows_written_total",
    "Total rows written to export files",
    ["export_type"],
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
