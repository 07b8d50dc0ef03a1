"""
Prometheus metrics definitions for the relay.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Gauge, Histogram

# HTTP request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Upload job metrics
uploads_started_total = Counter(
    'uploads_started_total',
    'Total remote upload jobs started'
)

uploads_in_progress = Gauge(
    'uploads_in_progress',
    'Number of remote upload jobs currently running'
)

uploads_completed_total = Counter(
    'uploads_completed_total',
    'Total remote upload jobs finished',
    ['status']
)

upload_bytes_total = Counter(
    'upload_bytes_total',
    'Total bytes written to the object store by upload jobs'
)

upload_duration_seconds = Histogram(
    'upload_duration_seconds',
    'Remote upload job duration in seconds',
    ['status'],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0]
)

# Retrieval metrics
retrievals_total = Counter(
    'retrievals_total',
    'Total object retrieval requests',
    ['mode', 'status']
)
