"""
Prometheus metrics definitions for the upload relay.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram

# HTTP request metrics
# Paths are opaque base64 destinations, so they are not used as a label
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Upload metrics
uploads_total = Counter(
    'uploads_total',
    'Upload requests by outcome',
    ['outcome']
)

upload_bytes_total = Counter(
    'upload_bytes_total',
    'Total body bytes relayed to storage'
)

# Uploader cache metrics
uploader_cache_lookups_total = Counter(
    'uploader_cache_lookups_total',
    'Uploader cache lookups',
    ['result']
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)
