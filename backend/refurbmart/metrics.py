"""
Prometheus metrics shared by the whole process.

Collectors register on the default registry once, at import time, so several
app instances (tests) can coexist without duplicate registration.
"""

from prometheus_client import Counter, Histogram

http_requests_total = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds", "HTTP request duration", ["method", "endpoint"]
)
orders_total = Counter("orders_total", "Total orders", ["status"])
revenue_total = Counter("revenue_total", "Total revenue from placed orders")
