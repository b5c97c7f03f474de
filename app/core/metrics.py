"""Prometheus metric inventory.

Every metric the service exports is defined here so there is a single
list to build dashboards from.  Modules import the metric they own and
increment it at the point of action.

HTTP metrics are populated by MetricsMiddleware.  The access metrics
answer the operational questions this service actually gets asked:

  - "Are students being locked out?"   → access_authorizations_total
    broken down by outcome (device_mismatch spikes usually mean a
    browser update changed fingerprints).
  - "Did the payment gateway break?"   → payment_verifications_total
    with result=gateway_error.
  - "Are first-bind races real?"       → bind_races_lost_total.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    # Authorization is one indexed lookup plus at most one conditional
    # update; payment verification adds a gateway round-trip (the 1s+ tail).
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Access-code lifecycle
# ---------------------------------------------------------------------------

ACCESS_AUTHORIZATIONS = Counter(
    "access_authorizations_total",
    "Access-code authorization decisions by outcome",
    # authorized|bound|requires_binding_confirmation|invalid_credential|
    # deactivated|device_mismatch|expired
    ["outcome"],
)

ACCESS_CODES_GENERATED = Counter(
    "access_codes_generated_total",
    "Access codes issued, by origin",
    ["origin"],  # student-purchase|admin-manual
)

BIND_RACES_LOST = Counter(
    "bind_races_lost_total",
    "First-bind attempts whose conditional update matched zero rows",
)

PAYMENT_VERIFICATIONS = Counter(
    "payment_verifications_total",
    "Payment completion attempts by result",
    # issued|replayed|not_verified|gateway_error
    ["result"],
)

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "user" or "ip"
)
