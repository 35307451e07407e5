"""
Prometheus metrics for the payment flow client.

Tracks:
- Accepted state machine transitions
- Gateway calls by operation and outcome
- Gateway call duration
- Abandonment handling
- Bank catalog cache hits
"""
from prometheus_client import Counter, Histogram

# State machine metrics
flow_transitions_total = Counter(
    "payment_flow_transitions_total",
    "Total accepted payment flow state transitions",
    ["from_state", "to_state"],
)

# Gateway metrics
gateway_requests_total = Counter(
    "payment_flow_gateway_requests_total",
    "Total transaction gateway requests",
    ["operation", "status"],  # operation: initiate, confirm, cancel
)

gateway_request_duration_seconds = Histogram(
    "payment_flow_gateway_request_duration_seconds",
    "Transaction gateway call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Abandonment metrics
abandoned_flows_total = Counter(
    "payment_flow_abandoned_total",
    "Flows torn down before confirmation",
    ["reason", "action"],  # action: cancel_issued, no_action
)

# Catalog metrics
catalog_cache_hits_total = Counter(
    "payment_flow_catalog_cache_total",
    "Bank catalog cache lookups",
    ["result"],  # hit, miss
)
