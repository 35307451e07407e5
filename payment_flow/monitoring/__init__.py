"""Monitoring and observability package."""
from .logging import setup_logging
from .metrics import (
    abandoned_flows_total,
    catalog_cache_hits_total,
    flow_transitions_total,
    gateway_request_duration_seconds,
    gateway_requests_total,
)

__all__ = [
    "setup_logging",
    "abandoned_flows_total",
    "catalog_cache_hits_total",
    "flow_transitions_total",
    "gateway_request_duration_seconds",
    "gateway_requests_total",
]
