"""
============================================================================
Silver Settlement Core
Observability Module - Prometheus Metrics
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Exposes Prometheus metrics

============================================================================
"""

from app.observability.metrics import (
    HTTP_REQUESTS,
    HTTP_LATENCY,
    REFERENCE_PRICE_GAUGE,
    TOKEN_SUPPLY_GAUGE,
    record_http_request,
    update_reference_price,
    update_token_supply,
)

__all__ = [
    "HTTP_REQUESTS",
    "HTTP_LATENCY",
    "REFERENCE_PRICE_GAUGE",
    "TOKEN_SUPPLY_GAUGE",
    "record_http_request",
    "update_reference_price",
    "update_token_supply",
]
