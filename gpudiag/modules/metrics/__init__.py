"""
Metrics Module - Black Box Interface

Purpose: Prometheus counters, gauges and histograms for the gateway
Interface: GatewayMetrics (observe_request, observe_dispatch, on_state_change, render)
Hidden: Metric names, label sets, registry management
"""

from .metrics import GATEWAY_LATENCY_BUCKETS, GatewayMetrics

__all__ = ["GATEWAY_LATENCY_BUCKETS", "GatewayMetrics"]
