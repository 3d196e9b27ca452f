"""
Prometheus instrumentation for the gateway.
"""

import logging
from typing import Optional, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from gpudiag.modules.breaker import CircuitState

logger = logging.getLogger(__name__)

GATEWAY_LATENCY_BUCKETS = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0,
)


class GatewayMetrics:
    """Gateway metrics on a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, prefix: str = "gpudiag"):
        self.registry = registry or CollectorRegistry()

        self.requests_total = Counter(
            f"{prefix}_requests_total",
            "Tool calls served, by tool and outcome",
            ["tool", "status"],
            registry=self.registry,
        )
        self.request_duration = Histogram(
            f"{prefix}_request_duration_seconds",
            "End-to-end tool call latency",
            ["tool"],
            registry=self.registry,
        )
        self.node_health = Gauge(
            f"{prefix}_node_health",
            "1 when the node's circuit is closed, else 0",
            ["node"],
            registry=self.registry,
        )
        self.circuit_state = Gauge(
            f"{prefix}_circuit_breaker_state",
            "Circuit state per node (0 closed, 1 open, 2 half-open)",
            ["node"],
            registry=self.registry,
        )
        self.circuit_transitions = Counter(
            f"{prefix}_circuit_transitions_total",
            "Circuit state transitions, by node and entered state",
            ["node", "state"],
            registry=self.registry,
        )
        self.active_requests = Gauge(
            f"{prefix}_active_requests",
            "Tool calls currently in flight",
            registry=self.registry,
        )
        self.gateway_request_duration = Histogram(
            f"{prefix}_gateway_request_duration_seconds",
            "Per-node agent call latency",
            ["node", "transport", "status"],
            buckets=GATEWAY_LATENCY_BUCKETS,
            registry=self.registry,
        )

    def observe_request(self, tool: str, status: str, seconds: float) -> None:
        self.requests_total.labels(tool=tool, status=status).inc()
        self.request_duration.labels(tool=tool).observe(seconds)

    def observe_dispatch(self, node: str, transport: str, status: str, seconds: float) -> None:
        self.gateway_request_duration.labels(
            node=node, transport=transport or "none", status=status
        ).observe(seconds)

    def on_state_change(self, node: str, state: CircuitState, healthy: bool) -> None:
        """Breaker callback: mirror the transition into gauges."""
        self.circuit_state.labels(node=node).set(state.code)
        self.node_health.labels(node=node).set(1 if healthy else 0)
        self.circuit_transitions.labels(node=node, state=state.value).inc()

    def render(self) -> Tuple[bytes, str]:
        """Exposition body and its content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
