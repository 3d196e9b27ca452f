"""
Shared pytest fixtures for gateway tests.

This module provides common fixtures including:
- AgentFleet: httpx.MockTransport standing in for per-node agents
- An in-memory cluster populated with GPU nodes and agent pods
- A controllable clock for breaker and session timing
"""

import asyncio
import json
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gpudiag.modules.aggregator import FanOutAggregator
from gpudiag.modules.breaker import CircuitBreakerRegistry
from gpudiag.modules.cluster import ClusterDirectory, InMemoryClusterClient
from gpudiag.modules.cluster.fake import AGENT_LABELS
from gpudiag.modules.tools import GatewayTools, build_registry
from gpudiag.modules.transport import HTTPTransport

NAMESPACE = "gpu-diagnostics"
SERVICE = "gpu-diag-agent"
LABEL_SELECTOR = "app.kubernetes.io/name=gpu-diag-agent,app.kubernetes.io/component!=gateway"


# =============================================================================
# Agent Reply Builders
# =============================================================================


def tool_reply(data: Any, request_id: int = 1) -> Dict[str, Any]:
    """A successful tools/call response whose text content is JSON."""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "result": {"content": [{"type": "text", "text": json.dumps(data)}]},
    }


def init_reply() -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": 0,
        "result": {"protocolVersion": "2025-06-18", "capabilities": {}},
    }


def stdio_reply(data: Any) -> bytes:
    """What an agent prints for initialize + tools/call in oneshot mode."""
    return (json.dumps(init_reply()) + "\n" + json.dumps(tool_reply(data)) + "\n").encode()


def sample_inventory(count: int = 2, model: str = "NVIDIA A100-SXM4-80GB") -> Dict[str, Any]:
    return {
        "driver_version": "550.54.15",
        "cuda_version": "12.4",
        "devices": [
            {
                "index": i,
                "name": model,
                "uuid": f"GPU-{i:04d}",
                "memory": {"total_bytes": 80 * 1024 ** 3},
                "temperature": {"current_celsius": 41.0 + i},
                "utilization": {"gpu_percent": 12.0},
            }
            for i in range(count)
        ],
    }


# =============================================================================
# HTTP Agent Mocking Infrastructure
# =============================================================================


@dataclass
class AgentBehavior:
    """How one mocked agent answers."""
    payload: Any = None
    status_code: int = 200
    delay: float = 0.0
    refuse: bool = False
    body: Optional[bytes] = None
    fail_times: int = 0  # refuse this many calls, then answer


@dataclass
class AgentFleet:
    """
    Mock the agents' HTTP endpoints by host.

    Usage:
        def test_something(agent_fleet):
            agent_fleet.register("10.0.0.1", AgentBehavior(payload={"ok": True}))
            client = agent_fleet.client()
    """
    behaviors: Dict[str, AgentBehavior] = field(default_factory=dict)
    calls: List[httpx.Request] = field(default_factory=list)
    default: AgentBehavior = field(default_factory=lambda: AgentBehavior(refuse=True))

    def register(self, host: str, behavior: AgentBehavior) -> "AgentFleet":
        self.behaviors[host] = behavior
        return self

    def calls_to(self, host: str) -> int:
        return sum(1 for r in self.calls if r.url.host == host)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        behavior = self.behaviors.get(request.url.host, self.default)
        if behavior.delay:
            await asyncio.sleep(behavior.delay)
        if behavior.refuse:
            raise httpx.ConnectError("connection refused", request=request)
        if behavior.fail_times > 0:
            behavior.fail_times -= 1
            raise httpx.ConnectError("connection refused", request=request)
        if behavior.body is not None:
            return httpx.Response(behavior.status_code, content=behavior.body)
        return httpx.Response(behavior.status_code, json=tool_reply(behavior.payload))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def agent_fleet():
    """Fresh set of mocked HTTP agents."""
    return AgentFleet()


@pytest_asyncio.fixture
async def http_client(agent_fleet):
    """httpx client routed to the mocked agents."""
    client = agent_fleet.client()
    yield client
    await client.aclose()


# =============================================================================
# Cluster Fixtures
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cluster():
    """
    Three GPU nodes, each running a ready agent at 10.0.0.<n>.

    A gateway pod (excluded by the label selector) runs on gpu-node-1.
    """
    fake = InMemoryClusterClient()
    for n in (1, 2, 3):
        fake.add_node(
            f"gpu-node-{n}",
            labels={
                "nvidia.com/gpu.product": "NVIDIA-A100-SXM4-80GB",
                "kubernetes.io/arch": "amd64",
                "kubernetes.io/hostname": f"gpu-node-{n}",
            },
            gpu_capacity=8,
        )
        fake.add_agent(f"gpu-node-{n}", namespace=NAMESPACE, pod_ip=f"10.0.0.{n}")
    fake.add_pod(
        "gpu-diag-gateway-0",
        NAMESPACE,
        node_name="gpu-node-1",
        pod_ip="10.0.1.1",
        labels={**AGENT_LABELS, "app.kubernetes.io/component": "gateway"},
    )
    return fake


@pytest.fixture
def directory(cluster):
    return ClusterDirectory(
        cluster, namespace=NAMESPACE, service_name=SERVICE, label_selector=LABEL_SELECTOR
    )


@pytest.fixture
def breakers(clock):
    return CircuitBreakerRegistry(failure_threshold=3, reset_timeout=30.0, clock=clock)


# =============================================================================
# Tool Fixtures
# =============================================================================


@pytest.fixture
def tools(directory, breakers, http_client):
    """Gateway tools over the mocked HTTP agents, no retries."""
    aggregator = FanOutAggregator(
        directory,
        breakers,
        HTTPTransport(max_retries=0, client=http_client),
        default_timeout=5.0,
        aggregate_timeout=10.0,
    )
    return GatewayTools(aggregator, directory)


@pytest.fixture
def registry(tools):
    return build_registry(tools)
