"""
Tests for the HTTP surface: /mcp sessions and the probe endpoints.
"""

import json
import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import AgentBehavior, sample_inventory

import gpudiag.main as main
from gpudiag import SERVER_NAME, __version__
from gpudiag.config.provider import EnvConfigProvider
from gpudiag.modules.config import ConfigModule

SESSION_HEADER = "Mcp-Session-Id"

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-06-18",
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "1.0"},
    },
}


@pytest.fixture
def api(cluster, agent_fleet, monkeypatch):
    """TestClient over a gateway wired to the in-memory cluster and mocked agents."""
    for key in ("ROUTING_MODE", "ADDRESS_MODE", "CLUSTER_BACKEND", "GATEWAY_TRANSPORT"):
        monkeypatch.delenv(key, raising=False)
    gateway = main.build_gateway(
        EnvConfigProvider(ConfigModule()),
        cluster_client=cluster,
        http_client=agent_fleet.client(),
    )
    monkeypatch.setattr(main, "gateway", gateway)
    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def session_id(api):
    response = api.post("/mcp", json=INITIALIZE)
    return response.headers[SESSION_HEADER]


def call(api, session_id, message):
    return api.post("/mcp", json=message, headers={SESSION_HEADER: session_id})


# =============================================================================
# Sessions
# =============================================================================


class TestSessions:
    """initialize issues a session ID that later requests must echo."""

    def test_initialize_issues_session(self, api):
        response = api.post("/mcp", json=INITIALIZE)

        assert response.status_code == 200
        assert len(response.headers[SESSION_HEADER]) == 32
        body = response.json()
        assert body["id"] == 1
        assert body["result"]["serverInfo"] == {"name": SERVER_NAME, "version": __version__}

    def test_each_initialize_gets_new_session(self, api):
        first = api.post("/mcp", json=INITIALIZE).headers[SESSION_HEADER]
        second = api.post("/mcp", json=INITIALIZE).headers[SESSION_HEADER]
        assert first != second

    def test_rejected_initialize_keeps_no_session(self, api):
        response = api.post("/mcp", json={**INITIALIZE, "jsonrpc": "1.0"})

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32600
        assert SESSION_HEADER not in response.headers
        assert len(main.gateway.sessions) == 0

    def test_initialize_notification_keeps_no_session(self, api):
        message = {key: value for key, value in INITIALIZE.items() if key != "id"}

        response = api.post("/mcp", json=message)

        assert response.status_code == 202
        assert SESSION_HEADER not in response.headers
        assert len(main.gateway.sessions) == 0

    def test_missing_session_header(self, api):
        response = api.post("/mcp", json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"})

        assert response.status_code == 400
        body = response.json()
        assert body["id"] == 2
        assert body["error"]["code"] == -32600

    def test_unknown_session(self, api):
        response = call(api, "0" * 32, {"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
        assert response.status_code == 404

    def test_notification_accepted(self, api, session_id):
        response = call(api, session_id, {"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response.status_code == 202
        assert response.content == b""

    def test_terminate(self, api, session_id):
        assert api.delete("/mcp", headers={SESSION_HEADER: session_id}).status_code == 204
        assert api.delete("/mcp", headers={SESSION_HEADER: session_id}).status_code == 404
        response = call(api, session_id, {"jsonrpc": "2.0", "id": 3, "method": "ping"})
        assert response.status_code == 404

    def test_terminate_without_header(self, api):
        assert api.delete("/mcp").status_code == 400


# =============================================================================
# JSON-RPC over HTTP
# =============================================================================


class TestMcpEndpoint:
    def test_parse_error(self, api):
        response = api.post("/mcp", content=b"{broken", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700
        assert response.json()["id"] is None

    def test_deeply_nested_body(self, api):
        response = api.post("/mcp", content=b"[" * 200000, headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    def test_batch_rejected(self, api, session_id):
        response = call(api, session_id, [{"jsonrpc": "2.0", "id": 1, "method": "ping"}])
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    def test_tools_list(self, api, session_id):
        response = call(api, session_id, {"jsonrpc": "2.0", "id": 2, "method": "tools/list"})

        assert response.status_code == 200
        names = [t["name"] for t in response.json()["result"]["tools"]]
        assert names == [
            "echo_test",
            "list_gpu_nodes",
            "get_gpu_inventory",
            "get_gpu_health",
            "analyze_xid_errors",
            "describe_gpu_node",
        ]

    def test_tool_call(self, api, session_id, agent_fleet):
        for n in (1, 2, 3):
            agent_fleet.register(f"10.0.0.{n}", AgentBehavior(payload=sample_inventory(4)))

        response = call(api, session_id, {
            "jsonrpc": "2.0",
            "id": "inv",
            "method": "tools/call",
            "params": {"name": "get_gpu_inventory", "arguments": {}},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "inv"
        inventory = json.loads(body["result"]["content"][0]["text"])
        assert inventory["cluster_summary"]["total_gpus"] == 12

    def test_tool_error_is_http_200(self, api, session_id):
        response = call(api, session_id, {
            "jsonrpc": "2.0",
            "id": 4,
            "method": "tools/call",
            "params": {"name": "get_gpu_health", "arguments": {"node_name": "gpu-node-404"}},
        })

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -31003

    def test_get_not_allowed(self, api):
        assert api.get("/mcp").status_code == 405

    def test_not_initialized(self, monkeypatch):
        monkeypatch.setattr(main, "gateway", None)
        client = TestClient(main.app)

        response = client.post("/mcp", json=INITIALIZE)

        assert response.status_code == 503


# =============================================================================
# Probes
# =============================================================================


class TestProbes:
    def test_healthz(self, api):
        assert api.get("/healthz").json() == {"status": "healthy"}

    def test_readyz(self, api):
        response = api.get("/readyz")
        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_readyz_before_startup(self, monkeypatch):
        monkeypatch.setattr(main, "gateway", None)
        monkeypatch.setattr(main, "ready", False)

        response = TestClient(main.app).get("/readyz")

        assert response.status_code == 503
        assert response.json() == {"status": "not ready"}

    def test_version(self, api):
        assert api.get("/version").json() == {"server": SERVER_NAME, "version": __version__}

    def test_metrics(self, api, session_id):
        call(api, session_id, {
            "jsonrpc": "2.0",
            "id": 5,
            "method": "tools/call",
            "params": {"name": "echo_test", "arguments": {"message": "m"}},
        })

        response = api.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'gpudiag_requests_total{tool="echo_test",status="success"} 1.0' in response.text


# =============================================================================
# Wiring
# =============================================================================


class TestBuildGateway:
    """Transport and backend selection from configuration."""

    def test_http_primary_with_exec_fallback(self, cluster, monkeypatch):
        monkeypatch.delenv("ROUTING_MODE", raising=False)

        gateway = main.build_gateway(EnvConfigProvider(ConfigModule()), cluster_client=cluster)

        assert gateway.aggregator.transport.name == "http"
        assert gateway.aggregator.fallback.name == "exec"
        assert len(gateway.closers) == 1

    def test_exec_routing(self, cluster, monkeypatch):
        monkeypatch.setenv("ROUTING_MODE", "exec")

        gateway = main.build_gateway(EnvConfigProvider(ConfigModule()), cluster_client=cluster)

        assert gateway.aggregator.transport.name == "exec"
        assert gateway.aggregator.fallback is None
        assert gateway.closers == []

    def test_memory_backend(self, monkeypatch):
        monkeypatch.setenv("CLUSTER_BACKEND", "memory")

        client = main.build_cluster_client(EnvConfigProvider(ConfigModule()))

        assert client.list_pods("gpu-diagnostics") == []
