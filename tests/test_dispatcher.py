"""
Tests for the JSON-RPC dispatcher and the session store.
"""

import json
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import AgentBehavior

from gpudiag import SERVER_NAME, __version__
from gpudiag.modules.cluster import DirectoryError
from gpudiag.modules.metrics import GatewayMetrics
from gpudiag.modules.protocol import (
    ErrorCode,
    ProtocolDispatcher,
    ProtocolRequest,
    ProtocolResponse,
    Session,
    SessionState,
    SessionStore,
)
from gpudiag.modules.transport import MCP_PROTOCOL_VERSION


def rpc(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    if request_id is not None:
        message["id"] = request_id
    return message


def tool_call(name, arguments=None, request_id=1):
    params = {"name": name}
    if arguments is not None:
        params["arguments"] = arguments
    return rpc("tools/call", params, request_id)


def tool_result(response):
    """Decode the JSON text content of a successful tools/call."""
    assert "error" not in response, response
    result = response["result"]
    assert result["isError"] is False
    return json.loads(result["content"][0]["text"])


@pytest.fixture
def metrics():
    return GatewayMetrics()


@pytest.fixture
def dispatcher(registry, metrics):
    return ProtocolDispatcher(registry, metrics=metrics)


@pytest.fixture
def session():
    return Session(session_id="test")


@pytest.fixture
def ready_session():
    return Session(session_id="test", state=SessionState.INITIALIZED)


# =============================================================================
# Message Models
# =============================================================================


class TestModels:
    def test_notification_detection(self):
        assert ProtocolRequest.model_validate(rpc("ping", request_id=None)).is_notification
        assert not ProtocolRequest.model_validate({"jsonrpc": "2.0", "method": "ping", "id": None}).is_notification
        assert not ProtocolRequest.model_validate(rpc("ping", request_id="abc")).is_notification

    def test_response_shape(self):
        assert ProtocolResponse.success(7, None).to_dict() == {"jsonrpc": "2.0", "id": 7, "result": {}}
        assert ProtocolResponse.failure(7, ErrorCode.UNKNOWN_TOOL, "nope", {"x": 1}).to_dict() == {
            "jsonrpc": "2.0",
            "id": 7,
            "error": {"code": -31001, "message": "nope", "data": {"x": 1}},
        }


# =============================================================================
# Framing Errors
# =============================================================================


class TestFramingErrors:
    """Malformed input never raises; it produces a JSON-RPC error."""

    @pytest.mark.asyncio
    async def test_parse_error(self, dispatcher, session):
        response = await dispatcher.handle_raw(b"{not json", session)
        assert response["id"] is None
        assert response["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_deeply_nested_is_parse_error(self, dispatcher, session):
        response = await dispatcher.handle_raw(b"[" * 200000, session)
        assert response["id"] is None
        assert response["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_batch_rejected(self, dispatcher, session):
        response = await dispatcher.handle_raw(json.dumps([rpc("ping")]), session)
        assert response["error"]["code"] == -32600
        assert "Batch" in response["error"]["message"]

    @pytest.mark.asyncio
    async def test_non_object(self, dispatcher, session):
        response = await dispatcher.handle_message("ping", session)
        assert response["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_wrong_version_echoes_id(self, dispatcher, session):
        response = await dispatcher.handle_message({"jsonrpc": "1.0", "method": "ping", "id": 9}, session)
        assert response["id"] == 9
        assert response["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_missing_method(self, dispatcher, session):
        response = await dispatcher.handle_message({"jsonrpc": "2.0", "id": 3}, session)
        assert response["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_unusable_id_becomes_null(self, dispatcher, session):
        response = await dispatcher.handle_message({"jsonrpc": "2.0", "id": {"a": 1}}, session)
        assert response["id"] is None


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """initialize gates everything except ping."""

    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher, session):
        response = await dispatcher.handle_message(
            rpc("initialize", {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "inspector", "version": "0.1"},
            }),
            session,
        )

        assert response["result"] == {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }
        assert session.initialized
        assert session.client_info["name"] == "inspector"

    @pytest.mark.asyncio
    async def test_tools_before_initialize(self, dispatcher, session):
        response = await dispatcher.handle_message(rpc("tools/list"), session)
        assert response["error"] == {"code": -32002, "message": "Server not initialized"}

    @pytest.mark.asyncio
    async def test_ping_before_initialize(self, dispatcher, session):
        response = await dispatcher.handle_message(rpc("ping", request_id="p1"), session)
        assert response == {"jsonrpc": "2.0", "id": "p1", "result": {}}

    @pytest.mark.asyncio
    async def test_initialized_notification(self, dispatcher, session):
        response = await dispatcher.handle_message(
            rpc("notifications/initialized", request_id=None), session
        )
        assert response is None

    @pytest.mark.asyncio
    async def test_notification_errors_are_dropped(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(rpc("does/not/exist", request_id=None), ready_session)
        assert response is None

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(rpc("resources/list"), ready_session)
        assert response["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_tools_list(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(rpc("tools/list"), ready_session)
        names = [t["name"] for t in response["result"]["tools"]]
        assert names[0] == "echo_test"
        assert len(names) == 6
        assert all("inputSchema" in t for t in response["result"]["tools"])


# =============================================================================
# tools/call
# =============================================================================


class TestToolCall:
    """Tool results and the error code mapping."""

    @pytest.mark.asyncio
    async def test_echo(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(tool_call("echo_test", {"message": "hi"}), ready_session)
        assert tool_result(response)["echo"] == "hi"

    @pytest.mark.asyncio
    async def test_result_text_is_indented_json(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(tool_call("list_gpu_nodes", {}), ready_session)
        text = response["result"]["content"][0]["text"]
        assert response["result"]["content"][0]["type"] == "text"
        assert text.startswith("{\n  ")

    @pytest.mark.asyncio
    async def test_missing_name(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(rpc("tools/call", {}), ready_session)
        assert response["error"]["code"] == -32602

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(tool_call("format_disk"), ready_session)
        assert response["error"]["code"] == -31001

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(
            tool_call("get_gpu_health", {"timeout_seconds": 9000}), ready_session
        )
        error = response["error"]
        assert error["code"] == -32602
        assert error["data"]["errors"][0]["loc"] == ["timeout_seconds"]
        json.dumps(error)

    @pytest.mark.asyncio
    async def test_aggregate_failure(self, dispatcher, ready_session):
        # Every agent refuses
        response = await dispatcher.handle_message(tool_call("get_gpu_health", {}), ready_session)

        error = response["error"]
        assert error["code"] == -31002
        assert error["data"]["attempted"] == 3
        assert error["data"]["succeeded"] == 0
        assert len(error["data"]["failures"]) == 3

    @pytest.mark.asyncio
    async def test_partial_success_is_not_an_error(self, dispatcher, ready_session, agent_fleet):
        agent_fleet.register("10.0.0.2", AgentBehavior(payload={"health_score": 90}))

        response = await dispatcher.handle_message(tool_call("get_gpu_health", {}), ready_session)

        result = tool_result(response)
        assert result["status"] == "partial"
        assert result["success_count"] == 1

    @pytest.mark.asyncio
    async def test_target_not_found(self, dispatcher, ready_session):
        response = await dispatcher.handle_message(
            tool_call("describe_gpu_node", {"node_name": "gpu-node-404"}), ready_session
        )
        error = response["error"]
        assert error["code"] == -31003
        assert error["data"] == {"node_name": "gpu-node-404"}

    @pytest.mark.asyncio
    async def test_discovery_failure(self, dispatcher, ready_session, cluster):
        cluster.fail_with = RuntimeError("connection to apiserver lost")

        response = await dispatcher.handle_message(tool_call("list_gpu_nodes", {}), ready_session)

        error = response["error"]
        assert error["code"] == -31004
        assert error["message"].startswith("discovery failed:")

    @pytest.mark.asyncio
    async def test_internal_error(self, ready_session):
        registry = MagicMock()
        registry.call = AsyncMock(side_effect=KeyError("boom"))
        dispatcher = ProtocolDispatcher(registry)

        response = await dispatcher.handle_message(tool_call("anything"), ready_session)

        assert response["error"]["code"] == -32603

    @pytest.mark.asyncio
    async def test_directory_error_subclass_mapped(self, ready_session):
        registry = MagicMock()
        registry.call = AsyncMock(side_effect=DirectoryError("list_pods failed: timeout"))
        dispatcher = ProtocolDispatcher(registry)

        response = await dispatcher.handle_message(tool_call("list_gpu_nodes"), ready_session)

        assert response["error"]["code"] == -31004

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, dispatcher, ready_session, metrics):
        await dispatcher.handle_message(tool_call("echo_test", {"message": "x"}), ready_session)
        await dispatcher.handle_message(tool_call("nope"), ready_session)

        sample = metrics.registry.get_sample_value
        assert sample("gpudiag_requests_total", {"tool": "echo_test", "status": "success"}) == 1.0
        assert sample("gpudiag_requests_total", {"tool": "nope", "status": "unknown_tool"}) == 1.0
        assert sample("gpudiag_active_requests") == 0.0


# =============================================================================
# Session Store
# =============================================================================


class TestSessionStore:
    def test_create_and_get(self, clock):
        store = SessionStore(ttl=60, clock=clock)
        session = store.create()

        assert len(session.session_id) == 32
        assert store.get(session.session_id) is session
        assert not session.initialized

    def test_sliding_expiry(self, clock):
        store = SessionStore(ttl=60, clock=clock)
        session = store.create()

        clock.advance(50)
        assert store.get(session.session_id) is session
        clock.advance(50)
        assert store.get(session.session_id) is session
        clock.advance(61)
        assert store.get(session.session_id) is None
        assert len(store) == 0

    def test_delete(self, clock):
        store = SessionStore(clock=clock)
        session = store.create()
        assert store.delete(session.session_id) is True
        assert store.delete(session.session_id) is False

    def test_purge(self, clock):
        store = SessionStore(ttl=10, clock=clock)
        store.create()
        clock.advance(5)
        keep = store.create()
        clock.advance(6)

        assert store.purge_expired() == 1
        assert store.get(keep.session_id) is keep

    def test_create_drops_abandoned_sessions(self, clock):
        store = SessionStore(ttl=10, clock=clock)
        for _ in range(1000):
            store.create()

        clock.advance(10000)
        fresh = store.create()

        assert len(store) == 1
        assert store.get(fresh.session_id) is fresh
