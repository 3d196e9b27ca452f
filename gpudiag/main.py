#!/usr/bin/env python3
"""
GPU Diagnostics Gateway - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Serves MCP over HTTP (or stdio)

All business logic is in the modules, following black box principles.
"""

import asyncio
import json
import logging
import logging.config as log_config
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Header, Request, Response
from fastapi.responses import JSONResponse

from gpudiag import SERVER_NAME, __version__
from gpudiag.config.provider import ConfigProvider, EnvConfigProvider
from gpudiag.logging_config import get_logging_config

# Import modules through their black box interfaces
from gpudiag.modules.aggregator import FanOutAggregator
from gpudiag.modules.breaker import CircuitBreakerRegistry
from gpudiag.modules.cluster import (
    ClusterClient,
    ClusterDirectory,
    InMemoryClusterClient,
    KubernetesClusterClient,
)
from gpudiag.modules.config import get_config
from gpudiag.modules.metrics import GatewayMetrics
from gpudiag.modules.protocol import (
    ErrorCode,
    ProtocolDispatcher,
    ProtocolResponse,
    Session,
    SessionStore,
    open_stdio,
    serve_stdio,
)
from gpudiag.modules.tools import GatewayTools, ToolRegistry, build_registry
from gpudiag.modules.transport import ExecTransport, HTTPTransport

# Get configuration
config = get_config()

# Configure logging with probe suppression
log_config.dictConfig(get_logging_config(config.get("log_level", "INFO")))
logger = logging.getLogger(__name__)

# Configuration provider (centralized config access)
config_provider: ConfigProvider = EnvConfigProvider(config)

SESSION_HEADER = "Mcp-Session-Id"
# How often a running POST /mcp checks whether its caller went away
DISCONNECT_POLL_INTERVAL = 0.25


class CallerDisconnected(Exception):
    """The HTTP caller went away before the response was ready."""


@dataclass
class Gateway:
    """Everything one running gateway needs, wired together."""

    directory: ClusterDirectory
    breakers: CircuitBreakerRegistry
    metrics: GatewayMetrics
    aggregator: FanOutAggregator
    registry: ToolRegistry
    dispatcher: ProtocolDispatcher
    sessions: SessionStore
    closers: List[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for transport in self.closers:
            await transport.aclose()


def build_cluster_client(provider: ConfigProvider) -> ClusterClient:
    """Pick the cluster backend named in configuration."""
    directory_config = provider.get_directory_config()
    if directory_config.backend == "memory":
        logger.warning("Using in-memory cluster backend; no agents will be discovered")
        return InMemoryClusterClient()
    return KubernetesClusterClient(kubeconfig=directory_config.kubeconfig)


def build_gateway(
    provider: ConfigProvider,
    cluster_client: Optional[ClusterClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Gateway:
    """
    Wire the modules together.

    Args:
        provider: Configuration provider
        cluster_client: Cluster backend (built from configuration if omitted)
        http_client: httpx client for the HTTP transport (created if omitted)

    Returns:
        A ready-to-serve Gateway
    """
    directory_config = provider.get_directory_config()
    transport_config = provider.get_transport_config()
    breaker_config = provider.get_breaker_config()
    api_config = provider.get_api_config()

    cluster_client = cluster_client or build_cluster_client(provider)
    directory = ClusterDirectory(
        cluster_client,
        namespace=directory_config.namespace,
        service_name=directory_config.service_name,
        label_selector=directory_config.label_selector,
    )

    metrics = GatewayMetrics()
    breakers = CircuitBreakerRegistry(
        failure_threshold=breaker_config.failure_threshold,
        reset_timeout=breaker_config.reset_timeout,
        on_state_change=metrics.on_state_change,
    )

    exec_transport = ExecTransport(cluster_client, container=transport_config.agent_container)
    closers = []
    if transport_config.uses_exec:
        primary, fallback = exec_transport, None
    else:
        http_transport = HTTPTransport(
            port=transport_config.agent_port,
            address_mode=transport_config.address_mode,
            max_retries=transport_config.max_retries,
            base_delay=transport_config.retry_base_delay,
            max_delay=transport_config.retry_max_delay,
            client=http_client,
        )
        closers.append(http_transport)
        primary, fallback = http_transport, exec_transport

    aggregator = FanOutAggregator(
        directory,
        breakers,
        primary,
        fallback=fallback,
        default_timeout=transport_config.exec_timeout,
        aggregate_timeout=transport_config.aggregate_timeout,
        metrics=metrics,
    )
    registry = build_registry(GatewayTools(aggregator, directory))
    dispatcher = ProtocolDispatcher(registry, metrics=metrics)

    logger.info(
        f"Gateway wired: routing={primary.name}, namespace={directory_config.namespace}, "
        f"tools={registry.names()}"
    )
    return Gateway(
        directory=directory,
        breakers=breakers,
        metrics=metrics,
        aggregator=aggregator,
        registry=registry,
        dispatcher=dispatcher,
        sessions=SessionStore(ttl=api_config.session_ttl),
        closers=closers,
    )


# Module instances (initialized at startup)
gateway: Optional[Gateway] = None
ready = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle - initialize and cleanup resources.
    """
    global gateway, ready

    # Startup
    logger.info("Starting GPU diagnostics gateway...")
    if gateway is None:
        gateway = build_gateway(config_provider)
    ready = True
    logger.info("GPU diagnostics gateway started successfully")

    yield

    # Shutdown
    logger.info("Shutting down GPU diagnostics gateway...")
    ready = False
    await gateway.aclose()
    logger.info("GPU diagnostics gateway shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="GPU Diagnostics Gateway",
    description="MCP gateway fanning GPU diagnostics out to per-node agents",
    version=__version__,
    lifespan=lifespan,
)


def _rpc_error(status_code: int, code: ErrorCode, message: str, request_id: Any = None) -> JSONResponse:
    body = ProtocolResponse.failure(request_id, code, message).to_dict()
    return JSONResponse(status_code=status_code, content=body)


async def _run_until_disconnect(request: Request, coro) -> Any:
    """
    Await coro, cancelling it if the HTTP caller disconnects first.

    Returns:
        The coroutine's result

    Raises:
        CallerDisconnected: If the caller went away
    """
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Caller disconnected, cancelling request")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise CallerDisconnected()
    finally:
        if not task.done():
            task.cancel()


# MCP Endpoints


@app.post("/mcp")
async def mcp_endpoint(
    request: Request,
    mcp_session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
):
    """
    JSON-RPC 2.0 endpoint.

    initialize creates a session and returns its ID in the Mcp-Session-Id
    header; every later request must echo it.

    Returns:
        200: JSON-RPC response (result or error)
        202: Notification accepted
        400: Parse error, batch, or missing session header
        404: Unknown or expired session
        503: Gateway not initialized
    """
    if gateway is None:
        return _rpc_error(503, ErrorCode.INTERNAL_ERROR, "Service not initialized")

    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (ValueError, RecursionError):
        return _rpc_error(400, ErrorCode.PARSE_ERROR, "Parse error")

    if isinstance(payload, list):
        return _rpc_error(400, ErrorCode.INVALID_REQUEST, "Batch requests are not supported")

    method = payload.get("method") if isinstance(payload, dict) else None
    headers = {}
    if method == "initialize":
        session = gateway.sessions.create()
        headers[SESSION_HEADER] = session.session_id
    else:
        if not mcp_session_id:
            return _rpc_error(
                400, ErrorCode.INVALID_REQUEST, f"Missing {SESSION_HEADER} header",
                payload.get("id") if isinstance(payload, dict) else None,
            )
        session = gateway.sessions.get(mcp_session_id)
        if session is None:
            return _rpc_error(
                404, ErrorCode.INVALID_REQUEST, "Session not found",
                payload.get("id") if isinstance(payload, dict) else None,
            )

    try:
        response = await _run_until_disconnect(
            request, gateway.dispatcher.handle_message(payload, session)
        )
    except CallerDisconnected:
        if method == "initialize":
            gateway.sessions.delete(session.session_id)
        return Response(status_code=499)

    if method == "initialize" and (response is None or "error" in response):
        # Rejected initialize: the caller never learns the ID, so drop it
        gateway.sessions.delete(session.session_id)
        headers = {}

    if response is None:
        return Response(status_code=202, headers=headers)
    return JSONResponse(content=response, headers=headers)


@app.delete("/mcp")
async def mcp_terminate(mcp_session_id: Optional[str] = Header(None, alias=SESSION_HEADER)):
    """Explicitly end a session."""
    if gateway is None or not mcp_session_id:
        return Response(status_code=400)
    if not gateway.sessions.delete(mcp_session_id):
        return Response(status_code=404)
    return Response(status_code=204)


# Health/Monitoring Endpoints


@app.get("/healthz")
async def healthz():
    """
    Liveness probe.

    Returns:
        200: Process is running
    """
    return {"status": "healthy"}


@app.get("/readyz")
async def readyz():
    """
    Readiness probe.

    Returns:
        200: Gateway wired and serving
        503: Startup not finished
    """
    if not ready or gateway is None:
        return JSONResponse(status_code=503, content={"status": "not ready"})
    return {"status": "ready"}


@app.get("/version")
async def version():
    """Server name and version."""
    return {"server": SERVER_NAME, "version": __version__}


@app.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns:
        Text exposition of the gateway's registry
    """
    if gateway is None:
        return Response(content="", status_code=503)
    body, content_type = gateway.metrics.render()
    return Response(content=body, media_type=content_type)


# Error handlers


@app.exception_handler(ValueError)
async def validation_error_handler(request, exc):
    """Handle validation errors."""
    logger.error(f"Validation error: {exc}")
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def run_stdio(max_requests: int = 0) -> int:
    """Serve MCP over stdin/stdout with one implicit session."""
    stdio_gateway = build_gateway(config_provider)
    try:
        reader, writer = await open_stdio()
        return await serve_stdio(
            stdio_gateway.dispatcher, reader, writer,
            max_requests=max_requests, session=Session(session_id="stdio"),
        )
    finally:
        await stdio_gateway.aclose()


def run() -> None:
    """Console entry point."""
    api_config = config_provider.get_api_config()
    if api_config.transport == "stdio":
        asyncio.run(run_stdio(api_config.oneshot))
        return

    uvicorn.run(
        app,
        host=api_config.host,
        port=api_config.port,
        log_level=api_config.log_level.lower(),
        log_config=get_logging_config(api_config.log_level),
    )


if __name__ == "__main__":
    run()
