"""
GPU Diagnostics Gateway

Fans MCP tool calls out to the per-node GPU agents of a Kubernetes
cluster and merges their replies into one response.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- config: Environment-backed configuration
- cluster: Agent discovery through the orchestration API
- endpoint: Target to network address resolution
- transport: One request to one agent (HTTP or exec)
- breaker: Per-target circuit breaking
- aggregator: Concurrent fan-out and deterministic merge
- tools: Tool registry, argument schemas and result shaping
- protocol: JSON-RPC dispatch, sessions and stdio serving
- metrics: Prometheus instrumentation
"""

__version__ = "1.0.0"
SERVER_NAME = "gpudiag-gateway"
