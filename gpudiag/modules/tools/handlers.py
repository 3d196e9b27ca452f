"""
Gateway tool handlers.

list_gpu_nodes answers from the directory alone. The GPU tools fan out
to the agents and shape the merged replies. describe_gpu_node joins one
agent's reply with the node's Kubernetes metadata.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from gpudiag.modules.aggregator import AggregateResult, FanOutAggregator
from gpudiag.modules.cluster import ClusterDirectory, DirectoryError

from .registry import ToolRegistry, ToolSpec
from .schemas import DescribeNodeArgs, EchoArgs, FanOutArgs, InventoryArgs, NoArgs
from .shaping import flatten_gpu_info, shape_default, shape_inventory

logger = logging.getLogger(__name__)

ECHO_DESCRIPTION = "Echo test tool for validating MCP protocol"
LIST_NODES_DESCRIPTION = (
    "Lists the Kubernetes nodes running a GPU diagnostics agent, with pod "
    "names and readiness. Call this first to find out which nodes can be "
    "queried with the other GPU tools."
)
INVENTORY_DESCRIPTION = (
    "Cluster-wide GPU inventory: a summary (total nodes, GPUs and GPU "
    "types) plus a per-node GPU list with model, UUID, memory, temperature "
    "and utilization. Optionally adds Kubernetes GPU capacity and allocation."
)
HEALTH_DESCRIPTION = (
    "Analyze GPU operational health (temperature, throttling, ECC errors, "
    "memory usage and power) on every node. Each node reports a 0-100 "
    "health score with a status assessment and recommendations."
)
XID_DESCRIPTION = (
    "Analyze NVIDIA XID errors from kernel logs on every node. XIDs are "
    "driver-reported hardware faults such as memory corruption, bus "
    "failures or thermal problems. Returns structured errors with severity "
    "and recommended actions. Agents may need elevated permissions to read "
    "kernel logs."
)
DESCRIBE_DESCRIPTION = (
    "Full view of one GPU node: Kubernetes labels, taints, conditions and "
    "GPU capacity/allocation combined with the agent's hardware inventory."
)


class GatewayTools:
    """Handlers bound to one aggregator and directory."""

    def __init__(self, aggregator: FanOutAggregator, directory: ClusterDirectory):
        self.aggregator = aggregator
        self.directory = directory

    async def echo_test(self, args: EchoArgs) -> Dict[str, Any]:
        return {
            "echo": args.message,
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "mode": "gateway",
        }

    async def list_gpu_nodes(self, args: NoArgs) -> Dict[str, Any]:
        targets = await self.directory.list_targets()
        nodes = [
            {
                "name": t.node_name,
                "pod_name": t.pod_name,
                "pod_ip": t.pod_ip,
                "ready": t.ready,
            }
            for t in targets
        ]
        ready_count = sum(1 for t in targets if t.ready)
        logger.info(f"list_gpu_nodes: {len(nodes)} agents, {ready_count} ready")
        return {
            "status": "success",
            "node_count": len(nodes),
            "ready_count": ready_count,
            "nodes": nodes,
        }

    async def _fan_out(self, tool_name: str, args: FanOutArgs) -> AggregateResult:
        """
        Run an agent tool on one node or all of them.

        Raises:
            AggregateFailure: If no agent succeeded
            TargetNotFoundError: If node_name has no ready agent
            DirectoryError: If discovery fails
        """
        if args.node_name:
            result = await self.aggregator.route_to_node(
                args.node_name, tool_name, timeout=args.timeout_seconds
            )
        else:
            result = await self.aggregator.aggregate(tool_name, timeout=args.timeout_seconds)
        result.raise_for_failure()
        return result

    async def get_gpu_health(self, args: FanOutArgs) -> Dict[str, Any]:
        return shape_default(await self._fan_out("get_gpu_health", args))

    async def analyze_xid_errors(self, args: FanOutArgs) -> Dict[str, Any]:
        return shape_default(await self._fan_out("analyze_xid_errors", args))

    async def _node_metadata(self, node_name: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.directory.describe_node(node_name)
        except (DirectoryError, LookupError) as e:
            logger.warning(f"No Kubernetes metadata for {node_name}: {e}")
            return None

    async def get_gpu_inventory(self, args: InventoryArgs) -> Dict[str, Any]:
        result = await self._fan_out("get_gpu_inventory", args)
        metadata = None
        if args.include_k8s_metadata:
            names = [r.node_name for r in result.results if r.node_name]
            described = await asyncio.gather(*(self._node_metadata(n) for n in names))
            metadata = {n: m for n, m in zip(names, described) if m is not None}
        return shape_inventory(result, metadata)

    async def describe_gpu_node(self, args: DescribeNodeArgs) -> Dict[str, Any]:
        """
        Kubernetes metadata plus the agent's inventory for one node.

        Kubernetes metadata is mandatory; an unreachable agent only
        downgrades the status to partial.
        """
        node_task = asyncio.ensure_future(self.directory.describe_node(args.node_name))
        try:
            result = await self.aggregator.route_to_node(
                args.node_name, "get_gpu_inventory", timeout=args.timeout_seconds
            )
        except BaseException:
            node_task.cancel()
            await asyncio.gather(node_task, return_exceptions=True)
            raise
        node = await node_task

        entry = result.results[0]
        agent: Dict[str, Any] = {"pod_name": entry.pod_name}
        if entry.ok:
            inventory = entry.payload if isinstance(entry.payload, dict) else {}
            for key in ("driver_version", "cuda_version"):
                if key in inventory:
                    agent[key] = inventory[key]
            devices = inventory.get("devices")
            agent["gpus"] = [flatten_gpu_info(d) for d in devices] if isinstance(devices, list) else []
        else:
            agent["error"] = entry.error
            agent["failure"] = entry.failure.value

        return {
            "status": "success" if entry.ok else "partial",
            "node": node,
            "agent": agent,
        }


def build_registry(tools: GatewayTools) -> ToolRegistry:
    """Register the gateway's static tool set, in tools/list order."""
    registry = ToolRegistry()
    registry.register(ToolSpec("echo_test", ECHO_DESCRIPTION, EchoArgs, tools.echo_test))
    registry.register(ToolSpec("list_gpu_nodes", LIST_NODES_DESCRIPTION, NoArgs, tools.list_gpu_nodes))
    registry.register(ToolSpec("get_gpu_inventory", INVENTORY_DESCRIPTION, InventoryArgs, tools.get_gpu_inventory))
    registry.register(ToolSpec("get_gpu_health", HEALTH_DESCRIPTION, FanOutArgs, tools.get_gpu_health))
    registry.register(ToolSpec("analyze_xid_errors", XID_DESCRIPTION, FanOutArgs, tools.analyze_xid_errors))
    registry.register(ToolSpec("describe_gpu_node", DESCRIBE_DESCRIPTION, DescribeNodeArgs, tools.describe_gpu_node))
    return registry
