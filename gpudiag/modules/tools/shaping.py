"""
Turn an AggregateResult into the JSON shape callers see.
"""

from typing import Any, Dict, List, Optional

from gpudiag.modules.aggregator import AggregateResult, NodeResult

BYTES_PER_GIB = 1024 ** 3


def _status(result: AggregateResult) -> str:
    succeeded = len(result.successes)
    if succeeded == 0:
        return "error"
    if result.failures:
        return "partial"
    return "success"


def _entry(node: NodeResult) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"node_name": node.node_name, "pod_name": node.pod_name}
    if node.ok:
        entry["data"] = node.payload
    else:
        entry["error"] = node.error
        entry["failure"] = node.failure.value
    return entry


def shape_default(result: AggregateResult) -> Dict[str, Any]:
    """
    Generic per-node listing.

    Returns:
        status (success | partial | error), node_count, success_count,
        error_count, skipped_count and nodes in directory order
    """
    return {
        "status": _status(result),
        "node_count": result.attempted,
        "success_count": len(result.successes),
        "error_count": len(result.failures),
        "skipped_count": result.skipped,
        "nodes": [_entry(n) for n in result.results],
    }


def flatten_gpu_info(device: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Reduce one agent device record to the cluster-view fields."""
    if not isinstance(device, dict):
        return {"error": "nil device data"}

    gpu: Dict[str, Any] = {}
    for key in ("index", "name", "uuid"):
        if key in device:
            gpu[key] = device[key]

    memory = device.get("memory")
    if isinstance(memory, dict) and isinstance(memory.get("total_bytes"), (int, float)):
        gpu["memory_total_gb"] = memory["total_bytes"] / BYTES_PER_GIB

    temperature = device.get("temperature")
    if isinstance(temperature, dict) and isinstance(temperature.get("current_celsius"), (int, float)):
        gpu["temperature_c"] = int(temperature["current_celsius"])

    utilization = device.get("utilization")
    if isinstance(utilization, dict) and isinstance(utilization.get("gpu_percent"), (int, float)):
        gpu["utilization_percent"] = int(utilization["gpu_percent"])

    return gpu


def shape_inventory(
    result: AggregateResult,
    k8s_metadata: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Cluster-wide GPU inventory.

    Args:
        result: Fan-out result of get_gpu_inventory
        k8s_metadata: Optional describe_node() output keyed by node name

    Returns:
        status, cluster_summary (total_nodes, ready_nodes, total_gpus,
        sorted gpu_types and, with metadata, GPU capacity counters) and
        per-node entries with flattened GPU lists
    """
    total_gpus = 0
    gpu_types = set()
    nodes: List[Dict[str, Any]] = []

    for node in result.results:
        entry: Dict[str, Any] = {"name": node.node_name}
        if not node.ok:
            entry["status"] = "error"
            entry["error"] = node.error
            entry["failure"] = node.failure.value
        else:
            entry["status"] = "ready"
            inventory = node.payload
            if isinstance(inventory, dict):
                for key in ("driver_version", "cuda_version"):
                    if key in inventory:
                        entry[key] = inventory[key]
                devices = inventory.get("devices")
                if isinstance(devices, list):
                    total_gpus += len(devices)
                    gpus = []
                    for device in devices:
                        if isinstance(device, dict) and isinstance(device.get("name"), str):
                            gpu_types.add(device["name"])
                        gpus.append(flatten_gpu_info(device))
                    entry["gpus"] = gpus

        if k8s_metadata and node.node_name in k8s_metadata:
            meta = k8s_metadata[node.node_name]
            for key in ("gpus_capacity", "gpus_allocatable", "gpus_allocated", "gpus_available"):
                entry[key] = meta.get(key, 0)
            entry["labels"] = meta.get("labels", {})
        nodes.append(entry)

    summary: Dict[str, Any] = {
        "total_nodes": result.attempted,
        "ready_nodes": len(result.successes),
        "total_gpus": total_gpus,
        "gpu_types": sorted(gpu_types),
    }
    if k8s_metadata is not None:
        for key in ("gpus_capacity", "gpus_allocatable", "gpus_allocated", "gpus_available"):
            summary[key] = sum(meta.get(key, 0) for meta in k8s_metadata.values())

    return {
        "status": _status(result),
        "cluster_summary": summary,
        "nodes": nodes,
    }
