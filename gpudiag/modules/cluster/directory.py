"""
Cluster Directory: the gateway's view of which agents exist and where.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .client import ClusterClient, merge_selectors
from .models import (
    ClusterError,
    DirectoryError,
    NodeInfo,
    PodInfo,
    Target,
    TargetNotFoundError,
)

logger = logging.getLogger(__name__)

GPU_LABEL_PREFIXES = ("nvidia.com/",)
GPU_LABEL_KEYS = {
    "topology.kubernetes.io/zone",
    "node.kubernetes.io/instance-type",
    "kubernetes.io/arch",
    "kubernetes.io/os",
    "gpu-type",
    "accelerator",
}


def filter_gpu_labels(labels: Dict[str, str]) -> Dict[str, str]:
    """Keep only labels that say something about GPUs or node placement."""
    return {
        key: value
        for key, value in labels.items()
        if key in GPU_LABEL_KEYS or key.startswith(GPU_LABEL_PREFIXES)
    }


class ClusterDirectory:
    """
    Async directory of agent Targets.

    Every query goes to the cluster API. Nothing is cached, so each call
    returns a fresh snapshot.
    """

    def __init__(
        self,
        client: ClusterClient,
        namespace: str,
        service_name: str,
        label_selector: str,
    ):
        """
        Initialize the directory.

        Args:
            client: Cluster capability implementation
            namespace: Namespace the agents run in
            service_name: Headless service used for DNS addressing
            label_selector: Selector matching agent pods
        """
        self.client = client
        self.namespace = namespace
        self.service_name = service_name
        self.label_selector = label_selector

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ClusterError, LookupError):
            raise
        except Exception as e:
            logger.error(f"Cluster API call {func.__name__} failed: {e}")
            raise DirectoryError(f"{func.__name__} failed: {e}") from e

    def _target(self, pod: PodInfo) -> Target:
        return Target(
            node_name=pod.node_name,
            pod_name=pod.name,
            pod_ip=pod.pod_ip,
            ready=pod.ready,
            namespace=pod.namespace,
            service_name=self.service_name,
        )

    async def list_targets(
        self,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[Target]:
        """
        Snapshot the agents currently known to the cluster.

        Args:
            label_selector: Extra label requirements, ANDed with the agent selector
            field_selector: Field requirements (e.g. "spec.nodeName=gpu-1")

        Returns:
            Targets ordered by node name, then pod name

        Raises:
            DirectoryError: If the cluster API call fails
        """
        pods = await self._call(
            self.client.list_pods,
            self.namespace,
            merge_selectors(self.label_selector, label_selector),
            field_selector,
        )
        targets = [self._target(p) for p in pods]
        targets.sort(key=lambda t: (t.node_name, t.pod_name))
        logger.debug(
            f"Discovered {len(targets)} agents "
            f"({sum(1 for t in targets if t.ready)} ready)"
        )
        return targets

    async def get_target(self, node_name: str) -> Target:
        """
        Find the ready agent on one node.

        Raises:
            TargetNotFoundError: If no ready agent runs on the node
            DirectoryError: If the cluster API call fails
        """
        targets = await self.list_targets(field_selector=f"spec.nodeName={node_name}")
        for target in targets:
            if target.ready:
                return target
        raise TargetNotFoundError(node_name)

    async def get_node(self, node_name: str) -> NodeInfo:
        try:
            return await self._call(self.client.get_node, node_name)
        except LookupError as e:
            raise TargetNotFoundError(node_name) from e

    async def gpu_allocated(self, node_name: str) -> int:
        """Sum GPU requests of non-terminated pods on a node, across namespaces."""
        pods = await self._call(
            self.client.list_pods, None, None, f"spec.nodeName={node_name}"
        )
        return sum(p.gpu_requests for p in pods if not p.is_terminated)

    async def describe_node(self, node_name: str) -> Dict[str, Any]:
        """
        Kubernetes-side facts about a GPU node.

        Returns:
            Dict with GPU-relevant labels, conditions, taints and the
            capacity / allocatable / allocated / available GPU counts
        """
        node = await self.get_node(node_name)
        allocated = await self.gpu_allocated(node_name)
        return {
            "name": node.name,
            "labels": filter_gpu_labels(node.labels),
            "conditions": dict(node.conditions),
            "taints": list(node.taints),
            "unschedulable": node.unschedulable,
            "gpus_capacity": node.gpu_capacity,
            "gpus_allocatable": node.gpu_allocatable,
            "gpus_allocated": allocated,
            "gpus_available": max(node.gpu_allocatable - allocated, 0),
        }
