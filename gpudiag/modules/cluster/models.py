"""
Data shapes shared by the cluster clients and the directory.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

GPU_RESOURCE = "nvidia.com/gpu"


class ClusterError(Exception):
    """Base class for cluster discovery failures."""


class DirectoryError(ClusterError):
    """The orchestration API could not be queried."""


class TargetNotFoundError(ClusterError):
    """No ready agent runs on the requested node."""

    def __init__(self, node_name: str):
        super().__init__(f"no ready agent found on node {node_name}")
        self.node_name = node_name


class ExecError(ClusterError):
    """A pod exec session failed."""


class ExecTimeoutError(ExecError):
    """A pod exec session outlived its deadline."""


@dataclass(frozen=True)
class Target:
    """
    A discovered node-local agent instance.

    Materialized fresh on every directory query and never mutated.
    """

    node_name: str
    pod_name: str
    pod_ip: str = ""
    ready: bool = False
    namespace: str = ""
    service_name: str = ""

    @property
    def key(self) -> str:
        """Identity used for circuit breaking and result merging."""
        return self.node_name or self.pod_name


@dataclass
class NodeInfo:
    """Node metadata relevant to GPU diagnostics."""

    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    conditions: Dict[str, str] = field(default_factory=dict)
    taints: List[Dict[str, str]] = field(default_factory=list)
    unschedulable: bool = False
    gpu_capacity: int = 0
    gpu_allocatable: int = 0


@dataclass
class PodInfo:
    """Pod fields the gateway cares about."""

    name: str
    namespace: str
    node_name: str = ""
    pod_ip: str = ""
    phase: str = "Pending"
    ready: bool = False
    labels: Dict[str, str] = field(default_factory=dict)
    gpu_requests: int = 0

    @property
    def is_terminated(self) -> bool:
        return self.phase in ("Succeeded", "Failed")


@dataclass
class ExecResult:
    """Captured output of a pod exec session."""

    stdout: bytes = b""
    stderr: bytes = b""
    exit_error: Optional[str] = None
