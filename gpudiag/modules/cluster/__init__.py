"""
Cluster Module - Black Box Interface

Purpose: Discover agent Targets and node metadata from the orchestration API
Interface: ClusterDirectory.list_targets(), get_target(), describe_node()
Hidden: Kubernetes client calls, selector evaluation, readiness derivation

The ClusterClient protocol can be backed by the real API or by the
in-memory fake.
"""

from .client import ClusterClient, build_label_selector, merge_selectors
from .directory import ClusterDirectory, filter_gpu_labels
from .fake import InMemoryClusterClient
from .kube import KubernetesClusterClient
from .models import (
    ClusterError,
    DirectoryError,
    ExecError,
    ExecResult,
    ExecTimeoutError,
    NodeInfo,
    PodInfo,
    Target,
    TargetNotFoundError,
)

__all__ = [
    "ClusterClient",
    "ClusterDirectory",
    "ClusterError",
    "DirectoryError",
    "ExecError",
    "ExecResult",
    "ExecTimeoutError",
    "InMemoryClusterClient",
    "KubernetesClusterClient",
    "NodeInfo",
    "PodInfo",
    "Target",
    "TargetNotFoundError",
    "build_label_selector",
    "filter_gpu_labels",
    "merge_selectors",
]
