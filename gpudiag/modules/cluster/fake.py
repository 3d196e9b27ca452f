"""
In-memory ClusterClient for tests and local development.

Holds nodes and pods in dictionaries, evaluates label and field selectors
the same way the API server does for the equality subset, and lets
callers script exec replies, delays and failures per pod.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .client import selector_matches
from .models import ExecResult, ExecTimeoutError, NodeInfo, PodInfo

AGENT_LABELS = {
    "app.kubernetes.io/name": "gpu-diag-agent",
    "app.kubernetes.io/component": "agent",
}

ExecReply = Union[bytes, Callable[[bytes], bytes]]


@dataclass
class ScriptedExec:
    """How one pod answers exec sessions."""
    reply: Optional[ExecReply] = None
    delay: float = 0.0
    error: Optional[Exception] = None
    stderr: bytes = b""


class InMemoryClusterClient:
    """Dictionary-backed ClusterClient."""

    def __init__(self):
        self.nodes: Dict[str, NodeInfo] = {}
        self.pods: Dict[Tuple[str, str], PodInfo] = {}
        self.scripts: Dict[Tuple[str, str], ScriptedExec] = {}
        # Raised by every read call while set
        self.fail_with: Optional[Exception] = None
        self.calls: List[Tuple] = []
        self._lock = threading.Lock()

    # Population helpers

    def add_node(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None,
        gpu_capacity: int = 0,
        gpu_allocatable: Optional[int] = None,
        conditions: Optional[Dict[str, str]] = None,
    ) -> NodeInfo:
        node = NodeInfo(
            name=name,
            labels=dict(labels or {}),
            conditions=dict(conditions or {"Ready": "True"}),
            gpu_capacity=gpu_capacity,
            gpu_allocatable=gpu_capacity if gpu_allocatable is None else gpu_allocatable,
        )
        self.nodes[name] = node
        return node

    def add_pod(
        self,
        name: str,
        namespace: str,
        node_name: str = "",
        pod_ip: str = "",
        ready: bool = True,
        phase: str = "Running",
        labels: Optional[Dict[str, str]] = None,
        gpu_requests: int = 0,
    ) -> PodInfo:
        pod = PodInfo(
            name=name,
            namespace=namespace,
            node_name=node_name,
            pod_ip=pod_ip,
            phase=phase,
            ready=ready,
            labels=dict(labels or {}),
            gpu_requests=gpu_requests,
        )
        self.pods[(namespace, name)] = pod
        return pod

    def add_agent(
        self,
        node_name: str,
        namespace: str = "gpu-diagnostics",
        pod_ip: Optional[str] = None,
        ready: bool = True,
        pod_name: Optional[str] = None,
    ) -> PodInfo:
        """Add an agent pod scheduled on node_name with the default agent labels."""
        index = len(self.pods) + 1
        return self.add_pod(
            name=pod_name or f"gpu-diag-agent-{node_name}",
            namespace=namespace,
            node_name=node_name,
            pod_ip=f"10.0.0.{index}" if pod_ip is None else pod_ip,
            ready=ready,
            labels=AGENT_LABELS,
        )

    def script_exec(
        self,
        namespace: str,
        pod: str,
        reply: Optional[ExecReply] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        stderr: bytes = b"",
    ) -> None:
        """Script the exec behaviour of one pod."""
        self.scripts[(namespace, pod)] = ScriptedExec(
            reply=reply, delay=delay, error=error, stderr=stderr
        )

    # ClusterClient

    def _record(self, *call) -> None:
        with self._lock:
            self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    def list_nodes(self, label_selector: Optional[str] = None) -> List[NodeInfo]:
        self._record("list_nodes", label_selector)
        return [
            n for n in sorted(self.nodes.values(), key=lambda n: n.name)
            if selector_matches(label_selector, n.labels)
        ]

    def get_node(self, name: str) -> NodeInfo:
        self._record("get_node", name)
        if name not in self.nodes:
            raise LookupError(f"node {name} not found")
        return self.nodes[name]

    def list_pods(
        self,
        namespace: Optional[str],
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[PodInfo]:
        self._record("list_pods", namespace, label_selector, field_selector)
        matched = []
        for (ns, _), pod in sorted(self.pods.items()):
            if namespace and ns != namespace:
                continue
            if not selector_matches(label_selector, pod.labels):
                continue
            if not selector_matches(field_selector, self._pod_fields(pod)):
                continue
            matched.append(pod)
        return matched

    def get_pod(self, namespace: str, name: str) -> PodInfo:
        self._record("get_pod", namespace, name)
        if (namespace, name) not in self.pods:
            raise LookupError(f"pod {namespace}/{name} not found")
        return self.pods[(namespace, name)]

    def exec_in_pod(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: Sequence[str],
        stdin: bytes,
        timeout: float,
    ) -> ExecResult:
        with self._lock:
            self.calls.append(("exec_in_pod", namespace, pod, container, tuple(command)))

        script = self.scripts.get((namespace, pod), ScriptedExec())
        if script.delay:
            time.sleep(min(script.delay, timeout))
            if script.delay > timeout:
                raise ExecTimeoutError(f"exec timeout after {timeout}s")
        if script.error is not None:
            raise script.error

        reply = script.reply
        if callable(reply):
            reply = reply(stdin)
        return ExecResult(stdout=reply or b"", stderr=script.stderr)

    @staticmethod
    def _pod_fields(pod: PodInfo) -> Dict[str, str]:
        return {
            "metadata.name": pod.name,
            "metadata.namespace": pod.namespace,
            "spec.nodeName": pod.node_name,
            "status.phase": pod.phase,
            "status.podIP": pod.pod_ip,
        }
