"""
ClusterClient backed by the official Kubernetes Python client.
"""

import logging
import time
from typing import Any, List, Optional, Sequence

from kubernetes import client, config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from .models import (
    GPU_RESOURCE,
    ExecError,
    ExecResult,
    ExecTimeoutError,
    NodeInfo,
    PodInfo,
)

logger = logging.getLogger(__name__)

# Upper bound on one websocket poll so the deadline is checked regularly
_EXEC_POLL_INTERVAL = 1.0


def load_api_client(kubeconfig: Optional[str] = None) -> client.ApiClient:
    """
    Load Kubernetes configuration and return an API client.

    Logic:
    1. Explicit kubeconfig path wins
    2. Otherwise try in-cluster service account credentials
    3. Fall back to the default kubeconfig
    """
    if kubeconfig:
        k8s_config.load_kube_config(config_file=kubeconfig)
    else:
        try:
            k8s_config.load_incluster_config()
        except k8s_config.ConfigException:
            logger.info("Not running in-cluster, loading kubeconfig")
            k8s_config.load_kube_config()
    return client.ApiClient()


def _quantity(value: Any) -> int:
    """Extended resources are whole numbers; tolerate missing or odd values."""
    if value is None:
        return 0
    try:
        return int(str(value))
    except ValueError:
        logger.warning(f"Unparseable GPU quantity {value!r}, treating as 0")
        return 0


def _node_info(node: Any) -> NodeInfo:
    status = node.status
    capacity = (status.capacity or {}) if status else {}
    allocatable = (status.allocatable or {}) if status else {}
    return NodeInfo(
        name=node.metadata.name,
        labels=dict(node.metadata.labels or {}),
        conditions={
            c.type: c.status for c in ((status.conditions or []) if status else [])
        },
        taints=[
            {"key": t.key, "value": t.value or "", "effect": t.effect}
            for t in (node.spec.taints or [])
        ] if node.spec else [],
        unschedulable=bool(node.spec.unschedulable) if node.spec else False,
        gpu_capacity=_quantity(capacity.get(GPU_RESOURCE)),
        gpu_allocatable=_quantity(allocatable.get(GPU_RESOURCE)),
    )


def _pod_ready(pod: Any) -> bool:
    for condition in (pod.status.conditions or []) if pod.status else []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


def _pod_gpu_requests(pod: Any) -> int:
    total = 0
    for container in pod.spec.containers or []:
        resources = container.resources
        if not resources:
            continue
        requested = (resources.requests or {}).get(GPU_RESOURCE)
        if requested is None:
            requested = (resources.limits or {}).get(GPU_RESOURCE)
        total += _quantity(requested)
    return total


def _pod_info(pod: Any) -> PodInfo:
    return PodInfo(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace,
        node_name=pod.spec.node_name or "",
        pod_ip=(pod.status.pod_ip or "") if pod.status else "",
        phase=(pod.status.phase or "Pending") if pod.status else "Pending",
        ready=_pod_ready(pod),
        labels=dict(pod.metadata.labels or {}),
        gpu_requests=_pod_gpu_requests(pod),
    )


class KubernetesClusterClient:
    """ClusterClient over CoreV1Api."""

    def __init__(self, api_client: Optional[client.ApiClient] = None, kubeconfig: Optional[str] = None):
        self.api_client = api_client or load_api_client(kubeconfig)
        self.core = client.CoreV1Api(self.api_client)

    def list_nodes(self, label_selector: Optional[str] = None) -> List[NodeInfo]:
        items = self.core.list_node(label_selector=label_selector or "").items
        return [_node_info(n) for n in items]

    def get_node(self, name: str) -> NodeInfo:
        try:
            return _node_info(self.core.read_node(name))
        except ApiException as e:
            if e.status == 404:
                raise LookupError(f"node {name} not found") from e
            raise

    def list_pods(
        self,
        namespace: Optional[str],
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[PodInfo]:
        kwargs = {
            "label_selector": label_selector or "",
            "field_selector": field_selector or "",
        }
        if namespace:
            items = self.core.list_namespaced_pod(namespace, **kwargs).items
        else:
            items = self.core.list_pod_for_all_namespaces(**kwargs).items
        return [_pod_info(p) for p in items]

    def get_pod(self, namespace: str, name: str) -> PodInfo:
        try:
            return _pod_info(self.core.read_namespaced_pod(name, namespace))
        except ApiException as e:
            if e.status == 404:
                raise LookupError(f"pod {namespace}/{name} not found") from e
            raise

    def exec_in_pod(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: Sequence[str],
        stdin: bytes,
        timeout: float,
    ) -> ExecResult:
        """
        Run a command in a pod, feeding stdin and capturing both streams.

        Args:
            namespace: Pod namespace
            pod: Pod name
            container: Container to exec into
            command: argv to run
            stdin: Bytes written to the process before reading
            timeout: Seconds before the session is abandoned

        Returns:
            ExecResult with the captured output

        Raises:
            ExecTimeoutError: If the command outlives the timeout
            ExecError: If the session cannot be opened
        """
        deadline = time.monotonic() + timeout
        started = time.monotonic()
        try:
            resp = stream(
                self.core.connect_get_namespaced_pod_exec,
                pod, namespace, command=list(command), container=container,
                stderr=True, stdout=True, stdin=True, tty=False,
                _preload_content=False,
            )
        except ApiException as e:
            raise ExecError(f"exec into {namespace}/{pod} failed: {e.reason}") from e
        except Exception as e:
            raise ExecError(f"exec into {namespace}/{pod} failed: {e}") from e

        stdout: List[str] = []
        stderr: List[str] = []
        try:
            if stdin:
                resp.write_stdin(stdin.decode("utf-8"))

            while resp.is_open():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        f"Exec in {namespace}/{pod} timed out after {timeout}s"
                    )
                    raise ExecTimeoutError(f"exec timeout after {timeout}s")
                resp.update(timeout=min(remaining, _EXEC_POLL_INTERVAL))
                if resp.peek_stdout():
                    stdout.append(resp.read_stdout())
                if resp.peek_stderr():
                    stderr.append(resp.read_stderr())

            exit_error = None
            channel_error = resp.read_channel(3)
            if channel_error and '"Success"' not in channel_error:
                exit_error = channel_error
        finally:
            resp.close()

        logger.debug(
            f"Exec in {namespace}/{pod} finished in {time.monotonic() - started:.3f}s"
        )
        return ExecResult(
            stdout="".join(stdout).encode("utf-8"),
            stderr="".join(stderr).encode("utf-8"),
            exit_error=exit_error,
        )
