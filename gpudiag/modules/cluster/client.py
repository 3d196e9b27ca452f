"""
Cluster capability interface and selector helpers.

Anything that can list nodes and pods and exec into a pod can back the
directory. Both the Kubernetes client and the in-memory fake satisfy
ClusterClient, and both speak the same selector syntax.
"""

from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .models import ExecResult, NodeInfo, PodInfo


class ClusterClient(Protocol):
    """Synchronous view of the orchestration API."""

    def list_nodes(self, label_selector: Optional[str] = None) -> List[NodeInfo]:
        ...

    def get_node(self, name: str) -> NodeInfo:
        ...

    def list_pods(
        self,
        namespace: Optional[str],
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[PodInfo]:
        ...

    def get_pod(self, namespace: str, name: str) -> PodInfo:
        ...

    def exec_in_pod(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: Sequence[str],
        stdin: bytes,
        timeout: float,
    ) -> ExecResult:
        ...


def build_label_selector(requirements: Mapping[str, str]) -> str:
    """
    Render a mapping as a label selector.

    Clauses are ANDed. A value starting with "!" renders as an inequality.

    Example:
        >>> build_label_selector({"app": "agent", "tier": "!gateway"})
        'app=agent,tier!=gateway'
    """
    clauses = []
    for key, value in requirements.items():
        if value.startswith("!"):
            clauses.append(f"{key}!={value[1:]}")
        else:
            clauses.append(f"{key}={value}")
    return ",".join(clauses)


def merge_selectors(*selectors: Optional[str]) -> str:
    """AND several selector strings together, skipping empty ones."""
    return ",".join(s for s in selectors if s)


def parse_selector(selector: Optional[str]) -> List[Tuple[str, str, str]]:
    """
    Split a selector into (key, operator, value) requirements.

    Operators: "=", "!=", "exists", "!exists". Set-based syntax is not
    supported.
    """
    requirements = []
    if not selector:
        return requirements

    for clause in selector.split(","):
        clause = clause.strip()
        if not clause:
            continue
        if "!=" in clause:
            key, value = clause.split("!=", 1)
            requirements.append((key.strip(), "!=", value.strip()))
        elif "==" in clause:
            key, value = clause.split("==", 1)
            requirements.append((key.strip(), "=", value.strip()))
        elif "=" in clause:
            key, value = clause.split("=", 1)
            requirements.append((key.strip(), "=", value.strip()))
        elif clause.startswith("!"):
            requirements.append((clause[1:].strip(), "!exists", ""))
        else:
            requirements.append((clause, "exists", ""))
    return requirements


def selector_matches(selector: Optional[str], fields: Dict[str, str]) -> bool:
    """Evaluate a selector against a flat key/value mapping."""
    for key, op, value in parse_selector(selector):
        present = key in fields
        if op == "=" and (not present or fields[key] != value):
            return False
        if op == "!=" and present and fields[key] == value:
            return False
        if op == "exists" and not present:
            return False
        if op == "!exists" and present:
            return False
    return True
