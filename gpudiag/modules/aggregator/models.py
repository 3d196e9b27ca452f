"""
Fan-out result types.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gpudiag.modules.transport import FailureTag


@dataclass
class DispatchOutcome:
    """What one worker reports for its target."""

    payload: Any = None
    tag: Optional[FailureTag] = None
    message: str = ""
    counts_against_breaker: bool = True
    transport: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.tag is None


@dataclass
class NodeResult:
    """One merged entry, success or failure, in directory order."""

    node_name: str
    pod_name: str = ""
    payload: Any = None
    failure: Optional[FailureTag] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    def to_failure_dict(self) -> Dict[str, Any]:
        return {
            "node_name": self.node_name,
            "pod_name": self.pod_name,
            "failure": self.failure.value if self.failure else None,
            "error": self.error,
        }


class AggregateFailure(Exception):
    """Every attempted target failed."""

    def __init__(self, tool_name: str, attempted: int, failures: List[NodeResult]):
        tags = sorted({f.failure.value for f in failures if f.failure})
        super().__init__(
            f"{tool_name}: all {attempted} targets failed ({', '.join(tags) or 'no results'})"
        )
        self.tool_name = tool_name
        self.attempted = attempted
        self.failures = failures

    @property
    def data(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": 0,
            "failures": [f.to_failure_dict() for f in self.failures],
        }


@dataclass
class AggregateResult:
    """
    Outcome of one fan-out.

    attempted counts ready targets (dispatched or vetoed by a breaker);
    skipped counts targets passed over because they were not ready.
    """

    tool_name: str
    results: List[NodeResult] = field(default_factory=list)
    attempted: int = 0
    skipped: int = 0

    @property
    def successes(self) -> List[NodeResult]:
        return [r for r in self.results if r.ok]

    @property
    def failures(self) -> List[NodeResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return any(r.ok for r in self.results)

    def raise_for_failure(self) -> None:
        """Raise AggregateFailure when nothing succeeded."""
        if not self.ok and self.failures:
            raise AggregateFailure(self.tool_name, self.attempted, self.failures)
