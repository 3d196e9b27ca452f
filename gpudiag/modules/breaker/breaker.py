import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # One probe allowed through

    @property
    def code(self) -> int:
        """Numeric form for gauges: 0 closed, 1 open, 2 half-open."""
        return _STATE_CODES[self]


_STATE_CODES = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}

StateChangeCallback = Callable[[str, CircuitState, bool], None]


@dataclass
class _Cell:
    lock: threading.Lock
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    changed_at: float = 0.0
    probe_in_flight: bool = False


class CircuitBreakerRegistry:
    """
    Per-target circuit breakers.

    Each target key gets its own cell and lock, so contention on one
    target never blocks decisions about another. The registry lock is
    held only while creating cells.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        on_state_change: Optional[StateChangeCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the registry.

        Args:
            failure_threshold: Consecutive failures that open a circuit
            reset_timeout: Seconds an open circuit waits before a probe
            on_state_change: Called as (key, new_state, healthy) after each transition
            clock: Monotonic time source
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.on_state_change = on_state_change
        self._clock = clock
        self._cells: Dict[str, _Cell] = {}
        self._lock = threading.Lock()
        self._counts: Dict[CircuitState, int] = {s: 0 for s in CircuitState}
        self._counts_lock = threading.Lock()

    def _cell(self, key: str) -> _Cell:
        cell = self._cells.get(key)
        if cell is None:
            with self._lock:
                cell = self._cells.get(key)
                if cell is None:
                    cell = _Cell(lock=threading.Lock(), changed_at=self._clock())
                    self._cells[key] = cell
        return cell

    def _move(self, cell: _Cell, state: CircuitState) -> CircuitState:
        cell.state = state
        cell.changed_at = self._clock()
        return state

    def _notify(self, key: str, state: Optional[CircuitState]) -> None:
        if state is None:
            return
        with self._counts_lock:
            self._counts[state] += 1
        logger.info(f"Circuit for {key} is now {state.value}")
        if self.on_state_change:
            try:
                self.on_state_change(key, state, state is CircuitState.CLOSED)
            except Exception:
                logger.exception(f"State change callback failed for {key}")

    def allow(self, key: str) -> bool:
        """
        Decide whether a request to key may proceed.

        Logic:
        1. Closed: allow
        2. Open within cooldown: veto
        3. Open after cooldown: move to half-open, claim the probe, allow
        4. Half-open with a probe in flight: veto
        """
        cell = self._cell(key)
        changed = None
        with cell.lock:
            if cell.state is CircuitState.CLOSED:
                return True
            if cell.state is CircuitState.OPEN:
                if self._clock() - cell.changed_at < self.reset_timeout:
                    return False
                changed = self._move(cell, CircuitState.HALF_OPEN)
                cell.probe_in_flight = True
                allowed = True
            elif cell.probe_in_flight:
                allowed = False
            else:
                cell.probe_in_flight = True
                allowed = True
        self._notify(key, changed)
        return allowed

    def record_success(self, key: str) -> None:
        """Close the circuit and clear the failure count."""
        cell = self._cell(key)
        changed = None
        with cell.lock:
            cell.failures = 0
            cell.probe_in_flight = False
            if cell.state is not CircuitState.CLOSED:
                changed = self._move(cell, CircuitState.CLOSED)
        self._notify(key, changed)

    def record_failure(self, key: str) -> None:
        """
        Count a failure.

        Opens the circuit at the threshold. A failed half-open probe
        re-opens it and restarts the cooldown.
        """
        cell = self._cell(key)
        changed = None
        with cell.lock:
            cell.failures += 1
            if cell.state is CircuitState.HALF_OPEN:
                cell.probe_in_flight = False
                changed = self._move(cell, CircuitState.OPEN)
            elif cell.state is CircuitState.CLOSED and cell.failures >= self.failure_threshold:
                changed = self._move(cell, CircuitState.OPEN)
        if changed:
            logger.warning(f"Circuit for {key} opened after {cell.failures} failures")
        self._notify(key, changed)

    def release_probe(self, key: str) -> None:
        """Return an abandoned probe. The circuit reopens with its cooldown still elapsed."""
        cell = self._cell(key)
        changed = None
        with cell.lock:
            if cell.state is CircuitState.HALF_OPEN and cell.probe_in_flight:
                cell.probe_in_flight = False
                changed = self._move(cell, CircuitState.OPEN)
                # Cooldown already elapsed before the probe was claimed
                cell.changed_at = self._clock() - self.reset_timeout
        self._notify(key, changed)

    def state(self, key: str) -> CircuitState:
        cell = self._cell(key)
        with cell.lock:
            return cell.state

    def failures(self, key: str) -> int:
        cell = self._cell(key)
        with cell.lock:
            return cell.failures

    def reset(self, key: str) -> None:
        """Force a circuit closed, e.g. after an operator intervention."""
        cell = self._cell(key)
        changed = None
        with cell.lock:
            cell.failures = 0
            cell.probe_in_flight = False
            if cell.state is not CircuitState.CLOSED:
                changed = self._move(cell, CircuitState.CLOSED)
        self._notify(key, changed)

    def transition_counts(self) -> Dict[str, int]:
        """How many times any circuit entered each state."""
        with self._counts_lock:
            return {state.value: count for state, count in self._counts.items()}

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._cells)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Point-in-time view of every known circuit."""
        result = {}
        for key in self.keys():
            cell = self._cell(key)
            with cell.lock:
                result[key] = {
                    "state": cell.state.value,
                    "failures": cell.failures,
                    "probe_in_flight": cell.probe_in_flight,
                }
        return result
