import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from gpudiag.modules.breaker import CircuitBreakerRegistry
from gpudiag.modules.cluster import ClusterDirectory, Target
from gpudiag.modules.transport import FailureTag, Transport, TransportError

from .models import AggregateResult, DispatchOutcome, NodeResult

logger = logging.getLogger(__name__)

Dispatch = Tuple[int, Target, Transport, str]


class FanOutAggregator:
    """
    Concurrent dispatch of one tool call to many agents.

    Workers only report through a queue; the collector is the sole
    writer of the outcome table and of breaker state.
    """

    def __init__(
        self,
        directory: ClusterDirectory,
        breakers: CircuitBreakerRegistry,
        transport: Transport,
        fallback: Optional[Transport] = None,
        default_timeout: float = 60.0,
        aggregate_timeout: float = 75.0,
        metrics=None,
    ):
        """
        Initialize the aggregator.

        Args:
            directory: Source of Target snapshots
            breakers: Per-target circuit breakers
            transport: Primary transport
            fallback: Used for targets the primary cannot resolve
            default_timeout: Per-call timeout in seconds
            aggregate_timeout: Whole fan-out deadline in seconds
            metrics: Optional GatewayMetrics for per-node observations
        """
        self.directory = directory
        self.breakers = breakers
        self.transport = transport
        self.fallback = fallback
        self.default_timeout = default_timeout
        self.aggregate_timeout = aggregate_timeout
        self.metrics = metrics

    def _select(self, target: Target) -> Tuple[Optional[Transport], str]:
        endpoint = self.transport.resolve(target)
        if endpoint:
            return self.transport, endpoint
        if self.fallback is not None:
            endpoint = self.fallback.resolve(target)
            if endpoint:
                logger.debug(
                    f"No {self.transport.name} address for {target.key}, "
                    f"falling back to {self.fallback.name}"
                )
                return self.fallback, endpoint
        return None, ""

    async def _dispatch(
        self,
        target: Target,
        transport: Transport,
        endpoint: str,
        request: bytes,
        timeout: float,
    ) -> DispatchOutcome:
        started = time.monotonic()
        try:
            raw = await transport.send(endpoint, request, timeout)
            payload = transport.parse_response(raw)
        except TransportError as e:
            return DispatchOutcome(
                tag=e.tag,
                message=str(e),
                counts_against_breaker=e.counts_against_breaker,
                transport=transport.name,
                duration=time.monotonic() - started,
            )
        except Exception as e:
            logger.exception(f"Unexpected error dispatching to {target.key}")
            return DispatchOutcome(
                tag=FailureTag.PROTOCOL_ERROR,
                message=f"unexpected error: {e}",
                transport=transport.name,
                duration=time.monotonic() - started,
            )
        return DispatchOutcome(
            payload=payload,
            transport=transport.name,
            duration=time.monotonic() - started,
        )

    async def _worker(
        self,
        index: int,
        target: Target,
        transport: Transport,
        endpoint: str,
        request: bytes,
        timeout: float,
        queue: asyncio.Queue,
    ) -> None:
        outcome = await self._dispatch(target, transport, endpoint, request, timeout)
        queue.put_nowait((index, outcome))

    def _settle(self, target: Target, outcome: DispatchOutcome) -> NodeResult:
        """Apply one outcome to the breaker and turn it into a NodeResult."""
        if outcome.ok or not outcome.counts_against_breaker:
            self.breakers.record_success(target.key)
        else:
            self.breakers.record_failure(target.key)

        if self.metrics is not None:
            self.metrics.observe_dispatch(
                target.key,
                outcome.transport,
                "success" if outcome.ok else outcome.tag.value,
                outcome.duration,
            )

        if outcome.ok:
            return NodeResult(target.node_name, target.pod_name, payload=outcome.payload)
        logger.warning(
            f"Agent on {target.key} failed via {outcome.transport}: "
            f"{outcome.tag.value}: {outcome.message}"
        )
        return NodeResult(
            target.node_name, target.pod_name, failure=outcome.tag, error=outcome.message
        )

    def _plan(
        self, targets: List[Target], slots: List[Optional[NodeResult]]
    ) -> Tuple[List[Dispatch], int]:
        """Fill slots for targets that won't be dispatched; return the rest."""
        dispatch: List[Dispatch] = []
        skipped = 0
        for index, target in enumerate(targets):
            if not target.ready:
                skipped += 1
                continue

            transport, endpoint = self._select(target)
            if transport is None:
                slots[index] = NodeResult(
                    target.node_name,
                    target.pod_name,
                    failure=FailureTag.CONNECTION_REFUSED,
                    error="no address for target",
                )
                continue

            if not self.breakers.allow(target.key):
                slots[index] = NodeResult(
                    target.node_name,
                    target.pod_name,
                    failure=FailureTag.CIRCUIT_OPEN,
                    error="circuit breaker open",
                )
                continue

            dispatch.append((index, target, transport, endpoint))
        return dispatch, skipped

    async def aggregate(
        self,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        aggregate_timeout: Optional[float] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> AggregateResult:
        """
        Fan a tool call out to every ready agent.

        Args:
            tool_name: Agent tool to invoke
            arguments: Tool arguments
            timeout: Per-call timeout (defaults to default_timeout)
            aggregate_timeout: Overall deadline (defaults to aggregate_timeout)
            label_selector: Extra label requirements for the snapshot
            field_selector: Field requirements for the snapshot

        Returns:
            AggregateResult with one entry per ready target, in directory order

        Raises:
            DirectoryError: If the snapshot cannot be taken

        Logic:
        1. Take one directory snapshot
        2. Skip unready targets, veto those with open circuits
        3. Start one task per remaining target
        4. Collect outcomes until all report or the deadline passes
        5. Cancel stragglers and record them as timeouts
        """
        per_call = timeout or self.default_timeout
        overall = aggregate_timeout or self.aggregate_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + overall

        targets = await self.directory.list_targets(label_selector, field_selector)
        slots: List[Optional[NodeResult]] = [None] * len(targets)
        dispatch, skipped = self._plan(targets, slots)
        attempted = len(targets) - skipped

        if attempted == 0:
            logger.warning(f"{tool_name}: no ready agents among {len(targets)} discovered")
            return AggregateResult(
                tool_name=tool_name,
                results=[NodeResult("", failure=FailureTag.NO_TARGETS, error="no ready agents found")],
                attempted=0,
                skipped=skipped,
            )

        requests: Dict[str, bytes] = {}
        queue: asyncio.Queue = asyncio.Queue()
        tasks: Dict[int, asyncio.Task] = {}
        by_index: Dict[int, Target] = {}
        call_timeout = min(per_call, overall)
        for index, target, transport, endpoint in dispatch:
            if transport.name not in requests:
                requests[transport.name] = transport.build_request(tool_name, arguments)
            by_index[index] = target
            tasks[index] = asyncio.create_task(
                self._worker(
                    index, target, transport, endpoint,
                    requests[transport.name], call_timeout, queue,
                )
            )

        pending = set(tasks)
        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    index, outcome = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    break
                pending.discard(index)
                slots[index] = self._settle(by_index[index], outcome)

            while not queue.empty():
                index, outcome = queue.get_nowait()
                pending.discard(index)
                slots[index] = self._settle(by_index[index], outcome)
        except asyncio.CancelledError:
            logger.info(f"{tool_name}: caller cancelled, abandoning {len(pending)} calls")
            for index in pending:
                tasks[index].cancel()
                self.breakers.release_probe(by_index[index].key)
            raise

        for index in pending:
            tasks[index].cancel()
            target = by_index[index]
            self.breakers.record_failure(target.key)
            if self.metrics is not None:
                self.metrics.observe_dispatch(target.key, "", FailureTag.TIMEOUT.value, overall)
            slots[index] = NodeResult(
                target.node_name,
                target.pod_name,
                failure=FailureTag.TIMEOUT,
                error=f"aggregate deadline of {overall}s exceeded",
            )
        if pending:
            await asyncio.gather(*(tasks[i] for i in pending), return_exceptions=True)

        result = AggregateResult(
            tool_name=tool_name,
            results=[slot for slot in slots if slot is not None],
            attempted=attempted,
            skipped=skipped,
        )
        logger.info(
            f"{tool_name}: {len(result.successes)}/{attempted} agents succeeded"
            f" ({skipped} skipped)"
        )
        return result

    async def route_to_node(
        self,
        node_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> AggregateResult:
        """
        Send a tool call to the agent on one node.

        Raises:
            TargetNotFoundError: If no ready agent runs on the node
            DirectoryError: If the lookup fails
        """
        per_call = timeout or self.default_timeout
        target = await self.directory.get_target(node_name)

        transport, endpoint = self._select(target)
        if transport is None:
            entry = NodeResult(
                target.node_name, target.pod_name,
                failure=FailureTag.CONNECTION_REFUSED, error="no address for target",
            )
        elif not self.breakers.allow(target.key):
            entry = NodeResult(
                target.node_name, target.pod_name,
                failure=FailureTag.CIRCUIT_OPEN, error="circuit breaker open",
            )
        else:
            request = transport.build_request(tool_name, arguments)
            try:
                outcome = await self._dispatch(target, transport, endpoint, request, per_call)
            except asyncio.CancelledError:
                self.breakers.release_probe(target.key)
                raise
            entry = self._settle(target, outcome)

        return AggregateResult(tool_name=tool_name, results=[entry], attempted=1)
