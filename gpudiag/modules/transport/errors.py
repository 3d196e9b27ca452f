"""
Transport failure taxonomy.

Every per-target failure carries a FailureTag so the aggregator can
report it and the breaker can decide whether it counts.
"""

from enum import Enum


class FailureTag(str, Enum):
    """Why one target produced no result."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection-refused"
    PROTOCOL_ERROR = "protocol-error"
    CIRCUIT_OPEN = "circuit-open"
    NO_TARGETS = "no-targets"


class TransportError(Exception):
    """Base class for failures talking to one agent."""

    tag = FailureTag.PROTOCOL_ERROR
    counts_against_breaker = True


class TransportTimeout(TransportError):
    """The agent did not answer before the deadline."""

    tag = FailureTag.TIMEOUT


class TransportUnreachable(TransportError):
    """The agent could not be reached at all."""

    tag = FailureTag.CONNECTION_REFUSED


class RemoteError(TransportError):
    """
    The agent answered, but not with a usable result.

    A malformed reply counts against the breaker. A well-formed error
    reply from a healthy agent (JSON-RPC error, tool isError) does not.
    """

    tag = FailureTag.PROTOCOL_ERROR

    def __init__(self, message: str, counts_against_breaker: bool = True):
        super().__init__(message)
        self.counts_against_breaker = counts_against_breaker
