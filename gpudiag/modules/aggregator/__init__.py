"""
Aggregator Module - Black Box Interface

Purpose: Dispatch one tool call to many agents and merge the replies
Interface: FanOutAggregator.aggregate(), FanOutAggregator.route_to_node()
Hidden: Task management, deadline enforcement, breaker bookkeeping

Results always come back in directory order, whatever order agents answer in.
"""

from .aggregator import FanOutAggregator
from .models import AggregateFailure, AggregateResult, DispatchOutcome, NodeResult

__all__ = [
    "AggregateFailure",
    "AggregateResult",
    "DispatchOutcome",
    "FanOutAggregator",
    "NodeResult",
]
