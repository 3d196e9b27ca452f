"""
Transport Module - Black Box Interface

Purpose: Deliver one tool call to one agent and decode its reply
Interface: HTTPTransport, ExecTransport (resolve, build_request, send, parse_response)
Hidden: Wire framing, retries, deadline enforcement

Failures surface as TransportError subclasses carrying a FailureTag.
"""

from .base import Transport
from .errors import (
    FailureTag,
    RemoteError,
    TransportError,
    TransportTimeout,
    TransportUnreachable,
)
from .exec import AGENT_COMMAND, ExecTransport
from .framing import (
    MCP_PROTOCOL_VERSION,
    build_http_tool_request,
    build_stdio_request,
    parse_http_response,
    parse_stdio_response,
    split_json_objects,
    validate_stdio_request,
)
from .http import CORRELATION_HEADER, HTTPTransport
from .timeouts import (
    DEFAULT_AGGREGATE_TIMEOUT,
    DEFAULT_EXEC_TIMEOUT,
    MAX_TIMEOUT,
    MIN_TIMEOUT,
    bounded_timeout,
    parse_duration,
)

__all__ = [
    "AGENT_COMMAND",
    "CORRELATION_HEADER",
    "DEFAULT_AGGREGATE_TIMEOUT",
    "DEFAULT_EXEC_TIMEOUT",
    "ExecTransport",
    "FailureTag",
    "HTTPTransport",
    "MAX_TIMEOUT",
    "MCP_PROTOCOL_VERSION",
    "MIN_TIMEOUT",
    "RemoteError",
    "Transport",
    "TransportError",
    "TransportTimeout",
    "TransportUnreachable",
    "bounded_timeout",
    "build_http_tool_request",
    "build_stdio_request",
    "parse_duration",
    "parse_http_response",
    "parse_stdio_response",
    "split_json_objects",
    "validate_stdio_request",
]
