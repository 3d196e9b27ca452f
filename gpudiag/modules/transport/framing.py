"""
MCP message framing for agent calls.

The exec channel speaks newline-delimited JSON-RPC over the agent's
stdin/stdout: an initialize request followed by the tools/call. The HTTP
channel posts the tools/call alone.
"""

import json
from typing import Any, Dict, List, Optional

from .errors import RemoteError

MCP_PROTOCOL_VERSION = "2025-06-18"
CLIENT_INFO = {"name": "gateway-proxy", "version": "1.0"}
INITIALIZE_ID = 0
TOOL_CALL_ID = 1


def _tool_call(tool_name: str, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not tool_name:
        raise ValueError("tool_name is required")
    params: Dict[str, Any] = {"name": tool_name}
    if arguments:
        params["arguments"] = arguments
    return {"jsonrpc": "2.0", "method": "tools/call", "params": params, "id": TOOL_CALL_ID}


def build_stdio_request(tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> bytes:
    """
    Build the initialize + tools/call pair for a oneshot agent session.

    Returns:
        Two JSON objects, each terminated by a newline
    """
    initialize = {
        "jsonrpc": "2.0",
        "method": "initialize",
        "params": {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        },
        "id": INITIALIZE_ID,
    }
    lines = [json.dumps(initialize), json.dumps(_tool_call(tool_name, arguments))]
    return ("\n".join(lines) + "\n").encode("utf-8")


def build_http_tool_request(tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> bytes:
    """Build a single tools/call body for the agent's HTTP endpoint."""
    return json.dumps(_tool_call(tool_name, arguments)).encode("utf-8")


def split_json_objects(data: bytes) -> List[bytes]:
    """
    Split concatenated JSON objects by counting braces outside strings.

    Anything outside a top-level object (log lines, blank lines) is dropped.
    """
    objects = []
    current = bytearray()
    depth = 0
    in_string = False
    escaped = False

    for byte in data:
        if depth == 0 and byte != ord("{"):
            continue
        current.append(byte)

        if escaped:
            escaped = False
            continue
        if in_string:
            if byte == ord("\\"):
                escaped = True
            elif byte == ord('"'):
                in_string = False
            continue

        if byte == ord('"'):
            in_string = True
        elif byte == ord("{"):
            depth += 1
        elif byte == ord("}"):
            depth -= 1
            if depth == 0:
                objects.append(bytes(current))
                current = bytearray()

    return objects


def _tool_payload(message: Dict[str, Any]) -> Any:
    """Extract the tool result from one decoded JSON-RPC response."""
    if not isinstance(message, dict):
        raise RemoteError("MCP response is not an object")

    error = message.get("error")
    if error is not None:
        if isinstance(error, dict):
            raise RemoteError(
                f"MCP error {error.get('code')}: {error.get('message')}",
                counts_against_breaker=False,
            )
        raise RemoteError(f"malformed MCP error: {error!r}")

    result = message.get("result")
    if not isinstance(result, dict):
        raise RemoteError("failed to parse tool result: missing result object")

    content = result.get("content")
    if result.get("isError"):
        first = content[0] if isinstance(content, list) and content else None
        text = first.get("text", "unknown") if isinstance(first, dict) else "unknown"
        raise RemoteError(f"tool error: {text}", counts_against_breaker=False)

    if content is None:
        raise RemoteError("failed to parse tool result: missing content")
    if not isinstance(content, list):
        raise RemoteError("failed to parse tool result: content is not a list")
    if not content:
        return None

    first = content[0]
    text = first.get("text", "") if isinstance(first, dict) else ""
    try:
        return json.loads(text)
    except ValueError:
        return text


def parse_stdio_response(raw: bytes) -> Any:
    """
    Decode the tool result from an exec session's stdout.

    Only the reply carrying the tools/call id is decoded; the initialize
    reply and any brace-delimited log noise are skipped. When the agent
    replies more than once under that id, the last reply wins.

    Raises:
        RemoteError: On empty, malformed or error replies, or when the agent
            exits before answering the tools/call
    """
    if not raw:
        raise RemoteError("empty response")

    objects = split_json_objects(raw)
    if not objects:
        raise RemoteError("no JSON objects found in response")

    message = None
    last_error = None
    for obj in reversed(objects):
        try:
            decoded = json.loads(obj)
        except (ValueError, RecursionError) as e:
            last_error = e
            continue
        if isinstance(decoded, dict) and decoded.get("id") == TOOL_CALL_ID:
            message = decoded
            break

    if message is None:
        if last_error is not None:
            raise RemoteError(f"failed to parse MCP response: {last_error}")
        raise RemoteError("no tools/call response in agent output")
    return _tool_payload(message)


def parse_http_response(raw: bytes) -> Any:
    """
    Decode the tool result from an agent's HTTP reply body.

    Raises:
        RemoteError: On empty, malformed or error replies
    """
    if not raw:
        raise RemoteError("empty response")

    try:
        message = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise RemoteError(f"failed to parse MCP response: {e}") from e
    return _tool_payload(message)


def validate_stdio_request(data: bytes) -> None:
    """
    Check that a stdio request is well framed.

    Raises:
        ValueError: If the data is empty, lacks the trailing newline, or
            holds an object that is not a JSON-RPC 2.0 request
    """
    if not data:
        raise ValueError("empty request")
    if not data.endswith(b"\n"):
        raise ValueError("request must end with newline")

    objects = split_json_objects(data)
    if not objects:
        raise ValueError("no JSON objects found")

    for index, obj in enumerate(objects):
        try:
            request = json.loads(obj)
        except ValueError as e:
            raise ValueError(f"object {index}: invalid JSON: {e}") from e
        if request.get("jsonrpc") != "2.0":
            raise ValueError(f"object {index}: invalid jsonrpc version: {request.get('jsonrpc')}")
        if not request.get("method"):
            raise ValueError(f"object {index}: missing method")
