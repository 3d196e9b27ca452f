"""Transport contract shared by the HTTP and exec channels."""

from typing import Any, Dict, Optional, Protocol

from gpudiag.modules.cluster import Target


class Transport(Protocol):
    """One request to one agent endpoint."""

    name: str

    def resolve(self, target: Target) -> str:
        """Endpoint for the target, or "" if this channel cannot reach it."""
        ...

    def build_request(self, tool_name: str, arguments: Optional[Dict[str, Any]]) -> bytes:
        ...

    async def send(self, endpoint: str, request: bytes, timeout: float) -> bytes:
        """
        Deliver the request and return the raw reply.

        Raises:
            TransportTimeout: If the deadline passes first
            TransportUnreachable: If the agent cannot be reached
            RemoteError: If the agent answers with an unusable reply
        """
        ...

    def parse_response(self, raw: bytes) -> Any:
        ...
