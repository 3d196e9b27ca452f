"""
HTTP channel: POST a tools/call to the agent's /mcp endpoint.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from gpudiag.logging_config import correlation_id_var
from gpudiag.modules.cluster import Target
from gpudiag.modules.endpoint import resolve_direct, resolve_dns

from .errors import RemoteError, TransportError, TransportTimeout, TransportUnreachable
from .framing import build_http_tool_request, parse_http_response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class HTTPTransport:
    """
    Agent transport over HTTP with bounded retries.

    Connection failures and 5xx replies are retried with capped
    exponential backoff. No attempt or backoff sleep runs past the
    caller's deadline.
    """

    name = "http"

    def __init__(
        self,
        port: int = 8080,
        address_mode: str = "direct",
        max_retries: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the HTTP transport.

        Args:
            port: Agent HTTP port
            address_mode: "direct" (pod IP) or "dns" (headless service name)
            max_retries: Retries after the first attempt
            base_delay: First backoff in seconds
            max_delay: Backoff cap in seconds
            client: Shared httpx client; one is created if omitted
        """
        if address_mode not in ("direct", "dns"):
            raise ValueError(f"unknown address mode: {address_mode}")
        self.port = port
        self.address_mode = address_mode
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()

    def resolve(self, target: Target) -> str:
        if self.address_mode == "dns":
            return resolve_dns(target, self.port)
        return resolve_direct(target, self.port)

    def build_request(self, tool_name: str, arguments: Optional[Dict[str, Any]]) -> bytes:
        return build_http_tool_request(tool_name, arguments)

    def parse_response(self, raw: bytes) -> Any:
        return parse_http_response(raw)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number attempt+1."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def send(self, endpoint: str, request: bytes, timeout: float) -> bytes:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        url = f"http://{endpoint}/mcp"
        headers = {"Content-Type": "application/json"}
        correlation_id = correlation_id_var.get()
        if correlation_id != "-":
            headers[CORRELATION_HEADER] = correlation_id

        attempt = 0
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransportTimeout(f"deadline exceeded calling {endpoint}")

            try:
                response = await asyncio.wait_for(
                    self.client.post(url, content=request, headers=headers, timeout=remaining),
                    remaining,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException) as e:
                raise TransportTimeout(f"timeout calling {endpoint} after {timeout}s") from e
            except httpx.TransportError as e:
                last_error: TransportError = TransportUnreachable(f"cannot reach {endpoint}: {e}")
            else:
                if response.status_code == 200:
                    return response.content
                if response.status_code < 500:
                    raise RemoteError(
                        f"agent {endpoint} returned HTTP {response.status_code}"
                    )
                last_error = RemoteError(
                    f"agent {endpoint} returned HTTP {response.status_code}"
                )

            if attempt >= self.max_retries:
                raise last_error

            delay = self.backoff(attempt)
            if delay >= deadline - loop.time():
                raise last_error

            logger.debug(
                f"Retrying {endpoint} in {delay:.3f}s "
                f"(attempt {attempt + 1}/{self.max_retries}): {last_error}"
            )
            await asyncio.sleep(delay)
            attempt += 1

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
