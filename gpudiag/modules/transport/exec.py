"""
Exec channel: run the agent binary in its pod and talk over stdio.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence

from gpudiag.modules.cluster import ClusterClient, ExecError, ExecTimeoutError, Target
from gpudiag.modules.endpoint import resolve_exec

from .errors import RemoteError, TransportTimeout, TransportUnreachable
from .framing import build_stdio_request, parse_stdio_response, validate_stdio_request

logger = logging.getLogger(__name__)

AGENT_COMMAND = ("/agent", "--mode=read-only", "--oneshot=2")


class ExecTransport:
    """Agent transport over the orchestration API's exec channel."""

    name = "exec"

    def __init__(
        self,
        client: ClusterClient,
        container: str = "agent",
        command: Sequence[str] = AGENT_COMMAND,
    ):
        self.client = client
        self.container = container
        self.command = list(command)

    def resolve(self, target: Target) -> str:
        return resolve_exec(target)

    def build_request(self, tool_name: str, arguments: Optional[Dict[str, Any]]) -> bytes:
        request = build_stdio_request(tool_name, arguments)
        validate_stdio_request(request)
        return request

    def parse_response(self, raw: bytes) -> Any:
        return parse_stdio_response(raw)

    async def send(self, endpoint: str, request: bytes, timeout: float) -> bytes:
        namespace, _, pod = endpoint.partition("/")
        if not namespace or not pod:
            raise TransportUnreachable(f"invalid exec endpoint {endpoint!r}")

        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    self.client.exec_in_pod,
                    namespace, pod, self.container, self.command, request, timeout,
                ),
                timeout,
            )
        except (asyncio.TimeoutError, ExecTimeoutError) as e:
            raise TransportTimeout(f"exec in {endpoint} timed out after {timeout}s") from e
        except ExecError as e:
            raise TransportUnreachable(str(e)) from e
        except Exception as e:
            logger.warning(f"Exec in {endpoint} failed: {e}")
            raise TransportUnreachable(f"exec in {endpoint} failed: {e}") from e

        if result.stderr:
            logger.debug(f"Agent stderr from {endpoint}: {result.stderr[:512]!r}")
        if not result.stdout:
            detail = result.exit_error or result.stderr.decode("utf-8", "replace").strip()
            raise RemoteError(f"empty response from {endpoint}: {detail or 'no output'}")
        return result.stdout
