import json
import logging
import time
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from gpudiag import SERVER_NAME, __version__
from gpudiag.logging_config import correlation_id_var, new_correlation_id
from gpudiag.modules.aggregator import AggregateFailure
from gpudiag.modules.cluster import DirectoryError, TargetNotFoundError
from gpudiag.modules.tools import InvalidArgumentsError, ToolRegistry, UnknownToolError
from gpudiag.modules.transport import MCP_PROTOCOL_VERSION

from .models import ErrorCode, ProtocolError, ProtocolRequest, ProtocolResponse
from .sessions import Session, SessionState

logger = logging.getLogger(__name__)

# Methods accepted before the session is initialized
PRE_INIT_METHODS = {"initialize", "ping", "notifications/initialized"}


def _request_id(payload: Dict[str, Any]) -> Any:
    """Echo a usable id from an otherwise invalid request, else null."""
    value = payload.get("id")
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return value
    return None


class ProtocolDispatcher:
    """
    JSON-RPC front door.

    Parses messages, enforces the session state machine, routes methods
    and renders every failure as a JSON-RPC error with a stable code.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        metrics=None,
        server_name: str = SERVER_NAME,
        server_version: str = __version__,
    ):
        self.registry = registry
        self.metrics = metrics
        self.server_name = server_name
        self.server_version = server_version

    async def handle_raw(
        self, raw: Union[str, bytes], session: Session
    ) -> Optional[Dict[str, Any]]:
        """
        Handle one serialized message.

        Returns:
            Response body, or None for notifications
        """
        try:
            payload = json.loads(raw)
        except (ValueError, RecursionError) as e:
            logger.warning(f"Unparseable message: {e}")
            return ProtocolResponse.failure(None, ErrorCode.PARSE_ERROR, "Parse error").to_dict()
        return await self.handle_message(payload, session)

    async def handle_message(self, payload: Any, session: Session) -> Optional[Dict[str, Any]]:
        """
        Handle one decoded message.

        Returns:
            Response body, or None for notifications
        """
        if isinstance(payload, list):
            return ProtocolResponse.failure(
                None, ErrorCode.INVALID_REQUEST, "Batch requests are not supported"
            ).to_dict()
        if not isinstance(payload, dict):
            return ProtocolResponse.failure(
                None, ErrorCode.INVALID_REQUEST, "Invalid Request"
            ).to_dict()

        try:
            request = ProtocolRequest.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Invalid request: {e.errors()}")
            return ProtocolResponse.failure(
                _request_id(payload), ErrorCode.INVALID_REQUEST, "Invalid Request"
            ).to_dict()

        try:
            result = await self._route(request, session)
            response = ProtocolResponse.success(request.id, result)
        except ProtocolError as e:
            response = ProtocolResponse.failure(request.id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception(f"Unhandled error in {request.method}")
            response = ProtocolResponse.failure(
                request.id, ErrorCode.INTERNAL_ERROR, f"Internal error: {e}"
            )

        if request.is_notification:
            if response.is_error:
                logger.info(f"Dropping error for notification {request.method}: {response.error}")
            return None
        return response.to_dict()

    async def _route(self, request: ProtocolRequest, session: Session) -> Any:
        method = request.method
        params = request.params or {}

        if method not in PRE_INIT_METHODS and not session.initialized:
            raise ProtocolError(ErrorCode.NOT_INITIALIZED, "Server not initialized")

        if method == "initialize":
            return self._initialize(params, session)
        if method == "notifications/initialized":
            return {}
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": self.registry.list_tools()}
        if method == "tools/call":
            return await self._call_tool(params)
        raise ProtocolError(ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")

    def _initialize(self, params: Dict[str, Any], session: Session) -> Dict[str, Any]:
        session.state = SessionState.INITIALIZED
        session.protocol_version = params.get("protocolVersion")
        client_info = params.get("clientInfo")
        session.client_info = client_info if isinstance(client_info, dict) else {}
        logger.info(
            f"Session {session.session_id} initialized by "
            f"{session.client_info.get('name', 'unknown client')} "
            f"(protocol {session.protocol_version})"
        )
        return {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a tool and wrap its output as MCP text content.

        Logic:
        1. Assign a correlation ID for this call
        2. Run the tool through the registry
        3. Map tool-layer exceptions onto error codes
        """
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise ProtocolError(ErrorCode.INVALID_PARAMS, "tools/call requires a tool name")

        token = correlation_id_var.set(new_correlation_id())
        started = time.monotonic()
        status = "success"
        if self.metrics is not None:
            self.metrics.active_requests.inc()
        try:
            result = await self.registry.call(name, params.get("arguments"))
        except UnknownToolError as e:
            status = ErrorCode.UNKNOWN_TOOL.name.lower()
            raise ProtocolError(ErrorCode.UNKNOWN_TOOL, str(e)) from e
        except InvalidArgumentsError as e:
            status = ErrorCode.INVALID_PARAMS.name.lower()
            raise ProtocolError(
                ErrorCode.INVALID_PARAMS, str(e), {"errors": _jsonable_errors(e.errors)}
            ) from e
        except AggregateFailure as e:
            status = ErrorCode.AGGREGATE_FAILURE.name.lower()
            raise ProtocolError(ErrorCode.AGGREGATE_FAILURE, str(e), e.data) from e
        except TargetNotFoundError as e:
            status = ErrorCode.TARGET_NOT_FOUND.name.lower()
            raise ProtocolError(
                ErrorCode.TARGET_NOT_FOUND, str(e), {"node_name": e.node_name}
            ) from e
        except DirectoryError as e:
            status = ErrorCode.DISCOVERY_FAILURE.name.lower()
            raise ProtocolError(ErrorCode.DISCOVERY_FAILURE, f"discovery failed: {e}") from e
        except Exception:
            status = ErrorCode.INTERNAL_ERROR.name.lower()
            raise
        finally:
            elapsed = time.monotonic() - started
            if self.metrics is not None:
                self.metrics.active_requests.dec()
                self.metrics.observe_request(name, status, elapsed)
            logger.info(f"tools/call {name} finished: {status} in {elapsed:.3f}s")
            correlation_id_var.reset(token)

        return {
            "content": [{"type": "text", "text": json.dumps(result, indent=2)}],
            "isError": False,
        }


def _jsonable_errors(errors: Any) -> Any:
    """pydantic error dicts can carry exception objects in ctx; stringify them."""
    return json.loads(json.dumps(errors, default=str))
