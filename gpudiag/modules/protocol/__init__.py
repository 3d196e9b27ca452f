"""
Protocol Module - Black Box Interface

Purpose: JSON-RPC 2.0 / MCP request handling
Interface: ProtocolDispatcher.handle_raw(), handle_message(), serve_stdio(), SessionStore
Hidden: Message validation, session state machine, error code mapping

Transport-agnostic: the HTTP app and the stdio loop both feed the same dispatcher.
"""

from .dispatcher import ProtocolDispatcher
from .models import ErrorCode, ProtocolError, ProtocolRequest, ProtocolResponse
from .sessions import Session, SessionState, SessionStore
from .stdio import open_stdio, serve_stdio

__all__ = [
    "ErrorCode",
    "ProtocolDispatcher",
    "ProtocolError",
    "ProtocolRequest",
    "ProtocolResponse",
    "Session",
    "SessionState",
    "SessionStore",
    "open_stdio",
    "serve_stdio",
]
