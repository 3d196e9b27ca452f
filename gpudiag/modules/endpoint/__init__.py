"""
Endpoint Module - Black Box Interface

Purpose: Turn a Target into something a transport can connect to
Interface: resolve_direct(), resolve_dns(), resolve_exec()
Hidden: Address formatting rules
"""

from .resolver import join_host_port, resolve_direct, resolve_dns, resolve_exec

__all__ = ["join_host_port", "resolve_direct", "resolve_dns", "resolve_exec"]
