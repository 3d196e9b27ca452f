"""
Tools Module - Black Box Interface

Purpose: The gateway's static tool set
Interface: build_registry(), ToolRegistry.call(), ToolRegistry.list_tools()
Hidden: Argument schemas, handler wiring, result shaping
"""

from .handlers import GatewayTools, build_registry
from .registry import InvalidArgumentsError, ToolRegistry, ToolSpec, UnknownToolError
from .schemas import (
    NODE_NAME_PATTERN,
    DescribeNodeArgs,
    EchoArgs,
    FanOutArgs,
    InventoryArgs,
    NoArgs,
)
from .shaping import flatten_gpu_info, shape_default, shape_inventory

__all__ = [
    "NODE_NAME_PATTERN",
    "DescribeNodeArgs",
    "EchoArgs",
    "FanOutArgs",
    "GatewayTools",
    "InvalidArgumentsError",
    "InventoryArgs",
    "NoArgs",
    "ToolRegistry",
    "ToolSpec",
    "UnknownToolError",
    "build_registry",
    "flatten_gpu_info",
    "shape_default",
    "shape_inventory",
]
