"""Tool argument models. Their JSON schema is published as inputSchema."""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

# RFC 1123 subdomain, as Kubernetes requires for node names
NODE_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
NODE_NAME_MAX_LENGTH = 253

NodeName = Annotated[
    str,
    StringConstraints(min_length=1, max_length=NODE_NAME_MAX_LENGTH, pattern=NODE_NAME_PATTERN),
]
TimeoutSeconds = Annotated[float, Field(ge=1, le=300)]


class ToolArguments(BaseModel):
    """Base for tool arguments; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


class EchoArgs(ToolArguments):
    message: str = Field(..., description="Message to echo back")


class NoArgs(ToolArguments):
    pass


class FanOutArgs(ToolArguments):
    node_name: Optional[NodeName] = Field(
        None, description="Only query the agent on this node"
    )
    timeout_seconds: Optional[TimeoutSeconds] = Field(
        None, description="Per-node timeout in seconds (1-300)"
    )


class InventoryArgs(FanOutArgs):
    include_k8s_metadata: bool = Field(
        False,
        description="Add GPU capacity, allocatable, allocated and available counts from Kubernetes",
    )


class DescribeNodeArgs(ToolArguments):
    node_name: NodeName = Field(..., description="Node name to describe")
    timeout_seconds: Optional[TimeoutSeconds] = Field(
        None, description="Agent call timeout in seconds (1-300)"
    )
