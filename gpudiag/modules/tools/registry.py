import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import ValidationError

from .schemas import ToolArguments

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any], Awaitable[Any]]


class UnknownToolError(LookupError):
    """The requested tool is not registered."""

    def __init__(self, name: str):
        super().__init__(f"unknown tool: {name}")
        self.name = name


class InvalidArgumentsError(ValueError):
    """Tool arguments failed validation."""

    def __init__(self, tool: str, errors: List[Dict[str, Any]]):
        details = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ())) or 'arguments'}: {e.get('msg')}"
            for e in errors
        )
        super().__init__(f"invalid arguments for {tool}: {details}")
        self.tool = tool
        self.errors = errors


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: Type[ToolArguments]
    handler: ToolHandler

    def describe(self) -> Dict[str, Any]:
        """tools/list entry."""
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        return {"name": self.name, "description": self.description, "inputSchema": schema}


class ToolRegistry:
    """Static, ordered set of tools. Registration happens once at startup."""

    def __init__(self):
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"tool {spec.name} already registered")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(name)
        return spec

    def names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[Dict[str, Any]]:
        return [spec.describe() for spec in self._tools.values()]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]]) -> Any:
        """
        Validate arguments and run a tool.

        Raises:
            UnknownToolError: If name is not registered
            InvalidArgumentsError: If arguments fail validation
        """
        spec = self.get(name)
        if arguments is not None and not isinstance(arguments, dict):
            raise InvalidArgumentsError(name, [{"loc": (), "msg": "arguments must be an object"}])
        try:
            args = spec.args_model.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidArgumentsError(name, e.errors()) from e
        logger.debug(f"Calling tool {name}")
        return await spec.handler(args)
