"""
Tool registry for agents.

Each agent domain builds its own :class:`ToolRegistry` and registers async handlers on it with the
:meth:`ToolRegistry.tool` decorator.  The registry is a plain lookup table keyed by tool name, so
tools can be added (or unit-tested) without touching the turn loop.
"""

import inspect
import logging
import types
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from sbos_agent.core.schema import (
    ToolDefinition,
    ToolOutput,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[ToolOutput | str]]
"""Async callable ``handler(ctx, **arguments)`` returning text or a :class:`ToolOutput`."""

_JSON_TYPES: Mapping[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


@dataclass(frozen=True)
class RegisteredTool:
    """A handler together with the definition offered to the model."""

    definition: ToolDefinition
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition.name


def _unwrap(hint: Any) -> Any:
    """``Optional[X]`` / ``X | None`` -> ``X``; ``List[X]`` -> ``list``."""
    origin = get_origin(hint)
    if origin in (Union, types.UnionType):
        args = [a for a in get_args(hint) if a is not type(None)]
        return _unwrap(args[0]) if args else None
    return origin or hint


def schema_from_signature(fn: Callable) -> Dict[str, Any]:
    """Derive a JSON schema for *fn*'s keyword parameters (the leading context arg is skipped)."""
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for index, (param_name, param) in enumerate(sig.parameters.items()):
        if index == 0 or param.kind in (param.VAR_KEYWORD, param.VAR_POSITIONAL):
            continue
        json_type = _JSON_TYPES.get(_unwrap(type_hints.get(param_name)), "string")
        properties[param_name] = {"type": json_type}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    return {"type": "object", "properties": properties, "required": required}


class ToolRegistry:
    """Name -> handler table for one agent domain."""

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        description: str | None = None,
        parameters: Dict[str, Any] | None = None,
    ) -> None:
        """
        Register *handler* under *name*.

        Parameters
        ----------
        name:
            Tool name exposed to the model; must be unique within this registry.
        handler:
            ``async def handler(ctx, **arguments)``.
        description:
            Defaults to the handler's docstring.
        parameters:
            JSON schema of the arguments; derived from the handler signature when omitted.

        Raises
        ------
        ValueError
            If a tool with the same name is already registered.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered in '{self.name}'.")
        logger.debug("Registering tool '%s' in registry '%s'", name, self.name)
        definition = ToolDefinition(
            name=name,
            description=description or inspect.getdoc(handler) or "",
            parameters=parameters or schema_from_signature(handler),
        )
        self._tools[name] = RegisteredTool(definition=definition, handler=handler)

    def tool(
        self,
        name: str,
        description: str | None = None,
        parameters: Dict[str, Any] | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register`.

        Usage::

            @registry.tool("list_tasks", "List tasks in this venture")
            async def list_tasks(ctx, status=None):
                ...
        """

        def wrapper(fn: ToolHandler) -> ToolHandler:
            self.register(name, fn, description, parameters)
            return fn

        return wrapper

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        """Tool definitions in registration order."""
        return [tool.definition for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
