"""Dispatches tool calls to a :class:`ToolRegistry` and turns every failure into a tool result."""

import asyncio
import inspect
import json
import logging
from typing import (
    Any,
    Dict,
)

from sbos_agent.core.schema import (
    ActionOutcome,
    AgentAction,
    AgentContext,
    ToolOutput,
    ToolResult,
)
from sbos_agent.tools import (
    RegisteredTool,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails.  Never leaves :func:`execute_tool`."""


def _parse_arguments(name: str, arguments: str | None) -> Dict[str, Any]:
    try:
        parsed = json.loads(arguments or "{}")
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"Invalid JSON arguments for tool '{name}': {exc}") from exc
    if not isinstance(parsed, dict):
        raise ToolExecutionError(f"Arguments for tool '{name}' must be a JSON object.")
    return parsed


async def _invoke(
    tool: RegisteredTool, ctx: AgentContext, args: Dict[str, Any], timeout: float | None
) -> ToolOutput:
    try:
        inspect.signature(tool.handler).bind(ctx, **args)
    except TypeError as exc:
        logger.warning("Argument mismatch for tool '%s': %s", tool.name, exc)
        raise ToolExecutionError(f"Invalid arguments for tool '{tool.name}': {exc}") from exc

    try:
        logger.debug("Executing tool '%s' with args=%s", tool.name, args)
        result = await asyncio.wait_for(tool.handler(ctx, **args), timeout)
    except TimeoutError as exc:
        logger.error("Tool '%s' timed out after %ss", tool.name, timeout)
        raise ToolExecutionError(f"Tool '{tool.name}' timed out after {timeout}s") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", tool.name)
        raise ToolExecutionError(f"Tool '{tool.name}' raised an error: {exc}") from exc

    if isinstance(result, ToolOutput):
        return result
    return ToolOutput(text=str(result))


async def execute_tool(
    registry: ToolRegistry,
    name: str,
    arguments: str | None,
    ctx: AgentContext,
    *,
    call_id: str = "",
    timeout: float | None = None,
) -> ToolResult:
    """
    Look up *name* in *registry* and run it with the JSON *arguments*.

    Parameters
    ----------
    registry:
        The agent's tool table.
    name:
        Tool name requested by the model.
    arguments:
        Raw JSON object text as produced by the model.
    ctx:
        Request context handed to the handler as first argument.
    call_id:
        Id of the originating tool call; copied onto the result.
    timeout:
        Deadline in seconds for the handler; ``None`` for no limit.

    Returns
    -------
    ToolResult
        Unknown tools yield an "Unknown tool" text and no action.  Any failure inside the handler
        yields an error text and a failed :class:`AgentAction`.  Cancellation is not intercepted.
    """

    tool = registry.get(name)
    if tool is None:
        logger.warning("Model requested unknown tool '%s'", name)
        return ToolResult(tool_call_id=call_id, text=f"Unknown tool: {name}")

    args: Dict[str, Any] = {}
    try:
        args = _parse_arguments(name, arguments)
        output = await _invoke(tool, ctx, args, timeout)
    except ToolExecutionError as exc:
        logger.warning("Tool failure: %s", exc)
        return ToolResult(
            tool_call_id=call_id,
            text=f"Error executing {name}: {exc}",
            action=AgentAction(
                action=name,
                parameters=args,
                outcome=ActionOutcome.FAILED,
                error_message=str(exc),
            ),
        )

    return ToolResult(tool_call_id=call_id, text=output.text, action=output.action)
