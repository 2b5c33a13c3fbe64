"""
Basic sanity tests for the tool registry and the tool executor.

Run with:
$ pytest -q
"""

import asyncio
import json
from typing import List

import pytest

from sbos_agent.agent.tool_executor import execute_tool
from sbos_agent.core.schema import (
    ActionOutcome,
    AgentAction,
    AgentContext,
    ToolOutput,
)
from sbos_agent.tools import (
    ToolRegistry,
    schema_from_signature,
)

CTX = AgentContext(user_id="tester")


def _registry() -> ToolRegistry:
    registry = ToolRegistry("test")

    # Stub tools used only by these tests
    @registry.tool("add")
    async def _add(ctx: AgentContext, a: int, b: int) -> str:
        """Return the sum of two integers."""
        return str(a + b)

    @registry.tool("create_note", "Create a note")
    async def _create_note(ctx: AgentContext, title: str) -> ToolOutput:
        return ToolOutput(
            text=f"Created {title}",
            action=AgentAction(action="create_note", entity_type="note", entity_id="n1"),
        )

    @registry.tool("explode")
    async def _explode(ctx: AgentContext) -> str:
        raise RuntimeError("database is down")

    @registry.tool("slow")
    async def _slow(ctx: AgentContext) -> str:
        await asyncio.sleep(10)
        return "never"

    @registry.tool("whoami")
    async def _whoami(ctx: AgentContext) -> str:
        return ctx.user_id

    @registry.tool("buggy")
    async def _buggy(ctx: AgentContext, count: int) -> str:
        return "items: " + count

    return registry


async def test_execute_tool_success() -> None:
    """Executor should return the handler's text when the tool is valid."""

    result = await execute_tool(_registry(), "add", json.dumps({"a": 2, "b": 3}), CTX, call_id="c1")

    assert result.text == "5"
    assert result.tool_call_id == "c1"
    assert result.action is None


async def test_execute_tool_passes_context() -> None:
    result = await execute_tool(_registry(), "whoami", "{}", CTX)
    assert result.text == "tester"


async def test_execute_tool_returns_action() -> None:
    result = await execute_tool(_registry(), "create_note", '{"title": "Plan"}', CTX)

    assert result.text == "Created Plan"
    assert result.action.action == "create_note"
    assert result.action.outcome == ActionOutcome.SUCCESS


async def test_execute_tool_missing() -> None:
    """Unknown tools produce a text result and no action."""

    result = await execute_tool(_registry(), "not_a_tool", "{}", CTX, call_id="c9")

    assert result.text == "Unknown tool: not_a_tool"
    assert result.action is None
    assert result.tool_call_id == "c9"


async def test_execute_tool_bad_args() -> None:
    """Wrong arguments become a failed action instead of an exception."""

    result = await execute_tool(_registry(), "add", '{"a": 2}', CTX)  # missing 'b'

    assert result.text.startswith("Error executing add:")
    assert "Invalid arguments" in result.text
    assert result.action.action == "add"
    assert result.action.outcome == ActionOutcome.FAILED
    assert result.action.parameters == {"a": 2}


@pytest.mark.parametrize("arguments", ["{not json", "[1, 2]"])
async def test_execute_tool_unparsable_args(arguments: str) -> None:
    result = await execute_tool(_registry(), "add", arguments, CTX)

    assert result.text.startswith("Error executing add:")
    assert result.action.outcome == ActionOutcome.FAILED


async def test_execute_tool_handler_error_is_contained() -> None:
    result = await execute_tool(_registry(), "explode", None, CTX)

    assert result.text == "Error executing explode: Tool 'explode' raised an error: database is down"
    assert result.action.error_message.endswith("database is down")


async def test_type_error_inside_handler_is_not_an_argument_error() -> None:
    result = await execute_tool(_registry(), "buggy", '{"count": 3}', CTX)

    assert "Invalid arguments" not in result.text
    assert "raised an error" in result.text
    assert result.action.outcome == ActionOutcome.FAILED
    assert result.action.parameters == {"count": 3}


async def test_unexpected_argument_is_an_argument_error() -> None:
    result = await execute_tool(_registry(), "add", '{"a": 1, "b": 2, "c": 3}', CTX)

    assert "Invalid arguments for tool 'add'" in result.text


async def test_execute_tool_timeout() -> None:
    result = await execute_tool(_registry(), "slow", "{}", CTX, timeout=0.01)

    assert "timed out" in result.text
    assert result.action.outcome == ActionOutcome.FAILED


async def test_execute_tool_cancellation_is_not_contained() -> None:
    task = asyncio.create_task(execute_tool(_registry(), "slow", "{}", CTX))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


def test_duplicate_registration_is_rejected() -> None:
    registry = _registry()

    async def handler(ctx: AgentContext) -> str:
        return ""

    with pytest.raises(ValueError):
        registry.register("add", handler)


def test_definitions_keep_registration_order() -> None:
    registry = _registry()

    assert [d.name for d in registry.definitions()] == [
        "add",
        "create_note",
        "explode",
        "slow",
        "whoami",
        "buggy",
    ]
    assert registry.get("add").definition.description == "Return the sum of two integers."
    assert "add" in registry and len(registry) == 6


def test_schema_from_signature_skips_context() -> None:
    async def handler(ctx: AgentContext, title: str, tags: List[str] | None = None, n: int = 1):
        return ""

    schema = schema_from_signature(handler)

    assert schema == {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "tags": {"type": "array"},
            "n": {"type": "integer"},
        },
        "required": ["title"],
    }
