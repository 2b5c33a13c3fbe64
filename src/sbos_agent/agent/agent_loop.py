"""
Main orchestration loop: one agent turn with bounded multi-step tool calling.

States: Start -> AwaitingCompletion -> InspectingResponse -> (ExecutingTools -> AwaitingCompletion)
| Done.  The user message is persisted at Start, before any model call; the final answer, session
usage and audit actions are written at Done, each on a best-effort basis.  One deadline covers
every store call and model call of the turn.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Awaitable,
    List,
)

from sbos_agent.agent.cascade_policy import build_cascade
from sbos_agent.agent.executor import CascadeExecutor
from sbos_agent.agent.profiles import (
    DEFAULT_FALLBACK,
    SystemPromptBuilder,
)
from sbos_agent.agent.tool_executor import execute_tool
from sbos_agent.config import settings
from sbos_agent.core.errors import CascadeExhausted
from sbos_agent.core.schema import (
    ActionOutcome,
    AgentAction,
    AgentContext,
    AgentTurnResult,
    AssistantMessage,
    CascadeRequest,
    ConversationMessage,
    SystemMessage,
    UserMessage,
)
from sbos_agent.memory.memory_store import (
    AuditStore,
    ConversationStore,
    StoredMessage,
)
from sbos_agent.tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class _TurnState:
    """Mutable bookkeeping private to one run_agent_turn() call."""

    messages: List[ConversationMessage]
    actions: List[AgentAction] = field(default_factory=list)
    tokens_used: int = 0
    model_used: str | None = None
    turns: int = 0


def _from_stored(message: StoredMessage) -> ConversationMessage:
    if message.role == "assistant":
        return AssistantMessage(content=message.content)
    return UserMessage(content=message.content)


async def _best_effort(
    what: str, write: Awaitable[object], warnings: List[str], deadline: float | None
) -> None:
    try:
        async with asyncio.timeout_at(deadline):
            await write
    except TimeoutError:
        logger.warning("Store write timed out (%s)", what)
        warnings.append(f"Failed to persist {what}: deadline exceeded")
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Store write failed (%s): %s", what, exc)
        warnings.append(f"Failed to persist {what}: {exc}")


async def _flush_actions(
    audit_store: AuditStore,
    session_id: str,
    actions: List[AgentAction],
    warnings: List[str],
    deadline: float | None,
) -> None:
    for action in actions:
        await _best_effort(
            f"audit action '{action.action}'",
            audit_store.append_action(session_id, action),
            warnings,
            deadline,
        )


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
async def _loop(
    state: _TurnState,
    tool_registry: ToolRegistry,
    context: AgentContext,
    executor: CascadeExecutor,
    *,
    max_turns: int,
    temperature: float | None,
    tool_timeout: float | None,
    fallback_message: str,
) -> str | None:
    """Run completions until the model stops calling tools; ``None`` means the turn cap was hit."""
    cascade = build_cascade(context.complexity, context.preferred_model)
    tools = tool_registry.definitions()

    while state.turns < max_turns:
        state.turns += 1
        logger.debug("AwaitingCompletion (turn %d/%d)", state.turns, max_turns)
        outcome = await executor.execute(
            cascade,
            CascadeRequest(messages=list(state.messages), tools=tools, temperature=temperature),
        )
        state.tokens_used += outcome.tokens_used
        response = outcome.unwrap()
        state.model_used = outcome.model_used

        if not response.tool_calls:
            logger.debug("Done after %d turn(s)", state.turns)
            content = (response.content or "").strip()
            return content or fallback_message

        logger.info(
            "Model requested %d tool call(s): %s",
            len(response.tool_calls),
            [call.name for call in response.tool_calls],
        )
        state.messages.append(response.to_message())

        # Sequential, in request order: tool results must line up with their calls
        for call in response.tool_calls:
            result = await execute_tool(
                tool_registry,
                call.name,
                call.arguments,
                context,
                call_id=call.id,
                timeout=tool_timeout,
            )
            if result.action is not None:
                state.actions.append(result.action)
            state.messages.append(result.to_message())

    return None


async def run_agent_turn(
    session_id: str,
    user_message: str,
    tool_registry: ToolRegistry,
    system_prompt_builder: SystemPromptBuilder,
    *,
    context: AgentContext,
    executor: CascadeExecutor,
    conversation_store: ConversationStore,
    audit_store: AuditStore,
    fallback_message: str = DEFAULT_FALLBACK,
    max_turns: int | None = None,
    history_window: int | None = None,
    temperature: float | None = None,
    timeout: float | None = None,
    tool_timeout: float | None = None,
) -> AgentTurnResult:
    """
    Process one user message with tool calling and return the final answer.

    Parameters
    ----------
    session_id:
        Conversation the message belongs to.
    user_message:
        The new user input; persisted before the first model call.
    tool_registry, system_prompt_builder:
        Per-domain tools and prompt.
    context:
        Immutable request context handed to the prompt builder and every tool handler.
    executor, conversation_store, audit_store:
        Injected collaborators.
    max_turns:
        Cap on completion calls; reaching it with tool calls still pending ends the turn with
        *fallback_message* (``capped=True``) rather than an error.
    timeout:
        Deadline for the whole turn, store calls included.  Expiry before the answer exists, or
        a caller cancellation, writes a ``turn_cancelled`` audit action and propagates.  Expiry
        during the final writes only adds warnings.

    Raises
    ------
    CascadeExhausted
        Every model candidate failed on some completion of this turn.
    StoreWriteError
        The user message could not be persisted; nothing else was attempted.
    """
    max_turns = settings.MAX_TURNS if max_turns is None else max_turns
    history_window = settings.HISTORY_WINDOW if history_window is None else history_window
    tool_timeout = settings.TOOL_TIMEOUT if tool_timeout is None else tool_timeout
    if max_turns < 1:
        raise ValueError("max_turns must be at least 1")

    clock = asyncio.get_running_loop()
    deadline = None if timeout is None else clock.time() + timeout
    state = _TurnState(messages=[SystemMessage(content=system_prompt_builder(context))])
    warnings: List[str] = []

    try:
        async with asyncio.timeout_at(deadline):
            # Start
            history = await conversation_store.read_recent(session_id, history_window)
            state.messages.extend(_from_stored(m) for m in history)
            state.messages.append(UserMessage(content=user_message))
            await conversation_store.append_message(session_id, "user", user_message)

            final_text = await _loop(
                state,
                tool_registry,
                context,
                executor,
                max_turns=max_turns,
                temperature=temperature,
                tool_timeout=tool_timeout,
                fallback_message=fallback_message,
            )
    except (asyncio.CancelledError, TimeoutError) as exc:
        reason = "deadline exceeded" if isinstance(exc, TimeoutError) else "cancelled"
        logger.warning(
            "Agent turn for session %s %s after %d turn(s)", session_id, reason, state.turns
        )
        marker = AgentAction(
            action="turn_cancelled",
            parameters={"completed_turns": state.turns},
            outcome=ActionOutcome.FAILED,
            error_message=reason,
        )
        # The turn deadline is spent; the marker gets its own short budget
        grace = clock.time() + settings.CANCEL_FLUSH_TIMEOUT
        await _flush_actions(audit_store, session_id, [*state.actions, marker], warnings, grace)
        raise
    except CascadeExhausted:
        # Side effects of earlier turns already happened; keep them auditable
        await _flush_actions(audit_store, session_id, state.actions, warnings, deadline)
        raise

    capped = final_text is None
    if capped:
        logger.warning("Turn cap of %d reached for session %s", max_turns, session_id)
        final_text = fallback_message

    # Done: three independent best-effort writes, still bounded by the turn deadline
    metadata = {
        "model": state.model_used,
        "tokensUsed": state.tokens_used,
        "actionsTaken": [a.action for a in state.actions],
    }
    await _best_effort(
        "assistant message",
        conversation_store.append_message(session_id, "assistant", final_text, metadata),
        warnings,
        deadline,
    )
    await _best_effort(
        "session usage",
        conversation_store.record_usage(session_id, state.model_used, state.tokens_used),
        warnings,
        deadline,
    )
    await _flush_actions(audit_store, session_id, state.actions, warnings, deadline)

    return AgentTurnResult(
        final_text=final_text,
        actions=state.actions,
        tokens_used=state.tokens_used,
        model_used=state.model_used,
        turns=state.turns,
        capped=capped,
        warnings=warnings,
    )
