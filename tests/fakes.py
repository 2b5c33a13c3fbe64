"""In-process fakes for the provider gateway and the stores."""

import asyncio
import json
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Sequence,
    Tuple,
)

from sbos_agent.agent.providers import BaseProvider
from sbos_agent.core.errors import (
    FatalProviderError,
    RetryableProviderError,
    StoreWriteError,
)
from sbos_agent.core.schema import (
    AgentAction,
    CascadeRequest,
    ModelCandidate,
    ProviderResponse,
    StreamChunk,
    ToolCallRequest,
)
from sbos_agent.memory.memory_store import (
    InMemoryAuditStore,
    InMemoryConversationStore,
)

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)

BASE_CASCADE = (
    ModelCandidate(identifier="gpt-4o", max_retries=2, label="Primary - Best quality"),
    ModelCandidate(identifier="gpt-4o-mini", max_retries=2, label="Fallback 1 - Fast and efficient"),
    ModelCandidate(
        identifier="gpt-4-turbo", max_retries=1, label="Fallback 2 - Reliable alternative"
    ),
)


def text(content: str | None, model: str = "gpt-4o", tokens: int = 10) -> ProviderResponse:
    return ProviderResponse(model=model, content=content, tokens_used=tokens, finish_reason="stop")


def calls(*requested: Tuple[str, Dict[str, Any]], model: str = "gpt-4o", tokens: int = 10):
    """A response that asks for ``(name, arguments)`` tool calls, in order."""
    return ProviderResponse(
        model=model,
        tool_calls=[
            ToolCallRequest(id=f"call_{i}", name=name, arguments=json.dumps(args))
            for i, (name, args) in enumerate(requested)
        ],
        tokens_used=tokens,
        finish_reason="tool_calls",
    )


def rate_limited(model: str = "gpt-4o") -> RetryableProviderError:
    return RetryableProviderError("429 Too Many Requests", kind="rate_limit", status=429, model=model)


def unauthorized(model: str = "gpt-4o") -> FatalProviderError:
    return FatalProviderError("401 Unauthorized", kind="auth", status=401, model=model)


class ScriptedProvider(BaseProvider):
    """
    Gateway fake that replays scripted steps.

    ``script`` maps a model identifier to a list of steps; ``default`` is used for models without
    a script of their own.  A step is a :class:`ProviderResponse` to return or an exception to
    raise.  Every call is recorded in :attr:`calls` as ``(model, request)``.
    """

    name = "scripted"

    def __init__(
        self,
        script: Dict[str, Sequence[Any]] | None = None,
        default: Sequence[Any] | None = None,
    ) -> None:
        self.script = {model: list(steps) for model, steps in (script or {}).items()}
        self.default = list(default or [])
        self.calls: List[Tuple[str, CascadeRequest]] = []

    @property
    def models_called(self) -> List[str]:
        return [model for model, _ in self.calls]

    def _next(self, model: str) -> Any:
        queue = self.script[model] if model in self.script else self.default
        if not queue:
            return FatalProviderError(
                f"model not available: {model}", kind="not_found", status=404, model=model
            )
        return queue.pop(0)

    async def complete(self, model: str, request: CascadeRequest) -> ProviderResponse:
        self.calls.append((model, request))
        step = self._next(model)
        if isinstance(step, BaseException):
            raise step
        return step

    async def complete_streaming(
        self, model: str, request: CascadeRequest
    ) -> AsyncIterator[StreamChunk]:
        self.calls.append((model, request))
        step = self._next(model)
        if isinstance(step, BaseException):
            raise step
        for word in (step.content or "").split(" "):
            yield StreamChunk(delta=word + " ")
        yield StreamChunk(finish_reason="stop")


class HangingProvider(BaseProvider):
    """Never answers; used to exercise deadlines and cancellation."""

    name = "hanging"

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def complete(self, model: str, request: CascadeRequest) -> ProviderResponse:
        self.started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("unreachable")

    async def complete_streaming(
        self, model: str, request: CascadeRequest
    ) -> AsyncIterator[StreamChunk]:
        await self.complete(model, request)
        yield StreamChunk()


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records the requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyConversationStore(InMemoryConversationStore):
    """Conversation store whose writes can be made to fail per role / operation."""

    def __init__(self, fail_roles: Sequence[str] = (), fail_usage: bool = False) -> None:
        super().__init__()
        self.fail_roles = set(fail_roles)
        self.fail_usage = fail_usage

    async def append_message(self, session_id, role, content, metadata=None):
        if role in self.fail_roles:
            raise StoreWriteError(f"database unavailable ({role} message)")
        return await super().append_message(session_id, role, content, metadata)

    async def record_usage(self, session_id, model, tokens_used):
        if self.fail_usage:
            raise StoreWriteError("database unavailable (usage)")
        await super().record_usage(session_id, model, tokens_used)


class FlakyAuditStore(InMemoryAuditStore):
    """Audit store that rejects every action whose name is in ``fail_actions``."""

    def __init__(self, fail_actions: Sequence[str] = ()) -> None:
        super().__init__()
        self.fail_actions = set(fail_actions)

    async def append_action(self, session_id: str, action: AgentAction) -> None:
        if action.action in self.fail_actions:
            raise StoreWriteError(f"audit log unavailable ({action.action})")
        await super().append_action(session_id, action)


class HangingConversationStore(InMemoryConversationStore):
    """Conversation store whose named operations never complete."""

    def __init__(self, hang: Sequence[str] = ()) -> None:
        super().__init__()
        self.hang = set(hang)

    async def _maybe_hang(self, operation: str) -> None:
        if operation in self.hang:
            await asyncio.sleep(3600)

    async def read_recent(self, session_id, n):
        await self._maybe_hang("read_recent")
        return await super().read_recent(session_id, n)

    async def append_message(self, session_id, role, content, metadata=None):
        await self._maybe_hang(f"append_{role}")
        return await super().append_message(session_id, role, content, metadata)

    async def record_usage(self, session_id, model, tokens_used):
        await self._maybe_hang("record_usage")
        await super().record_usage(session_id, model, tokens_used)
