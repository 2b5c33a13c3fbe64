"""
Provider gateway for the orchestration core.

This module is the only place that *directly* calls an LLM.  Everything else (cascade executor,
turn loop, tools) stays provider-agnostic and only sees :class:`ProviderResponse`,
:class:`StreamChunk` and the :class:`ProviderError` taxonomy.

We support three back-ends out of the box:

1. **OpenAI** (or any OpenAI-compatible endpoint via ``OPENAI_BASE_URL``).
2. **OpenRouter**, through the OpenAI SDK with OpenRouter's attribution headers.
3. **Anthropic** via the Messages API.

SDK-level retries are disabled on every client: the cascade executor owns retry policy.
Additional providers can be added by subclassing :class:`BaseProvider` and registering via
:func:`register_provider`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Sequence,
    Tuple,
    Type,
)

import anthropic
import httpx
import openai

from sbos_agent.config import settings
from sbos_agent.core.errors import (
    FatalProviderError,
    ProviderError,
    RetryableProviderError,
)
from sbos_agent.core.schema import (
    AssistantMessage,
    CascadeRequest,
    ConversationMessage,
    ProviderResponse,
    StreamChunk,
    SystemMessage,
    ToolCallRequest,
    ToolDefinition,
    ToolMessage,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 503})

_STATUS_KINDS = {
    400: "bad_request",
    401: "auth",
    403: "auth",
    404: "not_found",
    422: "bad_request",
    429: "rate_limit",
    500: "server_error",
    503: "server_error",
}

# Exceptions a provider call may raise that are translated by classify_error()
_TRANSPORT_ERRORS = (openai.OpenAIError, anthropic.AnthropicError, httpx.HTTPError, OSError)
_TIMEOUT_ERRORS = (
    openai.APITimeoutError,
    anthropic.APITimeoutError,
    httpx.TimeoutException,
    TimeoutError,
)
_CONNECTION_ERRORS = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    httpx.TransportError,
    ConnectionError,
)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------
def classify_error(exc: BaseException, model: str | None = None) -> ProviderError:
    """Map an SDK or transport exception onto the retryable / fatal taxonomy."""
    if isinstance(exc, ProviderError):
        return exc

    message = str(exc) or exc.__class__.__name__

    # Timeout classes subclass the connection errors, so check them first
    if isinstance(exc, _TIMEOUT_ERRORS):
        return RetryableProviderError(message, kind="timeout", model=model)
    if isinstance(exc, _CONNECTION_ERRORS):
        return RetryableProviderError(message, kind="connection", model=model)

    status = None
    if isinstance(exc, (openai.APIStatusError, anthropic.APIStatusError)):
        status = exc.status_code
    kind = _STATUS_KINDS.get(status, "unknown") if status is not None else "unknown"

    if status in RETRYABLE_STATUSES:
        return RetryableProviderError(message, kind=kind, status=status, model=model)
    return FatalProviderError(message, kind=kind, status=status, model=model)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PROVIDER_REGISTRY: dict[str, Type["BaseProvider"]] = {}


def register_provider(name: str) -> Callable:
    """Decorator to register a provider class under *name*."""

    def wrapper(cls: Type["BaseProvider"]) -> Type["BaseProvider"]:
        _PROVIDER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_provider(name: str | None = None) -> "BaseProvider":
    """
    Factory that returns an instantiated provider.

    Fallback order:
    1. *name* arg
    2. ``settings.PROVIDER`` env option
    3. default: ``"openai"``
    """

    target = name or getattr(settings, "PROVIDER", "openai")
    cls = _PROVIDER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Provider '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseProvider(ABC):
    """Uniform client over one remote completion service."""

    name: str = "base"

    @abstractmethod
    async def complete(self, model: str, request: CascadeRequest) -> ProviderResponse:
        """Issue one completion request; raise a :class:`ProviderError` on failure."""

    @abstractmethod
    def complete_streaming(self, model: str, request: CascadeRequest) -> AsyncIterator[StreamChunk]:
        """Return an async iterator of chunks; errors surface while iterating."""

    def _temperature(self, request: CascadeRequest) -> float:
        if request.temperature is None:
            return settings.DEFAULT_TEMPERATURE
        return request.temperature


# ---------------------------------------------------------------------------
# OpenAI-compatible providers
# ---------------------------------------------------------------------------
def to_openai_messages(messages: Sequence[ConversationMessage]) -> List[Dict[str, Any]]:
    """Translate conversation messages into Chat Completions message params."""
    out: List[Dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, AssistantMessage):
            item: Dict[str, Any] = {"role": "assistant", "content": msg.content}
            if msg.tool_calls:
                item["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in msg.tool_calls
                ]
        elif isinstance(msg, ToolMessage):
            item = {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
        else:
            item = {"role": msg.role, "content": msg.content}
        out.append(item)
    return out


def to_openai_tools(tools: Sequence[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


@register_provider("openai")
class OpenAIProvider(BaseProvider):
    """Chat Completions provider."""

    name = "openai"

    def __init__(self, client: openai.AsyncOpenAI | None = None) -> None:
        self._client = client or self._make_client()

    def _make_client(self) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT,
            max_retries=0,
        )

    def _params(self, model: str, request: CascadeRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(request.messages),
            "temperature": self._temperature(request),
        }
        if request.tools:
            params["tools"] = to_openai_tools(request.tools)
        if request.max_output_tokens is not None:
            params["max_tokens"] = request.max_output_tokens
        if request.response_format is not None:
            params["response_format"] = {"type": request.response_format}
        return params

    async def complete(self, model: str, request: CascadeRequest) -> ProviderResponse:
        try:
            resp = await self._client.chat.completions.create(**self._params(model, request))
        except _TRANSPORT_ERRORS as exc:
            raise classify_error(exc, model) from exc

        if not resp.choices:
            raise FatalProviderError("No response from AI", kind="empty_response", model=model)

        choice = resp.choices[0]
        tool_calls = [
            ToolCallRequest(
                id=call.id, name=call.function.name, arguments=call.function.arguments or "{}"
            )
            for call in (choice.message.tool_calls or [])
            if call.type == "function"
        ]
        return ProviderResponse(
            model=model,
            content=choice.message.content,
            tool_calls=tool_calls,
            tokens_used=resp.usage.total_tokens if resp.usage else None,
            finish_reason=choice.finish_reason,
        )

    async def complete_streaming(
        self, model: str, request: CascadeRequest
    ) -> AsyncIterator[StreamChunk]:
        try:
            stream = await self._client.chat.completions.create(
                **self._params(model, request), stream=True
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                yield StreamChunk(
                    delta=choice.delta.content or "", finish_reason=choice.finish_reason
                )
        except _TRANSPORT_ERRORS as exc:
            raise classify_error(exc, model) from exc


@register_provider("openrouter")
class OpenRouterProvider(OpenAIProvider):
    """OpenAI-compatible provider pointed at OpenRouter."""

    name = "openrouter"

    def _make_client(self) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=settings.OPENROUTER_API_KEY,
            base_url=settings.OPENROUTER_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT,
            max_retries=0,
            default_headers={"HTTP-Referer": settings.SITE_URL, "X-Title": settings.APP_TITLE},
        )


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------
def _loads_object(arguments: str) -> Dict[str, Any]:
    try:
        value = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        logger.warning("Dropping unparsable tool arguments: %s", arguments)
        return {}
    return value if isinstance(value, dict) else {}


def to_anthropic_messages(
    messages: Sequence[ConversationMessage],
) -> Tuple[str | None, List[Dict[str, Any]]]:
    """
    Translate conversation messages into Messages API params.

    System messages are lifted into the ``system`` parameter; consecutive tool results are merged
    into a single user message made of ``tool_result`` blocks.
    """
    system_parts: List[str] = []
    out: List[Dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, SystemMessage):
            system_parts.append(msg.content)
        elif isinstance(msg, ToolMessage):
            block = {"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content}
            if out and out[-1]["role"] == "user" and isinstance(out[-1]["content"], list):
                out[-1]["content"].append(block)
            else:
                out.append({"role": "user", "content": [block]})
        elif isinstance(msg, AssistantMessage):
            if not msg.tool_calls:
                out.append({"role": "assistant", "content": msg.content or ""})
                continue
            blocks: List[Dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _loads_object(call.arguments),
                    }
                )
            out.append({"role": "assistant", "content": blocks})
        else:
            out.append({"role": "user", "content": msg.content})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, out


def to_anthropic_tools(tools: Sequence[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
        for tool in tools
    ]


@register_provider("anthropic")
class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider."""

    name = "anthropic"
    DEFAULT_MAX_TOKENS = 4096

    def __init__(self, client: anthropic.AsyncAnthropic | None = None) -> None:
        self._client = client or anthropic.AsyncAnthropic(
            api_key=settings.ANTHROPIC_API_KEY,
            timeout=settings.REQUEST_TIMEOUT,
            max_retries=0,
        )

    def _params(self, model: str, request: CascadeRequest) -> Dict[str, Any]:
        system, messages = to_anthropic_messages(request.messages)
        params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_output_tokens or self.DEFAULT_MAX_TOKENS,
            "temperature": self._temperature(request),
        }
        if system:
            params["system"] = system
        if request.tools:
            params["tools"] = to_anthropic_tools(request.tools)
        if request.response_format == "json_object":
            logger.debug("Anthropic has no JSON response mode; relying on the prompt instead")
        return params

    async def complete(self, model: str, request: CascadeRequest) -> ProviderResponse:
        try:
            resp = await self._client.messages.create(**self._params(model, request))
        except _TRANSPORT_ERRORS as exc:
            raise classify_error(exc, model) from exc

        text = "".join(block.text for block in resp.content if block.type == "text")
        tool_calls = [
            ToolCallRequest(id=block.id, name=block.name, arguments=json.dumps(block.input))
            for block in resp.content
            if block.type == "tool_use"
        ]
        tokens = None
        if resp.usage is not None:
            tokens = resp.usage.input_tokens + resp.usage.output_tokens
        return ProviderResponse(
            model=model,
            content=text or None,
            tool_calls=tool_calls,
            tokens_used=tokens,
            finish_reason=resp.stop_reason,
        )

    async def complete_streaming(
        self, model: str, request: CascadeRequest
    ) -> AsyncIterator[StreamChunk]:
        try:
            stream = await self._client.messages.create(**self._params(model, request), stream=True)
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield StreamChunk(delta=event.delta.text)
                elif event.type == "message_delta":
                    yield StreamChunk(finish_reason=event.delta.stop_reason)
        except _TRANSPORT_ERRORS as exc:
            raise classify_error(exc, model) from exc
