"""
Schema definitions for caller <-> executor <-> provider <-> tool messages.

These data models serve as the contract between the turn loop, the cascade executor, the provider
gateway and individual tools.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    computed_field,
    model_validator,
)

from sbos_agent.core.errors import CascadeExhausted


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Cascade configuration
# ---------------------------------------------------------------------------
class Complexity(str, Enum):
    """Task-complexity hint used to pick the first model of a cascade."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ModelCandidate(BaseModel):
    """One entry of a cascade: a model and how many times it may be retried."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., min_length=1, description="Provider model identifier")
    max_retries: NonNegativeInt = Field(0, description="Retries after the first attempt")
    label: str = ""


# ---------------------------------------------------------------------------
# Conversation messages
# ---------------------------------------------------------------------------
class ToolCallRequest(BaseModel):
    """A call that the assistant wants the agent to execute."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(..., description="Registered tool name")
    arguments: str = Field("{}", description="Raw JSON arguments as produced by the model")


class SystemMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user"] = "user"
    content: str


class AssistantMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)


class ToolMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["tool"] = "tool"
    tool_call_id: str
    content: str


ConversationMessage = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]


class ToolDefinition(BaseModel):
    """Name, description and JSON schema of a tool offered to the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class CascadeRequest(BaseModel):
    """Everything sent to the provider; identical for every attempt of a cascade."""

    messages: List[ConversationMessage]
    tools: List[ToolDefinition] = Field(default_factory=list)
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    response_format: Optional[Literal["text", "json_object"]] = None

    @model_validator(mode="after")
    def _check_messages(self) -> "CascadeRequest":
        if not self.messages:
            raise ValueError("a cascade request needs at least one message")
        names = [tool.name for tool in self.tools]
        if len(names) != len(set(names)):
            raise ValueError("tool names must be unique within a request")
        return self


# ---------------------------------------------------------------------------
# Provider responses
# ---------------------------------------------------------------------------
class ProviderResponse(BaseModel):
    """Normalised completion returned by any provider."""

    model: str
    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    tokens_used: Optional[int] = None
    finish_reason: Optional[str] = None

    def to_message(self) -> AssistantMessage:
        return AssistantMessage(content=self.content, tool_calls=list(self.tool_calls))


class StreamChunk(BaseModel):
    """A piece of streamed assistant text."""

    delta: str = ""
    finish_reason: Optional[str] = None


class AttemptRecord(BaseModel):
    """Outcome of a single provider call inside a cascade."""

    model: str
    attempt_index: int = Field(..., description="Retry index within this candidate, 0-based")
    succeeded: bool
    latency_ms: float
    tokens_used: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


class CascadeOutcome(BaseModel):
    """Aggregated result of running a whole cascade."""

    response: Optional[ProviderResponse] = None
    stream: Optional[Any] = Field(default=None, exclude=True)
    error: Optional[str] = None
    attempts: List[AttemptRecord] = Field(default_factory=list)
    models_attempted: List[str] = Field(default_factory=list)
    model_used: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    @property
    def succeeded(self) -> bool:
        return self.model_used is not None

    @property
    def tokens_used(self) -> int:
        return sum(a.tokens_used or 0 for a in self.attempts)

    def unwrap(self) -> ProviderResponse:
        """Return the response, or raise :class:`CascadeExhausted` on failure."""
        if self.response is not None:
            return self.response
        raise CascadeExhausted(
            models_attempted=self.models_attempted,
            total_attempts=self.total_attempts,
            last_error=self.error,
        )


# ---------------------------------------------------------------------------
# Tools and auditing
# ---------------------------------------------------------------------------
class ActionOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class AgentAction(BaseModel):
    """Audit record of a side effect caused by a tool call."""

    model_config = ConfigDict(frozen=True)

    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    outcome: ActionOutcome = ActionOutcome.SUCCESS
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ToolOutput(BaseModel):
    """What a tool handler hands back: text for the model plus an optional audit action."""

    text: str
    action: Optional[AgentAction] = None


class ToolResult(BaseModel):
    """A tool output bound to the call that produced it."""

    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    text: str
    action: Optional[AgentAction] = None

    def to_message(self) -> ToolMessage:
        return ToolMessage(tool_call_id=self.tool_call_id, content=self.text)


# ---------------------------------------------------------------------------
# Agent turns
# ---------------------------------------------------------------------------
class AgentContext(BaseModel):
    """Per-request facts threaded through prompt builders and tool handlers."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    scope_id: Optional[str] = None
    scope_name: Optional[str] = None
    context_blob: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)
    preferred_model: Optional[str] = None
    complexity: Complexity = Complexity.COMPLEX
    now: datetime = Field(default_factory=_utcnow)


class AgentTurnResult(BaseModel):
    """What :func:`run_agent_turn` returns to its caller."""

    final_text: str
    actions: List[AgentAction] = Field(default_factory=list)
    tokens_used: int = 0
    model_used: Optional[str] = None
    turns: int = 0
    capped: bool = False
    warnings: List[str] = Field(default_factory=list)
