"""
Pydantic models for SB-OS Agent API requests and responses.
This module defines the request and response schemas used by the HTTP surface.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from sbos_agent.core.schema import (
    AgentAction,
    Complexity,
    ConversationMessage,
    ToolCallRequest,
    ToolDefinition,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class ModelInfo(BaseModel):
    identifier: str
    label: str
    max_retries: int


class CompletionRequest(BaseModel):
    """A single completion with model fallback."""

    messages: List[ConversationMessage] = Field(..., min_length=1)
    tools: List[ToolDefinition] = Field(default_factory=list)
    complexity: Complexity = Complexity.COMPLEX
    preferred_model: Optional[str] = Field(None, description="Model to try first")
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    response_format: Optional[Literal["text", "json_object"]] = None


class CompletionResponse(BaseModel):
    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    model_used: str
    tokens_used: int
    total_attempts: int
    models_attempted: List[str]


class ChatRequest(BaseModel):
    """Incoming user message for one of the agents."""

    message: str = Field(..., min_length=1, description="User message for the agent")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")
    user_id: str = "local"
    scope_id: Optional[str] = Field(None, description="Venture id for the venture agent")
    scope_name: Optional[str] = None
    context: str = Field("", description="Prebuilt context blob appended to the system prompt")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    preferred_model: Optional[str] = None
    complexity: Optional[Complexity] = None


class ChatResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    model_used: Optional[str] = None
    tokens_used: int = 0
    actions: List[AgentAction] = Field(default_factory=list)
    capped: bool = False
    warnings: List[str] = Field(default_factory=list)
