"""
HTTP API for the SB-OS agent core.

Thin caller over the orchestration core.  It exposes the following endpoints:
- **GET /health**  - liveness check.
- **GET /models**  - the configured model cascade.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list known sessions.
- **POST /complete** - single completion with model fallback.
- **POST /agents/{agent}/chat** - one agent turn: {"message": "...", "session_id": "..."}
"""

import logging
import uuid
from dataclasses import (
    dataclass,
    field,
)
from functools import lru_cache
from typing import (
    Dict,
    List,
    Optional,
    Set,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from sbos_agent.agent.agent_loop import run_agent_turn
from sbos_agent.agent.cascade_policy import cascade_info
from sbos_agent.agent.executor import (
    CascadeExecutor,
    run_cascade,
)
from sbos_agent.agent.profiles import (
    AgentProfile,
    build_profiles,
)
from sbos_agent.agent.providers import load_provider
from sbos_agent.api.models import (
    ChatRequest,
    ChatResponse,
    CompletionRequest,
    CompletionResponse,
    ModelInfo,
    SessionResponse,
)
from sbos_agent.common import (
    AnsiColors,
    colored_print,
)
from sbos_agent.config import settings
from sbos_agent.core.errors import (
    CascadeExhausted,
    StoreWriteError,
)
from sbos_agent.core.schema import (
    AgentContext,
    CascadeRequest,
)
from sbos_agent.memory.memory_store import (
    AuditStore,
    ConversationStore,
    InMemoryConversationStore,
    JsonlAuditStore,
)
from sbos_agent.memory.calendar_client import InMemoryCalendarClient
from sbos_agent.memory.record_store import InMemoryRecordStore

logger = logging.getLogger(__name__)

UNAVAILABLE = "The assistant is temporarily unavailable"
TOO_SLOW = "The assistant took too long to respond"

app = FastAPI(title="SB-OS Agent API", version="0.1.0", description="SB-OS agent orchestration API")

# Add CORS middleware to allow requests from the SB-OS frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.SITE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Runtime wiring
# ---------------------------------------------------------------------------
@dataclass
class Runtime:
    """Collaborators shared by every request."""

    executor: CascadeExecutor
    conversations: ConversationStore
    audit: AuditStore
    profiles: Dict[str, AgentProfile]
    sessions: Set[str] = field(default_factory=set)

    def open_session(self) -> str:
        """Create a new session and return its id."""
        session_id = str(uuid.uuid4())
        self.sessions.add(session_id)
        return session_id

    def resolve_session(self, session_id: Optional[str]) -> str:
        """Return *session_id* if it is known, or open a new session when it is missing.

        Raises
        ------
        KeyError
            *session_id* was never issued by :meth:`open_session`.
        """
        if session_id is None:
            return self.open_session()
        if session_id not in self.sessions:
            raise KeyError(session_id)
        return session_id


def build_runtime() -> Runtime:
    audit = JsonlAuditStore()
    audit.init()
    return Runtime(
        executor=CascadeExecutor(load_provider()),
        conversations=InMemoryConversationStore(),
        audit=audit,
        profiles=build_profiles(InMemoryRecordStore(), InMemoryCalendarClient()),
    )


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    """FastAPI dependency; tests override it through ``app.dependency_overrides``."""
    return build_runtime()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/models", response_model=List[ModelInfo], summary="Configured model cascade")
async def models() -> List[ModelInfo]:
    return [ModelInfo(**entry) for entry in cascade_info()]


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session(runtime: Runtime = Depends(get_runtime)) -> SessionResponse:
    """Create a new conversation session."""
    return SessionResponse(session_id=runtime.open_session())


@app.get("/sessions", response_model=List[str], summary="List sessions")
async def list_sessions(runtime: Runtime = Depends(get_runtime)) -> List[str]:
    return sorted(runtime.sessions)


@app.post("/complete", response_model=CompletionResponse, summary="Completion with fallback")
async def complete(
    req: CompletionRequest, runtime: Runtime = Depends(get_runtime)
) -> CompletionResponse:
    """Run one completion through the model cascade."""
    try:
        request = CascadeRequest(
            messages=req.messages,
            tools=req.tools,
            temperature=req.temperature,
            max_output_tokens=req.max_output_tokens,
            response_format=req.response_format,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=[e["msg"] for e in exc.errors()]) from exc

    try:
        outcome = await run_cascade(
            request,
            req.complexity,
            req.preferred_model,
            executor=runtime.executor,
            timeout=settings.TURN_TIMEOUT,
        )
        response = outcome.unwrap()
    except CascadeExhausted as exc:
        logger.error("Completion failed: %s", exc)
        raise HTTPException(status_code=503, detail=UNAVAILABLE) from exc
    except TimeoutError as exc:
        raise HTTPException(status_code=504, detail=TOO_SLOW) from exc

    return CompletionResponse(
        content=response.content,
        tool_calls=response.tool_calls,
        model_used=outcome.model_used,
        tokens_used=outcome.tokens_used,
        total_attempts=outcome.total_attempts,
        models_attempted=outcome.models_attempted,
    )


@app.post("/agents/{agent}/chat", response_model=ChatResponse, summary="Process a message")
async def agent_chat(
    agent: str, req: ChatRequest, runtime: Runtime = Depends(get_runtime)
) -> ChatResponse:
    """Process a user message with one of the agent profiles."""
    profile = runtime.profiles.get(agent)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Unknown agent: {agent}")
    if profile.requires_scope and not req.scope_id:
        raise HTTPException(status_code=422, detail=f"The {agent} agent needs a scope_id")

    try:
        session_id = runtime.resolve_session(req.session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown session: {req.session_id}") from exc
    context = AgentContext(
        user_id=req.user_id,
        scope_id=req.scope_id,
        scope_name=req.scope_name,
        context_blob=req.context,
        attributes=req.attributes,
        preferred_model=req.preferred_model,
        complexity=req.complexity or profile.complexity,
    )

    try:
        result = await run_agent_turn(
            session_id,
            req.message,
            profile.registry,
            profile.prompt_builder,
            context=context,
            executor=runtime.executor,
            conversation_store=runtime.conversations,
            audit_store=runtime.audit,
            fallback_message=profile.fallback_message,
            timeout=settings.TURN_TIMEOUT,
        )
    except CascadeExhausted as exc:
        logger.error("Agent %s failed for session %s: %s", agent, session_id, exc)
        raise HTTPException(status_code=503, detail=UNAVAILABLE) from exc
    except TimeoutError as exc:
        raise HTTPException(status_code=504, detail=TOO_SLOW) from exc
    except StoreWriteError as exc:
        logger.error("Could not save message for session %s: %s", session_id, exc)
        raise HTTPException(status_code=500, detail="Could not save your message") from exc

    return ChatResponse(
        reply=result.final_text,
        session_id=session_id,
        model_used=result.model_used,
        tokens_used=result.tokens_used,
        actions=result.actions,
        capped=result.capped,
        warnings=result.warnings,
    )


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload.
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting SB-OS Agent API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    logger.debug("Model cascade: %s", cascade_info())

    colored_print(f"SB-OS Agent API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "sbos_agent.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


if __name__ == "__main__":
    run_api(reload=True)
