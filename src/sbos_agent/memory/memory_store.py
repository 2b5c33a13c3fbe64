"""Conversation and audit stores used by the agent turn loop."""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Protocol,
)

from pydantic import (
    BaseModel,
    Field,
)

from sbos_agent.config import settings
from sbos_agent.core.errors import StoreWriteError
from sbos_agent.core.schema import AgentAction

logger = logging.getLogger(__name__)


class StoredMessage(BaseModel):
    """A persisted user or assistant message."""

    session_id: str
    role: Literal["user", "assistant"]
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionUsage(BaseModel):
    """Aggregated model usage of a session."""

    session_id: str
    model: str | None = None
    tokens_used: int = 0
    turns: int = 0


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------
class ConversationStore(Protocol):
    async def append_message(
        self,
        session_id: str,
        role: Literal["user", "assistant"],
        content: str,
        metadata: Dict[str, Any] | None = None,
    ) -> StoredMessage:
        """Append one message to the session log; raise :class:`StoreWriteError` on failure."""

    async def read_recent(self, session_id: str, n: int) -> List[StoredMessage]:
        """Return the last *n* messages of the session, oldest first."""

    async def record_usage(self, session_id: str, model: str | None, tokens_used: int) -> None:
        """Add one turn's usage to the session metadata."""


class AuditStore(Protocol):
    async def append_action(self, session_id: str, action: AgentAction) -> None:
        """Append one action to the audit log; raise :class:`StoreWriteError` on failure."""


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------
class InMemoryConversationStore:
    """Process-local :class:`ConversationStore`."""

    def __init__(self) -> None:
        self._messages: Dict[str, List[StoredMessage]] = defaultdict(list)
        self._usage: Dict[str, SessionUsage] = {}

    async def append_message(
        self,
        session_id: str,
        role: Literal["user", "assistant"],
        content: str,
        metadata: Dict[str, Any] | None = None,
    ) -> StoredMessage:
        message = StoredMessage(
            session_id=session_id, role=role, content=content, metadata=metadata or {}
        )
        self._messages[session_id].append(message)
        return message

    async def read_recent(self, session_id: str, n: int) -> List[StoredMessage]:
        if n <= 0:
            return []
        return list(self._messages.get(session_id, [])[-n:])

    async def record_usage(self, session_id: str, model: str | None, tokens_used: int) -> None:
        usage = self._usage.setdefault(session_id, SessionUsage(session_id=session_id))
        usage.model = model or usage.model
        usage.tokens_used += tokens_used
        usage.turns += 1

    # Convenience for tests / admin
    def messages(self, session_id: str) -> List[StoredMessage]:
        return list(self._messages.get(session_id, []))

    def usage(self, session_id: str) -> SessionUsage | None:
        return self._usage.get(session_id)

    def sessions(self) -> List[str]:
        return list(self._messages)


class InMemoryAuditStore:
    """Process-local :class:`AuditStore`."""

    def __init__(self) -> None:
        self._actions: Dict[str, List[AgentAction]] = defaultdict(list)

    async def append_action(self, session_id: str, action: AgentAction) -> None:
        self._actions[session_id].append(action)

    def actions(self, session_id: str) -> List[AgentAction]:
        return list(self._actions.get(session_id, []))


# ---------------------------------------------------------------------------
# Flat-file audit trail
# ---------------------------------------------------------------------------
class JsonlAuditStore:
    """Append-only JSON-lines audit trail, one action per line."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else Path(settings.DATA_DIR) / "agent_actions.jsonl"
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def init(self) -> None:
        """Ensure the log file exists.  Called at application startup."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._path.touch()  # Create an empty file if it doesn't exist

    def _write(self, line: str) -> None:
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def append_action(self, session_id: str, action: AgentAction) -> None:
        line = json.dumps({"session_id": session_id, **action.model_dump(mode="json")})
        try:
            async with self._lock:
                await asyncio.to_thread(self._write, line)
        except OSError as exc:
            logger.error("Failed to append audit action to %s: %s", self._path, exc)
            raise StoreWriteError(f"Could not write audit action '{action.action}'") from exc

    def read_all(self) -> List[Dict[str, Any]]:
        """Return every recorded action (admin / tests)."""
        if not self._path.exists():
            return []
        with self._path.open(encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
