"""Pytest configuration and fixtures."""

import pytest

from fakes import (
    NOW,
    RecordingSleep,
)
from sbos_agent.core.schema import AgentContext
from sbos_agent.memory.calendar_client import InMemoryCalendarClient
from sbos_agent.memory.memory_store import (
    InMemoryAuditStore,
    InMemoryConversationStore,
)
from sbos_agent.memory.record_store import InMemoryRecordStore


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def conversations() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def audit() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def calendar() -> InMemoryCalendarClient:
    return InMemoryCalendarClient()


@pytest.fixture
def venture_ctx() -> AgentContext:
    return AgentContext(
        user_id="user-1",
        scope_id="venture-1",
        scope_name="Acme Labs",
        attributes={"status": "building", "one_liner": "Robots that fold laundry"},
        now=NOW,
    )


@pytest.fixture
def trading_ctx() -> AgentContext:
    return AgentContext(user_id="user-1", now=NOW)
