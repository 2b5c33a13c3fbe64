"""Tests for the conversation and audit stores."""

import pytest

from sbos_agent.core.errors import StoreWriteError
from sbos_agent.core.schema import (
    ActionOutcome,
    AgentAction,
)
from sbos_agent.memory.memory_store import (
    InMemoryConversationStore,
    JsonlAuditStore,
)


async def test_read_recent_is_chronological_and_windowed() -> None:
    store = InMemoryConversationStore()
    for i in range(5):
        await store.append_message("s1", "user" if i % 2 == 0 else "assistant", f"m{i}")

    recent = await store.read_recent("s1", 3)

    assert [m.content for m in recent] == ["m2", "m3", "m4"]
    assert await store.read_recent("s1", 0) == []
    assert await store.read_recent("unknown", 3) == []


async def test_usage_accumulates_per_session() -> None:
    store = InMemoryConversationStore()

    await store.record_usage("s1", "gpt-4o", 100)
    await store.record_usage("s1", "gpt-4o-mini", 50)
    await store.record_usage("s1", None, 0)

    usage = store.usage("s1")
    assert usage.tokens_used == 150
    assert usage.turns == 3
    assert usage.model == "gpt-4o-mini"
    assert store.usage("s2") is None


async def test_jsonl_audit_store_appends_lines(tmp_path) -> None:
    store = JsonlAuditStore(tmp_path / "audit" / "actions.jsonl")
    store.init()

    await store.append_action("s1", AgentAction(action="create_task", entity_id="t1"))
    await store.append_action(
        "s1",
        AgentAction(action="log_trade", outcome=ActionOutcome.FAILED, error_message="bad input"),
    )

    rows = store.read_all()
    assert [r["action"] for r in rows] == ["create_task", "log_trade"]
    assert rows[0]["session_id"] == "s1"
    assert rows[1]["outcome"] == "failed"
    assert rows[1]["error_message"] == "bad input"


async def test_jsonl_audit_store_write_failure(tmp_path) -> None:
    # A directory where the log file should be makes every append fail
    target = tmp_path / "actions.jsonl"
    target.mkdir()
    store = JsonlAuditStore(target)

    with pytest.raises(StoreWriteError):
        await store.append_action("s1", AgentAction(action="create_task"))


def test_read_all_without_file(tmp_path) -> None:
    assert JsonlAuditStore(tmp_path / "missing.jsonl").read_all() == []
