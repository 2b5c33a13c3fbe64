"""Tests for the cascade executor: retries, backoff, fallback and exhaustion."""

import asyncio

import pytest

from fakes import (
    BASE_CASCADE,
    HangingProvider,
    ScriptedProvider,
    rate_limited,
    text,
    unauthorized,
)
from sbos_agent.agent.executor import (
    CascadeExecutor,
    StreamHandle,
    backoff_delay,
    run_cascade,
    run_cascade_stream,
)
from sbos_agent.core.errors import CascadeExhausted
from sbos_agent.core.schema import (
    CascadeRequest,
    Complexity,
    ModelCandidate,
    UserMessage,
)

REQUEST = CascadeRequest(messages=[UserMessage(content="hello")])


def _executor(provider, sleep) -> CascadeExecutor:
    return CascadeExecutor(provider, backoff_base=1.0, backoff_cap=10.0, sleep=sleep)


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------
def test_backoff_doubles_then_caps() -> None:
    assert [backoff_delay(i) for i in range(6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


def test_backoff_custom_base_and_cap() -> None:
    assert backoff_delay(0, base=0.5, cap=3.0) == 0.5
    assert backoff_delay(3, base=0.5, cap=3.0) == 3.0


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
async def test_first_attempt_success(sleep) -> None:
    provider = ScriptedProvider(default=[text("hi", tokens=42)])

    outcome = await _executor(provider, sleep).execute(BASE_CASCADE, REQUEST)

    assert outcome.succeeded
    assert outcome.response.content == "hi"
    assert outcome.model_used == "gpt-4o"
    assert outcome.total_attempts == 1
    assert outcome.tokens_used == 42
    assert sleep.delays == []


async def test_retryable_errors_back_off_without_trailing_sleep(sleep) -> None:
    """1s, 2s, 4s between the four tries of one candidate, nothing after the last try."""

    cascade = [
        ModelCandidate(identifier="a", max_retries=3),
        ModelCandidate(identifier="b", max_retries=0),
    ]
    provider = ScriptedProvider({"a": [rate_limited("a")] * 4, "b": [text("from b", model="b")]})

    outcome = await _executor(provider, sleep).execute(cascade, REQUEST)

    assert sleep.delays == [1.0, 2.0, 4.0]
    assert provider.models_called == ["a", "a", "a", "a", "b"]
    assert outcome.model_used == "b"
    assert outcome.models_attempted == ["a", "b"]
    assert [a.succeeded for a in outcome.attempts] == [False] * 4 + [True]
    assert [a.attempt_index for a in outcome.attempts] == [0, 1, 2, 3, 0]


async def test_retry_then_success_on_same_model(sleep) -> None:
    provider = ScriptedProvider({"gpt-4o": [rate_limited(), text("second time")]})

    outcome = await _executor(provider, sleep).execute(BASE_CASCADE, REQUEST)

    assert outcome.response.content == "second time"
    assert outcome.model_used == "gpt-4o"
    assert sleep.delays == [1.0]
    assert outcome.attempts[0].error_kind == "rate_limit"


async def test_fatal_error_moves_to_next_candidate_without_sleeping(sleep) -> None:
    provider = ScriptedProvider(
        {"gpt-4o": [unauthorized()], "gpt-4o-mini": [text("mini", model="gpt-4o-mini")]}
    )

    outcome = await _executor(provider, sleep).execute(BASE_CASCADE, REQUEST)

    assert provider.models_called == ["gpt-4o", "gpt-4o-mini"]
    assert outcome.model_used == "gpt-4o-mini"
    assert sleep.delays == []


async def test_every_attempt_sends_the_same_request(sleep) -> None:
    provider = ScriptedProvider(
        {"gpt-4o": [rate_limited()] * 3, "gpt-4o-mini": [text("ok", model="gpt-4o-mini")]}
    )

    await _executor(provider, sleep).execute(BASE_CASCADE, REQUEST)

    assert all(request is REQUEST for _, request in provider.calls)


async def test_exhaustion_bounds_attempts(sleep) -> None:
    """All retryable failures: exactly sum(max_retries + 1) attempts, in cascade order."""

    provider = ScriptedProvider(default=[rate_limited()] * 20)

    outcome = await _executor(provider, sleep).execute(BASE_CASCADE, REQUEST)

    assert not outcome.succeeded
    assert outcome.response is None
    assert outcome.total_attempts == 3 + 3 + 2
    assert provider.models_called == ["gpt-4o"] * 3 + ["gpt-4o-mini"] * 3 + ["gpt-4-turbo"] * 2
    assert sleep.delays == [1.0, 2.0, 1.0, 2.0, 1.0]
    assert outcome.error.startswith("All candidates failed after 8 attempts")
    assert outcome.models_attempted == ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo"]


async def test_unwrap_raises_cascade_exhausted(sleep) -> None:
    provider = ScriptedProvider(default=[unauthorized()] * 3)

    outcome = await _executor(provider, sleep).execute(BASE_CASCADE, REQUEST)

    with pytest.raises(CascadeExhausted) as excinfo:
        outcome.unwrap()
    assert excinfo.value.total_attempts == 3
    assert excinfo.value.models_attempted == ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo"]
    assert "401" in str(excinfo.value)


async def test_empty_cascade_is_rejected(sleep) -> None:
    with pytest.raises(ValueError):
        await _executor(ScriptedProvider(), sleep).execute([], REQUEST)


async def test_tokens_are_summed_over_attempts(sleep) -> None:
    provider = ScriptedProvider({"gpt-4o": [rate_limited(), text("ok", tokens=7)]})

    outcome = await _executor(provider, sleep).execute(BASE_CASCADE, REQUEST)

    assert outcome.tokens_used == 7
    assert outcome.attempts[1].tokens_used == 7


# ---------------------------------------------------------------------------
# Single-shot entry points
# ---------------------------------------------------------------------------
async def test_run_cascade_uses_complexity(sleep) -> None:
    provider = ScriptedProvider(default=[text("quick")])
    executor = _executor(provider, sleep)

    outcome = await run_cascade(REQUEST, Complexity.SIMPLE, executor=executor)

    assert outcome.model_used == "gpt-4o-mini"


async def test_run_cascade_preferred_model_first(sleep) -> None:
    provider = ScriptedProvider(default=[text("pref")])

    outcome = await run_cascade(
        REQUEST, Complexity.SIMPLE, "claude-3-5-sonnet", executor=_executor(provider, sleep)
    )

    assert provider.models_called == ["claude-3-5-sonnet"]
    assert outcome.model_used == "claude-3-5-sonnet"


async def test_run_cascade_deadline_cancels_in_flight_attempt(sleep) -> None:
    provider = HangingProvider()

    with pytest.raises(TimeoutError):
        await run_cascade(REQUEST, executor=_executor(provider, sleep), timeout=0.05)

    assert provider.cancelled


async def test_caller_cancellation_propagates(sleep) -> None:
    provider = HangingProvider()
    task = asyncio.create_task(run_cascade(REQUEST, executor=_executor(provider, sleep)))
    await provider.started.wait()

    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert provider.cancelled


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------
async def test_streaming_returns_handle_with_all_chunks(sleep) -> None:
    provider = ScriptedProvider(default=[text("streamed reply")])

    outcome = await run_cascade_stream(REQUEST, executor=_executor(provider, sleep))

    assert isinstance(outcome.stream, StreamHandle)
    assert outcome.stream.model_used == "gpt-4o"
    assert (await outcome.stream.collect_text()).strip() == "streamed reply"


async def test_streaming_failure_before_first_chunk_falls_back(sleep) -> None:
    provider = ScriptedProvider(
        {"gpt-4o": [unauthorized()], "gpt-4o-mini": [text("fallback", model="gpt-4o-mini")]}
    )

    outcome = await run_cascade_stream(REQUEST, executor=_executor(provider, sleep))

    assert outcome.model_used == "gpt-4o-mini"
    assert (await outcome.stream.collect_text()).strip() == "fallback"


async def test_streaming_retries_like_non_streaming(sleep) -> None:
    provider = ScriptedProvider({"gpt-4o": [rate_limited(), rate_limited(), text("third")]})

    outcome = await run_cascade_stream(REQUEST, executor=_executor(provider, sleep))

    assert outcome.model_used == "gpt-4o"
    assert sleep.delays == [1.0, 2.0]
