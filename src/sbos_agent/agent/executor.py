"""
Cascade executor: drives a list of model candidates through the provider gateway.

Attempts are strictly sequential.  Each candidate is tried up to ``max_retries + 1`` times; retryable
failures back off exponentially (capped) before the next try of the *same* candidate, fatal ones move
straight on to the next candidate.  Ordinary provider failures never raise: they end up in the
returned :class:`CascadeOutcome`.
"""

import asyncio
import logging
import time
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Sequence,
)

from sbos_agent.agent.cascade_policy import build_cascade
from sbos_agent.agent.providers import BaseProvider
from sbos_agent.config import settings
from sbos_agent.core.errors import ProviderError
from sbos_agent.core.schema import (
    AttemptRecord,
    CascadeOutcome,
    CascadeRequest,
    Complexity,
    ModelCandidate,
    ProviderResponse,
    StreamChunk,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def backoff_delay(retry_index: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Delay before retry ``retry_index + 1`` of a candidate: ``min(base * 2**i, cap)``."""
    return min(base * (2**retry_index), cap)


class StreamHandle:
    """Async iterable over a started stream; replays the chunk that proved it was alive."""

    def __init__(
        self, model_used: str, first: StreamChunk | None, rest: AsyncIterator[StreamChunk]
    ) -> None:
        self.model_used = model_used
        self._first = first
        self._rest = rest

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamChunk]:
        if self._first is not None:
            first, self._first = self._first, None
            yield first
        async for chunk in self._rest:
            yield chunk

    async def collect_text(self) -> str:
        """Drain the stream and return the concatenated text."""
        parts = [chunk.delta async for chunk in self]
        return "".join(parts)


class CascadeExecutor:
    """Runs cascades against one injected provider gateway."""

    def __init__(
        self,
        gateway: BaseProvider,
        *,
        backoff_base: float | None = None,
        backoff_cap: float | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.backoff_base = settings.BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        self.backoff_cap = settings.BACKOFF_CAP_SECONDS if backoff_cap is None else backoff_cap
        self._sleep = sleep

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def execute(
        self, cascade: Sequence[ModelCandidate], request: CascadeRequest
    ) -> CascadeOutcome:
        """Return the first successful completion, or a failed outcome with the full history."""
        return await self._run(cascade, request, streaming=False)

    async def execute_streaming(
        self, cascade: Sequence[ModelCandidate], request: CascadeRequest
    ) -> CascadeOutcome:
        """Like :meth:`execute` but returns once the first chunk of a stream has arrived.

        On success ``outcome.stream`` holds a :class:`StreamHandle`.
        """
        return await self._run(cascade, request, streaming=True)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _open_stream(self, model: str, request: CascadeRequest) -> StreamHandle:
        iterator = self.gateway.complete_streaming(model, request)
        try:
            first: StreamChunk | None = await anext(iterator)
        except StopAsyncIteration:
            first = None
        return StreamHandle(model, first, iterator)

    async def _run(
        self, cascade: Sequence[ModelCandidate], request: CascadeRequest, *, streaming: bool
    ) -> CascadeOutcome:
        if not cascade:
            raise ValueError("cannot execute an empty cascade")

        attempts: List[AttemptRecord] = []
        models_attempted: List[str] = []
        last_error: ProviderError | None = None

        for candidate in cascade:
            model, max_retries = candidate.identifier, candidate.max_retries
            models_attempted.append(model)

            for retry in range(max_retries + 1):
                logger.info(
                    "Attempting %s completion with %s (attempt %d/%d, overall #%d)",
                    "streaming" if streaming else "chat",
                    model,
                    retry + 1,
                    max_retries + 1,
                    len(attempts) + 1,
                )
                started = time.perf_counter()
                try:
                    if streaming:
                        result: ProviderResponse | StreamHandle = await self._open_stream(
                            model, request
                        )
                    else:
                        result = await self.gateway.complete(model, request)
                except ProviderError as exc:
                    latency_ms = (time.perf_counter() - started) * 1000
                    last_error = exc
                    attempts.append(
                        AttemptRecord(
                            model=model,
                            attempt_index=retry,
                            succeeded=False,
                            latency_ms=latency_ms,
                            error_kind=exc.kind,
                            error_message=str(exc),
                        )
                    )
                    logger.warning(
                        "Completion failed with %s (attempt %d/%d, kind=%s, status=%s, %.0fms): %s",
                        model,
                        retry + 1,
                        max_retries + 1,
                        exc.kind,
                        exc.status,
                        latency_ms,
                        exc,
                    )
                    if not exc.retryable or retry == max_retries:
                        break
                    delay = backoff_delay(retry, self.backoff_base, self.backoff_cap)
                    logger.info("Waiting %.1fs before retrying %s", delay, model)
                    await self._sleep(delay)
                    continue

                latency_ms = (time.perf_counter() - started) * 1000
                tokens = result.tokens_used if isinstance(result, ProviderResponse) else None
                attempts.append(
                    AttemptRecord(
                        model=model,
                        attempt_index=retry,
                        succeeded=True,
                        latency_ms=latency_ms,
                        tokens_used=tokens,
                    )
                )
                logger.info(
                    "Completion succeeded with %s (tokens=%s, %.0fms, finish=%s)",
                    model,
                    tokens,
                    latency_ms,
                    getattr(result, "finish_reason", None),
                )
                return CascadeOutcome(
                    response=result if isinstance(result, ProviderResponse) else None,
                    stream=result if isinstance(result, StreamHandle) else None,
                    attempts=attempts,
                    models_attempted=models_attempted,
                    model_used=model,
                )

        error = f"All candidates failed after {len(attempts)} attempts: {last_error}"
        logger.error(
            "All model fallbacks exhausted after %d attempts (models: %s); last error: %s",
            len(attempts),
            ", ".join(models_attempted),
            last_error,
        )
        return CascadeOutcome(error=error, attempts=attempts, models_attempted=models_attempted)


# ---------------------------------------------------------------------------
# Single-shot entry points
# ---------------------------------------------------------------------------
async def run_cascade(
    request: CascadeRequest,
    complexity: Complexity | str = Complexity.COMPLEX,
    preferred_model: str | None = None,
    *,
    executor: CascadeExecutor,
    timeout: float | None = None,
) -> CascadeOutcome:
    """Single completion with model fallback.

    ``timeout`` bounds the whole cascade; on expiry the in-flight attempt is cancelled, the
    remaining candidates are skipped and :class:`TimeoutError` is raised.
    """
    cascade = build_cascade(complexity, preferred_model)
    async with asyncio.timeout(timeout):
        return await executor.execute(cascade, request)


async def run_cascade_stream(
    request: CascadeRequest,
    complexity: Complexity | str = Complexity.COMPLEX,
    preferred_model: str | None = None,
    *,
    executor: CascadeExecutor,
    timeout: float | None = None,
) -> CascadeOutcome:
    """Streaming counterpart of :func:`run_cascade`; ``timeout`` bounds time to first chunk."""
    cascade = build_cascade(complexity, preferred_model)
    async with asyncio.timeout(timeout):
        return await executor.execute_streaming(cascade, request)
