"""
Error taxonomy shared by the provider gateway, the cascade executor and the stores.

Only :class:`CascadeExhausted` is meant to reach callers of the orchestration core.  Provider errors
are recovered inside the executor, store errors inside the turn loop.
"""

from typing import (
    Optional,
    Sequence,
)


class ProviderError(Exception):
    """A single provider call failed."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        kind: str = "unknown",
        status: Optional[int] = None,
        model: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.model = model


class RetryableProviderError(ProviderError):
    """Rate limit, server error, connection reset or timeout; worth retrying the same model."""

    retryable = True


class FatalProviderError(ProviderError):
    """Auth, bad request or unsupported model; retrying the same model cannot help."""


class CascadeExhausted(RuntimeError):
    """Every candidate of a cascade failed."""

    def __init__(
        self,
        models_attempted: Sequence[str],
        total_attempts: int,
        last_error: Optional[str] = None,
    ) -> None:
        self.models_attempted = list(models_attempted)
        self.total_attempts = total_attempts
        self.last_error = last_error
        models = ", ".join(self.models_attempted) or "none"
        super().__init__(
            f"All candidates failed after {total_attempts} attempts (models: {models}): "
            f"{last_error or 'no error recorded'}"
        )


class StoreWriteError(RuntimeError):
    """A conversation or audit store could not persist a record."""
