"""
Model selection for a cascade.

Pure decision logic: no I/O and no hidden state, so identical inputs always give the same cascade.
"""

from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Sequence,
)

from sbos_agent.config import settings
from sbos_agent.core.schema import (
    Complexity,
    ModelCandidate,
)


def default_cascade() -> tuple[ModelCandidate, ...]:
    """Build the configured base cascade, in preference order."""
    return tuple(ModelCandidate(**entry) for entry in settings.MODEL_CASCADE)


def default_complexity_models() -> Dict[Complexity, str]:
    return {Complexity(k): v for k, v in settings.COMPLEXITY_MODELS.items()}


def cascade_info(base: Sequence[ModelCandidate] | None = None) -> List[Dict[str, Any]]:
    """Describe the base cascade for monitoring / debugging."""
    cascade = default_cascade() if base is None else base
    return [
        {"identifier": c.identifier, "label": c.label, "max_retries": c.max_retries}
        for c in cascade
    ]


def _rotate(base: Sequence[ModelCandidate], start: int) -> List[ModelCandidate]:
    return [*base[start:], *base[:start]]


def _index_of(base: Sequence[ModelCandidate], identifier: str) -> int:
    for i, candidate in enumerate(base):
        if candidate.identifier == identifier:
            return i
    return -1


def build_cascade(
    complexity: Complexity | str,
    preferred_model: str | None = None,
    *,
    base: Sequence[ModelCandidate] | None = None,
    complexity_models: Mapping[Complexity, str] | None = None,
    preferred_retries: int | None = None,
) -> List[ModelCandidate]:
    """
    Return the ordered candidates to attempt for one logical completion.

    Parameters
    ----------
    complexity:
        Task-complexity hint; picks the canonical starting model when no preference is given.
    preferred_model:
        Explicit model identifier.  If it is part of *base* the cascade is rotated to start there,
        otherwise a synthetic candidate is put in front of the unrotated base cascade.
    base, complexity_models, preferred_retries:
        Overrides for the configured cascade, complexity table and synthetic retry budget.

    Raises
    ------
    ValueError
        If *complexity* is unknown, or the cascade would be empty.
    """
    complexity = Complexity(complexity)
    base = default_cascade() if base is None else tuple(base)
    table = default_complexity_models() if complexity_models is None else complexity_models
    if preferred_retries is None:
        preferred_retries = settings.PREFERRED_MODEL_RETRIES

    if preferred_model:
        start = _index_of(base, preferred_model)
        if start >= 0:
            return _rotate(base, start)
        synthetic = ModelCandidate(
            identifier=preferred_model,
            max_retries=preferred_retries,
            label=f"Preferred - {preferred_model}",
        )
        return [synthetic, *base]

    if not base:
        raise ValueError("base cascade is empty and no preferred model was given")

    canonical = table.get(complexity)
    start = _index_of(base, canonical) if canonical else -1
    # A canonical model outside the base cascade leaves the order untouched
    return _rotate(base, max(start, 0))
