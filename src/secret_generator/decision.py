"""Materialization decision logic.

Decides per reconcile pass whether a secret is left alone, filled for the
first time, or regenerated on request.
"""

from collections.abc import Iterable, Mapping

from secret_generator.annotations import ANNOTATION_GENERATED_AT
from secret_generator.models import Decision, GenerationPolicy


def decide(policy: GenerationPolicy, annotations: Mapping[str, str]) -> Decision:
    """Decide what a reconcile pass should do.

    A present Generation Record is trusted over the data itself: a secret
    with the record but missing fields was changed by someone else and is
    skipped rather than repaired.

    Args:
        policy: The policy extracted from the same annotations.
        annotations: The secret's current annotations.

    Returns:
        REGENERATE if the regenerate flag is set, FILL if the secret was
        never generated, SKIP otherwise.

    """
    if policy.regenerate:
        return Decision.REGENERATE
    if ANNOTATION_GENERATED_AT not in annotations:
        return Decision.FILL
    return Decision.SKIP


def missing_fields(fields: Iterable[str], data: Mapping[str, bytes]) -> list[str]:
    """Return the fields that are absent or empty in ``data``."""
    return [name for name in fields if not data.get(name)]
