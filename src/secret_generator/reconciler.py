"""Reconcilers for generated secrets.

One reconciler exists per secret kind. Each turns a snapshot into a
``Patch`` or ``None`` (no-op) and never talks to the cluster itself, so
the whole pass can be exercised without a backing store.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from icecream import ic

from secret_generator.annotations import (
    ANNOTATION_GENERATED_AT,
    ANNOTATION_REGENERATE,
    ANNOTATION_SECURE,
    extract_policy,
    parse_kind,
)
from secret_generator.config import Settings
from secret_generator.decision import decide, missing_fields
from secret_generator.exceptions import GenerationError, ReconcileCancelled
from secret_generator.generators import (
    BASIC_AUTH_FIELDS,
    SSH_KEYPAIR_FIELDS,
    generate_basic_auth,
    generate_random_bytes,
    generate_random_string,
    generate_ssh_keypair,
)
from secret_generator.models import Decision, GenerationPolicy, Patch, SecretKind, SecretSnapshot

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_timestamp(moment: datetime) -> str:
    """Format a Generation Record timestamp as RFC 3339 in UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


class Reconciler(ABC):
    """Abstract base reconciler holding the pass logic shared by all kinds.

    Subclasses only define the field set and how it is generated.

    Attributes:
        kind: The secret kind handled by this reconciler.
        settings: Process-level defaults used for policy extraction.

    """

    kind: SecretKind

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the reconciler.

        Args:
            settings: Process-level defaults. Built-in defaults if omitted.

        """
        self.settings: Settings = settings or Settings()

    @abstractmethod
    def fields(self, policy: GenerationPolicy) -> tuple[str, ...]:
        """Return the names of the fields this kind generates."""

    @abstractmethod
    def generate(self, policy: GenerationPolicy) -> dict[str, bytes]:
        """Generate a complete field set for ``policy``."""

    def reconcile(
        self,
        snapshot: SecretSnapshot,
        *,
        cancel: threading.Event | None = None,
        now: datetime | None = None,
    ) -> Patch | None:
        """Run one reconcile pass over a snapshot.

        Args:
            snapshot: The secret as read at the start of the pass.
            cancel: Event checked before any random material is generated.
            now: Timestamp for the Generation Record. Defaults to the current time.

        Returns:
            The patch to persist, or None when nothing needs to change.

        Raises:
            ReconcileCancelled: If ``cancel`` is set before generation.
            GenerationError: If the field set cannot be generated.

        """
        policy = extract_policy(snapshot.annotations, self.settings)
        decision = decide(policy, snapshot.annotations)
        ic(snapshot.namespace, snapshot.name, policy.kind, decision)

        if decision is Decision.SKIP:
            # A Generation Record is trusted even when fields are missing
            missing = missing_fields(self.fields(policy), snapshot.data)
            if missing:
                ic(snapshot.namespace, snapshot.name, missing)
            return None

        if cancel is not None and cancel.is_set():
            raise ReconcileCancelled(f"Reconcile of {snapshot.namespace}/{snapshot.name} was cancelled")

        expected = self.fields(policy)
        try:
            values = self.generate(policy)
        except GenerationError:
            raise
        except (OSError, ValueError) as err:
            raise GenerationError(f"Failed to generate {self.kind.value} secret: {err}") from err

        if sorted(values) != sorted(expected):
            raise GenerationError(
                f"Generated fields {sorted(values)} do not match expected fields {sorted(expected)}"
            )

        annotations = {
            ANNOTATION_GENERATED_AT: format_timestamp(now or datetime.now(timezone.utc)),
            ANNOTATION_SECURE: "yes",
        }
        remove = (ANNOTATION_REGENERATE,) if policy.regenerate else ()

        return Patch(
            namespace=snapshot.namespace,
            name=snapshot.name,
            resource_version=snapshot.resource_version,
            decision=decision,
            data=values,
            annotations=annotations,
            remove_annotations=remove,
        )


class StringReconciler(Reconciler):
    """Fills the fields listed in the autogenerate annotation with random strings."""

    kind = SecretKind.STRING

    def fields(self, policy: GenerationPolicy) -> tuple[str, ...]:
        return policy.fields

    def generate(self, policy: GenerationPolicy) -> dict[str, bytes]:
        if policy.byte_length:
            return {name: generate_random_bytes(policy.length, policy.encoding) for name in policy.fields}
        return {name: generate_random_string(policy.length, policy.charset) for name in policy.fields}


class BasicAuthReconciler(Reconciler):
    """Generates a username, password and bcrypt auth entry."""

    kind = SecretKind.BASIC_AUTH

    def fields(self, policy: GenerationPolicy) -> tuple[str, ...]:
        return BASIC_AUTH_FIELDS

    def generate(self, policy: GenerationPolicy) -> dict[str, bytes]:
        return generate_basic_auth(policy.username, policy.length, policy.charset)


class SSHKeyPairReconciler(Reconciler):
    """Generates an RSA private and public key together."""

    kind = SecretKind.SSH_KEYPAIR

    def fields(self, policy: GenerationPolicy) -> tuple[str, ...]:
        return SSH_KEYPAIR_FIELDS

    def generate(self, policy: GenerationPolicy) -> dict[str, bytes]:
        return generate_ssh_keypair(policy.length)


def build_reconcilers(settings: Settings | None = None) -> dict[SecretKind, Reconciler]:
    """Build one reconciler per supported secret kind.

    Args:
        settings: Process-level defaults shared by all reconcilers.

    Returns:
        Mapping of secret kind to its reconciler.

    """
    settings = settings or Settings()
    return {
        reconciler.kind: reconciler
        for reconciler in (
            StringReconciler(settings),
            BasicAuthReconciler(settings),
            SSHKeyPairReconciler(settings),
        )
    }


def reconcile(
    snapshot: SecretSnapshot,
    settings: Settings | None = None,
    *,
    cancel: threading.Event | None = None,
    now: datetime | None = None,
) -> Patch | None:
    """Dispatch a snapshot to the reconciler for its kind.

    Args:
        snapshot: The secret as read at the start of the pass.
        settings: Process-level defaults.
        cancel: Event checked before any random material is generated.
        now: Timestamp for the Generation Record.

    Returns:
        The patch to persist, or None for a no-op.

    """
    reconciler = build_reconcilers(settings)[parse_kind(snapshot.annotations)]
    return reconciler.reconcile(snapshot, cancel=cancel, now=now)
