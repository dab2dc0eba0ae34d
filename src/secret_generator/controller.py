"""Controller loop tying a secret store to the reconcilers.

The controller reads snapshots, runs one reconcile pass per secret and
persists the resulting patch. Write conflicts re-run the whole pass
from a fresh snapshot; patches are never merged.
"""

import threading
from collections.abc import Iterator
from typing import Protocol

from icecream import ic

from secret_generator import console
from secret_generator.annotations import parse_kind
from secret_generator.config import Settings
from secret_generator.exceptions import (
    ConflictError,
    GenerationError,
    ReconcileCancelled,
    SecretNotFoundError,
)
from secret_generator.models import Decision, Patch, SecretKind, SecretSnapshot
from secret_generator.reconciler import Reconciler, build_reconcilers

OUTCOME_GONE = "gone"
OUTCOME_FAILED = "failed"


class SecretStore(Protocol):
    """Operations the controller needs from a resource client."""

    def get(self, namespace: str, name: str) -> SecretSnapshot | None: ...

    def list(self, namespace: str | None = None) -> list[SecretSnapshot]: ...

    def update(self, patch: Patch) -> None: ...

    def watch(
        self,
        namespace: str | None = None,
        stop: threading.Event | None = None,
        timeout: int = ...,
    ) -> Iterator[SecretSnapshot]: ...


class Controller:
    """Runs reconcile passes against a secret store.

    Attributes:
        store: The resource client used for reads and writes.
        settings: Runtime settings.
        reconcilers: Reconciler per secret kind.

    """

    def __init__(self, store: SecretStore, settings: Settings | None = None) -> None:
        """Initialize the controller.

        Args:
            store: Resource client implementing get, list, update and watch.
            settings: Runtime settings. Built-in defaults if omitted.

        """
        self.store = store
        self.settings: Settings = settings or Settings()
        self.reconcilers: dict[SecretKind, Reconciler] = build_reconcilers(self.settings)

    def reconciler_for(self, snapshot: SecretSnapshot) -> Reconciler:
        """Return the reconciler matching the snapshot's kind selector."""
        return self.reconcilers[parse_kind(snapshot.annotations)]

    def reconcile_secret(
        self,
        namespace: str,
        name: str,
        snapshot: SecretSnapshot | None = None,
        cancel: threading.Event | None = None,
    ) -> Decision | None:
        """Reconcile one secret and persist the result.

        Args:
            namespace: Namespace of the secret.
            name: Name of the secret.
            snapshot: Snapshot to start from, e.g. from a watch event.
                      The secret is read from the store if omitted.
            cancel: Event that aborts the pass before generation or persistence.

        Returns:
            The decision that was applied, or None if the secret is gone.

        Raises:
            ConflictError: If every attempt hit a write conflict.
            GenerationError: If credential material could not be generated.
            ReconcileCancelled: If ``cancel`` was set.

        """
        for attempt in range(1, self.settings.max_conflict_retries + 1):
            if snapshot is None:
                snapshot = self.store.get(namespace, name)
            if snapshot is None:
                console.info(f"Secret {console.secret_ref(namespace, name)} no longer exists, skipping")
                return None

            patch = self.reconciler_for(snapshot).reconcile(snapshot, cancel=cancel)
            if patch is None:
                ic(namespace, name, Decision.SKIP)
                return Decision.SKIP

            if cancel is not None and cancel.is_set():
                raise ReconcileCancelled(f"Reconcile of {namespace}/{name} was cancelled")

            try:
                self.store.update(patch)
            except SecretNotFoundError:
                console.info(f"Secret {console.secret_ref(namespace, name)} was deleted, skipping")
                return None
            except ConflictError as e:
                console.warning(f"Conflict on attempt {attempt} for {console.secret_ref(namespace, name)}: {e}")
                snapshot = None
                continue

            verb = "Regenerated" if patch.decision is Decision.REGENERATE else "Generated"
            console.success(
                f"{verb} {', '.join(sorted(patch.data))} for {console.secret_ref(namespace, name)}"
            )
            return patch.decision

        raise ConflictError(
            f"Giving up on {namespace}/{name} after {self.settings.max_conflict_retries} conflicting writes"
        )

    def _reconcile_reporting(self, snapshot: SecretSnapshot, cancel: threading.Event | None) -> str:
        """Reconcile a snapshot, reporting failures instead of raising them.

        Returns:
            The decision value, ``gone`` for deleted secrets or ``failed``.

        """
        try:
            decision = self.reconcile_secret(snapshot.namespace, snapshot.name, snapshot=snapshot, cancel=cancel)
        except (ConflictError, GenerationError) as e:
            console.error(f"Reconcile of {console.secret_ref(snapshot.namespace, snapshot.name)} failed: {e}")
            return OUTCOME_FAILED
        return OUTCOME_GONE if decision is None else decision.value

    def reconcile_all(self, namespace: str | None = None, cancel: threading.Event | None = None) -> dict[str, int]:
        """Run one pass over every managed secret.

        Args:
            namespace: Namespace to process, or None for all namespaces.
            cancel: Event that stops processing further secrets.

        Returns:
            Count of secrets per outcome.

        """
        counts = {decision.value: 0 for decision in Decision}
        counts[OUTCOME_GONE] = 0
        counts[OUTCOME_FAILED] = 0

        with console.spinner("Listing managed secrets..."):
            snapshots = self.store.list(namespace)

        for snapshot in snapshots:
            try:
                counts[self._reconcile_reporting(snapshot, cancel)] += 1
            except ReconcileCancelled:
                break

        return counts

    def run(self, stop: threading.Event | None = None) -> None:
        """Process watch events until ``stop`` is set.

        Events are handled one at a time, so a secret never has more than
        one reconcile in flight.

        Args:
            stop: Event that ends the loop.

        """
        scope = self.settings.namespace or "all namespaces"
        console.action(f"Watching secrets in {console.highlight(scope)}")

        for snapshot in self.store.watch(self.settings.namespace, stop, self.settings.watch_timeout):
            try:
                self._reconcile_reporting(snapshot, stop)
            except ReconcileCancelled:
                break

        console.info("Controller stopped")
