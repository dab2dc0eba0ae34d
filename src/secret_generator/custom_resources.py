"""Reconciliation of StringSecret and SSHKeyPair custom resources.

Each resource owns a Secret with the same name in its namespace. The
resource spec is translated into generator annotations, so the owned
Secret is filled by the same reconcilers and follows the same SKIP, FILL
and REGENERATE rules as an annotated Secret.
"""

import threading
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from icecream import ic

from secret_generator import console
from secret_generator.annotations import (
    ANNOTATION_AUTOGENERATE,
    ANNOTATION_ENCODING,
    ANNOTATION_LENGTH,
    ANNOTATION_REGENERATE,
    ANNOTATION_TYPE,
)
from secret_generator.config import Settings
from secret_generator.controller import OUTCOME_FAILED, OUTCOME_GONE, SecretStore
from secret_generator.exceptions import (
    ConflictError,
    GenerationError,
    ReconcileCancelled,
    SecretNotFoundError,
)
from secret_generator.models import (
    CRD_GROUP,
    CRD_VERSION,
    CustomResource,
    Decision,
    Patch,
    ResourceKind,
    SecretKind,
    SecretSnapshot,
)
from secret_generator.reconciler import Reconciler, build_reconcilers

DEFAULT_SECRET_TYPE = "Opaque"


class ResourceStore(SecretStore, Protocol):
    """Operations needed to reconcile custom resources and their Secrets."""

    def create(
        self,
        patch: Patch,
        *,
        owner: Mapping[str, Any] | None = None,
        secret_type: str = ...,
        extra_data: Mapping[str, bytes] | None = None,
    ) -> None: ...

    def list_resources(self, kind: ResourceKind, namespace: str | None = None) -> list[CustomResource]: ...

    def watch_resources(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        stop: threading.Event | None = None,
        timeout: int = ...,
    ) -> Iterator[CustomResource]: ...

    def update_resource_status(self, resource: CustomResource, status: Mapping[str, Any]) -> bool: ...


def wants_regeneration(resource: CustomResource) -> bool:
    """Return whether ``forceRegenerate`` applies to the current generation.

    The flag acts once per spec change: after a successful pass the
    generation is recorded in the status and the flag is ignored until the
    spec changes again.
    """
    if resource.spec.get("forceRegenerate") is not True:
        return False
    return resource.generation is None or resource.generation != resource.observed_generation


def policy_annotations(resource: CustomResource) -> list[dict[str, str]]:
    """Translate a resource spec into generator annotation sets.

    A StringSecret yields one set per entry in ``spec.fields`` so every
    field keeps its own length and encoding. An SSHKeyPair yields a
    single set.

    Args:
        resource: The custom resource.

    Returns:
        Annotation sets, each reconciled on its own.

    """
    groups: list[dict[str, str]] = []
    if resource.kind is ResourceKind.STRING_SECRET:
        for entry in resource.spec.get("fields") or []:
            if not isinstance(entry, Mapping) or not entry.get("fieldName"):
                continue
            annotations = {ANNOTATION_TYPE: resource.kind.secret_kind.value}
            annotations[ANNOTATION_AUTOGENERATE] = str(entry["fieldName"])
            if entry.get("length") is not None:
                annotations[ANNOTATION_LENGTH] = str(entry["length"])
            if entry.get("encoding"):
                annotations[ANNOTATION_ENCODING] = str(entry["encoding"])
            groups.append(annotations)
        if not groups:
            # No fields listed: fall back to the string kind's default field
            groups.append({ANNOTATION_TYPE: resource.kind.secret_kind.value})
    else:
        annotations = {ANNOTATION_TYPE: resource.kind.secret_kind.value}
        if resource.spec.get("length") is not None:
            annotations[ANNOTATION_LENGTH] = str(resource.spec["length"])
        groups.append(annotations)

    if wants_regeneration(resource):
        for annotations in groups:
            annotations[ANNOTATION_REGENERATE] = "yes"
    return groups


def owner_reference(resource: CustomResource) -> dict[str, Any]:
    """Return ``V1OwnerReference`` keyword arguments pointing at ``resource``."""
    return {
        "api_version": f"{CRD_GROUP}/{CRD_VERSION}",
        "kind": resource.kind.value,
        "name": resource.name,
        "uid": resource.uid,
        "controller": True,
        "block_owner_deletion": True,
    }


def static_data(resource: CustomResource) -> dict[str, bytes]:
    """Return the literal ``spec.data`` entries as bytes."""
    return {str(key): str(value).encode() for key, value in (resource.spec.get("data") or {}).items()}


class CustomResourceController:
    """Materializes the Secrets owned by StringSecret and SSHKeyPair resources.

    Attributes:
        store: Resource client for Secrets and custom resources.
        settings: Runtime settings.
        reconcilers: Reconciler per secret kind.

    """

    def __init__(self, store: ResourceStore, settings: Settings | None = None) -> None:
        """Initialize the controller with a store and runtime settings."""
        self.store = store
        self.settings: Settings = settings or Settings()
        self.reconcilers: dict[SecretKind, Reconciler] = build_reconcilers(self.settings)

    def build_patch(
        self,
        resource: CustomResource,
        secret: SecretSnapshot | None,
        cancel: threading.Event | None = None,
        now: datetime | None = None,
    ) -> Patch | None:
        """Run the reconcilers for a resource against its owned Secret.

        Every annotation set is reconciled against the same Generation
        Record, so either all of them produce a patch or none does.

        Args:
            resource: The custom resource.
            secret: The owned Secret, or None if it does not exist yet.
            cancel: Event checked before any random material is generated.
            now: Timestamp for the Generation Record.

        Returns:
            One patch covering every generated field, or None for a no-op.

        Raises:
            ReconcileCancelled: If ``cancel`` is set before generation.
            GenerationError: If a field set cannot be generated.

        """
        reconciler: Reconciler = self.reconcilers[resource.kind.secret_kind]
        current = dict(secret.annotations) if secret else {}
        data = secret.data if secret else {}
        version = secret.resource_version if secret else None
        now = now or datetime.now(timezone.utc)

        patches = []
        for annotations in policy_annotations(resource):
            snapshot = SecretSnapshot(resource.name, resource.namespace, {**current, **annotations}, data, version)
            patch = reconciler.reconcile(snapshot, cancel=cancel, now=now)
            if patch is not None:
                patches.append(patch)

        if not patches:
            return None

        merged: dict[str, bytes] = {}
        for patch in patches:
            merged.update(patch.data)
        return Patch(
            namespace=resource.namespace,
            name=resource.name,
            resource_version=version,
            decision=patches[0].decision,
            data=merged,
            annotations=patches[0].annotations,
            # Only flags actually present on the owned Secret are removed
            remove_annotations=tuple(key for key in patches[0].remove_annotations if key in current),
        )

    def _record_status(self, resource: CustomResource) -> None:
        if resource.generation is not None and resource.generation == resource.observed_generation:
            return
        status: dict[str, Any] = {"secret": {"name": resource.name}}
        if resource.generation is not None:
            status["observedGeneration"] = resource.generation
        self.store.update_resource_status(resource, status)

    def reconcile_resource(
        self,
        resource: CustomResource,
        cancel: threading.Event | None = None,
        now: datetime | None = None,
    ) -> Decision:
        """Reconcile one resource and persist its owned Secret.

        Args:
            resource: The custom resource.
            cancel: Event that aborts the pass before generation or persistence.
            now: Timestamp for the Generation Record.

        Returns:
            The decision that was applied.

        Raises:
            ConflictError: If every attempt hit a write conflict.
            GenerationError: If credential material could not be generated.
            ReconcileCancelled: If ``cancel`` was set.

        """
        ref = console.secret_ref(resource.namespace, resource.name)

        for attempt in range(1, self.settings.max_conflict_retries + 1):
            secret = self.store.get(resource.namespace, resource.name)
            patch = self.build_patch(resource, secret, cancel, now)
            if patch is None:
                ic(resource.kind.value, resource.namespace, resource.name, Decision.SKIP)
                self._record_status(resource)
                return Decision.SKIP

            if cancel is not None and cancel.is_set():
                raise ReconcileCancelled(
                    f"Reconcile of {resource.kind.value} {resource.namespace}/{resource.name} was cancelled"
                )

            try:
                if secret is None:
                    self.store.create(
                        patch,
                        owner=owner_reference(resource),
                        secret_type=str(resource.spec.get("type") or DEFAULT_SECRET_TYPE),
                        extra_data=static_data(resource),
                    )
                else:
                    self.store.update(patch)
            except (ConflictError, SecretNotFoundError) as e:
                console.warning(f"Conflict on attempt {attempt} for {resource.kind.value} {ref}: {e}")
                continue

            self._record_status(resource)
            verb = "Regenerated" if patch.decision is Decision.REGENERATE else "Generated"
            console.success(f"{verb} {', '.join(sorted(patch.data))} for {resource.kind.value} {ref}")
            return patch.decision

        raise ConflictError(
            f"Giving up on {resource.kind.value} {resource.namespace}/{resource.name} "
            f"after {self.settings.max_conflict_retries} conflicting writes"
        )

    def _reconcile_reporting(self, resource: CustomResource, cancel: threading.Event | None) -> str:
        try:
            decision = self.reconcile_resource(resource, cancel=cancel)
        except (ConflictError, GenerationError) as e:
            console.error(
                f"Reconcile of {resource.kind.value} "
                f"{console.secret_ref(resource.namespace, resource.name)} failed: {e}"
            )
            return OUTCOME_FAILED
        return decision.value

    def reconcile_all(self, namespace: str | None = None, cancel: threading.Event | None = None) -> dict[str, int]:
        """Run one pass over every StringSecret and SSHKeyPair.

        Args:
            namespace: Namespace to process, or None for all namespaces.
            cancel: Event that stops processing further resources.

        Returns:
            Count of resources per outcome.

        """
        counts = {decision.value: 0 for decision in Decision}
        counts[OUTCOME_GONE] = 0
        counts[OUTCOME_FAILED] = 0

        for kind in ResourceKind:
            with console.spinner(f"Listing {kind.plural}..."):
                resources = self.store.list_resources(kind, namespace)
            for resource in resources:
                try:
                    counts[self._reconcile_reporting(resource, cancel)] += 1
                except ReconcileCancelled:
                    return counts

        return counts

    def run(self, kind: ResourceKind, stop: threading.Event | None = None) -> None:
        """Process watch events for one resource kind until ``stop`` is set.

        Args:
            kind: The resource kind to watch.
            stop: Event that ends the loop.

        """
        scope = self.settings.namespace or "all namespaces"
        console.action(f"Watching {kind.plural} in {console.highlight(scope)}")

        for resource in self.store.watch_resources(kind, self.settings.namespace, stop, self.settings.watch_timeout):
            try:
                self._reconcile_reporting(resource, stop)
            except ReconcileCancelled:
                break

        console.info(f"{kind.value} controller stopped")
