"""Kubernetes cluster interaction utilities.

This module provides the Cluster class, the resource client used by the
controller to read, watch and update Secrets and the custom resources
that own them.
"""

from __future__ import annotations

import base64
import threading
from collections.abc import Callable, Iterator, Mapping
from typing import Any

import click
import questionary
from icecream import ic
from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError

from secret_generator import console
from secret_generator.annotations import is_managed
from secret_generator.config import DEFAULT_WATCH_TIMEOUT
from secret_generator.exceptions import (
    ClusterConnectionError,
    ConflictError,
    SecretNotFoundError,
)
from secret_generator.models import CRD_GROUP, CRD_VERSION, CustomResource, Patch, ResourceKind, SecretSnapshot

_PROMPT_STYLE = questionary.Style(
    [
        ("qmark", "fg:#af87ff bold"),
        ("question", "bold"),
        ("answer", "fg:#ff87d7 bold"),
        ("pointer", "fg:#ff87d7 bold"),
        ("highlighted", "fg:#1c1c1c bg:#ff87d7 bold"),
    ]
)

_WATCHED_EVENTS = frozenset({"ADDED", "MODIFIED"})
_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409
_HTTP_GONE = 410


def _api_error(err: ApiException, namespace: str, name: str) -> Exception:
    """Translate an API error for a single secret into a package exception."""
    if err.status == _HTTP_NOT_FOUND:
        return SecretNotFoundError(f"Secret {namespace}/{name} not found")
    if err.status == _HTTP_CONFLICT:
        return ConflictError(f"Secret {namespace}/{name} was modified concurrently")
    return ClusterConnectionError(f"API request for {namespace}/{name} failed ({err.status}): {err.reason}")


class Cluster:
    """Resource client for Secrets in a Kubernetes cluster.

    Implements the get, list, update and watch operations the controller
    relies on, plus the custom resource operations behind owned Secrets.

    Attributes:
        context: The active Kubernetes context name.
        api: CoreV1Api client bound to that context.
        custom_api: CustomObjectsApi client for StringSecret and SSHKeyPair.

    """

    def __init__(self, *, select_context: bool = False, in_cluster: bool = False) -> None:
        """Initialize Cluster and load its client configuration.

        Args:
            select_context: If True, prompt user to select a kubeconfig context.
            in_cluster: If True, use the service account of the running pod.

        Raises:
            ClusterConnectionError: If no usable configuration is found.

        """
        if in_cluster:
            try:
                config.load_incluster_config()
            except ConfigException as e:
                raise ClusterConnectionError(f"Invalid in-cluster configuration: {e}") from e
            self.context: str = "in-cluster"
            console.action(f"Working with {console.highlight(self.context)} configuration")
        else:
            self.context = self._set_context(select_context=select_context)
            config.load_kube_config(context=self.context)
        self.api: client.CoreV1Api = client.CoreV1Api()
        self.custom_api: client.CustomObjectsApi = client.CustomObjectsApi()

    @staticmethod
    def _set_context(*, select_context: bool) -> str:
        """Set the Kubernetes context to use.

        Args:
            select_context: If True, prompt user to select a context.

        Returns:
            The selected or current context name.

        Raises:
            ClusterConnectionError: If kubeconfig is invalid or missing.
            click.Abort: If user cancels context selection.

        """
        try:
            contexts, current_context = config.list_kube_config_contexts()
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e
        if select_context:
            context: str | None = questionary.select(
                "Select context to work with",
                choices=[context["name"] for context in contexts],
                style=_PROMPT_STYLE,
            ).ask()
            if context is None:
                console.warning("Context selection cancelled.")
                raise click.Abort()
        else:
            context = str(current_context["name"])
        console.action(f"Working with {console.highlight(context)} cluster")
        return context

    def _list_call(self, namespace: str | None) -> tuple[Callable[..., Any], dict[str, Any]]:
        if namespace:
            return self.api.list_namespaced_secret, {"namespace": namespace}
        return self.api.list_secret_for_all_namespaces, {}

    def get(self, namespace: str, name: str) -> SecretSnapshot | None:
        """Read a secret.

        Args:
            namespace: Namespace of the secret.
            name: Name of the secret.

        Returns:
            The snapshot, or None if the secret does not exist.

        Raises:
            ClusterConnectionError: If the cluster is unreachable.

        """
        try:
            secret = self.api.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == _HTTP_NOT_FOUND:
                return None
            raise _api_error(e, namespace, name) from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
        return SecretSnapshot.from_v1_secret(secret)

    def list(self, namespace: str | None = None) -> list[SecretSnapshot]:
        """List managed secrets.

        Args:
            namespace: Namespace to list, or None for all namespaces.

        Returns:
            Snapshots of every secret carrying generator annotations.

        """
        func, kwargs = self._list_call(namespace)
        try:
            items = func(**kwargs).items
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

        snapshots = [
            SecretSnapshot.from_v1_secret(secret)
            for secret in items
            if is_managed(secret.metadata.annotations or {})
        ]
        ic([f"{s.namespace}/{s.name}" for s in snapshots])
        return snapshots

    def update(self, patch: Patch) -> None:
        """Persist a patch with an optimistic concurrency check.

        Args:
            patch: The patch produced by a reconciler.

        Raises:
            ConflictError: If the secret changed since the patch was computed.
            SecretNotFoundError: If the secret no longer exists.
            ClusterConnectionError: If the cluster is unreachable.

        """
        try:
            current = self.api.read_namespaced_secret(patch.name, patch.namespace)
        except ApiException as e:
            raise _api_error(e, patch.namespace, patch.name) from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

        if patch.resource_version and current.metadata.resource_version != patch.resource_version:
            raise ConflictError(
                f"Secret {patch.namespace}/{patch.name} changed from version "
                f"{patch.resource_version} to {current.metadata.resource_version}"
            )

        snapshot = SecretSnapshot.from_v1_secret(current)
        annotations, data = patch.apply(snapshot.annotations, snapshot.data)
        current.metadata.annotations = annotations
        current.data = {key: base64.b64encode(value).decode() for key, value in data.items()}
        ic(patch.namespace, patch.name, sorted(patch.data), patch.remove_annotations)

        try:
            self.api.replace_namespaced_secret(patch.name, patch.namespace, current)
        except ApiException as e:
            raise _api_error(e, patch.namespace, patch.name) from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

    def _stream(
        self,
        func: Callable[..., Any],
        kwargs: dict[str, Any],
        stop: threading.Event | None,
        timeout: int,
    ) -> Iterator[Any]:
        """Yield objects of ADDED and MODIFIED events, restarting expired watches."""
        watcher = watch.Watch()

        while stop is None or not stop.is_set():
            try:
                for event in watcher.stream(func, timeout_seconds=timeout, **kwargs):
                    if stop is not None and stop.is_set():
                        watcher.stop()
                        return
                    if event["type"] in _WATCHED_EVENTS:
                        yield event["object"]
            except ApiException as e:
                if e.status != _HTTP_GONE:
                    raise ClusterConnectionError(f"Watch failed ({e.status}): {e.reason}") from e
                console.warning("Watch expired, restarting")
            except MaxRetryError as e:
                raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

    def watch(
        self,
        namespace: str | None = None,
        stop: threading.Event | None = None,
        timeout: int = DEFAULT_WATCH_TIMEOUT,
    ) -> Iterator[SecretSnapshot]:
        """Yield snapshots of managed secrets as they are created or updated.

        The stream is restarted when the server closes it or when the
        watched resource version expires.

        Args:
            namespace: Namespace to watch, or None for all namespaces.
            stop: Event that ends the watch when set.
            timeout: Seconds before the server closes each stream.

        Yields:
            A snapshot per ADDED or MODIFIED event of a managed secret.

        """
        func, kwargs = self._list_call(namespace)
        for secret in self._stream(func, kwargs, stop, timeout):
            if is_managed(secret.metadata.annotations or {}):
                yield SecretSnapshot.from_v1_secret(secret)

    def create(
        self,
        patch: Patch,
        *,
        owner: Mapping[str, Any] | None = None,
        secret_type: str = "Opaque",
        extra_data: Mapping[str, bytes] | None = None,
    ) -> None:
        """Create the secret a patch was computed for.

        Args:
            patch: Patch produced for a secret that does not exist yet.
            owner: Keyword arguments for a ``V1OwnerReference``.
            secret_type: The Secret's ``type``.
            extra_data: Fields written alongside the generated ones.

        Raises:
            ConflictError: If the secret was created concurrently.
            ClusterConnectionError: If the cluster is unreachable.

        """
        data = {**(extra_data or {}), **patch.data}
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=patch.name,
                namespace=patch.namespace,
                annotations=dict(patch.annotations),
                owner_references=[client.V1OwnerReference(**owner)] if owner else None,
            ),
            type=secret_type,
            data={key: base64.b64encode(value).decode() for key, value in data.items()},
        )
        ic(patch.namespace, patch.name, sorted(data), owner)

        try:
            self.api.create_namespaced_secret(patch.namespace, body)
        except ApiException as e:
            raise _api_error(e, patch.namespace, patch.name) from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

    def _resource_list_call(
        self, kind: ResourceKind, namespace: str | None
    ) -> tuple[Callable[..., Any], dict[str, Any]]:
        kwargs: dict[str, Any] = {"group": CRD_GROUP, "version": CRD_VERSION, "plural": kind.plural}
        if namespace:
            return self.custom_api.list_namespaced_custom_object, {**kwargs, "namespace": namespace}
        return self.custom_api.list_cluster_custom_object, kwargs

    def list_resources(self, kind: ResourceKind, namespace: str | None = None) -> list[CustomResource]:
        """List custom resources of one kind.

        Args:
            kind: The resource kind to list.
            namespace: Namespace to list, or None for all namespaces.

        Returns:
            A view per resource.

        Raises:
            ClusterConnectionError: If the cluster is unreachable or the
                resource type is not installed.

        """
        func, kwargs = self._resource_list_call(kind, namespace)
        try:
            items = func(**kwargs).get("items", [])
        except ApiException as e:
            raise ClusterConnectionError(f"Listing {kind.plural} failed ({e.status}): {e.reason}") from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

        resources = [CustomResource.from_object(kind, item) for item in items]
        ic(kind.value, [f"{r.namespace}/{r.name}" for r in resources])
        return resources

    def watch_resources(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        stop: threading.Event | None = None,
        timeout: int = DEFAULT_WATCH_TIMEOUT,
    ) -> Iterator[CustomResource]:
        """Yield custom resources of one kind as they are created or updated.

        Args:
            kind: The resource kind to watch.
            namespace: Namespace to watch, or None for all namespaces.
            stop: Event that ends the watch when set.
            timeout: Seconds before the server closes each stream.

        Yields:
            A view per ADDED or MODIFIED event.

        """
        func, kwargs = self._resource_list_call(kind, namespace)
        for obj in self._stream(func, kwargs, stop, timeout):
            yield CustomResource.from_object(kind, obj)

    def update_resource_status(self, resource: CustomResource, status: Mapping[str, Any]) -> bool:
        """Merge ``status`` into a resource's status subresource.

        Args:
            resource: The resource to update.
            status: Status fields to set.

        Returns:
            True if the status was written, False if the resource is gone.

        Raises:
            ClusterConnectionError: If the cluster is unreachable.

        """
        try:
            self.custom_api.patch_namespaced_custom_object_status(
                CRD_GROUP,
                CRD_VERSION,
                resource.namespace,
                resource.kind.plural,
                resource.name,
                {"status": dict(status)},
            )
        except ApiException as e:
            if e.status == _HTTP_NOT_FOUND:
                ic(resource.kind.value, resource.namespace, resource.name, "gone")
                return False
            raise ClusterConnectionError(
                f"Status update for {resource.kind.value} {resource.namespace}/{resource.name} "
                f"failed ({e.status}): {e.reason}"
            ) from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
        return True

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Cluster(context={self.context!r})"
