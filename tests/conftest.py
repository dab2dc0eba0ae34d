"""Shared test fixtures for secret-generator tests."""

import threading
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from secret_generator.annotations import ANNOTATION_TYPE, is_managed
from secret_generator.config import Settings
from secret_generator.exceptions import ConflictError, SecretNotFoundError
from secret_generator.models import CustomResource, Patch, ResourceKind, SecretSnapshot


class InMemorySecretStore:
    """Secret store keeping snapshots in a dict, with injectable conflicts."""

    def __init__(self) -> None:
        self.secrets: dict[tuple[str, str], SecretSnapshot] = {}
        self.updates: list[Patch] = []
        self.events: list[SecretSnapshot] = []
        self.conflicts_to_inject = 0
        self._version = 0

    def put(self, snapshot: SecretSnapshot) -> SecretSnapshot:
        self._version += 1
        stored = SecretSnapshot(
            name=snapshot.name,
            namespace=snapshot.namespace,
            annotations=dict(snapshot.annotations),
            data=dict(snapshot.data),
            resource_version=str(self._version),
        )
        self.secrets[(stored.namespace, stored.name)] = stored
        return stored

    def get(self, namespace: str, name: str) -> SecretSnapshot | None:
        return self.secrets.get((namespace, name))

    def list(self, namespace: str | None = None) -> list[SecretSnapshot]:
        return [
            s
            for s in self.secrets.values()
            if (namespace is None or s.namespace == namespace) and is_managed(s.annotations)
        ]

    def update(self, patch: Patch) -> None:
        current = self.secrets.get((patch.namespace, patch.name))
        if current is None:
            raise SecretNotFoundError(f"{patch.namespace}/{patch.name}")
        if self.conflicts_to_inject:
            self.conflicts_to_inject -= 1
            self.put(current)
            raise ConflictError("injected conflict")
        if patch.resource_version and patch.resource_version != current.resource_version:
            raise ConflictError("stale resource version")
        annotations, data = patch.apply(current.annotations, current.data)
        self.put(SecretSnapshot(current.name, current.namespace, annotations, data))
        self.updates.append(patch)

    def watch(
        self,
        namespace: str | None = None,
        stop: threading.Event | None = None,
        timeout: int = 0,
    ) -> Iterator[SecretSnapshot]:
        for snapshot in self.events:
            if stop is not None and stop.is_set():
                return
            yield snapshot


class InMemoryResourceStore(InMemorySecretStore):
    """Secret store that also holds StringSecret and SSHKeyPair resources."""

    def __init__(self) -> None:
        super().__init__()
        self.resources: list[CustomResource] = []
        self.resource_events: dict[ResourceKind, list[CustomResource]] = {}
        self.created: list[dict] = []
        self.statuses: dict[tuple[str, str], dict] = {}

    def create(self, patch: Patch, *, owner=None, secret_type: str = "Opaque", extra_data=None) -> None:
        if self.get(patch.namespace, patch.name) is not None:
            raise ConflictError("already exists")
        data = {**(extra_data or {}), **patch.data}
        self.put(SecretSnapshot(patch.name, patch.namespace, dict(patch.annotations), data))
        self.created.append({"patch": patch, "owner": owner, "type": secret_type})

    def list_resources(self, kind: ResourceKind, namespace: str | None = None) -> list[CustomResource]:
        return [r for r in self.resources if r.kind is kind and (namespace is None or r.namespace == namespace)]

    def watch_resources(self, kind, namespace=None, stop=None, timeout=0) -> Iterator[CustomResource]:
        for resource in self.resource_events.get(kind, []):
            if stop is not None and stop.is_set():
                return
            yield resource

    def update_resource_status(self, resource: CustomResource, status) -> bool:
        self.statuses[(resource.namespace, resource.name)] = dict(status)
        return True


@pytest.fixture
def store():
    """Fresh in-memory secret store per test."""
    return InMemorySecretStore()


@pytest.fixture
def resource_store():
    """Fresh in-memory store with custom resource support per test."""
    return InMemoryResourceStore()


@pytest.fixture
def settings():
    """Settings with a small RSA key size to keep tests fast."""
    return Settings(ssh_key_length=1024)


@pytest.fixture
def make_snapshot():
    """Factory for secret snapshots with generator annotations."""

    def _make(kind: str = "string", name: str = "test-secret", data=None, **annotations: str) -> SecretSnapshot:
        merged = {ANNOTATION_TYPE: kind}
        merged.update(annotations)
        return SecretSnapshot(name=name, namespace="default", annotations=merged, data=data or {})

    return _make


@pytest.fixture
def mock_kube_contexts():
    """Mock kubernetes config contexts."""
    with patch("kubernetes.config.list_kube_config_contexts") as mock:
        mock.return_value = ([{"name": "test-context"}], {"name": "test-context"})
        yield mock


@pytest.fixture
def mock_kube_config():
    """Mock kubernetes config loading."""
    with patch("kubernetes.config.load_kube_config") as mock:
        yield mock


@pytest.fixture
def mock_core_v1_api():
    """Mock CoreV1Api instance."""
    with patch("kubernetes.client.CoreV1Api") as mock:
        api_instance = MagicMock()
        mock.return_value = api_instance
        yield api_instance


@pytest.fixture
def mock_custom_objects_api():
    """Mock CustomObjectsApi instance."""
    with patch("kubernetes.client.CustomObjectsApi") as mock:
        api_instance = MagicMock()
        mock.return_value = api_instance
        yield api_instance


@pytest.fixture
def cluster_mocks(mock_kube_contexts, mock_kube_config, mock_core_v1_api, mock_custom_objects_api):
    """Combined fixture for creating a Cluster instance without cluster access."""
    return {
        "contexts": mock_kube_contexts,
        "config": mock_kube_config,
        "core_api": mock_core_v1_api,
        "custom_api": mock_custom_objects_api,
    }
