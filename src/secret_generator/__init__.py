"""secret-generator: annotation-driven credential generation for Kubernetes.

This package watches Secrets and fills in random strings, basic-auth
entries and SSH keypairs as requested by their annotations.

Example usage:
    from secret_generator import SecretSnapshot, reconcile

    snapshot = SecretSnapshot(
        name="db",
        namespace="default",
        annotations={"secret-generator.v1.mittwald.de/type": "basic-auth"},
    )
    patch = reconcile(snapshot)
"""

__version__ = "0.1.0"

from secret_generator.annotations import extract_policy
from secret_generator.cli import cli
from secret_generator.cluster import Cluster
from secret_generator.config import Settings
from secret_generator.controller import Controller
from secret_generator.custom_resources import CustomResourceController
from secret_generator.exceptions import (
    ClusterConnectionError,
    ConflictError,
    GenerationError,
    ReconcileCancelled,
    SecretGeneratorError,
    SecretNotFoundError,
    SecretParsingError,
)
from secret_generator.models import (
    CustomResource,
    Decision,
    GenerationPolicy,
    Patch,
    ResourceKind,
    SecretKind,
    SecretSnapshot,
)
from secret_generator.reconciler import reconcile

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "Cluster",
    "Controller",
    "CustomResourceController",
    "Settings",
    # Engine
    "extract_policy",
    "reconcile",
    "Decision",
    "GenerationPolicy",
    "Patch",
    "SecretKind",
    "SecretSnapshot",
    "CustomResource",
    "ResourceKind",
    # Exceptions
    "SecretGeneratorError",
    "ClusterConnectionError",
    "ConflictError",
    "GenerationError",
    "ReconcileCancelled",
    "SecretNotFoundError",
    "SecretParsingError",
]
