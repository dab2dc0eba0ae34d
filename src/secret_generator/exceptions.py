"""Custom exceptions for secret-generator.

This module defines the exception hierarchy used throughout the application
to separate fatal, retryable and benign reconcile failures.
"""


class SecretGeneratorError(Exception):
    """Base exception for all secret-generator errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all secret-generator errors with a single
    except clause if desired.
    """

    pass


class ClusterConnectionError(SecretGeneratorError):
    """Raised when connection to the Kubernetes cluster fails.

    This can occur when:
    - The kubeconfig is invalid or missing
    - The cluster is unreachable
    - Authentication fails
    """

    pass


class GenerationError(SecretGeneratorError):
    """Raised when credential material cannot be generated.

    This is fatal to the reconcile pass that raised it. No partial
    field set is ever returned alongside it.
    """

    pass


class ConflictError(SecretGeneratorError):
    """Raised when a secret changed between read and write.

    The error is retryable: callers re-run the whole reconcile from a
    fresh snapshot instead of merging patches.
    """

    pass


class SecretNotFoundError(SecretGeneratorError):
    """Raised when a secret was deleted before it could be written."""

    pass


class ReconcileCancelled(SecretGeneratorError):
    """Raised when a reconcile pass is cancelled before generating values."""

    pass


class SecretParsingError(SecretGeneratorError):
    """Raised when parsing a secret manifest fails.

    This can occur when:
    - The file does not exist
    - The file is not valid YAML
    - The YAML does not represent a Kubernetes Secret
    """

    pass
