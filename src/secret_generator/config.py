"""Process-level configuration for secret-generator.

Defaults are read from environment variables. Malformed values fall back
to the built-in defaults so a bad deployment variable never blocks
reconciliation.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from secret_generator.models import Encoding

DEFAULT_SECRET_LENGTH = 40
DEFAULT_SSH_KEY_LENGTH = 4096
MIN_SSH_KEY_LENGTH = 1024
DEFAULT_WATCH_TIMEOUT = 300
DEFAULT_MAX_CONFLICT_RETRIES = 3


def _positive_int(value: str | None, default: int, minimum: int = 1) -> int:
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime settings for the controller and the reconcilers.

    Attributes:
        secret_length: Default length of random strings and passwords.
        ssh_key_length: Default RSA key size in bits.
        secret_encoding: Default encoding for byte-length secrets.
        namespace: Namespace to watch, or None for all namespaces.
        watch_timeout: Seconds before a watch stream is restarted.
        max_conflict_retries: Reconcile attempts when a write conflicts.

    """

    secret_length: int = DEFAULT_SECRET_LENGTH
    ssh_key_length: int = DEFAULT_SSH_KEY_LENGTH
    secret_encoding: Encoding = Encoding.BASE64
    namespace: str | None = None
    watch_timeout: int = DEFAULT_WATCH_TIMEOUT
    max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Load settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            Settings with every unset or malformed variable at its default.

        """
        env = os.environ if environ is None else environ

        try:
            encoding = Encoding(env.get("SECRET_ENCODING", Encoding.BASE64.value).strip().lower())
        except ValueError:
            encoding = Encoding.BASE64

        return cls(
            secret_length=_positive_int(env.get("SECRET_LENGTH"), DEFAULT_SECRET_LENGTH),
            ssh_key_length=_positive_int(env.get("SSH_KEY_LENGTH"), DEFAULT_SSH_KEY_LENGTH, MIN_SSH_KEY_LENGTH),
            secret_encoding=encoding,
            namespace=env.get("WATCH_NAMESPACE") or None,
            watch_timeout=_positive_int(env.get("WATCH_TIMEOUT"), DEFAULT_WATCH_TIMEOUT),
            max_conflict_retries=_positive_int(env.get("MAX_CONFLICT_RETRIES"), DEFAULT_MAX_CONFLICT_RETRIES),
        )
