"""Data models for secret-generator.

This module provides type-safe data structures for the materialization
engine, replacing loosely-typed annotation dictionaries with proper
Python data classes.
"""

import base64
import binascii
import string
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from secret_generator.exceptions import SecretParsingError


class SecretKind(str, Enum):
    """Supported kinds of generated secrets.

    Inherits from str so values can be compared directly with
    annotation values.
    """

    STRING = "string"
    BASIC_AUTH = "basic-auth"
    SSH_KEYPAIR = "ssh-keypair"


# Quotes, backslash and backtick are left out so values survive shell and YAML quoting
_SYMBOLS = "!#$%&()*+,-./:;<=>?@[]^_{|}~"


class Charset(str, Enum):
    """Character classes for random strings."""

    ALPHANUMERIC = "alphanumeric"
    SYMBOLS = "symbols"

    @property
    def alphabet(self) -> str:
        """The characters random strings are drawn from."""
        if self is Charset.SYMBOLS:
            return string.ascii_letters + string.digits + _SYMBOLS
        return string.ascii_letters + string.digits


class Encoding(str, Enum):
    """Encodings applied to random bytes in byte-length mode."""

    BASE64 = "base64"
    BASE64URL = "base64url"
    BASE32 = "base32"
    HEX = "hex"
    RAW = "raw"


class Decision(str, Enum):
    """Outcome of the materialization decision for one reconcile pass."""

    SKIP = "skip"
    FILL = "fill"
    REGENERATE = "regenerate"


@dataclass(frozen=True, slots=True)
class GenerationPolicy:
    """Typed generation policy derived from a secret's annotations.

    Attributes:
        kind: The kind of secret to generate.
        length: Characters (or bytes in byte mode, or bits for keypairs).
        byte_length: Whether length counts random bytes before encoding.
        charset: Character class for random strings.
        encoding: Encoding for random bytes in byte mode.
        regenerate: Whether a one-shot regeneration was requested.
        fields: Names of the data fields generated for the string kind.
        username: Username for basic-auth secrets.

    """

    kind: SecretKind
    length: int
    byte_length: bool = False
    charset: Charset = Charset.ALPHANUMERIC
    encoding: Encoding = Encoding.BASE64
    regenerate: bool = False
    fields: tuple[str, ...] = ("password",)
    username: str = "admin"


def _decode_data(data: Mapping[str, str] | None) -> dict[str, bytes]:
    return {key: base64.b64decode(value) for key, value in (data or {}).items()}


@dataclass(frozen=True, slots=True)
class SecretSnapshot:
    """Read-only view of a Secret taken at the start of a reconcile pass.

    Attributes:
        name: The name of the secret.
        namespace: The namespace of the secret.
        annotations: Annotation keys mapped to string values.
        data: Data field names mapped to decoded byte values.
        resource_version: Version the snapshot was read at, if known.

    """

    name: str
    namespace: str
    annotations: Mapping[str, str] = field(default_factory=dict)
    data: Mapping[str, bytes] = field(default_factory=dict)
    resource_version: str | None = None

    @classmethod
    def from_v1_secret(cls, secret: Any) -> "SecretSnapshot":
        """Build a snapshot from a kubernetes ``V1Secret`` object.

        Args:
            secret: The secret as returned by ``CoreV1Api``.

        Returns:
            The snapshot with base64 data decoded.

        """
        metadata = secret.metadata
        return cls(
            name=metadata.name,
            namespace=metadata.namespace,
            annotations=dict(metadata.annotations or {}),
            data=_decode_data(secret.data),
            resource_version=metadata.resource_version,
        )

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any]) -> "SecretSnapshot":
        """Build a snapshot from a parsed Secret manifest.

        ``stringData`` entries take precedence over ``data`` entries,
        matching how the API server merges them.

        Args:
            manifest: The parsed YAML document.

        Returns:
            The snapshot with all data as bytes.

        Raises:
            SecretParsingError: If a ``data`` value is not valid base64.

        """
        metadata = manifest.get("metadata") or {}
        raw_data = manifest.get("data") or {}
        if not isinstance(raw_data, Mapping):
            raise SecretParsingError(f"Secret data must be a mapping, got {type(raw_data).__name__}")
        data: dict[str, bytes] = {}
        for key, value in raw_data.items():
            try:
                data[key] = base64.b64decode(value)
            except (binascii.Error, TypeError, ValueError) as err:
                raise SecretParsingError(f"Data key '{key}' is not a valid base64 string: {err}") from err
        for key, value in (manifest.get("stringData") or {}).items():
            data[key] = str(value).encode()
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", "default"),
            annotations={k: str(v) for k, v in (metadata.get("annotations") or {}).items()},
            data=data,
            resource_version=metadata.get("resourceVersion"),
        )


CRD_GROUP = "secretgenerator.mittwald.de"
CRD_VERSION = "v1alpha1"


class ResourceKind(str, Enum):
    """Custom resource kinds that own a generated Secret."""

    STRING_SECRET = "StringSecret"
    SSH_KEY_PAIR = "SSHKeyPair"

    @property
    def plural(self) -> str:
        """The plural resource name used in API paths."""
        return f"{self.value.lower()}s"

    @property
    def secret_kind(self) -> SecretKind:
        """The secret kind generated for this resource."""
        if self is ResourceKind.SSH_KEY_PAIR:
            return SecretKind.SSH_KEYPAIR
        return SecretKind.STRING


@dataclass(frozen=True, slots=True)
class CustomResource:
    """Read-only view of a StringSecret or SSHKeyPair resource.

    Attributes:
        kind: The resource kind.
        name: Name of the resource and of the Secret it owns.
        namespace: Namespace of the resource.
        uid: UID used for the owner reference.
        spec: The resource's spec as a plain mapping.
        generation: Current ``metadata.generation``.
        observed_generation: Generation last recorded in the status.

    """

    kind: ResourceKind
    name: str
    namespace: str
    uid: str
    spec: Mapping[str, Any] = field(default_factory=dict)
    generation: int | None = None
    observed_generation: int | None = None

    @classmethod
    def from_object(cls, kind: ResourceKind, obj: Mapping[str, Any]) -> "CustomResource":
        """Build a resource view from a ``CustomObjectsApi`` dict.

        Args:
            kind: The kind the object was listed or watched as.
            obj: The object as returned by the API.

        Returns:
            The resource view.

        """
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        return cls(
            kind=kind,
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", "default"),
            uid=metadata.get("uid", ""),
            spec=dict(obj.get("spec") or {}),
            generation=metadata.get("generation"),
            observed_generation=status.get("observedGeneration"),
        )


@dataclass(frozen=True, slots=True)
class Patch:
    """Mutation proposed by a reconcile pass.

    Attributes:
        namespace: Namespace of the target secret.
        name: Name of the target secret.
        resource_version: Version of the snapshot the patch was computed from.
        decision: Why the patch was produced (fill or regenerate).
        data: Full replacement of the kind-specific data fields.
        annotations: Annotations to set.
        remove_annotations: Annotation keys to delete.

    """

    namespace: str
    name: str
    resource_version: str | None
    decision: Decision
    data: Mapping[str, bytes]
    annotations: Mapping[str, str]
    remove_annotations: tuple[str, ...] = ()

    def apply(
        self,
        annotations: Mapping[str, str],
        data: Mapping[str, bytes],
    ) -> tuple[dict[str, str], dict[str, bytes]]:
        """Merge the patch into existing annotations and data.

        Args:
            annotations: Current annotations of the secret.
            data: Current data of the secret.

        Returns:
            Tuple of (annotations, data) after the patch.

        """
        new_annotations = {k: v for k, v in annotations.items() if k not in self.remove_annotations}
        new_annotations.update(self.annotations)
        new_data = dict(data)
        new_data.update(self.data)
        return new_annotations, new_data
