"""Annotation parsing for generated secrets.

Annotations are the only interface users author directly, so every
recognized key and its default lives here. Parsing is total: malformed
values resolve to defaults instead of failing the reconcile.
"""

from collections.abc import Mapping
from enum import Enum
from typing import TypeVar

from secret_generator.config import DEFAULT_SECRET_LENGTH, MIN_SSH_KEY_LENGTH, Settings
from secret_generator.models import Charset, Encoding, GenerationPolicy, SecretKind

ANNOTATION_PREFIX = "secret-generator.v1.mittwald.de"

ANNOTATION_TYPE = f"{ANNOTATION_PREFIX}/type"
ANNOTATION_AUTOGENERATE = f"{ANNOTATION_PREFIX}/autogenerate"
ANNOTATION_LENGTH = f"{ANNOTATION_PREFIX}/length"
ANNOTATION_CHARSET = f"{ANNOTATION_PREFIX}/charset"
ANNOTATION_ENCODING = f"{ANNOTATION_PREFIX}/encoding"
ANNOTATION_REGENERATE = f"{ANNOTATION_PREFIX}/regenerate"
ANNOTATION_BASIC_AUTH_USERNAME = f"{ANNOTATION_PREFIX}/basic-auth-username"
ANNOTATION_GENERATED_AT = f"{ANNOTATION_PREFIX}/autogenerate-generated-at"
ANNOTATION_SECURE = f"{ANNOTATION_PREFIX}/secure"

DEFAULT_FIELDS: tuple[str, ...] = ("password",)
DEFAULT_USERNAME = "admin"

_FALSY_VALUES = frozenset({"", "false", "no", "0", "off"})
_BYTE_SUFFIX = "b"

E = TypeVar("E", bound=Enum)


def is_managed(annotations: Mapping[str, str]) -> bool:
    """Check whether a secret opted in to generation.

    Args:
        annotations: The secret's annotations.

    Returns:
        True if the type or autogenerate annotation is present.

    """
    return ANNOTATION_TYPE in annotations or ANNOTATION_AUTOGENERATE in annotations


def parse_kind(annotations: Mapping[str, str]) -> SecretKind:
    """Resolve the secret kind selector, defaulting to a plain string."""
    value = annotations.get(ANNOTATION_TYPE, "").strip().lower()
    try:
        return SecretKind(value)
    except ValueError:
        return SecretKind.STRING


def is_truthy(value: str | None) -> bool:
    """Interpret an annotation value as a flag."""
    if value is None:
        return False
    return value.strip().lower() not in _FALSY_VALUES


def _parse_fields(value: str | None) -> tuple[str, ...]:
    if not value:
        return DEFAULT_FIELDS
    names: list[str] = []
    for name in value.split(","):
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names) or DEFAULT_FIELDS


def _parse_length(value: str | None, default: int, minimum: int = 1) -> tuple[int, bool]:
    """Parse a length annotation.

    Returns:
        Tuple of (length, byte_length). A trailing ``B`` selects byte mode.

    """
    if value is None:
        return default, False
    value = value.strip()
    byte_length = value.lower().endswith(_BYTE_SUFFIX)
    if byte_length:
        value = value[:-1]
    try:
        length = int(value)
    except ValueError:
        return default, False
    if length < minimum:
        return default, False
    return length, byte_length


def _parse_enum(enum_type: type[E], value: str | None, default: E) -> E:
    if value is None:
        return default
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        return default


def _parse_username(value: str | None) -> str:
    # The auth entry relies on a single ':' between username and hash
    if value is None:
        return DEFAULT_USERNAME
    value = value.strip()
    if not value or ":" in value:
        return DEFAULT_USERNAME
    return value


def extract_policy(annotations: Mapping[str, str], settings: Settings | None = None) -> GenerationPolicy:
    """Derive the generation policy from a secret's annotations.

    The result depends only on the annotations and the process-wide
    defaults; the Generation Record is never consulted here.

    Args:
        annotations: The secret's annotations.
        settings: Process-level defaults. Built-in defaults if omitted.

    Returns:
        The typed generation policy. Never raises.

    """
    settings = settings or Settings()
    kind = parse_kind(annotations)

    if kind is SecretKind.SSH_KEYPAIR:
        length, _ = _parse_length(annotations.get(ANNOTATION_LENGTH), settings.ssh_key_length, MIN_SSH_KEY_LENGTH)
        byte_length = False
    else:
        default_length = settings.secret_length if settings.secret_length > 0 else DEFAULT_SECRET_LENGTH
        length, byte_length = _parse_length(annotations.get(ANNOTATION_LENGTH), default_length)
        # Basic-auth passwords are always plain characters
        if kind is SecretKind.BASIC_AUTH:
            byte_length = False

    return GenerationPolicy(
        kind=kind,
        length=length,
        byte_length=byte_length,
        charset=_parse_enum(Charset, annotations.get(ANNOTATION_CHARSET), Charset.ALPHANUMERIC),
        encoding=_parse_enum(Encoding, annotations.get(ANNOTATION_ENCODING), settings.secret_encoding),
        regenerate=is_truthy(annotations.get(ANNOTATION_REGENERATE)),
        fields=_parse_fields(annotations.get(ANNOTATION_AUTOGENERATE)),
        username=_parse_username(annotations.get(ANNOTATION_BASIC_AUTH_USERNAME)),
    )
