"""Secret manifest parsing and offline materialization.

This module lets the reconcilers run against Secret YAML files, so
credentials can be filled in before a manifest ever reaches a cluster.
"""

import base64
from datetime import datetime
from typing import Any

import yaml

from secret_generator import console
from secret_generator.config import Settings
from secret_generator.exceptions import SecretParsingError
from secret_generator.models import Patch, SecretSnapshot
from secret_generator.reconciler import reconcile


def parse_secret_file(secret_path: str) -> dict[str, Any] | None:
    """Parse a YAML secret file.

    Args:
        secret_path: Path to the secret file.

    Returns:
        The parsed YAML document as a dictionary, or None if empty.

    Raises:
        SecretParsingError: If the file does not exist, contains multiple
            documents, contains malformed YAML, or is not a YAML mapping.

    """
    try:
        with open(secret_path) as stream:
            docs = [doc for doc in yaml.safe_load_all(stream) if doc is not None]
    except FileNotFoundError as err:
        raise SecretParsingError(f"Secret file '{secret_path}' does not exist") from err
    except yaml.YAMLError as err:
        raise SecretParsingError(f"Secret file '{secret_path}' contains malformed YAML: {err}") from err

    if len(docs) > 1:
        raise SecretParsingError(
            f"File '{secret_path}' contains multiple YAML documents. Only single document files are supported."
        )
    if not docs:
        return None
    result = docs[0]
    if not isinstance(result, dict):
        raise SecretParsingError(
            f"File '{secret_path}' does not contain a valid YAML mapping. Expected a Kubernetes Secret."
        )
    return result


def materialize_file(secret_path: str, settings: Settings | None = None, now: datetime | None = None) -> Patch | None:
    """Reconcile a Secret manifest and write the result back in place.

    Args:
        secret_path: Path to the Secret manifest.
        settings: Process-level defaults.
        now: Timestamp for the Generation Record.

    Returns:
        The applied patch, or None if the manifest was left untouched.

    Raises:
        SecretParsingError: If the file is empty or not a Secret manifest.

    """
    manifest = parse_secret_file(secret_path)
    if manifest is None:
        raise SecretParsingError(f"Secret file '{secret_path}' is empty")
    if manifest.get("kind") != "Secret":
        raise SecretParsingError(f"File '{secret_path}' is a {manifest.get('kind')!r}, expected a Secret")

    snapshot = SecretSnapshot.from_manifest(manifest)
    patch = reconcile(snapshot, settings, now=now)
    if patch is None:
        console.info(f"{console.highlight(secret_path)} is up to date")
        return None

    annotations, data = patch.apply(snapshot.annotations, snapshot.data)
    manifest.setdefault("metadata", {})["annotations"] = annotations
    manifest["data"] = {key: base64.b64encode(value).decode() for key, value in data.items()}
    # Everything now lives in data
    manifest.pop("stringData", None)

    with open(secret_path, "w") as stream:
        yaml.safe_dump(manifest, stream, sort_keys=False)

    console.summary_panel(
        "Secret Materialized",
        {
            "Name": snapshot.name,
            "Namespace": snapshot.namespace,
            "Action": patch.decision.value,
            "Fields": ", ".join(sorted(patch.data)),
            "Output": secret_path,
        },
    )
    return patch
