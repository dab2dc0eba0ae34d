#!/usr/bin/env python
"""Command-line interface for secret-generator.

This module provides the main CLI entry point, handling command-line
argument parsing and starting the controller in the requested mode.
"""

import dataclasses
import sys
import threading

import click
from icecream import ic

from secret_generator import __version__, console
from secret_generator.cluster import Cluster
from secret_generator.config import Settings
from secret_generator.controller import OUTCOME_FAILED, Controller
from secret_generator.custom_resources import CustomResourceController
from secret_generator.exceptions import (
    ClusterConnectionError,
    ConflictError,
    GenerationError,
    SecretParsingError,
)
from secret_generator.manifest import materialize_file
from secret_generator.models import ResourceKind


def build_settings(namespace: str | None, length: int | None, ssh_key_length: int | None) -> Settings:
    """Load settings from the environment and apply CLI overrides.

    Args:
        namespace: Namespace to restrict the controller to.
        length: Default secret length.
        ssh_key_length: Default RSA key size in bits.

    Returns:
        The effective settings.

    """
    settings = Settings.from_env()
    overrides: dict[str, object] = {}
    if namespace:
        overrides["namespace"] = namespace
    if length is not None and length > 0:
        overrides["secret_length"] = length
    if ssh_key_length is not None and ssh_key_length > 0:
        overrides["ssh_key_length"] = ssh_key_length
    settings = dataclasses.replace(settings, **overrides)
    ic(settings)
    return settings


def reconcile_single(controller: Controller, namespace: str, name: str) -> None:
    """Reconcile one secret and report the outcome.

    Args:
        controller: Controller bound to a cluster.
        namespace: Namespace of the secret.
        name: Name of the secret.

    Raises:
        click.ClickException: If generation failed or every write conflicted.

    """
    try:
        decision = controller.reconcile_secret(namespace, name)
    except (ConflictError, GenerationError) as e:
        raise click.ClickException(str(e)) from None

    if decision is None:
        raise click.ClickException(f"Secret {namespace}/{name} not found")
    console.info(f"{console.secret_ref(namespace, name)}: {decision.value}")


def reconcile_once(controller: Controller, resource_controller: CustomResourceController | None = None) -> None:
    """Reconcile every managed secret once and print a summary.

    Args:
        controller: Controller bound to a cluster.
        resource_controller: Also reconcile StringSecret and SSHKeyPair
            resources when given.

    """
    counts = controller.reconcile_all(controller.settings.namespace)
    if resource_controller is not None:
        for outcome, count in resource_controller.reconcile_all(controller.settings.namespace).items():
            counts[outcome] = counts.get(outcome, 0) + count
    console.summary_panel("Reconcile Summary", {outcome: str(count) for outcome, count in counts.items()})
    if counts[OUTCOME_FAILED]:
        sys.exit(1)


def start_resource_watchers(
    resource_controller: CustomResourceController, stop: threading.Event
) -> list[threading.Thread]:
    """Watch every custom resource kind in a background thread.

    A connection failure in any watcher sets ``stop`` so the process
    shuts down instead of running with a dead watch.

    Args:
        resource_controller: Controller for StringSecret and SSHKeyPair resources.
        stop: Event shared with the secret watch loop.

    Returns:
        The started threads.

    """

    def watch_kind(kind: ResourceKind) -> None:
        try:
            resource_controller.run(kind, stop)
        except ClusterConnectionError as e:
            console.error(f"Watch of {kind.plural} failed: {e}")
            stop.set()

    threads = [
        threading.Thread(target=watch_kind, args=(kind,), name=f"watch-{kind.plural}", daemon=True)
        for kind in ResourceKind
    ]
    for thread in threads:
        thread.start()
    return threads


@click.command(help="Generate credentials for annotated Kubernetes secrets")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option("--select", required=False, is_flag=True, default=False, help="prompt for context select")
@click.option("--in-cluster", required=False, is_flag=True, help="use the pod service account")
@click.option("--namespace", "-n", required=False, help="namespace to process (default: all)")
@click.option("--once", required=False, is_flag=True, help="reconcile all managed secrets once and exit")
@click.option("--secret", "-s", required=False, help="reconcile a single secret and exit")
@click.option("--file", "-f", "file", required=False, help="materialize a Secret manifest in place")
@click.option("--length", required=False, type=int, help="default secret length")
@click.option("--ssh-key-length", required=False, type=int, help="default ssh key size in bits")
@click.option(
    "--custom-resources", required=False, is_flag=True, help="also reconcile StringSecret and SSHKeyPair resources"
)
def cli(
    debug: bool,
    select: bool,
    in_cluster: bool,
    namespace: str | None,
    once: bool,
    secret: str | None,
    file: str | None,
    length: int | None,
    ssh_key_length: int | None,
    custom_resources: bool,
    version: bool,
) -> None:
    """Process CLI arguments and execute the appropriate action.

    Args:
        debug: Enable debug output.
        select: Prompt for Kubernetes context selection.
        in_cluster: Use in-cluster configuration instead of kubeconfig.
        namespace: Namespace to process.
        once: Reconcile all managed secrets once instead of watching.
        secret: Name of a single secret to reconcile.
        file: Path to a Secret manifest to materialize offline.
        length: Default secret length.
        ssh_key_length: Default RSA key size.
        custom_resources: Also reconcile StringSecret and SSHKeyPair resources.
        version: Print version and exit.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        return

    settings = build_settings(namespace, length, ssh_key_length)

    if file:
        try:
            materialize_file(file, settings)
        except (SecretParsingError, GenerationError) as e:
            raise click.ClickException(str(e)) from None
        return

    try:
        cluster = Cluster(select_context=select, in_cluster=in_cluster)
        controller = Controller(cluster, settings)
        resource_controller = CustomResourceController(cluster, settings) if custom_resources else None

        if secret:
            reconcile_single(controller, settings.namespace or "default", secret)
            return

        if once:
            reconcile_once(controller, resource_controller)
            return

        stop = threading.Event()
        if resource_controller is not None:
            start_resource_watchers(resource_controller, stop)
        try:
            controller.run(stop)
        except KeyboardInterrupt:
            stop.set()
            console.warning("Interrupted, shutting down")
    except ClusterConnectionError as e:
        console.error(f"Cluster connection failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
