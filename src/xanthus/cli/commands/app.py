# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Deployment commands.

Deployments are addressed by application id, VPS id and subdomain; the
namespace defaults to the one declared by the catalog entry.
"""

from __future__ import annotations

import rich_click as click

from xanthus.core.errors import InvalidSubdomain, XanthusError
from xanthus.core.ingress import normalize_host
from xanthus.core.registry import DeploymentStatus
from xanthus.eyecandy.tables import XanthusTables
from xanthus.logging import logger
from xanthus.manager import DeploymentManager


def _check_subdomain(_ctx, _param, value: str) -> str:
    try:
        normalize_host(value)
    except InvalidSubdomain as e:
        raise click.BadParameter(str(e)) from e
    return value


_key_arguments = [
    click.argument("app_id"),
    click.argument("vps_id"),
    click.argument("subdomain", callback=_check_subdomain),
    click.option("--namespace", "-n", default=None, help="Target namespace"),
]


def _with_key(func):
    for decorator in reversed(_key_arguments):
        func = decorator(func)
    return func


@click.group()
def app() -> None:
    """Install, upgrade and remove catalog applications."""


@app.command()
@_with_key
@click.option("--port", "-p", type=int, default=None, help="Exposed port (default from catalog)")
def install(
    app_id: str, vps_id: str, subdomain: str, *, namespace: str | None, port: int | None
) -> None:
    """Install an application on a VPS under a subdomain."""
    manager = DeploymentManager.from_settings()
    try:
        deployment = manager.install(app_id, vps_id, subdomain, namespace=namespace, port=port)
    except XanthusError as e:
        raise click.ClickException(str(e)) from e
    url = manager.port_forward_url(deployment.key)
    logger.info(
        "✅ %s %s is %s at %s",
        app_id,
        deployment.observed_version,
        deployment.status.value,
        url,
    )


@app.command()
@_with_key
@click.option("--version", "version", default=None, help="Target version (default: latest)")
def upgrade(
    app_id: str, vps_id: str, subdomain: str, *, namespace: str | None, version: str | None
) -> None:
    """Upgrade a deployment."""
    manager = DeploymentManager.from_settings()
    try:
        key = manager.key_for(app_id, vps_id, subdomain, namespace=namespace)
        deployment = manager.upgrade(key, version)
    except XanthusError as e:
        raise click.ClickException(str(e)) from e
    logger.info("✅ %s now at %s", key, deployment.observed_version)


@app.command()
@_with_key
def remove(app_id: str, vps_id: str, subdomain: str, *, namespace: str | None) -> None:
    """Uninstall a deployment and release its subdomain."""
    manager = DeploymentManager.from_settings()
    try:
        key = manager.key_for(app_id, vps_id, subdomain, namespace=namespace)
        removed = manager.remove(key)
    except XanthusError as e:
        raise click.ClickException(str(e)) from e
    if removed:
        logger.info("✅ Removed %s", key)
    else:
        logger.info("Nothing to remove for %s", key)


@app.command()
@_with_key
def reconcile(app_id: str, vps_id: str, subdomain: str, *, namespace: str | None) -> None:
    """Resume, retry or re-apply one deployment."""
    manager = DeploymentManager.from_settings()
    try:
        key = manager.key_for(app_id, vps_id, subdomain, namespace=namespace)
        deployment = manager.reconcile(key)
    except XanthusError as e:
        raise click.ClickException(str(e)) from e
    logger.info("✅ %s is %s", key, deployment.status.value)


@app.command("reconcile-all")
def reconcile_all() -> None:
    """Reconcile every registered deployment."""
    manager = DeploymentManager.from_settings()
    results = manager.reconcile_all()
    for key, outcome in results.items():
        logger.info("%s: %s", key, outcome)
    if any(outcome.startswith("error") for outcome in results.values()):
        msg = "Some deployments failed to reconcile"
        raise click.ClickException(msg)


@app.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in DeploymentStatus]),
    default=None,
    help="Only show deployments in this status",
)
@click.option("--vps", "vps_id", default=None, help="Only show deployments on this VPS")
def list_cmd(status: str | None, vps_id: str | None) -> None:
    """List deployments with their status and URL."""
    manager = DeploymentManager.from_settings()
    deployments = manager.list_deployments(
        status=DeploymentStatus(status) if status else None, vps_id=vps_id
    )
    forwards = {d.key: manager.registry.get_port_forward(d.key) for d in deployments}
    XanthusTables().render_deployments(deployments, forwards)


@app.command("check-upgrades")
@click.option("--refresh", is_flag=True, help="Bypass the version cache")
def check_upgrades(*, refresh: bool) -> None:
    """Show deployments with a newer version available."""
    manager = DeploymentManager.from_settings()
    try:
        candidates = manager.check_upgrades(refresh=refresh)
    except XanthusError as e:
        raise click.ClickException(str(e)) from e
    XanthusTables().render_upgrades(candidates)
