# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Catalog and version commands."""

from __future__ import annotations

import rich_click as click

from xanthus.core.errors import XanthusError
from xanthus.eyecandy.tables import XanthusTables
from xanthus.logging import logger
from xanthus.manager import DeploymentManager


@click.group()
def catalog() -> None:
    """Browse the application catalog and available versions."""


@catalog.command("list")
def list_cmd() -> None:
    """List catalog applications."""
    manager = DeploymentManager.from_settings()
    XanthusTables().render_catalog(manager.list_applications())
    for err in manager.catalog.errors:
        logger.warning("⚠️  Rejected catalog entry: %s", err)


@catalog.command()
@click.argument("app_id")
def show(app_id: str) -> None:
    """Show one catalog application."""
    manager = DeploymentManager.from_settings()
    try:
        d = manager.catalog.get(app_id)
    except XanthusError as e:
        raise click.ClickException(str(e)) from e
    XanthusTables().render_key_values(
        d.name,
        {
            "id": d.id,
            "category": d.category,
            "description": d.description or "-",
            "version source": f"{d.version_source.kind} {d.version_source.source}",
            "pattern": d.version_source.pattern,
            "chart": f"{d.helm_chart.repository}/{d.helm_chart.chart} ({d.helm_chart.version})",
            "namespace": d.helm_chart.namespace,
            "port": d.default_port,
            "requirements": (
                f"cpu {d.requirements.min_cpu:g}, memory {d.requirements.min_memory_gb:g}GB, "
                f"disk {d.requirements.min_disk_gb:g}GB"
            ),
            "documentation": d.documentation or "-",
        },
    )


@catalog.command()
@click.argument("app_id")
@click.option("--refresh", is_flag=True, help="Bypass the version cache")
@click.option("--all", "show_all", is_flag=True, help="List every published version")
def versions(app_id: str, *, refresh: bool, show_all: bool) -> None:
    """Show the resolved version of an application."""
    manager = DeploymentManager.from_settings()
    try:
        if show_all:
            XanthusTables().render_versions(manager.list_versions(app_id))
            return
        XanthusTables().render_versions([manager.get_version(app_id, refresh=refresh)])
    except XanthusError as e:
        raise click.ClickException(str(e)) from e


@catalog.command()
def refresh() -> None:
    """Reload catalog descriptors and clear cached versions."""
    manager = DeploymentManager.from_settings()
    count = manager.refresh_catalog()
    logger.info("✅ Catalog refreshed: %d application(s)", count)
