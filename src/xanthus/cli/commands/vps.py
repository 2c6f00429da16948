# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""VPS target commands."""

from __future__ import annotations

import rich_click as click

from xanthus.core.errors import XanthusError
from xanthus.core.vps import check_requirements
from xanthus.eyecandy.tables import XanthusTables
from xanthus.logging import logger
from xanthus.manager import DeploymentManager


@click.group()
def vps() -> None:
    """Inspect configured VPS targets."""


@vps.command("list")
def list_cmd() -> None:
    """List VPS targets from the configuration inventory."""
    manager = DeploymentManager.from_settings()
    XanthusTables().render_vps(manager.list_vps())


@vps.command()
@click.argument("vps_id")
@click.argument("app_id")
def check(vps_id: str, app_id: str) -> None:
    """Check whether a VPS can host a catalog application."""
    manager = DeploymentManager.from_settings()
    try:
        server = manager.inventory.get(vps_id)
        check_requirements(server, manager.catalog.get(app_id).requirements)
    except XanthusError as e:
        raise click.ClickException(str(e)) from e
    logger.info("✅ %s can host %s", vps_id, app_id)
