# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Command-line interface for Xanthus."""

from __future__ import annotations

import rich_click as click

from xanthus.__about__ import __version__
from xanthus.cli.commands import app, catalog, vps
from xanthus.logging import init_cli_logging, logger
from xanthus.utils.cli import ensure_core_tools_available


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]}, invoke_without_command=True
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__, prog_name="xanthus")
def xanthus(*, verbose: bool) -> None:
    """Xanthus - Deploy catalog applications onto your VPS clusters."""
    init_cli_logging(verbose=verbose)

    # Check core tools presence on boot
    try:
        ensure_core_tools_available()
    except FileNotFoundError as e:
        logger.info("Required CLI missing: %s", e)

    ctx = click.get_current_context()
    if ctx is None or ctx.invoked_subcommand is None:
        logger.info("Xanthus - Deploy catalog applications onto your VPS clusters")
        logger.info("Run 'xanthus --help' for available commands.")


# Register subcommands
xanthus.add_command(catalog.catalog)
xanthus.add_command(app.app)
xanthus.add_command(vps.vps)
