# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Discovery of the external CLI tools Xanthus shells out to."""

from __future__ import annotations

import shutil

# Tools invoked through utils.proc; each must be on PATH before it is run.
REQUIRED_TOOLS = ("helm",)


def check_cli_availability(cli_name: str, error_msg: str | None = None) -> str | None:
    """Check if a CLI tool is available in PATH.

    Args:
        cli_name (str): Name of the CLI tool to check
        error_msg (str | None): Optional error message to raise if CLI not found

    Returns:
        str | None: Path to the CLI executable if found, None otherwise

    Raises:
        FileNotFoundError: If error_msg is provided and CLI is not found
    """
    path = shutil.which(cli_name)
    if not path and error_msg:
        raise FileNotFoundError(error_msg)
    return path


def ensure_tool_available(cli_name: str) -> str:
    """Return the path of a required tool.

    Raises:
        FileNotFoundError: If the tool is not on PATH.
    """
    path = check_cli_availability(cli_name, f"{cli_name} not found on PATH")
    if path is None:
        msg = f"{cli_name} not found on PATH"
        raise FileNotFoundError(msg)
    return path


def ensure_core_tools_available() -> None:
    """Ensure every required tool is available.

    Raises FileNotFoundError naming the first missing tool.
    """
    for tool in REQUIRED_TOOLS:
        ensure_tool_available(tool)
