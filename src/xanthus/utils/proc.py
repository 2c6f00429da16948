"""Safe subprocess helpers with timeouts and structured errors.

All helpers avoid shell=True and return normalized outputs. Designed to be
monkeypatch-friendly for tests.
"""

from __future__ import annotations

import json
import subprocess
from typing import Any

from xanthus.logging import logger
from xanthus.utils.cli import REQUIRED_TOOLS, ensure_tool_available


class ProcessError(RuntimeError):
    """Normalized process error with code/stdout/stderr attached."""

    def __init__(self, message: str, *, code: int | None, stdout: str, stderr: str) -> None:
        super().__init__(message)
        self.code = code
        self.stdout = stdout
        self.stderr = stderr


def _precheck_cli(cmd: list[str]) -> None:
    if not cmd:
        msg = "Empty command"
        raise ValueError(msg)
    if cmd[0] in REQUIRED_TOOLS:
        ensure_tool_available(cmd[0])


def _fmt_cmd(cmd: list[str]) -> str:
    return " ".join(cmd)


def run(cmd: list[str], *, timeout: float = 120) -> str:
    """Run a command and return stdout text.

    Raises ProcessError on non-zero exit or timeout, and FileNotFoundError
    when a required tool is missing from PATH.
    """
    _precheck_cli(cmd)
    logger.info("$ %s", _fmt_cmd(cmd))
    try:
        cp = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        timeout_msg = f"Command timed out after {timeout}s: {' '.join(cmd)}"
        raise ProcessError(
            timeout_msg,
            code=None,
            stdout=str(e.stdout or ""),
            stderr=str(e.stderr or ""),
        ) from e

    if cp.returncode != 0:
        _log_failure(cp, cmd)
        failure_msg = (
            "Command failed"
            f" (exit={cp.returncode})\n"
            f"cmd: {_fmt_cmd(cmd)}\n"
            f"stdout:\n{(cp.stdout or '').strip()}\n"
            f"stderr:\n{(cp.stderr or '').strip()}"
        )
        raise ProcessError(
            failure_msg,
            code=cp.returncode,
            stdout=str(cp.stdout or ""),
            stderr=str(cp.stderr or ""),
        )
    return cp.stdout or ""


def run_json(cmd: list[str], *, timeout: float = 120) -> Any:
    """Run a command and parse stdout as JSON."""
    out = run(cmd, timeout=timeout)
    try:
        return json.loads(out)
    except json.JSONDecodeError as e:
        decode_msg = "Invalid JSON output"
        raise ProcessError(decode_msg, code=0, stdout=out, stderr=str(e)) from e


def _log_failure(cp: subprocess.CompletedProcess[str], cmd: list[str]) -> None:
    logger.debug("Command failed (%s): %s", cp.returncode, " ".join(cmd))
    if cp.stdout:
        logger.debug("Stdout: %s", cp.stdout)
    if cp.stderr:
        logger.debug("Stderr: %s", cp.stderr)
