# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Helm façade: the cluster apply and uninstall primitives.

Default mode shells out to the helm CLI via the safe subprocess wrappers.
Apply uses ``helm upgrade --install --atomic`` so re-applying the same
release is idempotent and a failed upgrade leaves the previous release live.
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from xanthus.logging import logger
from xanthus.utils.proc import ProcessError, run, run_json

if TYPE_CHECKING:
    from xanthus.core.catalog import ChartReference
    from xanthus.core.templates import ValuesDocument

LOCAL_REPOSITORY = "local"
DEFAULT_APPLY_TIMEOUT = 600
# Extra seconds the subprocess gets on top of helm's own --timeout.
_PROCESS_GRACE = 30

# Helm's missing-release errors; a missing kube context or chart is a real failure.
_RELEASE_NOT_FOUND_RE = re.compile(r"release: not found|release not loaded", re.IGNORECASE)
_EXHAUSTION_PATTERNS = (
    (re.compile(r"insufficient (cpu|memory)", re.IGNORECASE), "cluster nodes lack CPU or memory"),
    (re.compile(r"exceeded quota", re.IGNORECASE), "namespace resource quota exceeded"),
    (re.compile(r"no space left on device|diskpressure", re.IGNORECASE), "node disk is full"),
    (re.compile(r"oomkilled|out of memory", re.IGNORECASE), "workload ran out of memory"),
    (
        re.compile(r"persistentvolumeclaim.*(pending|unbound)", re.IGNORECASE),
        "persistent volume could not be provisioned",
    ),
)


class ClusterApplier(Protocol):
    """Interface the reconciler uses to apply and remove chart releases."""

    def apply(  # pylint: disable=too-many-arguments
        self,
        namespace: str,
        release_name: str,
        chart: ChartReference,
        values: ValuesDocument,
        *,
        chart_version: str | None = None,
        timeout: float | None = None,
    ) -> None: ...

    def uninstall(
        self, namespace: str, release_name: str, *, timeout: float | None = None
    ) -> None: ...

    def status(
        self, namespace: str, release_name: str, *, timeout: float | None = None
    ) -> ReleaseStatus | None: ...


@dataclass(frozen=True)
class ReleaseStatus:
    """Subset of ``helm status`` output."""

    name: str
    namespace: str
    revision: int
    status: str
    chart_version: str | None = None
    app_version: str | None = None

    @property
    def deployed(self) -> bool:
        return self.status == "deployed"


def diagnose_failure(output: str) -> str | None:
    """Return an operator hint when helm output points at resource exhaustion."""
    for pattern, hint in _EXHAUSTION_PATTERNS:
        if pattern.search(output or ""):
            return hint
    return None


def chart_args(chart: ChartReference, *, charts_dir: str | Path | None = None) -> list[str]:
    """Translate a chart reference into helm positional/--repo arguments.

    ``local`` charts live under ``charts_dir``; ``oci://`` repositories are
    addressed directly; http(s) repositories use ``--repo``; anything else is
    taken as a repository alias already known to helm.
    """
    repo = chart.repository.strip()
    if repo == LOCAL_REPOSITORY:
        base = Path(charts_dir) if charts_dir else Path.cwd()
        return [str(base / chart.chart)]
    if repo.startswith("oci://"):
        return [f"{repo.rstrip('/')}/{chart.chart}"]
    if repo.startswith(("http://", "https://")):
        return [chart.chart, "--repo", repo]
    return [f"{repo}/{chart.chart}"]


class HelmClient:
    """Thin façade around the helm CLI for release lifecycle operations."""

    def __init__(
        self,
        *,
        kubeconfig: str | None = None,
        kube_context: str | None = None,
        charts_dir: str | Path | None = None,
        default_timeout: float = DEFAULT_APPLY_TIMEOUT,
    ) -> None:
        self.kubeconfig = kubeconfig
        self.kube_context = kube_context
        self.charts_dir = Path(charts_dir) if charts_dir else None
        self.default_timeout = default_timeout

    def _global_args(self) -> list[str]:
        args: list[str] = []
        if self.kubeconfig:
            args.extend(["--kubeconfig", str(Path(self.kubeconfig).expanduser())])
        if self.kube_context:
            args.extend(["--kube-context", self.kube_context])
        return args

    def _timeout(self, timeout: float | None) -> float:
        return self.default_timeout if timeout is None else timeout

    def build_apply_args(  # pylint: disable=too-many-arguments
        self,
        namespace: str,
        release_name: str,
        chart: ChartReference,
        values_file: str,
        *,
        chart_version: str | None = None,
        timeout: float | None = None,
    ) -> list[str]:
        """Return the full ``helm upgrade --install`` command line."""
        args = [
            "helm",
            "upgrade",
            "--install",
            release_name,
            *chart_args(chart, charts_dir=self.charts_dir),
            "--namespace",
            namespace,
            "--create-namespace",
            "--atomic",
            "--wait",
            "--timeout",
            f"{int(self._timeout(timeout))}s",
            "-f",
            values_file,
        ]
        if chart_version and chart.repository != LOCAL_REPOSITORY:
            args.extend(["--version", chart_version])
        return [*args, *self._global_args()]

    def apply(  # pylint: disable=too-many-arguments
        self,
        namespace: str,
        release_name: str,
        chart: ChartReference,
        values: ValuesDocument,
        *,
        chart_version: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Install or upgrade a release with the given values.

        Raises:
            ProcessError: If helm fails or exceeds the timeout.
        """
        fd, values_file = tempfile.mkstemp(prefix=f"{release_name}-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(values.text)
            args = self.build_apply_args(
                namespace,
                release_name,
                chart,
                values_file,
                chart_version=chart_version,
                timeout=timeout,
            )
            logger.info("⎈ Applying %s to namespace '%s'", release_name, namespace)
            run(args, timeout=self._timeout(timeout) + _PROCESS_GRACE)
        finally:
            Path(values_file).unlink(missing_ok=True)

    def uninstall(self, namespace: str, release_name: str, *, timeout: float | None = None) -> None:
        """Uninstall a release; a release that is already gone counts as success.

        Raises:
            ProcessError: On any other helm failure.
        """
        args = [
            "helm",
            "uninstall",
            release_name,
            "--namespace",
            namespace,
            "--wait",
            "--timeout",
            f"{int(self._timeout(timeout))}s",
            *self._global_args(),
        ]
        try:
            run(args, timeout=self._timeout(timeout) + _PROCESS_GRACE)
        except ProcessError as e:
            if e.code is not None and _RELEASE_NOT_FOUND_RE.search(e.stderr or ""):
                logger.info("Release %s already absent from '%s'", release_name, namespace)
                return
            raise

    def status(
        self, namespace: str, release_name: str, *, timeout: float | None = None
    ) -> ReleaseStatus | None:
        """Return the release status, or None if the release does not exist."""
        args = [
            "helm",
            "status",
            release_name,
            "--namespace",
            namespace,
            "-o",
            "json",
            *self._global_args(),
        ]
        try:
            raw = run_json(args, timeout=timeout or 60)
        except ProcessError as e:
            if e.code is not None and _RELEASE_NOT_FOUND_RE.search(e.stderr or ""):
                return None
            raise
        return _parse_status(raw, namespace, release_name)


def _parse_status(raw: Any, namespace: str, release_name: str) -> ReleaseStatus:
    info = raw.get("info", {}) if isinstance(raw, dict) else {}
    chart_meta = ((raw.get("chart") or {}).get("metadata") or {}) if isinstance(raw, dict) else {}
    return ReleaseStatus(
        name=str(raw.get("name", release_name)) if isinstance(raw, dict) else release_name,
        namespace=str(raw.get("namespace", namespace)) if isinstance(raw, dict) else namespace,
        revision=int(raw.get("version", 0)) if isinstance(raw, dict) else 0,
        status=str(info.get("status", "unknown")),
        chart_version=chart_meta.get("version"),
        app_version=chart_meta.get("appVersion"),
    )
