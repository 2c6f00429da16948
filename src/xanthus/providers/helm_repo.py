# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Helm chart repository index (``index.yaml``) as a version source."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import yaml

from xanthus.core.errors import NoVersionsFound, VersionSourceUnreachable
from xanthus.logging import logger
from xanthus.providers.base import VersionCandidate, VersionSourceProvider, parse_timestamp

if TYPE_CHECKING:
    from xanthus.core.catalog import VersionSourceSpec


class HelmRepositoryProvider(VersionSourceProvider):
    """List chart versions published in a classic HTTP Helm repository."""

    @property
    def provider_name(self) -> str:
        return "helm"

    def list_versions(
        self, spec: VersionSourceSpec, *, timeout: float | None = None
    ) -> list[VersionCandidate]:
        return self.fetch_chart_index(spec.source, spec.chart or "", timeout=timeout)

    def fetch_chart_index(
        self, repo_url: str, chart: str, *, timeout: float | None = None
    ) -> list[VersionCandidate]:
        """Return every entry for ``chart`` in the repository index."""
        if repo_url.startswith("oci://"):
            msg = f"helm: OCI registry {repo_url} does not publish an index"
            raise NoVersionsFound(msg)
        url = f"{repo_url.rstrip('/')}/index.yaml"
        resp = self._get(url, timeout=timeout, headers={"Accept": "application/yaml, text/yaml"})
        try:
            index = yaml.safe_load(resp.text) or {}
        except yaml.YAMLError as e:
            msg = f"helm: invalid index at {url}: {e}"
            raise VersionSourceUnreachable(msg) from e
        entries = _chart_entries(index, chart)
        logger.debug("helm: %d entr(ies) for chart %s in %s", len(entries), chart, repo_url)
        return [c for c in (_to_candidate(e) for e in entries) if c is not None]


def _chart_entries(index: Any, chart: str) -> list[Any]:
    if not isinstance(index, dict):
        return []
    entries = index.get("entries") or {}
    if not isinstance(entries, dict):
        return []
    found = entries.get(chart) or []
    return found if isinstance(found, list) else []


def _to_candidate(entry: Any) -> VersionCandidate | None:
    if not isinstance(entry, dict) or not entry.get("version"):
        return None
    app_version = entry.get("appVersion")
    return VersionCandidate(
        version=str(entry["version"]),
        published_at=parse_timestamp(entry.get("created")),
        app_version=str(app_version) if app_version is not None else None,
    )
