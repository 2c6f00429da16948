# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""GitHub releases as a source-control tag feed."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from xanthus.core.errors import NoVersionsFound, VersionSourceUnreachable
from xanthus.logging import logger
from xanthus.providers.base import (
    DEFAULT_TIMEOUT,
    VersionCandidate,
    VersionSourceProvider,
    parse_timestamp,
)

if TYPE_CHECKING:
    import requests

    from xanthus.core.catalog import VersionSourceSpec

GITHUB_API = "https://api.github.com"
PER_PAGE = 100
MAX_PAGES = 3


class GitHubTagProvider(VersionSourceProvider):
    """List release tags of a GitHub repository given as ``owner/repo``."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        token: str | None = None,
        api_url: str = GITHUB_API,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.api_url = api_url.rstrip("/")
        token = token or os.environ.get("GITHUB_TOKEN")
        self.session.headers.setdefault("Accept", "application/vnd.github+json")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @property
    def provider_name(self) -> str:
        return "github"

    def list_versions(
        self, spec: VersionSourceSpec, *, timeout: float | None = None
    ) -> list[VersionCandidate]:
        return self.list_tags(spec.source, timeout=timeout)

    def list_tags(self, repo: str, *, timeout: float | None = None) -> list[VersionCandidate]:
        """Return published (non-draft) release tags, newest pages first."""
        owner_repo = _normalize_repo(repo)
        url: str | None = f"{self.api_url}/repos/{owner_repo}/releases?per_page={PER_PAGE}"
        tags: list[VersionCandidate] = []
        pages = 0
        while url and pages < MAX_PAGES:
            resp = self._get(url, timeout=timeout)
            try:
                payload = resp.json()
            except ValueError as e:
                msg = f"github: invalid JSON from {url}"
                raise VersionSourceUnreachable(msg) from e
            if not isinstance(payload, list):
                msg = f"github: unexpected payload from {url}"
                raise VersionSourceUnreachable(msg)
            tags.extend(_to_candidate(item) for item in payload if _is_published(item))
            url = resp.links.get("next", {}).get("url")
            pages += 1
        logger.debug("github: %d release tag(s) for %s", len(tags), owner_repo)
        return tags


def _normalize_repo(repo: str) -> str:
    """Accept ``owner/repo`` or a github.com URL."""
    value = repo.strip().removesuffix(".git").rstrip("/")
    for prefix in ("https://github.com/", "http://github.com/", "github.com/"):
        if value.startswith(prefix):
            value = value[len(prefix) :]
    if value.count("/") != 1:
        msg = f"invalid repository format: expected owner/repo, got {repo}"
        raise NoVersionsFound(msg)
    return value


def _is_published(item: object) -> bool:
    return isinstance(item, dict) and bool(item.get("tag_name")) and not item.get("draft")


def _to_candidate(item: dict) -> VersionCandidate:
    return VersionCandidate(
        version=str(item["tag_name"]),
        published_at=parse_timestamp(item.get("published_at") or item.get("created_at")),
    )
