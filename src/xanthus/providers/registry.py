# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Provider registry for version sources."""

from __future__ import annotations

from typing import TYPE_CHECKING

from xanthus.core.catalog import SOURCE_HELM, SOURCE_STATIC, SOURCE_TAGS
from xanthus.providers.github import GitHubTagProvider
from xanthus.providers.helm_repo import HelmRepositoryProvider
from xanthus.providers.static import StaticVersionProvider

if TYPE_CHECKING:
    from xanthus.providers.base import VersionSourceProvider


# Registry of available providers, keyed by descriptor version source kind
PROVIDERS: dict[str, type[VersionSourceProvider]] = {
    SOURCE_TAGS: GitHubTagProvider,
    SOURCE_HELM: HelmRepositoryProvider,
    SOURCE_STATIC: StaticVersionProvider,
}


def get_provider(kind: str) -> type[VersionSourceProvider]:
    """
    Get a provider class by version source kind.

    Args:
        kind (str): Version source kind (e.g., 'source-control-tags')

    Returns:
        type[VersionSourceProvider]: Provider class

    Raises:
        ValueError: If the kind is unknown
    """
    try:
        return PROVIDERS[kind]
    except KeyError as err:
        available = ", ".join(PROVIDERS.keys())
        msg = f"Unknown version source: {kind}. Available sources: {available}"
        raise ValueError(msg) from err


def list_available_providers() -> list[str]:
    """
    List all registered version source kinds.

    Returns:
        list[str]: List of version source kinds
    """
    return list(PROVIDERS.keys())


def build_providers(
    *, timeout: float = 30.0, github_token: str | None = None
) -> dict[str, VersionSourceProvider]:
    """Instantiate one provider per registered kind."""
    providers: dict[str, VersionSourceProvider] = {}
    for kind, cls in PROVIDERS.items():
        if cls is GitHubTagProvider:
            providers[kind] = GitHubTagProvider(timeout=timeout, token=github_token)
        else:
            providers[kind] = cls(timeout=timeout)
    return providers
