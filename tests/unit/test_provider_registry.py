"""Tests for the version source provider registry."""

import pytest

from xanthus.core.catalog import SOURCE_HELM, SOURCE_STATIC, SOURCE_TAGS
from xanthus.providers.github import GitHubTagProvider
from xanthus.providers.registry import build_providers, get_provider, list_available_providers


def test_get_provider_known_kinds() -> None:
    assert get_provider(SOURCE_TAGS) is GitHubTagProvider
    assert set(list_available_providers()) == {SOURCE_TAGS, SOURCE_HELM, SOURCE_STATIC}


def test_get_provider_unknown() -> None:
    with pytest.raises(ValueError, match="Unknown version source: svn"):
        get_provider("svn")


def test_build_providers_passes_token_and_timeout(monkeypatch) -> None:
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    providers = build_providers(timeout=7, github_token="abc")

    github = providers[SOURCE_TAGS]
    assert github.timeout == 7
    assert github.session.headers["Authorization"] == "Bearer abc"
    assert providers[SOURCE_HELM].provider_name == "helm"
