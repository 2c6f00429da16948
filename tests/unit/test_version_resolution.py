"""Tests for version selection and the caching resolver."""

from datetime import datetime, timezone

import pytest

from xanthus.core.catalog import SOURCE_TAGS, CatalogStore
from xanthus.core.errors import NoVersionsFound, VersionSourceUnreachable
from xanthus.core.versions import (
    VersionResolver,
    parse_version,
    select_chart_version,
    select_static,
    select_tag,
)
from xanthus.providers.base import VersionCandidate


def _at(day: int) -> datetime:
    return datetime(2024, 3, day, tzinfo=timezone.utc)


def test_stable_tag_excludes_prerelease() -> None:
    """v1.3.1-rc1 is newer but a pre-release, so v1.3.0 is selected."""
    tags = [VersionCandidate("v1.2.0"), VersionCandidate("v1.3.0"), VersionCandidate("v1.3.1-rc1")]

    resolved = select_tag("app", tags, pattern="v*")

    assert resolved.version == "v1.3.0"
    assert resolved.is_stable is True
    assert resolved.is_latest is False


def test_prerelease_opt_in() -> None:
    tags = [VersionCandidate("v1.3.0"), VersionCandidate("v1.3.1-rc1")]

    resolved = select_tag("app", tags, pattern="v*", include_prereleases=True)

    assert resolved.version == "v1.3.1-rc1"
    assert resolved.is_stable is False
    assert resolved.is_latest is True


def test_pattern_filters_and_ignores_garbage() -> None:
    tags = [
        VersionCandidate("v2.0.0"),
        VersionCandidate("chart-9.9.9"),
        VersionCandidate("nightly"),
        VersionCandidate("v1.9.0"),
    ]
    assert select_tag("app", tags, pattern="v1.*").version == "v1.9.0"


def test_equal_versions_tie_break_on_publish_time() -> None:
    """Build metadata does not affect precedence; the more recently published wins."""
    tags = [VersionCandidate("v1.0.0", _at(1)), VersionCandidate("v1.0.0+build.7", _at(5))]
    assert select_tag("app", tags).version == "v1.0.0+build.7"


def test_semver_prerelease_tags() -> None:
    """A hyphenated suffix is a pre-release even when it is numeric."""
    tags = [
        VersionCandidate("v1.3.0"),
        VersionCandidate("v1.3.1-1"),
        VersionCandidate("v1.4.0-alpha.beta"),
    ]

    stable = select_tag("app", tags, pattern="v*")
    newest = select_tag("app", tags, pattern="v*", include_prereleases=True)

    assert (stable.version, stable.is_stable, stable.is_latest) == ("v1.3.0", True, False)
    assert (newest.version, newest.is_stable, newest.is_latest) == (
        "v1.4.0-alpha.beta",
        False,
        True,
    )


def test_semver_precedence() -> None:
    ordered = [
        "1.0.0-alpha",
        "1.0.0-alpha.1",
        "1.0.0-alpha.beta",
        "1.0.0-beta",
        "1.0.0-beta.2",
        "1.0.0-beta.11",
        "1.0.0-rc.1",
        "1.0.0",
        "v1.0.1",
        "1.10.0",
    ]
    parsed = [parse_version(v) for v in ordered]

    assert parsed == sorted(parsed)
    assert parse_version("v1.0.0+abc") == parse_version("1.0.0")
    assert parse_version("1.0") is None
    assert parse_version("01.0.0") is None


def test_no_matching_tags() -> None:
    with pytest.raises(NoVersionsFound):
        select_tag("app", [VersionCandidate("v1.0.0-beta")], pattern="v*")


def test_chart_stable_and_pinned() -> None:
    entries = [
        VersionCandidate("7.1.0", _at(1), "v2.10.0"),
        VersionCandidate("7.2.0", _at(2), "v2.11.0"),
        VersionCandidate("7.3.0-rc.1", _at(3), "v2.12.0-rc1"),
    ]

    stable = select_chart_version("argocd", entries)
    pinned = select_chart_version("argocd", entries, pinned="7.1.0")

    assert (stable.version, stable.app_version, stable.is_stable) == ("7.2.0", "v2.11.0", True)
    assert pinned.version == "7.1.0"
    assert pinned.is_latest is False
    with pytest.raises(NoVersionsFound, match="6.0.0"):
        select_chart_version("argocd", entries, pinned="6.0.0")


def test_static_version() -> None:
    resolved = select_static("app", [VersionCandidate("2024-05")])
    assert resolved.version == "2024-05"
    assert resolved.is_stable and resolved.is_latest


def _store(catalog_dirs) -> CatalogStore:
    apps, templates = catalog_dirs
    store = CatalogStore([apps], templates)
    store.load()
    return store


def test_resolver_end_to_end_tags(catalog_dirs, fake_provider) -> None:
    """code-server with tags v4.9.0 and v4.9.1 resolves to v4.9.1."""
    resolver = VersionResolver({SOURCE_TAGS: fake_provider}, sleep=lambda _: None)

    resolved = resolver.resolve(_store(catalog_dirs).get("code-server"))

    assert resolved.version == "v4.9.1"
    assert resolved.is_stable


def test_resolver_caches_until_ttl(catalog_dirs, fake_provider) -> None:
    now = [100.0]
    resolver = VersionResolver(
        {SOURCE_TAGS: fake_provider}, ttl=60, clock=lambda: now[0], sleep=lambda _: None
    )
    descriptor = _store(catalog_dirs).get("code-server")

    resolver.resolve(descriptor)
    resolver.resolve(descriptor)
    assert fake_provider.calls == 1

    now[0] += 61
    resolver.resolve(descriptor)
    assert fake_provider.calls == 2

    resolver.resolve(descriptor, refresh=True)
    assert fake_provider.calls == 3
    stats = resolver.stats
    assert (stats.hits, stats.entries) == (1, 1)


def test_resolver_invalidate(catalog_dirs, fake_provider) -> None:
    resolver = VersionResolver({SOURCE_TAGS: fake_provider}, sleep=lambda _: None)
    descriptor = _store(catalog_dirs).get("code-server")

    resolver.resolve(descriptor)
    resolver.invalidate("code-server")
    resolver.resolve(descriptor)

    assert fake_provider.calls == 2


def test_resolver_retries_transient_failures(catalog_dirs, fake_provider) -> None:
    delays = []
    fake_provider.failures = 2
    resolver = VersionResolver({SOURCE_TAGS: fake_provider}, attempts=3, sleep=delays.append)

    assert resolver.resolve(_store(catalog_dirs).get("code-server")).version == "v4.9.1"
    assert fake_provider.calls == 3
    assert len(delays) == 2


def test_resolver_gives_up_after_attempts(catalog_dirs, fake_provider) -> None:
    fake_provider.failures = 5
    resolver = VersionResolver({SOURCE_TAGS: fake_provider}, attempts=2, sleep=lambda _: None)

    with pytest.raises(VersionSourceUnreachable):
        resolver.resolve(_store(catalog_dirs).get("code-server"))
    assert fake_provider.calls == 2


def test_resolver_does_not_retry_missing_versions(catalog_dirs, fake_provider) -> None:
    fake_provider.versions = {"coder/code-server": [VersionCandidate("nightly")]}
    resolver = VersionResolver({SOURCE_TAGS: fake_provider}, attempts=3, sleep=lambda _: None)

    with pytest.raises(NoVersionsFound):
        resolver.resolve(_store(catalog_dirs).get("code-server"))
    assert fake_provider.calls == 1


def test_list_versions_newest_first(catalog_dirs, fake_provider) -> None:
    resolver = VersionResolver({SOURCE_TAGS: fake_provider}, sleep=lambda _: None)

    versions = resolver.list_versions(_store(catalog_dirs).get("code-server"))

    assert [v.version for v in versions] == ["v4.9.1", "v4.9.0"]
    assert versions[0].is_latest and not versions[1].is_latest
