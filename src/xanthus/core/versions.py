# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Version resolution for catalog applications.

Candidates come from a version source provider; selection is deterministic
for a fixed candidate list: highest version by semantic-version precedence (a
leading ``v`` is accepted), pre-releases excluded unless the descriptor opts
in, ties broken by the most recent publish timestamp. Tags that are not
semantic versions are ignored.
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from xanthus.core.catalog import SOURCE_HELM, SOURCE_STATIC, SOURCE_TAGS
from xanthus.core.errors import NoVersionsFound, VersionSourceUnreachable
from xanthus.logging import logger
from xanthus.utils.locks import KeyedLocks
from xanthus.utils.retry import retry

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from xanthus.core.catalog import ApplicationDescriptor
    from xanthus.providers.base import VersionCandidate, VersionSourceProvider

DEFAULT_CACHE_TTL = 15 * 60.0


@dataclass(frozen=True)
class ResolvedVersion:
    """Concrete version chosen for a descriptor at a point in time."""

    descriptor_id: str
    version: str
    published_at: datetime | None = None
    is_latest: bool = False
    is_stable: bool = False
    app_version: str | None = None


@dataclass(frozen=True)
class CacheStats:
    """Resolver cache counters."""

    hits: int
    misses: int
    entries: int


# Semantic version with an optional leading "v": MAJOR.MINOR.PATCH[-PRE][+BUILD].
_SEMVER_RE = re.compile(
    r"[vV]?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
)


@dataclass(frozen=True, order=True)
class SemVer:
    """Semantic version ordered by semver precedence.

    A release sorts above its pre-releases; pre-release identifiers compare
    numerically when numeric and lexically otherwise, numeric ones first.
    Build metadata is kept but ignored for ordering and equality.
    """

    major: int
    minor: int
    patch: int
    release_rank: int
    prerelease: tuple[tuple[int, int, str], ...]
    build: str = field(default="", compare=False)

    @property
    def is_prerelease(self) -> bool:
        return self.release_rank == 0


def parse_version(text: str) -> SemVer | None:
    """Parse a tag or chart version, returning None when it is not semver."""
    match = _SEMVER_RE.fullmatch(text.strip())
    if match is None:
        return None
    pre = match.group("pre") or ""
    identifiers = tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in pre.split(".")
        if part
    )
    return SemVer(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        release_rank=0 if pre else 1,
        prerelease=identifiers,
        build=match.group("build") or "",
    )


def _published_key(candidate: VersionCandidate) -> float:
    return candidate.published_at.timestamp() if candidate.published_at else float("-inf")


def _parsed(candidates: Sequence[VersionCandidate]) -> list[tuple[VersionCandidate, SemVer]]:
    out: list[tuple[VersionCandidate, SemVer]] = []
    for c in candidates:
        v = parse_version(c.version)
        if v is not None:
            out.append((c, v))
    return out


def _pick(
    descriptor_id: str,
    eligible: list[tuple[VersionCandidate, SemVer]],
    everything: list[tuple[VersionCandidate, SemVer]],
) -> ResolvedVersion:
    best, best_v = max(eligible, key=lambda cv: (cv[1], _published_key(cv[0])))
    highest = max(v for _, v in everything)
    return ResolvedVersion(
        descriptor_id=descriptor_id,
        version=best.version,
        published_at=best.published_at,
        is_latest=best_v >= highest,
        is_stable=not best_v.is_prerelease,
        app_version=best.app_version,
    )


def select_tag(
    descriptor_id: str,
    candidates: Sequence[VersionCandidate],
    *,
    pattern: str = "*",
    include_prereleases: bool = False,
) -> ResolvedVersion:
    """Select the highest tag matching ``pattern``.

    Raises:
        NoVersionsFound: If no tag matches the pattern, parses as a version
            and passes the pre-release filter.
    """
    matching = _parsed([c for c in candidates if fnmatchcase(c.version, pattern)])
    eligible = matching if include_prereleases else [m for m in matching if not m[1].is_prerelease]
    if not eligible:
        msg = f"{descriptor_id}: no versions match pattern '{pattern}' ({len(candidates)} listed)"
        raise NoVersionsFound(msg)
    return _pick(descriptor_id, eligible, matching)


def select_chart_version(
    descriptor_id: str,
    candidates: Sequence[VersionCandidate],
    *,
    pinned: str | None = None,
    include_prereleases: bool = False,
) -> ResolvedVersion:
    """Select a chart version from a repository index.

    Raises:
        NoVersionsFound: If the chart has no usable entries or the pinned
            version is not published.
    """
    parsed = _parsed(candidates)
    if pinned is not None:
        pinned_v = parse_version(pinned)
        eligible = [
            m
            for m in parsed
            if m[0].version == pinned or (pinned_v is not None and m[1] == pinned_v)
        ]
        if not eligible:
            msg = f"{descriptor_id}: pinned chart version {pinned} is not published"
            raise NoVersionsFound(msg)
    elif include_prereleases:
        eligible = parsed
    else:
        eligible = [m for m in parsed if not m[1].is_prerelease]
    if not eligible:
        msg = f"{descriptor_id}: no stable chart versions found ({len(candidates)} listed)"
        raise NoVersionsFound(msg)
    return _pick(descriptor_id, eligible, parsed)


def select_static(descriptor_id: str, candidates: Sequence[VersionCandidate]) -> ResolvedVersion:
    """Resolve a fixed version; unparseable strings count as stable."""
    if not candidates or not candidates[0].version:
        msg = f"{descriptor_id}: static version source is empty"
        raise NoVersionsFound(msg)
    version = candidates[0].version
    parsed = parse_version(version)
    return ResolvedVersion(
        descriptor_id=descriptor_id,
        version=version,
        is_latest=True,
        is_stable=parsed is None or not parsed.is_prerelease,
    )


@dataclass
class _CacheEntry:
    value: ResolvedVersion
    expires_at: float


class VersionResolver:
    """Resolve descriptor versions with a TTL cache and bounded retries.

    Each descriptor has its own lock, so a slow or refreshing source never
    blocks resolution of other descriptors. Only ``VersionSourceUnreachable``
    is retried.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        providers: Mapping[str, VersionSourceProvider],
        *,
        ttl: float = DEFAULT_CACHE_TTL,
        attempts: int = 3,
        base_delay: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.providers = dict(providers)
        self.ttl = ttl
        self.attempts = attempts
        self.base_delay = base_delay
        self._clock = clock
        self._sleep = sleep
        self._cache: dict[tuple, _CacheEntry] = {}
        self._cache_lock = threading.Lock()
        self._locks: KeyedLocks[str] = KeyedLocks()
        self._hits = 0
        self._misses = 0

    def resolve(
        self,
        descriptor: ApplicationDescriptor,
        *,
        refresh: bool = False,
        timeout: float | None = None,
    ) -> ResolvedVersion:
        """Return the current version for a descriptor.

        Args:
            descriptor: Catalog entry to resolve.
            refresh: Bypass (and replace) any cached result.
            timeout: Per-request timeout for the external source.

        Raises:
            VersionSourceUnreachable: After all retry attempts failed.
            NoVersionsFound: If the source has no matching candidates.
        """
        key = _cache_key(descriptor)
        with self._locks.hold(descriptor.id):
            if not refresh:
                cached = self._lookup(key)
                if cached is not None:
                    return cached
            resolved = self._resolve_uncached(descriptor, timeout)
            with self._cache_lock:
                self._cache[key] = _CacheEntry(resolved, self._clock() + self.ttl)
        logger.info("🔖 %s resolved to %s", descriptor.id, resolved.version)
        return resolved

    def list_versions(
        self, descriptor: ApplicationDescriptor, *, timeout: float | None = None
    ) -> list[ResolvedVersion]:
        """All matching versions, newest first; never cached."""
        candidates = self._fetch(descriptor, timeout)
        spec = descriptor.version_source
        if spec.kind == SOURCE_TAGS:
            candidates = [c for c in candidates if fnmatchcase(c.version, spec.pattern)]
        parsed = sorted(
            _parsed(candidates), key=lambda cv: (cv[1], _published_key(cv[0])), reverse=True
        )
        highest = parsed[0][1] if parsed else None
        return [
            ResolvedVersion(
                descriptor_id=descriptor.id,
                version=c.version,
                published_at=c.published_at,
                is_latest=v == highest,
                is_stable=not v.is_prerelease,
                app_version=c.app_version,
            )
            for c, v in parsed
        ]

    def invalidate(self, descriptor_id: str | None = None) -> None:
        """Drop cached results for one descriptor, or all when id is None."""
        with self._cache_lock:
            if descriptor_id is None:
                self._cache.clear()
                return
            for key in [k for k in self._cache if k[0] == descriptor_id]:
                del self._cache[key]

    @property
    def stats(self) -> CacheStats:
        with self._cache_lock:
            return CacheStats(hits=self._hits, misses=self._misses, entries=len(self._cache))

    def _lookup(self, key: tuple) -> ResolvedVersion | None:
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None or self._clock() >= entry.expires_at:
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def _fetch(
        self, descriptor: ApplicationDescriptor, timeout: float | None
    ) -> list[VersionCandidate]:
        spec = descriptor.version_source
        provider = self.providers.get(spec.kind)
        if provider is None:
            msg = f"{descriptor.id}: no provider registered for '{spec.kind}'"
            raise NoVersionsFound(msg)
        return retry(
            lambda: provider.list_versions(spec, timeout=timeout),
            attempts=self.attempts,
            base_delay=self.base_delay,
            retry_on=(VersionSourceUnreachable,),
            sleep=self._sleep,
        )

    def _resolve_uncached(
        self, descriptor: ApplicationDescriptor, timeout: float | None
    ) -> ResolvedVersion:
        spec = descriptor.version_source
        candidates = self._fetch(descriptor, timeout)
        if spec.kind == SOURCE_HELM:
            chart = descriptor.helm_chart
            return select_chart_version(
                descriptor.id,
                candidates,
                pinned=chart.version if chart.is_pinned else None,
                include_prereleases=spec.include_prereleases,
            )
        if spec.kind == SOURCE_STATIC:
            return select_static(descriptor.id, candidates)
        return select_tag(
            descriptor.id,
            candidates,
            pattern=spec.pattern,
            include_prereleases=spec.include_prereleases,
        )


def _cache_key(descriptor: ApplicationDescriptor) -> tuple:
    return (descriptor.id, descriptor.version_source, descriptor.helm_chart.version)
