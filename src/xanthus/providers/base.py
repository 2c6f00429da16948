# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Base classes and HTTP helpers for version source providers."""

from __future__ import annotations

import abc
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import requests

from xanthus.__about__ import __version__
from xanthus.core.errors import NoVersionsFound, VersionSourceUnreachable
from xanthus.logging import logger

if TYPE_CHECKING:
    from xanthus.core.catalog import VersionSourceSpec

DEFAULT_TIMEOUT = 30.0
USER_AGENT = f"xanthus/{__version__}"
_NOT_FOUND_CODES = (404, 410)
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


@dataclass(frozen=True)
class VersionCandidate:
    """A version published by a source, as listed (tag or chart version)."""

    version: str
    published_at: datetime | None = None
    app_version: str | None = None


class VersionSourceProvider(abc.ABC):
    """Abstract base class for anything that can list versions of an application."""

    def __init__(
        self, *, session: requests.Session | None = None, timeout: float = DEFAULT_TIMEOUT
    ) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout

    @property
    @abc.abstractmethod
    def provider_name(self) -> str:
        """Name of the provider (e.g., 'github', 'helm')."""

    @abc.abstractmethod
    def list_versions(
        self, spec: VersionSourceSpec, *, timeout: float | None = None
    ) -> list[VersionCandidate]:
        """List every version the source publishes for the given spec."""

    def _get(self, url: str, *, timeout: float | None = None, **kwargs: Any) -> requests.Response:
        """GET a URL, mapping transport and HTTP failures onto resolver errors.

        Raises:
            VersionSourceUnreachable: On connection errors, timeouts, 5xx, 429
                and any other unexpected status.
            NoVersionsFound: When the source reports the resource does not exist.
        """
        effective = self.timeout if timeout is None else timeout
        logger.debug("GET %s", url)
        try:
            resp = self.session.get(url, timeout=effective, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            msg = f"{self.provider_name}: cannot reach {url}: {e}"
            raise VersionSourceUnreachable(msg) from e
        except requests.RequestException as e:
            msg = f"{self.provider_name}: request to {url} failed: {e}"
            raise VersionSourceUnreachable(msg) from e
        if resp.status_code in _NOT_FOUND_CODES:
            msg = f"{self.provider_name}: {url} not found (HTTP {resp.status_code})"
            raise NoVersionsFound(msg)
        if not resp.ok:
            msg = f"{self.provider_name}: {url} returned HTTP {resp.status_code}"
            raise VersionSourceUnreachable(msg)
        return resp


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp as published by GitHub or a Helm index.

    Helm writes nanosecond precision, which ``fromisoformat`` rejects, so the
    fraction is truncated to microseconds first. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = _FRACTION_RE.sub(r"\1", value.strip())
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
