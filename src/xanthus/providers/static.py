# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Fixed version declared directly in the descriptor."""

from __future__ import annotations

from typing import TYPE_CHECKING

from xanthus.providers.base import VersionCandidate, VersionSourceProvider

if TYPE_CHECKING:
    from xanthus.core.catalog import VersionSourceSpec


class StaticVersionProvider(VersionSourceProvider):
    """The ``source`` field is the version; no external calls are made."""

    @property
    def provider_name(self) -> str:
        return "static"

    def list_versions(
        self, spec: VersionSourceSpec, *, timeout: float | None = None
    ) -> list[VersionCandidate]:
        del timeout
        return [VersionCandidate(version=spec.source.strip())]
