# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Port to hostname binding for deployed applications.

The binder keeps a route table (host -> port) that an ingress or reverse
proxy consumes. When ``routes_path`` is set the table is written as YAML
after every change.
"""

from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Protocol

import yaml

from xanthus.core.errors import InvalidSubdomain
from xanthus.logging import logger

DEFAULT_SCHEME = "https"
MAX_HOST_LENGTH = 253

# RFC 1123 label: alphanumerics and inner hyphens, at most 63 characters.
_LABEL_RE = re.compile(r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?")


class IngressBinder(Protocol):
    """Interface the reconciler uses to expose a deployment."""

    def bind(self, port: int, subdomain: str) -> str: ...

    def unbind(self, subdomain: str) -> None: ...


def normalize_host(subdomain: str) -> str:
    """Lowercase a subdomain and check that it is an RFC 1123 hostname.

    Raises:
        InvalidSubdomain: If the subdomain is empty, too long or has a label
            with characters other than letters, digits and inner hyphens.
    """
    host = subdomain.strip().strip(".").lower()
    if not host:
        msg = "subdomain must not be empty"
        raise InvalidSubdomain(msg)
    if len(host) > MAX_HOST_LENGTH or not all(
        _LABEL_RE.fullmatch(label) for label in host.split(".")
    ):
        msg = f"invalid subdomain {subdomain!r}: expected DNS labels such as 'ide.example.com'"
        raise InvalidSubdomain(msg)
    return host


def split_host(subdomain: str, base_domain: str = "") -> tuple[str, str]:
    """Split a subdomain into (label, domain).

    ``ide.example.com`` gives ``("ide", "example.com")``; a bare label such as
    ``ide`` takes ``base_domain`` as its domain.
    """
    host = normalize_host(subdomain)
    label, _, domain = host.partition(".")
    if not domain:
        domain = base_domain.strip().strip(".").lower()
    return label, domain


def full_host(subdomain: str, base_domain: str = "") -> str:
    label, domain = split_host(subdomain, base_domain)
    return f"{label}.{domain}" if domain else label


class HostnameBinder:
    """Bind exposed ports to ``<scheme>://<host>`` URLs."""

    def __init__(
        self,
        *,
        base_domain: str = "",
        scheme: str = DEFAULT_SCHEME,
        routes_path: str | Path | None = None,
    ) -> None:
        self.base_domain = base_domain
        self.scheme = scheme
        self.routes_path = Path(routes_path).expanduser() if routes_path else None
        self._routes: dict[str, int] = {}
        self._lock = threading.Lock()
        if self.routes_path is not None and self.routes_path.exists():
            with open(self.routes_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self._routes = {str(h): int(p) for h, p in (data.get("routes") or {}).items()}

    @property
    def routes(self) -> dict[str, int]:
        with self._lock:
            return dict(self._routes)

    def bind(self, port: int, subdomain: str) -> str:
        """Route the host for ``subdomain`` to ``port`` and return its URL."""
        host = full_host(subdomain, self.base_domain)
        with self._lock:
            self._routes[host] = int(port)
            self._write()
        logger.info("🔗 %s -> port %s", host, port)
        return f"{self.scheme}://{host}"

    def unbind(self, subdomain: str) -> None:
        """Drop the route for ``subdomain``; unknown hosts are ignored."""
        host = full_host(subdomain, self.base_domain)
        with self._lock:
            if self._routes.pop(host, None) is not None:
                self._write()
                logger.info("Removed route for %s", host)

    def _write(self) -> None:
        if self.routes_path is None:
            return
        self.routes_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.routes_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"routes": dict(sorted(self._routes.items()))}, f)
