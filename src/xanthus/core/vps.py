# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""VPS targets mirrored from the provisioning layer.

Servers are provisioned elsewhere; the orchestrator only needs to know which
targets exist and whether they are large enough for an application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from xanthus.core.errors import InsufficientResources, UnknownTarget

if TYPE_CHECKING:
    from collections.abc import Iterable

    from xanthus.core.catalog import Requirements

MANAGED_BY_LABEL = "managed_by"


@dataclass(frozen=True)
class ServerType:
    """Hardware profile of a server."""

    name: str
    cores: float
    memory_gb: float
    disk_gb: float


@dataclass(frozen=True)
class VPS:
    """A virtual server that deployments can target."""

    id: str
    provider: str
    server_type: ServerType
    status: str = "running"
    ipv4: str = ""
    labels: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def managed(self) -> bool:
        return self.labels.get(MANAGED_BY_LABEL) == "xanthus"

    @property
    def monthly_cost(self) -> float | None:
        return _float_label(self.labels, "monthly_cost")

    @property
    def hourly_cost(self) -> float | None:
        return _float_label(self.labels, "hourly_cost")

    @property
    def accumulated_cost(self) -> float | None:
        return _float_label(self.labels, "accumulated_cost")


def _float_label(labels: dict[str, str], key: str) -> float | None:
    try:
        return float(labels[key])
    except (KeyError, ValueError):
        return None


def parse_vps(raw: Any) -> VPS:
    """Build a VPS from a config inventory entry.

    Raises:
        ValueError: If the entry is not a mapping or lacks an id.
    """
    if not isinstance(raw, dict) or not raw.get("id"):
        msg = f"Invalid VPS entry (mapping with 'id' required): {raw!r}"
        raise ValueError(msg)
    st = raw.get("server_type") or {}
    if not isinstance(st, dict):
        st = {"name": str(st)}
    return VPS(
        id=str(raw["id"]),
        provider=str(raw.get("provider", "unknown")),
        status=str(raw.get("status", "running")),
        ipv4=str(raw.get("ipv4", "")),
        server_type=ServerType(
            name=str(st.get("name", "custom")),
            cores=float(st.get("cores", 0)),
            memory_gb=float(st.get("memory_gb", st.get("memory", 0))),
            disk_gb=float(st.get("disk_gb", st.get("disk", 0))),
        ),
        labels={str(k): str(v) for k, v in (raw.get("labels") or {}).items()},
    )


def check_requirements(vps: VPS, requirements: Requirements) -> None:
    """Ensure a server meets an application's minimum resources.

    Raises:
        InsufficientResources: Naming every resource that falls short.
    """
    st = vps.server_type
    short: list[str] = []
    if st.cores < requirements.min_cpu:
        short.append(f"cpu {st.cores:g} < {requirements.min_cpu:g}")
    if st.memory_gb < requirements.min_memory_gb:
        short.append(f"memory {st.memory_gb:g}GB < {requirements.min_memory_gb:g}GB")
    if st.disk_gb < requirements.min_disk_gb:
        short.append(f"disk {st.disk_gb:g}GB < {requirements.min_disk_gb:g}GB")
    if short:
        msg = f"VPS {vps.id} ({st.name}) is too small: " + ", ".join(short)
        raise InsufficientResources(msg)


class VpsInventory:
    """Known VPS targets keyed by id."""

    def __init__(self, servers: Iterable[VPS] = ()) -> None:
        self._servers = {s.id: s for s in servers}

    @classmethod
    def from_config(cls, entries: Iterable[Any]) -> VpsInventory:
        return cls(parse_vps(e) for e in entries)

    def __contains__(self, vps_id: object) -> bool:
        return vps_id in self._servers

    def __len__(self) -> int:
        return len(self._servers)

    def get(self, vps_id: str) -> VPS:
        """Return a server by id.

        Raises:
            UnknownTarget: If the id is not in the inventory.
        """
        try:
            return self._servers[vps_id]
        except KeyError as err:
            msg = f"Unknown VPS target: {vps_id}"
            raise UnknownTarget(msg) from err

    def list(self) -> list[VPS]:
        return sorted(self._servers.values(), key=lambda s: s.id)
