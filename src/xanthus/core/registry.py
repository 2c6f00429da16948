# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Application registry: persisted deployments and their port forwards.

Records are kept in memory and written to a YAML file after each change. The
file is replaced atomically so a crash mid-write never leaves a torn registry.
"""

from __future__ import annotations

import dataclasses
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from xanthus.core.errors import DeploymentNotFound, DuplicateDeployment, InvalidStateTransition
from xanthus.logging import logger


class DeploymentStatus(str, Enum):
    """Lifecycle status of a deployment."""

    PENDING = "pending"
    DEPLOYING = "deploying"
    RUNNING = "running"
    UPGRADING = "upgrading"
    ERROR = "error"
    STOPPED = "stopped"


_NON_TERMINAL = {s for s in DeploymentStatus if s is not DeploymentStatus.STOPPED}

ALLOWED_TRANSITIONS: dict[DeploymentStatus, set[DeploymentStatus]] = {
    DeploymentStatus.PENDING: {DeploymentStatus.DEPLOYING, DeploymentStatus.ERROR},
    DeploymentStatus.DEPLOYING: {DeploymentStatus.RUNNING, DeploymentStatus.ERROR},
    DeploymentStatus.RUNNING: {DeploymentStatus.UPGRADING, DeploymentStatus.ERROR},
    DeploymentStatus.UPGRADING: {DeploymentStatus.RUNNING, DeploymentStatus.ERROR},
    DeploymentStatus.ERROR: {DeploymentStatus.DEPLOYING, DeploymentStatus.UPGRADING},
    DeploymentStatus.STOPPED: set(),
}
# Removal is accepted from any non-terminal status.
for _status in _NON_TERMINAL:
    ALLOWED_TRANSITIONS[_status].add(DeploymentStatus.STOPPED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Target:
    """Where a deployment runs: a VPS and a cluster namespace on it."""

    vps_id: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.vps_id}/{self.namespace}"


@dataclass(frozen=True)
class DeploymentKey:
    """Natural key of a deployment: descriptor, target and subdomain."""

    descriptor_id: str
    vps_id: str
    namespace: str
    subdomain: str

    @property
    def target(self) -> Target:
        return Target(vps_id=self.vps_id, namespace=self.namespace)

    def __str__(self) -> str:
        return f"{self.descriptor_id}@{self.vps_id}/{self.namespace}:{self.subdomain}"


@dataclass
class Deployment:  # pylint: disable=too-many-instance-attributes
    """An application installed (or being installed) on a target."""

    descriptor_id: str
    target: Target
    subdomain: str
    port: int
    release_name: str
    desired_version: str | None = None
    observed_version: str | None = None
    status: DeploymentStatus = DeploymentStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_error: str | None = None
    chart_version: str | None = None
    applied_checksum: str | None = None

    @property
    def key(self) -> DeploymentKey:
        return DeploymentKey(
            descriptor_id=self.descriptor_id,
            vps_id=self.target.vps_id,
            namespace=self.target.namespace,
            subdomain=self.subdomain,
        )

    def transition(self, new_status: DeploymentStatus, *, now: datetime | None = None) -> None:
        """Move to ``new_status`` if the state machine allows it.

        Staying in the same status is accepted so an interrupted operation can
        be resumed.

        Raises:
            InvalidStateTransition: If the move is not allowed.
        """
        if new_status is not self.status and new_status not in ALLOWED_TRANSITIONS[self.status]:
            msg = f"{self.key}: cannot move from {self.status.value} to {new_status.value}"
            raise InvalidStateTransition(msg)
        self.status = new_status
        self.updated_at = now or utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "descriptor_id": self.descriptor_id,
            "vps_id": self.target.vps_id,
            "namespace": self.target.namespace,
            "subdomain": self.subdomain,
            "port": self.port,
            "release_name": self.release_name,
            "desired_version": self.desired_version,
            "observed_version": self.observed_version,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_error": self.last_error,
            "chart_version": self.chart_version,
            "applied_checksum": self.applied_checksum,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Deployment:
        return cls(
            descriptor_id=str(raw["descriptor_id"]),
            target=Target(vps_id=str(raw["vps_id"]), namespace=str(raw["namespace"])),
            subdomain=str(raw["subdomain"]),
            port=int(raw["port"]),
            release_name=str(raw.get("release_name") or ""),
            desired_version=raw.get("desired_version"),
            observed_version=raw.get("observed_version"),
            status=DeploymentStatus(raw.get("status", "pending")),
            created_at=_parse_dt(raw.get("created_at")),
            updated_at=_parse_dt(raw.get("updated_at")),
            last_error=raw.get("last_error"),
            chart_version=raw.get("chart_version"),
            applied_checksum=raw.get("applied_checksum"),
        )


@dataclass(frozen=True)
class PortForward:
    """Externally reachable URL bound to a deployment's exposed port."""

    id: str
    deployment_key: DeploymentKey
    port: int
    subdomain: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "deployment": dataclasses.asdict(self.deployment_key),
            "port": self.port,
            "subdomain": self.subdomain,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PortForward:
        return cls(
            id=str(raw["id"]),
            deployment_key=DeploymentKey(**raw["deployment"]),
            port=int(raw["port"]),
            subdomain=str(raw["subdomain"]),
            url=str(raw["url"]),
        )


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utcnow()


class ApplicationRegistry:
    """Owns Deployment and PortForward records.

    Callers always receive copies; changes go through ``update``. With
    ``path=None`` the registry lives in memory only.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path else None
        self._deployments: dict[DeploymentKey, Deployment] = {}
        self._port_forwards: dict[DeploymentKey, PortForward] = {}
        self._lock = threading.RLock()
        if self.path is not None:
            self.load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._deployments)

    def load(self) -> None:
        """Read records from disk; a missing file means an empty registry."""
        if self.path is None or not self.path.exists():
            return
        with open(self.path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            msg = f"Registry file {self.path} must contain a mapping"
            raise ValueError(msg)
        deployments = [Deployment.from_dict(d) for d in data.get("deployments") or []]
        forwards = [PortForward.from_dict(p) for p in data.get("port_forwards") or []]
        with self._lock:
            self._deployments = {d.key: d for d in deployments}
            self._port_forwards = {p.deployment_key: p for p in forwards}
        logger.debug("Loaded %d deployment(s) from %s", len(deployments), self.path)

    def _save(self) -> None:
        if self.path is None:
            return
        payload = {
            "deployments": [d.to_dict() for d in self._deployments.values()],
            "port_forwards": [p.to_dict() for p in self._port_forwards.values()],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".registry-", suffix=".yaml", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(payload, f, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def create(self, deployment: Deployment) -> Deployment:
        """Register a new deployment.

        Raises:
            DuplicateDeployment: If a deployment with the same natural key
                exists, or another deployment already owns the same helm
                release on the same VPS and namespace.
        """
        key = deployment.key
        with self._lock:
            if key in self._deployments:
                msg = f"Deployment already exists: {key}"
                raise DuplicateDeployment(msg)
            for other in self._deployments.values():
                if (
                    other.target == deployment.target
                    and other.release_name == deployment.release_name
                ):
                    msg = f"Release '{deployment.release_name}' is already owned by {other.key}"
                    raise DuplicateDeployment(msg)
            self._deployments[key] = dataclasses.replace(deployment)
            self._save()
        return dataclasses.replace(deployment)

    def get(self, key: DeploymentKey) -> Deployment | None:
        with self._lock:
            found = self._deployments.get(key)
            return dataclasses.replace(found) if found else None

    def require(self, key: DeploymentKey) -> Deployment:
        """Return the deployment for ``key``.

        Raises:
            DeploymentNotFound: If no deployment is registered for the key.
        """
        found = self.get(key)
        if found is None:
            msg = f"Deployment not found: {key}"
            raise DeploymentNotFound(msg)
        return found

    def update(self, deployment: Deployment) -> Deployment:
        """Persist changes to an existing deployment."""
        key = deployment.key
        with self._lock:
            if key not in self._deployments:
                msg = f"Deployment not found: {key}"
                raise DeploymentNotFound(msg)
            self._deployments[key] = dataclasses.replace(deployment)
            self._save()
        return dataclasses.replace(deployment)

    def delete(self, key: DeploymentKey) -> bool:
        """Remove a deployment and its port forward; False if it was absent."""
        with self._lock:
            existed = self._deployments.pop(key, None) is not None
            self._port_forwards.pop(key, None)
            if existed:
                self._save()
        return existed

    def list(
        self, *, status: DeploymentStatus | None = None, vps_id: str | None = None
    ) -> list[Deployment]:
        """Deployments, optionally filtered, ordered by creation time."""
        with self._lock:
            items = [dataclasses.replace(d) for d in self._deployments.values()]
        if status is not None:
            items = [d for d in items if d.status is status]
        if vps_id is not None:
            items = [d for d in items if d.target.vps_id == vps_id]
        return sorted(items, key=lambda d: d.created_at)

    def set_port_forward(self, port_forward: PortForward) -> None:
        with self._lock:
            if port_forward.deployment_key not in self._deployments:
                msg = f"Deployment not found: {port_forward.deployment_key}"
                raise DeploymentNotFound(msg)
            self._port_forwards[port_forward.deployment_key] = port_forward
            self._save()

    def get_port_forward(self, key: DeploymentKey) -> PortForward | None:
        with self._lock:
            return self._port_forwards.get(key)

    def remove_port_forward(self, key: DeploymentKey) -> PortForward | None:
        with self._lock:
            removed = self._port_forwards.pop(key, None)
            if removed is not None:
                self._save()
            return removed
