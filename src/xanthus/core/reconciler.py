# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Deployment reconciler: install, upgrade, remove and resume deployments.

Every operation on a deployment holds that deployment's lock for the whole
state transition. Operations on different deployments run in parallel.
Apply and uninstall failures are written to the registry before the error
is raised to the caller.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from xanthus.core.catalog import SOURCE_HELM
from xanthus.core.errors import (
    ApplyFailed,
    InvalidStateTransition,
    NoVersionsFound,
    UninstallFailed,
    XanthusError,
)
from xanthus.core.helm import diagnose_failure
from xanthus.core.ingress import full_host, normalize_host, split_host
from xanthus.core.registry import (
    Deployment,
    DeploymentKey,
    DeploymentStatus,
    PortForward,
    Target,
)
from xanthus.core.templates import RenderContext
from xanthus.core.vps import check_requirements
from xanthus.logging import logger
from xanthus.utils.locks import KeyedLocks
from xanthus.utils.proc import ProcessError

if TYPE_CHECKING:
    from xanthus.core.catalog import ApplicationDescriptor, CatalogStore
    from xanthus.core.helm import ClusterApplier
    from xanthus.core.ingress import IngressBinder
    from xanthus.core.registry import ApplicationRegistry
    from xanthus.core.templates import TemplateRenderer, ValuesDocument
    from xanthus.core.versions import ResolvedVersion, VersionResolver
    from xanthus.core.vps import VpsInventory

# Helm release names are limited to 53 characters.
MAX_RELEASE_NAME = 53
_HOST_DIGEST_LENGTH = 6

_UPGRADABLE = (DeploymentStatus.RUNNING, DeploymentStatus.ERROR)


@dataclass(frozen=True)
class UpgradeCandidate:
    """A newer resolvable version for a deployment."""

    key: DeploymentKey
    current_version: str | None
    target_version: str
    resolved: ResolvedVersion


def release_name_for(descriptor_id: str, subdomain: str, base_domain: str = "") -> str:
    """Helm release name ``<subdomain label>-<descriptor id>-<host digest>``.

    The digest of the full host keeps two hosts that share a first label, such
    as ``ide.example.com`` and ``ide.other.org``, on separate releases.
    """
    label, _ = split_host(subdomain, base_domain)
    host = full_host(subdomain, base_domain)
    digest = hashlib.sha256(host.encode("utf-8")).hexdigest()[:_HOST_DIGEST_LENGTH]
    prefix = f"{label}-{descriptor_id}".lower()
    prefix = prefix[: MAX_RELEASE_NAME - _HOST_DIGEST_LENGTH - 1].rstrip("-")
    return f"{prefix}-{digest}"


def _failure_text(err: BaseException) -> str:
    text = str(err)
    output = f"{getattr(err, 'stdout', '')}\n{getattr(err, 'stderr', '')}\n{text}"
    hint = diagnose_failure(output)
    return f"{text} (hint: {hint})" if hint else text


class Reconciler:  # pylint: disable=too-many-instance-attributes
    """Drive deployments through their lifecycle against the cluster."""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        catalog: CatalogStore,
        resolver: VersionResolver,
        renderer: TemplateRenderer,
        registry: ApplicationRegistry,
        applier: ClusterApplier,
        binder: IngressBinder,
        *,
        inventory: VpsInventory | None = None,
        base_domain: str = "",
        timezone: str = "UTC",
        apply_timeout: float | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.catalog = catalog
        self.resolver = resolver
        self.renderer = renderer
        self.registry = registry
        self.applier = applier
        self.binder = binder
        self.inventory = inventory
        self.base_domain = base_domain
        self.timezone = timezone
        self.apply_timeout = apply_timeout
        self.lock_timeout = lock_timeout
        self._locks: KeyedLocks[DeploymentKey] = KeyedLocks()

    # ---------- Operations ----------
    def install(  # pylint: disable=too-many-arguments
        self,
        descriptor_id: str,
        target: Target | str,
        subdomain: str,
        *,
        port: int | None = None,
        timeout: float | None = None,
    ) -> Deployment:
        """Install a catalog application on a target.

        A plain string target is a VPS id; the namespace then comes from the
        descriptor's chart reference.

        Raises:
            InvalidSubdomain: The subdomain is not a DNS hostname.
            DescriptorNotFound: Unknown descriptor id.
            UnknownTarget / InsufficientResources: Target checks failed.
            DuplicateDeployment: A deployment with the same key exists, or
                another deployment owns the same release on the target.
            ApplyFailed: The chart apply failed; the record is left in error.
        """
        normalize_host(subdomain)
        descriptor = self.catalog.get(descriptor_id)
        if isinstance(target, str):
            target = Target(vps_id=target, namespace=descriptor.helm_chart.namespace)
        if self.inventory is not None:
            check_requirements(self.inventory.get(target.vps_id), descriptor.requirements)

        deployment = Deployment(
            descriptor_id=descriptor.id,
            target=target,
            subdomain=subdomain,
            port=port or descriptor.default_port,
            release_name=release_name_for(descriptor.id, subdomain, self.base_domain),
        )
        with self._locks.hold(deployment.key, timeout=self.lock_timeout):
            deployment = self.registry.create(deployment)
            logger.info("🚀 Installing %s as %s", descriptor.id, deployment.key)
            return self._converge(
                deployment, descriptor, phase=DeploymentStatus.DEPLOYING, timeout=timeout
            )

    def check_upgrade(
        self, key: DeploymentKey, *, refresh: bool = False, timeout: float | None = None
    ) -> UpgradeCandidate | None:
        """Return an upgrade candidate if the resolved version differs; read-only."""
        deployment = self.registry.require(key)
        descriptor = self.catalog.get(deployment.descriptor_id)
        resolved = self.resolver.resolve(descriptor, refresh=refresh, timeout=timeout)
        if resolved.version == deployment.observed_version:
            return None
        return UpgradeCandidate(
            key=key,
            current_version=deployment.observed_version,
            target_version=resolved.version,
            resolved=resolved,
        )

    def upgrade(
        self,
        key: DeploymentKey,
        target_version: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Deployment:
        """Upgrade a running (or failed) deployment to ``target_version``.

        Without a target version the currently resolved version is used. The
        version and values are prepared before the status changes, so a
        resolution or rendering problem leaves the deployment untouched.

        Raises:
            InvalidStateTransition: The deployment is not running or in error.
            ApplyFailed: The chart apply failed; observed version is unchanged.
        """
        with self._locks.hold(key, timeout=self.lock_timeout):
            deployment = self.registry.require(key)
            if deployment.status not in _UPGRADABLE:
                msg = f"{key}: cannot upgrade while {deployment.status.value}"
                raise InvalidStateTransition(msg)
            descriptor = self.catalog.get(deployment.descriptor_id)
            resolved = self._resolve(descriptor, target_version, timeout)
            values = self.renderer.render(descriptor, resolved, self._context(deployment))
            logger.info(
                "⬆️  Upgrading %s: %s -> %s",
                key,
                deployment.observed_version or "-",
                resolved.version,
            )
            return self._apply(
                deployment,
                descriptor,
                resolved,
                values,
                phase=DeploymentStatus.UPGRADING,
                timeout=timeout,
            )

    def remove(self, key: DeploymentKey, *, timeout: float | None = None) -> bool:
        """Uninstall a deployment and delete its record.

        Returns False when there was nothing to remove.

        Raises:
            UninstallFailed: The uninstall failed; the record is kept in error.
        """
        with self._locks.hold(key, timeout=self.lock_timeout):
            deployment = self.registry.get(key)
            if deployment is None:
                logger.info("Nothing to remove for %s", key)
                return False
            try:
                self.applier.uninstall(
                    deployment.target.namespace,
                    deployment.release_name,
                    timeout=self._timeout(timeout),
                )
            except (ProcessError, OSError) as e:
                message = _failure_text(e)
                self._record_failure(deployment, message)
                raise UninstallFailed(f"{key}: uninstall failed: {message}", cause=e) from e
            self.binder.unbind(deployment.subdomain)
            self.registry.remove_port_forward(key)
            deployment.transition(DeploymentStatus.STOPPED)
            self.registry.delete(key)
        logger.info("🗑️  Removed %s", key)
        return True

    def reconcile(self, key: DeploymentKey, *, timeout: float | None = None) -> Deployment:
        """Converge one deployment toward its recorded desired state.

        Interrupted installs and upgrades are resumed at the recorded desired
        version, failed deployments are retried, and running deployments are
        re-applied when the cluster release is gone or their rendered values
        no longer match what was last applied.
        """
        with self._locks.hold(key, timeout=self.lock_timeout):
            deployment = self.registry.require(key)
            descriptor = self.catalog.get(deployment.descriptor_id)
            status = deployment.status
            if status in (DeploymentStatus.PENDING, DeploymentStatus.DEPLOYING):
                phase = DeploymentStatus.DEPLOYING
            elif status is DeploymentStatus.UPGRADING:
                phase = DeploymentStatus.UPGRADING
            elif status is DeploymentStatus.ERROR:
                phase = (
                    DeploymentStatus.UPGRADING
                    if deployment.observed_version
                    else DeploymentStatus.DEPLOYING
                )
            else:
                return self._reconcile_running(deployment, descriptor, timeout)
            logger.info("🔁 Resuming %s from %s", key, status.value)
            return self._converge(
                deployment,
                descriptor,
                phase=phase,
                version=deployment.desired_version,
                timeout=timeout,
            )

    # ---------- Internals ----------
    def _reconcile_running(
        self,
        deployment: Deployment,
        descriptor: ApplicationDescriptor,
        timeout: float | None,
    ) -> Deployment:
        resolved = self._resolve(descriptor, deployment.observed_version, timeout)
        values = self.renderer.render(descriptor, resolved, self._context(deployment))
        try:
            release = self.applier.status(
                deployment.target.namespace,
                deployment.release_name,
                timeout=self._timeout(timeout),
            )
        except (ProcessError, OSError) as e:
            message = f"cannot read release status: {_failure_text(e)}"
            self._record_failure(deployment, message)
            raise ApplyFailed(f"{deployment.key}: {message}", cause=e) from e
        live = release is not None and release.deployed
        if live and values.checksum == deployment.applied_checksum:
            logger.info("✅ %s is up to date", deployment.key)
            return deployment
        reason = "values drift" if live else "release missing"
        logger.info("🔁 Re-applying %s (%s)", deployment.key, reason)
        return self._apply(
            deployment,
            descriptor,
            resolved,
            values,
            phase=DeploymentStatus.UPGRADING,
            timeout=timeout,
        )

    def _converge(
        self,
        deployment: Deployment,
        descriptor: ApplicationDescriptor,
        *,
        phase: DeploymentStatus,
        version: str | None = None,
        timeout: float | None = None,
    ) -> Deployment:
        """Resolve, render and apply; preparation failures are recorded too."""
        try:
            resolved = self._resolve(descriptor, version, timeout)
            deployment.desired_version = resolved.version
            values = self.renderer.render(descriptor, resolved, self._context(deployment))
        except XanthusError as e:
            self._record_failure(deployment, str(e))
            raise
        return self._apply(deployment, descriptor, resolved, values, phase=phase, timeout=timeout)

    def _apply(  # pylint: disable=too-many-arguments
        self,
        deployment: Deployment,
        descriptor: ApplicationDescriptor,
        resolved: ResolvedVersion,
        values: ValuesDocument,
        *,
        phase: DeploymentStatus,
        timeout: float | None,
    ) -> Deployment:
        deployment.transition(phase)
        deployment.desired_version = resolved.version
        deployment = self.registry.update(deployment)

        chart_version = self._chart_version(descriptor, resolved)
        try:
            self.applier.apply(
                deployment.target.namespace,
                deployment.release_name,
                descriptor.helm_chart,
                values,
                chart_version=chart_version,
                timeout=self._timeout(timeout),
            )
            url = self.binder.bind(deployment.port, deployment.subdomain)
        except (ProcessError, OSError, ValueError) as e:
            message = _failure_text(e)
            self._record_failure(deployment, message)
            raise ApplyFailed(f"{deployment.key}: apply failed: {message}", cause=e) from e

        deployment.transition(DeploymentStatus.RUNNING)
        deployment.observed_version = resolved.version
        deployment.chart_version = chart_version
        deployment.applied_checksum = values.checksum
        deployment.last_error = None
        deployment = self.registry.update(deployment)
        self._record_port_forward(deployment, url)
        logger.info("✅ %s running %s at %s", deployment.key, resolved.version, url)
        return deployment

    def _record_port_forward(self, deployment: Deployment, url: str) -> None:
        existing = self.registry.get_port_forward(deployment.key)
        self.registry.set_port_forward(
            PortForward(
                id=existing.id if existing else uuid.uuid4().hex[:12],
                deployment_key=deployment.key,
                port=deployment.port,
                subdomain=deployment.subdomain,
                url=url,
            )
        )

    def _record_failure(self, deployment: Deployment, message: str) -> None:
        deployment.transition(DeploymentStatus.ERROR)
        deployment.last_error = message
        self.registry.update(deployment)
        logger.error("❌ %s: %s", deployment.key, message)

    def _resolve(
        self, descriptor: ApplicationDescriptor, version: str | None, timeout: float | None
    ) -> ResolvedVersion:
        resolved = self.resolver.resolve(descriptor, timeout=timeout)
        if version is None or resolved.version == version:
            return resolved
        for candidate in self.resolver.list_versions(descriptor, timeout=timeout):
            if candidate.version == version:
                return candidate
        msg = f"{descriptor.id}: version {version} is not published"
        raise NoVersionsFound(msg)

    def _context(self, deployment: Deployment) -> RenderContext:
        label, domain = split_host(deployment.subdomain, self.base_domain)
        return RenderContext(
            subdomain=label,
            domain=domain,
            release_name=deployment.release_name,
            namespace=deployment.target.namespace,
            port=deployment.port,
            timezone=self.timezone,
        )

    @staticmethod
    def _chart_version(descriptor: ApplicationDescriptor, resolved: ResolvedVersion) -> str | None:
        chart = descriptor.helm_chart
        if chart.is_pinned:
            return chart.version
        if descriptor.version_source.kind == SOURCE_HELM:
            return resolved.version
        return None

    def _timeout(self, timeout: float | None) -> float | None:
        return self.apply_timeout if timeout is None else timeout
