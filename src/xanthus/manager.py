# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Deployment manager: the orchestrator surface used by the CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

from xanthus.config.store import Settings
from xanthus.core.catalog import CatalogStore
from xanthus.core.errors import XanthusError
from xanthus.core.helm import HelmClient
from xanthus.core.ingress import HostnameBinder
from xanthus.core.reconciler import Reconciler
from xanthus.core.registry import ApplicationRegistry, DeploymentKey, Target
from xanthus.core.templates import TemplateRenderer
from xanthus.core.versions import VersionResolver
from xanthus.core.vps import VpsInventory
from xanthus.logging import logger
from xanthus.providers.registry import build_providers

if TYPE_CHECKING:
    from xanthus.core.catalog import ApplicationDescriptor
    from xanthus.core.reconciler import UpgradeCandidate
    from xanthus.core.registry import Deployment, DeploymentStatus
    from xanthus.core.versions import ResolvedVersion
    from xanthus.core.vps import VPS


class DeploymentManager:
    """
    Catalog, version and deployment operations behind one object.

    Args:
        catalog (CatalogStore): Loaded application catalog
        resolver (VersionResolver): Version resolver with its cache
        reconciler (Reconciler): Deployment reconciler
        inventory (VpsInventory): Known VPS targets
    """

    def __init__(
        self,
        catalog: CatalogStore,
        resolver: VersionResolver,
        reconciler: Reconciler,
        inventory: VpsInventory,
    ) -> None:
        self.catalog = catalog
        self.resolver = resolver
        self.reconciler = reconciler
        self.inventory = inventory

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DeploymentManager:
        """Wire the default collaborators (helm, HTTP providers) from settings."""
        settings = settings or Settings.from_config()
        catalog = CatalogStore([settings.catalog_dir], settings.templates_dir)
        catalog.load()
        resolver = VersionResolver(
            build_providers(timeout=settings.request_timeout, github_token=settings.github_token),
            ttl=settings.version_cache_ttl,
            attempts=settings.resolve_attempts,
        )
        inventory = VpsInventory.from_config(settings.vps)
        reconciler = Reconciler(
            catalog,
            resolver,
            TemplateRenderer(settings.templates_dir),
            ApplicationRegistry(settings.registry_path),
            HelmClient(kubeconfig=settings.kubeconfig, charts_dir=settings.charts_dir),
            HostnameBinder(base_domain=settings.base_domain, routes_path=settings.routes_path),
            inventory=inventory if len(inventory) else None,
            base_domain=settings.base_domain,
            timezone=settings.timezone,
            apply_timeout=settings.apply_timeout,
        )
        logger.debug("Deployment manager ready (%d VPS target(s))", len(inventory))
        return cls(catalog, resolver, reconciler, inventory)

    @property
    def registry(self) -> ApplicationRegistry:
        return self.reconciler.registry

    # ---------- Catalog & versions ----------
    def list_applications(self) -> list[ApplicationDescriptor]:
        return self.catalog.descriptors()

    def refresh_catalog(self) -> int:
        """Reload the catalog and drop cached versions; returns active count."""
        active = self.catalog.refresh()
        self.resolver.invalidate()
        return len(active)

    def get_version(self, descriptor_id: str, *, refresh: bool = False) -> ResolvedVersion:
        return self.resolver.resolve(self.catalog.get(descriptor_id), refresh=refresh)

    def list_versions(self, descriptor_id: str) -> list[ResolvedVersion]:
        return self.resolver.list_versions(self.catalog.get(descriptor_id))

    def check_upgrades(self, *, refresh: bool = False) -> list[UpgradeCandidate]:
        """Upgrade candidates for every deployment that has one."""
        candidates = []
        for deployment in self.registry.list():
            candidate = self.reconciler.check_upgrade(deployment.key, refresh=refresh)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    # ---------- Deployments ----------
    def key_for(
        self, descriptor_id: str, vps_id: str, subdomain: str, *, namespace: str | None = None
    ) -> DeploymentKey:
        """Natural key for a deployment; namespace defaults to the descriptor's."""
        if namespace is None:
            namespace = self.catalog.get(descriptor_id).helm_chart.namespace
        return DeploymentKey(
            descriptor_id=descriptor_id, vps_id=vps_id, namespace=namespace, subdomain=subdomain
        )

    def install(  # pylint: disable=too-many-arguments
        self,
        descriptor_id: str,
        vps_id: str,
        subdomain: str,
        *,
        namespace: str | None = None,
        port: int | None = None,
    ) -> Deployment:
        target: Target | str = (
            Target(vps_id=vps_id, namespace=namespace) if namespace else vps_id
        )
        return self.reconciler.install(descriptor_id, target, subdomain, port=port)

    def upgrade(self, key: DeploymentKey, version: str | None = None) -> Deployment:
        return self.reconciler.upgrade(key, version)

    def remove(self, key: DeploymentKey) -> bool:
        return self.reconciler.remove(key)

    def reconcile(self, key: DeploymentKey) -> Deployment:
        return self.reconciler.reconcile(key)

    def reconcile_all(self) -> dict[DeploymentKey, str]:
        """Reconcile every deployment; failures are reported per key."""
        results: dict[DeploymentKey, str] = {}
        for deployment in self.registry.list():
            try:
                results[deployment.key] = self.reconciler.reconcile(deployment.key).status.value
            except XanthusError as e:
                logger.error("❌ Reconcile failed for %s: %s", deployment.key, e)
                results[deployment.key] = f"error: {e}"
        return results

    def list_deployments(
        self, *, status: DeploymentStatus | None = None, vps_id: str | None = None
    ) -> list[Deployment]:
        return self.registry.list(status=status, vps_id=vps_id)

    def port_forward_url(self, key: DeploymentKey) -> str | None:
        forward = self.registry.get_port_forward(key)
        return forward.url if forward else None

    # ---------- Targets ----------
    def list_vps(self) -> list[VPS]:
        return self.inventory.list()
