"""Tables for catalog, versions, deployments and VPS targets."""

from __future__ import annotations

from typing import TYPE_CHECKING

from xanthus.eyecandy.table_renderer import TableRenderer

if TYPE_CHECKING:
    from xanthus.core.catalog import ApplicationDescriptor
    from xanthus.core.reconciler import UpgradeCandidate
    from xanthus.core.registry import Deployment, DeploymentKey, PortForward
    from xanthus.core.versions import ResolvedVersion
    from xanthus.core.vps import VPS


def _yes(flag: bool) -> str:
    return "yes" if flag else "-"


class XanthusTables(TableRenderer):
    """Render orchestrator objects as Rich tables."""

    def render_catalog(self, descriptors: list[ApplicationDescriptor]) -> None:
        rows = [
            {
                "ID": d.id,
                "Name": d.name,
                "Category": d.category,
                "Source": f"{d.version_source.kind}:{d.version_source.source}",
                "Port": d.default_port,
            }
            for d in descriptors
        ]
        self.render_list(
            ["ID", "Name", "Category", "Source", "Port"], rows, empty="No applications in catalog"
        )

    def render_versions(self, versions: list[ResolvedVersion]) -> None:
        rows = [
            {
                "Version": v.version,
                "Published": v.published_at.strftime("%Y-%m-%d") if v.published_at else "-",
                "Stable": _yes(v.is_stable),
                "Latest": _yes(v.is_latest),
            }
            for v in versions
        ]
        self.render_list(["Version", "Published", "Stable", "Latest"], rows, empty="No versions")

    def render_deployments(
        self, deployments: list[Deployment], forwards: dict[DeploymentKey, PortForward | None]
    ) -> None:
        """Render deployments; ``forwards`` maps deployment key to port forward."""
        rows = []
        for d in deployments:
            forward = forwards.get(d.key)
            rows.append(
                {
                    "App": d.descriptor_id,
                    "Target": str(d.target),
                    "Subdomain": d.subdomain,
                    "Version": d.observed_version,
                    "Status": d.status.value,
                    "URL": forward.url if forward else None,
                }
            )
        self.render_list(
            ["App", "Target", "Subdomain", "Version", "Status", "URL"],
            rows,
            empty="No deployments",
        )

    def render_upgrades(self, candidates: list[UpgradeCandidate]) -> None:
        rows = [
            {
                "App": c.key.descriptor_id,
                "Subdomain": c.key.subdomain,
                "Current": c.current_version,
                "Available": c.target_version,
            }
            for c in candidates
        ]
        self.render_list(
            ["App", "Subdomain", "Current", "Available"], rows, empty="Everything is up to date"
        )

    def render_vps(self, servers: list[VPS]) -> None:
        rows = [
            {
                "ID": s.id,
                "Provider": s.provider,
                "Type": s.server_type.name,
                "CPU": f"{s.server_type.cores:g}",
                "Memory": f"{s.server_type.memory_gb:g}GB",
                "Disk": f"{s.server_type.disk_gb:g}GB",
                "Status": s.status,
                "Monthly": f"{s.monthly_cost:.2f}" if s.monthly_cost is not None else None,
            }
            for s in servers
        ]
        self.render_list(
            ["ID", "Provider", "Type", "CPU", "Memory", "Disk", "Status", "Monthly"],
            rows,
            empty="No VPS targets configured",
        )
