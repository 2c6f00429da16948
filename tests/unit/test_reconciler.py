"""Tests for the deployment reconciler."""

import threading
from types import SimpleNamespace

import pytest

from xanthus.core.errors import (
    ApplyFailed,
    DuplicateDeployment,
    InsufficientResources,
    InvalidStateTransition,
    InvalidSubdomain,
    NoVersionsFound,
    UninstallFailed,
    UnknownTarget,
    VersionSourceUnreachable,
)
from xanthus.core.helm import HelmClient
from xanthus.core.reconciler import Reconciler, release_name_for
from xanthus.core.registry import Deployment, DeploymentKey, DeploymentStatus, Target
from xanthus.core.templates import TemplateRenderer
from xanthus.core.vps import VpsInventory
from xanthus.providers.base import VersionCandidate

from conftest import CODE_SERVER_TEMPLATE, helm_failure, ts

KEY = DeploymentKey("code-server", "vps-1", "code-server", "ide.example.com")
RELEASE = release_name_for("code-server", "ide.example.com")


def _install(orchestrator):
    return orchestrator.reconciler.install("code-server", "vps-1", "ide.example.com")


def test_install_code_server_end_to_end(orchestrator) -> None:
    deployment = _install(orchestrator)

    assert deployment.status is DeploymentStatus.RUNNING
    assert deployment.observed_version == "v4.9.1"
    assert deployment.desired_version == "v4.9.1"
    assert deployment.release_name == RELEASE
    assert deployment.key == KEY
    assert deployment.last_error is None

    [applied] = orchestrator.applier.applied
    assert applied.namespace == "code-server"
    assert applied.release_name == RELEASE
    assert applied.chart_version == "1.0.0"
    assert applied.values.data["image"]["tag"] == "4.9.1"
    assert applied.values.data["service"]["port"] == 8080
    assert applied.values.data["ingress"]["host"] == "ide.example.com"
    assert applied.values.data["ingress"]["tls"][0]["secretName"] == f"{RELEASE}-tls"

    forward = orchestrator.registry.get_port_forward(KEY)
    assert forward.url == "https://ide.example.com"
    assert orchestrator.binder.routes == {"ide.example.com": 8080}
    assert orchestrator.registry.require(KEY).applied_checksum == applied.values.checksum


def test_install_with_explicit_target_and_port(orchestrator) -> None:
    deployment = orchestrator.reconciler.install(
        "code-server", Target("vps-2", "dev"), "ide", port=9000
    )

    assert deployment.target == Target("vps-2", "dev")
    assert orchestrator.applier.applied[0].values.data["service"]["port"] == 9000
    assert orchestrator.binder.routes == {"ide.example.com": 9000}


def test_duplicate_install_is_rejected(orchestrator) -> None:
    _install(orchestrator)

    with pytest.raises(DuplicateDeployment):
        _install(orchestrator)
    assert len(orchestrator.registry) == 1
    assert len(orchestrator.applier.applied) == 1


def test_install_apply_failure_records_error_with_hint(orchestrator) -> None:
    orchestrator.applier.apply_error = helm_failure(
        "0/1 nodes are available: 1 Insufficient memory."
    )

    with pytest.raises(ApplyFailed):
        _install(orchestrator)

    record = orchestrator.registry.require(KEY)
    assert record.status is DeploymentStatus.ERROR
    assert record.observed_version is None
    assert "hint: cluster nodes lack CPU or memory" in record.last_error
    assert orchestrator.registry.get_port_forward(KEY) is None


def test_install_unreachable_source_records_error(orchestrator) -> None:
    orchestrator.provider.failures = 10

    with pytest.raises(VersionSourceUnreachable):
        _install(orchestrator)

    record = orchestrator.registry.require(KEY)
    assert record.status is DeploymentStatus.ERROR
    assert "unreachable" in record.last_error
    assert orchestrator.applier.applied == []


def test_install_checks_vps_inventory(orchestrator) -> None:
    inventory = VpsInventory.from_config(
        [
            {
                "id": "tiny",
                "provider": "hetzner",
                "server_type": {"cores": 1, "memory_gb": 0.5, "disk_gb": 20},
            }
        ]
    )
    reconciler = Reconciler(
        orchestrator.catalog,
        orchestrator.resolver,
        TemplateRenderer(orchestrator.templates),
        orchestrator.registry,
        orchestrator.applier,
        orchestrator.binder,
        inventory=inventory,
        base_domain="example.com",
    )

    with pytest.raises(InsufficientResources, match="memory 0.5GB < 1GB"):
        reconciler.install("code-server", "tiny", "ide")
    with pytest.raises(UnknownTarget):
        reconciler.install("code-server", "nowhere", "ide")
    assert len(orchestrator.registry) == 0


def test_check_upgrade(orchestrator) -> None:
    _install(orchestrator)
    assert orchestrator.reconciler.check_upgrade(KEY) is None

    orchestrator.provider.versions["coder/code-server"].append(VersionCandidate("v4.10.0", ts(3)))
    candidate = orchestrator.reconciler.check_upgrade(KEY, refresh=True)

    assert candidate.current_version == "v4.9.1"
    assert candidate.target_version == "v4.10.0"
    assert orchestrator.registry.require(KEY).observed_version == "v4.9.1"


def test_upgrade_to_specific_version(orchestrator) -> None:
    _install(orchestrator)

    deployment = orchestrator.reconciler.upgrade(KEY, "v4.9.0")

    assert deployment.status is DeploymentStatus.RUNNING
    assert deployment.observed_version == "v4.9.0"
    assert orchestrator.applier.applied[-1].values.data["image"]["tag"] == "4.9.0"
    assert orchestrator.registry.get_port_forward(KEY).url == "https://ide.example.com"


def test_upgrade_failure_keeps_observed_version(orchestrator) -> None:
    _install(orchestrator)
    forward_id = orchestrator.registry.get_port_forward(KEY).id
    orchestrator.applier.apply_error = helm_failure()

    with pytest.raises(ApplyFailed):
        orchestrator.reconciler.upgrade(KEY, "v4.9.0")

    record = orchestrator.registry.require(KEY)
    assert record.status is DeploymentStatus.ERROR
    assert record.observed_version == "v4.9.1"
    assert record.desired_version == "v4.9.0"
    assert "timed out" in record.last_error

    orchestrator.applier.apply_error = None
    recovered = orchestrator.reconciler.reconcile(KEY)
    assert recovered.status is DeploymentStatus.RUNNING
    assert recovered.observed_version == "v4.9.0"
    assert recovered.last_error is None
    assert orchestrator.registry.get_port_forward(KEY).id == forward_id


def test_upgrade_to_unpublished_version_leaves_deployment_running(orchestrator) -> None:
    _install(orchestrator)

    with pytest.raises(NoVersionsFound):
        orchestrator.reconciler.upgrade(KEY, "v9.9.9")

    record = orchestrator.registry.require(KEY)
    assert record.status is DeploymentStatus.RUNNING
    assert record.observed_version == "v4.9.1"


def test_upgrade_rejected_while_deploying(orchestrator) -> None:
    orchestrator.registry.create(
        Deployment(
            descriptor_id="code-server",
            target=KEY.target,
            subdomain=KEY.subdomain,
            port=8080,
            release_name=RELEASE,
            status=DeploymentStatus.DEPLOYING,
        )
    )

    with pytest.raises(InvalidStateTransition):
        orchestrator.reconciler.upgrade(KEY)
    assert orchestrator.applier.applied == []


def test_concurrent_upgrades_are_serialized(orchestrator) -> None:
    _install(orchestrator)
    orchestrator.applier.delay = 0.05
    errors = []

    def worker(version):
        try:
            orchestrator.reconciler.upgrade(KEY, version)
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(v,)) for v in ("v4.9.0", "v4.9.1", "v4.9.0")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert orchestrator.applier.max_active == 1
    assert len(orchestrator.applier.applied) == 4
    assert orchestrator.registry.require(KEY).status is DeploymentStatus.RUNNING


def test_different_deployments_apply_in_parallel(orchestrator) -> None:
    orchestrator.applier.delay = 0.3
    threads = [
        threading.Thread(
            target=orchestrator.reconciler.install, args=("code-server", "vps-1", sub)
        )
        for sub in ("one", "two")
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(orchestrator.registry) == 2
    assert orchestrator.applier.max_active == 2


def test_reconcile_resumes_interrupted_install(orchestrator) -> None:
    orchestrator.registry.create(
        Deployment(
            descriptor_id="code-server",
            target=KEY.target,
            subdomain=KEY.subdomain,
            port=8080,
            release_name=RELEASE,
            desired_version="v4.9.0",
            status=DeploymentStatus.DEPLOYING,
        )
    )

    deployment = orchestrator.reconciler.reconcile(KEY)

    assert deployment.status is DeploymentStatus.RUNNING
    assert deployment.observed_version == "v4.9.0"
    assert orchestrator.registry.get_port_forward(KEY) is not None


def test_reconcile_running_is_noop_when_in_sync(orchestrator) -> None:
    _install(orchestrator)

    deployment = orchestrator.reconciler.reconcile(KEY)

    assert deployment.status is DeploymentStatus.RUNNING
    assert len(orchestrator.applier.applied) == 1


def test_reconcile_reapplies_on_values_drift(orchestrator) -> None:
    first = _install(orchestrator)
    (orchestrator.templates / "code-server.yaml").write_text(
        CODE_SERVER_TEMPLATE + "resources:\n  limits:\n    memory: 2Gi\n", encoding="utf-8"
    )

    deployment = orchestrator.reconciler.reconcile(KEY)

    assert len(orchestrator.applier.applied) == 2
    assert orchestrator.applier.applied[-1].values.data["resources"]["limits"]["memory"] == "2Gi"
    assert deployment.applied_checksum != first.applied_checksum
    assert deployment.observed_version == "v4.9.1"


def test_reconcile_reapplies_missing_release(orchestrator) -> None:
    _install(orchestrator)
    orchestrator.applier.releases.clear()

    orchestrator.reconciler.reconcile(KEY)

    assert len(orchestrator.applier.applied) == 2


def test_remove(orchestrator) -> None:
    _install(orchestrator)

    assert orchestrator.reconciler.remove(KEY) is True

    assert orchestrator.applier.uninstalled == [("code-server", RELEASE)]
    assert orchestrator.registry.get(KEY) is None
    assert orchestrator.registry.get_port_forward(KEY) is None
    assert orchestrator.binder.routes == {}


def test_remove_absent_deployment(orchestrator) -> None:
    assert orchestrator.reconciler.remove(KEY) is False
    assert orchestrator.applier.uninstalled == []


def test_remove_failure_keeps_record(orchestrator) -> None:
    _install(orchestrator)
    orchestrator.applier.uninstall_error = helm_failure("Error: uninstall: timed out waiting")

    with pytest.raises(UninstallFailed):
        orchestrator.reconciler.remove(KEY)

    record = orchestrator.registry.require(KEY)
    assert record.status is DeploymentStatus.ERROR
    assert orchestrator.registry.get_port_forward(KEY) is not None


def test_release_name_for() -> None:
    assert RELEASE.startswith("ide-code-server-")
    assert release_name_for("code-server", "IDE", "example.com") == RELEASE
    assert release_name_for("code-server", "ide.other.org") != RELEASE
    long_name = release_name_for("code-server", "x" * 60)
    assert len(long_name) == 53
    assert long_name.startswith("x" * 46 + "-")


def test_same_label_on_different_domains_gets_separate_releases(orchestrator) -> None:
    first = _install(orchestrator)
    second = orchestrator.reconciler.install("code-server", "vps-1", "ide.other.org")

    assert first.release_name != second.release_name
    assert orchestrator.reconciler.remove(second.key) is True
    assert orchestrator.applier.status("code-server", first.release_name).deployed
    assert orchestrator.registry.require(KEY).status is DeploymentStatus.RUNNING


def test_install_rejects_release_owned_by_another_deployment(orchestrator) -> None:
    """A bare label and its full host name map to the same helm release."""
    _install(orchestrator)

    with pytest.raises(DuplicateDeployment, match="already owned"):
        orchestrator.reconciler.install("code-server", "vps-1", "ide")
    assert len(orchestrator.registry) == 1
    assert len(orchestrator.applier.applied) == 1


def test_install_rejects_invalid_subdomain(orchestrator) -> None:
    with pytest.raises(InvalidSubdomain):
        orchestrator.reconciler.install("code-server", "vps-1", 'ide"\n  evil: "x')
    assert len(orchestrator.registry) == 0
    assert orchestrator.applier.applied == []


def test_reconcile_records_release_status_failure(orchestrator) -> None:
    _install(orchestrator)
    orchestrator.applier.status_error = helm_failure("Error: Kubernetes cluster unreachable")

    with pytest.raises(ApplyFailed, match="cannot read release status"):
        orchestrator.reconciler.reconcile(KEY)

    record = orchestrator.registry.require(KEY)
    assert record.status is DeploymentStatus.ERROR
    assert "cluster unreachable" in record.last_error
    assert record.observed_version == "v4.9.1"


def test_remove_with_unreachable_cluster_keeps_record(orchestrator, mock_subprocess_run) -> None:
    _install(orchestrator)
    stderr = 'Error: Kubernetes cluster unreachable: context "prod" not found'
    mock_subprocess_run.side_effect = lambda *a, **k: SimpleNamespace(
        returncode=1, stdout="", stderr=stderr
    )
    orchestrator.reconciler.applier = HelmClient(kube_context="prod")

    with pytest.raises(UninstallFailed, match="unreachable"):
        orchestrator.reconciler.remove(KEY)

    assert orchestrator.registry.require(KEY).status is DeploymentStatus.ERROR
    assert orchestrator.binder.routes == {"ide.example.com": 8080}
