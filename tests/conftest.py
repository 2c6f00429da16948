"""Test configuration and global fixtures for xanthus tests."""

# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
import json
import threading
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from xanthus.core.catalog import SOURCE_HELM, SOURCE_STATIC, SOURCE_TAGS, CatalogStore
from xanthus.core.errors import VersionSourceUnreachable
from xanthus.core.helm import ReleaseStatus
from xanthus.core.ingress import HostnameBinder
from xanthus.core.reconciler import Reconciler
from xanthus.core.registry import ApplicationRegistry
from xanthus.core.templates import TemplateRenderer
from xanthus.core.versions import VersionResolver
from xanthus.providers.base import VersionCandidate
from xanthus.utils.proc import ProcessError

CODE_SERVER_DESCRIPTOR = """
id: code-server
name: Code Server
category: Development
version_source:
  type: source-control-tags
  source: coder/code-server
  pattern: "v*"
helm_chart:
  repository: local
  chart: xanthus-code-server
  version: 1.0.0
  namespace: code-server
  values_template: code-server.yaml
  placeholders:
    APPLICATION_VERSION: "{{.Version | trimv}}"
default_port: 8080
requirements:
  min_cpu: 0.5
  min_memory_gb: 1
  min_disk_gb: 10
"""

CODE_SERVER_TEMPLATE = """
image:
  repository: codercom/code-server
  tag: "{{APPLICATION_VERSION}}"
service:
  port: {{PORT}}
ingress:
  host: "{{HOST}}"
  tls:
    - secretName: "{{RELEASE_NAME}}-tls"
env:
  TZ: "{{TIMEZONE}}"
"""


def ts(day: int) -> datetime:
    """A UTC timestamp on the given day of January 2024."""
    return datetime(2024, 1, day, tzinfo=timezone.utc)


# pylint: disable=too-many-statements
@pytest.fixture(autouse=True)
def mock_subprocess_run():
    """Patch subprocess.run globally to prevent actual shell commands."""

    def mock_run_side_effect(*args, **_kwargs):
        result = MagicMock()
        result.returncode = 0
        result.stdout = ""
        result.stderr = ""

        if not args or not args[0]:
            return result
        cmd = args[0]
        if not isinstance(cmd, list) or not cmd:
            return result

        tool = str(cmd[0])
        if "helm" in tool:
            _handle_helm(cmd, result)
        return result

    def _handle_helm(cmd, result):
        if "status" in cmd and "-o" in cmd:
            release = cmd[2] if len(cmd) > 2 else "release"
            result.stdout = json.dumps(
                {
                    "name": release,
                    "namespace": "default",
                    "version": 1,
                    "info": {"status": "deployed"},
                    "chart": {"metadata": {"version": "1.0.0", "appVersion": "4.9.1"}},
                }
            )
            return
        if "upgrade" in cmd and "--install" in cmd:
            result.stdout = "Release has been upgraded. Happy Helming!"

    with patch("subprocess.run", side_effect=mock_run_side_effect) as mock_run:
        yield mock_run


@pytest.fixture(autouse=True)
def mock_shutil_which():
    """Patch shutil.which to simulate available tools."""

    def mock_which(cmd):
        available_tools = {"helm": "/usr/local/bin/helm"}
        return available_tools.get(cmd)

    with patch("shutil.which", side_effect=mock_which) as mock_which_func:
        yield mock_which_func


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Prevent accidental real sleeps during tests."""
    monkeypatch.setattr("time.sleep", lambda *_: None)


class FakeVersionProvider:
    """In-memory version source keyed by descriptor source locator."""

    provider_name = "fake"

    def __init__(self, versions=None, *, failures=0):
        self.versions = versions or {}
        self.failures = failures
        self.calls = 0
        self._lock = threading.Lock()

    def list_versions(self, spec, *, timeout=None):
        del timeout
        with self._lock:
            self.calls += 1
            if self.failures > 0:
                self.failures -= 1
                msg = f"{spec.source} unreachable"
                raise VersionSourceUnreachable(msg)
            return list(self.versions.get(spec.source, []))


class FakeApplier:
    """Cluster apply/uninstall primitive that records calls.

    ``delay`` holds each apply open (without time.sleep, which is patched) so
    tests can observe overlap between concurrent operations.
    """

    def __init__(self):
        self.applied = []
        self.uninstalled = []
        self.apply_error = None
        self.uninstall_error = None
        self.status_error = None
        self.releases = {}
        self.delay = 0.0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def apply(self, namespace, release_name, chart, values, *, chart_version=None, timeout=None):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            if self.apply_error is not None:
                raise self.apply_error
            self.applied.append(
                SimpleNamespace(
                    namespace=namespace,
                    release_name=release_name,
                    chart=chart,
                    values=values,
                    chart_version=chart_version,
                    timeout=timeout,
                )
            )
            self.releases[(namespace, release_name)] = ReleaseStatus(
                name=release_name,
                namespace=namespace,
                revision=len(self.applied),
                status="deployed",
            )
        finally:
            with self._lock:
                self.active -= 1

    def uninstall(self, namespace, release_name, *, timeout=None):
        del timeout
        if self.uninstall_error is not None:
            raise self.uninstall_error
        self.uninstalled.append((namespace, release_name))
        self.releases.pop((namespace, release_name), None)

    def status(self, namespace, release_name, *, timeout=None):
        del timeout
        if self.status_error is not None:
            raise self.status_error
        return self.releases.get((namespace, release_name))


def helm_failure(stderr="Error: UPGRADE FAILED: timed out waiting for the condition"):
    """A ProcessError shaped like a failed helm invocation."""
    msg = f"Command failed (exit=1)\nstderr:\n{stderr}"
    return ProcessError(msg, code=1, stdout="", stderr=stderr)


@pytest.fixture
def catalog_dirs(tmp_path):
    """Catalog and template directories holding the code-server entry."""
    apps = tmp_path / "applications"
    templates = tmp_path / "templates"
    apps.mkdir()
    templates.mkdir()
    (apps / "code-server.yaml").write_text(CODE_SERVER_DESCRIPTOR, encoding="utf-8")
    (templates / "code-server.yaml").write_text(CODE_SERVER_TEMPLATE, encoding="utf-8")
    return apps, templates


@pytest.fixture
def fake_provider():
    """Tag feed publishing code-server v4.9.0 and v4.9.1."""
    return FakeVersionProvider(
        {
            "coder/code-server": [
                VersionCandidate("v4.9.0", ts(1)),
                VersionCandidate("v4.9.1", ts(2)),
            ]
        }
    )


@pytest.fixture
def fake_applier():
    return FakeApplier()


@pytest.fixture
def orchestrator(tmp_path, catalog_dirs, fake_provider, fake_applier):
    """A reconciler wired to fakes, plus handles on each collaborator."""
    apps, templates = catalog_dirs
    catalog = CatalogStore([apps], templates)
    catalog.load()
    resolver = VersionResolver(
        {SOURCE_TAGS: fake_provider, SOURCE_HELM: fake_provider, SOURCE_STATIC: fake_provider},
        sleep=lambda _: None,
    )
    registry = ApplicationRegistry(tmp_path / "state" / "registry.yaml")
    binder = HostnameBinder(base_domain="example.com")
    reconciler = Reconciler(
        catalog,
        resolver,
        TemplateRenderer(templates),
        registry,
        fake_applier,
        binder,
        base_domain="example.com",
    )
    return SimpleNamespace(
        reconciler=reconciler,
        catalog=catalog,
        resolver=resolver,
        registry=registry,
        binder=binder,
        provider=fake_provider,
        applier=fake_applier,
        templates=templates,
        apps=apps,
    )
