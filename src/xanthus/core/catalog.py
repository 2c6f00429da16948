# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Application catalog schema, loader and swappable in-memory snapshot."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import yaml

from xanthus.core.errors import CatalogValidationError, DescriptorNotFound
from xanthus.core.templates import (
    compile_expression,
    effective_placeholders,
    missing_placeholders,
    resolve_template_path,
)
from xanthus.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

SOURCE_TAGS = "source-control-tags"
SOURCE_HELM = "helm-repository"
SOURCE_STATIC = "static"

_SOURCE_KIND_ALIASES = {
    "github": SOURCE_TAGS,
    "git-tags": SOURCE_TAGS,
    SOURCE_TAGS: SOURCE_TAGS,
    "helm": SOURCE_HELM,
    SOURCE_HELM: SOURCE_HELM,
    SOURCE_STATIC: SOURCE_STATIC,
}

CHART_POLICIES = ("stable", "latest")
MAX_PORT = 65535


@dataclass(frozen=True)
class VersionSourceSpec:
    """Where versions for an application are discovered."""

    kind: str
    source: str
    pattern: str = "*"
    chart: str | None = None
    include_prereleases: bool = False


@dataclass(frozen=True)
class ChartReference:
    """Helm chart coordinates and values template for an application."""

    repository: str
    chart: str
    version: str
    namespace: str
    values_template: str
    placeholders: Mapping[str, str] = field(default_factory=dict, hash=False)

    @property
    def is_pinned(self) -> bool:
        """True when the chart version is an explicit version, not a policy."""
        return self.version not in CHART_POLICIES


@dataclass(frozen=True)
class Requirements:
    """Minimum resources a target must provide."""

    min_cpu: float = 0.0
    min_memory_gb: float = 0.0
    min_disk_gb: float = 0.0


@dataclass(frozen=True)
class ApplicationDescriptor:  # pylint: disable=too-many-instance-attributes
    """Catalog entry describing an installable application."""

    id: str
    name: str
    category: str
    version_source: VersionSourceSpec
    helm_chart: ChartReference
    default_port: int
    requirements: Requirements = field(default_factory=Requirements)
    description: str = ""
    icon: str = ""
    features: tuple[str, ...] = ()
    documentation: str = ""
    persistence: bool = False
    metadata: Mapping[str, str] = field(default_factory=dict, hash=False)


@dataclass
class CatalogLoadResult:
    """Valid descriptors by id plus the validation errors that excluded others."""

    descriptors: dict[str, ApplicationDescriptor] = field(default_factory=dict)
    errors: list[CatalogValidationError] = field(default_factory=list)


def load_descriptors(
    sources: Iterable[str | Path], templates_dir: str | Path
) -> CatalogLoadResult:
    """Load descriptors from YAML files or directories of YAML files.

    A descriptor that fails validation is excluded and reported in
    ``errors``; the remaining descriptors still load. Only the first
    descriptor claiming an id is kept.
    """
    result = CatalogLoadResult()
    templates = Path(templates_dir)
    for path in _iter_yaml_files(sources):
        try:
            raws = _read_raw_descriptors(path)
        except CatalogValidationError as e:
            result.errors.append(e)
            continue
        for raw in raws:
            try:
                descriptor = parse_descriptor(raw, source=str(path))
                _validate_template(descriptor, templates, source=str(path))
            except CatalogValidationError as e:
                result.errors.append(e)
                continue
            if descriptor.id in result.descriptors:
                msg = f"duplicate application id: {descriptor.id}"
                result.errors.append(
                    CatalogValidationError(msg, descriptor_id=descriptor.id, source=str(path))
                )
                continue
            result.descriptors[descriptor.id] = descriptor
    for err in result.errors:
        logger.warning("⚠️  Skipping catalog entry from %s: %s", err.source or "?", err)
    return result


def _iter_yaml_files(sources: Iterable[str | Path]) -> list[Path]:
    files: list[Path] = []
    for src in sources:
        path = Path(src)
        if path.is_dir():
            files.extend(
                sorted(p for p in path.iterdir() if p.suffix in (".yaml", ".yml"))
            )
        elif path.exists():
            files.append(path)
        else:
            logger.warning("Catalog source not found: %s", path)
    return files


def _read_raw_descriptors(path: Path) -> list[Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        msg = f"cannot read catalog file: {e}"
        raise CatalogValidationError(msg, source=str(path)) from e
    if not isinstance(data, dict):
        msg = "top-level YAML must be a mapping"
        raise CatalogValidationError(msg, source=str(path))
    if "applications" in data:
        apps = data["applications"] or []
        if not isinstance(apps, list):
            msg = "'applications' must be a list"
            raise CatalogValidationError(msg, source=str(path))
        return apps
    return [data]


def parse_descriptor(raw: Any, *, source: str = "") -> ApplicationDescriptor:
    """Build an ApplicationDescriptor from its YAML mapping.

    Raises:
        CatalogValidationError: If any field is missing or malformed.
    """
    if not isinstance(raw, dict):
        msg = "descriptor must be a mapping"
        raise CatalogValidationError(msg, source=source)
    app_id = _require_str(raw, "id", None, source)
    return ApplicationDescriptor(
        id=app_id,
        name=str(raw.get("name") or app_id),
        category=str(raw.get("category") or "Other"),
        description=str(raw.get("description") or ""),
        icon=str(raw.get("icon") or ""),
        version_source=_parse_version_source(raw.get("version_source"), app_id, source),
        helm_chart=_parse_chart(raw.get("helm_chart"), app_id, source),
        default_port=_parse_port(raw.get("default_port"), app_id, source),
        requirements=_parse_requirements(raw.get("requirements"), app_id, source),
        features=tuple(str(f) for f in raw.get("features") or ()),
        documentation=str(raw.get("documentation") or ""),
        persistence=bool(raw.get("persistence", False)),
        metadata=_parse_metadata(raw.get("metadata"), app_id, source),
    )


def _parse_version_source(raw: Any, app_id: str, source: str) -> VersionSourceSpec:
    if not isinstance(raw, dict):
        msg = f"{app_id}: version_source must be a mapping"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    kind_raw = _require_str(raw, "type", app_id, source, prefix="version_source.")
    kind = _SOURCE_KIND_ALIASES.get(kind_raw)
    if kind is None:
        msg = f"{app_id}: unsupported version_source.type '{kind_raw}'"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    src = _require_str(raw, "source", app_id, source, prefix="version_source.")
    chart = raw.get("chart")
    if kind == SOURCE_HELM and not chart:
        msg = f"{app_id}: version_source.chart is required for helm repositories"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    return VersionSourceSpec(
        kind=kind,
        source=src,
        pattern=str(raw.get("pattern") or "*"),
        chart=str(chart) if chart else None,
        include_prereleases=bool(raw.get("include_prereleases", False)),
    )


def _parse_chart(raw: Any, app_id: str, source: str) -> ChartReference:
    if not isinstance(raw, dict):
        msg = f"{app_id}: helm_chart must be a mapping"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    placeholders = raw.get("placeholders") or {}
    if not isinstance(placeholders, dict):
        msg = f"{app_id}: helm_chart.placeholders must be a mapping"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    return ChartReference(
        repository=_require_str(raw, "repository", app_id, source, prefix="helm_chart."),
        chart=_require_str(raw, "chart", app_id, source, prefix="helm_chart."),
        version=str(raw.get("version") or "stable"),
        namespace=_require_str(raw, "namespace", app_id, source, prefix="helm_chart."),
        values_template=_require_str(
            raw, "values_template", app_id, source, prefix="helm_chart."
        ),
        placeholders=MappingProxyType({str(k): str(v) for k, v in placeholders.items()}),
    )


def _parse_metadata(raw: Any, app_id: str, source: str) -> MappingProxyType[str, str]:
    if raw is None:
        return MappingProxyType({})
    if not isinstance(raw, dict):
        msg = f"{app_id}: metadata must be a mapping"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    return MappingProxyType({str(k): str(v) for k, v in raw.items()})


def _parse_port(raw: Any, app_id: str, source: str) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError):
        port = -1
    if not 0 < port <= MAX_PORT:
        msg = f"{app_id}: default_port must be an integer between 1 and {MAX_PORT}"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    return port


def _parse_requirements(raw: Any, app_id: str, source: str) -> Requirements:
    if raw is None:
        return Requirements()
    if not isinstance(raw, dict):
        msg = f"{app_id}: requirements must be a mapping"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    values: dict[str, float] = {}
    for key in ("min_cpu", "min_memory_gb", "min_disk_gb"):
        value = raw.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
            msg = f"{app_id}: requirements.{key} must be a non-negative number"
            raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
        values[key] = float(value)
    return Requirements(**values)


def _validate_template(
    descriptor: ApplicationDescriptor, templates_dir: Path, *, source: str
) -> None:
    """Check every template placeholder has a mapping with a valid expression."""
    chart = descriptor.helm_chart
    mapping = effective_placeholders(chart.placeholders)
    for name, expr in chart.placeholders.items():
        try:
            compile_expression(expr)
        except ValueError as e:
            msg = f"{descriptor.id}: placeholder {name}: {e}"
            raise CatalogValidationError(msg, descriptor_id=descriptor.id, source=source) from e
    try:
        text = resolve_template_path(templates_dir, chart.values_template).read_text(
            encoding="utf-8"
        )
    except (OSError, ValueError) as e:
        msg = f"{descriptor.id}: values template '{chart.values_template}' unavailable: {e}"
        raise CatalogValidationError(msg, descriptor_id=descriptor.id, source=source) from e
    missing = missing_placeholders(text, mapping)
    if missing:
        msg = f"{descriptor.id}: placeholder {missing[0]} used in template has no mapping"
        raise CatalogValidationError(msg, descriptor_id=descriptor.id, source=source)


def _require_str(
    raw: dict[str, Any], key: str, app_id: str | None, source: str, *, prefix: str = ""
) -> str:
    if key not in raw or raw[key] is None or str(raw[key]).strip() == "":
        label = f"{app_id}: " if app_id else ""
        msg = f"{label}{prefix}{key} is required"
        raise CatalogValidationError(msg, descriptor_id=app_id, source=source)
    return str(raw[key])


class CatalogStore:
    """Owns the active set of descriptors as an immutable, swappable snapshot.

    ``refresh()`` loads into a fresh mapping and replaces the reference in one
    step, so readers see either the old or the new catalog, never a mix.
    """

    def __init__(self, sources: Iterable[str | Path], templates_dir: str | Path) -> None:
        self.sources = [Path(s) for s in sources]
        self.templates_dir = Path(templates_dir)
        self._snapshot: MappingProxyType[str, ApplicationDescriptor] = MappingProxyType({})
        self._errors: list[CatalogValidationError] = []
        self._swap_lock = threading.Lock()

    def load(self) -> set[ApplicationDescriptor]:
        """Load (or reload) the catalog and return the active descriptors."""
        result = load_descriptors(self.sources, self.templates_dir)
        with self._swap_lock:
            self._snapshot = MappingProxyType(dict(result.descriptors))
            self._errors = list(result.errors)
        logger.info(
            "📚 Catalog loaded: %d application(s), %d rejected",
            len(result.descriptors),
            len(result.errors),
        )
        return set(result.descriptors.values())

    def refresh(self) -> set[ApplicationDescriptor]:
        """Reload from sources and atomically swap the active snapshot."""
        return self.load()

    @property
    def snapshot(self) -> MappingProxyType[str, ApplicationDescriptor]:
        return self._snapshot

    @property
    def errors(self) -> list[CatalogValidationError]:
        """Validation errors from the most recent load."""
        return list(self._errors)

    def get(self, descriptor_id: str) -> ApplicationDescriptor:
        """Return a descriptor by id.

        Raises:
            DescriptorNotFound: If the id is not in the active catalog.
        """
        try:
            return self._snapshot[descriptor_id]
        except KeyError as err:
            msg = f"Application not found in catalog: {descriptor_id}"
            raise DescriptorNotFound(msg) from err

    def descriptors(self) -> list[ApplicationDescriptor]:
        """Active descriptors sorted by category then name."""
        return sorted(self._snapshot.values(), key=lambda d: (d.category, d.name))
