# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>
#
# SPDX-License-Identifier: MIT
"""Helm values template rendering with a closed placeholder evaluator.

A values template references placeholders as ``{{NAME}}``. Each placeholder
maps to an expression made of literal text and field references such as
``{{.Version}}`` or ``{{.Version | trimv}}``. Only the fields and filters
listed here are understood; anything else is rejected when the catalog loads,
so a descriptor cannot inject computed state through its values template.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import yaml

from xanthus.core.errors import PlaceholderSubstitutionError
from xanthus.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from xanthus.core.catalog import ApplicationDescriptor
    from xanthus.core.versions import ResolvedVersion

TOKEN_RE = re.compile(r"\{\{\s*([A-Z][A-Z0-9_]*)\s*\}\}")
FIELD_REF_RE = re.compile(r"\{\{\s*\.([A-Za-z]+)((?:\s*\|\s*[a-z]+)*)\s*\}\}")

FIELDS = (
    "Version",
    "AppVersion",
    "Subdomain",
    "Domain",
    "Host",
    "ReleaseName",
    "Namespace",
    "Timezone",
    "Port",
)


def _trimv(value: str) -> str:
    return value[1:] if value[:1] in ("v", "V") else value


FILTERS: dict[str, Callable[[str], str]] = {
    "trimv": _trimv,
    "lower": str.lower,
    "upper": str.upper,
    "quote": json.dumps,
}

BUILTIN_PLACEHOLDERS: dict[str, str] = {
    "VERSION": "{{.Version}}",
    "APP_VERSION": "{{.AppVersion}}",
    "SUBDOMAIN": "{{.Subdomain}}",
    "DOMAIN": "{{.Domain}}",
    "HOST": "{{.Host}}",
    "RELEASE_NAME": "{{.ReleaseName}}",
    "NAMESPACE": "{{.Namespace}}",
    "TIMEZONE": "{{.Timezone}}",
    "PORT": "{{.Port}}",
}


@dataclass(frozen=True)
class FieldRef:
    """Reference to a context field with an optional filter chain."""

    name: str
    filters: tuple[str, ...] = ()


@dataclass(frozen=True)
class Expression:
    """Compiled placeholder expression: literal text and field references."""

    source: str
    parts: tuple[str | FieldRef, ...]

    @property
    def fields(self) -> set[str]:
        """Names of the context fields this expression reads."""
        return {p.name for p in self.parts if isinstance(p, FieldRef)}

    def evaluate(self, values: Mapping[str, str | None], *, placeholder: str = "") -> str:
        """Evaluate against context values; a missing value is an error."""
        out: list[str] = []
        for part in self.parts:
            if isinstance(part, str):
                out.append(part)
                continue
            value = values.get(part.name)
            if value is None or value == "":
                label = f"{placeholder}: " if placeholder else ""
                msg = f"{label}field '.{part.name}' has no value"
                raise PlaceholderSubstitutionError(msg)
            for name in part.filters:
                value = FILTERS[name](value)
            out.append(value)
        return "".join(out)


def compile_expression(source: str) -> Expression:
    """Compile a placeholder expression, rejecting unknown fields and filters.

    Raises:
        ValueError: If the expression is malformed or references anything
            outside the known field and filter sets.
    """
    parts: list[str | FieldRef] = []
    pos = 0
    for match in FIELD_REF_RE.finditer(source):
        literal = source[pos : match.start()]
        _reject_stray_braces(literal, source)
        if literal:
            parts.append(literal)
        name = match.group(1)
        if name not in FIELDS:
            msg = f"unknown field '.{name}' in expression {source!r}"
            raise ValueError(msg)
        filters = tuple(f.strip() for f in match.group(2).split("|") if f.strip())
        for f in filters:
            if f not in FILTERS:
                msg = f"unknown filter '{f}' in expression {source!r}"
                raise ValueError(msg)
        parts.append(FieldRef(name=name, filters=filters))
        pos = match.end()
    tail = source[pos:]
    _reject_stray_braces(tail, source)
    if tail:
        parts.append(tail)
    return Expression(source=source, parts=tuple(parts))


def _reject_stray_braces(literal: str, source: str) -> None:
    if "{{" in literal or "}}" in literal:
        msg = f"malformed expression {source!r}"
        raise ValueError(msg)


def effective_placeholders(declared: Mapping[str, str]) -> dict[str, str]:
    """Built-in placeholders overlaid with the descriptor's declared ones."""
    merged = dict(BUILTIN_PLACEHOLDERS)
    merged.update(declared)
    return merged


def template_tokens(text: str) -> set[str]:
    """Return the placeholder names referenced in a values template."""
    return set(TOKEN_RE.findall(text))


def missing_placeholders(text: str, mapping: Mapping[str, str]) -> list[str]:
    """Placeholders used by the template that have no mapping, sorted."""
    return sorted(template_tokens(text) - set(mapping))


def resolve_template_path(templates_dir: Path, name: str) -> Path:
    """Resolve a values template identifier inside the templates directory.

    Raises:
        ValueError: If the identifier is absolute or escapes the directory.
    """
    rel = PurePosixPath(name)
    if rel.is_absolute() or ".." in rel.parts or not name.strip():
        msg = f"values template must be a relative name: {name!r}"
        raise ValueError(msg)
    return templates_dir / Path(*rel.parts)


@dataclass
class RenderContext:
    """Per-deployment values available to placeholder expressions."""

    subdomain: str
    domain: str
    release_name: str
    namespace: str
    port: int
    timezone: str = "UTC"

    @property
    def host(self) -> str:
        return f"{self.subdomain}.{self.domain}" if self.domain else self.subdomain

    def fields(self, resolved: ResolvedVersion) -> dict[str, str | None]:
        """Field values keyed by expression field name."""
        return {
            "Version": resolved.version or None,
            "AppVersion": resolved.app_version or resolved.version or None,
            "Subdomain": self.subdomain,
            "Domain": self.domain,
            "Host": self.host,
            "ReleaseName": self.release_name,
            "Namespace": self.namespace,
            "Timezone": self.timezone or "UTC",
            "Port": str(self.port),
        }


@dataclass(frozen=True)
class ValuesDocument:
    """Fully substituted values handed to the cluster apply primitive."""

    text: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def checksum(self) -> str:
        """Content hash of the parsed values, stable across comment changes."""
        canonical = json.dumps(self.data, sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class TemplateRenderer:
    """Render a descriptor's values template for a resolved version."""

    def __init__(self, templates_dir: str | Path) -> None:
        self.templates_dir = Path(templates_dir)

    def read_template(self, name: str) -> str:
        """Return the raw template text for a values template identifier."""
        path = resolve_template_path(self.templates_dir, name)
        return path.read_text(encoding="utf-8")

    def render(
        self,
        descriptor: ApplicationDescriptor,
        resolved: ResolvedVersion,
        context: RenderContext,
    ) -> ValuesDocument:
        """Substitute placeholders and return a parsed values document.

        Raises:
            PlaceholderSubstitutionError: If a referenced placeholder cannot be
                evaluated or the result is not a YAML mapping.
        """
        try:
            text = self.read_template(descriptor.helm_chart.values_template)
        except (OSError, ValueError) as e:
            msg = f"{descriptor.id}: cannot read values template: {e}"
            raise PlaceholderSubstitutionError(msg) from e

        mapping = effective_placeholders(descriptor.helm_chart.placeholders)
        values = context.fields(resolved)
        evaluated: dict[str, str] = {}
        for name in sorted(template_tokens(text)):
            source = mapping.get(name)
            if source is None:
                msg = f"{descriptor.id}: placeholder {name} has no mapping"
                raise PlaceholderSubstitutionError(msg)
            try:
                expr = compile_expression(source)
            except ValueError as e:
                raise PlaceholderSubstitutionError(f"{descriptor.id}: {e}") from e
            evaluated[name] = expr.evaluate(values, placeholder=name)

        rendered = TOKEN_RE.sub(lambda m: evaluated[m.group(1)], text)
        data = _parse_values(rendered, descriptor.id)
        logger.debug("Rendered values for %s (%d placeholders)", descriptor.id, len(evaluated))
        return ValuesDocument(text=rendered, data=data)


def _parse_values(text: str, descriptor_id: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        msg = f"{descriptor_id}: rendered values are not valid YAML: {e}"
        raise PlaceholderSubstitutionError(msg) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{descriptor_id}: rendered values must be a mapping"
        raise PlaceholderSubstitutionError(msg)
    return data
