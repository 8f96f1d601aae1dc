"""Normalization of recorded field paths to canonical tree paths.

Selections arrive with paths recorded by different producers: raw CRD schema
paths (``spec.versions[0].schema.openAPIV3Schema.properties.spec.project``),
JSON-Schema paths with ``properties.`` segments, or paths prefixed with the
resource kind, resource key or full definition name. Every variant is mapped to
the canonical dot/``[]`` path relative to the resource schema root.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .tree_builder import SchemaTreeNode, index_nodes

CRD_SCHEMA_PREFIX = "spec.versions[0].schema.openAPIV3Schema.properties."
PROPERTIES_PREFIX = "properties."

# io.k8s.api.rbac.v1.Role.metadata.name -> metadata.name
DEFINITION_PREFIX = re.compile(
    r"^(?:[a-z][\w-]*\.)+v\d+(?:(?:alpha|beta)\d+)?\.[A-Z]\w*\.(?=.)"
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceContext:
    """The resource a selection belongs to."""

    resource_key: str
    kind: str | None = None
    is_crd: bool = False


def _normalize_once(path: str, context: ResourceContext) -> str:
    if path.startswith(CRD_SCHEMA_PREFIX):
        path = path[len(CRD_SCHEMA_PREFIX):]

    if path.startswith(PROPERTIES_PREFIX):
        path = path[len(PROPERTIES_PREFIX):]

    if context.is_crd and context.kind and path.startswith(f"{context.kind}."):
        path = path[len(context.kind) + 1:]
    elif context.resource_key and path.startswith(f"{context.resource_key}."):
        path = path[len(context.resource_key) + 1:]

    return DEFINITION_PREFIX.sub("", path, count=1)


def normalize(raw_path: str, context: ResourceContext) -> str:
    """Map a recorded path to its canonical form.

    The rules are applied in passes until the path stops changing, so
    ``normalize(normalize(p)) == normalize(p)`` for every input.
    """
    path = raw_path
    while True:
        normalized = _normalize_once(path, context)
        if normalized == path:
            break
        path = normalized

    if path != raw_path:
        logger.debug(f"Normalized path {raw_path} -> {path}")
    return path


def field_path(selected: Any) -> str:
    """Path of a selected field given as a string, mapping or ``TemplateField``."""
    if isinstance(selected, str):
        return selected
    if isinstance(selected, dict):
        return str(selected.get("path", ""))
    return str(getattr(selected, "path", ""))


def normalize_paths(fields: Iterable[Any], context: ResourceContext) -> set[str]:
    """Normalize the paths of selected fields, dropping empty ones."""
    paths = {normalize(field_path(selected), context) for selected in fields}
    paths.discard("")
    return paths


def find_matching_paths(
    fields: Iterable[Any], tree: list[SchemaTreeNode], context: ResourceContext
) -> set[str]:
    """Normalized paths of ``fields`` that exist in the materialized tree."""
    nodes = index_nodes(tree)
    return {path for path in normalize_paths(fields, context) if path in nodes}
