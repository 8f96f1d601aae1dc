"""Reference resolution for Kubernetes and CRD schemas.

This module replaces ``$ref`` nodes with the structure they point at, with
circular reference detection and a source-specific search order for the target
definition. Resolution never fails: references that cannot be followed degrade
to ``ReferenceStub`` placeholders so a partial schema can still be rendered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from .errors import ResourceNotFoundError
from .schema_index import SchemaDefinitionIndex
from .schema_nodes import (
    ArrayNode,
    ObjectNode,
    ReferenceStub,
    ScalarNode,
    SchemaNode,
    is_schema_node,
    with_reference_flag,
)

OBJECT_META_DEFINITION = "io.k8s.apimachinery.pkg.apis.meta.v1.ObjectMeta"
CRD_SCHEMA_ROOT: tuple[Any, ...] = ("spec", "versions", 0, "schema", "openAPIV3Schema")

# Used when a schema references ObjectMeta but does not ship its definition.
# This is a hand-maintained approximation of meta/v1 ObjectMeta.
FALLBACK_OBJECT_META: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Name must be unique within a namespace."},
        "namespace": {
            "type": "string",
            "description": "Namespace defines the space within which each name must be unique.",
        },
        "uid": {
            "type": "string",
            "description": "UID is the unique in time and space value for this object.",
        },
        "resourceVersion": {
            "type": "string",
            "description": "An opaque value that represents the internal version of this object.",
        },
        "generation": {
            "type": "integer",
            "description": "A sequence number representing a specific generation of the desired state.",
        },
        "creationTimestamp": {
            "type": "string",
            "format": "date-time",
            "description": "CreationTimestamp is a timestamp representing the server time when this object was created.",
        },
        "deletionTimestamp": {
            "type": "string",
            "format": "date-time",
            "description": "DeletionTimestamp is RFC 3339 date and time at which this resource will be deleted.",
        },
        "deletionGracePeriodSeconds": {
            "type": "integer",
            "description": "Number of seconds allowed for this object to gracefully terminate.",
        },
        "labels": {
            "type": "object",
            "additionalProperties": {"type": "string"},
            "description": "Map of string keys and values that can be used to organize and categorize objects.",
        },
        "annotations": {
            "type": "object",
            "additionalProperties": {"type": "string"},
            "description": "Annotations is an unstructured key value map stored with a resource.",
        },
        "ownerReferences": {
            "type": "array",
            "items": {"type": "object"},
            "description": "List of objects depended by this object.",
        },
        "finalizers": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Must be empty before the object is deleted from the registry.",
        },
        "managedFields": {
            "type": "array",
            "items": {"type": "object"},
            "description": "ManagedFields maps workflow-id and version to the set of fields that are managed by that workflow.",
        },
    },
}


@dataclass
class ResolutionStats:
    """Counters describing what a resolver has done so far."""

    references_resolved: int = 0
    circular_references: int = 0
    unresolved_references: int = 0
    object_meta_fallbacks: int = 0


def ref_segments(ref: str) -> list[str]:
    """Split a local JSON pointer reference into unescaped path segments."""
    pointer = ref.split("#", 1)[1] if "#" in ref else ref
    return [
        segment.replace("~1", "/").replace("~0", "~")
        for segment in pointer.split("/")
        if segment
    ]


def traverse(root: Any, segments: tuple[Any, ...] | list[Any]) -> Any:
    """Follow path segments through nested mappings and lists."""
    current = root
    for segment in segments:
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and str(segment).isdigit():
            position = int(segment)
            current = current[position] if position < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


class ReferenceResolver:
    """Resolves ``$ref`` nodes of one schema source into ``SchemaNode`` trees."""

    def __init__(self, index: SchemaDefinitionIndex):
        """Initialize the resolver.

        Args:
            index: Definition index of the schema source refs are resolved against
        """
        self.index = index
        self.stats = ResolutionStats()
        self.logger = logging.getLogger(__name__)

    def resolve(
        self, node: Any, visited: frozenset[str] = frozenset()
    ) -> SchemaNode:
        """Resolve a raw schema node.

        Args:
            node: Raw schema mapping, or an already resolved node
            visited: References already followed on the current branch

        Returns:
            Resolved node that contains no ``$ref``
        """
        if is_schema_node(node):
            return node

        if not isinstance(node, dict):
            return ScalarNode()

        ref = node.get("$ref")
        if isinstance(ref, str):
            return self._resolve_reference(node, ref, visited)

        return self._resolve_structure(node, visited)

    def resolve_definition(self, definition_name: str) -> SchemaNode:
        """Resolve a named definition of the index.

        Raises:
            ResourceNotFoundError: If the index has no such definition
        """
        raw = self.index.get(definition_name)
        if raw is None:
            raise ResourceNotFoundError(
                f"Definition {definition_name} not found in source {self.index.source_id}"
            )

        self.logger.debug(f"Resolving definition: {definition_name}")
        return self.resolve(raw, frozenset({f"#/definitions/{definition_name}"}))

    def _resolve_reference(
        self, node: dict[str, Any], ref: str, visited: frozenset[str]
    ) -> SchemaNode:
        if ref in visited:
            self.logger.debug(f"Circular reference detected: {ref}")
            self.stats.circular_references += 1
            return ReferenceStub.circular(ref)

        target = self._find_target(ref)
        if target is None:
            self.logger.warning(f"Could not resolve schema reference: {ref}")
            self.stats.unresolved_references += 1
            return ReferenceStub.unresolved(ref)

        self.stats.references_resolved += 1
        resolved = self.resolve(target, visited | {ref})
        if isinstance(resolved, ReferenceStub):
            return resolved

        # Field-level descriptions on the referencing node are more specific.
        if node.get("description"):
            resolved = replace(resolved, description=node["description"])
        return with_reference_flag(resolved)

    def _find_target(self, ref: str) -> dict[str, Any] | None:
        document = self.index.document
        segments = ref_segments(ref)
        name = segments[-1] if segments else ref

        # 1. Direct path against the whole document
        target = traverse(document, segments)
        if isinstance(target, dict):
            return target

        # Indexes built from a bare definitions map have no wrapping document
        target = self.index.get(name)
        if target is not None:
            return target

        # 2. Inside a CRD's openAPIV3Schema
        crd_root = traverse(document, CRD_SCHEMA_ROOT)
        if isinstance(crd_root, dict):
            target = traverse(crd_root, segments)
            if isinstance(target, dict):
                self.logger.debug(f"Found reference in CRD schema: {ref}")
                return target

        # 3. OpenAPI 3 components
        target = traverse(document, ("components", "schemas", name))
        if isinstance(target, dict):
            self.logger.debug(f"Found reference in components.schemas: {ref}")
            return target

        if "ObjectMeta" not in ref:
            return None

        # 4. Known ObjectMeta locations
        for location in (
            ("definitions", OBJECT_META_DEFINITION),
            (*CRD_SCHEMA_ROOT, "definitions", OBJECT_META_DEFINITION),
            ("components", "schemas", "ObjectMeta"),
            ("components", "schemas", OBJECT_META_DEFINITION),
        ):
            target = traverse(document, location)
            if isinstance(target, dict):
                self.logger.debug(f"Found ObjectMeta at {'/'.join(map(str, location))}")
                return target

        # 5. Synthesized ObjectMeta
        self.logger.info(f"Using fallback ObjectMeta structure for {ref}")
        self.stats.object_meta_fallbacks += 1
        return FALLBACK_OBJECT_META

    def _resolve_structure(
        self, node: dict[str, Any], visited: frozenset[str]
    ) -> SchemaNode:
        node_type = node.get("type")
        if isinstance(node_type, list):
            node_type = next((t for t in node_type if t != "null"), None)
        description = node.get("description")

        if node_type == "object" or (node_type is None and "properties" in node):
            properties = node.get("properties") or {}
            additional = node.get("additionalProperties")
            if isinstance(additional, dict):
                additional = self.resolve(additional, visited)
            elif not isinstance(additional, bool):
                additional = None
            required = node.get("required") or []
            return ObjectNode(
                # frozenset visited: every property gets its own branch
                properties={
                    key: self.resolve(prop, visited) for key, prop in properties.items()
                },
                required=tuple(name for name in required if isinstance(name, str)),
                additional_properties=additional,
                description=description,
            )

        if node_type == "array" or (node_type is None and "items" in node):
            items = node.get("items")
            return ArrayNode(
                items=self.resolve(items, visited) if isinstance(items, dict) else None,
                description=description,
            )

        enum = node.get("enum")
        return ScalarNode(
            type=node_type if isinstance(node_type, str) else "unknown",
            description=description,
            format=node.get("format"),
            enum=tuple(enum) if isinstance(enum, list) else None,
        )


def resolve(
    node: Any,
    index: SchemaDefinitionIndex,
    visited: frozenset[str] | set[str] | None = None,
) -> SchemaNode:
    """Resolve ``node`` against ``index``; see ``ReferenceResolver.resolve``."""
    return ReferenceResolver(index).resolve(node, frozenset(visited or ()))
