"""Field selection and schema filtering.

A selection is a list of ``TemplateField`` entries for one resource. Selecting a
field selects its whole subtree, so a selection never holds both a field and
one of its descendants. ``FieldSelectionFilter`` derives the minimal schema that
contains the selected fields and the structure leading to them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from .schema_nodes import ArrayNode, ObjectNode, SchemaNode
from .tree_builder import ARRAY_SEGMENT, SchemaTreeNode, join_path

logger = logging.getLogger(__name__)


@dataclass
class TemplateField:
    """A field chosen for a template."""

    path: str
    title: str
    type: str
    required: bool = False
    description: str | None = None
    format: str | None = None
    template_type: str = "kubernetes"

    @classmethod
    def from_tree_node(cls, node: SchemaTreeNode) -> TemplateField:
        return cls(
            path=node.path,
            title=node.name,
            type=node.type,
            required=node.required,
            description=node.description,
            format=node.format,
        )

    @classmethod
    def from_path(cls, path: str) -> TemplateField:
        """Field for a bare path, typed ``unknown`` until matched to a tree."""
        title = path.rsplit(".", 1)[-1].removesuffix(ARRAY_SEGMENT)
        return cls(path=path, title=title, type="unknown")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateField:
        path = str(data.get("path", ""))
        return cls(
            path=path,
            title=data.get("title") or path.rsplit(".", 1)[-1].removesuffix(ARRAY_SEGMENT),
            type=data.get("type") or "unknown",
            required=bool(data.get("required", False)),
            description=data.get("description"),
            format=data.get("format"),
            template_type=data.get("templateType") or "kubernetes",
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "title": self.title,
            "type": self.type,
            "required": self.required,
            "templateType": self.template_type,
        }
        if self.description:
            data["description"] = self.description
        if self.format:
            data["format"] = self.format
        return data


def is_descendant(path: str, ancestor: str) -> bool:
    """True if ``path`` lies strictly below ``ancestor``."""
    return path.startswith(f"{ancestor}.") or path.startswith(f"{ancestor}{ARRAY_SEGMENT}")


def ancestor_paths(path: str) -> list[str]:
    """Tree paths of the ancestors of ``path``, outermost first.

    ``spec.containers[].image`` has the ancestors ``spec`` and
    ``spec.containers``.
    """
    ancestors = []
    current = ""
    for part in path.split(".")[:-1]:
        current = join_path(current, part)
        ancestors.append(current.removesuffix(ARRAY_SEGMENT))
    return ancestors


def schema_at_path(resolved: SchemaNode, path: str) -> SchemaNode | None:
    """Find the schema node a canonical path points at."""
    current: SchemaNode | None = resolved
    for part in path.split("."):
        in_array = part.endswith(ARRAY_SEGMENT)
        name = part.removesuffix(ARRAY_SEGMENT)
        if not isinstance(current, ObjectNode) or name not in current.properties:
            return None
        current = current.properties[name]
        if in_array:
            if not isinstance(current, ArrayNode):
                return None
            current = current.items
    return current


class FieldSelection:
    """Selected fields of a single resource."""

    def __init__(self, fields: Iterable[TemplateField] = ()):
        self._fields: dict[str, TemplateField] = {}
        for selected in fields:
            self.select(selected)

    @property
    def fields(self) -> list[TemplateField]:
        return list(self._fields.values())

    def paths(self) -> set[str]:
        return set(self._fields)

    def is_selected(self, path: str) -> bool:
        return path in self._fields

    def select(self, field: TemplateField) -> bool:
        """Add a field, replacing any selected descendants.

        Returns:
            False if an ancestor of the field is already selected, in which case
            the selection is unchanged
        """
        if any(is_descendant(field.path, path) for path in self._fields):
            logger.debug(f"Ignoring {field.path}: an ancestor is already selected")
            return False

        for path in [p for p in self._fields if is_descendant(p, field.path)]:
            del self._fields[path]
        self._fields[field.path] = field
        return True

    def deselect(self, path: str) -> list[TemplateField]:
        """Remove a field and everything selected below it.

        Returns:
            The removed fields
        """
        removed = [
            selected
            for selected in self._fields.values()
            if selected.path == path or is_descendant(selected.path, path)
        ]
        for selected in removed:
            del self._fields[selected.path]
        return removed

    def clear(self) -> None:
        self._fields.clear()

    def reveal_path(self, path: str) -> list[str]:
        """Paths that must be expanded for ``path`` to be visible in a tree."""
        return ancestor_paths(path)

    def __len__(self) -> int:
        return len(self._fields)

    def __iter__(self):
        return iter(self._fields.values())


class FieldSelectionFilter:
    """Derives the minimal schema containing a set of selected paths."""

    def filter(self, resolved_schema: SchemaNode, selected_paths: Iterable[str]) -> ObjectNode:
        """Filter a resolved schema down to the selected paths.

        Args:
            resolved_schema: Resolved schema of the resource
            selected_paths: Normalized canonical paths

        Returns:
            Object schema with the selected fields, their ancestors and the array
            structure leading to them; ``required`` lists only surviving fields
        """
        paths = set(selected_paths)
        if not isinstance(resolved_schema, ObjectNode):
            return ObjectNode(description=resolved_schema.description)
        return self._filter_object(resolved_schema, paths, "")

    def _filter_object(self, node: ObjectNode, paths: set[str], current_path: str) -> ObjectNode:
        properties: dict[str, SchemaNode] = {}
        for key, prop in node.properties.items():
            field_path = join_path(current_path, key)
            is_selected = field_path in paths
            has_selected_children = any(p.startswith(f"{field_path}.") for p in paths)
            has_selected_items = any(p.startswith(f"{field_path}{ARRAY_SEGMENT}") for p in paths)

            if is_selected:
                properties[key] = prop
            elif has_selected_children and isinstance(prop, ObjectNode):
                properties[key] = self._filter_object(prop, paths, field_path)
            elif (
                has_selected_items
                and isinstance(prop, ArrayNode)
                and isinstance(prop.items, ObjectNode)
            ):
                items = self._filter_object(prop.items, paths, f"{field_path}{ARRAY_SEGMENT}")
                properties[key] = replace(prop, items=items)
            elif has_selected_children or has_selected_items:
                # Path shape does not match the schema; keep the field whole.
                properties[key] = prop

        return replace(
            node,
            properties=properties,
            required=tuple(name for name in node.required if name in properties),
        )


def filter_schema(resolved_schema: SchemaNode, selected_paths: Iterable[str]) -> ObjectNode:
    return FieldSelectionFilter().filter(resolved_schema, selected_paths)


def build_template_schema(filtered: ObjectNode, resolved: SchemaNode) -> dict[str, Any]:
    """Wrap a filtered schema in the envelope every manifest needs.

    ``apiVersion`` and ``kind`` come from the resolved schema when it has them;
    ``metadata`` always offers ``name``, ``labels`` and ``annotations`` and is
    merged with any selected metadata fields.
    """
    source = resolved.properties if isinstance(resolved, ObjectNode) else {}

    def from_source(name: str) -> dict[str, Any]:
        return source[name].to_dict() if name in source else {"type": "string"}

    metadata: dict[str, Any] = {"type": "object"}
    if "metadata" in source and source["metadata"].description:
        metadata["description"] = source["metadata"].description
    metadata["properties"] = {
        "name": {"type": "string"},
        "labels": {"type": "object"},
        "annotations": {"type": "object"},
    }

    properties: dict[str, Any] = {
        "apiVersion": from_source("apiVersion"),
        "kind": from_source("kind"),
        "metadata": metadata,
    }
    for key, prop in filtered.to_dict().get("properties", {}).items():
        if key == "metadata":
            properties["metadata"] = {
                **metadata,
                **prop,
                "properties": {**metadata["properties"], **prop.get("properties", {})},
            }
        else:
            properties[key] = prop

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if filtered.description:
        schema["description"] = filtered.description
    return schema
