"""Tree construction from resolved schemas.

Trees are built lazily: only the immediate properties of a node become tree
nodes, and grandchildren are materialized for expanded paths only. Arrays of
objects are traversed through a synthetic ``[]`` path segment, so the image of
every container is addressed as ``spec.containers[].image``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .schema_nodes import ArrayNode, ObjectNode, SchemaNode, has_properties

ARRAY_SEGMENT = "[]"


@dataclass
class SchemaTreeNode:
    """A field of a resource schema as shown in a selection tree."""

    name: str
    path: str
    type: str
    required: bool = False
    has_children: bool = False
    is_reference: bool = False
    description: str | None = None
    format: str | None = None
    enum: list[Any] | None = None
    children: list[SchemaTreeNode] = field(default_factory=list)
    schema: SchemaNode | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "path": self.path,
            "type": self.type,
            "required": self.required,
            "hasChildren": self.has_children,
            "isReference": self.is_reference,
        }
        if self.description:
            data["description"] = self.description
        if self.format:
            data["format"] = self.format
        if self.enum is not None:
            data["enum"] = list(self.enum)
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data


def join_path(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def container_of(node: SchemaNode | None, path: str) -> tuple[ObjectNode | None, str]:
    """Return the object whose properties are a node's children, and their prefix."""
    if has_properties(node):
        return node, path
    if isinstance(node, ArrayNode) and has_properties(node.items):
        return node.items, f"{path}{ARRAY_SEGMENT}"
    return None, path


class TreeBuilder:
    """Builds ``SchemaTreeNode`` lists from resolved schema nodes."""

    def __init__(self, max_depth: int = 64):
        self.max_depth = max_depth
        self.logger = logging.getLogger(__name__)

    def build_children(
        self,
        resolved_node: SchemaNode,
        path_prefix: str = "",
        depth: int = 0,
        expanded_paths: Iterable[str] | None = None,
    ) -> list[SchemaTreeNode]:
        """Build the tree nodes for the immediate children of ``resolved_node``.

        Args:
            resolved_node: Object (or array of objects) to list
            path_prefix: Canonical path of ``resolved_node``; empty at the root
            depth: Current depth, used to stop pathological nesting
            expanded_paths: Paths whose children are built as well

        Returns:
            Tree nodes in property order
        """
        expanded = expanded_paths if isinstance(expanded_paths, (set, frozenset)) else set(
            expanded_paths or ()
        )
        container, prefix = container_of(resolved_node, path_prefix)
        if container is None:
            return []

        if depth >= self.max_depth:
            self.logger.warning(f"Maximum tree depth reached at {path_prefix}")
            return []

        nodes = []
        for name, child in container.properties.items():
            path = join_path(prefix, name)
            tree_node = SchemaTreeNode(
                name=name,
                path=path,
                type=child.type,
                required=name in container.required,
                has_children=container_of(child, path)[0] is not None,
                is_reference=child.is_reference,
                description=child.description,
                format=getattr(child, "format", None),
                enum=list(child.enum) if getattr(child, "enum", None) is not None else None,
                schema=child,
            )
            if tree_node.has_children and path in expanded:
                tree_node.children = self.build_children(child, path, depth + 1, expanded)
            nodes.append(tree_node)
        return nodes

    def expand(self, tree: list[SchemaTreeNode], path: str) -> SchemaTreeNode | None:
        """Materialize the children of the node at ``path``.

        Returns:
            The expanded node, or None if no built node has that path
        """
        node = index_nodes(tree).get(path)
        if node is None:
            return None
        if node.has_children and not node.children:
            depth = path.count(".") + path.count(ARRAY_SEGMENT) + 1
            node.children = self.build_children(node.schema, path, depth)
        return node


def initial_expansion(
    tree: list[SchemaTreeNode], persisted: Iterable[str] | None
) -> set[str]:
    """Decide which paths start expanded.

    Without persisted state, every first-level node that has children is
    expanded. Persisted state, even an empty one, is restored verbatim.
    """
    if persisted is None:
        return {node.path for node in tree if node.has_children}
    return set(persisted)


def index_nodes(tree: list[SchemaTreeNode]) -> dict[str, SchemaTreeNode]:
    """Flatten the materialized part of a tree into ``{path: node}``."""
    index: dict[str, SchemaTreeNode] = {}
    stack = list(tree)
    while stack:
        node = stack.pop()
        index[node.path] = node
        stack.extend(node.children)
    return index


def build_children(
    resolved_node: SchemaNode,
    path_prefix: str = "",
    depth: int = 0,
    expanded_paths: Iterable[str] | None = None,
) -> list[SchemaTreeNode]:
    return TreeBuilder().build_children(resolved_node, path_prefix, depth, expanded_paths)
