"""Resolved schema node types.

A resolved schema is a tree of ``SchemaNode`` variants. Each variant carries an
explicit ``kind`` discriminator so callers can dispatch exhaustively instead of
probing loosely-typed dictionaries. Raw schema documents stay plain mappings.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Union


@dataclass(frozen=True)
class ScalarNode:
    """Leaf value such as a string, integer or boolean."""

    kind: ClassVar[str] = "scalar"

    type: str = "unknown"
    description: str | None = None
    format: str | None = None
    enum: tuple[Any, ...] | None = None
    is_reference: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.format:
            data["format"] = self.format
        if self.enum is not None:
            data["enum"] = list(self.enum)
        return _finish(data, self)


@dataclass(frozen=True)
class ObjectNode:
    """Object with named properties."""

    kind: ClassVar[str] = "object"

    properties: dict[str, SchemaNode] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    additional_properties: SchemaNode | bool | None = None
    description: str | None = None
    is_reference: bool = False

    @property
    def type(self) -> str:
        return "object"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "object"}
        if self.properties:
            data["properties"] = {
                name: prop.to_dict() for name, prop in self.properties.items()
            }
        if self.required:
            data["required"] = list(self.required)
        if isinstance(self.additional_properties, bool):
            data["additionalProperties"] = self.additional_properties
        elif self.additional_properties is not None:
            data["additionalProperties"] = self.additional_properties.to_dict()
        return _finish(data, self)


@dataclass(frozen=True)
class ArrayNode:
    """Array whose elements follow the ``items`` schema."""

    kind: ClassVar[str] = "array"

    items: SchemaNode | None = None
    description: str | None = None
    is_reference: bool = False

    @property
    def type(self) -> str:
        return "array"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "array"}
        if self.items is not None:
            data["items"] = self.items.to_dict()
        return _finish(data, self)


@dataclass(frozen=True)
class ReferenceStub:
    """Placeholder for a ``$ref`` that was circular or could not be found."""

    kind: ClassVar[str] = "reference"

    CIRCULAR: ClassVar[str] = "circular"
    UNRESOLVED: ClassVar[str] = "unresolved"

    ref: str = ""
    reason: str = "unresolved"
    description: str | None = None

    @property
    def type(self) -> str:
        # Circular stubs still behave as objects in forms; unresolved ones do not.
        return "object" if self.reason == self.CIRCULAR else "unknown"

    @property
    def is_reference(self) -> bool:
        return True

    @classmethod
    def circular(cls, ref: str) -> ReferenceStub:
        return cls(ref=ref, reason=cls.CIRCULAR, description=f"Circular reference: {ref}")

    @classmethod
    def unresolved(cls, ref: str) -> ReferenceStub:
        return cls(ref=ref, reason=cls.UNRESOLVED, description=f"Unresolved reference: {ref}")

    def to_dict(self) -> dict[str, Any]:
        return _finish({"type": self.type}, self)


SchemaNode = Union[ScalarNode, ObjectNode, ArrayNode, ReferenceStub]

SCHEMA_NODE_TYPES = (ScalarNode, ObjectNode, ArrayNode, ReferenceStub)


def _finish(data: dict[str, Any], node: SchemaNode) -> dict[str, Any]:
    if node.description:
        data["description"] = node.description
    if node.is_reference:
        data["isReference"] = True
    return data


def is_schema_node(value: Any) -> bool:
    """Return True if value is already a resolved schema node."""
    return isinstance(value, SCHEMA_NODE_TYPES)


def has_properties(node: SchemaNode | None) -> bool:
    """True for object nodes with at least one property."""
    return isinstance(node, ObjectNode) and bool(node.properties)


def with_reference_flag(node: SchemaNode) -> SchemaNode:
    """Return node marked as produced by ``$ref`` resolution."""
    if isinstance(node, ReferenceStub) or node.is_reference:
        return node
    return replace(node, is_reference=True)
