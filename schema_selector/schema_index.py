"""Schema definition index for Kubernetes and CRD schema sources.

This module holds the flat store of raw schema definitions for one schema source
together with the metadata needed to find a resource by kind, by
group/version/kind or by resource key. An index is built once per source load
and is treated as read-only afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .errors import InvalidCRDError, ResourceNotFoundError

GVK_EXTENSION = "x-kubernetes-group-version-kind"
CORE_GROUP = "core"
CRD_SOURCE_ID = "cluster-crds"

logger = logging.getLogger(__name__)


def api_version_for(group: str, version: str) -> str:
    """Build an apiVersion string, omitting the core group."""
    if not group or group == CORE_GROUP:
        return version
    return f"{group}/{version}"


def resource_key_for(api_version: str, kind: str) -> str:
    """Resource key used for standard resources (``apps/v1/Deployment``)."""
    return f"{api_version}/{kind}"


def crd_resource_key(group: str, version: str, kind: str) -> str:
    """Resource key used for custom resources."""
    return f"crd-{group}-{version}-{kind}"


@dataclass
class ResourceMetadata:
    """Lightweight description of a resource found in a schema source."""

    key: str
    group: str
    version: str
    kind: str
    display_name: str
    definition_key: str
    source: str
    description: str | None = None

    @property
    def api_version(self) -> str:
        return api_version_for(self.group, self.version)

    @property
    def resource_key(self) -> str:
        if self.source == CRD_SOURCE_ID:
            return crd_resource_key(self.group, self.version, self.kind)
        return resource_key_for(self.api_version, self.kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "resourceKey": self.resource_key,
            "group": self.group,
            "version": self.version,
            "kind": self.kind,
            "apiVersion": self.api_version,
            "displayName": self.display_name,
            "definitionKey": self.definition_key,
            "source": self.source,
            "description": self.description,
        }


def display_name_for(group: str, version: str, kind: str) -> str:
    group = group or CORE_GROUP
    group_display = "" if group == CORE_GROUP else f" ({group})"
    return f"{kind} {version}{group_display}"


def validate_crd(document: Any) -> list[str]:
    """Return a list of problems that make a document unusable as a CRD."""
    if not isinstance(document, dict):
        return ["CRD document must be a mapping"]

    errors = []
    if not document.get("apiVersion") or not document.get("kind"):
        errors.append("Missing required fields: apiVersion and kind")
    if document.get("kind") != "CustomResourceDefinition":
        errors.append("Expected kind to be CustomResourceDefinition")

    spec = document.get("spec") or {}
    if not spec.get("group") or not (spec.get("names") or {}).get("kind"):
        errors.append("Missing required spec fields: group and names.kind")
    if not isinstance(spec.get("versions"), list) or not spec.get("versions"):
        errors.append("Missing or invalid versions array")
    return errors


class SchemaDefinitionIndex:
    """Index of raw schema definitions for a single schema source."""

    def __init__(
        self,
        source_id: str,
        document: dict[str, Any],
        definitions: dict[str, Any] | None = None,
        is_crd: bool = False,
    ):
        """Initialize the index.

        Args:
            source_id: Identifier of the schema source (e.g. ``kubernetes-v1.29.0``)
            document: The full schema document, used for ``$ref`` traversal
            definitions: Named definitions; defaults to ``document["definitions"]``
            is_crd: Whether the source is a CustomResourceDefinition
        """
        self.source_id = source_id
        self.document = document
        self.definitions: dict[str, Any] = (
            definitions if definitions is not None else document.get("definitions") or {}
        )
        self.is_crd = is_crd
        self.by_kind: dict[str, list[ResourceMetadata]] = {}
        self.by_group_version_kind: dict[str, ResourceMetadata] = {}
        self.by_resource_key: dict[str, ResourceMetadata] = {}

    @classmethod
    def from_definitions_document(
        cls, document: dict[str, Any], source_id: str
    ) -> SchemaDefinitionIndex:
        """Build an index from a Kubernetes ``_definitions.json`` / OpenAPI v2 document."""
        index = cls(source_id, document)
        for definition_key, schema in index.definitions.items():
            if not isinstance(schema, dict):
                continue
            for gvk in schema.get(GVK_EXTENSION) or []:
                index._add_metadata(
                    ResourceMetadata(
                        key=f"{gvk.get('group') or CORE_GROUP}/{gvk.get('version')}/{gvk.get('kind')}",
                        group=gvk.get("group") or CORE_GROUP,
                        version=gvk.get("version", ""),
                        kind=gvk.get("kind", ""),
                        display_name=display_name_for(
                            gvk.get("group", ""), gvk.get("version", ""), gvk.get("kind", "")
                        ),
                        definition_key=definition_key,
                        source=source_id,
                        description=schema.get("description"),
                    )
                )

        logger.info(
            f"Indexed schema source {source_id}: {len(index.definitions)} definitions, "
            f"{len(index.by_kind)} kinds"
        )
        return index

    @classmethod
    def from_crd(
        cls, document: dict[str, Any], source_id: str = CRD_SOURCE_ID
    ) -> SchemaDefinitionIndex:
        """Build an index from a CustomResourceDefinition document.

        Every served version becomes a definition keyed by its CRD resource key.

        Raises:
            InvalidCRDError: If the document is not a usable CRD
        """
        errors = validate_crd(document)
        if errors:
            raise InvalidCRDError(errors)

        spec = document["spec"]
        group = spec["group"]
        kind = spec["names"]["kind"]
        annotations = (document.get("metadata") or {}).get("annotations") or {}
        description = annotations.get("description")

        definitions: dict[str, Any] = {}
        index = cls(source_id, document, definitions=definitions, is_crd=True)
        for version_spec in spec["versions"]:
            version = version_spec.get("name", "")
            schema = (version_spec.get("schema") or {}).get("openAPIV3Schema") or {}
            definition_key = crd_resource_key(group, version, kind)
            definitions[definition_key] = schema
            index._add_metadata(
                ResourceMetadata(
                    key=f"{group}/{version}/{kind}",
                    group=group,
                    version=version,
                    kind=kind,
                    display_name=display_name_for(group, version, kind),
                    definition_key=definition_key,
                    source=source_id,
                    description=description or schema.get("description"),
                )
            )

        logger.debug(f"Indexed CRD {group}/{kind} with {len(definitions)} versions")
        return index

    def _add_metadata(self, metadata: ResourceMetadata) -> None:
        self.by_kind.setdefault(metadata.kind, []).append(metadata)
        self.by_group_version_kind[metadata.key] = metadata
        self.by_resource_key[metadata.resource_key] = metadata

    def get(self, definition_name: str) -> dict[str, Any] | None:
        """Get a raw definition by its canonical name."""
        definition = self.definitions.get(definition_name)
        return definition if isinstance(definition, dict) else None

    def definition_name_for_gvk(self, group: str, version: str, kind: str) -> str | None:
        """Reverse lookup from group/version/kind to definition name."""
        metadata = self.by_group_version_kind.get(f"{group or CORE_GROUP}/{version}/{kind}")
        return metadata.definition_key if metadata else None

    def lookup(self, resource_key: str) -> tuple[str, ResourceMetadata | None]:
        """Find the definition name for a resource key.

        Accepts ``apiVersion/kind`` keys, ``group/version/kind`` keys, CRD keys and
        raw definition names.

        Raises:
            ResourceNotFoundError: If nothing in this source matches
        """
        metadata = self.by_resource_key.get(resource_key) or self.by_group_version_kind.get(
            resource_key
        )
        if metadata:
            return metadata.definition_key, metadata

        if resource_key in self.definitions:
            for candidates in self.by_kind.values():
                for candidate in candidates:
                    if candidate.definition_key == resource_key:
                        return resource_key, candidate
            return resource_key, None

        raise ResourceNotFoundError(
            f"Resource schema not found: {resource_key} in source: {self.source_id}"
        )

    def get_available_kinds(self) -> list[str]:
        return sorted(self.by_kind)

    def list_resources(self) -> list[ResourceMetadata]:
        return sorted(
            self.by_group_version_kind.values(), key=lambda m: (m.kind, m.group, m.version)
        )

    def search(self, query: str) -> list[ResourceMetadata]:
        """Search resources by kind, display name or description."""
        if not query.strip():
            return []

        term = query.lower()
        results = [
            metadata
            for metadata in self.by_group_version_kind.values()
            if term in metadata.kind.lower()
            or term in metadata.display_name.lower()
            or (metadata.description and term in metadata.description.lower())
        ]
        return sorted(results, key=lambda m: m.display_name)

    @property
    def crd_kind(self) -> str | None:
        """Kind served by a CRD source, None for core sources."""
        if not self.is_crd:
            return None
        return ((self.document.get("spec") or {}).get("names") or {}).get("kind")
