"""Schema selection service.

``SchemaSelectionService`` is the facade over the schema engine. It loads
schema sources through the cache, resolves resource definitions on demand,
builds lazy schema trees, and derives filtered and template schemas from a set
of selected fields. Large schemas make the service yield to the event loop
once before the synchronous computation starts.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any

from .cache import SchemaSourceCache
from .errors import ResourceNotFoundError, SchemaSourceNotFoundError
from .field_selection import (
    FieldSelection,
    FieldSelectionFilter,
    TemplateField,
    build_template_schema,
    schema_at_path,
)
from .k8s_client import K8sClient
from .path_normalizer import ResourceContext, normalize, normalize_paths
from .performance import PerformanceMonitor, serialized_size
from .reference_resolver import ReferenceResolver
from .schema_index import (
    CRD_SOURCE_ID,
    ResourceMetadata,
    SchemaDefinitionIndex,
    crd_resource_key,
)
from .schema_loader import ClusterSchemaLoader, CRDFileLoader, DefinitionsDirectoryLoader
from .schema_nodes import SchemaNode
from .selection_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    SelectionSession,
    SelectionStateStore,
)
from .tree_builder import SchemaTreeNode, TreeBuilder

CLUSTER_SOURCE_ID = "cluster"


@dataclass
class ServiceConfig:
    """Engine settings."""

    definitions_dir: str = "/schemas/kubernetes"
    crd_definitions_dir: str | None = None
    source_id: str = "kubernetes"
    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 16
    large_schema_threshold: int = 100_000
    selection_state_file: str | None = None
    enable_cluster_crds: bool = False

    @classmethod
    def from_env(cls) -> ServiceConfig:
        return cls(
            definitions_dir=os.getenv("SCHEMA_DEFINITIONS_DIR", "/schemas/kubernetes"),
            crd_definitions_dir=os.getenv("CRD_DEFINITIONS_DIR") or None,
            source_id=os.getenv("SCHEMA_SOURCE_ID", "kubernetes"),
            cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "3600")),
            cache_max_entries=int(os.getenv("CACHE_MAX_ENTRIES", "16")),
            large_schema_threshold=int(os.getenv("LARGE_SCHEMA_THRESHOLD", "100000")),
            selection_state_file=os.getenv("SELECTION_STATE_FILE") or None,
            enable_cluster_crds=os.getenv("ENABLE_CLUSTER_CRDS", "false").lower() == "true",
        )


@dataclass
class ResolvedResource:
    """A resource definition resolved for one request."""

    resource_key: str
    schema: SchemaNode
    context: ResourceContext
    metadata: ResourceMetadata | None = None
    size: int = 0


@dataclass
class SelectionResult:
    """Everything derived from one selection of fields."""

    resource_key: str
    tree: list[SchemaTreeNode]
    filtered_schema: SchemaNode
    template_schema: dict[str, Any]
    selected_fields: list[TemplateField] = field(default_factory=list)
    selected_paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resourceKey": self.resource_key,
            "tree": [node.to_dict() for node in self.tree],
            "filteredSchema": self.filtered_schema.to_dict(),
            "templateSchema": self.template_schema,
            "selectedFields": [selected.to_dict() for selected in self.selected_fields],
            "selectedPaths": self.selected_paths,
        }


class SchemaSelectionService:
    """Facade over schema loading, resolution, tree building and filtering."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        k8s_client: K8sClient | None = None,
        state_store: SelectionStateStore | None = None,
    ):
        """Initialize the service.

        Args:
            config: Engine settings; defaults to ``ServiceConfig()``
            k8s_client: Client used for the ``cluster`` source and cluster CRDs
            state_store: Selection persistence; defaults to a JSON file when
                ``selection_state_file`` is set, memory otherwise
        """
        self.config = config or ServiceConfig()
        self.logger = logging.getLogger(__name__)

        self.cache = SchemaSourceCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )
        self.monitor = PerformanceMonitor(self.config.large_schema_threshold)
        self.definitions_loader = DefinitionsDirectoryLoader(
            self.config.definitions_dir, self.config.source_id
        )
        self.crd_loader = (
            CRDFileLoader(self.config.crd_definitions_dir)
            if self.config.crd_definitions_dir
            else None
        )
        self.k8s_client = k8s_client
        self.cluster_loader = ClusterSchemaLoader(k8s_client) if k8s_client else None

        if state_store is None:
            persistent = (
                JsonFileKeyValueStore(self.config.selection_state_file)
                if self.config.selection_state_file
                else InMemoryKeyValueStore()
            )
            state_store = SelectionStateStore(persistent)
        self.state_store = state_store
        self.session = SelectionSession(self.state_store)

        self.tree_builder = TreeBuilder()
        self.schema_filter = FieldSelectionFilter()

        self.crds: dict[str, SchemaDefinitionIndex] = {}
        self._crd_resolved: dict[str, tuple[SchemaNode, int]] = {}
        self._crds_loaded = False
        self._crds_lock = asyncio.Lock()

    # Sources

    async def _load_source(self, source_id: str) -> SchemaDefinitionIndex:
        if source_id == CLUSTER_SOURCE_ID:
            if self.cluster_loader is None:
                raise SchemaSourceNotFoundError("Cluster schema source is not configured")
            return await self.cluster_loader.load(source_id)
        return await self.definitions_loader.load(source_id)

    async def load_source(self, source_id: str | None = None) -> SchemaDefinitionIndex:
        """Load (or fetch from cache) the index of a schema source."""
        source_id = source_id or self.config.source_id
        with self.monitor.track("load_source"):
            return await self.cache.load(source_id, lambda: self._load_source(source_id))

    def register_crd(self, document: dict[str, Any]) -> list[ResourceMetadata]:
        """Add an inline CRD document.

        Returns:
            Metadata of every version the CRD serves

        Raises:
            InvalidCRDError: If the document is not a valid CRD
        """
        index = SchemaDefinitionIndex.from_crd(document)
        return self._register_index(index)

    def _register_index(
        self, index: SchemaDefinitionIndex, overwrite: bool = True
    ) -> list[ResourceMetadata]:
        registered = []
        for resource_key, metadata in index.by_resource_key.items():
            if not overwrite and resource_key in self.crds:
                continue
            self.crds[resource_key] = index
            self._crd_resolved.pop(resource_key, None)
            registered.append(metadata)
            self.logger.debug(f"Registered CRD resource {resource_key}")
        return registered

    async def _ensure_crds_loaded(self) -> None:
        """Load CRD files and, if enabled, cluster CRDs once.

        Inline CRDs registered earlier take precedence over loaded ones.
        Concurrent first requests share a single load.
        """
        if self._crds_loaded:
            return

        async with self._crds_lock:
            if self._crds_loaded:
                return

            if self.crd_loader is not None:
                for index in await self.crd_loader.load():
                    self._register_index(index, overwrite=False)

            if self.config.enable_cluster_crds and self.cluster_loader is not None:
                for index in await self.cluster_loader.load_crds():
                    self._register_index(index, overwrite=False)

            self._crds_loaded = True

    # Resolution

    async def resolve_resource(
        self, resource_key: str, source_id: str | None = None
    ) -> ResolvedResource:
        """Resolve the schema of a resource.

        Raises:
            ResourceNotFoundError: If the resource key is unknown
            SchemaSourceError: If the schema source cannot be loaded
        """
        if resource_key.startswith("crd-") or source_id == CRD_SOURCE_ID:
            return await self._resolve_crd(resource_key)

        source_id = source_id or self.config.source_id
        index = await self.load_source(source_id)
        definition_name, metadata = index.lookup(resource_key)

        memo = self.cache.get_resolved(source_id, definition_name)
        self.monitor.update_cache_metrics(memo is not None)
        if memo is None:
            with self.monitor.track("resolve"):
                schema = ReferenceResolver(index).resolve_definition(definition_name)
            size = serialized_size(schema)
            self.cache.set_resolved(source_id, definition_name, schema, size)
        else:
            schema, size = memo

        return ResolvedResource(
            resource_key=resource_key,
            schema=schema,
            context=ResourceContext(
                resource_key=resource_key,
                kind=metadata.kind if metadata else None,
            ),
            metadata=metadata,
            size=size,
        )

    async def _resolve_crd(self, resource_key: str) -> ResolvedResource:
        await self._ensure_crds_loaded()

        index = self.crds.get(resource_key)
        if index is None:
            raise ResourceNotFoundError(f"CRD not found: {resource_key}")
        metadata = index.by_resource_key[resource_key]

        memo = self._crd_resolved.get(resource_key)
        self.monitor.update_cache_metrics(memo is not None)
        if memo is None:
            with self.monitor.track("resolve"):
                schema = ReferenceResolver(index).resolve_definition(metadata.definition_key)
            size = serialized_size(schema)
            self._crd_resolved[resource_key] = (schema, size)
        else:
            schema, size = memo

        return ResolvedResource(
            resource_key=resource_key,
            schema=schema,
            context=ResourceContext(resource_key=resource_key, kind=metadata.kind, is_crd=True),
            metadata=metadata,
            size=size,
        )

    async def _yield_if_large(self, resolved: ResolvedResource) -> None:
        if self.monitor.is_large(resolved.size):
            self.monitor.record_deferral()
            await asyncio.sleep(0)

    def _build_tree(self, schema: SchemaNode, expanded_paths) -> list[SchemaTreeNode]:
        with self.monitor.track("build_tree"):
            return self.tree_builder.build_children(schema, "", 0, expanded_paths)

    def _filter(self, resolved: ResolvedResource, selected_fields: list[Any]) -> SchemaNode:
        with self.monitor.track("filter"):
            paths = normalize_paths(selected_fields, resolved.context)
            return self.schema_filter.filter(resolved.schema, paths)

    # Entry points

    async def get_resource_schema_tree(
        self,
        source_id: str | None,
        resource_key: str,
        expanded_paths: set[str] | None = None,
    ) -> list[SchemaTreeNode]:
        """Build the schema tree of a resource."""
        resolved = await self.resolve_resource(resource_key, source_id)
        await self._yield_if_large(resolved)
        return self._build_tree(resolved.schema, expanded_paths)

    async def get_crd_schema_tree(
        self,
        group: str,
        version: str,
        kind: str,
        expanded_paths: set[str] | None = None,
    ) -> list[SchemaTreeNode]:
        """Build the schema tree of a custom resource."""
        return await self.get_resource_schema_tree(
            CRD_SOURCE_ID, crd_resource_key(group, version, kind), expanded_paths
        )

    async def get_filtered_schema(
        self,
        resource_key: str,
        selected_fields: list[Any],
        source_id: str | None = None,
    ) -> SchemaNode:
        """Filter a resource schema down to the selected fields.

        Args:
            resource_key: Resource key
            selected_fields: Paths, field mappings or ``TemplateField`` objects
            source_id: Schema source; defaults to the configured source
        """
        resolved = await self.resolve_resource(resource_key, source_id)
        await self._yield_if_large(resolved)
        return self._filter(resolved, selected_fields)

    async def get_template_schema(
        self,
        resource_key: str,
        selected_fields: list[Any],
        source_id: str | None = None,
    ) -> dict[str, Any]:
        """Filtered schema wrapped with the apiVersion/kind/metadata envelope."""
        resolved = await self.resolve_resource(resource_key, source_id)
        await self._yield_if_large(resolved)
        return build_template_schema(self._filter(resolved, selected_fields), resolved.schema)

    async def list_resources(self, source_id: str | None = None) -> list[ResourceMetadata]:
        if source_id == CRD_SOURCE_ID:
            await self._ensure_crds_loaded()
            return sorted(
                {m.resource_key: m for i in self.crds.values() for m in i.list_resources()}.values(),
                key=lambda m: (m.kind, m.group, m.version),
            )
        return (await self.load_source(source_id)).list_resources()

    async def search_resources(
        self, source_id: str | None, query: str
    ) -> list[ResourceMetadata]:
        if source_id == CRD_SOURCE_ID:
            term = query.lower().strip()
            if not term:
                return []
            return [
                metadata
                for metadata in await self.list_resources(CRD_SOURCE_ID)
                if term in metadata.kind.lower() or term in metadata.display_name.lower()
            ]
        return (await self.load_source(source_id)).search(query)

    def complete_field(self, selected: Any, resolved: ResolvedResource) -> TemplateField:
        """Turn a selected path or mapping into a ``TemplateField`` with a canonical path."""
        if isinstance(selected, TemplateField):
            template_field = selected
        elif isinstance(selected, dict):
            template_field = TemplateField.from_dict(selected)
        else:
            template_field = TemplateField.from_path(str(selected))

        path = normalize(template_field.path, resolved.context)
        template_field = replace(template_field, path=path)
        if template_field.type == "unknown":
            node = schema_at_path(resolved.schema, path)
            if node is not None:
                template_field = replace(
                    template_field,
                    type=node.type,
                    description=template_field.description or node.description,
                    format=template_field.format or getattr(node, "format", None),
                )
        return template_field

    async def select(
        self,
        resource_key: str,
        selected_fields: list[Any] | None = None,
        expanded_paths: list[str] | None = None,
        source_id: str | None = None,
    ) -> SelectionResult:
        """Apply a selection to a resource and persist it.

        With ``selected_fields`` None the persisted selection of the resource is
        used. With ``expanded_paths`` None the persisted expansion state is used,
        or the first level when there is none.
        """
        session = SelectionSession(self.state_store)
        session.switch_resource(resource_key)
        resolved = await self.resolve_resource(resource_key, source_id)
        await self._yield_if_large(resolved)

        if selected_fields is not None:
            selection = FieldSelection(
                self.complete_field(selected, resolved) for selected in selected_fields
            )
            session.clear()
            for template_field in selection:
                session.select(template_field)

        if expanded_paths is None:
            tree = self._build_tree(resolved.schema, None)
            expanded = session.on_tree_loaded(resource_key, tree)
        else:
            expanded = set(expanded_paths)
            session.expanded_paths = expanded
            session.store.save_expanded_paths(resource_key, expanded)

        fields = session.selection.fields
        filtered = self._filter(resolved, fields)
        template_schema = build_template_schema(filtered, resolved.schema)
        self.state_store.save_filtered_schema(resource_key, filtered.to_dict())

        return SelectionResult(
            resource_key=resource_key,
            tree=self._build_tree(resolved.schema, expanded),
            filtered_schema=filtered,
            template_schema=template_schema,
            selected_fields=fields,
            selected_paths=sorted(normalize_paths(fields, resolved.context)),
        )

    async def open_resource(
        self, resource_key: str, source_id: str | None = None
    ) -> list[SchemaTreeNode] | None:
        """Make ``resource_key`` the active resource of the shared session.

        Returns:
            The tree with restored expansion state, or None if another resource
            was opened while this one was loading
        """
        token = self.session.switch_resource(resource_key)
        resolved = await self.resolve_resource(resource_key, source_id)
        await self._yield_if_large(resolved)

        if not self.session.is_current(token):
            self.logger.debug(f"Discarding stale tree for {resource_key}")
            return None

        tree = self._build_tree(resolved.schema, None)
        expanded = self.session.on_tree_loaded(resource_key, tree)
        return self._build_tree(resolved.schema, expanded)

    def get_metrics(self) -> dict[str, Any]:
        return {
            "performance": self.monitor.get_metrics(),
            "cache": self.cache.get_stats(),
            "crds": len(self.crds),
        }
