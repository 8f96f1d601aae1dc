"""Schema source loaders.

Loaders turn schema material into ``SchemaDefinitionIndex`` objects:

- ``DefinitionsDirectoryLoader`` reads Kubernetes ``_definitions.json`` files,
  one directory per Kubernetes version.
- ``CRDFileLoader`` reads CustomResourceDefinition documents from JSON or YAML
  files.
- ``ClusterSchemaLoader`` reads both from a live cluster through ``K8sClient``.

Loading is async; file reads run in the default executor. Failures raise
``SchemaSourceError`` subclasses and are never retried here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import (
    InvalidCRDError,
    SchemaSourceNotFoundError,
    SchemaSourceParseError,
)
from .k8s_client import K8sClient
from .schema_index import CRD_SOURCE_ID, SchemaDefinitionIndex

DEFINITIONS_FILE = "_definitions.json"
CRD_FILE_SUFFIXES = (".json", ".yaml", ".yml")


class SchemaYamlLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as strings so documents stay JSON-safe."""


SchemaYamlLoader.add_constructor(
    "tag:yaml.org,2002:timestamp", lambda loader, node: loader.construct_scalar(node)
)


def parse_documents(text: str, path: Path) -> list[Any]:
    """Parse a JSON file or a (multi-document) YAML file.

    Raises:
        SchemaSourceParseError: If the content cannot be parsed
    """
    try:
        if path.suffix == ".json":
            return [json.loads(text)]
        return [doc for doc in yaml.load_all(text, Loader=SchemaYamlLoader) if doc is not None]
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise SchemaSourceParseError(f"Failed to parse {path}: {e}") from e


async def read_text(path: Path) -> str:
    """Read a file in the default executor.

    Raises:
        SchemaSourceNotFoundError: If the file does not exist
    """
    try:
        return await asyncio.get_event_loop().run_in_executor(
            None, lambda: path.read_text(encoding="utf-8")
        )
    except FileNotFoundError as e:
        raise SchemaSourceNotFoundError(f"Schema file not found: {path}") from e
    except OSError as e:
        raise SchemaSourceNotFoundError(f"Unable to read schema file {path}: {e}") from e


class DefinitionsDirectoryLoader:
    """Loads Kubernetes definitions from ``<root>/<version>/_definitions.json``.

    Source ids are ``<prefix>-<version>`` for a versioned directory and the bare
    ``<prefix>`` for either ``<root>/_definitions.json`` or, when that file does
    not exist, the newest version directory.
    """

    def __init__(self, root: str | Path, source_prefix: str = "kubernetes"):
        self.root = Path(root)
        self.source_prefix = source_prefix
        self.logger = logging.getLogger(__name__)

    def versions(self) -> list[str]:
        """Kubernetes versions that have a definitions file, oldest first."""
        if not self.root.is_dir():
            return []
        found = [
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and (entry / DEFINITIONS_FILE).is_file()
        ]
        return sorted(found, key=_version_sort_key)

    def source_id_for(self, version: str | None = None) -> str:
        return f"{self.source_prefix}-{version}" if version else self.source_prefix

    def path_for(self, source_id: str) -> Path:
        """Map a source id to its definitions file.

        Raises:
            SchemaSourceNotFoundError: If the id does not belong to this loader
                or no definitions exist for it
        """
        if source_id == self.source_prefix:
            flat = self.root / DEFINITIONS_FILE
            if flat.is_file():
                return flat
            versions = self.versions()
            if not versions:
                raise SchemaSourceNotFoundError(f"No schema definitions under {self.root}")
            return self.root / versions[-1] / DEFINITIONS_FILE

        prefix = f"{self.source_prefix}-"
        if source_id.startswith(prefix):
            return self.root / source_id[len(prefix):] / DEFINITIONS_FILE

        raise SchemaSourceNotFoundError(f"Unknown schema source: {source_id}")

    async def load(self, source_id: str) -> SchemaDefinitionIndex:
        """Load and index the definitions of one source.

        Raises:
            SchemaSourceNotFoundError: If the definitions file is missing
            SchemaSourceParseError: If the file is not a definitions document
        """
        path = self.path_for(source_id)
        self.logger.info(f"Loading schema definitions for {source_id} from {path}")

        document = parse_documents(await read_text(path), path)[0]
        if not isinstance(document, dict):
            raise SchemaSourceParseError(f"{path} does not contain a JSON object")

        # Bare definition maps are accepted as well as full OpenAPI documents
        if "definitions" not in document:
            document = {"definitions": document}
        return SchemaDefinitionIndex.from_definitions_document(document, source_id)


class CRDFileLoader:
    """Loads CustomResourceDefinition documents from a directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.logger = logging.getLogger(__name__)

    def files(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            path
            for path in self.directory.iterdir()
            if path.is_file() and path.suffix in CRD_FILE_SUFFIXES
        )

    async def load_file(self, path: str | Path) -> list[SchemaDefinitionIndex]:
        """Load every CRD document of one file.

        Raises:
            SchemaSourceNotFoundError: If the file is missing
            SchemaSourceParseError: If it cannot be parsed
            InvalidCRDError: If a document is not a valid CRD
        """
        path = Path(path)
        documents = parse_documents(await read_text(path), path)
        return [SchemaDefinitionIndex.from_crd(document) for document in documents]

    async def load(self) -> list[SchemaDefinitionIndex]:
        """Load every CRD in the directory.

        Files that fail to parse or validate are logged and skipped so one bad
        file does not hide the others.
        """
        indexes: list[SchemaDefinitionIndex] = []
        for path in self.files():
            try:
                indexes.extend(await self.load_file(path))
            except SchemaSourceParseError as e:
                self.logger.warning(f"Skipping CRD file {path}: {e}")

        self.logger.info(f"Loaded {len(indexes)} CRDs from {self.directory}")
        return indexes


class ClusterSchemaLoader:
    """Loads core definitions and CRDs from a live cluster."""

    def __init__(self, k8s_client: K8sClient):
        self.k8s_client = k8s_client
        self.logger = logging.getLogger(__name__)

    async def load(self, source_id: str) -> SchemaDefinitionIndex:
        """Load the cluster's OpenAPI definitions as one source."""
        document = await self.k8s_client.get_openapi_definitions()
        return SchemaDefinitionIndex.from_definitions_document(document, source_id)

    async def load_crds(self) -> list[SchemaDefinitionIndex]:
        """Load every CRD served by the cluster, skipping invalid ones."""
        indexes = []
        for document in await self.k8s_client.list_crds():
            try:
                indexes.append(SchemaDefinitionIndex.from_crd(document, CRD_SOURCE_ID))
            except InvalidCRDError as e:
                name = (document.get("metadata") or {}).get("name")
                self.logger.warning(f"Skipping cluster CRD {name}: {e}")
        return indexes

    async def load_crd(self, group: str, kind: str) -> SchemaDefinitionIndex:
        """Load a single CRD from the cluster."""
        document = await self.k8s_client.get_crd(group, kind)
        return SchemaDefinitionIndex.from_crd(document, CRD_SOURCE_ID)


def _version_sort_key(version: str) -> tuple:
    parts = []
    for part in version.lstrip("v").split("."):
        parts.append((0, int(part), "") if part.isdigit() else (1, 0, part))
    return tuple(parts)
