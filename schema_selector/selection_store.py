"""Persistence of selection and expansion state.

Selected fields and tree expansion state are stored per resource key behind a
minimal key/value interface. Each namespace is one JSON object mapping resource
keys to lists, stored under a fixed key. Selected fields live in a persistent
store; expansion state lives in a session store that is usually in memory.

Reading never fails: corrupt or unreadable state is logged and treated as empty.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .errors import SchemaSelectionError
from .field_selection import FieldSelection, TemplateField
from .tree_builder import SchemaTreeNode, initial_expansion

SELECTED_FIELDS_KEY = "schema-field-selection-selected-fields"
EXPANDED_NODES_KEY = "schema-field-selection-expanded-nodes"
FILTERED_SCHEMA_KEY = "schema-field-selection-selected-fields-schema"

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileKeyValueStore:
    """Key/value store kept in a single JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        """Store ``key``, replacing the file atomically.

        An unreadable file is replaced rather than blocking every later write.
        """
        try:
            data = self._read()
        except ValueError as e:
            logger.warning(f"Replacing unreadable state file {self.path}: {e}")
            data = {}
        data[key] = value

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)


@dataclass
class SelectionState:
    """Persisted state of one resource."""

    selected_fields: list[TemplateField] = field(default_factory=list)
    expanded_paths: set[str] = field(default_factory=set)


class SelectionStateStore:
    """Reads and writes ``SelectionState`` per resource key."""

    def __init__(
        self,
        persistent: KeyValueStore | None = None,
        session: KeyValueStore | None = None,
    ):
        self.persistent = persistent if persistent is not None else InMemoryKeyValueStore()
        self.session = session if session is not None else InMemoryKeyValueStore()

    def _read_map(self, store: KeyValueStore, storage_key: str) -> dict[str, Any]:
        try:
            raw = store.get(storage_key)
            if not raw:
                return {}
            data = json.loads(raw)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to read {storage_key}, using empty state: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring {storage_key}: expected a JSON object")
            return {}
        return data

    def _write_map(self, store: KeyValueStore, storage_key: str, data: dict[str, Any]) -> None:
        try:
            store.set(storage_key, json.dumps(data))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to persist {storage_key}: {e}")

    def _update(
        self, store: KeyValueStore, storage_key: str, resource_key: str, value: Any
    ) -> None:
        data = self._read_map(store, storage_key)
        if value is None:
            data.pop(resource_key, None)
        else:
            data[resource_key] = value
        self._write_map(store, storage_key, data)

    def load_selected_fields(self, resource_key: str) -> list[TemplateField]:
        entries = self._read_map(self.persistent, SELECTED_FIELDS_KEY).get(resource_key) or []
        if not isinstance(entries, list):
            logger.warning(f"Ignoring selected fields of {resource_key}: expected a list")
            return []

        fields = []
        for entry in entries:
            if isinstance(entry, dict) and entry.get("path"):
                fields.append(TemplateField.from_dict(entry))
            elif isinstance(entry, str) and entry:
                fields.append(TemplateField.from_path(entry))
            else:
                logger.warning(f"Skipping malformed selected field of {resource_key}: {entry!r}")
        return fields

    def load_expanded_paths(self, resource_key: str) -> set[str]:
        entries = self._read_map(self.session, EXPANDED_NODES_KEY).get(resource_key) or []
        if not isinstance(entries, list):
            logger.warning(f"Ignoring expansion state of {resource_key}: expected a list")
            return set()
        return {entry for entry in entries if isinstance(entry, str)}

    def has_expansion_state(self, resource_key: str) -> bool:
        return resource_key in self._read_map(self.session, EXPANDED_NODES_KEY)

    def load(self, resource_key: str) -> SelectionState:
        return SelectionState(
            selected_fields=self.load_selected_fields(resource_key),
            expanded_paths=self.load_expanded_paths(resource_key),
        )

    def save_selected_fields(self, resource_key: str, fields: list[TemplateField]) -> None:
        self._update(
            self.persistent,
            SELECTED_FIELDS_KEY,
            resource_key,
            [selected.to_dict() for selected in fields],
        )

    def save_expanded_paths(self, resource_key: str, paths: set[str]) -> None:
        self._update(self.session, EXPANDED_NODES_KEY, resource_key, sorted(paths))

    def save(self, resource_key: str, state: SelectionState) -> None:
        self.save_selected_fields(resource_key, state.selected_fields)
        self.save_expanded_paths(resource_key, state.expanded_paths)

    def clear_selection(self, resource_key: str) -> None:
        """Forget the selected fields and filtered schema of a resource."""
        self._update(self.persistent, SELECTED_FIELDS_KEY, resource_key, None)
        self._update(self.persistent, FILTERED_SCHEMA_KEY, resource_key, None)

    def save_filtered_schema(self, resource_key: str, schema: dict[str, Any]) -> None:
        self._update(self.persistent, FILTERED_SCHEMA_KEY, resource_key, schema)

    def load_filtered_schema(self, resource_key: str) -> dict[str, Any] | None:
        schema = self._read_map(self.persistent, FILTERED_SCHEMA_KEY).get(resource_key)
        return schema if isinstance(schema, dict) else None


@dataclass(frozen=True)
class SessionToken:
    """Identifies the resource a computation was started for."""

    resource_key: str | None
    generation: int


class SelectionSession:
    """Selection state of the resource currently being edited.

    Every mutation is persisted immediately. Results computed for a resource are
    checked with ``is_current`` before being applied so that a late result for a
    previous resource is discarded.
    """

    def __init__(self, store: SelectionStateStore):
        self.store = store
        self.resource_key: str | None = None
        self.selection = FieldSelection()
        self.expanded_paths: set[str] = set()
        self._generation = 0

    def switch_resource(self, resource_key: str) -> SessionToken:
        """Make ``resource_key`` the active resource.

        In-memory fields are cleared before the persisted ones are loaded.
        Expansion state is applied once the tree is loaded.
        """
        self._generation += 1
        self.resource_key = resource_key
        self.selection = FieldSelection()
        self.expanded_paths = set()

        self.selection = FieldSelection(self.store.load_selected_fields(resource_key))
        logger.debug(
            f"Switched to {resource_key} with {len(self.selection)} selected fields"
        )
        return self.begin()

    def begin(self) -> SessionToken:
        return SessionToken(self.resource_key, self._generation)

    def is_current(self, token: SessionToken) -> bool:
        return token.resource_key == self.resource_key and token.generation == self._generation

    def on_tree_loaded(self, resource_key: str, tree: list[SchemaTreeNode]) -> set[str]:
        """Apply expansion state once the tree of ``resource_key`` is available.

        Returns:
            The expanded paths of the active resource
        """
        if resource_key != self.resource_key:
            logger.debug(f"Discarding tree of {resource_key}: {self.resource_key} is active")
            return self.expanded_paths

        persisted = (
            self.store.load_expanded_paths(resource_key)
            if self.store.has_expansion_state(resource_key)
            else None
        )
        self.expanded_paths = initial_expansion(tree, persisted)
        if persisted is None:
            self.store.save_expanded_paths(resource_key, self.expanded_paths)
        return self.expanded_paths

    def _active_key(self) -> str:
        if self.resource_key is None:
            raise SchemaSelectionError("No active resource")
        return self.resource_key

    def _persist_fields(self) -> None:
        self.store.save_selected_fields(self._active_key(), self.selection.fields)

    def _persist_expansion(self) -> None:
        self.store.save_expanded_paths(self._active_key(), self.expanded_paths)

    def select(self, field: TemplateField) -> bool:
        changed = self.selection.select(field)
        if changed:
            self._persist_fields()
        return changed

    def select_node(self, node: SchemaTreeNode) -> bool:
        """Select a tree node, expanding it if it has children."""
        changed = self.select(TemplateField.from_tree_node(node))
        if changed and node.has_children and node.path not in self.expanded_paths:
            self.expanded_paths.add(node.path)
            self._persist_expansion()
        return changed

    def deselect(self, path: str) -> list[TemplateField]:
        removed = self.selection.deselect(path)
        if removed:
            self._persist_fields()
        return removed

    def clear(self) -> None:
        self.selection.clear()
        self.store.clear_selection(self._active_key())

    def toggle_expanded(self, path: str) -> bool:
        """Flip the expansion of ``path``; returns True if now expanded."""
        if path in self.expanded_paths:
            self.expanded_paths.discard(path)
        else:
            self.expanded_paths.add(path)
        self._persist_expansion()
        return path in self.expanded_paths

    def reveal(self, path: str) -> set[str]:
        """Expand every ancestor of ``path``."""
        self.expanded_paths.update(self.selection.reveal_path(path))
        self._persist_expansion()
        return self.expanded_paths
