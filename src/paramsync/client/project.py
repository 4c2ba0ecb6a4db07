"""JSON project file used as a ProjectDocument.

File format:
    {
        "title": "House A",
        "parameters": {
            "Project Information": {
                "sp.Name": {"value": "House A", "type": "text"},
                "sp.Lot.Size": {"value": 5000.0, "type": "number", "unit": "sqft"},
                "MC.Locked": {"value": "x", "readOnly": true}
            }
        }
    }

A parameter may also be a bare scalar, in which case its type is inferred.

This module provides:
- JsonParameter: HostParameter backed by one JSON entry
- JsonTransaction: Snapshot-based transaction, written to disk on commit
- JsonProjectDocument: ProjectDocument over a JSON project file
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from paramsync.client.sync.parameters import StorageType

logger = logging.getLogger(__name__)


class DocumentError(Exception):
    """Raised when a project file cannot be read or modified."""


def _infer_type(value: Any) -> StorageType:
    if isinstance(value, bool) or value is None:
        return StorageType.TEXT
    if isinstance(value, int):
        return StorageType.INTEGER
    if isinstance(value, float):
        return StorageType.NUMBER
    return StorageType.TEXT


class JsonParameter:
    """A parameter entry of a JsonProjectDocument."""

    def __init__(self, document: JsonProjectDocument, category: str, name: str) -> None:
        self._document = document
        self._category = category
        self._name = name

    @property
    def _entry(self) -> dict[str, Any]:
        return self._document._entry(self._category, self._name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def storage_type(self) -> StorageType:
        entry = self._entry
        if "type" in entry:
            return StorageType(entry["type"])
        return _infer_type(entry.get("value"))

    @property
    def value(self) -> Any:
        return self._entry.get("value")

    @property
    def is_read_only(self) -> bool:
        return bool(self._entry.get("readOnly", False))

    @property
    def is_shared(self) -> bool:
        return bool(self._entry.get("guid"))

    @property
    def guid(self) -> str | None:
        return self._entry.get("guid")

    @property
    def unit(self) -> str | None:
        return self._entry.get("unit")

    def set(self, value: Any) -> bool:
        """Set the value.

        Returns:
            False if the parameter is read-only or the value does not
            match the storage type.

        Raises:
            DocumentError: If no transaction is open.
        """
        if not self._document.in_transaction:
            raise DocumentError("Cannot modify a parameter outside a transaction")
        if self.is_read_only:
            return False

        storage_type = self.storage_type
        if storage_type is StorageType.TEXT:
            value = "" if value is None else str(value)
        elif storage_type is StorageType.NUMBER:
            if isinstance(value, bool) or not isinstance(value, int | float):
                return False
            value = float(value)
        elif isinstance(value, bool) or not isinstance(value, int):
            return False

        entry = self._entry
        entry["value"] = value
        entry.setdefault("type", storage_type.value)
        return True

    def __repr__(self) -> str:
        return f"JsonParameter({self._category!r}, {self._name!r}, value={self.value!r})"


class JsonTransaction:
    """Transaction over a JsonProjectDocument.

    Changes are made in memory; commit() writes the file, rollback()
    restores the snapshot taken when the transaction started.
    """

    def __init__(self, document: JsonProjectDocument, name: str) -> None:
        self._document = document
        self._name = name
        self._snapshot: dict[str, Any] | None = None
        self._closed = False

    def __enter__(self) -> JsonTransaction:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        if not self._closed:
            self.rollback()

    def start(self) -> None:
        if self._snapshot is not None:
            raise DocumentError(f"Transaction '{self._name}' already started")
        self._snapshot = self._document._begin()
        logger.debug(f"Transaction started: {self._name}")

    def commit(self) -> None:
        if self._closed:
            raise DocumentError(f"Transaction '{self._name}' already closed")
        # A failed save leaves the transaction open so that exit rolls back
        self._document.save()
        self._document._end()
        self._closed = True
        logger.debug(f"Transaction committed: {self._name}")

    def rollback(self) -> None:
        if self._closed:
            return
        if self._snapshot is not None:
            self._document._restore(self._snapshot)
        self._document._end()
        self._closed = True
        logger.info(f"Transaction rolled back: {self._name}")


class JsonProjectDocument:
    """ProjectDocument backed by a JSON file (or an in-memory dict)."""

    def __init__(self, data: dict[str, Any] | None = None, path: Path | None = None) -> None:
        """Initialize the document.

        Args:
            data: Parsed project data.
            path: File the document is saved to on commit (None keeps it in memory).
        """
        self._data: dict[str, Any] = data if data is not None else {}
        self._data.setdefault("parameters", {})
        self._path = path
        self._in_transaction = False

    @classmethod
    def load(cls, path: Path) -> JsonProjectDocument:
        """Load a project file.

        Raises:
            DocumentError: If the file is missing or not a JSON object.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DocumentError(f"Cannot read project file {path}: {e}") from e
        if not isinstance(data, dict):
            raise DocumentError(f"Project file {path} is not a JSON object")
        return cls(data, path)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def file_name(self) -> str:
        return self._path.name if self._path else ""

    @property
    def title(self) -> str:
        return self._data.get("title") or ""

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def _category(self, category: str) -> dict[str, Any]:
        parameters: dict[str, Any] = self._data["parameters"]
        for key, entries in parameters.items():
            if key.lower() == category.lower():
                return entries
        return {}

    def _entry(self, category: str, name: str) -> dict[str, Any]:
        entries = self._category(category)
        entry = entries[name]
        if not isinstance(entry, dict):
            # Promote a bare scalar to a full entry
            entry = {"value": entry, "type": _infer_type(entry).value}
            entries[name] = entry
        return entry

    def parameters(self, category: str) -> Iterator[JsonParameter]:
        for name in list(self._category(category)):
            yield JsonParameter(self, category, name)

    def lookup_parameter(self, category: str, name: str) -> JsonParameter | None:
        entries = self._category(category)
        if name in entries:
            return JsonParameter(self, category, name)
        for key in entries:
            if key.lower() == name.lower():
                return JsonParameter(self, category, key)
        return None

    def transaction(self, name: str) -> JsonTransaction:
        return JsonTransaction(self, name)

    def _begin(self) -> dict[str, Any]:
        if self._in_transaction:
            raise DocumentError("A transaction is already open")
        self._in_transaction = True
        return copy.deepcopy(self._data)

    def _end(self) -> None:
        self._in_transaction = False

    def _restore(self, snapshot: dict[str, Any]) -> None:
        self._data = snapshot

    def save(self) -> None:
        """Write the document to its file, atomically."""
        if self._path is None:
            return
        try:
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        except OSError as e:
            raise DocumentError(f"Cannot write project file {self._path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp, self._path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise DocumentError(f"Cannot write project file {self._path}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)
