from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Protocol

from .errors import NotFoundError, TableExistsError
from .model import TableMetadata


class TableRegistry(Protocol):
    def get_table_metadata(self, name: str) -> TableMetadata: ...


class InMemoryTableRegistry:
    def __init__(self, tables: Iterable[TableMetadata] = ()) -> None:
        self._lock = threading.Lock()
        self._tables: dict[str, TableMetadata] = {}
        for metadata in tables:
            self.register(metadata)

    def get_table_metadata(self, name: str) -> TableMetadata:
        with self._lock:
            metadata = self._tables.get(name)
        if metadata is None:
            raise NotFoundError(f"Requested resource not found: Table: {name} not found")
        return metadata

    def register(self, metadata: TableMetadata) -> None:
        with self._lock:
            if metadata.name in self._tables:
                raise TableExistsError(f"Table already exists: {metadata.name}")
            self._tables[metadata.name] = metadata

    def replace(self, metadata: TableMetadata) -> TableMetadata:
        with self._lock:
            previous = self._tables.get(metadata.name)
            if previous is not None:
                self._tables[metadata.name] = metadata
        if previous is None:
            raise NotFoundError(f"Requested resource not found: Table: {metadata.name} not found")
        return previous

    def unregister(self, name: str) -> TableMetadata:
        with self._lock:
            metadata = self._tables.pop(name, None)
        if metadata is None:
            raise NotFoundError(f"Requested resource not found: Table: {name} not found")
        return metadata

    def contains(self, name: str) -> bool:
        with self._lock:
            return name in self._tables

    def table_names(self) -> list[str]:
        with self._lock:
            return sorted(self._tables)
