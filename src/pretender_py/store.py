from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Protocol

from .keys import SortKeyRange
from .model import TableMetadata


@dataclass(frozen=True)
class StoredRow:
    hash_key: bytes
    sort_key: bytes
    document: str


class StoreSession(Protocol):
    def get(self, table: str, hash_key: bytes, sort_key: bytes) -> str | None: ...

    def put(
        self, table: str, hash_key: bytes, sort_key: bytes, document: str, *, index: str | None = None
    ) -> None: ...

    def delete(self, table: str, hash_key: bytes, sort_key: bytes, *, index: str | None = None) -> None: ...

    def query(
        self,
        table: str,
        hash_key: bytes,
        sort_range: SortKeyRange,
        *,
        limit: int | None = None,
        exclusive_start: bytes | None = None,
        descending: bool = False,
        index: str | None = None,
    ) -> list[StoredRow]: ...

    def scan(
        self,
        table: str,
        *,
        limit: int | None = None,
        exclusive_start: tuple[bytes, bytes] | None = None,
        index: str | None = None,
    ) -> list[StoredRow]: ...


class ItemStore(Protocol):
    def transaction(self) -> AbstractContextManager[StoreSession]:
        ...

    def create_table(self, metadata: TableMetadata) -> None: ...

    def drop_table(self, metadata: TableMetadata) -> None: ...

    def load_tables(self) -> list[TableMetadata]: ...

    def close(self) -> None: ...
