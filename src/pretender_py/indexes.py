from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .keys import composite_sort_key, encode_key_value, encode_primary_key
from .model import IndexDefinition, TableMetadata
from .values import AttributeValue, Item

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexRow:
    index_name: str
    hash_key: bytes
    sort_key: bytes
    item: Item


@dataclass(frozen=True)
class IndexRowKey:
    index_name: str
    hash_key: bytes
    sort_key: bytes


@dataclass(frozen=True)
class IndexChanges:
    puts: tuple[IndexRow, ...] = ()
    deletes: tuple[IndexRowKey, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.puts and not self.deletes


def base_key(metadata: TableMetadata, item: Mapping[str, AttributeValue]) -> tuple[bytes, bytes]:
    sort_value = item[metadata.sort_key] if metadata.sort_key is not None else None
    return encode_primary_key(item[metadata.hash_key], sort_value)


def project(item: Mapping[str, AttributeValue], index: IndexDefinition, metadata: TableMetadata) -> Item:
    if index.projection.type == "ALL":
        return dict(item)

    keep = set(metadata.key_attributes) | set(index.key_attributes)
    if index.projection.type == "INCLUDE":
        keep |= set(index.projection.fields)
    return {name: value for name, value in item.items() if name in keep}


def index_row(
    metadata: TableMetadata, index: IndexDefinition, item: Mapping[str, AttributeValue]
) -> IndexRow | None:
    hash_value = item.get(index.hash_key)
    if hash_value is None or not hash_value.is_scalar:
        return None

    index_sort: bytes | None = None
    if index.sort_key is not None:
        sort_value = item.get(index.sort_key)
        if sort_value is None or not sort_value.is_scalar:
            return None
        index_sort = encode_key_value(sort_value)

    base_hash, base_sort = base_key(metadata, item)
    return IndexRow(
        index_name=index.name,
        hash_key=encode_key_value(hash_value),
        sort_key=composite_sort_key(index_sort, base_hash, base_sort if metadata.sort_key else None),
        item=project(item, index, metadata),
    )


def index_rows(metadata: TableMetadata, item: Mapping[str, AttributeValue]) -> list[IndexRow]:
    rows: list[IndexRow] = []
    for index in metadata.indexes:
        row = index_row(metadata, index, item)
        if row is not None:
            rows.append(row)
    return rows


def plan_index_changes(
    metadata: TableMetadata,
    old_item: Mapping[str, AttributeValue] | None,
    new_item: Mapping[str, AttributeValue] | None,
) -> IndexChanges:
    old_rows = index_rows(metadata, old_item) if old_item is not None else []
    new_rows = index_rows(metadata, new_item) if new_item is not None else []
    new_keys = {(row.index_name, row.hash_key, row.sort_key) for row in new_rows}

    changes = IndexChanges(
        puts=tuple(new_rows),
        deletes=tuple(
            IndexRowKey(row.index_name, row.hash_key, row.sort_key)
            for row in old_rows
            if (row.index_name, row.hash_key, row.sort_key) not in new_keys
        ),
    )
    if not changes.empty:
        logger.debug(
            "index changes table=%s puts=%d deletes=%d", metadata.name, len(changes.puts), len(changes.deletes)
        )
    return changes
