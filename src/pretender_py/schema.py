from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import Any, cast

import yaml

from .errors import NotFoundError, TableExistsError, ValidationError
from .model import IndexDefinition, ModelDefinitionError, Projection, TableMetadata
from .registry import InMemoryTableRegistry
from .store import ItemStore
from .validation import validate_index_name, validate_key_name, validate_table_name

logger = logging.getLogger(__name__)

BillingMode = str  # "PAY_PER_REQUEST" | "PROVISIONED"


def create_table(metadata: TableMetadata, *, registry: InMemoryTableRegistry, store: ItemStore) -> None:
    validate_table_metadata(metadata)
    if registry.contains(metadata.name):
        raise TableExistsError(f"Table already exists: {metadata.name}")

    store.create_table(metadata)
    registry.register(metadata)
    logger.info("created table %s (indexes=%d)", metadata.name, len(metadata.indexes))


def ensure_table(metadata: TableMetadata, *, registry: InMemoryTableRegistry, store: ItemStore) -> bool:
    if registry.contains(metadata.name):
        return False
    create_table(metadata, registry=registry, store=store)
    return True


def delete_table(
    name: str,
    *,
    registry: InMemoryTableRegistry,
    store: ItemStore,
    ignore_missing: bool = False,
) -> TableMetadata | None:
    try:
        metadata = registry.get_table_metadata(name)
    except NotFoundError:
        if ignore_missing:
            return None
        raise

    store.drop_table(metadata)
    registry.unregister(name)
    logger.info("deleted table %s", name)
    return metadata


def describe_table(name: str, *, registry: InMemoryTableRegistry) -> dict[str, Any]:
    metadata = registry.get_table_metadata(name)
    request = build_create_table_request(metadata)

    table: dict[str, Any] = {
        "TableName": metadata.name,
        "TableStatus": "ACTIVE",
        "KeySchema": request["KeySchema"],
        "AttributeDefinitions": request["AttributeDefinitions"],
        "BillingModeSummary": {"BillingMode": request["BillingMode"]},
    }
    if "GlobalSecondaryIndexes" in request:
        table["GlobalSecondaryIndexes"] = [
            {**gsi, "IndexStatus": "ACTIVE"} for gsi in request["GlobalSecondaryIndexes"]
        ]
    if metadata.ttl_attribute is not None:
        table["TimeToLiveDescription"] = {
            "TimeToLiveStatus": "ENABLED",
            "AttributeName": metadata.ttl_attribute,
        }
    return table


def load_tables(*, registry: InMemoryTableRegistry, store: ItemStore) -> list[str]:
    added: list[str] = []
    for metadata in store.load_tables():
        if not registry.contains(metadata.name):
            registry.register(metadata)
            added.append(metadata.name)
    if added:
        logger.info("loaded %d persisted tables", len(added))
    return added


def update_time_to_live(
    name: str,
    *,
    attribute_name: str,
    enabled: bool,
    registry: InMemoryTableRegistry,
    store: ItemStore,
) -> TableMetadata:
    metadata = registry.get_table_metadata(name)
    validate_key_name(attribute_name)
    if enabled:
        if metadata.ttl_attribute is not None and metadata.ttl_attribute != attribute_name:
            raise ValidationError(f"TimeToLive is already enabled on attribute {metadata.ttl_attribute}")
        updated = replace(metadata, ttl_attribute=attribute_name)
    else:
        if metadata.ttl_attribute != attribute_name:
            raise ValidationError("TimeToLive is already disabled")
        updated = replace(metadata, ttl_attribute=None)

    store.create_table(updated)
    registry.replace(updated)
    logger.info("time to live on %s %s (attribute=%s)", name, "enabled" if enabled else "disabled", attribute_name)
    return updated


def validate_table_metadata(metadata: TableMetadata) -> None:
    validate_table_name(metadata.name)
    validate_key_name(metadata.hash_key)
    if metadata.sort_key is not None:
        validate_key_name(metadata.sort_key)
    for index in metadata.indexes:
        validate_index_name(index.name)
        validate_key_name(index.hash_key)
        if index.sort_key is not None:
            validate_key_name(index.sort_key)


def build_table_metadata(request: Mapping[str, Any], *, ttl_attribute: str | None = None) -> TableMetadata:
    name = request.get("TableName")
    if not isinstance(name, str) or not name:
        raise ValidationError("TableName is required")

    hash_key, sort_key = _key_schema(request.get("KeySchema"), owner=f"table {name}")

    attribute_types: dict[str, str] = {}
    for definition in request.get("AttributeDefinitions") or []:
        if not isinstance(definition, dict):
            raise ValidationError(f"table {name}: AttributeDefinitions entries must be maps")
        attribute_types[str(definition.get("AttributeName"))] = str(definition.get("AttributeType"))

    indexes: list[IndexDefinition] = []
    for kind in ("GlobalSecondaryIndexes", "LocalSecondaryIndexes"):
        for raw in request.get(kind) or []:
            if not isinstance(raw, dict):
                raise ValidationError(f"table {name}: {kind} entries must be maps")
            index_name = raw.get("IndexName")
            if not isinstance(index_name, str) or not index_name:
                raise ValidationError(f"table {name}: index missing IndexName")
            index_hash, index_sort = _key_schema(raw.get("KeySchema"), owner=f"index {index_name}")
            if kind == "LocalSecondaryIndexes" and index_hash != hash_key:
                raise ValidationError(f"LSI partition key must match table partition key: {index_name}")
            indexes.append(
                IndexDefinition(
                    name=index_name,
                    hash_key=index_hash,
                    sort_key=index_sort,
                    projection=_projection_from_request(raw.get("Projection")),
                )
            )

    key_names = {hash_key, sort_key} | {a for index in indexes for a in index.key_attributes}
    missing = sorted(a for a in key_names if a is not None and a not in attribute_types)
    if missing:
        raise ValidationError(
            "One or more parameter values were invalid: Some index key attributes are not defined "
            f"in AttributeDefinitions. Keys: {missing}"
        )
    unused = sorted(set(attribute_types) - key_names)
    if unused:
        raise ValidationError(
            "One or more parameter values were invalid: Number of attributes in KeySchema does not "
            f"exactly match number of attributes defined in AttributeDefinitions (unused: {unused})"
        )

    try:
        metadata = TableMetadata(
            name=name,
            hash_key=hash_key,
            sort_key=sort_key,
            indexes=tuple(indexes),
            ttl_attribute=ttl_attribute,
            attribute_types=attribute_types,
        )
    except ModelDefinitionError as err:
        raise ValidationError(str(err)) from err
    validate_table_metadata(metadata)
    return metadata


def build_create_table_request(
    metadata: TableMetadata,
    *,
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: dict[str, int] | None = None,
) -> dict[str, Any]:
    billing_mode = (billing_mode or "PAY_PER_REQUEST").strip() or "PAY_PER_REQUEST"
    if billing_mode not in {"PAY_PER_REQUEST", "PROVISIONED"}:
        raise ValidationError(f"unsupported billing_mode: {billing_mode}")

    resolved_throughput: dict[str, int] | None = None
    if billing_mode == "PROVISIONED":
        if provisioned_throughput is None:
            raise ValidationError("provisioned_throughput is required when billing_mode=PROVISIONED")
        resolved_throughput = provisioned_throughput

    key_schema = [{"AttributeName": metadata.hash_key, "KeyType": "HASH"}]
    if metadata.sort_key is not None:
        key_schema.append({"AttributeName": metadata.sort_key, "KeyType": "RANGE"})

    attr_types: dict[str, str] = {}
    for name in metadata.key_attributes + tuple(a for i in metadata.indexes for a in i.key_attributes):
        attr_types[name] = metadata.attribute_types.get(name, "S")

    gsis: list[dict[str, Any]] = []
    for idx in metadata.indexes:
        idx_key_schema = [{"AttributeName": idx.hash_key, "KeyType": "HASH"}]
        if idx.sort_key is not None:
            idx_key_schema.append({"AttributeName": idx.sort_key, "KeyType": "RANGE"})

        proj: dict[str, Any] = {"ProjectionType": idx.projection.type}
        if idx.projection.type == "INCLUDE" and idx.projection.fields:
            proj["NonKeyAttributes"] = list(idx.projection.fields)

        gsi: dict[str, Any] = {"IndexName": idx.name, "KeySchema": idx_key_schema, "Projection": proj}
        if resolved_throughput is not None:
            gsi["ProvisionedThroughput"] = dict(resolved_throughput)
        gsis.append(gsi)

    req: dict[str, Any] = {
        "TableName": metadata.name,
        "BillingMode": billing_mode,
        "KeySchema": key_schema,
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": attr_types[name]} for name in sorted(attr_types.keys())
        ],
    }
    if resolved_throughput is not None:
        req["ProvisionedThroughput"] = dict(resolved_throughput)
    if gsis:
        req["GlobalSecondaryIndexes"] = gsis
    return req


def parse_table_document(raw: str) -> list[TableMetadata]:
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValidationError("invalid table document YAML/JSON") from err

    if not isinstance(parsed, dict):
        raise ValidationError("table document must be a map/object")

    version = parsed.get("tables_version")
    if version != "0.1":
        raise ValidationError(f"unsupported tables_version: {version!r}")

    tables = parsed.get("tables")
    if not isinstance(tables, list) or len(tables) == 0:
        raise ValidationError("table document must include tables[]")

    out = [table_metadata_from_dict(entry) for entry in tables]
    names = [metadata.name for metadata in out]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValidationError(f"table document defines {duplicates[0]} more than once")
    return out


def table_metadata_from_dict(raw: Any) -> TableMetadata:
    if not isinstance(raw, dict):
        raise ValidationError("table entry must be a map")
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise ValidationError("table entry missing name")

    indexes_raw = raw.get("indexes") or []
    if not isinstance(indexes_raw, list):
        raise ValidationError(f"table {name}: indexes must be a list")

    indexes: list[IndexDefinition] = []
    for idx in indexes_raw:
        if not isinstance(idx, dict):
            raise ValidationError(f"table {name}: index must be a map")
        proj = idx.get("projection") or {}
        if not isinstance(proj, dict):
            raise ValidationError(f"table {name}: index {idx.get('name')}: projection must be a map")
        proj_fields = proj.get("attributes") or []
        if not isinstance(proj_fields, list) or not all(isinstance(f, str) and f for f in proj_fields):
            raise ValidationError(f"table {name}: index {idx.get('name')}: projection attributes must be strings")
        indexes.append(
            IndexDefinition(
                name=cast(str, idx.get("name") or ""),
                hash_key=cast(str, idx.get("hash_key") or ""),
                sort_key=cast(str | None, idx.get("sort_key")),
                projection=Projection(type=str(proj.get("type") or "ALL"), fields=tuple(proj_fields)),
            )
        )

    attribute_types = raw.get("attribute_types") or {}
    if not isinstance(attribute_types, dict):
        raise ValidationError(f"table {name}: attribute_types must be a map")

    try:
        metadata = TableMetadata(
            name=name,
            hash_key=cast(str, raw.get("hash_key") or ""),
            sort_key=cast(str | None, raw.get("sort_key")),
            indexes=tuple(indexes),
            ttl_attribute=cast(str | None, raw.get("ttl_attribute")),
            attribute_types={str(k): str(v) for k, v in attribute_types.items()},
        )
    except ModelDefinitionError as err:
        raise ValidationError(str(err)) from err
    validate_table_metadata(metadata)
    return metadata


def table_metadata_to_dict(metadata: TableMetadata) -> dict[str, Any]:
    out: dict[str, Any] = {"name": metadata.name, "hash_key": metadata.hash_key}
    if metadata.sort_key is not None:
        out["sort_key"] = metadata.sort_key
    if metadata.ttl_attribute is not None:
        out["ttl_attribute"] = metadata.ttl_attribute
    if metadata.attribute_types:
        out["attribute_types"] = dict(sorted(metadata.attribute_types.items()))
    if metadata.indexes:
        out["indexes"] = []
        for idx in metadata.indexes:
            entry: dict[str, Any] = {"name": idx.name, "hash_key": idx.hash_key}
            if idx.sort_key is not None:
                entry["sort_key"] = idx.sort_key
            entry["projection"] = {"type": idx.projection.type}
            if idx.projection.fields:
                entry["projection"]["attributes"] = list(idx.projection.fields)
            out["indexes"].append(entry)
    return out


def _key_schema(raw: Any, *, owner: str) -> tuple[str, str | None]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{owner}: KeySchema is required")

    hash_key: str | None = None
    sort_key: str | None = None
    for element in raw:
        if not isinstance(element, dict):
            raise ValidationError(f"{owner}: KeySchema entries must be maps")
        name = element.get("AttributeName")
        key_type = element.get("KeyType")
        if not isinstance(name, str) or not name:
            raise ValidationError(f"{owner}: KeySchema entry missing AttributeName")
        if key_type == "HASH" and hash_key is None:
            hash_key = name
        elif key_type == "RANGE" and sort_key is None:
            sort_key = name
        else:
            raise ValidationError(f"{owner}: invalid KeySchema entry for {name}: {key_type!r}")

    if hash_key is None:
        raise ValidationError(f"{owner}: KeySchema must contain a HASH key")
    return hash_key, sort_key


def _projection_from_request(raw: Any) -> Projection:
    if raw is None:
        return Projection.all()
    if not isinstance(raw, dict):
        raise ValidationError("Projection must be a map")
    projection_type = str(raw.get("ProjectionType") or "ALL")
    if projection_type == "INCLUDE":
        return Projection.include(*[str(f) for f in raw.get("NonKeyAttributes") or []])
    if projection_type not in {"ALL", "KEYS_ONLY"}:
        raise ValidationError(f"unsupported ProjectionType: {projection_type}")
    return Projection(type=projection_type)
