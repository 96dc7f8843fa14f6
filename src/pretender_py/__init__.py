from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .capacity import ConsumedCapacity
from .config import EngineConfig, load_config
from .engine import ItemEngine
from .errors import (
    AwsError,
    CancellationReason,
    ConditionFailedError,
    NotFoundError,
    PretenderPyError,
    StoreError,
    TableExistsError,
    TransactionCanceledError,
    ValidationError,
)
from .model import IndexDefinition, ModelDefinitionError, Projection, TableMetadata, gsi, table
from .query import Cursor, SortKeyCondition, decode_cursor, encode_cursor
from .registry import InMemoryTableRegistry, TableRegistry
from .results import (
    Applied,
    BatchGetResult,
    BatchWriteResult,
    ConditionFailed,
    DeleteItemResult,
    GetItemResult,
    Invalid,
    KeysAndAttributes,
    Page,
    PutItemResult,
    QueryResult,
    ScanResult,
    TransactGetResult,
    TransactWriteResult,
    UpdateItemResult,
    WriteOutcome,
    WriteRequest,
)
from .serializer import ItemSerializer
from .streams import ChangeListener, ChangeRecord
from .transaction import (
    TransactConditionCheck,
    TransactDelete,
    TransactGet,
    TransactPut,
    TransactUpdate,
    TransactWriteAction,
)
from .values import (
    AttributeValue,
    Item,
    from_python,
    from_wire,
    item_from_python,
    item_from_wire,
    item_to_python,
    item_to_wire,
    to_python,
    to_wire,
)

if TYPE_CHECKING:
    from .client import PretenderClient
    from .logging_config import JSONFormatter, configure_logging
    from .schema import (
        build_create_table_request,
        build_table_metadata,
        create_table,
        delete_table,
        describe_table,
        ensure_table,
        load_tables,
        parse_table_document,
        update_time_to_live,
    )
    from .sqlite_store import SqliteItemStore
    from .streams import unmarshal_change_image, unmarshal_change_record


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name == "PretenderClient":
        from .client import PretenderClient

        return PretenderClient
    if name == "SqliteItemStore":
        from .sqlite_store import SqliteItemStore

        return SqliteItemStore
    if name in {
        "build_create_table_request",
        "build_table_metadata",
        "create_table",
        "delete_table",
        "describe_table",
        "ensure_table",
        "load_tables",
        "parse_table_document",
        "update_time_to_live",
    }:
        from . import schema

        return getattr(schema, name)
    if name in {"JSONFormatter", "configure_logging"}:
        from . import logging_config

        return getattr(logging_config, name)
    if name in {"unmarshal_change_image", "unmarshal_change_record"}:
        from . import streams

        return getattr(streams, name)
    raise AttributeError(name)


__all__ = [
    "Applied",
    "AttributeValue",
    "AwsError",
    "BatchGetResult",
    "BatchWriteResult",
    "build_create_table_request",
    "build_table_metadata",
    "CancellationReason",
    "ChangeListener",
    "ChangeRecord",
    "ConditionFailed",
    "ConditionFailedError",
    "configure_logging",
    "ConsumedCapacity",
    "create_table",
    "Cursor",
    "decode_cursor",
    "delete_table",
    "DeleteItemResult",
    "describe_table",
    "encode_cursor",
    "EngineConfig",
    "ensure_table",
    "from_python",
    "from_wire",
    "GetItemResult",
    "gsi",
    "IndexDefinition",
    "InMemoryTableRegistry",
    "Invalid",
    "Item",
    "item_from_python",
    "item_from_wire",
    "item_to_python",
    "item_to_wire",
    "ItemEngine",
    "ItemSerializer",
    "JSONFormatter",
    "KeysAndAttributes",
    "load_config",
    "load_tables",
    "ModelDefinitionError",
    "NotFoundError",
    "Page",
    "parse_table_document",
    "PretenderClient",
    "PretenderPyError",
    "Projection",
    "PutItemResult",
    "QueryResult",
    "ScanResult",
    "SortKeyCondition",
    "SqliteItemStore",
    "StoreError",
    "table",
    "TableExistsError",
    "TableMetadata",
    "TableRegistry",
    "to_python",
    "to_wire",
    "TransactConditionCheck",
    "TransactDelete",
    "TransactGet",
    "TransactGetResult",
    "TransactionCanceledError",
    "TransactPut",
    "TransactUpdate",
    "TransactWriteAction",
    "TransactWriteResult",
    "unmarshal_change_image",
    "unmarshal_change_record",
    "update_time_to_live",
    "UpdateItemResult",
    "ValidationError",
    "WriteOutcome",
    "WriteRequest",
    "__repo_version__",
    "__version__",
]
