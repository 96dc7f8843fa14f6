from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from typing import Any

from .aws_errors import to_client_error
from .capacity import ConsumedCapacity
from .config import EngineConfig
from .engine import ItemEngine
from .errors import PretenderPyError, ValidationError
from .registry import InMemoryTableRegistry
from .results import KeysAndAttributes, Page, WriteRequest
from .schema import (
    build_table_metadata,
    create_table,
    delete_table,
    describe_table,
    load_tables,
    update_time_to_live,
)
from .serializer import ItemSerializer
from .sqlite_store import SqliteItemStore
from .store import ItemStore
from .streams import ChangeListener
from .transaction import (
    TransactConditionCheck,
    TransactDelete,
    TransactGet,
    TransactPut,
    TransactUpdate,
    TransactWriteAction,
)
from .values import Item, item_from_wire, item_to_wire

logger = logging.getLogger(__name__)

_EXPRESSION_PARAMS = frozenset({"ExpressionAttributeNames", "ExpressionAttributeValues"})
_SELECT_VALUES = frozenset({None, "ALL_ATTRIBUTES", "ALL_PROJECTED_ATTRIBUTES", "SPECIFIC_ATTRIBUTES", "COUNT"})
_CREATE_TABLE_PARAMS = frozenset(
    {
        "TableName",
        "KeySchema",
        "AttributeDefinitions",
        "GlobalSecondaryIndexes",
        "LocalSecondaryIndexes",
        "BillingMode",
        "ProvisionedThroughput",
        "StreamSpecification",
        "Tags",
    }
)


def _operation[F: Callable[..., dict[str, Any]]](name: str) -> Callable[[F], F]:
    def decorate(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(self: PretenderClient, **request: Any) -> dict[str, Any]:
            try:
                response = fn(self, **request)
            except PretenderPyError as err:
                logger.debug("%s failed: %s", name, err)
                raise to_client_error(err, name) from err
            response["ResponseMetadata"] = {"HTTPStatusCode": 200}
            return response

        return wrapper  # type: ignore[return-value]

    return decorate


class PretenderClient:
    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        store: ItemStore | None = None,
        serializer: ItemSerializer | None = None,
        clock: Callable[[], float] | None = None,
        change_listener: ChangeListener | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store if store is not None else SqliteItemStore(self.config.database_path)
        self.registry = InMemoryTableRegistry()
        load_tables(registry=self.registry, store=self.store)
        self.engine = ItemEngine(
            self.registry,
            self.store,
            serializer=serializer,
            clock=clock,
            change_listener=change_listener,
            config=self.config,
        )

    def __enter__(self) -> PretenderClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self.store.close()

    @_operation("CreateTable")
    def create_table(self, **request: Any) -> dict[str, Any]:
        _check_params("CreateTable", request, _CREATE_TABLE_PARAMS, required=("TableName", "KeySchema"))
        metadata = build_table_metadata(request)
        create_table(metadata, registry=self.registry, store=self.store)
        return {"TableDescription": describe_table(metadata.name, registry=self.registry)}

    @_operation("DeleteTable")
    def delete_table(self, **request: Any) -> dict[str, Any]:
        _check_params("DeleteTable", request, {"TableName"}, required=("TableName",))
        description = describe_table(request["TableName"], registry=self.registry)
        delete_table(request["TableName"], registry=self.registry, store=self.store)
        return {"TableDescription": {**description, "TableStatus": "DELETING"}}

    @_operation("DescribeTable")
    def describe_table(self, **request: Any) -> dict[str, Any]:
        _check_params("DescribeTable", request, {"TableName"}, required=("TableName",))
        return {"Table": describe_table(request["TableName"], registry=self.registry)}

    @_operation("ListTables")
    def list_tables(self, **request: Any) -> dict[str, Any]:
        _check_params("ListTables", request, {"ExclusiveStartTableName", "Limit"})
        names = self.registry.table_names()
        start = request.get("ExclusiveStartTableName")
        if start is not None:
            names = [name for name in names if name > start]
        limit = request.get("Limit", 100)
        if not isinstance(limit, int) or not 1 <= limit <= 100:
            raise ValidationError("Limit must be between 1 and 100")

        response: dict[str, Any] = {"TableNames": names[:limit]}
        if len(names) > limit:
            response["LastEvaluatedTableName"] = names[limit - 1]
        return response

    @_operation("UpdateTimeToLive")
    def update_time_to_live(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "UpdateTimeToLive",
            request,
            {"TableName", "TimeToLiveSpecification"},
            required=("TableName", "TimeToLiveSpecification"),
        )
        spec = request.get("TimeToLiveSpecification")
        if not isinstance(spec, Mapping) or "AttributeName" not in spec or "Enabled" not in spec:
            raise ValidationError("TimeToLiveSpecification requires AttributeName and Enabled")
        update_time_to_live(
            request["TableName"],
            attribute_name=str(spec["AttributeName"]),
            enabled=bool(spec["Enabled"]),
            registry=self.registry,
            store=self.store,
        )
        return {"TimeToLiveSpecification": {"AttributeName": spec["AttributeName"], "Enabled": bool(spec["Enabled"])}}

    @_operation("DescribeTimeToLive")
    def describe_time_to_live(self, **request: Any) -> dict[str, Any]:
        _check_params("DescribeTimeToLive", request, {"TableName"}, required=("TableName",))
        metadata = self.registry.get_table_metadata(request["TableName"])
        if metadata.ttl_attribute is None:
            return {"TimeToLiveDescription": {"TimeToLiveStatus": "DISABLED"}}
        return {
            "TimeToLiveDescription": {"TimeToLiveStatus": "ENABLED", "AttributeName": metadata.ttl_attribute}
        }

    @_operation("PutItem")
    def put_item(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "PutItem",
            request,
            {"TableName", "Item", "ConditionExpression", "ReturnValues", "ReturnConsumedCapacity"}
            | _EXPRESSION_PARAMS,
            required=("TableName", "Item"),
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        result = self.engine.put_item(
            request["TableName"],
            item_from_wire(request["Item"]),
            condition_expression=request.get("ConditionExpression"),
            expression_attribute_names=request.get("ExpressionAttributeNames"),
            expression_attribute_values=_values(request),
            return_values=request.get("ReturnValues", "NONE"),
            return_consumed_capacity=mode,
        )
        return _write_response(result.attributes, result.consumed_capacity, mode)

    @_operation("GetItem")
    def get_item(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "GetItem",
            request,
            {
                "TableName",
                "Key",
                "ConsistentRead",
                "ProjectionExpression",
                "ExpressionAttributeNames",
                "ReturnConsumedCapacity",
            },
            required=("TableName", "Key"),
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        result = self.engine.get_item(
            request["TableName"],
            item_from_wire(request["Key"]),
            consistent_read=bool(request.get("ConsistentRead", False)),
            projection_expression=request.get("ProjectionExpression"),
            expression_attribute_names=request.get("ExpressionAttributeNames"),
            return_consumed_capacity=mode,
        )
        response: dict[str, Any] = {}
        if result.item is not None:
            response["Item"] = item_to_wire(result.item)
        _attach_capacity(response, result.consumed_capacity, mode)
        return response

    @_operation("UpdateItem")
    def update_item(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "UpdateItem",
            request,
            {
                "TableName",
                "Key",
                "UpdateExpression",
                "ConditionExpression",
                "ReturnValues",
                "ReturnConsumedCapacity",
            }
            | _EXPRESSION_PARAMS,
            required=("TableName", "Key", "UpdateExpression"),
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        result = self.engine.update_item(
            request["TableName"],
            item_from_wire(request["Key"]),
            update_expression=request["UpdateExpression"],
            condition_expression=request.get("ConditionExpression"),
            expression_attribute_names=request.get("ExpressionAttributeNames"),
            expression_attribute_values=_values(request),
            return_values=request.get("ReturnValues", "NONE"),
            return_consumed_capacity=mode,
        )
        return _write_response(result.attributes, result.consumed_capacity, mode)

    @_operation("DeleteItem")
    def delete_item(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "DeleteItem",
            request,
            {"TableName", "Key", "ConditionExpression", "ReturnValues", "ReturnConsumedCapacity"}
            | _EXPRESSION_PARAMS,
            required=("TableName", "Key"),
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        result = self.engine.delete_item(
            request["TableName"],
            item_from_wire(request["Key"]),
            condition_expression=request.get("ConditionExpression"),
            expression_attribute_names=request.get("ExpressionAttributeNames"),
            expression_attribute_values=_values(request),
            return_values=request.get("ReturnValues", "NONE"),
            return_consumed_capacity=mode,
        )
        return _write_response(result.attributes, result.consumed_capacity, mode)

    @_operation("Query")
    def query(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "Query",
            request,
            {
                "TableName",
                "IndexName",
                "KeyConditionExpression",
                "FilterExpression",
                "ProjectionExpression",
                "Limit",
                "ExclusiveStartKey",
                "ScanIndexForward",
                "ConsistentRead",
                "Select",
                "ReturnConsumedCapacity",
            }
            | _EXPRESSION_PARAMS,
            required=("TableName", "KeyConditionExpression"),
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        page = self.engine.query(
            request["TableName"],
            key_condition_expression=request["KeyConditionExpression"],
            index_name=request.get("IndexName"),
            filter_expression=request.get("FilterExpression"),
            projection_expression=request.get("ProjectionExpression"),
            expression_attribute_names=request.get("ExpressionAttributeNames"),
            expression_attribute_values=_values(request),
            limit=request.get("Limit"),
            exclusive_start_key=_optional_item(request.get("ExclusiveStartKey")),
            scan_index_forward=bool(request.get("ScanIndexForward", True)),
            consistent_read=bool(request.get("ConsistentRead", False)),
            return_consumed_capacity=mode,
        )
        return _page_response(page, request.get("Select"), mode)

    @_operation("Scan")
    def scan(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "Scan",
            request,
            {
                "TableName",
                "IndexName",
                "FilterExpression",
                "ProjectionExpression",
                "Limit",
                "ExclusiveStartKey",
                "ConsistentRead",
                "Select",
                "ReturnConsumedCapacity",
            }
            | _EXPRESSION_PARAMS,
            required=("TableName",),
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        page = self.engine.scan(
            request["TableName"],
            index_name=request.get("IndexName"),
            filter_expression=request.get("FilterExpression"),
            projection_expression=request.get("ProjectionExpression"),
            expression_attribute_names=request.get("ExpressionAttributeNames"),
            expression_attribute_values=_values(request),
            limit=request.get("Limit"),
            exclusive_start_key=_optional_item(request.get("ExclusiveStartKey")),
            consistent_read=bool(request.get("ConsistentRead", False)),
            return_consumed_capacity=mode,
        )
        return _page_response(page, request.get("Select"), mode)

    @_operation("BatchGetItem")
    def batch_get_item(self, **request: Any) -> dict[str, Any]:
        _check_params("BatchGetItem", request, {"RequestItems", "ReturnConsumedCapacity"}, required=("RequestItems",))
        mode = request.get("ReturnConsumedCapacity", "NONE")
        request_items: dict[str, KeysAndAttributes] = {}
        for table_name, raw in _mapping(request["RequestItems"], "RequestItems").items():
            raw = _mapping(raw, f"RequestItems.{table_name}")
            request_items[table_name] = KeysAndAttributes(
                keys=[item_from_wire(key) for key in raw.get("Keys") or []],
                projection_expression=raw.get("ProjectionExpression"),
                expression_attribute_names=raw.get("ExpressionAttributeNames"),
                consistent_read=bool(raw.get("ConsistentRead", False)),
            )

        result = self.engine.batch_get_item(request_items, return_consumed_capacity=mode)
        response: dict[str, Any] = {
            "Responses": {
                table_name: [item_to_wire(item) for item in items] for table_name, items in result.responses.items()
            },
            "UnprocessedKeys": {
                table_name: _keys_and_attributes_to_wire(keys) for table_name, keys in result.unprocessed_keys.items()
            },
        }
        _attach_capacity_list(response, result.consumed_capacity, mode)
        return response

    @_operation("BatchWriteItem")
    def batch_write_item(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "BatchWriteItem", request, {"RequestItems", "ReturnConsumedCapacity"}, required=("RequestItems",)
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        request_items: dict[str, list[WriteRequest]] = {}
        for table_name, raw in _mapping(request["RequestItems"], "RequestItems").items():
            request_items[table_name] = [_write_request(entry) for entry in raw]

        result = self.engine.batch_write_item(request_items, return_consumed_capacity=mode)
        response: dict[str, Any] = {
            "UnprocessedItems": {
                table_name: [_write_request_to_wire(entry) for entry in entries]
                for table_name, entries in result.unprocessed_items.items()
            }
        }
        _attach_capacity_list(response, result.consumed_capacity, mode)
        return response

    @_operation("TransactGetItems")
    def transact_get_items(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "TransactGetItems", request, {"TransactItems", "ReturnConsumedCapacity"}, required=("TransactItems",)
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        gets: list[TransactGet] = []
        for entry in request["TransactItems"]:
            raw = _mapping(_mapping(entry, "TransactItems[]").get("Get"), "TransactItems[].Get")
            if not isinstance(raw.get("TableName"), str):
                raise ValidationError("TransactItems[].Get: TableName is required")
            if raw.get("Key") is None:
                raise ValidationError("TransactItems[].Get: Key is required")
            gets.append(
                TransactGet(
                    table_name=raw["TableName"],
                    key=item_from_wire(raw["Key"]),
                    projection_expression=raw.get("ProjectionExpression"),
                    expression_attribute_names=raw.get("ExpressionAttributeNames"),
                )
            )

        result = self.engine.transact_get_items(gets, return_consumed_capacity=mode)
        response: dict[str, Any] = {
            "Responses": [{"Item": item_to_wire(item)} if item is not None else {} for item in result.items]
        }
        _attach_capacity_list(response, result.consumed_capacity, mode)
        return response

    @_operation("TransactWriteItems")
    def transact_write_items(self, **request: Any) -> dict[str, Any]:
        _check_params(
            "TransactWriteItems",
            request,
            {"TransactItems", "ReturnConsumedCapacity", "ClientRequestToken"},
            required=("TransactItems",),
        )
        mode = request.get("ReturnConsumedCapacity", "NONE")
        actions = [_transact_write_action(entry) for entry in request["TransactItems"]]
        result = self.engine.transact_write_items(actions, return_consumed_capacity=mode)
        response: dict[str, Any] = {}
        _attach_capacity_list(response, result.consumed_capacity, mode)
        return response


def _check_params(
    operation: str, request: Mapping[str, Any], allowed: set[str] | frozenset[str], *, required: tuple[str, ...] = ()
) -> None:
    unknown = sorted(set(request) - set(allowed))
    if unknown:
        raise ValidationError(f"{operation}: unsupported parameter {unknown[0]}")
    for name in required:
        if request.get(name) is None:
            raise ValidationError(f"{operation}: missing required parameter {name}")


def _mapping(raw: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{what} must be a map")
    return raw


def _values(request: Mapping[str, Any]) -> Item | None:
    return _optional_item(request.get("ExpressionAttributeValues"))


def _optional_item(raw: Any) -> Item | None:
    return item_from_wire(raw) if raw is not None else None


def _write_request(raw: Any) -> WriteRequest:
    entry = _mapping(raw, "WriteRequest")
    if "PutRequest" in entry and "DeleteRequest" not in entry:
        return WriteRequest.put(item_from_wire(_mapping(entry["PutRequest"], "PutRequest").get("Item")))
    if "DeleteRequest" in entry and "PutRequest" not in entry:
        return WriteRequest.delete(item_from_wire(_mapping(entry["DeleteRequest"], "DeleteRequest").get("Key")))
    raise ValidationError("WriteRequest must contain exactly one of PutRequest or DeleteRequest")


def _write_request_to_wire(request: WriteRequest) -> dict[str, Any]:
    if request.item is not None:
        return {"PutRequest": {"Item": item_to_wire(request.item)}}
    return {"DeleteRequest": {"Key": item_to_wire(request.key or {})}}


def _keys_and_attributes_to_wire(request: KeysAndAttributes) -> dict[str, Any]:
    wire: dict[str, Any] = {"Keys": [item_to_wire(key) for key in request.keys]}
    if request.projection_expression is not None:
        wire["ProjectionExpression"] = request.projection_expression
    if request.expression_attribute_names:
        wire["ExpressionAttributeNames"] = dict(request.expression_attribute_names)
    if request.consistent_read:
        wire["ConsistentRead"] = True
    return wire


def _transact_write_action(raw: Any) -> TransactWriteAction:
    entry = _mapping(raw, "TransactItems[]")
    if len(entry) != 1:
        raise ValidationError("TransactItems entries must contain exactly one action")
    (kind, body), *_ = entry.items()
    body = _mapping(body, f"TransactItems[].{kind}")
    common: dict[str, Any] = {
        "table_name": body.get("TableName"),
        "condition_expression": body.get("ConditionExpression"),
        "expression_attribute_names": body.get("ExpressionAttributeNames"),
        "expression_attribute_values": _values(body),
    }
    if not isinstance(common["table_name"], str):
        raise ValidationError(f"TransactItems[].{kind}: TableName is required")

    match kind:
        case "Put":
            return TransactPut(item=item_from_wire(body.get("Item")), **common)
        case "Update":
            return TransactUpdate(
                key=item_from_wire(body.get("Key")), update_expression=body.get("UpdateExpression") or "", **common
            )
        case "Delete":
            return TransactDelete(key=item_from_wire(body.get("Key")), **common)
        case "ConditionCheck":
            if not body.get("ConditionExpression"):
                raise ValidationError("TransactItems[].ConditionCheck: ConditionExpression is required")
            return TransactConditionCheck(key=item_from_wire(body.get("Key")), **common)
    raise ValidationError(f"unsupported transaction action: {kind}")


def _write_response(attributes: Item | None, capacity: ConsumedCapacity | None, mode: str) -> dict[str, Any]:
    response: dict[str, Any] = {}
    if attributes:
        response["Attributes"] = item_to_wire(attributes)
    _attach_capacity(response, capacity, mode)
    return response


def _page_response(page: Page, select: str | None, mode: str) -> dict[str, Any]:
    response: dict[str, Any] = {"Count": page.count, "ScannedCount": page.scanned_count}
    if select not in _SELECT_VALUES:
        raise ValidationError(f"unsupported Select value: {select}")
    if select != "COUNT":
        response["Items"] = [item_to_wire(item) for item in page.items]
    if page.last_evaluated_key is not None:
        response["LastEvaluatedKey"] = item_to_wire(page.last_evaluated_key)
    _attach_capacity(response, page.consumed_capacity, mode)
    return response


def _attach_capacity(response: dict[str, Any], capacity: ConsumedCapacity | None, mode: str) -> None:
    if capacity is not None:
        response["ConsumedCapacity"] = capacity.to_wire(include_indexes=mode == "INDEXES")


def _attach_capacity_list(response: dict[str, Any], capacity: list[ConsumedCapacity], mode: str) -> None:
    if capacity:
        response["ConsumedCapacity"] = [c.to_wire(include_indexes=mode == "INDEXES") for c in capacity]
