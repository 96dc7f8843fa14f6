from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from .capacity import CapacityTracker, read_capacity_units, write_capacity_units
from .config import EngineConfig
from .errors import (
    CancellationReason,
    ConditionFailedError,
    NotFoundError,
    TransactionCanceledError,
    ValidationError,
)
from .expression import (
    Condition,
    ExpressionContext,
    Path,
    apply_projection,
    evaluate_condition,
    parse_condition,
    parse_projection,
)
from .indexes import base_key, index_row, plan_index_changes
from .key_condition import parse_key_condition
from .keys import encode_key_value
from .model import IndexDefinition, TableMetadata
from .query import decode_cursor, encode_cursor
from .registry import TableRegistry
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
    TransactGetResult,
    TransactWriteResult,
    UpdateItemResult,
    WriteOutcome,
    WriteRequest,
)
from .serializer import ItemSerializer
from .store import ItemStore, StoredRow, StoreSession
from .streams import ChangeListener, build_change_record, is_expired
from .transaction import (
    TransactConditionCheck,
    TransactDelete,
    TransactGet,
    TransactPut,
    TransactUpdate,
    TransactWriteAction,
)
from .update_expression import UpdateExpression, apply_update, parse_update
from .validation import (
    validate_batch_get_size,
    validate_batch_write_size,
    validate_expression,
    validate_item_attributes,
    validate_item_size,
    validate_transaction_size,
)
from .values import AttributeValue, Item

logger = logging.getLogger(__name__)

_CONDITION_FAILED = "The conditional request failed"
_TRANSACTION_CANCELED = "Transaction cancelled, please refer cancellation reasons for specific reasons"
_PUT_RETURN_VALUES = frozenset({"NONE", "ALL_OLD"})
_UPDATE_RETURN_VALUES = frozenset({"NONE", "ALL_OLD", "ALL_NEW", "UPDATED_OLD", "UPDATED_NEW"})
_DELETE_RETURN_VALUES = frozenset({"NONE", "ALL_OLD"})

type Names = Mapping[str, str] | None
type Values = Mapping[str, AttributeValue] | None


@dataclass(frozen=True)
class _PlannedWrite:
    metadata: TableMetadata
    key: Item
    old: Item | None
    new: Item | None


@dataclass(frozen=True)
class _PreparedAction:
    action: TransactWriteAction
    metadata: TableMetadata
    key: Item
    condition: Condition | None
    update: UpdateExpression | None = None


class ItemEngine:
    def __init__(
        self,
        registry: TableRegistry,
        store: ItemStore,
        *,
        serializer: ItemSerializer | None = None,
        clock: Callable[[], float] | None = None,
        change_listener: ChangeListener | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._serializer = serializer or ItemSerializer()
        self._clock = clock or time.time
        self._change_listener = change_listener
        self._config = config or EngineConfig()

    @property
    def serializer(self) -> ItemSerializer:
        return self._serializer

    def put_item(
        self,
        table_name: str,
        item: Mapping[str, AttributeValue],
        *,
        condition_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        return_values: str = "NONE",
        return_consumed_capacity: str = "NONE",
    ) -> PutItemResult:
        outcome = self._put(
            table_name,
            item,
            condition_expression,
            expression_attribute_names,
            expression_attribute_values,
            return_values,
            return_consumed_capacity,
        )
        return _raise_on_condition_failure(outcome)

    def try_put_item(
        self,
        table_name: str,
        item: Mapping[str, AttributeValue],
        *,
        condition_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        return_values: str = "NONE",
        return_consumed_capacity: str = "NONE",
    ) -> WriteOutcome[PutItemResult]:
        try:
            outcome = self._put(
                table_name,
                item,
                condition_expression,
                expression_attribute_names,
                expression_attribute_values,
                return_values,
                return_consumed_capacity,
            )
        except ValidationError as err:
            return Invalid(str(err))
        return _as_outcome(outcome)

    def get_item(
        self,
        table_name: str,
        key: Mapping[str, AttributeValue],
        *,
        consistent_read: bool = False,
        projection_expression: str | None = None,
        expression_attribute_names: Names = None,
        return_consumed_capacity: str = "NONE",
    ) -> GetItemResult:
        logger.debug("get_item table=%s", table_name)
        metadata = self._registry.get_table_metadata(table_name)
        resolved_key = metadata.extract_key(key)
        projection = self._projection(projection_expression, expression_attribute_names)
        tracker = CapacityTracker(return_consumed_capacity)

        with self._store.transaction() as session:
            item, size = self._load(session, metadata, resolved_key)
            if item is not None and is_expired(item, metadata.ttl_attribute, self._clock()):
                logger.debug("get_item table=%s: deleting expired item", table_name)
                self._apply_write(session, metadata, resolved_key, item, None)
                item = None

        tracker.read(table_name, read_capacity_units(size if item is not None else 0))
        if item is not None and projection:
            item = apply_projection(item, projection)
        return GetItemResult(item=item, consumed_capacity=tracker.consumed_for(table_name))

    def update_item(
        self,
        table_name: str,
        key: Mapping[str, AttributeValue],
        *,
        update_expression: str,
        condition_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        return_values: str = "NONE",
        return_consumed_capacity: str = "NONE",
    ) -> UpdateItemResult:
        outcome = self._update(
            table_name,
            key,
            update_expression,
            condition_expression,
            expression_attribute_names,
            expression_attribute_values,
            return_values,
            return_consumed_capacity,
        )
        return _raise_on_condition_failure(outcome)

    def try_update_item(
        self,
        table_name: str,
        key: Mapping[str, AttributeValue],
        *,
        update_expression: str,
        condition_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        return_values: str = "NONE",
        return_consumed_capacity: str = "NONE",
    ) -> WriteOutcome[UpdateItemResult]:
        try:
            outcome = self._update(
                table_name,
                key,
                update_expression,
                condition_expression,
                expression_attribute_names,
                expression_attribute_values,
                return_values,
                return_consumed_capacity,
            )
        except ValidationError as err:
            return Invalid(str(err))
        return _as_outcome(outcome)

    def delete_item(
        self,
        table_name: str,
        key: Mapping[str, AttributeValue],
        *,
        condition_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        return_values: str = "NONE",
        return_consumed_capacity: str = "NONE",
    ) -> DeleteItemResult:
        outcome = self._delete(
            table_name,
            key,
            condition_expression,
            expression_attribute_names,
            expression_attribute_values,
            return_values,
            return_consumed_capacity,
        )
        return _raise_on_condition_failure(outcome)

    def try_delete_item(
        self,
        table_name: str,
        key: Mapping[str, AttributeValue],
        *,
        condition_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        return_values: str = "NONE",
        return_consumed_capacity: str = "NONE",
    ) -> WriteOutcome[DeleteItemResult]:
        try:
            outcome = self._delete(
                table_name,
                key,
                condition_expression,
                expression_attribute_names,
                expression_attribute_values,
                return_values,
                return_consumed_capacity,
            )
        except ValidationError as err:
            return Invalid(str(err))
        return _as_outcome(outcome)

    def query(
        self,
        table_name: str,
        *,
        key_condition_expression: str,
        index_name: str | None = None,
        filter_expression: str | None = None,
        projection_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        limit: int | None = None,
        exclusive_start_key: Mapping[str, AttributeValue] | None = None,
        cursor: str | None = None,
        scan_index_forward: bool = True,
        consistent_read: bool = False,
        return_consumed_capacity: str = "NONE",
    ) -> Page:
        logger.debug("query table=%s index=%s", table_name, index_name)
        metadata = self._registry.get_table_metadata(table_name)
        index = _index(metadata, index_name)
        page_size = self._page_size(limit)

        validate_expression(key_condition_expression, kind="KeyConditionExpression")
        hash_key = index.hash_key if index is not None else metadata.hash_key
        sort_key = index.sort_key if index is not None else metadata.sort_key
        key_condition = parse_key_condition(
            self._context(key_condition_expression, expression_attribute_names, expression_attribute_values),
            hash_key=hash_key,
            sort_key=sort_key,
        )
        metadata.check_key_type(hash_key, key_condition.hash_value)
        if sort_key is not None and key_condition.sort is not None:
            for value in key_condition.sort.values:
                metadata.check_key_type(sort_key, value)

        filter_condition = self._condition(
            filter_expression, expression_attribute_names, expression_attribute_values, kind="FilterExpression"
        )
        projection = self._projection(projection_expression, expression_attribute_names)
        direction = "ASC" if scan_index_forward else "DESC"
        start_key = self._start_key(exclusive_start_key, cursor, index_name=index_name, sort=direction)

        hash_bytes = encode_key_value(key_condition.hash_value)
        exclusive: bytes | None = None
        if start_key is not None:
            start_hash, exclusive = self._start_position(metadata, index, start_key)
            if start_hash != hash_bytes:
                raise ValidationError("The provided starting key is invalid: it does not match the key condition")

        with self._store.transaction() as session:
            rows = session.query(
                table_name,
                hash_bytes,
                key_condition.sort_range(),
                limit=page_size + 1,
                exclusive_start=exclusive,
                descending=not scan_index_forward,
                index=index_name,
            )

        return self._page(
            metadata,
            index,
            rows,
            page_size=page_size,
            filter_condition=filter_condition,
            projection=projection,
            tracker=CapacityTracker(return_consumed_capacity),
            sort=direction,
        )

    def scan(
        self,
        table_name: str,
        *,
        index_name: str | None = None,
        filter_expression: str | None = None,
        projection_expression: str | None = None,
        expression_attribute_names: Names = None,
        expression_attribute_values: Values = None,
        limit: int | None = None,
        exclusive_start_key: Mapping[str, AttributeValue] | None = None,
        cursor: str | None = None,
        consistent_read: bool = False,
        return_consumed_capacity: str = "NONE",
    ) -> Page:
        logger.debug("scan table=%s index=%s", table_name, index_name)
        metadata = self._registry.get_table_metadata(table_name)
        index = _index(metadata, index_name)
        page_size = self._page_size(limit)

        filter_condition = self._condition(
            filter_expression, expression_attribute_names, expression_attribute_values, kind="FilterExpression"
        )
        projection = self._projection(projection_expression, expression_attribute_names)
        start_key = self._start_key(exclusive_start_key, cursor, index_name=index_name, sort=None)
        exclusive = self._start_position(metadata, index, start_key) if start_key is not None else None

        with self._store.transaction() as session:
            rows = session.scan(table_name, limit=page_size + 1, exclusive_start=exclusive, index=index_name)

        return self._page(
            metadata,
            index,
            rows,
            page_size=page_size,
            filter_condition=filter_condition,
            projection=projection,
            tracker=CapacityTracker(return_consumed_capacity),
            sort=None,
        )

    def batch_get_item(
        self,
        request_items: Mapping[str, KeysAndAttributes],
        *,
        return_consumed_capacity: str = "NONE",
    ) -> BatchGetResult:
        total = sum(len(request.keys) for request in request_items.values())
        logger.debug("batch_get_item tables=%d keys=%d", len(request_items), total)
        if total == 0:
            raise ValidationError("BatchGetItem request must contain at least one key")
        validate_batch_get_size(total, limit=self._config.max_batch_get_keys)
        tracker = CapacityTracker(return_consumed_capacity)

        plans: list[tuple[TableMetadata, list[Item], tuple[Path, ...]]] = []
        unprocessed: dict[str, KeysAndAttributes] = {}
        for table_name, request in request_items.items():
            try:
                metadata = self._registry.get_table_metadata(table_name)
            except NotFoundError:
                logger.warning("batch_get_item: table %s not found; keys left unprocessed", table_name)
                unprocessed[table_name] = request
                continue
            keys = [metadata.extract_key(key) for key in request.keys]
            _reject_duplicate_keys(metadata, keys, "Provided list of item keys contains duplicates")
            projection = self._projection(request.projection_expression, request.expression_attribute_names)
            plans.append((metadata, keys, projection))

        responses: dict[str, list[Item]] = {}
        now = self._clock()
        with self._store.transaction() as session:
            for metadata, keys, projection in plans:
                found: list[Item] = []
                for key in keys:
                    item, size = self._load(session, metadata, key)
                    tracker.read(metadata.name, read_capacity_units(size if item is not None else 0))
                    if item is None or is_expired(item, metadata.ttl_attribute, now):
                        continue
                    found.append(apply_projection(item, projection) if projection else item)
                responses[metadata.name] = found

        return BatchGetResult(
            responses=responses, unprocessed_keys=unprocessed, consumed_capacity=tracker.consumed()
        )

    def batch_write_item(
        self,
        request_items: Mapping[str, Sequence[WriteRequest]],
        *,
        return_consumed_capacity: str = "NONE",
    ) -> BatchWriteResult:
        total = sum(len(requests) for requests in request_items.values())
        logger.debug("batch_write_item tables=%d requests=%d", len(request_items), total)
        if total == 0:
            raise ValidationError("BatchWriteItem request must contain at least one request")
        validate_batch_write_size(total, limit=self._config.max_batch_write_requests)
        tracker = CapacityTracker(return_consumed_capacity)

        unprocessed: dict[str, list[WriteRequest]] = {}
        for table_name, requests in request_items.items():
            try:
                metadata = self._registry.get_table_metadata(table_name)
            except NotFoundError:
                logger.warning("batch_write_item: table %s not found; %d requests unprocessed", table_name, len(requests))
                unprocessed[table_name] = list(requests)
                continue

            for request in requests:
                try:
                    self._batch_write_one(metadata, request, tracker)
                except ValidationError as err:
                    logger.warning("batch_write_item: request on %s unprocessed: %s", table_name, err)
                    unprocessed.setdefault(table_name, []).append(request)

        return BatchWriteResult(unprocessed_items=unprocessed, consumed_capacity=tracker.consumed())

    def transact_get_items(
        self,
        items: Sequence[TransactGet],
        *,
        return_consumed_capacity: str = "NONE",
    ) -> TransactGetResult:
        logger.debug("transact_get_items count=%d", len(items))
        validate_transaction_size(len(items), limit=self._config.max_transaction_items)
        tracker = CapacityTracker(return_consumed_capacity, multiplier=2)

        plans: list[tuple[TableMetadata, Item, tuple[Path, ...]]] = []
        for get in items:
            metadata = self._registry.get_table_metadata(get.table_name)
            key = metadata.extract_key(get.key)
            plans.append((metadata, key, self._projection(get.projection_expression, get.expression_attribute_names)))

        results: list[Item | None] = []
        now = self._clock()
        with self._store.transaction() as session:
            for metadata, key, projection in plans:
                item, size = self._load(session, metadata, key)
                tracker.read(metadata.name, read_capacity_units(size if item is not None else 0))
                if item is None or is_expired(item, metadata.ttl_attribute, now):
                    results.append(None)
                    continue
                results.append(apply_projection(item, projection) if projection else item)

        return TransactGetResult(items=results, consumed_capacity=tracker.consumed())

    def transact_write_items(
        self,
        items: Sequence[TransactWriteAction],
        *,
        return_consumed_capacity: str = "NONE",
    ) -> TransactWriteResult:
        logger.debug("transact_write_items count=%d", len(items))
        validate_transaction_size(len(items), limit=self._config.max_transaction_items)
        tracker = CapacityTracker(return_consumed_capacity, multiplier=2)

        prepared: list[_PreparedAction | CancellationReason] = [self._prepare(action) for action in items]
        targets: set[tuple[str, bytes, bytes]] = set()
        for entry in prepared:
            if isinstance(entry, _PreparedAction):
                target = (entry.metadata.name, *base_key(entry.metadata, entry.key))
                if target in targets:
                    raise ValidationError("Transaction request cannot include multiple operations on one item")
                targets.add(target)
        if any(isinstance(entry, CancellationReason) for entry in prepared):
            raise TransactionCanceledError(
                message=_TRANSACTION_CANCELED,
                reasons=tuple(
                    entry if isinstance(entry, CancellationReason) else CancellationReason("None")
                    for entry in prepared
                ),
            )

        with self._store.transaction() as session:
            reasons: list[CancellationReason] = []
            writes: list[_PlannedWrite] = []
            for entry in (e for e in prepared if isinstance(e, _PreparedAction)):
                try:
                    write = self._plan_transact_write(session, entry)
                except ConditionFailedError as err:
                    reasons.append(CancellationReason("ConditionalCheckFailed", str(err)))
                    continue
                except ValidationError as err:
                    reasons.append(CancellationReason("ValidationError", str(err)))
                    continue
                reasons.append(CancellationReason("None"))
                if write is not None:
                    writes.append(write)

            if any(reason.code != "None" for reason in reasons):
                raise TransactionCanceledError(message=_TRANSACTION_CANCELED, reasons=tuple(reasons))

            for write in writes:
                self._apply_write(session, write.metadata, write.key, write.old, write.new, tracker)

        return TransactWriteResult(consumed_capacity=tracker.consumed())

    def _put(
        self,
        table_name: str,
        item: Mapping[str, AttributeValue],
        condition_expression: str | None,
        names: Names,
        values: Values,
        return_values: str,
        return_consumed_capacity: str,
    ) -> PutItemResult | ConditionFailed:
        logger.debug("put_item table=%s", table_name)
        metadata = self._registry.get_table_metadata(table_name)
        return_values = _return_values(return_values, _PUT_RETURN_VALUES, "PutItem")
        tracker = CapacityTracker(return_consumed_capacity)
        new_item = dict(item)
        self._validate_item(metadata, new_item)
        condition = self._condition(condition_expression, names, values)
        key = metadata.key_of(new_item)

        with self._store.transaction() as session:
            old, _ = self._load(session, metadata, key)
            if condition is not None and not evaluate_condition(condition, old):
                return ConditionFailed(_CONDITION_FAILED)
            self._apply_write(session, metadata, key, old, new_item, tracker)

        return PutItemResult(
            attributes=old if return_values == "ALL_OLD" else None,
            consumed_capacity=tracker.consumed_for(table_name),
        )

    def _update(
        self,
        table_name: str,
        key: Mapping[str, AttributeValue],
        update_expression: str,
        condition_expression: str | None,
        names: Names,
        values: Values,
        return_values: str,
        return_consumed_capacity: str,
    ) -> UpdateItemResult | ConditionFailed:
        logger.debug("update_item table=%s", table_name)
        metadata = self._registry.get_table_metadata(table_name)
        return_values = _return_values(return_values, _UPDATE_RETURN_VALUES, "UpdateItem")
        resolved_key = metadata.extract_key(key)
        validate_expression(update_expression, kind="UpdateExpression")
        update = parse_update(self._context(update_expression, names, values))
        condition = self._condition(condition_expression, names, values)
        tracker = CapacityTracker(return_consumed_capacity)

        with self._store.transaction() as session:
            old, _ = self._load(session, metadata, resolved_key)
            if condition is not None and not evaluate_condition(condition, old):
                return ConditionFailed(_CONDITION_FAILED)
            new = apply_update(old if old is not None else resolved_key, update, key_attributes=metadata.key_attributes)
            self._validate_item(metadata, new)
            self._apply_write(session, metadata, resolved_key, old, new, tracker)

        attributes: Item | None = None
        match return_values:
            case "ALL_OLD":
                attributes = old
            case "ALL_NEW":
                attributes = new
            case "UPDATED_OLD":
                attributes = apply_projection(old, update.paths) if old is not None else None
            case "UPDATED_NEW":
                attributes = apply_projection(new, update.paths)
        return UpdateItemResult(attributes=attributes or None, consumed_capacity=tracker.consumed_for(table_name))

    def _delete(
        self,
        table_name: str,
        key: Mapping[str, AttributeValue],
        condition_expression: str | None,
        names: Names,
        values: Values,
        return_values: str,
        return_consumed_capacity: str,
    ) -> DeleteItemResult | ConditionFailed:
        logger.debug("delete_item table=%s", table_name)
        metadata = self._registry.get_table_metadata(table_name)
        return_values = _return_values(return_values, _DELETE_RETURN_VALUES, "DeleteItem")
        resolved_key = metadata.extract_key(key)
        condition = self._condition(condition_expression, names, values)
        tracker = CapacityTracker(return_consumed_capacity)

        with self._store.transaction() as session:
            old, _ = self._load(session, metadata, resolved_key)
            if condition is not None and not evaluate_condition(condition, old):
                return ConditionFailed(_CONDITION_FAILED)
            self._apply_write(session, metadata, resolved_key, old, None, tracker)

        return DeleteItemResult(
            attributes=old if return_values == "ALL_OLD" else None,
            consumed_capacity=tracker.consumed_for(table_name),
        )

    def _batch_write_one(self, metadata: TableMetadata, request: WriteRequest, tracker: CapacityTracker) -> None:
        if request.item is not None:
            new: Item | None = dict(request.item)
            self._validate_item(metadata, new)
            key = metadata.key_of(new)
        elif request.key is not None:
            new = None
            key = metadata.extract_key(request.key)
        else:
            raise ValidationError("WriteRequest must hold either a put item or a delete key")

        with self._store.transaction() as session:
            old, _ = self._load(session, metadata, key)
            self._apply_write(session, metadata, key, old, new, tracker)

    def _prepare(self, action: TransactWriteAction) -> _PreparedAction | CancellationReason:
        try:
            metadata = self._registry.get_table_metadata(action.table_name)
        except NotFoundError as err:
            return CancellationReason("ResourceNotFound", str(err))

        names = action.expression_attribute_names
        values = action.expression_attribute_values
        try:
            if isinstance(action, TransactPut):
                item = dict(action.item)
                self._validate_item(metadata, item)
                key = metadata.key_of(item)
                update = None
            elif isinstance(action, TransactUpdate):
                key = metadata.extract_key(action.key)
                validate_expression(action.update_expression, kind="UpdateExpression")
                update = parse_update(self._context(action.update_expression, names, values))
            elif isinstance(action, (TransactDelete, TransactConditionCheck)):
                key = metadata.extract_key(action.key)
                update = None
            else:
                raise ValidationError(f"unsupported transaction action: {type(action).__name__}")
            condition = self._condition(action.condition_expression, names, values)
        except ValidationError as err:
            return CancellationReason("ValidationError", str(err))

        return _PreparedAction(action=action, metadata=metadata, key=key, condition=condition, update=update)

    def _plan_transact_write(self, session: StoreSession, prepared: _PreparedAction) -> _PlannedWrite | None:
        metadata = prepared.metadata
        old, _ = self._load(session, metadata, prepared.key)
        if prepared.condition is not None and not evaluate_condition(prepared.condition, old):
            raise ConditionFailedError(_CONDITION_FAILED)

        action = prepared.action
        if isinstance(action, TransactPut):
            return _PlannedWrite(metadata, prepared.key, old, dict(action.item))
        if isinstance(action, TransactDelete):
            return _PlannedWrite(metadata, prepared.key, old, None)
        if isinstance(action, TransactUpdate) and prepared.update is not None:
            new = apply_update(
                old if old is not None else prepared.key, prepared.update, key_attributes=metadata.key_attributes
            )
            self._validate_item(metadata, new)
            return _PlannedWrite(metadata, prepared.key, old, new)
        return None

    def _apply_write(
        self,
        session: StoreSession,
        metadata: TableMetadata,
        key: Item,
        old: Item | None,
        new: Item | None,
        tracker: CapacityTracker | None = None,
    ) -> None:
        old_size = self._serializer.size(old) if old is not None else 0
        if old is None and new is None:
            if tracker is not None:
                tracker.write(metadata.name, write_capacity_units(0))
            return

        hash_key, sort_key = base_key(metadata, key)
        if new is None:
            session.delete(metadata.name, hash_key, sort_key)
            new_size = 0
        else:
            document = self._serializer.dumps(new)
            session.put(metadata.name, hash_key, sort_key, document)
            new_size = len(document.encode("utf-8"))

        index_units: dict[str, int] = {}
        changes = plan_index_changes(metadata, old, new)
        for row_key in changes.deletes:
            session.delete(metadata.name, row_key.hash_key, row_key.sort_key, index=row_key.index_name)
            index_units[row_key.index_name] = index_units.get(row_key.index_name, 0) + 1
        for row in changes.puts:
            document = self._serializer.dumps(row.item)
            session.put(metadata.name, row.hash_key, row.sort_key, document, index=row.index_name)
            index_units[row.index_name] = index_units.get(row.index_name, 0) + write_capacity_units(
                len(document.encode("utf-8"))
            )

        if self._change_listener is not None:
            record = build_change_record(metadata.name, key, old, new)
            if record is not None:
                self._change_listener.on_change(session, record)

        if tracker is not None:
            tracker.write(metadata.name, write_capacity_units(max(old_size, new_size)), index_units=index_units)

    def _load(self, session: StoreSession, metadata: TableMetadata, key: Item) -> tuple[Item | None, int]:
        hash_key, sort_key = base_key(metadata, key)
        document = session.get(metadata.name, hash_key, sort_key)
        if document is None:
            return None, 0
        return self._serializer.loads(document), len(document.encode("utf-8"))

    def _page(
        self,
        metadata: TableMetadata,
        index: IndexDefinition | None,
        rows: list[StoredRow],
        *,
        page_size: int,
        filter_condition: Condition | None,
        projection: tuple[Path, ...],
        tracker: CapacityTracker,
        sort: str | None,
    ) -> Page:
        has_more = len(rows) > page_size
        rows = rows[:page_size]
        now = self._clock()

        items: list[Item] = []
        last_item: Item | None = None
        for row in rows:
            item = self._serializer.loads(row.document)
            last_item = item
            tracker.read(
                metadata.name,
                read_capacity_units(len(row.document.encode("utf-8"))),
                index_name=index.name if index is not None else None,
            )
            if is_expired(item, metadata.ttl_attribute, now):
                continue
            if filter_condition is not None and not evaluate_condition(filter_condition, item):
                continue
            items.append(apply_projection(item, projection) if projection else item)
        if not rows:
            tracker.read(metadata.name, read_capacity_units(0), index_name=index.name if index is not None else None)

        last_key: Item | None = None
        cursor: str | None = None
        if has_more and last_item is not None:
            last_key = _evaluated_key(metadata, index, last_item)
            cursor = encode_cursor(last_key, index=index.name if index is not None else None, sort=sort)

        return Page(
            items=items,
            count=len(items),
            scanned_count=len(rows),
            last_evaluated_key=last_key,
            cursor=cursor,
            consumed_capacity=tracker.consumed_for(metadata.name),
        )

    def _start_key(
        self,
        exclusive_start_key: Mapping[str, AttributeValue] | None,
        cursor: str | None,
        *,
        index_name: str | None,
        sort: str | None,
    ) -> Item | None:
        if exclusive_start_key is not None and cursor is not None:
            raise ValidationError("exclusive_start_key and cursor are mutually exclusive")
        if cursor is None:
            return dict(exclusive_start_key) if exclusive_start_key else None

        try:
            decoded = decode_cursor(cursor)
        except ValueError as err:
            raise ValidationError("invalid cursor") from err
        if decoded.index != index_name:
            raise ValidationError("cursor index does not match request")
        if sort is not None and decoded.sort is not None and decoded.sort != sort:
            raise ValidationError("cursor sort does not match query")
        return decoded.last_key

    def _start_position(
        self, metadata: TableMetadata, index: IndexDefinition | None, start_key: Item
    ) -> tuple[bytes, bytes]:
        if index is None:
            try:
                return base_key(metadata, metadata.extract_key(start_key))
            except ValidationError as err:
                raise ValidationError(f"The provided starting key is invalid: {err}") from err

        required = set(metadata.key_attributes) | set(index.key_attributes)
        missing = sorted(required - set(start_key))
        if missing:
            raise ValidationError(f"The provided starting key is invalid: missing {missing[0]}")
        metadata.extract_key(metadata.key_of(start_key))
        row = index_row(metadata, index, start_key)
        if row is None:
            raise ValidationError("The provided starting key is invalid: index key attributes must be scalars")
        return row.hash_key, row.sort_key

    def _validate_item(self, metadata: TableMetadata, item: Item) -> None:
        validate_item_size(self._serializer.size(item), limit=self._config.max_item_size_bytes)
        validate_item_attributes(item, metadata)

    def _page_size(self, limit: int | None) -> int:
        if limit is None:
            return self._config.default_page_size
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"Limit must be a positive integer (got {limit!r})")
        return limit

    def _context(self, expression: str, names: Names, values: Values) -> ExpressionContext:
        return ExpressionContext(expression=expression, names=dict(names or {}), values=dict(values or {}))

    def _condition(
        self, expression: str | None, names: Names, values: Values, *, kind: str = "ConditionExpression"
    ) -> Condition | None:
        if expression is None:
            return None
        validate_expression(expression, kind=kind)
        return parse_condition(self._context(expression, names, values), kind=kind)

    def _projection(self, expression: str | None, names: Names) -> tuple[Path, ...]:
        if expression is None:
            return ()
        validate_expression(expression, kind="ProjectionExpression")
        return parse_projection(self._context(expression, names, None))


def _index(metadata: TableMetadata, index_name: str | None) -> IndexDefinition | None:
    if index_name is None:
        return None
    try:
        return metadata.index(index_name)
    except NotFoundError as err:
        raise ValidationError(f"The table does not have the specified index: {index_name}") from err


def _evaluated_key(metadata: TableMetadata, index: IndexDefinition | None, item: Item) -> Item:
    names = list(metadata.key_attributes)
    if index is not None:
        names += [name for name in index.key_attributes if name not in names]
    return {name: item[name] for name in names if name in item}


def _reject_duplicate_keys(metadata: TableMetadata, keys: list[Item], message: str) -> None:
    seen: set[tuple[bytes, bytes]] = set()
    for key in keys:
        position = base_key(metadata, key)
        if position in seen:
            raise ValidationError(message)
        seen.add(position)


def _return_values(value: str | None, allowed: frozenset[str], operation: str) -> str:
    resolved = (value or "NONE").upper()
    if resolved not in allowed:
        raise ValidationError(f"ReturnValues {value!r} is not supported for {operation}")
    return resolved


def _raise_on_condition_failure[R](outcome: R | ConditionFailed) -> R:
    if isinstance(outcome, ConditionFailed):
        raise ConditionFailedError(outcome.message)
    return outcome


def _as_outcome[R](outcome: R | ConditionFailed) -> WriteOutcome[R]:
    if isinstance(outcome, ConditionFailed):
        return outcome
    return Applied(outcome)
