from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from .capacity import ConsumedCapacity
from .values import AttributeValue, Item


@dataclass(frozen=True)
class PutItemResult:
    attributes: Item | None = None
    consumed_capacity: ConsumedCapacity | None = None


@dataclass(frozen=True)
class GetItemResult:
    item: Item | None = None
    consumed_capacity: ConsumedCapacity | None = None


@dataclass(frozen=True)
class UpdateItemResult:
    attributes: Item | None = None
    consumed_capacity: ConsumedCapacity | None = None


@dataclass(frozen=True)
class DeleteItemResult:
    attributes: Item | None = None
    consumed_capacity: ConsumedCapacity | None = None


@dataclass(frozen=True)
class Page:
    items: list[Item]
    count: int
    scanned_count: int
    last_evaluated_key: Item | None = None
    cursor: str | None = None
    consumed_capacity: ConsumedCapacity | None = None


QueryResult = Page
ScanResult = Page


@dataclass(frozen=True)
class KeysAndAttributes:
    keys: list[Item]
    projection_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    consistent_read: bool = False


@dataclass(frozen=True)
class WriteRequest:
    item: Item | None = None
    key: Item | None = None

    @staticmethod
    def put(item: Mapping[str, AttributeValue]) -> WriteRequest:
        return WriteRequest(item=dict(item))

    @staticmethod
    def delete(key: Mapping[str, AttributeValue]) -> WriteRequest:
        return WriteRequest(key=dict(key))

    @property
    def is_put(self) -> bool:
        return self.item is not None


@dataclass(frozen=True)
class BatchGetResult:
    responses: dict[str, list[Item]]
    unprocessed_keys: dict[str, KeysAndAttributes] = field(default_factory=dict)
    consumed_capacity: list[ConsumedCapacity] = field(default_factory=list)


@dataclass(frozen=True)
class BatchWriteResult:
    unprocessed_items: dict[str, list[WriteRequest]] = field(default_factory=dict)
    consumed_capacity: list[ConsumedCapacity] = field(default_factory=list)


@dataclass(frozen=True)
class TransactGetResult:
    items: list[Item | None]
    consumed_capacity: list[ConsumedCapacity] = field(default_factory=list)


@dataclass(frozen=True)
class TransactWriteResult:
    consumed_capacity: list[ConsumedCapacity] = field(default_factory=list)


@dataclass(frozen=True)
class Applied[R]:
    result: R


@dataclass(frozen=True)
class ConditionFailed:
    message: str


@dataclass(frozen=True)
class Invalid:
    message: str


type WriteOutcome[R] = Applied[R] | ConditionFailed | Invalid
