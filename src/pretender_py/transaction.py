from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from .values import AttributeValue, Item


@dataclass(frozen=True)
class TransactPut:
    table_name: str
    item: Item
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, AttributeValue] | None = None


@dataclass(frozen=True)
class TransactDelete:
    table_name: str
    key: Item
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, AttributeValue] | None = None


@dataclass(frozen=True)
class TransactUpdate:
    table_name: str
    key: Item
    update_expression: str
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, AttributeValue] | None = None


@dataclass(frozen=True)
class TransactConditionCheck:
    table_name: str
    key: Item
    condition_expression: str
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, AttributeValue] | None = None


@dataclass(frozen=True)
class TransactGet:
    table_name: str
    key: Item
    projection_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None


type TransactWriteAction = TransactPut | TransactDelete | TransactUpdate | TransactConditionCheck
