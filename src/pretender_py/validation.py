from __future__ import annotations

import re
from collections.abc import Mapping

from .errors import ValidationError
from .model import TableMetadata
from .values import AttributeValue

MaxItemSizeBytes = 400000
MaxBatchGetKeys = 100
MaxBatchWriteRequests = 25
MaxTransactionItems = 25
MaxExpressionLength = 4096
MaxNestedDepth = 32
MaxKeyNameLength = 255

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")


def validate_table_name(name: str) -> None:
    if not isinstance(name, str) or len(name) < 3 or len(name) > 255:
        raise ValidationError(f"invalid table name length: {name!r} (must be 3-255 characters)")

    if _NAME_PATTERN.match(name) is None:
        raise ValidationError(f"table name contains invalid characters: {name!r}")


def validate_index_name(name: str) -> None:
    if not isinstance(name, str) or len(name) < 3 or len(name) > 255:
        raise ValidationError(f"invalid index name length: {name!r} (must be 3-255 characters)")

    if _NAME_PATTERN.match(name) is None:
        raise ValidationError(f"index name contains invalid characters: {name!r}")


def validate_key_name(name: str) -> None:
    if not name or len(name.encode("utf-8")) > MaxKeyNameLength:
        raise ValidationError(f"key attribute name must be 1-{MaxKeyNameLength} bytes: {name!r}")


def validate_expression(expression: str, *, kind: str) -> None:
    if not isinstance(expression, str) or not expression.strip():
        raise ValidationError(f"Invalid {kind}: The expression can not be empty;")
    if len(expression) > MaxExpressionLength:
        raise ValidationError(
            f"Invalid {kind}: Expression size has exceeded the maximum allowed size "
            f"({len(expression)} > {MaxExpressionLength})"
        )


def validate_item_size(size: int, *, limit: int = MaxItemSizeBytes) -> None:
    if size > limit:
        raise ValidationError(
            f"Item size has exceeded the maximum allowed size of 400 KB (actual size: {size} bytes)"
        )


def validate_batch_get_size(count: int, *, limit: int = MaxBatchGetKeys) -> None:
    if count > limit:
        raise ValidationError(
            f"BatchGetItem request cannot contain more than {limit} items (received {count} items)"
        )


def validate_batch_write_size(count: int, *, limit: int = MaxBatchWriteRequests) -> None:
    if count > limit:
        raise ValidationError(
            f"BatchWriteItem request cannot contain more than {limit} requests (received {count} requests)"
        )


def validate_transaction_size(count: int, *, limit: int = MaxTransactionItems) -> None:
    if count == 0:
        raise ValidationError("Transaction request must contain at least one item")
    if count > limit:
        raise ValidationError(
            f"Transaction request cannot contain more than {limit} items (received {count} items)"
        )


def validate_item_attributes(item: Mapping[str, AttributeValue], metadata: TableMetadata) -> None:
    metadata.extract_key(metadata.key_of(item))

    for index in metadata.indexes:
        for name in index.key_attributes:
            av = item.get(name)
            if av is None:
                continue
            expected = metadata.attribute_types.get(name)
            if not av.is_scalar or (expected is not None and av.type != expected):
                raise ValidationError(
                    "One or more parameter values were invalid: Type mismatch for Index Key "
                    f"{name} Index: {index.name}"
                )
            if av.type in {"S", "B"} and len(av.value) == 0:
                raise ValidationError(
                    "One or more parameter values are not valid. A value specified for a secondary "
                    f"index key is not supported. The AttributeValue for a key attribute cannot contain "
                    f"an empty value. IndexName: {index.name}, IndexKey: {name}"
                )

    for name, av in item.items():
        _validate_value(name, av, depth=1)


def _validate_value(name: str, av: AttributeValue, *, depth: int) -> None:
    if depth > MaxNestedDepth:
        raise ValidationError(
            f"Nesting Levels have exceeded supported limits: attribute {name} exceeds depth {MaxNestedDepth}"
        )

    if av.type == "B" and len(av.value) == 0:
        raise ValidationError(
            f"One or more parameter values were invalid: Binary attributes cannot be empty. Attribute: {name}"
        )
    if av.is_set:
        if len(av.value) == 0:
            raise ValidationError(
                f"One or more parameter values were invalid: An {av.type} set may not be empty. Attribute: {name}"
            )
        if av.type in {"SS", "BS"} and any(len(v) == 0 for v in av.value):
            raise ValidationError(
                "One or more parameter values were invalid: "
                f"{av.type} set attributes cannot contain empty values. Attribute: {name}"
            )
    if av.type == "L":
        for element in av.value:
            _validate_value(name, element, depth=depth + 1)
    if av.type == "M":
        for child in av.value.values():
            _validate_value(name, child, depth=depth + 1)
