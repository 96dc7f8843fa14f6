from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError
from .serializer import ItemSerializer
from .values import AttributeValue, Item


@dataclass(frozen=True)
class SortKeyCondition:
    op: str
    values: tuple[AttributeValue, ...]

    @staticmethod
    def eq(value: AttributeValue) -> SortKeyCondition:
        return SortKeyCondition(op="=", values=(value,))

    @staticmethod
    def lt(value: AttributeValue) -> SortKeyCondition:
        return SortKeyCondition(op="<", values=(value,))

    @staticmethod
    def lte(value: AttributeValue) -> SortKeyCondition:
        return SortKeyCondition(op="<=", values=(value,))

    @staticmethod
    def gt(value: AttributeValue) -> SortKeyCondition:
        return SortKeyCondition(op=">", values=(value,))

    @staticmethod
    def gte(value: AttributeValue) -> SortKeyCondition:
        return SortKeyCondition(op=">=", values=(value,))

    @staticmethod
    def between(low: AttributeValue, high: AttributeValue) -> SortKeyCondition:
        return SortKeyCondition(op="between", values=(low, high))

    @staticmethod
    def begins_with(prefix: AttributeValue) -> SortKeyCondition:
        return SortKeyCondition(op="begins_with", values=(prefix,))


@dataclass(frozen=True)
class Cursor:
    last_key: Item
    index: str | None = None
    sort: str | None = None


_cursor_serializer = ItemSerializer()


def encode_cursor(
    last_key: Mapping[str, AttributeValue] | None, *, index: str | None = None, sort: str | None = None
) -> str:
    if not last_key:
        return ""
    if not isinstance(last_key, Mapping):
        raise ValueError("last_key must be a map")

    last_key_json: dict[str, Any] = {}
    for k in sorted(last_key.keys()):
        value = last_key[k]
        if not isinstance(value, AttributeValue):
            raise ValueError(f"last_key[{k!r}] must be an AttributeValue")
        last_key_json[str(k)] = _cursor_serializer.encode_value(value)

    parts: list[str] = []
    parts.append('"lastKey":' + json.dumps(last_key_json, separators=(",", ":"), ensure_ascii=False))
    if index is not None:
        parts.append('"index":' + json.dumps(index, separators=(",", ":"), ensure_ascii=False))
    if sort is not None:
        parts.append('"sort":' + json.dumps(sort, separators=(",", ":"), ensure_ascii=False))

    payload = ("{" + ",".join(parts) + "}").encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    data = base64.urlsafe_b64decode(raw + padding).decode("utf-8")
    parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    last_key_raw = parsed.get("lastKey")
    if not isinstance(last_key_raw, dict) or not last_key_raw:
        raise ValueError("cursor lastKey is invalid")

    last_key: Item = {}
    for k in sorted(last_key_raw.keys()):
        try:
            last_key[str(k)] = _cursor_serializer.decode_value(last_key_raw[k])
        except ValidationError as err:
            raise ValueError(f"cursor lastKey attribute {k!r} is invalid") from err

    index = parsed.get("index")
    sort = parsed.get("sort")
    return Cursor(
        last_key=last_key,
        index=index if isinstance(index, str) else None,
        sort=sort if sort in {"ASC", "DESC"} else None,
    )
