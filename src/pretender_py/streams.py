from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal, Protocol

from boto3.dynamodb.types import TypeDeserializer

from .errors import ValidationError
from .store import StoreSession
from .values import AttributeValue, Item, item_to_wire

type EventName = Literal["INSERT", "MODIFY", "REMOVE"]


@dataclass(frozen=True)
class ChangeRecord:
    table_name: str
    event_name: EventName
    keys: Item
    old_image: Item | None = None
    new_image: Item | None = None

    def to_stream_record(self) -> dict[str, Any]:
        dynamodb: dict[str, Any] = {
            "Keys": item_to_wire(self.keys),
            "StreamViewType": "NEW_AND_OLD_IMAGES",
        }
        if self.old_image is not None:
            dynamodb["OldImage"] = item_to_wire(self.old_image)
        if self.new_image is not None:
            dynamodb["NewImage"] = item_to_wire(self.new_image)
        return {"eventName": self.event_name, "eventSource": "aws:dynamodb", "dynamodb": dynamodb}


class ChangeListener(Protocol):
    def on_change(self, session: StoreSession, record: ChangeRecord) -> None: ...


def build_change_record(
    table_name: str,
    keys: Mapping[str, AttributeValue],
    old_image: Mapping[str, AttributeValue] | None,
    new_image: Mapping[str, AttributeValue] | None,
) -> ChangeRecord | None:
    if old_image is None and new_image is None:
        return None
    if old_image is None:
        event: EventName = "INSERT"
    elif new_image is None:
        event = "REMOVE"
    else:
        event = "MODIFY"
    return ChangeRecord(
        table_name=table_name,
        event_name=event,
        keys=dict(keys),
        old_image=dict(old_image) if old_image is not None else None,
        new_image=dict(new_image) if new_image is not None else None,
    )


def is_expired(item: Mapping[str, AttributeValue], ttl_attribute: str | None, now: float) -> bool:
    if ttl_attribute is None:
        return False
    ttl = item.get(ttl_attribute)
    if ttl is None or ttl.type != "N":
        return False
    return ttl.value < Decimal(int(now))


def _decode_stream_av(av: Any) -> dict[str, Any]:
    if not isinstance(av, dict):
        raise ValidationError("stream attribute value must be a map")
    if len(av) != 1:
        raise ValidationError("stream attribute value must have exactly one type key")

    (kind, value), *_ = av.items()

    if kind == "B":
        if isinstance(value, (bytes, bytearray)):
            return {"B": bytes(value)}
        if not isinstance(value, str):
            raise ValidationError("stream binary value must be base64 string")
        return {"B": _b64(value)}

    if kind == "BS":
        if not isinstance(value, list):
            raise ValidationError("stream binary set must be list of base64 strings")
        return {"BS": [bytes(v) if isinstance(v, (bytes, bytearray)) else _b64(v) for v in value]}

    if kind == "M":
        if not isinstance(value, dict):
            raise ValidationError("stream map value must be a map")
        return {"M": {k: _decode_stream_av(v) for k, v in value.items()}}

    if kind == "L":
        if not isinstance(value, list):
            raise ValidationError("stream list value must be a list")
        return {"L": [_decode_stream_av(v) for v in value]}

    if kind in {"S", "N"}:
        if not isinstance(value, str):
            raise ValidationError(f"stream {kind} value must be a string")
        return {kind: value}

    if kind in {"SS", "NS"}:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValidationError(f"stream {kind} value must be a list of strings")
        return {kind: value}

    if kind == "BOOL":
        if not isinstance(value, bool):
            raise ValidationError("stream BOOL value must be a boolean")
        return {"BOOL": value}

    if kind == "NULL":
        if value is not True:
            raise ValidationError("stream NULL value must be true")
        return {"NULL": True}

    raise ValidationError(f"unsupported stream attribute value type: {kind}")


def _b64(value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValidationError("stream binary value must be base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except ValueError as err:
        raise ValidationError("stream binary value is not valid base64") from err


def unmarshal_change_image(stream_image: Any) -> dict[str, Any]:
    if not isinstance(stream_image, dict):
        raise ValidationError("stream image must be a map")
    deserializer = TypeDeserializer()
    return {name: deserializer.deserialize(_decode_stream_av(av)) for name, av in stream_image.items()}


def unmarshal_change_record(record: Any, *, image: str = "NewImage") -> dict[str, Any] | None:
    if not isinstance(record, dict):
        raise ValidationError("record must be a map")
    dynamodb = record.get("dynamodb")
    if not isinstance(dynamodb, dict):
        raise ValidationError("record.dynamodb must be a map")
    stream_image = dynamodb.get(image)
    if stream_image is None:
        return None
    return unmarshal_change_image(stream_image)
