from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any

from .errors import ValidationError
from .values import AttributeValue, Item, from_wire


class ItemSerializer:
    def dumps(self, item: Mapping[str, AttributeValue]) -> str:
        encoded = {name: self.encode_value(item[name]) for name in sorted(item.keys())}
        return json.dumps(encoded, separators=(",", ":"), ensure_ascii=False)

    def loads(self, document: str) -> Item:
        try:
            parsed = json.loads(document)
        except json.JSONDecodeError as err:
            raise ValidationError("stored item document is not valid JSON") from err
        if not isinstance(parsed, dict):
            raise ValidationError("stored item document must be an object")
        return {str(name): self.decode_value(value) for name, value in parsed.items()}

    def size(self, item: Mapping[str, AttributeValue]) -> int:
        try:
            return len(self.dumps(item).encode("utf-8"))
        except UnicodeEncodeError as err:
            raise ValidationError("item contains an attribute name or value that is not valid UTF-8") from err

    def encode_value(self, av: AttributeValue) -> dict[str, Any]:
        match av.type:
            case "S" | "BOOL":
                return {av.type: av.value}
            case "N":
                return {"N": str(av.value)}
            case "B":
                return {"B": base64.b64encode(av.value).decode("ascii")}
            case "NULL":
                return {"NULL": True}
            case "SS":
                return {"SS": sorted(av.value)}
            case "NS":
                return {"NS": [str(v) for v in sorted(av.value)]}
            case "BS":
                return {"BS": [base64.b64encode(v).decode("ascii") for v in sorted(av.value)]}
            case "L":
                return {"L": [self.encode_value(v) for v in av.value]}
            case "M":
                return {"M": {k: self.encode_value(av.value[k]) for k in sorted(av.value.keys())}}
        raise ValidationError(f"unsupported attribute value type: {av.type}")

    def decode_value(self, encoded: Any) -> AttributeValue:
        if not isinstance(encoded, dict) or len(encoded) != 1:
            raise ValidationError("stored attribute value must have exactly one type key")
        (kind, value), *_ = encoded.items()

        if kind == "B":
            if not isinstance(value, str):
                raise ValidationError("stored binary value must be a base64 string")
            return AttributeValue.binary(_b64decode(value))
        if kind == "BS":
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValidationError("stored binary set must be a list of base64 strings")
            return AttributeValue.binary_set(_b64decode(v) for v in value)
        if kind == "L":
            if not isinstance(value, list):
                raise ValidationError("stored list value must be a list")
            return AttributeValue.list_of(self.decode_value(v) for v in value)
        if kind == "M":
            if not isinstance(value, dict):
                raise ValidationError("stored map value must be an object")
            return AttributeValue.map_of({str(k): self.decode_value(v) for k, v in value.items()})

        return from_wire({kind: value})


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as err:
        raise ValidationError("stored binary value is not valid base64") from err
