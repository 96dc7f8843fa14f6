from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal, DecimalException
from typing import Any, Literal

from boto3.dynamodb.types import DYNAMODB_CONTEXT, Binary, TypeDeserializer, TypeSerializer

from .errors import ValidationError

type ValueType = Literal["S", "N", "B", "BOOL", "NULL", "SS", "NS", "BS", "L", "M"]

SCALAR_TYPES = frozenset({"S", "N", "B"})
SET_TYPES = frozenset({"SS", "NS", "BS"})
VALUE_TYPES = SCALAR_TYPES | SET_TYPES | frozenset({"BOOL", "NULL", "L", "M"})

_SET_ELEMENT_TYPE = {"SS": "S", "NS": "N", "BS": "B"}

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


@dataclass(frozen=True)
class AttributeValue:
    type: ValueType
    value: Any

    @staticmethod
    def string(value: str) -> AttributeValue:
        if not isinstance(value, str):
            raise ValidationError("S value must be a string")
        return AttributeValue("S", _utf8(value, what="S value"))

    @staticmethod
    def number(value: str | int | Decimal) -> AttributeValue:
        return AttributeValue("N", parse_number(value))

    @staticmethod
    def binary(value: bytes | bytearray | Binary) -> AttributeValue:
        return AttributeValue("B", _to_bytes(value))

    @staticmethod
    def boolean(value: bool) -> AttributeValue:
        if not isinstance(value, bool):
            raise ValidationError("BOOL value must be a boolean")
        return AttributeValue("BOOL", value)

    @staticmethod
    def null() -> AttributeValue:
        return AttributeValue("NULL", None)

    @staticmethod
    def string_set(values: Iterable[str]) -> AttributeValue:
        elements = [AttributeValue.string(v).value for v in values]
        return AttributeValue("SS", _unique_set("SS", elements))

    @staticmethod
    def number_set(values: Iterable[str | int | Decimal]) -> AttributeValue:
        elements = [parse_number(v) for v in values]
        return AttributeValue("NS", _unique_set("NS", elements))

    @staticmethod
    def binary_set(values: Iterable[bytes | bytearray | Binary]) -> AttributeValue:
        elements = [_to_bytes(v) for v in values]
        return AttributeValue("BS", _unique_set("BS", elements))

    @staticmethod
    def list_of(values: Iterable[AttributeValue]) -> AttributeValue:
        return AttributeValue("L", tuple(values))

    @staticmethod
    def map_of(values: Mapping[str, AttributeValue]) -> AttributeValue:
        return AttributeValue("M", dict(values))

    @property
    def is_scalar(self) -> bool:
        return self.type in SCALAR_TYPES

    @property
    def is_set(self) -> bool:
        return self.type in SET_TYPES

    def set_elements(self) -> list[AttributeValue]:
        if not self.is_set:
            raise ValidationError(f"{self.type} value is not a set")
        element_type = _SET_ELEMENT_TYPE[self.type]
        return [AttributeValue(element_type, v) for v in self.value]  # type: ignore[arg-type]


type Item = dict[str, AttributeValue]


def parse_number(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (str, int, Decimal)):
        raise ValidationError(f"N value must be a number string: {value!r}")
    try:
        number = DYNAMODB_CONTEXT.create_decimal(value)
    except DecimalException as err:
        raise ValidationError(f"number is out of the supported range or precision: {value!r}") from err
    if not number.is_finite():
        raise ValidationError(f"N value is not a valid number: {value!r}")
    return number


def add_numbers(left: Decimal, right: Decimal) -> Decimal:
    try:
        return DYNAMODB_CONTEXT.add(left, right)
    except DecimalException as err:
        raise ValidationError("number arithmetic result is out of the supported range or precision") from err


def subtract_numbers(left: Decimal, right: Decimal) -> Decimal:
    try:
        return DYNAMODB_CONTEXT.subtract(left, right)
    except DecimalException as err:
        raise ValidationError("number arithmetic result is out of the supported range or precision") from err


def compare_values(left: AttributeValue, right: AttributeValue) -> int | None:
    if left.type != right.type or left.type not in SCALAR_TYPES:
        return None
    if left.value < right.value:
        return -1
    if left.value > right.value:
        return 1
    return 0


def value_size(av: AttributeValue) -> int | None:
    match av.type:
        case "S" | "B" | "SS" | "NS" | "BS" | "L" | "M":
            return len(av.value)
        case _:
            return None


def from_wire(av: Any) -> AttributeValue:
    if not isinstance(av, Mapping) or len(av) != 1:
        raise ValidationError("attribute value must be a map with exactly one type key")
    (kind, value), *_ = av.items()

    match kind:
        case "S":
            return AttributeValue.string(value)
        case "N":
            if not isinstance(value, str):
                raise ValidationError("N value must be a string")
            return AttributeValue.number(value)
        case "B":
            return AttributeValue.binary(value)
        case "BOOL":
            return AttributeValue.boolean(value)
        case "NULL":
            if value is not True:
                raise ValidationError("NULL value must be true")
            return AttributeValue.null()
        case "SS":
            if not isinstance(value, (list, tuple, set, frozenset)):
                raise ValidationError("SS value must be a list of strings")
            return AttributeValue.string_set(value)
        case "NS":
            if not isinstance(value, (list, tuple, set, frozenset)) or not all(isinstance(v, str) for v in value):
                raise ValidationError("NS value must be a list of number strings")
            return AttributeValue.number_set(value)
        case "BS":
            if not isinstance(value, (list, tuple, set, frozenset)):
                raise ValidationError("BS value must be a list of binary values")
            return AttributeValue.binary_set(value)
        case "L":
            if not isinstance(value, (list, tuple)):
                raise ValidationError("L value must be a list")
            return AttributeValue.list_of(from_wire(v) for v in value)
        case "M":
            if not isinstance(value, Mapping):
                raise ValidationError("M value must be a map")
            return AttributeValue.map_of({_attribute_name(k): from_wire(v) for k, v in value.items()})
        case _:
            raise ValidationError(f"unsupported attribute value type: {kind}")


def to_wire(av: AttributeValue) -> dict[str, Any]:
    match av.type:
        case "S" | "B" | "BOOL":
            return {av.type: av.value}
        case "N":
            return {"N": str(av.value)}
        case "NULL":
            return {"NULL": True}
        case "SS" | "BS":
            return {av.type: sorted(av.value)}
        case "NS":
            return {"NS": [str(v) for v in sorted(av.value)]}
        case "L":
            return {"L": [to_wire(v) for v in av.value]}
        case "M":
            return {"M": {k: to_wire(v) for k, v in av.value.items()}}
    raise ValidationError(f"unsupported attribute value type: {av.type}")


def item_from_wire(item: Any) -> Item:
    if not isinstance(item, Mapping):
        raise ValidationError("item must be a map of attribute values")
    return {_attribute_name(k): from_wire(v) for k, v in item.items()}


def item_to_wire(item: Mapping[str, AttributeValue]) -> dict[str, Any]:
    return {k: to_wire(v) for k, v in item.items()}


def from_python(value: Any) -> AttributeValue:
    if isinstance(value, AttributeValue):
        return value
    try:
        wire = _serializer.serialize(value)
    except (TypeError, DecimalException) as err:
        raise ValidationError(str(err)) from err
    return from_wire(wire)


def to_python(av: AttributeValue) -> Any:
    return _deserializer.deserialize(to_wire(av))


def item_from_python(values: Mapping[str, Any]) -> Item:
    return {_attribute_name(k): from_python(v) for k, v in values.items()}


def item_to_python(item: Mapping[str, AttributeValue]) -> dict[str, Any]:
    return {k: to_python(v) for k, v in item.items()}


def _attribute_name(name: Any) -> str:
    if not isinstance(name, str):
        raise ValidationError(f"attribute names must be strings: {name!r}")
    return _utf8(name, what="attribute name")


def _utf8(value: str, *, what: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as err:
        raise ValidationError(f"{what} is not valid UTF-8: {value!r}") from err
    return value


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, Binary):
        return bytes(value.value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raise ValidationError("B value must be bytes")


def _unique_set(kind: str, elements: list[Any]) -> frozenset[Any]:
    unique = frozenset(elements)
    if len(unique) != len(elements):
        raise ValidationError(f"One or more parameter values were invalid: Input collection {kind} contains duplicates")
    return unique
