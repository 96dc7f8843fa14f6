from __future__ import annotations

import json

import pytest

from pretender_py import ItemSerializer, ValidationError
from pretender_py.values import AttributeValue, item_from_python


def test_dumps_is_deterministic_and_compact() -> None:
    serializer = ItemSerializer()
    first = serializer.dumps({"b": AttributeValue.number(2), "a": AttributeValue.string("x")})
    second = serializer.dumps({"a": AttributeValue.string("x"), "b": AttributeValue.number(2)})

    assert first == second
    assert first == '{"a":{"S":"x"},"b":{"N":"2"}}'


def test_round_trip_preserves_nested_and_binary_values() -> None:
    serializer = ItemSerializer()
    item = item_from_python({"pk": "a", "blob": b"\x00\xff", "doc": {"list": [1, {"deep": b"x"}]}})
    item["bs"] = AttributeValue.binary_set([b"a", b"b"])

    assert serializer.loads(serializer.dumps(item)) == item


def test_size_is_utf8_byte_length_of_document() -> None:
    serializer = ItemSerializer()
    item = {"s": AttributeValue.string("é")}
    assert serializer.size(item) == len(serializer.dumps(item).encode("utf-8"))
    assert serializer.size(item) == len(json.dumps({"s": {"S": "é"}}, separators=(",", ":"), ensure_ascii=False).encode())


@pytest.mark.parametrize(
    "document, message",
    [
        ("not json", "not valid JSON"),
        ("[]", "must be an object"),
        ('{"a":{"B":"***"}}', "not valid base64"),
        ('{"a":{"S":"x","N":"1"}}', "exactly one type key"),
    ],
)
def test_loads_rejects_corrupt_documents(document: str, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        ItemSerializer().loads(document)
