from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

import pytest

from pretender_py import ValidationError
from pretender_py.values import (
    AttributeValue,
    add_numbers,
    compare_values,
    from_python,
    from_wire,
    item_from_python,
    item_from_wire,
    item_to_python,
    item_to_wire,
    to_wire,
    value_size,
)


def test_from_wire_normalizes_every_type() -> None:
    item = item_from_wire(
        {
            "s": {"S": "hello"},
            "n": {"N": "1.50"},
            "b": {"B": b"\x00\x01"},
            "flag": {"BOOL": True},
            "nil": {"NULL": True},
            "ss": {"SS": ["b", "a"]},
            "ns": {"NS": ["2", "1"]},
            "bs": {"BS": [b"y", b"x"]},
            "l": {"L": [{"S": "x"}, {"N": "3"}]},
            "m": {"M": {"k": {"S": "v"}}},
        }
    )

    assert item["s"] == AttributeValue.string("hello")
    assert item["n"].value == Decimal("1.5")
    assert item["b"].value == b"\x00\x01"
    assert item["flag"].value is True
    assert item["nil"].type == "NULL"
    assert item["ss"].value == frozenset({"a", "b"})
    assert item["ns"].value == frozenset({Decimal(1), Decimal(2)})
    assert item["bs"].value == frozenset({b"x", b"y"})
    assert item["l"].value == (AttributeValue.string("x"), AttributeValue.number(3))
    assert item["m"].value == {"k": AttributeValue.string("v")}


def test_to_wire_sorts_sets_and_renders_numbers_as_strings() -> None:
    assert to_wire(AttributeValue.number_set([3, 1, 2])) == {"NS": ["1", "2", "3"]}
    assert to_wire(AttributeValue.string_set(["b", "a"])) == {"SS": ["a", "b"]}
    assert item_to_wire({"n": AttributeValue.number("10")}) == {"n": {"N": "10"}}


def test_numbers_compare_as_decimals() -> None:
    assert AttributeValue.number("1.0") == AttributeValue.number(1)
    assert compare_values(AttributeValue.number("-1"), AttributeValue.number("0.5")) == -1
    assert compare_values(AttributeValue.string("b"), AttributeValue.string("a")) == 1
    assert compare_values(AttributeValue.string("1"), AttributeValue.number(1)) is None


def test_number_precision_is_limited_to_38_digits() -> None:
    AttributeValue.number("1" * 38)
    with pytest.raises(ValidationError, match="precision"):
        AttributeValue.number("1" * 39 + ".1")


def test_number_arithmetic_uses_decimal_context() -> None:
    assert add_numbers(Decimal("0.1"), Decimal("0.2")) == Decimal("0.3")


@pytest.mark.parametrize(
    "wire, message",
    [
        ({"S": "a", "N": "1"}, "exactly one type key"),
        ({"N": 1}, "N value must be a string"),
        ({"NULL": False}, "NULL value must be true"),
        ({"X": "1"}, "unsupported attribute value type"),
        ({"NS": ["1", "1"]}, "duplicate"),
    ],
)
def test_from_wire_rejects_malformed_values(wire: dict[str, object], message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        from_wire(wire)


@pytest.mark.parametrize(
    "build",
    [
        lambda: AttributeValue.string("\ud800"),
        lambda: AttributeValue.string_set(["ok", "bad\udfff"]),
        lambda: from_wire({"S": "\ud800"}),
        lambda: from_wire({"M": {"\ud800": {"S": "x"}}}),
        lambda: item_from_wire({"x\ud800": {"S": "a"}}),
        lambda: item_from_python({"pk": "\ud800"}),
    ],
)
def test_strings_must_be_valid_utf8(build: Callable[[], object]) -> None:
    with pytest.raises(ValidationError, match="not valid UTF-8"):
        build()


def test_python_conversion_uses_boto3_type_rules() -> None:
    item = item_from_python({"pk": "a", "count": 3, "tags": {"x", "y"}, "doc": {"a": [1, "b"]}})
    assert item["count"] == AttributeValue.number(3)
    assert item["tags"].type == "SS"
    assert item["doc"].type == "M"

    back = item_to_python(item)
    assert back["count"] == Decimal(3)
    assert back["tags"] == {"x", "y"}
    assert back["doc"] == {"a": [Decimal(1), "b"]}


def test_from_python_rejects_floats() -> None:
    with pytest.raises(ValidationError):
        from_python(1.5)


def test_value_size_for_sized_types() -> None:
    assert value_size(AttributeValue.string("abc")) == 3
    assert value_size(AttributeValue.list_of([AttributeValue.null()])) == 1
    assert value_size(AttributeValue.number(5)) is None
