from __future__ import annotations

import pytest

from pretender_py import ValidationError
from pretender_py.expression import ExpressionContext
from pretender_py.key_condition import parse_key_condition
from pretender_py.keys import SortKeyRange, encode_key_value, upper_bound
from pretender_py.values import AttributeValue

S = AttributeValue.string


def _parse(expression: str, **values: AttributeValue):
    context = ExpressionContext(
        expression=expression,
        names={"#pk": "pk", "#sk": "sk"},
        values={f":{k}": v for k, v in values.items()},
    )
    return parse_key_condition(context, hash_key="pk", sort_key="sk")


def test_hash_only_condition_has_open_sort_range() -> None:
    condition = _parse("#pk = :h", h=S("a"))
    assert condition.hash_value == S("a")
    assert condition.sort is None
    assert condition.sort_range() == SortKeyRange()


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("sk = :a", SortKeyRange(lower=encode_key_value(S("m")), upper=upper_bound(encode_key_value(S("m"))))),
        ("sk < :a", SortKeyRange(upper=encode_key_value(S("m")))),
        ("sk <= :a", SortKeyRange(upper=upper_bound(encode_key_value(S("m"))))),
        ("sk > :a", SortKeyRange(lower=upper_bound(encode_key_value(S("m"))))),
        ("sk >= :a", SortKeyRange(lower=encode_key_value(S("m")))),
        (
            "sk BETWEEN :a AND :b",
            SortKeyRange(lower=encode_key_value(S("m")), upper=upper_bound(encode_key_value(S("t")))),
        ),
        ("begins_with(#sk, :a)", SortKeyRange(prefix=encode_key_value(S("m")))),
    ],
)
def test_sort_conditions_compile_to_store_ranges(expression: str, expected: SortKeyRange) -> None:
    condition = _parse(f"pk = :h AND {expression}", h=S("a"), a=S("m"), b=S("t"))
    assert condition.sort_range() == expected


def test_sort_term_may_come_first() -> None:
    condition = _parse("sk > :a AND pk = :h", h=S("a"), a=S("m"))
    assert condition.hash_value == S("a")
    assert condition.sort is not None and condition.sort.op == ">"


@pytest.mark.parametrize(
    "expression, message",
    [
        ("sk = :a", "missed key schema element: pk"),
        ("pk > :h", "requires '='"),
        ("pk = :h OR sk = :a", "Invalid operator used in KeyConditionExpression: OR"),
        ("pk = :h AND sk <> :a", "Unsupported operator"),
        ("pk = :h AND other = :a", "other is not a key attribute"),
        ("pk = :h AND sk = :a AND sk = :b", "too many conditions"),
        ("pk = :h AND contains(sk, :a)", "Invalid operator used in KeyConditionExpression: contains"),
        ("pk = :h AND begins_with(sk, :n)", "operand type: N"),
        ("pk = :l", "Condition parameter type does not match schema type"),
        ("pk = :h AND NOT sk = :a", "NOT"),
    ],
)
def test_invalid_key_conditions(expression: str, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        _parse(
            expression,
            h=S("a"),
            a=S("m"),
            b=S("t"),
            n=AttributeValue.number(1),
            l=AttributeValue.list_of([S("x")]),
        )


def test_table_without_sort_key_rejects_sort_terms() -> None:
    context = ExpressionContext(expression="pk = :h AND sk = :a", values={":h": S("a"), ":a": S("b")})
    with pytest.raises(ValidationError, match="sk is not a key attribute"):
        parse_key_condition(context, hash_key="pk", sort_key=None)
