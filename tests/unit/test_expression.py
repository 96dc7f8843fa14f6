from __future__ import annotations

import pytest

from pretender_py import ValidationError
from pretender_py.expression import (
    ExpressionContext,
    Path,
    apply_projection,
    evaluate_condition,
    parse_condition,
    parse_projection,
    resolve_path,
)
from pretender_py.values import AttributeValue, item_from_python

ITEM = item_from_python(
    {
        "pk": "user#1",
        "name": "Ada",
        "age": 36,
        "tags": {"admin", "ops"},
        "scores": [10, 20, 30],
        "profile": {"city": "London", "langs": ["en", "fr"]},
        "blob": b"\x01\x02\x03",
        "active": True,
    }
)


def _matches(
    expression: str,
    item: dict[str, AttributeValue] | None,
    *,
    names: dict[str, str] | None = None,
    values: dict[str, AttributeValue] | None = None,
) -> bool:
    context = ExpressionContext(expression=expression, names=names or {}, values=values or {})
    return evaluate_condition(parse_condition(context), item)


def _v(**values: object) -> dict[str, AttributeValue]:
    return {f":{k}": v if isinstance(v, AttributeValue) else item_from_python({"x": v})["x"] for k, v in values.items()}


@pytest.mark.parametrize(
    "expression, values, expected",
    [
        ("age = :v", _v(v=36), True),
        ("age <> :v", _v(v=36), False),
        ("age < :v", _v(v=40), True),
        ("age >= :v", _v(v=36), True),
        ("age > :v", _v(v="36"), False),
        ("age <> :v", _v(v="36"), True),
        ("missing = :v", _v(v=1), False),
        ("missing <> :v", _v(v=1), True),
        ("age BETWEEN :lo AND :hi", _v(lo=30, hi=40), True),
        ("name BETWEEN :lo AND :hi", _v(lo="B", hi="Z"), False),
        ("name IN (:a, :b)", _v(a="Bob", b="Ada"), True),
        ("name IN (:a)", _v(a="Bob"), False),
        ("begins_with(pk, :p)", _v(p="user#"), True),
        ("begins_with(blob, :p)", _v(p=b"\x01\x02"), True),
        ("begins_with(age, :p)", _v(p="3"), False),
        ("contains(name, :s)", _v(s="da"), True),
        ("contains(tags, :s)", _v(s="admin"), True),
        ("contains(tags, :s)", _v(s="dev"), False),
        ("contains(scores, :s)", _v(s=20), True),
        ("contains(profile.langs, :s)", _v(s="fr"), True),
        ("size(name) = :n", _v(n=3), True),
        ("size(tags) = :n", _v(n=2), True),
        ("size(profile) = :n", _v(n=2), True),
        ("size(age) = :n", _v(n=2), False),
        ("attribute_type(age, :t)", _v(t="N"), True),
        ("attribute_type(tags, :t)", _v(t="SS"), True),
        ("profile.city = :c", _v(c="London"), True),
        ("scores[1] = :s", _v(s=20), True),
        ("scores[9] = :s", _v(s=20), False),
        ("active = :t AND age > :n", _v(t=True, n=30), True),
        ("active = :t AND age > :n", _v(t=True, n=40), False),
        ("NOT age > :n OR name = :a", _v(n=40, a="x"), True),
        ("NOT (age > :n OR name = :a)", _v(n=30, a="x"), False),
    ],
)
def test_condition_evaluation(expression: str, values: dict[str, AttributeValue], expected: bool) -> None:
    assert _matches(expression, ITEM, values=values) is expected


def test_existence_functions_and_name_placeholders() -> None:
    names = {"#n": "name", "#m": "missing"}
    assert _matches("attribute_exists(#n)", ITEM, names=names)
    assert _matches("attribute_not_exists(#m)", ITEM, names=names)
    assert _matches("attribute_not_exists(pk)", None)
    assert not _matches("attribute_exists(pk)", None)


def test_and_binds_tighter_than_or() -> None:
    values = _v(a=1, b=2, c=36)
    # false AND false OR true
    assert _matches("age = :a AND age = :b OR age = :c", ITEM, values=values)
    # false AND (false OR true)
    assert not _matches("age = :a AND (age = :b OR age = :c)", ITEM, values=values)


@pytest.mark.parametrize(
    "expression, names, values, message",
    [
        ("#x = :v", {}, _v(v=1), "attribute name used in the document path is not defined"),
        ("age = :missing", {}, {}, "attribute value used in expression is not defined"),
        ("age = ", {}, {}, "Syntax error"),
        ("age ! :v", {}, _v(v=1), "Syntax error"),
        ("unknown_fn(age)", {}, {}, "Invalid function name"),
        ("attribute_exists(age, :v)", {}, _v(v=1), "Incorrect number of operands"),
        ("age BETWEEN :hi AND :lo", {}, _v(hi=10, lo=1), "BETWEEN operator requires upper bound"),
        ("if_not_exists(age, :v)", {}, _v(v=1), "not allowed to be used this way"),
        ("", {}, {}, "can not be empty"),
    ],
)
def test_condition_syntax_errors(
    expression: str, names: dict[str, str], values: dict[str, AttributeValue], message: str
) -> None:
    with pytest.raises(ValidationError, match=message):
        parse_condition(ExpressionContext(expression=expression, names=names, values=values))


def test_resolve_path_walks_maps_and_lists() -> None:
    assert resolve_path(ITEM, Path(("profile", "langs", 0))) == AttributeValue.string("en")
    assert resolve_path(ITEM, Path(("profile", "nope"))) is None
    assert resolve_path(ITEM, Path(("name", "x"))) is None
    assert resolve_path(None, Path(("name",))) is None


def test_projection_keeps_selected_paths_only() -> None:
    paths = parse_projection(
        ExpressionContext(expression="#n, profile.city, scores[2], missing", names={"#n": "name"})
    )
    projected = apply_projection(ITEM, paths)

    assert projected == {
        "name": AttributeValue.string("Ada"),
        "profile": AttributeValue.map_of({"city": AttributeValue.string("London")}),
        "scores": AttributeValue.list_of([AttributeValue.number(30)]),
    }


def test_projection_parent_path_wins_over_child() -> None:
    paths = parse_projection(ExpressionContext(expression="profile, profile.city"))
    assert apply_projection(ITEM, paths)["profile"] == ITEM["profile"]
