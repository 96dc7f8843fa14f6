from __future__ import annotations

import pytest

from pretender_py import ValidationError
from pretender_py.expression import ExpressionContext
from pretender_py.update_expression import apply_update, parse_update
from pretender_py.values import AttributeValue, Item, item_from_python

N = AttributeValue.number
S = AttributeValue.string


def _apply(item: Item, expression: str, *, keys: tuple[str, ...] = ("pk",), **values: object) -> Item:
    context = ExpressionContext(
        expression=expression,
        names={"#c": "count"},
        values={f":{k}": v if isinstance(v, AttributeValue) else item_from_python({"x": v})["x"] for k, v in values.items()},
    )
    return apply_update(item, parse_update(context), key_attributes=keys)


def _item(**values: object) -> Item:
    return item_from_python({"pk": "a", **values})


def test_apply_returns_new_item_and_leaves_input_untouched() -> None:
    original = _item(a=1, m={"x": 1})
    snapshot = dict(original)

    updated = _apply(original, "SET a = :v, m.x = :v", v=2)

    assert original == snapshot
    assert updated["a"] == N(2)
    assert updated["m"].value["x"] == N(2)


def test_set_remove_add_delete_in_one_expression() -> None:
    item = _item(a=1, b="gone", n=5, tags={"x", "y"})
    updated = _apply(item, "SET a = :one REMOVE b ADD n :two DELETE tags :x", one=10, two=2, x={"x"})

    assert updated["a"] == N(10)
    assert "b" not in updated
    assert updated["n"] == N(7)
    assert updated["tags"] == AttributeValue.string_set(["y"])


def test_operands_read_the_original_item() -> None:
    updated = _apply(_item(a=1, b=2), "SET a = b, b = a")
    assert updated["a"] == N(2)
    assert updated["b"] == N(1)


def test_arithmetic_on_missing_attribute_is_rejected() -> None:
    with pytest.raises(ValidationError, match="does not exist in the item"):
        _apply(_item(), "SET #c = #c + :one", one=1)


def test_if_not_exists_supplies_default_for_arithmetic() -> None:
    first = _apply(_item(), "SET #c = if_not_exists(#c, :zero) + :one", zero=0, one=1)
    second = _apply(first, "SET #c = if_not_exists(#c, :zero) + :one", zero=0, one=1)
    assert first["count"] == N(1)
    assert second["count"] == N(2)


def test_subtraction_and_type_errors() -> None:
    assert _apply(_item(n=5), "SET n = n - :v", v=7)["n"] == N(-2)
    with pytest.raises(ValidationError, match="incorrect data type"):
        _apply(_item(s="x"), "SET s = s + :v", v=1)


def test_add_to_missing_attribute_sets_value() -> None:
    assert _apply(_item(), "ADD n :v", v=3)["n"] == N(3)
    assert _apply(_item(), "ADD tags :v", v={"a"})["tags"] == AttributeValue.string_set(["a"])


def test_add_merges_sets_and_rejects_mismatched_types() -> None:
    updated = _apply(_item(tags={"a"}), "ADD tags :v", v={"b"})
    assert updated["tags"] == AttributeValue.string_set(["a", "b"])
    with pytest.raises(ValidationError, match="incorrect data type"):
        _apply(_item(tags={"a"}), "ADD tags :v", v=1)
    with pytest.raises(ValidationError, match="operator: ADD"):
        _apply(_item(), "ADD s :v", v="x")


def test_delete_removing_last_element_removes_attribute() -> None:
    assert "tags" not in _apply(_item(tags={"a"}), "DELETE tags :v", v={"a"})
    assert "tags" not in _apply(_item(), "DELETE tags :v", v={"a"})


def test_list_append_and_list_index_assignment() -> None:
    updated = _apply(_item(l=[1]), "SET l = list_append(l, :more)", more=[2, 3])
    assert updated["l"] == AttributeValue.list_of([N(1), N(2), N(3)])

    assigned = _apply(_item(l=[1, 2]), "SET l[1] = :v, l[5] = :w", v=9, w=10)
    assert assigned["l"] == AttributeValue.list_of([N(1), N(9), N(10)])


def test_remove_list_elements_keeps_other_positions() -> None:
    updated = _apply(_item(l=["a", "b", "c", "d"]), "REMOVE l[0], l[2]")
    assert updated["l"] == AttributeValue.list_of([S("b"), S("d")])


def test_nested_set_requires_existing_parent() -> None:
    with pytest.raises(ValidationError, match="invalid for update"):
        _apply(_item(), "SET m.x = :v", v=1)


def test_key_attributes_cannot_be_updated() -> None:
    with pytest.raises(ValidationError, match="Cannot update attribute pk. This attribute is part of the key"):
        _apply(_item(), "SET pk = :v", v="b")
    with pytest.raises(ValidationError, match="part of the key"):
        _apply(_item(), "REMOVE pk")


@pytest.mark.parametrize(
    "expression, message",
    [
        ("SET a = :v, a = :v", "Two document paths overlap"),
        ("SET m = :v REMOVE m.x", "Two document paths overlap"),
        ("UPSERT a = :v", "expected SET, REMOVE, ADD or DELETE"),
        ("SET a :v", "expected '='"),
        ("SET a = unknown(:v)", "Invalid function name"),
        ("DELETE tags :v", "operator: DELETE"),
    ],
)
def test_update_syntax_errors(expression: str, message: str) -> None:
    context = ExpressionContext(expression=expression, values={":v": N(1)})
    with pytest.raises(ValidationError, match=message):
        parse_update(context)


def test_update_paths_lists_every_target() -> None:
    update = parse_update(ExpressionContext(expression="SET a = :v REMOVE b", values={":v": N(1)}))
    assert [str(path) for path in update.paths] == ["a", "b"]
