from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .errors import ValidationError
from .expression import (
    ExpressionContext,
    ExpressionParser,
    Path,
    PathOperand,
    ValueOperand,
    resolve_path,
)
from .values import AttributeValue, Item, add_numbers, subtract_numbers

_KIND = "UpdateExpression"
_CLAUSES = ("SET", "REMOVE", "ADD", "DELETE")


@dataclass(frozen=True)
class IfNotExists:
    path: Path
    default: SetOperand


@dataclass(frozen=True)
class ListAppend:
    left: SetOperand
    right: SetOperand


@dataclass(frozen=True)
class Arithmetic:
    op: str
    left: SetOperand
    right: SetOperand


type SetOperand = PathOperand | ValueOperand | IfNotExists | ListAppend
type SetValue = SetOperand | Arithmetic


@dataclass(frozen=True)
class SetAction:
    path: Path
    value: SetValue


@dataclass(frozen=True)
class RemoveAction:
    path: Path


@dataclass(frozen=True)
class AddAction:
    path: Path
    value: AttributeValue


@dataclass(frozen=True)
class DeleteAction:
    path: Path
    value: AttributeValue


type UpdateAction = SetAction | RemoveAction | AddAction | DeleteAction


@dataclass(frozen=True)
class UpdateExpression:
    actions: tuple[UpdateAction, ...]

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(action.path for action in self.actions)


def parse_update(context: ExpressionContext) -> UpdateExpression:
    parser = ExpressionParser(context, kind=_KIND)
    actions: list[UpdateAction] = []

    while not parser.at_end():
        clause = _clause(parser)
        while True:
            actions.append(_parse_action(parser, clause))
            if parser.at_punct(","):
                parser.advance()
                continue
            break
        if not parser.at_end() and not parser.at_keyword(*_CLAUSES):
            raise parser.error(parser.peek())

    _check_overlaps([action.path for action in actions])
    return UpdateExpression(actions=tuple(actions))


def apply_update(
    item: Mapping[str, AttributeValue],
    update: UpdateExpression,
    *,
    key_attributes: Iterable[str] = (),
) -> Item:
    keys = set(key_attributes)
    for path in update.paths:
        if path.root in keys:
            raise ValidationError(
                f"One or more parameter values were invalid: Cannot update attribute {path.root}. "
                "This attribute is part of the key"
            )

    assignments: list[tuple[Path, AttributeValue | None]] = []
    for action in update.actions:
        if isinstance(action, SetAction):
            assignments.append((action.path, _evaluate(action.value, item)))
        elif isinstance(action, RemoveAction):
            assignments.append((action.path, None))
        elif isinstance(action, AddAction):
            assignments.append((action.path, _add(resolve_path(item, action.path), action.value)))
        elif isinstance(action, DeleteAction):
            assignments.append((action.path, _delete(resolve_path(item, action.path), action.value)))

    result: Item = dict(item)
    removals = [path for path, value in assignments if value is None]
    for path, value in assignments:
        if value is not None:
            result = _set_path(result, path, value)
    # Later list indexes first so earlier positions stay valid.
    for path in sorted(removals, key=_removal_order, reverse=True):
        result = _remove_path(result, path)
    return result


def _clause(parser: ExpressionParser) -> str:
    token = parser.advance()
    word = token.text.upper()
    if token.kind != "identifier" or word not in _CLAUSES:
        raise parser.error(token, "expected SET, REMOVE, ADD or DELETE")
    return word


def _parse_action(parser: ExpressionParser, clause: str) -> UpdateAction:
    path = parser.parse_path()
    if clause == "SET":
        token = parser.advance()
        if token.kind != "comparator" or token.text != "=":
            raise parser.error(token, "expected '='")
        return SetAction(path=path, value=_parse_set_value(parser))
    if clause == "REMOVE":
        return RemoveAction(path=path)

    value = parser.parse_value().value
    if clause == "ADD":
        if value.type != "N" and not value.is_set:
            raise ValidationError(
                f"Invalid {_KIND}: Incorrect operand type for operator or function; "
                f"operator: ADD, operand type: {value.type}"
            )
        return AddAction(path=path, value=value)
    if not value.is_set:
        raise ValidationError(
            f"Invalid {_KIND}: Incorrect operand type for operator or function; "
            f"operator: DELETE, operand type: {value.type}"
        )
    return DeleteAction(path=path, value=value)


def _parse_set_value(parser: ExpressionParser) -> SetValue:
    left = _parse_set_operand(parser)
    if parser.at_punct("+") or parser.at_punct("-"):
        op = parser.advance().text
        return Arithmetic(op=op, left=left, right=_parse_set_operand(parser))
    return left


def _parse_set_operand(parser: ExpressionParser) -> SetOperand:
    token = parser.peek()
    if token.kind == "value_ref":
        return parser.parse_value()
    if token.kind == "identifier" and parser.peek(1).text == "(":
        name = parser.advance().text
        parser.expect_punct("(")
        if name == "if_not_exists":
            path = parser.parse_path()
            parser.expect_punct(",")
            default = _parse_set_operand(parser)
            parser.expect_punct(")")
            return IfNotExists(path=path, default=default)
        if name == "list_append":
            left = _parse_set_operand(parser)
            parser.expect_punct(",")
            right = _parse_set_operand(parser)
            parser.expect_punct(")")
            return ListAppend(left=left, right=right)
        raise ValidationError(f"Invalid {_KIND}: Invalid function name; function: {name}")
    return PathOperand(parser.parse_path())


def _evaluate(value: SetValue, item: Mapping[str, AttributeValue]) -> AttributeValue:
    if isinstance(value, ValueOperand):
        return value.value
    if isinstance(value, PathOperand):
        found = resolve_path(item, value.path)
        if found is None:
            raise ValidationError(
                "The provided expression refers to an attribute that does not exist in the item: "
                f"{value.path}"
            )
        return found
    if isinstance(value, IfNotExists):
        existing = resolve_path(item, value.path)
        return existing if existing is not None else _evaluate(value.default, item)
    if isinstance(value, ListAppend):
        left = _evaluate(value.left, item)
        right = _evaluate(value.right, item)
        if left.type != "L" or right.type != "L":
            raise ValidationError(
                "Invalid UpdateExpression: Incorrect operand type for operator or function; "
                "operator or function: list_append"
            )
        return AttributeValue.list_of(left.value + right.value)

    left = _evaluate(value.left, item)
    right = _evaluate(value.right, item)
    if left.type != "N" or right.type != "N":
        raise ValidationError(
            f"An operand in the update expression has an incorrect data type; operator: {value.op}"
        )
    if value.op == "+":
        return AttributeValue("N", add_numbers(left.value, right.value))
    return AttributeValue("N", subtract_numbers(left.value, right.value))


def _add(existing: AttributeValue | None, value: AttributeValue) -> AttributeValue:
    if existing is None:
        return value
    if existing.type == "N" and value.type == "N":
        return AttributeValue("N", add_numbers(existing.value, value.value))
    if existing.is_set and existing.type == value.type:
        return AttributeValue(existing.type, existing.value | value.value)
    raise ValidationError(
        f"An operand in the update expression has an incorrect data type; ADD {value.type} to {existing.type}"
    )


def _delete(existing: AttributeValue | None, value: AttributeValue) -> AttributeValue | None:
    if existing is None:
        return None
    if existing.type != value.type:
        raise ValidationError(
            f"An operand in the update expression has an incorrect data type; DELETE {value.type} from {existing.type}"
        )
    remaining = existing.value - value.value
    if not remaining:
        return None
    return AttributeValue(existing.type, remaining)


def _set_path(item: Item, path: Path, value: AttributeValue) -> Item:
    result = dict(item)
    if len(path.elements) == 1:
        result[path.root] = value
        return result
    if path.root not in result:
        raise _invalid_path(path)
    result[path.root] = _assign(result[path.root], path.elements[1:], value, path)
    return result


def _assign(
    container: AttributeValue, elements: tuple[str | int, ...], value: AttributeValue, path: Path
) -> AttributeValue:
    key, rest = elements[0], elements[1:]
    if isinstance(key, int):
        if container.type != "L":
            raise _invalid_path(path)
        values = list(container.value)
        if rest:
            if key >= len(values):
                raise _invalid_path(path)
            values[key] = _assign(values[key], rest, value, path)
        elif key >= len(values):
            values.append(value)
        else:
            values[key] = value
        return AttributeValue.list_of(values)

    if container.type != "M":
        raise _invalid_path(path)
    children = dict(container.value)
    if rest:
        if key not in children:
            raise _invalid_path(path)
        children[key] = _assign(children[key], rest, value, path)
    else:
        children[key] = value
    return AttributeValue.map_of(children)


def _remove_path(item: Item, path: Path) -> Item:
    result = dict(item)
    if len(path.elements) == 1:
        result.pop(path.root, None)
        return result
    if path.root in result:
        result[path.root] = _without(result[path.root], path.elements[1:])
    return result


def _without(container: AttributeValue, elements: tuple[str | int, ...]) -> AttributeValue:
    key, rest = elements[0], elements[1:]
    if isinstance(key, int):
        if container.type != "L" or key >= len(container.value):
            return container
        values = list(container.value)
        if rest:
            values[key] = _without(values[key], rest)
        else:
            del values[key]
        return AttributeValue.list_of(values)

    if container.type != "M" or key not in container.value:
        return container
    children = dict(container.value)
    if rest:
        children[key] = _without(children[key], rest)
    else:
        del children[key]
    return AttributeValue.map_of(children)


def _removal_order(path: Path) -> tuple[tuple[int, str | int], ...]:
    return tuple((1, e) if isinstance(e, int) else (0, e) for e in path.elements)


def _check_overlaps(paths: list[Path]) -> None:
    for i, first in enumerate(paths):
        for second in paths[i + 1 :]:
            shorter, longer = sorted((first.elements, second.elements), key=len)
            if longer[: len(shorter)] == shorter:
                raise ValidationError(
                    f"Invalid {_KIND}: Two document paths overlap with each other; "
                    f"must remove or rewrite one of these paths; path one: {first}, path two: {second}"
                )


def _invalid_path(path: Path) -> ValidationError:
    return ValidationError(f"The document path provided in the update expression is invalid for update: {path}")
