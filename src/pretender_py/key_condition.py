from __future__ import annotations

from dataclasses import dataclass

from .errors import ValidationError
from .expression import (
    And,
    Between,
    Comparison,
    Condition,
    ExpressionContext,
    ExpressionParser,
    FunctionCondition,
    Not,
    Or,
    Path,
    PathOperand,
    ValueOperand,
)
from .keys import SortKeyRange, encode_key_value, upper_bound
from .query import SortKeyCondition
from .values import AttributeValue

_KIND = "KeyConditionExpression"


@dataclass(frozen=True)
class KeyCondition:
    hash_key: str
    hash_value: AttributeValue
    sort_key: str | None = None
    sort: SortKeyCondition | None = None

    def sort_range(self) -> SortKeyRange:
        return sort_key_range(self.sort)


def parse_key_condition(context: ExpressionContext, *, hash_key: str, sort_key: str | None) -> KeyCondition:
    parser = ExpressionParser(context, kind=_KIND)
    condition = parser.parse_condition()
    parser.expect_end()

    terms = _flatten(condition)
    if len(terms) > 2:
        raise ValidationError(f"Invalid {_KIND}: The expression has too many conditions")

    hash_value: AttributeValue | None = None
    sort: SortKeyCondition | None = None
    for attribute, term in terms:
        if attribute == hash_key and hash_value is None:
            if not isinstance(term, Comparison) or term.op != "=":
                raise ValidationError(f"Query key condition not supported: hash key {hash_key} requires '='")
            hash_value = _scalar(term.right)
            continue
        if sort_key is not None and attribute == sort_key and sort is None:
            sort = _sort_condition(term)
            continue
        if attribute in {hash_key, sort_key}:
            raise ValidationError(f"Invalid {_KIND}: key attribute {attribute} appears more than once")
        raise ValidationError(f"Query condition missed key schema element: {attribute} is not a key attribute")

    if hash_value is None:
        raise ValidationError(f"Query condition missed key schema element: {hash_key}")
    return KeyCondition(hash_key=hash_key, hash_value=hash_value, sort_key=sort_key, sort=sort)


def sort_key_range(condition: SortKeyCondition | None) -> SortKeyRange:
    if condition is None:
        return SortKeyRange()

    encoded = [encode_key_value(v) for v in condition.values]
    match condition.op:
        case "=":
            return SortKeyRange(lower=encoded[0], upper=upper_bound(encoded[0]))
        case "<":
            return SortKeyRange(upper=encoded[0])
        case "<=":
            return SortKeyRange(upper=upper_bound(encoded[0]))
        case ">":
            return SortKeyRange(lower=upper_bound(encoded[0]))
        case ">=":
            return SortKeyRange(lower=encoded[0])
        case "between":
            return SortKeyRange(lower=encoded[0], upper=upper_bound(encoded[1]))
        case "begins_with":
            return SortKeyRange(prefix=encoded[0])
        case _:
            raise ValidationError(f"unsupported sort key operator: {condition.op}")


def _flatten(condition: Condition) -> list[tuple[str, Condition]]:
    if isinstance(condition, And):
        return _flatten(condition.left) + _flatten(condition.right)
    if isinstance(condition, Or):
        raise ValidationError(f"Invalid operator used in {_KIND}: OR")
    if isinstance(condition, Not):
        raise ValidationError(f"Invalid operator used in {_KIND}: NOT")
    if isinstance(condition, Comparison):
        if condition.op == "<>":
            raise ValidationError(f"Unsupported operator in {_KIND}: <>")
        return [(_attribute(condition.left), condition)]
    if isinstance(condition, Between):
        return [(_attribute(condition.operand), condition)]
    if isinstance(condition, FunctionCondition):
        if condition.name != "begins_with":
            raise ValidationError(f"Invalid operator used in {_KIND}: {condition.name}")
        return [(_attribute(condition.args[0]), condition)]
    raise ValidationError(f"Invalid operator used in {_KIND}: {type(condition).__name__.upper()}")


def _attribute(operand: object) -> str:
    if not isinstance(operand, PathOperand):
        raise ValidationError(f"Invalid {_KIND}: the left operand must be a key attribute name")
    path: Path = operand.path
    if len(path.elements) != 1:
        raise ValidationError(f"Invalid {_KIND}: nested attributes cannot be used as keys: {path}")
    return path.root


def _scalar(operand: object) -> AttributeValue:
    if not isinstance(operand, ValueOperand):
        raise ValidationError(f"Invalid {_KIND}: key conditions compare against expression attribute values")
    if not operand.value.is_scalar:
        raise ValidationError(
            "One or more parameter values were invalid: Condition parameter type does not match schema type"
        )
    return operand.value


def _sort_condition(term: Condition) -> SortKeyCondition:
    if isinstance(term, Comparison):
        value = _scalar(term.right)
        match term.op:
            case "=":
                return SortKeyCondition.eq(value)
            case "<":
                return SortKeyCondition.lt(value)
            case "<=":
                return SortKeyCondition.lte(value)
            case ">":
                return SortKeyCondition.gt(value)
            case ">=":
                return SortKeyCondition.gte(value)
    if isinstance(term, Between):
        low = _scalar(term.low)
        high = _scalar(term.high)
        if low.type != high.type:
            raise ValidationError(f"Invalid {_KIND}: BETWEEN bounds must have the same type")
        return SortKeyCondition.between(low, high)
    if isinstance(term, FunctionCondition):
        prefix = _scalar(term.args[1])
        if prefix.type not in {"S", "B"}:
            raise ValidationError(
                f"Invalid {_KIND}: Incorrect operand type for operator or function; "
                f"operator or function: begins_with, operand type: {prefix.type}"
            )
        return SortKeyCondition.begins_with(prefix)
    raise ValidationError(f"Invalid {_KIND}: unsupported sort key condition")
