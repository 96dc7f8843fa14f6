from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from .errors import ValidationError
from .validation import MaxNestedDepth, validate_expression
from .values import AttributeValue, Item, compare_values, value_size

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>\s+)
    |(?P<name_ref>\#[A-Za-z0-9_]+)
    |(?P<value_ref>:[A-Za-z0-9_]+)
    |(?P<comparator><>|<=|>=|=|<|>)
    |(?P<number>[0-9]+)
    |(?P<identifier>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<punct>[(),.\[\]+\-])
    """,
    re.VERBOSE,
)

CONDITION_KEYWORDS = frozenset({"AND", "OR", "NOT", "BETWEEN", "IN"})
CONDITION_FUNCTIONS = frozenset(
    {"attribute_exists", "attribute_not_exists", "attribute_type", "begins_with", "contains"}
)


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class ExpressionContext:
    expression: str
    names: Mapping[str, str] = field(default_factory=dict)
    values: Mapping[str, AttributeValue] = field(default_factory=dict)

    def resolve_name(self, placeholder: str) -> str:
        name = self.names.get(placeholder)
        if name is None:
            raise ValidationError(
                "An expression attribute name used in the document path is not defined; "
                f"attribute name: {placeholder}"
            )
        return name

    def resolve_value(self, placeholder: str) -> AttributeValue:
        value = self.values.get(placeholder)
        if value is None:
            raise ValidationError(
                "An expression attribute value used in expression is not defined; "
                f"attribute value: {placeholder}"
            )
        return value


@dataclass(frozen=True)
class Path:
    elements: tuple[str | int, ...]

    @property
    def root(self) -> str:
        return str(self.elements[0])

    def __str__(self) -> str:
        out = str(self.elements[0])
        for element in self.elements[1:]:
            out += f"[{element}]" if isinstance(element, int) else f".{element}"
        return out


@dataclass(frozen=True)
class PathOperand:
    path: Path


@dataclass(frozen=True)
class ValueOperand:
    placeholder: str
    value: AttributeValue


@dataclass(frozen=True)
class SizeOperand:
    path: Path


type Operand = PathOperand | ValueOperand | SizeOperand


@dataclass(frozen=True)
class Comparison:
    op: str
    left: Operand
    right: Operand


@dataclass(frozen=True)
class Between:
    operand: Operand
    low: Operand
    high: Operand


@dataclass(frozen=True)
class In:
    operand: Operand
    choices: tuple[Operand, ...]


@dataclass(frozen=True)
class FunctionCondition:
    name: str
    args: tuple[Operand, ...]


@dataclass(frozen=True)
class And:
    left: Condition
    right: Condition


@dataclass(frozen=True)
class Or:
    left: Condition
    right: Condition


@dataclass(frozen=True)
class Not:
    operand: Condition


type Condition = Comparison | Between | In | FunctionCondition | And | Or | Not


def tokenize(expression: str, *, kind: str = "Expression") -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_PATTERN.match(expression, pos)
        if match is None:
            raise ValidationError(
                f"Invalid {kind}: Syntax error; token: {expression[pos]!r}, near position {pos}"
            )
        if match.lastgroup != "space":
            tokens.append(Token(kind=str(match.lastgroup), text=match.group(), position=pos))
        pos = match.end()
    tokens.append(Token(kind="eof", text="", position=len(expression)))
    return tokens


class ExpressionParser:
    def __init__(self, context: ExpressionContext, *, kind: str) -> None:
        validate_expression(context.expression, kind=kind)
        self.context = context
        self.kind = kind
        self._tokens = tokenize(context.expression, kind=kind)
        self._pos = 0

    def peek(self, offset: int = 0) -> Token:
        index = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[index]

    def advance(self) -> Token:
        token = self.peek()
        if token.kind != "eof":
            self._pos += 1
        return token

    def at_end(self) -> bool:
        return self.peek().kind == "eof"

    def at_punct(self, text: str) -> bool:
        token = self.peek()
        return token.kind == "punct" and token.text == text

    def at_keyword(self, *words: str) -> bool:
        token = self.peek()
        return token.kind == "identifier" and token.text.upper() in words

    def expect_punct(self, text: str) -> Token:
        if not self.at_punct(text):
            raise self.error(self.peek(), f"expected {text!r}")
        return self.advance()

    def expect_keyword(self, word: str) -> Token:
        if not self.at_keyword(word):
            raise self.error(self.peek(), f"expected {word}")
        return self.advance()

    def expect_end(self) -> None:
        if not self.at_end():
            raise self.error(self.peek())

    def error(self, token: Token, detail: str | None = None) -> ValidationError:
        text = token.text or "<EOF>"
        message = f"Invalid {self.kind}: Syntax error; token: {text!r}, near position {token.position}"
        if detail:
            message += f" ({detail})"
        return ValidationError(message)

    def parse_path(self) -> Path:
        elements: list[str | int] = [self._path_name()]
        while True:
            if self.at_punct("."):
                self.advance()
                elements.append(self._path_name())
            elif self.at_punct("["):
                self.advance()
                token = self.advance()
                if token.kind != "number":
                    raise self.error(token, "list index must be a non-negative integer")
                self.expect_punct("]")
                elements.append(int(token.text))
            else:
                break
        if len(elements) > MaxNestedDepth:
            raise ValidationError(
                f"Invalid {self.kind}: The document path has too many nesting levels; "
                f"nesting levels: {len(elements)}"
            )
        return Path(tuple(elements))

    def parse_value(self) -> ValueOperand:
        token = self.advance()
        if token.kind != "value_ref":
            raise self.error(token, "expected an expression attribute value")
        return ValueOperand(placeholder=token.text, value=self.context.resolve_value(token.text))

    def at_path(self) -> bool:
        token = self.peek()
        if token.kind == "name_ref":
            return True
        return token.kind == "identifier" and not (
            token.text.upper() in CONDITION_KEYWORDS or self.peek(1).text == "("
        )

    def parse_operand(self) -> Operand:
        token = self.peek()
        if token.kind == "value_ref":
            return self.parse_value()
        if token.kind == "identifier" and self.peek(1).text == "(":
            if token.text != "size":
                raise ValidationError(
                    f"Invalid {self.kind}: The function is not allowed to be used this way in an "
                    f"expression; function: {token.text}"
                )
            self.advance()
            self.expect_punct("(")
            path = self.parse_path()
            self.expect_punct(")")
            return SizeOperand(path)
        if self.at_path():
            return PathOperand(self.parse_path())
        raise self.error(token)

    def parse_condition(self) -> Condition:
        left = self._parse_and()
        while self.at_keyword("OR"):
            self.advance()
            left = Or(left, self._parse_and())
        return left

    def _parse_and(self) -> Condition:
        left = self._parse_not()
        while self.at_keyword("AND"):
            self.advance()
            left = And(left, self._parse_not())
        return left

    def _parse_not(self) -> Condition:
        if self.at_keyword("NOT"):
            self.advance()
            return Not(self._parse_not())
        return self._parse_primary()

    def _parse_primary(self) -> Condition:
        token = self.peek()
        if self.at_punct("("):
            self.advance()
            inner = self.parse_condition()
            self.expect_punct(")")
            return inner

        if token.kind == "identifier" and self.peek(1).text == "(" and token.text != "size":
            return self._parse_function()

        operand = self.parse_operand()
        token = self.peek()
        if token.kind == "comparator":
            self.advance()
            return Comparison(op=token.text, left=operand, right=self.parse_operand())
        if self.at_keyword("BETWEEN"):
            self.advance()
            low = self.parse_operand()
            self.expect_keyword("AND")
            high = self.parse_operand()
            _check_between_bounds(low, high, kind=self.kind)
            return Between(operand=operand, low=low, high=high)
        if self.at_keyword("IN"):
            self.advance()
            self.expect_punct("(")
            choices = [self.parse_operand()]
            while self.at_punct(","):
                self.advance()
                choices.append(self.parse_operand())
            self.expect_punct(")")
            if len(choices) > 100:
                raise ValidationError(f"Invalid {self.kind}: The IN operator accepts at most 100 operands")
            return In(operand=operand, choices=tuple(choices))
        raise self.error(token, "expected a comparator, BETWEEN or IN")

    def _parse_function(self) -> Condition:
        name_token = self.advance()
        name = name_token.text
        if name not in CONDITION_FUNCTIONS:
            if name in {"list_append", "if_not_exists"}:
                raise ValidationError(
                    f"Invalid {self.kind}: The function is not allowed to be used this way in an "
                    f"expression; function: {name}"
                )
            raise ValidationError(f"Invalid {self.kind}: Invalid function name; function: {name}")

        self.expect_punct("(")
        args = [self.parse_operand()]
        while self.at_punct(","):
            self.advance()
            args.append(self.parse_operand())
        self.expect_punct(")")

        expected = 1 if name in {"attribute_exists", "attribute_not_exists"} else 2
        if len(args) != expected:
            raise ValidationError(
                f"Invalid {self.kind}: Incorrect number of operands for operator or function; "
                f"operator or function: {name}, number of operands: {len(args)}"
            )
        if not isinstance(args[0], PathOperand):
            raise ValidationError(
                f"Invalid {self.kind}: Operator or function requires a document path; "
                f"operator or function: {name}"
            )
        if name == "attribute_type":
            type_arg = args[1]
            if not isinstance(type_arg, ValueOperand) or type_arg.value.type != "S":
                raise ValidationError(f"Invalid {self.kind}: attribute_type requires a string type name")
        return FunctionCondition(name=name, args=tuple(args))

    def _path_name(self) -> str:
        token = self.advance()
        if token.kind == "name_ref":
            return self.context.resolve_name(token.text)
        if token.kind == "identifier" and token.text.upper() not in CONDITION_KEYWORDS:
            return token.text
        raise self.error(token, "expected an attribute name")


def parse_condition(context: ExpressionContext, *, kind: str = "ConditionExpression") -> Condition:
    parser = ExpressionParser(context, kind=kind)
    condition = parser.parse_condition()
    parser.expect_end()
    return condition


def resolve_path(item: Mapping[str, AttributeValue] | None, path: Path) -> AttributeValue | None:
    if item is None:
        return None
    current = item.get(path.root)
    for element in path.elements[1:]:
        if current is None:
            return None
        if isinstance(element, int):
            if current.type != "L" or element >= len(current.value):
                return None
            current = current.value[element]
        else:
            if current.type != "M":
                return None
            current = current.value.get(element)
    return current


def evaluate_condition(condition: Condition, item: Mapping[str, AttributeValue] | None) -> bool:
    if isinstance(condition, And):
        return evaluate_condition(condition.left, item) and evaluate_condition(condition.right, item)
    if isinstance(condition, Or):
        return evaluate_condition(condition.left, item) or evaluate_condition(condition.right, item)
    if isinstance(condition, Not):
        return not evaluate_condition(condition.operand, item)
    if isinstance(condition, Comparison):
        return _compare(
            condition.op, operand_value(condition.left, item), operand_value(condition.right, item)
        )
    if isinstance(condition, Between):
        value = operand_value(condition.operand, item)
        low = operand_value(condition.low, item)
        high = operand_value(condition.high, item)
        if value is None or low is None or high is None:
            return False
        lower = compare_values(low, value)
        upper = compare_values(value, high)
        return lower is not None and upper is not None and lower <= 0 and upper <= 0
    if isinstance(condition, In):
        value = operand_value(condition.operand, item)
        if value is None:
            return False
        return any(value == operand_value(choice, item) for choice in condition.choices)
    if isinstance(condition, FunctionCondition):
        return _evaluate_function(condition, item)
    raise ValidationError(f"unsupported condition node: {type(condition).__name__}")


def operand_value(operand: Operand, item: Mapping[str, AttributeValue] | None) -> AttributeValue | None:
    if isinstance(operand, ValueOperand):
        return operand.value
    if isinstance(operand, PathOperand):
        return resolve_path(item, operand.path)
    size = None
    target = resolve_path(item, operand.path)
    if target is not None:
        size = value_size(target)
    if size is None:
        return None
    return AttributeValue("N", Decimal(size))


def parse_projection(context: ExpressionContext) -> tuple[Path, ...]:
    parser = ExpressionParser(context, kind="ProjectionExpression")
    paths = [parser.parse_path()]
    while parser.at_punct(","):
        parser.advance()
        paths.append(parser.parse_path())
    parser.expect_end()
    return tuple(paths)


def apply_projection(item: Mapping[str, AttributeValue], paths: tuple[Path, ...]) -> Item:
    tree: dict[str | int, dict | None] = {}
    for path in paths:
        node: dict[str | int, dict | None] = tree
        for position, element in enumerate(path.elements):
            if position == len(path.elements) - 1:
                node[element] = None
                break
            if element in node and node[element] is None:
                break
            node = node.setdefault(element, {})  # type: ignore[assignment]

    out: Item = {}
    for name, selection in tree.items():
        selected = _select(item.get(str(name)), selection)
        if selected is not None:
            out[str(name)] = selected
    return out


def _select(av: AttributeValue | None, selection: dict | None) -> AttributeValue | None:
    if av is None:
        return None
    if selection is None:
        return av
    if av.type == "M":
        children = {}
        for key, sub in selection.items():
            if isinstance(key, str):
                child = _select(av.value.get(key), sub)
                if child is not None:
                    children[key] = child
        return AttributeValue.map_of(children) if children else None
    if av.type == "L":
        elements = []
        for key in sorted(k for k in selection if isinstance(k, int)):
            if key < len(av.value):
                child = _select(av.value[key], selection[key])
                if child is not None:
                    elements.append(child)
        return AttributeValue.list_of(elements) if elements else None
    return None


def _compare(op: str, left: AttributeValue | None, right: AttributeValue | None) -> bool:
    if op == "<>":
        return left is None or right is None or left != right
    if left is None or right is None:
        return False
    if op == "=":
        return left == right

    result = compare_values(left, right)
    if result is None:
        return False
    match op:
        case "<":
            return result < 0
        case "<=":
            return result <= 0
        case ">":
            return result > 0
        case ">=":
            return result >= 0
        case _:
            raise ValidationError(f"unsupported comparator: {op}")


def _evaluate_function(condition: FunctionCondition, item: Mapping[str, AttributeValue] | None) -> bool:
    target = operand_value(condition.args[0], item)
    if condition.name == "attribute_exists":
        return target is not None
    if condition.name == "attribute_not_exists":
        return target is None

    argument = operand_value(condition.args[1], item)
    if target is None or argument is None:
        return False

    if condition.name == "attribute_type":
        return target.type == argument.value
    if condition.name == "begins_with":
        if target.type != argument.type or target.type not in {"S", "B"}:
            return False
        return bool(target.value.startswith(argument.value))
    if condition.name == "contains":
        return _contains(target, argument)
    raise ValidationError(f"Invalid function name; function: {condition.name}")


def _contains(target: AttributeValue, argument: AttributeValue) -> bool:
    if target.type == "S":
        return argument.type == "S" and argument.value in target.value
    if target.type == "B":
        return argument.type == "B" and argument.value in target.value
    if target.is_set:
        return argument in target.set_elements()
    if target.type == "L":
        return argument in target.value
    return False


def _check_between_bounds(low: Operand, high: Operand, *, kind: str) -> None:
    if isinstance(low, ValueOperand) and isinstance(high, ValueOperand):
        result = compare_values(low.value, high.value)
        if result is not None and result > 0:
            raise ValidationError(
                f"Invalid {kind}: The BETWEEN operator requires upper bound to be greater than or "
                f"equal to lower bound; lower operand: {low.placeholder}, upper operand: {high.placeholder}"
            )
