"""
Condition evaluator for condition nodes.

Predicates are written as JSON-logic style objects, e.g.
``{">": [{"var": "trigger.payload.temperature"}, 28]}``. They are parsed into
a small closed expression tree and evaluated against the run variables.

Null handling:
    ``null == null`` is true, ``null == x`` is false and ``!=`` is the
    negation of ``==``. Any ordering comparison (``>``, ``>=``, ``<``, ``<=``)
    involving null is false. Ordering compares numbers with numbers (numeric
    strings count as numbers, booleans do not) and strings with strings;
    every other pairing is false.
"""

import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from app.services.flow_processor.errors import InvalidPredicate


class Expression:
    """Base class for predicate expression nodes."""


@dataclass(frozen=True)
class Const(Expression):
    value: Any


@dataclass(frozen=True)
class Var(Expression):
    path: str
    default: Any = None


@dataclass(frozen=True)
class Comparison(Expression):
    operator: str
    left: Expression
    right: Expression


@dataclass(frozen=True)
class And(Expression):
    operands: Tuple[Expression, ...]


@dataclass(frozen=True)
class Or(Expression):
    operands: Tuple[Expression, ...]


@dataclass(frozen=True)
class Not(Expression):
    operand: Expression


ORDERING: Dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}

EQUALITY = {"==", "===", "!=", "!=="}

# Aliases accepted in predicate objects
LOGICAL_ALIASES = {"and": "and", "or": "or", "!": "not", "not": "not"}


def _args(value: Any) -> list:
    return list(value) if isinstance(value, list) else [value]


def _parse(raw: Any) -> Expression:
    if not isinstance(raw, dict):
        return Const(raw)

    if len(raw) != 1:
        raise InvalidPredicate(
            f"Predicate object must have exactly one operator, got {sorted(raw)}"
        )

    op, value = next(iter(raw.items()))
    args = _args(value)

    if op == "var":
        if len(args) not in (1, 2):
            raise InvalidPredicate(f"'var' takes 1 or 2 arguments, got {len(args)}")
        path = args[0]
        if path is None:
            path = ""
        if not isinstance(path, (str, int)) or isinstance(path, bool):
            raise InvalidPredicate(f"'var' path must be a string, got {path!r}")
        default = args[1] if len(args) == 2 else None
        return Var(str(path), default)

    if op in EQUALITY or op in ORDERING:
        if len(args) != 2:
            raise InvalidPredicate(f"'{op}' takes 2 arguments, got {len(args)}")
        return Comparison(op, _parse(args[0]), _parse(args[1]))

    logical = LOGICAL_ALIASES.get(op)
    if logical == "not":
        if len(args) != 1:
            raise InvalidPredicate(f"'{op}' takes 1 argument, got {len(args)}")
        return Not(_parse(args[0]))
    if logical in ("and", "or"):
        if not args:
            raise InvalidPredicate(f"'{op}' takes at least 1 argument")
        operands = tuple(_parse(arg) for arg in args)
        return And(operands) if logical == "and" else Or(operands)

    raise InvalidPredicate(f"Unknown operator: {op}")


def parse_predicate(raw: Any) -> Expression:
    """
    Parse a JSON-logic style predicate into an expression tree.

    Raises:
        InvalidPredicate: If the predicate is missing or malformed
    """
    if raw is None:
        raise InvalidPredicate("Condition node has no predicate")
    return _parse(raw)


def resolve_path(variables: Any, path: str) -> Any:
    """Resolve a dotted path, returning None as soon as a segment is absent."""
    if path == "":
        return variables

    current = variables
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _loose_equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    return left == right


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return _loose_equals(left, right)
    if op == "!=":
        return not _loose_equals(left, right)
    if op == "===":
        return _strict_equals(left, right)
    if op == "!==":
        return not _strict_equals(left, right)

    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return ORDERING[op](left_number, right_number)
    if isinstance(left, str) and isinstance(right, str):
        return ORDERING[op](left, right)
    return False


def _evaluate(expression: Expression, variables: Dict[str, Any]) -> Any:
    if isinstance(expression, Const):
        return expression.value
    if isinstance(expression, Var):
        value = resolve_path(variables, expression.path)
        return expression.default if value is None else value
    if isinstance(expression, Comparison):
        return _compare(
            expression.operator,
            _evaluate(expression.left, variables),
            _evaluate(expression.right, variables),
        )
    if isinstance(expression, And):
        return all(bool(_evaluate(op, variables)) for op in expression.operands)
    if isinstance(expression, Or):
        return any(bool(_evaluate(op, variables)) for op in expression.operands)
    if isinstance(expression, Not):
        return not _evaluate(expression.operand, variables)
    raise InvalidPredicate(f"Unsupported expression: {expression!r}")


def evaluate_predicate(predicate: Any, variables: Dict[str, Any]) -> bool:
    """
    Evaluate a predicate against run variables.

    Args:
        predicate: A parsed Expression or a raw JSON-logic style object
        variables: Variable bindings, e.g. {"trigger": {"payload": {...}}}

    Returns:
        The truth value of the predicate

    Raises:
        InvalidPredicate: If a raw predicate is malformed
    """
    if not isinstance(predicate, Expression):
        predicate = parse_predicate(predicate)
    return bool(_evaluate(predicate, variables))
