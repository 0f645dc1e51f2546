"""Expression evaluation against a field-value binding.

The public entry point is ExpressionEngine: parse errors, unresolved names and
runtime failures all come back as ExpressionResult(value=None, error=...)
instead of propagating, so one bad field never aborts a calculation pass.
"""

import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from . import ast
from .errors import EvaluationRuntimeError, FormCalcError, ParseError, UnresolvedReferenceError
from .functions import FUNCTION_NAMES, call, is_number, js_string
from .parser import parse

# Names that look like identifiers but never name a field.
RESERVED_NAMES = FUNCTION_NAMES | {"Math"}


class EvaluationContext(BaseModel):
    """Values an expression can read: raw input, computed values, metadata."""

    form_values: dict[str, Any] = {}
    calculated_values: dict[str, Any] = {}
    metadata: dict[str, Any] = {}

    def merged(self) -> dict[str, Any]:
        """Flat view; computed values win over raw ones, metadata fills gaps."""
        view = dict(self.metadata)
        view.update(self.form_values)
        view.update(self.calculated_values)
        return view


class ExpressionResult(BaseModel):
    value: Any = None
    error: str | None = None
    dependencies: list[str] = []

    @property
    def ok(self) -> bool:
        return self.error is None


class ValidationResult(BaseModel):
    valid: bool
    error: str | None = None


class Scope:
    """Read-only binding that records which names an evaluation touched."""

    def __init__(self, values: Mapping[str, Any]):
        self.values = values
        self.reads: dict[str, None] = {}

    def has(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str) -> Any:
        if name not in self.values:
            raise UnresolvedReferenceError(name)
        self.reads.setdefault(name)
        return self.values[name]


def truthy(value: Any) -> bool:
    if isinstance(value, (list, dict)):
        return True
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _numeric(value: Any) -> bool:
    if is_number(value) or isinstance(value, bool):
        return True
    if isinstance(value, str) and value.strip():
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def to_operand(value: Any, op: str) -> int | float:
    """Coerce an arithmetic operand; numeric strings are accepted."""
    if is_number(value):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise EvaluationRuntimeError(f"cannot apply '{op}' to {value!r}")


def loose_equals(left: Any, right: Any) -> bool:
    if isinstance(left, str) and not isinstance(right, str) and _numeric(left) and _numeric(right):
        return float(left) == float(right)
    if isinstance(right, str) and not isinstance(left, str) and _numeric(left) and _numeric(right):
        return float(left) == float(right)
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if not (isinstance(left, str) and isinstance(right, str)):
        left = to_operand(left, op)
        right = to_operand(right, op)
    match op:
        case "<":
            return left < right
        case ">":
            return left > right
        case "<=":
            return left <= right
        case _:
            return left >= right


def _arith_unchecked(op: str, left: Any, right: Any) -> Any:
    if op == "+":
        if _numeric(left) and _numeric(right):
            return to_operand(left, op) + to_operand(right, op)
        if isinstance(left, str) or isinstance(right, str):
            return js_string(left) + js_string(right)
        raise EvaluationRuntimeError(f"cannot apply '+' to {left!r} and {right!r}")

    a = to_operand(left, op)
    b = to_operand(right, op)
    match op:
        case "-":
            return a - b
        case "*":
            return a * b
        case "/":
            if b == 0:
                raise EvaluationRuntimeError("division by zero")
            return a / b
        case "%":
            if b == 0:
                raise EvaluationRuntimeError("modulo by zero")
            # sign follows the dividend
            return math.fmod(a, b)
        case _:
            raise EvaluationRuntimeError(f"unknown op: {op}")


def _arith(op: str, left: Any, right: Any) -> Any:
    try:
        return _arith_unchecked(op, left, right)
    except OverflowError as e:
        raise EvaluationRuntimeError(f"numeric overflow in '{op}'") from e


def _member(obj: Any, fld: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(fld)
    if fld == "length" and isinstance(obj, (list, str)):
        return len(obj)
    raise EvaluationRuntimeError(f"cannot read property '{fld}' of {js_string(obj)}")


def evaluate(expr: ast.Expr, scope: Scope) -> Any:
    """Evaluate an expression in scope."""
    match expr:
        case ast.Literal(value=v):
            return v

        case ast.Var(name=name):
            return scope.get(name)

        case ast.BinOp(op="&&", left=left, right=right):
            left_val = evaluate(left, scope)
            return evaluate(right, scope) if truthy(left_val) else left_val

        case ast.BinOp(op="||", left=left, right=right):
            left_val = evaluate(left, scope)
            return left_val if truthy(left_val) else evaluate(right, scope)

        case ast.BinOp(op=op, left=left, right=right):
            left_val = evaluate(left, scope)
            right_val = evaluate(right, scope)
            match op:
                case "==":
                    return loose_equals(left_val, right_val)
                case "!=":
                    return not loose_equals(left_val, right_val)
                case "<" | ">" | "<=" | ">=":
                    return _compare(op, left_val, right_val)
                case _:
                    return _arith(op, left_val, right_val)

        case ast.UnaryOp(op=op, operand=operand):
            v = evaluate(operand, scope)
            match op:
                case "-":
                    return -to_operand(v, op)
                case "+":
                    return to_operand(v, op)
                case "!":
                    return not truthy(v)
                case _:
                    raise EvaluationRuntimeError(f"unknown unary op: {op}")

        case ast.Call(func="if", args=args):
            if len(args) != 3:
                raise EvaluationRuntimeError("if() expects 3 arguments")
            cond, then_e, else_e = args
            return evaluate(then_e, scope) if truthy(evaluate(cond, scope)) else evaluate(else_e, scope)

        case ast.Call(func=func, args=args):
            return call(func, [evaluate(a, scope) for a in args])

        case ast.FieldAccess(obj=obj, field=fld):
            dotted = ast.dotted_name(expr)
            if dotted is not None and scope.has(dotted):
                return scope.get(dotted)
            if fld == "value":
                return evaluate(obj, scope)
            return _member(evaluate(obj, scope), fld)

        case ast.Cond(condition=cond, then_expr=then_e, else_expr=else_e):
            if truthy(evaluate(cond, scope)):
                return evaluate(then_e, scope)
            return evaluate(else_e, scope)

        case _:
            raise EvaluationRuntimeError(f"unknown expr type: {type(expr)}")


def finalize(value: Any) -> Any:
    """Reject NaN/Infinity and fold integral floats to int."""
    if isinstance(value, complex):
        raise EvaluationRuntimeError("expression produced a non-real number")
    if isinstance(value, float):
        if math.isnan(value):
            raise EvaluationRuntimeError("expression produced NaN")
        if math.isinf(value):
            raise EvaluationRuntimeError("expression produced Infinity")
        if value.is_integer():
            return int(value)
    return value


def collect_references(expr: ast.Expr, refs: dict[str, None]) -> None:
    """Walk the AST collecting field ids, in first-seen order."""
    match expr:
        case ast.Literal():
            pass
        case ast.Var(name=name):
            if name not in RESERVED_NAMES:
                refs.setdefault(name)
        case ast.FieldAccess(obj=obj, field=fld):
            dotted = ast.dotted_name(expr)
            if dotted is None:
                collect_references(obj, refs)
            elif fld == "value":
                collect_references(obj, refs)
            elif dotted.split(".", 1)[0] not in RESERVED_NAMES:
                refs.setdefault(dotted)
        case ast.BinOp(left=left, right=right):
            collect_references(left, refs)
            collect_references(right, refs)
        case ast.UnaryOp(operand=operand):
            collect_references(operand, refs)
        case ast.Call(args=args):
            for arg in args:
                collect_references(arg, refs)
        case ast.Cond(condition=cond, then_expr=then_e, else_expr=else_e):
            collect_references(cond, refs)
            collect_references(then_e, refs)
            collect_references(else_e, refs)


class ExpressionEngine:
    """Parses, analyses and evaluates expression text.

    Parsed trees and dependency lists are cached per distinct expression text.
    """

    def __init__(self):
        self._ast_cache: dict[str, ast.Expr | ParseError] = {}
        self._dependency_cache: dict[str, list[str]] = {}

    def parse(self, text: str) -> ast.Expr:
        """Parse text, raising ParseError; results are memoized."""
        cached = self._ast_cache.get(text)
        if cached is None:
            try:
                cached = parse(text)
            except ParseError as e:
                cached = e
            self._ast_cache[text] = cached
        if isinstance(cached, ParseError):
            raise cached
        return cached

    def evaluate(
        self, text: str, context: Mapping[str, Any] | EvaluationContext
    ) -> ExpressionResult:
        values = context.merged() if isinstance(context, EvaluationContext) else context
        scope = Scope(values)
        try:
            tree = self.parse(text)
            value = finalize(evaluate(tree, scope))
        except FormCalcError as e:
            return ExpressionResult(
                value=None,
                error=f"Expression evaluation failed: {e}",
                dependencies=self.get_dependencies(text),
            )
        except RecursionError:
            return ExpressionResult(
                value=None,
                error="Expression evaluation failed: expression nested too deeply",
                dependencies=self.get_dependencies(text),
            )
        except OverflowError as e:
            return ExpressionResult(
                value=None,
                error=f"Expression evaluation failed: numeric overflow ({e})",
                dependencies=self.get_dependencies(text),
            )
        return ExpressionResult(value=value, dependencies=list(scope.reads))

    def get_dependencies(self, text: str) -> list[str]:
        """Field ids referenced by the expression text; [] if it does not parse."""
        if text in self._dependency_cache:
            return list(self._dependency_cache[text])

        try:
            tree = self.parse(text)
        except ParseError:
            deps: list[str] = []
        else:
            refs: dict[str, None] = {}
            collect_references(tree, refs)
            deps = list(refs)
        self._dependency_cache[text] = deps
        return list(deps)

    def validate(self, text: str) -> ValidationResult:
        try:
            self.parse(text)
        except ParseError as e:
            return ValidationResult(valid=False, error=f"Invalid expression: {e}")
        except RecursionError:
            return ValidationResult(valid=False, error="Invalid expression: nested too deeply")
        return ValidationResult(valid=True)

    def clear(self) -> None:
        self._ast_cache.clear()
        self._dependency_cache.clear()
