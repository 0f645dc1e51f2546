"""Allow-listed functions callable from expressions.

The names here are a compatibility surface: stored form definitions refer to
them, so removing or renaming one breaks existing forms.
"""

import math
import re
from typing import Any

from .errors import EvaluationRuntimeError

_NUMBER_PREFIX = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT_PREFIX = re.compile(r"^\s*[+-]?\d+")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_float(value: Any) -> float:
    """Leading-numeric-prefix parse; NaN when there is none."""
    if is_number(value):
        return float(value)
    m = _NUMBER_PREFIX.match(str(value)) if value is not None else None
    return float(m.group(0)) if m else math.nan


def parse_int(value: Any, base: int = 10) -> float | int:
    if is_number(value):
        if not math.isfinite(value):
            return math.nan
        return int(value)
    if value is None:
        return math.nan
    if base == 10:
        m = _INT_PREFIX.match(str(value))
        return int(m.group(0)) if m else math.nan
    try:
        return int(str(value).strip(), int(base))
    except ValueError:
        return math.nan


def to_number(value: Any) -> float | int:
    """Lenient conversion used by the aggregation helpers: junk counts as 0."""
    if is_number(value):
        return value if math.isfinite(value) else 0
    if isinstance(value, bool):
        return int(value)
    n = parse_float(value)
    return 0 if math.isnan(n) else n


def _require_number(name: str, value: Any) -> float | int:
    if is_number(value):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise EvaluationRuntimeError(f"{name}() expects a number, got {value!r}")


def js_round(x: Any) -> int | float:
    x = _require_number("round", x)
    if not math.isfinite(x):
        return x
    return math.floor(x + 0.5)


def js_string(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(js_string(v) for v in value)
    return str(value)


def length(value: Any) -> int:
    if isinstance(value, (list, tuple, str, dict)):
        return len(value)
    return 0


def sum_values(*args: Any) -> float | int:
    total = 0
    for arg in args:
        if isinstance(arg, (list, tuple)):
            total += sum(to_number(item) for item in arg)
        else:
            total += to_number(arg)
    return total


def count(*args: Any) -> int:
    n = 0
    for arg in args:
        items = arg if isinstance(arg, (list, tuple)) else [arg]
        n += sum(1 for item in items if item is not None and item != "")
    return n


def sum_line_total(rows: Any) -> float | int:
    """Sum lineTotal across rows, falling back to quantity * unitPrice per row."""
    if not isinstance(rows, (list, tuple)):
        return 0
    total = 0
    for row in rows:
        if not isinstance(row, dict):
            continue
        if row.get("lineTotal") is not None:
            total += to_number(row["lineTotal"])
        elif row.get("quantity") is not None and row.get("unitPrice") is not None:
            total += to_number(row["quantity"]) * to_number(row["unitPrice"])
    return total


def _coerce(value: Any) -> float:
    """Whole-value numeric coercion: '' and null are 0, junk is NaN."""
    if value is None:
        return 0.0
    if isinstance(value, (bool, int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def _is_nan(value: Any) -> bool:
    return math.isnan(_coerce(value))


def _is_finite(value: Any) -> bool:
    return math.isfinite(_coerce(value))


def _min(*args: Any) -> float | int:
    if not args:
        return math.inf
    return min(_require_number("min", a) for a in args)


def _max(*args: Any) -> float | int:
    if not args:
        return -math.inf
    return max(_require_number("max", a) for a in args)


def _sqrt(x: Any) -> float:
    x = _require_number("sqrt", x)
    return math.sqrt(x) if x >= 0 else math.nan


def _pow(x: Any, y: Any) -> float:
    """Float power: overflow is Infinity, a non-real result is NaN."""
    x = _require_number("pow", x)
    y = _require_number("pow", y)
    try:
        return math.pow(x, y)
    except OverflowError:
        return math.inf
    except ValueError:
        # pow(0, -1) and negative bases with fractional exponents
        return math.inf if x == 0 else math.nan


BUILTINS = {
    "abs": lambda x: abs(_require_number("abs", x)),
    "round": js_round,
    "floor": lambda x: math.floor(_require_number("floor", x)),
    "ceil": lambda x: math.ceil(_require_number("ceil", x)),
    "min": _min,
    "max": _max,
    "sqrt": _sqrt,
    "pow": _pow,
    "parseFloat": parse_float,
    "parseInt": parse_int,
    "isNaN": _is_nan,
    "isFinite": _is_finite,
    "toString": js_string,
    "asString": js_string,
    "getAsString": js_string,
    "toNumber": to_number,
    "length": length,
    "sum": sum_values,
    "count": count,
    "sumLineTotal": sum_line_total,
}

# "if" is evaluated lazily by the evaluator, so it is not in BUILTINS.
SPECIAL_FORMS = {"if"}

UNSUPPORTED = {"sin", "cos", "tan", "log", "exp"}

FUNCTION_NAMES = frozenset(BUILTINS) | SPECIAL_FORMS


def call(name: str, args: list[Any]) -> Any:
    if name in UNSUPPORTED:
        raise EvaluationRuntimeError(f"Function {name} is not supported")
    if name not in BUILTINS:
        raise EvaluationRuntimeError(f"unknown function: {name}")
    try:
        return BUILTINS[name](*args)
    except TypeError as e:
        raise EvaluationRuntimeError(f"{name}(): {e}") from e
    except (OverflowError, ValueError) as e:
        raise EvaluationRuntimeError(f"{name}(): {e}") from e
