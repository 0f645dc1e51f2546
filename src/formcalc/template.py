"""{{placeholder}} substitution for free text.

Example:
    processor = TemplateProcessor()
    processor.process_template("{{products.length}} items", {"products": [{}, {}]})
    # '2 items'
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

from .config import EngineSettings
from .evaluator import EvaluationContext
from .functions import count, js_string, length, sum_line_total, sum_values, to_number

logger = logging.getLogger(__name__)

_MISSING = object()

_CALL = re.compile(r"^([A-Za-z_]\w*)\((.*)\)$", re.DOTALL)
_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)$")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_key(key: str) -> str:
    """camelCase and snake_case spellings of a name normalize equal."""
    return _CAMEL_BOUNDARY.sub("_", key).replace("-", "_").lower()


def split_path(path: str) -> list[str]:
    """Split "items[0].name" into ["items", "0", "name"]."""
    return [part for part in re.split(r"[.\[\]]", path) if part]


def lookup_key(mapping: Mapping[str, Any], name: str) -> Any:
    """Find the key for name: exact, case-insensitive, camel/snake, substring."""
    if name in mapping:
        return name
    keys = [k for k in mapping if isinstance(k, str)]
    lowered = name.lower()
    for key in keys:
        if key.lower() == lowered:
            return key
    normalized = normalize_key(name)
    for key in keys:
        if normalize_key(key) == normalized:
            return key
    for key in keys:
        if lowered in key.lower():
            return key
    return _MISSING


def _split_args(text: str) -> list[str]:
    args, current, quote = [], [], None
    for ch in text:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
            current.append(ch)
        elif ch == ",":
            args.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    tail = "".join(current).strip()
    if tail or args:
        args.append(tail)
    return args


def _group(number: float, max_decimals: int) -> str:
    text = f"{number:,.{max_decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_as(value: Any, kind: Any) -> str:
    """format(value, "currency" | "number" | "percent")."""
    if not isinstance(kind, str):
        return js_string(value)
    n = to_number(value)
    match kind.lower():
        case "currency":
            sign = "-" if n < 0 else ""
            return f"{sign}${abs(n):,.2f}"
        case "number":
            return _group(n, 3)
        case "percent":
            return f"{_group(n, 2)}%"
        case _:
            return js_string(value)


class TemplateProcessor:
    """Replaces {{path}} and {{helper(args)}} tokens with display text."""

    VARIABLE_PATTERN = re.compile(r"\{\{([^}]*)\}\}")

    HELPERS = {
        "length": lambda *args: length(args[0]) if args else 0,
        "sum": sum_values,
        "count": count,
        "sumLineTotal": lambda *args: sum_line_total(args[0]) if args else 0,
        "format": lambda *args: format_as(args[0], args[1]) if len(args) >= 2 else "",
    }

    def __init__(self, settings: EngineSettings | None = None):
        self.settings = settings or EngineSettings()

    def has_variables(self, text: str) -> bool:
        return bool(text) and self.VARIABLE_PATTERN.search(text) is not None

    def extract_variables(self, text: str) -> list[str]:
        found = (m.group(1).strip() for m in self.VARIABLE_PATTERN.finditer(text or ""))
        return list(dict.fromkeys(t for t in found if t))

    def process_template(self, text: str, values: Mapping[str, Any] | EvaluationContext) -> str:
        if not text:
            return text or ""
        if isinstance(values, EvaluationContext):
            values = values.merged()

        def substitute(m: re.Match) -> str:
            return self.format_value(self.resolve(m.group(1).strip(), values))

        return self.VARIABLE_PATTERN.sub(substitute, text)

    def resolve(self, token: str, values: Mapping[str, Any]) -> Any:
        """Value for a token, or None when nothing matches."""
        if not token:
            return None
        if self.settings.template_functions and (m := _CALL.match(token)):
            return self._call(m.group(1), m.group(2), values)
        value = self.resolve_path(token, values)
        return None if value is _MISSING else value

    def resolve_path(self, path: str, values: Mapping[str, Any]) -> Any:
        if path in values:
            return values[path]

        current: Any = values
        for segment in split_path(path):
            if isinstance(current, Mapping):
                key = lookup_key(current, segment)
                if key is not _MISSING:
                    current = current[key]
                elif segment == "length":
                    current = len(current)
                else:
                    return _MISSING
                continue
            if isinstance(current, (list, tuple)):
                if segment == "length":
                    current = len(current)
                elif segment.isdigit() and int(segment) < len(current):
                    current = current[int(segment)]
                else:
                    return _MISSING
            elif isinstance(current, str) and segment == "length":
                current = len(current)
            else:
                return _MISSING
        return current

    def _call(self, name: str, arg_text: str, values: Mapping[str, Any]) -> Any:
        helper = self.HELPERS.get(name)
        if helper is None:
            logger.debug("Unknown template helper: %s", name)
            return None
        args = [self._argument(a, values) for a in _split_args(arg_text)]
        return helper(*args)

    def _argument(self, arg: str, values: Mapping[str, Any]) -> Any:
        if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in "\"'":
            return arg[1:-1]
        if _NUMBER.match(arg):
            return float(arg) if any(c in arg for c in ".eE") else int(arg)
        value = self.resolve_path(arg, values) if arg else _MISSING
        return None if value is _MISSING else value

    def format_value(self, value: Any) -> str:
        if value is None:
            return self.settings.empty_placeholder
        if isinstance(value, bool):
            return "Yes" if value else "No"
        if isinstance(value, (list, tuple)):
            if not value:
                return "None"
            if isinstance(value[0], Mapping):
                return f"{len(value)} item{'' if len(value) == 1 else 's'}"
            return ", ".join(js_string(v) for v in value)
        if isinstance(value, Mapping):
            if not value:
                return "Empty"
            return f"{len(value)} propert{'y' if len(value) == 1 else 'ies'}"
        return js_string(value)
