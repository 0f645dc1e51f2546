"""Per-row scopes for repeated groups.

A field id such as "products[2].lineTotal" belongs to row 2 of the
"products" array. Expressions on such a field may name their siblings by
local name ("quantity * unitPrice"); this module binds those names for the
right row and rewrites local dependency ids to row-qualified ones.
"""

import re
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

ROW_ID = re.compile(r"^([^\[\]]+)\[(\d+)\]\.([^\[\]]+)$")


@dataclass(frozen=True)
class RowRef:
    array_id: str
    index: int
    child_id: str

    @property
    def prefix(self) -> str:
        return f"{self.array_id}[{self.index}]."

    def qualify(self, name: str) -> str:
        return f"{self.prefix}{name}"


def parse_row_id(field_id: str) -> RowRef | None:
    """Split "arr[i].child" into its parts, or None for non-row ids."""
    m = ROW_ID.match(field_id)
    if not m:
        return None
    return RowRef(array_id=m.group(1), index=int(m.group(2)), child_id=m.group(3))


def is_local_name(name: str) -> bool:
    return "." not in name and "[" not in name


def dotted_head(field_id: str) -> str | None:
    """Head segment of a dotted non-row id ("a.b.c" -> "a"), else None."""
    if "." not in field_id or parse_row_id(field_id) is not None:
        return None
    return field_id.split(".", 1)[0]


def with_heads(ids: Iterable[str], registered: Collection[str] = ()) -> list[str]:
    """Add the head of each dotted id that is not itself a registered field.

    "products.length" reads the "products" value unless a field with the
    full dotted id exists, so the head is a dependency too.
    """
    expanded = []
    for field_id in ids:
        expanded.append(field_id)
        head = dotted_head(field_id)
        if head is not None and field_id not in registered:
            expanded.append(head)
    return list(dict.fromkeys(expanded))


def flatten_rows(values: Mapping[str, Any]) -> dict[str, Any]:
    """Expose every row cell of list-of-mapping values as "arr[i].key"."""
    flat = {}
    for key, value in values.items():
        if not isinstance(value, list):
            continue
        for index, item in enumerate(value):
            if isinstance(item, dict):
                for child, child_value in item.items():
                    flat[f"{key}[{index}].{child}"] = child_value
    return flat


def row_scope(row: RowRef, context: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of context with the row's siblings bound under local names.

    Row-qualified entries in the context ("arr[i].x") win over the raw row
    mapping, since they may hold values computed earlier in the pass.
    """
    scope = dict(context)
    rows = context.get(row.array_id)
    if isinstance(rows, list) and row.index < len(rows) and isinstance(rows[row.index], dict):
        scope.update(rows[row.index])
    prefix = row.prefix
    for key, value in context.items():
        if key.startswith(prefix) and is_local_name(key[len(prefix):]):
            scope[key[len(prefix):]] = value
    return scope


def qualify_dependencies(
    row: RowRef,
    dependencies: Iterable[str],
    known_children: Collection[str] | None = None,
    registered: Collection[str] = (),
) -> list[str]:
    """Rewrite local dependency names to row-qualified ids.

    With a declared row schema (known_children) only its members are
    rewritten. Without one, any local name that is not already a registered
    top-level field is taken to be a sibling.
    """
    qualified = []
    for dep in dependencies:
        if not is_local_name(dep):
            qualified.append(dep)
        elif known_children is not None:
            qualified.append(row.qualify(dep) if dep in known_children else dep)
        elif dep in registered:
            qualified.append(dep)
        else:
            qualified.append(row.qualify(dep))
    return list(dict.fromkeys(qualified))


def write_back(context: dict[str, Any], row: RowRef, value: Any) -> None:
    """Store a computed row value inside (a copy of) the owning array."""
    rows = context.get(row.array_id)
    if not isinstance(rows, list) or row.index >= len(rows):
        return
    item = rows[row.index]
    if not isinstance(item, dict):
        return
    rows = list(rows)
    rows[row.index] = {**item, row.child_id: value}
    context[row.array_id] = rows
