"""Calculation session: one per live form instance.

The session owns the dependency graph and the evaluation cache for a single
form. Nothing is shared between sessions, so two forms (or two tests) can
never see each other's fields.

Example:
    with CalculationSession() as session:
        session.register_field("subtotal", "price * 2", ["price"])
        session.register_field("total", "subtotal + tax", ["subtotal", "tax"])
        session.evaluate_all({"price": 10, "tax": 5})
        # {'price': 10, 'tax': 5, 'subtotal': 20, 'total': 25}
"""

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from .cache import EvaluationCache, snapshot
from .config import EngineSettings
from .evaluator import EvaluationContext, ExpressionEngine, ExpressionResult, ValidationResult
from .graph import DependencyGraph, FieldNode
from .scoping import (
    flatten_rows,
    is_local_name,
    parse_row_id,
    qualify_dependencies,
    row_scope,
    with_heads,
    write_back,
)
from .template import TemplateProcessor

logger = logging.getLogger(__name__)


class EngineStats(BaseModel):
    total_nodes: int
    evaluation_order: list[str]
    cache_size: int
    circular_dependency_ids: list[str]


def leaf_name(field_id: str) -> str | None:
    """Leaf of a dotted id ("resultColumn.maxMortgage" -> "maxMortgage"), else None."""
    if "." not in field_id:
        return None
    return field_id.rsplit(".", 1)[1]


class CalculationSession:
    """Registers computed fields and evaluates them in dependency order."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.engine = ExpressionEngine()
        self.graph = DependencyGraph()
        self.cache = EvaluationCache(self.settings.staleness_window, clock)
        self.templates = TemplateProcessor(self.settings)
        self.errors: dict[str, str] = {}
        self.last_results: dict[str, Any] = {}
        self._computed: dict[str, Any] = {}
        self._row_schemas: dict[str, set[str]] = {}
        self._row_links: dict[str, list[str]] = {}

    def __enter__(self) -> "CalculationSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # Registration

    def register_array(self, array_id: str, child_ids: Iterable[str]) -> None:
        """Declare the child fields each row of array_id carries."""
        self._row_schemas[array_id] = set(child_ids)

    def register_field(
        self,
        field_id: str,
        expression: str | None = None,
        dependencies: Iterable[str] | None = None,
        default: Any = None,
    ) -> FieldNode:
        """Register (or re-register) a field.

        Args:
            field_id: Field id, possibly row-scoped ("products[0].lineTotal")
            expression: Expression text; None registers a plain input
            dependencies: Declared dependency ids. These define the graph
                edges; when omitted they are extracted from the expression.
            default: Value to display when the expression fails

        Returns:
            The graph node for the field
        """
        if expression is not None and not expression.strip():
            expression = None
        static = self.engine.get_dependencies(expression) if expression else []
        static = with_heads(static, self.graph.nodes)
        declared = list(dependencies) if dependencies is not None else list(static)

        row = parse_row_id(field_id)
        if row is not None:
            registered = [i for i in self.graph.nodes if is_local_name(i)]
            schema = self._row_schemas.get(row.array_id)
            declared = qualify_dependencies(row, declared, schema, registered)
            static = qualify_dependencies(row, static, schema, registered)

        undeclared = [d for d in static if d not in declared]
        if undeclared:
            logger.debug("%s reads fields missing from its declared dependencies: %s", field_id, undeclared)

        # keep the implicit array -> row edges when the array itself re-registers
        declared.extend(i for i in self._row_links.get(field_id, []) if i not in declared)

        node = self.graph.register_field(field_id, expression, declared, default)
        self.cache.discard(field_id)

        if row is not None and expression:
            links = self._row_links.setdefault(row.array_id, [])
            if field_id not in links:
                links.append(field_id)
            self.graph.add_dependency(row.array_id, field_id)
        return node

    def unregister_field(self, field_id: str) -> bool:
        """Remove a field from the graph and the cache."""
        removed = self.graph.unregister_field(field_id)
        self.cache.discard(field_id)
        self.errors.pop(field_id, None)
        self._computed.pop(field_id, None)
        self._row_links.pop(field_id, None)
        row = parse_row_id(field_id)
        if row is not None and field_id in self._row_links.get(row.array_id, []):
            self._row_links[row.array_id].remove(field_id)
        return removed

    # Evaluation

    def _seed(
        self,
        raw_values: Mapping[str, Any],
        calculated_values: Mapping[str, Any],
        metadata: Mapping[str, Any],
    ) -> dict[str, Any]:
        context = EvaluationContext(
            form_values=dict(raw_values),
            calculated_values=dict(calculated_values),
            metadata=dict(metadata),
        )
        working = dict(context.metadata)
        working.update(context.form_values)
        for key, value in flatten_rows(context.form_values).items():
            working.setdefault(key, value)
        working.update(context.calculated_values)

        if self.settings.alias_leaf_names:
            for key in context.form_values:
                leaf = leaf_name(key)
                if leaf is not None and parse_row_id(key) is None:
                    working.setdefault(leaf, context.form_values[key])
            for key in context.calculated_values:
                leaf = leaf_name(key)
                if leaf is not None and parse_row_id(key) is None:
                    working[leaf] = context.calculated_values[key]
        return working

    def evaluate_all(
        self,
        raw_values: Mapping[str, Any],
        calculated_values: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Evaluate every registered field in topological order.

        Args:
            raw_values: Current user-entered values
            calculated_values: Previously computed values; they win over raw
                values when both are present
            metadata: Static values visible to expressions

        Returns:
            Complete id -> value map
        """
        if self.graph.is_dirty:
            self.graph.rebuild()

        calculated_values = calculated_values or {}
        working = self._seed(raw_values, calculated_values, metadata or {})
        results: dict[str, Any] = dict(raw_values)
        results.update(calculated_values)
        errors: dict[str, str] = {}
        computed: dict[str, Any] = {}

        for field_id in self.graph.evaluation_order:
            node = self.graph.nodes[field_id]

            if node.expression is None:
                node.is_computed = False
                # an array linked to computed rows carries the written-back copy
                if field_id in raw_values and not node.dependencies:
                    value = raw_values[field_id]
                elif field_id in working:
                    value = working[field_id]
                else:
                    # leave the name unbound so "a.b" falls through to a member read of "a"
                    node.last_value = None
                    results.setdefault(field_id, None)
                    continue
                node.last_value = value
                working[field_id] = value
                results[field_id] = value
                self._bind_alias(field_id, value, working, results, raw_values)
                continue

            result = self._evaluate_node(node, working)
            value = result.value
            if result.error is not None:
                errors[field_id] = result.error
                node.is_computed = False
                logger.warning("Error evaluating expression for %s: %s", field_id, result.error)
            else:
                node.last_value = value
                node.is_computed = True
                node.last_evaluated_at = self.clock()

            working[field_id] = value
            results[field_id] = value
            computed[field_id] = value
            self._bind_alias(field_id, value, working, results, raw_values)
            row = parse_row_id(field_id)
            if row is not None:
                write_back(working, row, value)

        for field_id in self.graph.circular_ids:
            node = self.graph.nodes[field_id]
            value = node.last_value if node.last_value is not None else node.default
            results[field_id] = value
            errors[field_id] = f"Circular dependency detected for field: {field_id}"

        self.errors = errors
        self._computed = computed
        self.last_results = dict(results)
        return results

    def _bind_alias(
        self,
        field_id: str,
        value: Any,
        working: dict[str, Any],
        results: dict[str, Any],
        raw_values: Mapping[str, Any],
    ) -> None:
        if not self.settings.alias_leaf_names:
            return
        # row siblings are bound per row by row_scope instead
        leaf = leaf_name(field_id)
        if leaf is None or leaf in self.graph.nodes or parse_row_id(field_id) is not None:
            return
        # a raw input under the bare name wins over the alias
        if leaf in raw_values:
            return
        working[leaf] = value
        results.setdefault(leaf, value)

    def _evaluate_node(self, node: FieldNode, working: dict[str, Any]) -> ExpressionResult:
        row = parse_row_id(node.id)
        scope = row_scope(row, working) if row is not None else working

        keys = dict.fromkeys(node.dependencies)
        keys.update(dict.fromkeys(with_heads(self.engine.get_dependencies(node.expression))))
        snap = snapshot(scope, keys)

        cached = self.cache.get(node.id, node.expression, snap)
        if cached is not None:
            return cached

        result = self.engine.evaluate(node.expression, scope)
        if row is not None:
            result.dependencies = [
                row.qualify(d) if is_local_name(d) and row.qualify(d) in working else d
                for d in result.dependencies
            ]
        self.cache.set(node.id, node.expression, snap, result)
        return result

    def evaluate(self, expression: str, values: Mapping[str, Any] | EvaluationContext) -> ExpressionResult:
        """Evaluate a one-off expression without touching the graph."""
        return self.engine.evaluate(expression, values)

    # Templates

    def process_template(
        self,
        text: str,
        raw_values: Mapping[str, Any] | None = None,
        calculated_values: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        """Render {{tokens}} against raw values plus computed values.

        Without calculated_values, the computed values of the last
        evaluate_all pass are used. Without raw_values, the last pass's
        complete result map is used.
        """
        if raw_values is None:
            values = dict(self.last_results)
            if calculated_values:
                values.update(calculated_values)
        else:
            computed = self._computed if calculated_values is None else calculated_values
            values = self._seed(raw_values, computed, metadata or {})
        return self.templates.process_template(text, values)

    # Introspection

    def validate(self, expression: str) -> ValidationResult:
        return self.engine.validate(expression)

    def get_dependencies(self, expression: str) -> list[str]:
        return self.engine.get_dependencies(expression)

    def display_value(self, field_id: str) -> Any:
        """Last value of a field, or its declared default if it failed."""
        node = self.graph.get(field_id)
        if field_id in self.errors and node is not None and node.default is not None:
            return node.default
        return self.last_results.get(field_id)

    def get_stats(self) -> EngineStats:
        if self.graph.is_dirty:
            self.graph.rebuild()
        return EngineStats(
            total_nodes=len(self.graph),
            evaluation_order=list(self.graph.evaluation_order),
            cache_size=len(self.cache),
            circular_dependency_ids=list(self.graph.circular_ids),
        )

    def clear_cache(self) -> None:
        """Drop cached results and the last pass; call when the form is reset."""
        self.cache.clear()
        for node in self.graph.nodes.values():
            node.is_computed = False
        self.last_results = {}
        self._computed = {}

    def close(self) -> None:
        """Tear down: forget every field, cached result and last output."""
        self.clear_cache()
        self.graph = DependencyGraph()
        self.engine.clear()
        self.errors = {}
        self.last_results = {}
        self._computed = {}
        self._row_links = {}
        self._row_schemas = {}
