"""Field dependency graph and topological scheduling.

Nodes are kept in registration order. Every registration change rebuilds the
evaluation order before returning, so callers never see a stale order.

Example:
    graph = DependencyGraph()
    graph.register_field("subtotal", "price * 2", ["price"])
    graph.register_field("total", "subtotal + tax", ["subtotal", "tax"])
    graph.evaluation_order  # ['price', 'tax', 'subtotal', 'total']
"""

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .errors import CircularDependencyError

logger = logging.getLogger(__name__)


@dataclass
class FieldNode:
    """A field slot: a plain input when expression is None, computed otherwise."""

    id: str
    expression: str | None = None
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    default: Any = None
    last_value: Any = None
    is_computed: bool = False
    last_evaluated_at: float | None = None


@dataclass
class DependencyGraph:
    """Directed graph of "needs the value of" edges between fields.

    Supports:
    - Registering, re-registering and unregistering fields
    - Kahn's algorithm for evaluation order
    - Reporting (not raising on) circular dependencies
    """

    nodes: dict[str, FieldNode] = field(default_factory=dict)
    evaluation_order: list[str] = field(default_factory=list)
    circular_ids: list[str] = field(default_factory=list)
    is_dirty: bool = False

    def __contains__(self, field_id: str) -> bool:
        return field_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, field_id: str) -> FieldNode | None:
        return self.nodes.get(field_id)

    def register_field(
        self,
        field_id: str,
        expression: str | None = None,
        dependencies: Iterable[str] = (),
        default: Any = None,
    ) -> FieldNode:
        """Insert or replace a field and its dependency edges.

        Args:
            field_id: Field identifier
            expression: Expression text, or None for a plain input
            dependencies: Field ids this one reads; duplicates are dropped
            default: Value shown when the field cannot be computed

        Returns:
            The registered node
        """
        deps = list(dict.fromkeys(dependencies))
        existing = self.nodes.get(field_id)

        if existing is not None:
            for dep_id in existing.dependencies:
                if dep_id not in deps:
                    self._unlink(field_id, dep_id)
            node = existing
            node.expression = expression
            node.dependencies = deps
            node.default = default
            node.is_computed = False
        else:
            node = FieldNode(id=field_id, expression=expression, dependencies=deps, default=default)
            self.nodes[field_id] = node

        for dep_id in deps:
            dep_node = self.nodes.get(dep_id)
            if dep_node is None:
                # placeholder until the dependency registers itself
                dep_node = FieldNode(id=dep_id)
                self.nodes[dep_id] = dep_node
            if field_id not in dep_node.dependents:
                dep_node.dependents.append(field_id)

        self.is_dirty = True
        self.rebuild()
        return node

    def add_dependency(self, field_id: str, dependency: str) -> None:
        """Add a single edge without touching the field's other edges."""
        node = self.nodes.get(field_id)
        if node is None:
            node = self.nodes[field_id] = FieldNode(id=field_id)
        if dependency in node.dependencies:
            return
        node.dependencies.append(dependency)
        dep_node = self.nodes.get(dependency)
        if dep_node is None:
            dep_node = self.nodes[dependency] = FieldNode(id=dependency)
        if field_id not in dep_node.dependents:
            dep_node.dependents.append(field_id)
        self.is_dirty = True
        self.rebuild()

    def unregister_field(self, field_id: str) -> bool:
        """Remove a field and scrub it from every neighbor's edge lists.

        Returns:
            False if the field was not registered
        """
        node = self.nodes.pop(field_id, None)
        if node is None:
            return False

        for dep_id in node.dependencies:
            dep_node = self.nodes.get(dep_id)
            if dep_node is not None:
                dep_node.dependents = [i for i in dep_node.dependents if i != field_id]
        for dependent_id in node.dependents:
            dependent = self.nodes.get(dependent_id)
            if dependent is not None:
                dependent.dependencies = [i for i in dependent.dependencies if i != field_id]

        self.is_dirty = True
        self.rebuild()
        return True

    def _unlink(self, field_id: str, dep_id: str) -> None:
        dep_node = self.nodes.get(dep_id)
        if dep_node is not None:
            dep_node.dependents = [i for i in dep_node.dependents if i != field_id]

    def rebuild(self) -> list[str]:
        """Recompute the evaluation order with Kahn's algorithm.

        Nodes left over once the queue drains sit on (or behind) a cycle; they
        are recorded in circular_ids and left out of the order so the rest of
        the graph still evaluates.
        """
        in_degree = {
            node_id: sum(1 for d in node.dependencies if d in self.nodes)
            for node_id, node in self.nodes.items()
        }
        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        order: list[str] = []

        while queue:
            current = queue.popleft()
            order.append(current)
            for dependent_id in self.nodes[current].dependents:
                if dependent_id not in in_degree:
                    continue
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    queue.append(dependent_id)

        placed = set(order)
        self.circular_ids = [node_id for node_id in self.nodes if node_id not in placed]
        if self.circular_ids:
            logger.warning("Circular dependencies detected: %s", self.circular_ids)

        self.evaluation_order = order
        self.is_dirty = False
        logger.debug("Evaluation order rebuilt: %d of %d nodes", len(order), len(self.nodes))
        return order

    def raise_for_cycles(self) -> None:
        """Raise CircularDependencyError if the last build found a cycle."""
        if self.is_dirty:
            self.rebuild()
        if self.circular_ids:
            raise CircularDependencyError(self.circular_ids)

    def check_consistency(self) -> list[str]:
        """Return descriptions of any one-sided edges (empty when consistent)."""
        problems = []
        for node_id, node in self.nodes.items():
            for dep_id in node.dependencies:
                dep_node = self.nodes.get(dep_id)
                if dep_node is None or node_id not in dep_node.dependents:
                    problems.append(f"{node_id} -> {dep_id} has no reverse edge")
            for dependent_id in node.dependents:
                dependent = self.nodes.get(dependent_id)
                if dependent is None or node_id not in dependent.dependencies:
                    problems.append(f"{dependent_id} listed as dependent of {node_id} without edge")
        return problems
