"""Error kinds raised inside the engine.

Only CircularDependencyError and DefinitionError ever reach callers as
exceptions; the expression-level errors are caught at the evaluator boundary
and reported through ExpressionResult.error.
"""


class FormCalcError(Exception):
    pass


class ParseError(FormCalcError):
    def __init__(self, msg: str, pos: int):
        super().__init__(f"col {pos + 1}: {msg}")
        self.pos = pos


class UnresolvedReferenceError(FormCalcError):
    def __init__(self, name: str):
        super().__init__(f"undefined: {name}")
        self.name = name


class EvaluationRuntimeError(FormCalcError):
    pass


class CircularDependencyError(FormCalcError):
    """A set of fields that depend on each other."""

    def __init__(self, ids: list[str]):
        super().__init__(f"Circular dependency detected involving: {', '.join(ids)}")
        self.ids = list(ids)


class DefinitionError(FormCalcError):
    """Malformed form definition file."""
