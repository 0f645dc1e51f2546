"""formcalc: reactive calculations for form fields.

Pipeline: register fields -> topological order -> evaluate -> render templates.

Example:
    from formcalc import CalculationSession

    session = CalculationSession()
    session.register_field("subtotal", "price * 2", ["price"])
    session.register_field("total", "subtotal + tax", ["subtotal", "tax"])
    values = session.evaluate_all({"price": 10, "tax": 5})
    session.process_template("Total: {{total}}", {"price": 10, "tax": 5})
"""

__version__ = "0.1.0"

from .ast import BinOp, Call, Cond, Expr, FieldAccess, Literal, UnaryOp, Var
from .cache import CacheEntry, EvaluationCache
from .config import EngineSettings, load_settings
from .definition import FormDefinition, load_definition, parse_definition
from .errors import (
    CircularDependencyError,
    DefinitionError,
    EvaluationRuntimeError,
    FormCalcError,
    ParseError,
    UnresolvedReferenceError,
)
from .evaluator import EvaluationContext, ExpressionEngine, ExpressionResult, ValidationResult
from .graph import DependencyGraph, FieldNode
from .parser import Lexer, Parser, parse
from .runner import CaseReport, CaseResult, run_cases
from .scoping import RowRef, parse_row_id
from .session import CalculationSession, EngineStats
from .template import TemplateProcessor

__all__ = [
    # Parse
    "parse",
    "Lexer",
    "Parser",
    "ParseError",
    # AST
    "Expr",
    "Literal",
    "Var",
    "BinOp",
    "UnaryOp",
    "Call",
    "FieldAccess",
    "Cond",
    # Evaluate
    "ExpressionEngine",
    "ExpressionResult",
    "EvaluationContext",
    "ValidationResult",
    # Graph
    "DependencyGraph",
    "FieldNode",
    "RowRef",
    "parse_row_id",
    # Cache
    "EvaluationCache",
    "CacheEntry",
    # Templates
    "TemplateProcessor",
    # Session
    "CalculationSession",
    "EngineStats",
    "EngineSettings",
    "load_settings",
    # Definitions
    "FormDefinition",
    "load_definition",
    "parse_definition",
    "run_cases",
    "CaseReport",
    "CaseResult",
    # Errors
    "FormCalcError",
    "UnresolvedReferenceError",
    "EvaluationRuntimeError",
    "CircularDependencyError",
    "DefinitionError",
]
