"""AST nodes for form expressions."""

from typing import Annotated, Any
from typing import Literal as TypingLiteral

from pydantic import BaseModel, Field


# Expressions - using discriminated union for type safety
class Literal(BaseModel):
    type: TypingLiteral["literal"] = "literal"
    value: Any  # int, float, str, bool, None


class Var(BaseModel):
    """Field reference (e.g., 'price' or 'products[2].quantity')."""

    type: TypingLiteral["var"] = "var"
    name: str


class BinOp(BaseModel):
    type: TypingLiteral["binop"] = "binop"
    op: str  # +, -, *, /, %, >, <, >=, <=, ==, !=, &&, ||
    left: "Expr"
    right: "Expr"


class UnaryOp(BaseModel):
    type: TypingLiteral["unaryop"] = "unaryop"
    op: str  # -, +, !
    operand: "Expr"


class Call(BaseModel):
    """Function call (e.g., round(x), sumLineTotal(products))."""

    type: TypingLiteral["call"] = "call"
    func: str
    args: list["Expr"]


class FieldAccess(BaseModel):
    """Dotted access (e.g., total.value, resultColumn.maxMortgage)."""

    type: TypingLiteral["field_access"] = "field_access"
    obj: "Expr"
    field: str


class Cond(BaseModel):
    """Ternary conditional (cond ? a : b)."""

    type: TypingLiteral["cond"] = "cond"
    condition: "Expr"
    then_expr: "Expr"
    else_expr: "Expr"


# Expression union type
Expr = Annotated[
    Literal | Var | BinOp | UnaryOp | Call | FieldAccess | Cond,
    Field(discriminator="type"),
]


# Rebuild models for forward references
BinOp.model_rebuild()
UnaryOp.model_rebuild()
Call.model_rebuild()
FieldAccess.model_rebuild()
Cond.model_rebuild()


def dotted_name(expr: Expr) -> str | None:
    """Flatten a Var/FieldAccess chain into 'a.b.c', or None for anything else."""
    match expr:
        case Var(name=name):
            return name
        case FieldAccess(obj=obj, field=fld):
            head = dotted_name(obj)
            return f"{head}.{fld}" if head is not None else None
        case _:
            return None
