"""Condition IR: boolean expression trees over row columns."""

from typing import Literal, Any, List, Optional
from pydantic import BaseModel, Field, model_validator
from .types import SQLType, typed_literal

CompareOp = Literal[
    "eq",
    "ne",
    "lt",
    "le",
    "gt",
    "ge",
    "in",
    "not_in",
    "like",
    "not_like",
    "between",
    "is_null",
    "not_null",
]


class AtomicCondition(BaseModel):
    """Atomic condition comparing a column to a literal or to another column."""

    col: str
    op: CompareOp
    value: Any | None = None  # list for "in"/"not_in", [low, high] for "between"
    ref: Optional[str] = None  # other column; used instead of value
    sql_type: Optional[SQLType] = None  # type of value, needed for decimals and dates in JSON

    @model_validator(mode="after")
    def check_operands(self):
        if self.ref is not None and self.op in ("in", "not_in", "between", "is_null", "not_null"):
            raise ValueError(f"Operator '{self.op}' does not take a column reference")
        if self.op in ("in", "not_in") and not isinstance(self.value, list):
            raise ValueError(f"'{self.op}' operator requires list value")
        if self.op == "between" and not (isinstance(self.value, list) and len(self.value) == 2):
            raise ValueError("'between' operator requires [low, high] value")
        self.value, self.sql_type = typed_literal(self.value, self.sql_type)
        return self


class ConditionExpr(BaseModel):
    """Structured condition expression (tree of atomic conditions)."""

    kind: Literal["atom", "and", "or", "not"]
    atom: AtomicCondition | None = None
    children: List["ConditionExpr"] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_shape(self):
        if self.kind == "atom" and self.atom is None:
            raise ValueError("Atom condition must have atom field set")
        if self.kind == "not" and len(self.children) != 1:
            raise ValueError("'not' condition must have exactly one child")
        if self.kind in ("and", "or") and not self.children:
            raise ValueError(f"'{self.kind}' condition must have at least one child")
        return self

    def referenced_columns(self) -> List[str]:
        """Column names mentioned anywhere in the tree."""
        if self.kind == "atom":
            cols = [self.atom.col]
            if self.atom.ref is not None:
                cols.append(self.atom.ref)
            return cols
        out: List[str] = []
        for child in self.children:
            out.extend(child.referenced_columns())
        return out


def cond(col: str, op: CompareOp, value: Any = None, *, ref: Optional[str] = None) -> ConditionExpr:
    """Build an atomic condition."""
    return ConditionExpr(kind="atom", atom=AtomicCondition(col=col, op=op, value=value, ref=ref))


def col_eq(left: str, right: str) -> ConditionExpr:
    """Equality between two columns, the usual join predicate."""
    return cond(left, "eq", ref=right)


def and_(*children: ConditionExpr) -> ConditionExpr:
    return ConditionExpr(kind="and", children=list(children))


def or_(*children: ConditionExpr) -> ConditionExpr:
    return ConditionExpr(kind="or", children=list(children))


def not_(child: ConditionExpr) -> ConditionExpr:
    return ConditionExpr(kind="not", children=[child])
