"""Set operations over relations with identical shape."""

from typing import List

from minirel.errors import SchemaMismatch
from minirel.engine.relation import RelColumn, Relation, Row
from minirel.ir.types import types_compatible
from minirel.ir.query import SetOpKind


def check_compatible(left: Relation, right: Relation) -> None:
    """Raise SchemaMismatch unless both relations have the same arity and compatible types."""
    if left.width != right.width:
        raise SchemaMismatch(
            f"Set operation operands differ in arity: {left.width} ({left.column_names}) "
            f"vs {right.width} ({right.column_names})"
        )
    for i, (a, b) in enumerate(zip(left.columns, right.columns)):
        if not types_compatible(a.sql_type, b.sql_type):
            raise SchemaMismatch(
                f"Set operation column {i + 1} is incompatible: "
                f"{a.qualified_name} ({a.sql_type}) vs {b.qualified_name} ({b.sql_type})"
            )


def _dedup(rows: List[Row]) -> List[Row]:
    # tuple equality treats None == None, which is what set operations want
    seen = set()
    out = []
    for row in rows:
        if row not in seen:
            seen.add(row)
            out.append(row)
    return out


def distinct(relation: Relation) -> Relation:
    """Drop duplicate rows, keeping first occurrences."""
    return relation.with_rows(_dedup(relation.rows))


def set_operation(left: Relation, right: Relation, kind: SetOpKind) -> Relation:
    """
    Combine two relations.

    UNION, INTERSECT and EXCEPT return distinct rows; UNION_ALL keeps every
    row of both inputs. Column names come from the left operand and rows
    appear in first-occurrence order.

    Raises:
        SchemaMismatch: If the operands differ in arity or column types
    """
    check_compatible(left, right)
    columns = [
        RelColumn(a.name, a.qualifier, a.sql_type or b.sql_type)
        for a, b in zip(left.columns, right.columns)
    ]

    if kind == "UNION_ALL":
        rows = left.rows + right.rows
    elif kind == "UNION":
        rows = _dedup(left.rows + right.rows)
    elif kind == "INTERSECT":
        other = set(right.rows)
        rows = [r for r in _dedup(left.rows) if r in other]
    elif kind == "EXCEPT":
        other = set(right.rows)
        rows = [r for r in _dedup(left.rows) if r not in other]
    else:
        raise ValueError(f"Unknown set operation: {kind}")

    return Relation(columns, rows)
