"""Compile condition trees and value expressions against a relation's columns.

Conditions use SQL three-valued logic: a comparison with a null operand is
unknown (None), and filters keep only rows that evaluate to True.
"""

import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple

from minirel.errors import ColumnTypeError, InvalidQuery, SchemaMismatch
from minirel.engine.relation import Relation, Row
from minirel.ir.types import coerce_value, infer_type, parse_text
from minirel.ir.predicate import ConditionExpr
from minirel.ir.query import ValueExpr

Predicate = Callable[[Row], Optional[bool]]
Evaluator = Callable[[Row], Any]


def like_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a SQL LIKE pattern (% and _) to a compiled regex."""
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


def coerce_literal(value: Any, sql_type: Optional[str]) -> Any:
    """Bring a literal to the column's type where that is unambiguous (e.g. ISO date strings)."""
    if value is None or sql_type is None:
        return value
    try:
        if isinstance(value, str) and sql_type != "TEXT":
            return parse_text(value, sql_type)
        return coerce_value(value, sql_type)
    except ColumnTypeError:
        return value


def _compare(a: Any, b: Any, op: str) -> Optional[bool]:
    if a is None or b is None:
        return None
    try:
        if op == "eq":
            return a == b
        if op == "ne":
            return a != b
        if op == "lt":
            return a < b
        if op == "le":
            return a <= b
        if op == "gt":
            return a > b
        if op == "ge":
            return a >= b
    except TypeError as e:
        raise SchemaMismatch(f"Cannot compare {a!r} with {b!r}") from e
    raise InvalidQuery(f"Unknown comparison op: {op}")


def _negate(v: Optional[bool]) -> Optional[bool]:
    return None if v is None else not v


def compile_condition(expr: ConditionExpr, relation: Relation) -> Predicate:
    """
    Compile a condition tree into a row predicate.

    Column references are resolved once, here, so an undefined column fails
    before any row is evaluated.

    Args:
        expr: Condition to compile
        relation: Relation whose columns the condition refers to

    Returns:
        Function mapping a row to True, False or None (unknown)

    Raises:
        InvalidQuery: If a referenced column is undefined or ambiguous
    """
    if expr.kind == "atom":
        c = expr.atom
        idx = relation.index_of(c.col)
        col_type = relation.columns[idx].sql_type
        op = c.op

        if c.ref is not None:
            ref_idx = relation.index_of(c.ref)
            if op in ("like", "not_like"):
                def like_ref(row: Row) -> Optional[bool]:
                    a, b = row[idx], row[ref_idx]
                    if a is None or b is None:
                        return None
                    matched = like_to_regex(str(b)).fullmatch(str(a)) is not None
                    return matched if op == "like" else not matched
                return like_ref
            return lambda row: _compare(row[idx], row[ref_idx], op)

        if op == "is_null":
            return lambda row: row[idx] is None
        if op == "not_null":
            return lambda row: row[idx] is not None

        if op in ("in", "not_in"):
            options = [coerce_literal(v, col_type) for v in c.value]
            has_null = any(v is None for v in options)
            present = [v for v in options if v is not None]

            def member(row: Row) -> Optional[bool]:
                a = row[idx]
                if a is None:
                    return None
                if a in present:
                    found: Optional[bool] = True
                elif has_null:
                    found = None
                else:
                    found = False
                return found if op == "in" else _negate(found)
            return member

        if op == "between":
            low = coerce_literal(c.value[0], col_type)
            high = coerce_literal(c.value[1], col_type)

            def between(row: Row) -> Optional[bool]:
                lower = _compare(row[idx], low, "ge")
                upper = _compare(row[idx], high, "le")
                if lower is False or upper is False:
                    return False
                if lower is None or upper is None:
                    return None
                return True
            return between

        if op in ("like", "not_like"):
            if c.value is None:
                return lambda row: None
            regex = like_to_regex(str(c.value))

            def like(row: Row) -> Optional[bool]:
                a = row[idx]
                if a is None:
                    return None
                matched = regex.fullmatch(str(a)) is not None
                return matched if op == "like" else not matched
            return like

        literal = coerce_literal(c.value, col_type)
        return lambda row: _compare(row[idx], literal, op)

    if expr.kind == "and":
        parts = [compile_condition(child, relation) for child in expr.children]

        def conj(row: Row) -> Optional[bool]:
            unknown = False
            for p in parts:
                v = p(row)
                if v is False:
                    return False
                if v is None:
                    unknown = True
            return None if unknown else True
        return conj

    if expr.kind == "or":
        parts = [compile_condition(child, relation) for child in expr.children]

        def disj(row: Row) -> Optional[bool]:
            unknown = False
            for p in parts:
                v = p(row)
                if v is True:
                    return True
                if v is None:
                    unknown = True
            return None if unknown else False
        return disj

    if expr.kind == "not":
        inner = compile_condition(expr.children[0], relation)
        return lambda row: _negate(inner(row))

    raise InvalidQuery(f"Unknown condition kind: {expr.kind}")


def filter_relation(relation: Relation, expr: ConditionExpr) -> Relation:
    """Keep rows for which the condition is True."""
    predicate = compile_condition(expr, relation)
    return relation.with_rows(row for row in relation.rows if predicate(row) is True)


# Scalar functions -----------------------------------------------------------


def _round(x: Any, places: int = 0) -> Any:
    if isinstance(x, int):
        return x
    quantum = Decimal(1).scaleb(-int(places))
    rounded = Decimal(str(x)).quantize(quantum, rounding=ROUND_HALF_UP)
    return rounded if isinstance(x, Decimal) else float(rounded)


def _substring(s: str, start: int, length: int) -> str:
    begin = start - 1
    end = begin + max(length, 0)
    return s[max(begin, 0):max(end, 0)]


def _right(s: str, n: int) -> str:
    return s[-n:] if n > 0 else ""


def _concat(*args: Any) -> str:
    return "".join("" if a is None else str(a) for a in args)


def _coalesce(*args: Any) -> Any:
    for a in args:
        if a is not None:
            return a
    return None


# name -> (min args, max args or None, implementation, propagates nulls, result type)
FUNCTIONS: Dict[str, Tuple[int, Optional[int], Callable[..., Any], bool, Optional[str]]] = {
    "upper": (1, 1, lambda s: s.upper(), True, "TEXT"),
    "lower": (1, 1, lambda s: s.lower(), True, "TEXT"),
    "length": (1, 1, len, True, "INT"),
    "trim": (1, 1, lambda s: s.strip(), True, "TEXT"),
    "ltrim": (1, 1, lambda s: s.lstrip(), True, "TEXT"),
    "rtrim": (1, 1, lambda s: s.rstrip(), True, "TEXT"),
    "reverse": (1, 1, lambda s: s[::-1], True, "TEXT"),
    "substring": (3, 3, _substring, True, "TEXT"),
    "replace": (3, 3, lambda s, old, new: s.replace(old, new), True, "TEXT"),
    "left": (2, 2, lambda s, n: s[:max(n, 0)], True, "TEXT"),
    "right": (2, 2, _right, True, "TEXT"),
    "concat": (1, None, _concat, False, "TEXT"),
    "coalesce": (1, None, _coalesce, False, None),
    "abs": (1, 1, abs, True, None),
    "round": (1, 2, _round, True, None),
}


def compile_value(expr: ValueExpr, relation: Relation) -> Evaluator:
    """
    Compile a value expression into a row evaluator.

    Raises:
        InvalidQuery: If a column is undefined or a function is unknown or
            called with the wrong number of arguments
    """
    if expr.kind == "col":
        idx = relation.index_of(expr.col)
        return lambda row: row[idx]

    if expr.kind == "lit":
        value = expr.value
        return lambda row: value

    name = expr.func.lower()
    if name not in FUNCTIONS:
        raise InvalidQuery(
            f"Function '{expr.func}' not allowed. Allowed functions: {sorted(FUNCTIONS)}"
        )
    min_args, max_args, impl, null_in_null_out, _ = FUNCTIONS[name]
    n = len(expr.args)
    if n < min_args or (max_args is not None and n > max_args):
        raise InvalidQuery(f"{name}() takes {min_args}..{max_args or 'n'} arguments, got {n}")
    args = [compile_value(a, relation) for a in expr.args]

    def call(row: Row) -> Any:
        values = [a(row) for a in args]
        if null_in_null_out and any(v is None for v in values):
            return None
        try:
            return impl(*values)
        except (TypeError, AttributeError) as e:
            raise SchemaMismatch(f"{name}() cannot be applied to {values!r}") from e
    return call


def value_type(expr: ValueExpr, relation: Relation) -> Optional[str]:
    """Best-effort result type of a value expression."""
    if expr.kind == "col":
        return relation.columns[relation.index_of(expr.col)].sql_type
    if expr.kind == "lit":
        return expr.sql_type or infer_type(expr.value)
    spec = FUNCTIONS.get(expr.func.lower())
    if spec is None:
        return None
    if spec[4] is not None:
        return spec[4]
    return value_type(expr.args[0], relation) if expr.args else None


def value_label(expr: ValueExpr) -> str:
    """Default output name for an unnamed projection."""
    if expr.kind == "col":
        return expr.col.split(".", 1)[-1]
    if expr.kind == "lit":
        return "literal"
    return expr.func.lower()


def column_list(relation: Relation, refs: List[str]) -> List[int]:
    """Resolve several column references at once."""
    return [relation.index_of(r) for r in refs]
