"""Join engine: inner, outer and cross joins of two relations."""

from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from minirel.config.logging import get_logger
from minirel.engine.expressions import compile_condition
from minirel.engine.relation import Relation, Row
from minirel.ir.predicate import ConditionExpr, and_
from minirel.ir.query import JoinKind

logger = get_logger(__name__)


def _conjuncts(expr: ConditionExpr) -> List[ConditionExpr]:
    if expr.kind == "and":
        out: List[ConditionExpr] = []
        for child in expr.children:
            out.extend(_conjuncts(child))
        return out
    return [expr]


def _side(left: Relation, right: Relation, ref: str) -> Optional[Tuple[str, int]]:
    """Which input a column reference belongs to, if exactly one."""
    in_left = left.find(ref)
    in_right = right.find(ref)
    if in_left is not None and in_right is None:
        return "left", in_left
    if in_right is not None and in_left is None:
        return "right", in_right
    return None


def split_equi_conjuncts(
    on: ConditionExpr, left: Relation, right: Relation
) -> Tuple[List[int], List[int], List[ConditionExpr]]:
    """
    Separate column = column conjuncts that relate the two inputs from the rest.

    Returns:
        (left key indices, right key indices, residual conjuncts)
    """
    left_keys: List[int] = []
    right_keys: List[int] = []
    residual: List[ConditionExpr] = []
    for part in _conjuncts(on):
        atom = part.atom
        if part.kind == "atom" and atom.op == "eq" and atom.ref is not None:
            a = _side(left, right, atom.col)
            b = _side(left, right, atom.ref)
            if a and b and a[0] != b[0]:
                lhs, rhs = (a, b) if a[0] == "left" else (b, a)
                left_keys.append(lhs[1])
                right_keys.append(rhs[1])
                continue
        residual.append(part)
    return left_keys, right_keys, residual


def _match(left: Relation, right: Relation, on: ConditionExpr, combined: Relation) -> List[List[int]]:
    """For each left row, the positions of matching right rows in right input order."""
    left_keys, right_keys, residual = split_equi_conjuncts(on, left, right)

    if not left_keys:
        predicate = compile_condition(on, combined)
        logger.debug(f"Nested-loop join: {len(left)} x {len(right)} rows")
        return [
            [ri for ri, rrow in enumerate(right.rows) if predicate(lrow + rrow) is True]
            for lrow in left.rows
        ]

    residual_pred = compile_condition(and_(*residual), combined) if residual else None
    index: Dict[Row, List[int]] = defaultdict(list)
    for ri, rrow in enumerate(right.rows):
        key = tuple(rrow[i] for i in right_keys)
        # null keys never match
        if any(v is None for v in key):
            continue
        index[key].append(ri)
    logger.debug(
        f"Hash join on {len(left_keys)} key column(s): {len(index)} distinct right keys, "
        f"{len(residual)} residual conjunct(s)"
    )

    matches: List[List[int]] = []
    for lrow in left.rows:
        key = tuple(lrow[i] for i in left_keys)
        if any(v is None for v in key):
            matches.append([])
            continue
        candidates = index.get(key, [])
        if residual_pred is not None:
            candidates = [ri for ri in candidates if residual_pred(lrow + right.rows[ri]) is True]
        matches.append(candidates)
    return matches


def join(left: Relation, right: Relation, on: Optional[ConditionExpr], kind: JoinKind = "INNER") -> Relation:
    """
    Join two relations.

    Output columns are the left columns followed by the right columns. Rows
    come out left-major: each left row followed by its matches in right
    order, then (for RIGHT_OUTER and FULL_OUTER) unmatched right rows in
    right order.

    Args:
        left: Left input
        right: Right input
        on: Join condition; ignored for CROSS
        kind: INNER, LEFT_OUTER, RIGHT_OUTER, FULL_OUTER or CROSS

    Returns:
        Joined relation

    Raises:
        InvalidQuery: If the condition references undefined or ambiguous columns
    """
    columns = left.columns + right.columns

    if kind == "CROSS":
        return Relation(columns, [lrow + rrow for lrow in left.rows for rrow in right.rows])
    if on is None:
        raise ValueError(f"{kind} join requires a condition")

    matches = _match(left, right, on, Relation(columns))
    keep_left = kind in ("LEFT_OUTER", "FULL_OUTER")
    keep_right = kind in ("RIGHT_OUTER", "FULL_OUTER")

    rows: List[Row] = []
    right_matched = [False] * len(right)
    null_right = (None,) * right.width
    for lrow, hits in zip(left.rows, matches):
        for ri in hits:
            rows.append(lrow + right.rows[ri])
            right_matched[ri] = True
        if not hits and keep_left:
            rows.append(lrow + null_right)

    if keep_right:
        null_left = (None,) * left.width
        rows.extend(null_left + rrow for rrow, hit in zip(right.rows, right_matched) if not hit)

    return Relation(columns, rows)
