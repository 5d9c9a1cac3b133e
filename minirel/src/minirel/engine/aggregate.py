"""Aggregate functions and GROUP BY."""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from minirel.errors import SchemaMismatch
from minirel.engine.expressions import column_list
from minirel.engine.relation import RelColumn, Relation, Row
from minirel.ir.query import AggregateFunction, AggregateSpec


def aggregate_values(
    func: AggregateFunction,
    values: Iterable[Any],
    distinct: bool = False,
    sql_type: Optional[str] = None,
) -> Any:
    """
    Aggregate one column's values. Nulls are ignored.

    count of nothing is 0; every other aggregate of nothing is null.
    avg over INT or DECIMAL input returns a Decimal.
    """
    present = [v for v in values if v is not None]
    if distinct:
        present = list(dict.fromkeys(present))

    if func == "count":
        return len(present)
    if not present:
        return None
    try:
        if func == "sum":
            return sum(present)
        if func == "avg":
            if sql_type in ("INT", "DECIMAL") or all(isinstance(v, (int, Decimal)) for v in present):
                return Decimal(sum(present)) / len(present)
            return sum(present) / len(present)
        if func == "min":
            return min(present)
        if func == "max":
            return max(present)
    except TypeError as e:
        raise SchemaMismatch(f"{func}() cannot combine values {present[:3]!r}") from e
    raise ValueError(f"Unknown aggregate function: {func}")


def aggregate_type(func: AggregateFunction, sql_type: Optional[str]) -> Optional[str]:
    if func == "count":
        return "INT"
    if func == "avg":
        return "DECIMAL" if sql_type in ("INT", "DECIMAL") else "FLOAT"
    return sql_type


def group_by(relation: Relation, keys: Sequence[str], aggregates: Sequence[AggregateSpec]) -> Relation:
    """
    One row per distinct key tuple, in first-appearance order.

    Key columns keep their qualifiers; aggregate columns are named by their
    label. With no keys the result is exactly one row.
    """
    key_idx = column_list(relation, list(keys))
    agg_idx = [relation.index_of(a.col) if a.col else None for a in aggregates]

    groups: Dict[Row, List[Row]] = {}
    if not key_idx:
        groups[()] = list(relation.rows)
    else:
        for row in relation.rows:
            groups.setdefault(tuple(row[i] for i in key_idx), []).append(row)

    columns = [relation.columns[i] for i in key_idx]
    for spec, idx in zip(aggregates, agg_idx):
        source_type = relation.columns[idx].sql_type if idx is not None else None
        columns.append(RelColumn(spec.label, None, aggregate_type(spec.func, source_type)))

    rows = []
    for key, members in groups.items():
        out = list(key)
        for spec, idx in zip(aggregates, agg_idx):
            if idx is None:
                out.append(len(members))
                continue
            out.append(
                aggregate_values(
                    spec.func,
                    (r[idx] for r in members),
                    distinct=spec.distinct,
                    sql_type=relation.columns[idx].sql_type,
                )
            )
        rows.append(tuple(out))
    return Relation(columns, rows)
