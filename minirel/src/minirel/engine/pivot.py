"""Pivot (rows to columns) and unpivot (columns to rows)."""

from typing import Any, Dict, List, Optional, Sequence

from minirel.engine.aggregate import aggregate_type, aggregate_values
from minirel.errors import InvalidQuery, SchemaMismatch
from minirel.engine.expressions import coerce_literal, column_list
from minirel.engine.relation import RelColumn, Relation, Row
from minirel.ir.types import types_compatible
from minirel.ir.query import AggregateFunction


def discover_spread_values(relation: Relation, spread: str) -> List[Any]:
    """Distinct non-null values of the spread column, sorted."""
    idx = relation.index_of(spread)
    values = {row[idx] for row in relation.rows if row[idx] is not None}
    try:
        return sorted(values)
    except TypeError as e:
        raise SchemaMismatch(f"Spread column '{spread}' holds values that cannot be ordered") from e


def pivot(
    relation: Relation,
    group_by: Sequence[str],
    spread: str,
    value: str,
    aggregate: AggregateFunction = "sum",
    spread_values: Sequence[Any] = (),
) -> Relation:
    """
    Turn the distinct values of one column into output columns.

    Output is one row per distinct group, in first-appearance order, with one
    column per spread value labelled str(value). A cell is null when no input
    row has that spread value, whatever the aggregate. Spread values outside
    the list are dropped.

    Args:
        relation: Narrow input
        group_by: Columns identifying an output row
        spread: Column whose values become output columns
        value: Column aggregated into each cell
        aggregate: count, sum, avg, min or max
        spread_values: Output columns, in order

    Raises:
        InvalidQuery: If a column is undefined, or two spread values share a label
            or match the same input value
    """
    group_idx = column_list(relation, list(group_by))
    spread_idx = relation.index_of(spread)
    value_idx = relation.index_of(value)
    spread_type = relation.columns[spread_idx].sql_type
    value_type = relation.columns[value_idx].sql_type

    labels = [str(v) for v in spread_values]
    if len(set(labels)) != len(labels):
        raise InvalidQuery(f"Pivot values produce duplicate column labels: {labels}")
    position: Dict[Any, int] = {}
    for pos, v in enumerate(spread_values):
        coerced = coerce_literal(v, spread_type)
        if coerced is None:
            continue
        if coerced in position:
            raise InvalidQuery(
                f"Pivot values {spread_values[position[coerced]]!r} and {v!r} name the same {spread} value"
            )
        position[coerced] = pos

    cells: Dict[Row, List[Optional[List[Any]]]] = {}
    for row in relation.rows:
        key = tuple(row[i] for i in group_idx)
        slots = cells.setdefault(key, [None] * len(labels))
        pos = position.get(row[spread_idx]) if row[spread_idx] is not None else None
        if pos is None:
            continue
        if slots[pos] is None:
            slots[pos] = []
        slots[pos].append(row[value_idx])

    columns = [relation.columns[i] for i in group_idx]
    cell_type = aggregate_type(aggregate, value_type)
    columns.extend(RelColumn(label, None, cell_type) for label in labels)

    rows = []
    for key, slots in cells.items():
        out = list(key)
        for values in slots:
            out.append(None if values is None else aggregate_values(aggregate, values, sql_type=value_type))
        rows.append(tuple(out))
    return Relation(columns, rows)


def unpivot(
    relation: Relation,
    keys: Sequence[str],
    columns: Sequence[str],
    name_column: str = "name",
    value_column: str = "value",
    include_nulls: bool = False,
) -> Relation:
    """
    Turn named columns into (name, value) rows.

    Each input row yields one output row per source column, carrying the key
    columns, the source column's name and its value. Null cells are skipped
    unless include_nulls is set.

    Raises:
        SchemaMismatch: If the source columns have incompatible types
    """
    key_idx = column_list(relation, list(keys))
    source_idx = column_list(relation, list(columns))
    source_types = [relation.columns[i].sql_type for i in source_idx]
    for i, a in enumerate(source_types):
        for b in source_types[i + 1:]:
            if not types_compatible(a, b):
                raise SchemaMismatch(f"Unpivot columns {list(columns)} have incompatible types {source_types}")
    result_type = next((t for t in source_types if t is not None), None)

    out_columns = [relation.columns[i] for i in key_idx]
    out_columns.append(RelColumn(name_column, None, "TEXT"))
    out_columns.append(RelColumn(value_column, None, result_type))

    rows = []
    for row in relation.rows:
        key = tuple(row[i] for i in key_idx)
        for idx in source_idx:
            cell = row[idx]
            if cell is None and not include_nulls:
                continue
            rows.append(key + (relation.columns[idx].name, cell))
    return Relation(out_columns, rows)
