"""Window functions and ordering."""

from typing import Any, Dict, List, Sequence, Tuple, Union

from minirel.errors import SchemaMismatch
from minirel.engine.relation import RelColumn, Relation, Row
from minirel.ir.query import OrderKey, WindowFunction, parse_order_keys

OrderKeys = Sequence[Union[OrderKey, str]]


def as_order_keys(keys: OrderKeys) -> List[OrderKey]:
    """Accept OrderKey objects or "col" / "col DESC" shorthands."""
    return [k if isinstance(k, OrderKey) else OrderKey(**k) for k in parse_order_keys(list(keys))]


def _null_first(value: Any) -> Tuple:
    return (0,) if value is None else (1, value)


def sort_indices(relation: Relation, keys: OrderKeys) -> List[int]:
    """
    Row positions in sort order.

    Nulls sort first ascending and last descending. Ties keep input order.
    """
    order = list(range(len(relation)))
    # stable sorts applied from the least significant key up
    for key in reversed(as_order_keys(keys)):
        idx = relation.index_of(key.column)
        try:
            order.sort(key=lambda i: _null_first(relation.rows[i][idx]), reverse=key.descending)
        except TypeError as e:
            raise SchemaMismatch(f"Column '{key.column}' holds values that cannot be ordered") from e
    return order


def sort_relation(relation: Relation, keys: OrderKeys) -> Relation:
    return relation.with_rows(relation.rows[i] for i in sort_indices(relation, keys))


def window_values(
    relation: Relation,
    partition_by: Sequence[str],
    order_by: OrderKeys,
    function: WindowFunction = "row_number",
) -> List[int]:
    """
    Compute a ranking function for every row.

    Args:
        relation: Input rows
        partition_by: Columns whose values define partitions (nulls group together)
        order_by: Sort keys within a partition
        function: row_number, rank or dense_rank

    Returns:
        One value per input row, aligned with the input order
    """
    keys = as_order_keys(order_by)
    part_idx = [relation.index_of(c) for c in partition_by]
    order_idx = [relation.index_of(k.column) for k in keys]

    result = [0] * len(relation)
    # partition -> [rows seen, current rank, current dense rank, last order key]
    state: Dict[Row, list] = {}
    for i in sort_indices(relation, keys):
        row = relation.rows[i]
        part = tuple(row[j] for j in part_idx)
        order_key = tuple(row[j] for j in order_idx)
        st = state.get(part)
        if st is None:
            st = state[part] = [0, 0, 0, None]
        st[0] += 1
        if st[0] == 1 or order_key != st[3]:
            st[1] = st[0]
            st[2] += 1
            st[3] = order_key
        if function == "row_number":
            result[i] = st[0]
        elif function == "rank":
            result[i] = st[1]
        elif function == "dense_rank":
            result[i] = st[2]
        else:
            raise ValueError(f"Unknown window function: {function}")
    return result


def row_numbers(relation: Relation, partition_by: Sequence[str], order_by: OrderKeys) -> List[int]:
    return window_values(relation, partition_by, order_by, "row_number")


def apply_window(
    relation: Relation,
    partition_by: Sequence[str],
    order_by: OrderKeys,
    function: WindowFunction = "row_number",
    name: str = "row_num",
) -> Relation:
    """Append a ranking column; row order is unchanged."""
    values = window_values(relation, partition_by, order_by, function)
    columns = relation.columns + (RelColumn(name, None, "INT"),)
    return Relation(columns, [row + (v,) for row, v in zip(relation.rows, values)])


def dedup_keep_first(
    relation: Relation, partition_by: Sequence[str], order_by: OrderKeys
) -> Tuple[Relation, Relation]:
    """
    Split rows into the first of each partition and the rest.

    Returns:
        (kept rows, removed rows), each in input order
    """
    numbers = row_numbers(relation, partition_by, order_by)
    kept = [row for row, n in zip(relation.rows, numbers) if n == 1]
    removed = [row for row, n in zip(relation.rows, numbers) if n > 1]
    return relation.with_rows(kept), relation.with_rows(removed)
