"""Tests for window functions and ordering."""

from minirel.engine.relation import RelColumn, Relation
from minirel.engine.window import apply_window, dedup_keep_first, sort_relation, window_values
from minirel.ir.query import OrderKey


def salaries():
    return Relation(
        [RelColumn("Dept", "e", "TEXT"), RelColumn("Salary", "e", "INT")],
        [("A", 100), ("B", 50), ("A", 200), ("A", 100), ("A", 50)],
    )


def test_ranking_functions():
    """row_number, rank and dense_rank over the same ordering."""
    rel = salaries()
    order = [OrderKey(column="Salary", descending=True)]
    assert window_values(rel, ["Dept"], order, "row_number") == [2, 1, 1, 3, 4]
    assert window_values(rel, ["Dept"], order, "rank") == [2, 1, 1, 2, 4]
    assert window_values(rel, ["Dept"], order, "dense_rank") == [2, 1, 1, 2, 3]


def test_apply_window_keeps_row_order():
    """The ranking is appended as a column and rows stay where they were."""
    rel = salaries()
    result = apply_window(rel, ["Dept"], ["Salary DESC"], "row_number", "rn")
    assert result.column_names == ["Dept", "Salary", "rn"]
    assert [r[:2] for r in result.rows] == rel.rows


def test_row_numbering_is_idempotent():
    """Numbering the same rows twice gives the same numbers."""
    rel = salaries()
    once = apply_window(rel, ["Dept"], ["Salary"], "row_number", "rn1")
    twice = apply_window(once, ["Dept"], ["Salary"], "row_number", "rn2")
    assert [r[2] for r in twice.rows] == [r[3] for r in twice.rows]


def test_null_ordering():
    """Nulls sort first ascending and last descending."""
    rel = Relation([RelColumn("v", None, "INT")], [(2,), (None,), (1,)])
    assert sort_relation(rel, ["v"]).rows == [(None,), (1,), (2,)]
    assert sort_relation(rel, ["v DESC"]).rows == [(2,), (1,), (None,)]


def test_sort_is_stable_across_keys():
    """Ties on every key keep their input order."""
    rel = Relation(
        [RelColumn("k", None, "TEXT"), RelColumn("v", None, "INT"), RelColumn("tag", None, "TEXT")],
        [("b", 1, "first"), ("a", 2, "x"), ("b", 1, "second"), ("a", 1, "y")],
    )
    result = sort_relation(rel, ["k", "v DESC"])
    assert [r[2] for r in result.rows] == ["x", "y", "first", "second"]


def test_nulls_form_one_partition():
    """Rows with null partition values are numbered together."""
    rel = Relation([RelColumn("p", None, "TEXT"), RelColumn("v", None, "INT")], [(None, 1), (None, 2), ("a", 3)])
    assert window_values(rel, ["p"], ["v"]) == [1, 2, 1]


def test_dedup_keeps_one_row_per_partition():
    """rank 1 keep, rank > 1 delete: one survivor per partition, the first by tie-break."""
    rel = salaries()
    kept, removed = dedup_keep_first(rel, ["Dept"], ["Salary"])
    assert kept.rows == [("B", 50), ("A", 50)]
    assert len(kept) + len(removed) == len(rel)

    kept, _ = dedup_keep_first(rel, ["Dept"], [])
    assert kept.rows == [("A", 100), ("B", 50)]
