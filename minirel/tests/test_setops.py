"""Tests for set operations."""

import pytest
from minirel.errors import SchemaMismatch
from minirel.engine.relation import RelColumn, Relation
from minirel.engine.setops import distinct, set_operation


def rel(name, sql_type, values):
    return Relation([RelColumn(name, None, sql_type)], [(v,) for v in values])


def test_union_removes_duplicates():
    """UNION is distinct, UNION_ALL keeps |A| + |B| rows."""
    a, b = rel("x", "INT", [1, 2, 2]), rel("y", "INT", [2, 3])
    assert set_operation(a, b, "UNION").rows == [(1,), (2,), (3,)]
    assert len(set_operation(a, b, "UNION_ALL")) == len(a) + len(b)


def test_intersect_and_except():
    """INTERSECT and EXCEPT return distinct rows in first-occurrence order."""
    a, b = rel("x", "INT", [3, 1, 2, 1]), rel("y", "INT", [1, 3])
    assert set_operation(a, b, "INTERSECT").rows == [(3,), (1,)]
    assert set_operation(a, b, "EXCEPT").rows == [(2,)]


def test_nulls_compare_equal():
    """Null rows are duplicates of each other in set operations."""
    a, b = rel("x", "TEXT", [None, "a"]), rel("y", "TEXT", [None])
    assert set_operation(a, b, "UNION").rows == [(None,), ("a",)]
    assert set_operation(a, b, "INTERSECT").rows == [(None,)]
    assert set_operation(a, b, "EXCEPT").rows == [("a",)]


def test_column_names_come_from_left():
    """The result is labelled like the left operand."""
    result = set_operation(rel("x", "INT", [1]), rel("y", "DECIMAL", [2]), "UNION")
    assert result.column_names == ["x"]


def test_incompatible_operands():
    """Arity or type disagreements raise SchemaMismatch."""
    two = Relation([RelColumn("a"), RelColumn("b")], [(1, 2)])
    with pytest.raises(SchemaMismatch):
        set_operation(rel("x", "INT", [1]), two, "UNION")
    with pytest.raises(SchemaMismatch):
        set_operation(rel("x", "INT", [1]), rel("y", "TEXT", ["1"]), "UNION_ALL")


def test_distinct():
    """distinct keeps first occurrences."""
    r = Relation([RelColumn("a"), RelColumn("b")], [(1, None), (2, "x"), (1, None)])
    assert distinct(r).rows == [(1, None), (2, "x")]
