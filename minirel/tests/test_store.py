"""Tests for the tuple store: inserts, updates, identity, views, snapshots."""

import datetime as dt
import random

import pytest
from minirel.config.settings import Settings
from minirel.errors import (
    ColumnTypeError,
    ConstraintViolation,
    InvalidQuery,
    SchemaError,
    SchemaMismatch,
)
from minirel.engine.store import Database
from minirel.ir.predicate import cond
from minirel.ir.query import QuerySpec
from minirel.ir.schema import CheckSpec, ColumnSpec, IdentitySpec, TableSchema


def make_items_db() -> Database:
    db = Database(Settings())
    db.create_table(
        TableSchema(
            name="Items",
            columns=[
                ColumnSpec(name="id", sql_type="INT", identity=IdentitySpec()),
                ColumnSpec(name="name", sql_type="TEXT", nullable=False),
                ColumnSpec(name="qty", sql_type="INT", default=0),
                ColumnSpec(name="email", sql_type="TEXT"),
            ],
            primary_key=["id"],
            checks=[CheckSpec(name="qty_nonneg", condition=cond("qty", "ge", 0))],
        )
    )
    return db


def test_insert_assigns_identity_and_defaults():
    """Mapping rows take identity values and column defaults."""
    db = make_items_db()
    assert db.insert_rows("Items", [{"name": "a"}, {"name": "b", "qty": 4}]) == 2
    assert list(db.scan("Items")) == [(1, "a", 0, None), (2, "b", 4, None)]


def test_explicit_identity_moves_counter():
    """An explicit identity value pushes the counter past it; delete keeps counters."""
    db = make_items_db()
    db.insert_rows("Items", [{"id": 10, "name": "c"}])
    db.insert_rows("Items", [{"name": "d"}])
    assert [r[0] for r in db.scan("Items")] == [10, 11]

    db.delete_rows("Items")
    db.insert_rows("Items", [(None, "e", 1, None)])
    assert [r[0] for r in db.scan("Items")] == [12]


def test_truncate_resets_identity():
    """Truncate removes every row and restarts identity at the seed."""
    db = make_items_db()
    db.insert_rows("Items", [{"name": "a"}, {"name": "b"}])
    assert db.truncate("Items") == 2
    assert db.row_count("Items") == 0
    db.insert_rows("Items", [{"name": "c"}])
    assert [r[0] for r in db.scan("Items")] == [1]


def test_type_errors():
    """Values must conform to their declared type."""
    db = make_items_db()
    with pytest.raises(ColumnTypeError) as exc:
        db.insert_rows("Items", [("x", "a", 0, None)])
    assert isinstance(exc.value, TypeError)
    assert exc.value.column == "id"

    with pytest.raises(ColumnTypeError):
        db.insert_rows("Items", [{"name": "a", "qty": True}])


def test_row_shape_errors():
    """Wrong arity is a schema mismatch; unknown columns are invalid."""
    db = make_items_db()
    with pytest.raises(SchemaMismatch):
        db.insert_rows("Items", [(1, "a")])
    with pytest.raises(InvalidQuery):
        db.insert_rows("Items", [{"name": "a", "colour": "red"}])
    with pytest.raises(InvalidQuery):
        db.insert_rows("Nope", [{"name": "a"}])


def test_not_null_violation():
    """A NOT NULL column rejects null."""
    db = make_items_db()
    with pytest.raises(ConstraintViolation) as exc:
        db.insert_rows("Items", [{"name": None}])
    assert exc.value.violation.kind == "not_null"


def test_duplicate_primary_key_is_atomic():
    """A batch with a duplicate key inserts nothing."""
    db = make_items_db()
    db.insert_rows("Items", [{"id": 1, "name": "a"}])
    with pytest.raises(ConstraintViolation) as exc:
        db.insert_rows("Items", [{"id": 2, "name": "b"}, {"id": 1, "name": "c"}])
    assert exc.value.violation.kind == "primary_key"
    assert list(db.scan("Items")) == [(1, "a", 0, None)]


def test_unique_key_treats_nulls_as_equal():
    """Two nulls in a unique column collide."""
    db = Database(Settings())
    db.create_table(
        TableSchema(
            name="Users",
            columns=[ColumnSpec(name="id", sql_type="INT"), ColumnSpec(name="email", sql_type="TEXT")],
            primary_key=["id"],
            unique_keys=[["email"]],
        )
    )
    db.insert_rows("Users", [(1, "a@x.org"), (2, None)])
    with pytest.raises(ConstraintViolation) as exc:
        db.insert_rows("Users", [(3, None)])
    assert exc.value.violation.kind == "unique"
    with pytest.raises(ConstraintViolation):
        db.insert_rows("Users", [(4, "a@x.org")])
    assert db.row_count("Users") == 2


def test_composite_unique_key_allows_one_null_row():
    """Any null in a composite unique key uses up the single null allowance."""
    db = Database(Settings())
    db.create_table(
        TableSchema(
            name="Seats",
            columns=[
                ColumnSpec(name="id", sql_type="INT"),
                ColumnSpec(name="row", sql_type="INT"),
                ColumnSpec(name="seat", sql_type="INT"),
            ],
            primary_key=["id"],
            unique_keys=[["row", "seat"]],
        )
    )
    db.insert_rows("Seats", [(1, 1, None), (2, 1, 1), (3, 1, 2)])
    with pytest.raises(ConstraintViolation) as exc:
        db.insert_rows("Seats", [(4, 2, None)])
    assert exc.value.violation.kind == "unique"
    with pytest.raises(ConstraintViolation):
        db.update_rows("Seats", cond("id", "eq", 3), {"seat": None})
    assert db.row_count("Seats") == 3
    assert list(db.scan("Seats"))[2] == (3, 1, 2)


def test_check_constraint():
    """Checks reject False and let unknown (null) through."""
    db = make_items_db()
    with pytest.raises(ConstraintViolation) as exc:
        db.insert_rows("Items", [{"name": "a", "qty": -1}])
    assert exc.value.violation.constraint == "qty_nonneg"

    db.insert_rows("Items", [{"name": "b", "qty": None}])
    assert db.row_count("Items") == 1


def test_update_rows():
    """Updates apply to matching rows and are validated."""
    db = make_items_db()
    db.insert_rows("Items", [{"name": "a"}, {"name": "b"}, {"name": "c"}])
    assert db.update_rows("Items", cond("name", "in", ["a", "c"]), {"qty": 7}) == 2
    assert [r[2] for r in db.scan("Items")] == [7, 0, 7]

    with pytest.raises(ConstraintViolation):
        db.update_rows("Items", None, {"id": 1})
    assert [r[0] for r in db.scan("Items")] == [1, 2, 3]

    with pytest.raises(InvalidQuery):
        db.update_rows("Items", None, {"colour": "red"})


def test_primary_key_property_after_random_inserts():
    """Whatever mix of valid and invalid inserts runs, keys stay unique and non-null."""
    db = Database(Settings())
    db.create_table(
        TableSchema(
            name="T",
            columns=[ColumnSpec(name="k", sql_type="INT"), ColumnSpec(name="v", sql_type="TEXT")],
            primary_key=["k"],
        )
    )
    rng = random.Random(7)
    for _ in range(200):
        batch = [(rng.choice([None] + list(range(30))), "x") for _ in range(rng.randint(1, 3))]
        try:
            db.insert_rows("T", batch)
        except ConstraintViolation:
            pass
    keys = [r[0] for r in db.scan("T")]
    assert None not in keys
    assert len(keys) == len(set(keys))
    assert keys


def test_deduplicate_keeps_first_by_order():
    """deduplicate keeps the lowest-ranked row of each partition."""
    db = Database(Settings())
    db.create_table(
        TableSchema(
            name="Events",
            columns=[
                ColumnSpec(name="id", sql_type="INT"),
                ColumnSpec(name="user", sql_type="TEXT"),
                ColumnSpec(name="ts", sql_type="INT"),
            ],
        )
    )
    db.insert_rows("Events", [(1, "u1", 5), (2, "u1", 3), (3, "u2", 1), (4, "u1", 3)])
    assert db.deduplicate("Events", ["user"], ["ts"]) == 2
    assert list(db.scan("Events")) == [(2, "u1", 3), (3, "u2", 1)]


def test_dates_and_decimals():
    """DATE and DECIMAL columns store canonical Python values."""
    db = Database(Settings())
    db.create_table(
        TableSchema(
            name="Payments",
            columns=[
                ColumnSpec(name="paid_on", sql_type="DATE"),
                ColumnSpec(name="amount", sql_type="DECIMAL"),
            ],
        )
    )
    db.insert_rows("Payments", [(dt.datetime(2024, 1, 5, 10, 30), 1.25), (dt.date(2024, 2, 1), 3)])
    rows = list(db.scan("Payments"))
    assert rows[0][0] == dt.date(2024, 1, 5)
    assert str(rows[0][1]) == "1.25"

    result = db.execute(
        QuerySpec(sources=["Payments"], filter=cond("paid_on", "ge", "2024-01-31"), project=["amount"])
    )
    assert result.rows == [(3,)]


def test_scan_reads_stable_snapshot():
    """A scan started before a mutation does not see it."""
    db = make_items_db()
    db.insert_rows("Items", [{"name": "a"}])
    it = db.scan("Items")
    snap = db.snapshot()
    db.insert_rows("Items", [{"name": "b"}])
    assert len(list(it)) == 1
    assert len(snap.rows("Items")) == 1
    assert db.row_count("Items") == 2


def test_views():
    """Views are usable as sources and cannot shadow tables or recurse."""
    db = make_items_db()
    db.insert_rows("Items", [{"name": "a", "qty": 5}, {"name": "b", "qty": 1}])
    db.create_view("big", QuerySpec(sources=["Items"], filter=cond("qty", "gt", 3)))
    assert db.execute(QuerySpec(sources=["big"], project=["name"])).rows == [("a",)]
    assert db.view_names() == ["big"]

    with pytest.raises(InvalidQuery):
        db.create_view("Items", QuerySpec(sources=["Items"]))
    with pytest.raises(InvalidQuery):
        db.create_view("loop", QuerySpec(sources=["loop"]))
    assert "loop" not in db.view_names()

    db.drop_view("big")
    with pytest.raises(InvalidQuery):
        db.execute(QuerySpec(sources=["big"]))


def test_invalid_table_definition():
    """Invalid definitions are rejected with their issues."""
    db = Database(Settings())
    bad = TableSchema(
        name="Bad",
        columns=[ColumnSpec(name="a", sql_type="TEXT", identity=IdentitySpec())],
        primary_key=["missing"],
    )
    with pytest.raises(SchemaError) as exc:
        db.create_table(bad)
    codes = {issue.code for issue in exc.value.issues}
    assert {"IDENTITY_TYPE", "PK_COL_MISSING"} <= codes
    assert db.table_names() == []
