"""Tests for schema and query IR models, schema validation and JSON IO."""

import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError
from minirel.ir.predicate import ConditionExpr, and_, cond, not_
from minirel.ir.query import AggregateSpec, JoinSpec, OrderKey, QuerySpec, SourceRef
from minirel.ir.schema import (
    CheckSpec,
    ColumnSpec,
    DatabaseSchema,
    ForeignKeySpec,
    IdentitySpec,
    TableSchema,
)
from minirel.ir.validators import detect_cascade_cycles, validate_tables
from minirel.utils.ir_io import (
    load_query_from_json,
    load_schema_from_json,
    save_query_to_json,
    save_schema_to_json,
)


def customers_table():
    return TableSchema(
        name="Customers",
        columns=[
            ColumnSpec(name="CustomerID", sql_type="INT", identity=IdentitySpec(seed=100, step=10)),
            ColumnSpec(name="Name", sql_type="TEXT", nullable=False),
        ],
        primary_key=["CustomerID"],
        checks=[CheckSpec(name="name_not_blank", condition=not_(cond("Name", "eq", "")))],
    )


def orders_table():
    return TableSchema(
        name="Orders",
        columns=[
            ColumnSpec(name="OrderID", sql_type="INT"),
            ColumnSpec(name="CustomerID", sql_type="INT"),
        ],
        primary_key=["OrderID"],
        foreign_keys=[ForeignKeySpec(column="CustomerID", ref_table="Customers", ref_column="CustomerID")],
    )


def test_foreign_key_single_column_form():
    """The singular column/ref_column keys expand to lists."""
    fk = orders_table().foreign_keys[0]
    assert fk.columns == ["CustomerID"]
    assert fk.ref_columns == ["CustomerID"]
    assert fk.on_delete == "RESTRICT"
    assert fk.label("Orders") == "fk_Orders_CustomerID"


def test_table_helpers():
    """Column lookup and key sets."""
    table = customers_table()
    assert table.column_names == ["CustomerID", "Name"]
    assert table.column_index("Name") == 1
    assert table.key_sets() == [["CustomerID"]]
    with pytest.raises(KeyError):
        table.column_index("Missing")


def test_identity_step_must_be_nonzero():
    """A zero step would never advance."""
    with pytest.raises(ValidationError):
        IdentitySpec(step=0)


def test_condition_shapes():
    """Condition nodes validate their operands."""
    with pytest.raises(ValidationError):
        cond("x", "in", 3)
    with pytest.raises(ValidationError):
        cond("x", "between", [1])
    with pytest.raises(ValidationError):
        ConditionExpr(kind="not", children=[])
    expr = and_(cond("a", "eq", 1), cond("b", "lt", ref="c"))
    assert expr.referenced_columns() == ["a", "b", "c"]


def test_query_shorthands():
    """Strings stand in for sources and order keys."""
    query = QuerySpec(sources=["Orders"], order_by=["OrderID DESC", "CustomerID"])
    assert query.sources[0] == SourceRef(table="Orders")
    assert query.order_by == [OrderKey(column="OrderID", descending=True), OrderKey(column="CustomerID")]
    assert JoinSpec(right="Customers", kind="CROSS").right.label == "Customers"


def test_query_model_errors():
    """Invalid combinations are rejected."""
    with pytest.raises(ValidationError):
        SourceRef(table="a", query=QuerySpec(sources=["b"]), alias="x")
    with pytest.raises(ValidationError):
        SourceRef(query=QuerySpec(sources=["b"]))
    with pytest.raises(ValidationError):
        JoinSpec(right="Customers", kind="INNER")
    with pytest.raises(ValidationError):
        AggregateSpec(func="sum")
    assert AggregateSpec(func="avg", col="Sales").label == "avg_Sales"


def test_validate_tables_accepts_good_schema():
    """A consistent pair of tables has no issues."""
    assert validate_tables([customers_table(), orders_table()]) == []


def test_validate_tables_reports_issues():
    """Each kind of definition error gets its own code."""
    bad_orders = TableSchema(
        name="Orders",
        columns=[
            ColumnSpec(name="OrderID", sql_type="INT"),
            ColumnSpec(name="OrderID", sql_type="INT"),
            ColumnSpec(name="CustomerName", sql_type="TEXT", default=5),
        ],
        unique_keys=[["Nope"]],
        foreign_keys=[
            ForeignKeySpec(column="CustomerName", ref_table="Customers", ref_column="Name"),
            ForeignKeySpec(column="OrderID", ref_table="Ghosts", ref_column="id"),
        ],
    )
    codes = {issue.code for issue in validate_tables([customers_table(), bad_orders])}
    assert codes == {
        "DUPLICATE_COLUMN",
        "DEFAULT_TYPE",
        "UNIQUE_COL_MISSING",
        "FK_REF_NOT_KEY",
        "FK_REF_TABLE_MISSING",
    }


def test_validate_tables_against_existing_catalog():
    """Redefining an existing table is an issue; referencing one is fine."""
    existing = {"Customers": customers_table()}
    assert validate_tables([orders_table()], existing) == []
    codes = [i.code for i in validate_tables([customers_table()], existing)]
    assert codes == ["DUPLICATE_TABLE"]


def test_fk_type_mismatch():
    """Foreign key columns must be type-compatible with their targets."""
    orders = orders_table().model_copy(
        update={"columns": [ColumnSpec(name="OrderID", sql_type="INT"), ColumnSpec(name="CustomerID", sql_type="TEXT")]}
    )
    codes = [i.code for i in validate_tables([customers_table(), orders])]
    assert codes == ["FK_TYPE_MISMATCH"]


def test_self_referencing_cascade_is_not_a_cycle():
    """A table cascading to itself is allowed."""
    emp = TableSchema(
        name="Emp",
        columns=[ColumnSpec(name="id", sql_type="INT"), ColumnSpec(name="boss", sql_type="INT")],
        primary_key=["id"],
        foreign_keys=[ForeignKeySpec(column="boss", ref_table="Emp", ref_column="id", on_delete="CASCADE")],
    )
    assert detect_cascade_cycles({"Emp": emp}) == []


def test_schema_json_round_trip(tmp_path):
    """Schemas survive save and load, including bare table lists."""
    schema = DatabaseSchema(tables=[customers_table(), orders_table()])
    path = tmp_path / "schema.json"
    save_schema_to_json(schema, path)
    assert load_schema_from_json(path) == schema

    bare = tmp_path / "bare.json"
    bare.write_text('[{"name": "T", "columns": [{"name": "a", "sql_type": "INT"}]}]', encoding="utf-8")
    assert load_schema_from_json(bare).tables[0].name == "T"


def test_query_json_file_round_trip(tmp_path):
    """Queries survive save and load."""
    query = QuerySpec(sources=["Orders"], filter=cond("OrderID", "between", [1, 10]), limit=5)
    path = tmp_path / "nested" / "query.json"
    save_query_to_json(query, path)
    assert load_query_from_json(path) == query


def test_json_loading_errors(tmp_path):
    """Missing, empty or invalid files raise clear errors."""
    with pytest.raises(FileNotFoundError):
        load_query_from_json(tmp_path / "missing.json")
    empty = tmp_path / "empty.json"
    empty.write_text("  ", encoding="utf-8")
    with pytest.raises(ValueError):
        load_schema_from_json(empty)
    bad = tmp_path / "bad.json"
    bad.write_text('{"sources": []}', encoding="utf-8")
    with pytest.raises(ValueError):
        load_query_from_json(bad)


def test_decimal_and_date_values_survive_schema_json(tmp_path):
    """Defaults and check literals keep their types after a save and load."""
    table = TableSchema(
        name="Prices",
        columns=[
            ColumnSpec(name="amount", sql_type="DECIMAL", default=Decimal("9.99")),
            ColumnSpec(name="since", sql_type="DATE", default=dt.date(2024, 1, 1)),
        ],
        checks=[CheckSpec(name="cheap", condition=cond("amount", "lt", Decimal("100.5")))],
    )
    path = tmp_path / "prices.json"
    save_schema_to_json(DatabaseSchema(tables=[table]), path)
    loaded = load_schema_from_json(path).tables[0]
    assert loaded == table
    assert loaded.columns[0].default == Decimal("9.99")
    assert loaded.columns[1].default == dt.date(2024, 1, 1)
    assert loaded.checks[0].condition.atom.value == Decimal("100.5")
