"""Tests for the command-line interface."""

import json

import pandas as pd
import pytest
from typer.testing import CliRunner

from minirel.cli.app import app
from minirel.config.logging import setup_logging

runner = CliRunner()

SCHEMA = {
    "tables": [
        {
            "name": "Customers",
            "columns": [{"name": "CustomerID", "sql_type": "INT"}, {"name": "Name", "sql_type": "TEXT"}],
            "primary_key": ["CustomerID"],
        },
        {
            "name": "Orders",
            "columns": [{"name": "OrderID", "sql_type": "INT"}, {"name": "CustomerID", "sql_type": "INT"}],
            "primary_key": ["OrderID"],
            "foreign_keys": [{"column": "CustomerID", "ref_table": "Customers", "ref_column": "CustomerID"}],
        },
    ]
}

QUERY = {
    "sources": [{"table": "Customers", "alias": "c"}],
    "joins": [
        {
            "right": {"table": "Orders", "alias": "o"},
            "kind": "LEFT_OUTER",
            "on": {"kind": "atom", "atom": {"col": "c.CustomerID", "op": "eq", "ref": "o.CustomerID"}},
        }
    ],
    "project": ["c.Name", "o.OrderID"],
    "order_by": ["Name", "OrderID"],
}


@pytest.fixture
def workspace(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    (data / "Customers.csv").write_text("CustomerID,Name\n1,Alice\n2,Bob\n", encoding="utf-8")
    (data / "Orders.csv").write_text("OrderID,CustomerID\n101,1\n102,1\n", encoding="utf-8")
    (tmp_path / "schema.json").write_text(json.dumps(SCHEMA), encoding="utf-8")
    (tmp_path / "query.json").write_text(json.dumps(QUERY), encoding="utf-8")
    yield tmp_path
    # Handlers created under the runner point at its closed streams
    setup_logging()


def test_query_prints_result(workspace):
    """The query command loads CSVs and prints the joined rows."""
    result = runner.invoke(
        app,
        ["query", str(workspace / "schema.json"), str(workspace / "data"), str(workspace / "query.json")],
    )
    assert result.exit_code == 0, result.output
    assert "Alice" in result.output
    assert "NULL" in result.output
    assert "(3 rows)" in result.output


def test_query_writes_csv(workspace):
    """--out writes the result as CSV."""
    out = workspace / "out" / "result.csv"
    result = runner.invoke(
        app,
        [
            "query",
            str(workspace / "schema.json"),
            str(workspace / "data"),
            str(workspace / "query.json"),
            "--out",
            str(out),
        ],
    )
    assert result.exit_code == 0, result.output
    frame = pd.read_csv(out)
    assert list(frame.columns) == ["Name", "OrderID"]
    assert list(frame["Name"]) == ["Alice", "Alice", "Bob"]


def test_query_reports_constraint_errors(workspace):
    """Data that breaks a constraint exits with status 1."""
    (workspace / "data" / "Orders.csv").write_text("OrderID,CustomerID\n101,9\n", encoding="utf-8")
    result = runner.invoke(
        app,
        ["query", str(workspace / "schema.json"), str(workspace / "data"), str(workspace / "query.json")],
    )
    assert result.exit_code == 1
    assert "ConstraintViolation" in result.output


def test_check_schema(workspace):
    """check-schema passes good definitions and lists issues for bad ones."""
    result = runner.invoke(app, ["check-schema", str(workspace / "schema.json")])
    assert result.exit_code == 0, result.output
    assert "Schema OK: 2 tables" in result.output

    bad = dict(SCHEMA, tables=[SCHEMA["tables"][1]])
    (workspace / "bad.json").write_text(json.dumps(bad), encoding="utf-8")
    result = runner.invoke(app, ["check-schema", str(workspace / "bad.json")])
    assert result.exit_code == 1
    assert "FK_REF_TABLE_MISSING" in result.output


def test_unreadable_inputs_exit_cleanly(workspace):
    """Missing or malformed input files give an error line, not a traceback."""
    result = runner.invoke(
        app,
        ["query", str(workspace / "missing.json"), str(workspace / "data"), str(workspace / "query.json")],
    )
    assert result.exit_code == 1
    assert "Error: [FileNotFoundError]" in result.output
    assert isinstance(result.exception, SystemExit)

    (workspace / "broken.json").write_text("{not json", encoding="utf-8")
    result = runner.invoke(
        app,
        ["query", str(workspace / "schema.json"), str(workspace / "data"), str(workspace / "broken.json")],
    )
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert isinstance(result.exception, SystemExit)

    result = runner.invoke(app, ["check-schema", str(workspace / "broken.json")])
    assert result.exit_code == 1
    assert "Error:" in result.output
