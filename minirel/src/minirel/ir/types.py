"""Column types, value coercion and the null marker.

``None`` is the null marker. No column type admits ``None`` as a domain
value, so a null cell is always distinguishable from real data.
"""

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Optional

import numpy as np
import pandas as pd

from minirel.errors import ColumnTypeError

SQLType = Literal[
    "INT",
    "DECIMAL",
    "FLOAT",
    "TEXT",
    "BOOL",
    "DATE",
]

NUMERIC_TYPES = frozenset({"INT", "DECIMAL", "FLOAT"})

TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
FALSE_STRINGS = {"false", "f", "no", "n", "0"}


def is_null(value: Any) -> bool:
    """True for None and for the missing-value markers pandas and numpy produce."""
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _fail(value: Any, sql_type: str, table: Optional[str], column: Optional[str]) -> ColumnTypeError:
    where = f"{table}.{column}" if table and column else (column or "value")
    return ColumnTypeError(
        f"{where}: {value!r} ({type(value).__name__}) is not a valid {sql_type}",
        table=table,
        column=column,
    )


def coerce_value(
    value: Any,
    sql_type: str,
    table: Optional[str] = None,
    column: Optional[str] = None,
) -> Any:
    """
    Normalize a Python, numpy or pandas scalar to the canonical type for a column.

    Args:
        value: Incoming value
        sql_type: Declared column type
        table: Table name for error messages
        column: Column name for error messages

    Returns:
        Canonical value (int, Decimal, float, str, bool, date) or None

    Raises:
        ColumnTypeError: If the value does not conform to the declared type
    """
    if is_null(value):
        return None

    # bool is an int subclass; it only belongs in BOOL columns
    is_bool = isinstance(value, (bool, np.bool_))

    if sql_type == "INT":
        if is_bool:
            raise _fail(value, sql_type, table, column)
        if isinstance(value, (int, np.integer)):
            return int(value)
        if isinstance(value, (float, np.floating)) and float(value).is_integer():
            return int(value)
        if isinstance(value, Decimal) and value == value.to_integral_value():
            return int(value)
        raise _fail(value, sql_type, table, column)

    if sql_type == "DECIMAL":
        if is_bool:
            raise _fail(value, sql_type, table, column)
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, np.integer)):
            return Decimal(int(value))
        if isinstance(value, (float, np.floating)):
            return Decimal(str(float(value)))
        raise _fail(value, sql_type, table, column)

    if sql_type == "FLOAT":
        if is_bool:
            raise _fail(value, sql_type, table, column)
        if isinstance(value, (int, float, Decimal, np.integer, np.floating)):
            return float(value)
        raise _fail(value, sql_type, table, column)

    if sql_type == "TEXT":
        if isinstance(value, str):
            return str(value)
        raise _fail(value, sql_type, table, column)

    if sql_type == "BOOL":
        if is_bool:
            return bool(value)
        raise _fail(value, sql_type, table, column)

    if sql_type == "DATE":
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, dt.date):
            return value
        if isinstance(value, np.datetime64):
            return pd.Timestamp(value).date()
        raise _fail(value, sql_type, table, column)

    raise ColumnTypeError(f"Unknown column type: {sql_type}", table=table, column=column)


def parse_text(
    text: str,
    sql_type: str,
    table: Optional[str] = None,
    column: Optional[str] = None,
) -> Any:
    """
    Parse a textual cell (e.g. from CSV) into the canonical type for a column.

    Empty strings are null for every type except TEXT.
    """
    if text is None or is_null(text):
        return None
    if sql_type == "TEXT":
        return text
    stripped = text.strip()
    if not stripped:
        return None
    try:
        if sql_type == "INT":
            return int(stripped)
        if sql_type == "DECIMAL":
            return Decimal(stripped)
        if sql_type == "FLOAT":
            return float(stripped)
        if sql_type == "BOOL":
            lowered = stripped.lower()
            if lowered in TRUE_STRINGS:
                return True
            if lowered in FALSE_STRINGS:
                return False
            raise ValueError(stripped)
        if sql_type == "DATE":
            return dt.date.fromisoformat(stripped)
    except (ValueError, InvalidOperation) as e:
        raise _fail(text, sql_type, table, column) from e
    raise ColumnTypeError(f"Unknown column type: {sql_type}", table=table, column=column)


def infer_type(value: Any) -> Optional[str]:
    """Column type for a literal, or None if it cannot be told (null)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT"
    if isinstance(value, Decimal):
        return "DECIMAL"
    if isinstance(value, float):
        return "FLOAT"
    if isinstance(value, str):
        return "TEXT"
    if isinstance(value, dt.date):
        return "DATE"
    return None


def types_compatible(a: Optional[str], b: Optional[str]) -> bool:
    """Whether two column types may share a result column."""
    if a is None or b is None or a == b:
        return True
    return a in NUMERIC_TYPES and b in NUMERIC_TYPES


def literal_tag(value: Any) -> Optional[str]:
    """
    Type a literal needs to carry through JSON, which has no decimals or dates.

    Lists (IN and BETWEEN operands, pivot values) are tagged by their first
    decimal or date element.
    """
    for v in value if isinstance(value, list) else [value]:
        if isinstance(v, Decimal):
            return "DECIMAL"
        if isinstance(v, dt.date) and not isinstance(v, dt.datetime):
            return "DATE"
    return None


def restore_literal(value: Any, sql_type: Optional[str]) -> Any:
    """
    Bring a literal (or list of literals) to its tagged type.

    Text is parsed, so ``"1.5"`` tagged DECIMAL becomes ``Decimal("1.5")``.

    Raises:
        ColumnTypeError: If a value cannot be read as the tagged type
    """
    if sql_type is None:
        return value
    if isinstance(value, list):
        return [restore_literal(v, sql_type) for v in value]
    if isinstance(value, str) and sql_type != "TEXT":
        return parse_text(value, sql_type)
    return coerce_value(value, sql_type)


def typed_literal(value: Any, sql_type: Optional[str]) -> tuple:
    """
    Tag an untyped literal and restore a tagged one, for model validators.

    Returns:
        (value, sql_type)

    Raises:
        ValueError: If a value cannot be read as its tagged type
    """
    sql_type = sql_type or literal_tag(value)
    try:
        return restore_literal(value, sql_type), sql_type
    except ColumnTypeError as e:
        raise ValueError(str(e)) from e
