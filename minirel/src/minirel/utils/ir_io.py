"""Utilities for loading and saving schema and query IR from/to JSON."""

from pathlib import Path
from typing import List, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from minirel.ir.query import QuerySpec
from minirel.ir.schema import DatabaseSchema, TableSchema


def _read_json_text(path: Path, kind: str) -> str:
    if not path.exists():
        raise FileNotFoundError(f"{kind} file not found: {path}")
    content = path.read_text(encoding="utf-8").strip()
    if not content:
        raise ValueError(f"{kind} file is empty: {path}")
    return content


def _write_json(model: BaseModel, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(model.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")


def load_schema_from_json(schema_path: Path) -> DatabaseSchema:
    """
    Load table definitions from a JSON file.

    The file holds either {"tables": [...]} or a bare list of tables.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is empty or not a valid schema
    """
    content = _read_json_text(Path(schema_path), "Schema")
    adapter = TypeAdapter(Union[DatabaseSchema, List[TableSchema]])
    try:
        parsed = adapter.validate_json(content)
    except ValidationError as e:
        raise ValueError(f"Failed to load schema from {schema_path}: {e}") from e
    if isinstance(parsed, list):
        return DatabaseSchema(tables=parsed)
    return parsed


def save_schema_to_json(schema: DatabaseSchema, schema_path: Path) -> None:
    """Save table definitions to a JSON file, creating parent directories."""
    _write_json(schema, schema_path)


def parse_query(text: str) -> QuerySpec:
    """Parse a query description from JSON text."""
    return TypeAdapter(QuerySpec).validate_json(text)


def dump_query(query: QuerySpec) -> str:
    """Serialize a query description to JSON text."""
    return query.model_dump_json(indent=2, exclude_none=True)


def load_query_from_json(query_path: Path) -> QuerySpec:
    """
    Load a query description from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is empty or not a valid query
    """
    content = _read_json_text(Path(query_path), "Query")
    try:
        return parse_query(content)
    except ValidationError as e:
        raise ValueError(f"Failed to load query from {query_path}: {e}") from e


def save_query_to_json(query: QuerySpec, query_path: Path) -> None:
    _write_json(query, query_path)
