"""Utility functions for common operations."""

from .ir_io import (
    load_schema_from_json,
    save_schema_to_json,
    load_query_from_json,
    save_query_to_json,
    parse_query,
    dump_query,
)
from .data_loader import load_csv_files, load_csv_tables

__all__ = [
    "load_schema_from_json",
    "save_schema_to_json",
    "load_query_from_json",
    "save_query_to_json",
    "parse_query",
    "dump_query",
    "load_csv_files",
    "load_csv_tables",
]
