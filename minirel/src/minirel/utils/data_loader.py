"""Utilities for loading data files."""

from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from minirel.config.logging import get_logger
from minirel.engine.store import Database
from minirel.ir.types import parse_text
from minirel.ir.schema import TableSchema

logger = get_logger(__name__)


def load_csv_files(data_dir: Path) -> Dict[str, pd.DataFrame]:
    """
    Load all CSV files from a directory into DataFrames of strings.

    Cells are kept as text (no NaN conversion) so that each column can be
    parsed by its declared type.

    Returns:
        Dictionary mapping table names (file stems) to DataFrames
    """
    return {
        p.stem: pd.read_csv(p, dtype=str, keep_default_na=False)
        for p in sorted(Path(data_dir).glob("*.csv"))
    }


def frame_to_rows(df: pd.DataFrame, schema: TableSchema) -> List[Dict[str, Any]]:
    """Parse a text DataFrame into column mappings typed by the table schema."""
    types = {c.name: c.sql_type for c in schema.columns}
    rows = []
    for record in df.to_dict(orient="records"):
        rows.append({
            name: parse_text(value, types[name], schema.name, name) if name in types else value
            for name, value in record.items()
        })
    return rows


def load_csv_tables(data_dir: Path, db: Database) -> Dict[str, int]:
    """
    Load <table>.csv files into the matching tables of a database.

    All tables load in one atomic insert. CSV files without a matching
    table are skipped with a warning.

    Returns:
        Rows inserted per table
    """
    frames = load_csv_files(Path(data_dir))
    known = set(db.table_names())
    batches = {}
    for name, df in frames.items():
        if name not in known:
            logger.warning(f"Skipping {name}.csv: no table named '{name}'")
            continue
        batches[name] = frame_to_rows(df, db.schema(name))
    return db.insert_tables(batches)
