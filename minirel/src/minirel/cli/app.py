"""Typer CLI application."""

import typer
from pathlib import Path
from typing import Optional

from minirel.config.settings import get_settings
from minirel.config.logging import setup_logging
from minirel.errors import MinirelError
from minirel.engine.store import Database
from minirel.ir.validators import validate_tables
from minirel.utils.ir_io import load_query_from_json, load_schema_from_json
from minirel.utils.data_loader import load_csv_tables

app = typer.Typer(help="minirel: in-memory relational query evaluator")

# Missing files and malformed JSON surface as FileNotFoundError and ValueError
INPUT_ERRORS = (MinirelError, FileNotFoundError, ValueError)


def _fail(error: Exception) -> typer.Exit:
    typer.echo(f"Error: [{type(error).__name__}] {error}", err=True)
    return typer.Exit(1)


@app.command()
def query(
    schema_json: Path,
    data_dir: Path,
    query_json: Path,
    out: Optional[Path] = typer.Option(None, "--out", help="Write the result to this CSV file"),
):
    """
    Load tables, run a query, and print or save the result.

    Args:
        schema_json: Path to the schema JSON file
        data_dir: Directory containing <table>.csv files
        query_json: Path to the query JSON file
        out: Optional CSV output path
    """
    setup_logging()
    settings = get_settings()

    db = Database(settings)

    try:
        typer.echo(f"Loading schema from {schema_json}")
        db.create_schema(load_schema_from_json(schema_json))
        typer.echo(f"Loading data from {data_dir}")
        counts = load_csv_tables(data_dir, db)
        typer.echo(f"Loaded {sum(counts.values())} rows into {len(counts)} tables")

        typer.echo(f"Running query from {query_json}")
        result = db.execute(load_query_from_json(query_json))
    except INPUT_ERRORS as e:
        raise _fail(e)

    frame = result.to_frame()
    if out is not None:
        out = Path(out)
        out.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(out, index=False)
        typer.echo(f"✓ Wrote {len(result)} rows to {out}")
    else:
        # None cells in object columns print as "None" unless replaced
        shown = frame.where(frame.notna(), settings.null_repr)
        typer.echo(shown.to_string(index=False))
        typer.echo(f"({len(result)} rows)")


@app.command()
def check_schema(schema_json: Path):
    """
    Validate table definitions and report issues.

    Args:
        schema_json: Path to the schema JSON file
    """
    setup_logging()

    typer.echo(f"Loading schema from {schema_json}")
    try:
        schema = load_schema_from_json(schema_json)
    except INPUT_ERRORS as e:
        raise _fail(e)
    issues = validate_tables(schema.tables)

    if issues:
        typer.echo(f"Found {len(issues)} issues:", err=True)
        for issue in issues:
            typer.echo(f"  [{issue.code}] {issue.location}: {issue.message}", err=True)
        raise typer.Exit(1)

    typer.echo(f"✓ Schema OK: {len(schema.tables)} tables")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
