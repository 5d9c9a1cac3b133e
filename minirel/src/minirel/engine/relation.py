"""Tuple sets flowing between engine stages and returned as results."""

from collections import Counter
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from minirel.errors import InvalidQuery, SchemaMismatch
from minirel.ir.schema import TableSchema

Row = Tuple[Any, ...]


@dataclass(frozen=True)
class RelColumn:
    """Output column: name, the table alias it came from, and its type if known."""

    name: str
    qualifier: Optional[str] = None
    sql_type: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.qualifier}.{self.name}" if self.qualifier else self.name


class Relation:
    """
    Ordered columns plus a sequence of fixed-arity rows.

    Columns are resolved by bare name ("Name") or qualified name
    ("c.Name"). A bare name matching more than one column is ambiguous.
    """

    def __init__(self, columns: Sequence[RelColumn], rows: Iterable[Sequence[Any]] = ()):
        self.columns: Tuple[RelColumn, ...] = tuple(columns)
        self.rows: List[Row] = [tuple(r) for r in rows]
        width = len(self.columns)
        for row in self.rows:
            if len(row) != width:
                raise SchemaMismatch(
                    f"Row arity {len(row)} does not match {width} columns: {row!r}"
                )

    @classmethod
    def from_table(cls, schema: TableSchema, rows: Iterable[Row], alias: Optional[str] = None) -> "Relation":
        qualifier = alias or schema.name
        columns = [RelColumn(c.name, qualifier, c.sql_type) for c in schema.columns]
        return cls(columns, rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __repr__(self) -> str:
        return f"Relation(columns={self.column_names}, rows={len(self.rows)})"

    @property
    def width(self) -> int:
        return len(self.columns)

    @property
    def column_names(self) -> List[str]:
        """Output labels; a bare name shared by several columns is qualified."""
        counts = Counter(c.name for c in self.columns)
        return [c.qualified_name if counts[c.name] > 1 else c.name for c in self.columns]

    def find(self, ref: str) -> Optional[int]:
        """Index of a column reference, or None when it is not present."""
        if ref in ("", "*"):
            return None
        matches: List[int] = []
        if "." in ref:
            qualifier, name = ref.split(".", 1)
            matches = [
                i for i, c in enumerate(self.columns)
                if c.qualifier == qualifier and c.name == name
            ]
        if not matches:
            matches = [i for i, c in enumerate(self.columns) if c.name == ref]
        if len(matches) > 1:
            candidates = [self.columns[i].qualified_name for i in matches]
            raise InvalidQuery(f"Column reference '{ref}' is ambiguous: {candidates}")
        return matches[0] if matches else None

    def index_of(self, ref: str) -> int:
        """Index of a column reference; raises InvalidQuery if it is undefined."""
        idx = self.find(ref)
        if idx is None:
            raise InvalidQuery(
                f"Unknown column '{ref}'. Available columns: "
                f"{[c.qualified_name for c in self.columns]}"
            )
        return idx

    def has_qualifier(self, qualifier: str) -> bool:
        return any(c.qualifier == qualifier for c in self.columns)

    def requalify(self, qualifier: str) -> "Relation":
        """Same rows, every column re-labelled under one alias."""
        return Relation([replace(c, qualifier=qualifier) for c in self.columns], self.rows)

    def with_rows(self, rows: Iterable[Sequence[Any]]) -> "Relation":
        return Relation(self.columns, rows)

    def to_records(self) -> List[Dict[str, Any]]:
        names = self.column_names
        return [dict(zip(names, row)) for row in self.rows]

    def to_frame(self) -> pd.DataFrame:
        """DataFrame of object dtype so nulls stay None instead of NaN."""
        return pd.DataFrame(self.rows, columns=self.column_names, dtype=object)

    def to_set(self) -> set:
        """Rows as a set, convenient for order-insensitive comparisons."""
        return set(self.rows)
