"""Immutable table state published by the store."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from minirel.errors import InvalidQuery
from minirel.engine.relation import Relation, Row
from minirel.ir.query import QuerySpec
from minirel.ir.schema import TableSchema


@dataclass(frozen=True)
class TableData:
    """Rows of one table plus the next value of each identity counter."""

    rows: Tuple[Row, ...] = ()
    identity: Mapping[str, int] = field(default_factory=dict)


def initial_identity(schema: TableSchema) -> Dict[str, int]:
    return {c.name: c.identity.seed for c in schema.columns if c.identity is not None}


@dataclass(frozen=True)
class Snapshot:
    """
    One consistent view of every table, view and identity counter.

    The store never mutates a published Snapshot; each commit builds a new
    one and swaps the reference.
    """

    schemas: Mapping[str, TableSchema] = field(default_factory=lambda: MappingProxyType({}))
    data: Mapping[str, TableData] = field(default_factory=lambda: MappingProxyType({}))
    views: Mapping[str, QuerySpec] = field(default_factory=lambda: MappingProxyType({}))

    def has_table(self, name: str) -> bool:
        return name in self.schemas

    def schema(self, name: str) -> TableSchema:
        if name not in self.schemas:
            raise InvalidQuery(f"Unknown table '{name}'. Available tables: {sorted(self.schemas)}")
        return self.schemas[name]

    def rows(self, name: str) -> Tuple[Row, ...]:
        self.schema(name)
        return self.data[name].rows

    def relation(self, name: str, alias: Optional[str] = None) -> Relation:
        return Relation.from_table(self.schema(name), self.rows(name), alias)

    def replace(
        self,
        schemas: Optional[Mapping[str, TableSchema]] = None,
        data: Optional[Mapping[str, TableData]] = None,
        views: Optional[Mapping[str, QuerySpec]] = None,
    ) -> "Snapshot":
        """New snapshot with some mappings swapped out."""
        return Snapshot(
            schemas=MappingProxyType(dict(schemas)) if schemas is not None else self.schemas,
            data=MappingProxyType(dict(data)) if data is not None else self.data,
            views=MappingProxyType(dict(views)) if views is not None else self.views,
        )
