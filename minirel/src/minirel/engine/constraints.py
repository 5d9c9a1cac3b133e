"""Constraint checking and cascade planning for mutations.

A mutation runs against a MutationPlan: a working copy of every table it
touches. Referential actions are applied to the copy transitively, every
touched row is validated against the post-mutation state, and only then
does the store publish the copy.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Dict, List, Literal, Mapping, Optional, Sequence, Set, Tuple

from minirel.config.logging import get_logger
from minirel.errors import (
    CascadeDepthError,
    ConstraintViolation,
    MinirelError,
    ReferentialBlock,
)
from minirel.engine.expressions import Predicate, compile_condition
from minirel.engine.relation import Relation, Row
from minirel.ir.schema import ForeignKeySpec, TableSchema

logger = get_logger(__name__)

OperationKind = Literal["insert", "update", "delete"]
ViolationKind = Literal["not_null", "check", "primary_key", "unique", "foreign_key", "restrict"]


@dataclass
class Violation:
    """A constraint a row would break."""

    kind: ViolationKind
    table: str
    constraint: str
    message: str
    row: Optional[Row] = None

    def to_error(self) -> MinirelError:
        if self.kind == "restrict":
            return ReferentialBlock(self.message, violation=self)
        return ConstraintViolation(self.message, violation=self)


def project(row: Row, indices: Sequence[int]) -> Row:
    return tuple(row[i] for i in indices)


def referencing(catalog: Mapping[str, TableSchema], table: str) -> List[Tuple[TableSchema, ForeignKeySpec]]:
    """Foreign keys (with their owning tables) that point at a table."""
    out = []
    for child in catalog.values():
        for fk in child.foreign_keys:
            if fk.ref_table == table:
                out.append((child, fk))
    return out


class ConstraintValidator:
    """
    Validates rows against the post-mutation state of the whole database.

    Key projections are indexed lazily, once per (table, columns) pair, so
    validating a batch costs one pass per index plus one lookup per row.
    """

    def __init__(self, catalog: Mapping[str, TableSchema], state: Mapping[str, Sequence[Row]]):
        self.catalog = catalog
        self.state = state
        self._indexes: Dict[Tuple[str, Tuple[str, ...]], Counter] = {}
        self._null_keys: Dict[Tuple[str, Tuple[str, ...]], int] = {}
        self._checks: Dict[str, List[Tuple[str, Predicate]]] = {}

    def key_index(self, table: str, columns: Sequence[str]) -> Counter:
        """Multiplicity of each key projection in a table."""
        cache_key = (table, tuple(columns))
        if cache_key not in self._indexes:
            schema = self.catalog[table]
            idx = [schema.column_index(c) for c in columns]
            self._indexes[cache_key] = Counter(project(r, idx) for r in self.state[table])
        return self._indexes[cache_key]

    def null_key_count(self, table: str, columns: Sequence[str]) -> int:
        """Number of rows whose key projection contains a null."""
        cache_key = (table, tuple(columns))
        if cache_key not in self._null_keys:
            self._null_keys[cache_key] = sum(
                n for key, n in self.key_index(table, columns).items() if any(v is None for v in key)
            )
        return self._null_keys[cache_key]

    def _check_predicates(self, schema: TableSchema) -> List[Tuple[str, Predicate]]:
        if schema.name not in self._checks:
            empty = Relation.from_table(schema, [])
            self._checks[schema.name] = [
                (check.name, compile_condition(check.condition, empty)) for check in schema.checks
            ]
        return self._checks[schema.name]

    def validate(self, table: str, row: Row, operation: OperationKind) -> Optional[Violation]:
        """
        Check one row against every active constraint.

        Args:
            table: Table the row belongs (or belonged) to
            row: The row as inserted, updated, or deleted
            operation: "insert", "update" or "delete"

        Returns:
            The first Violation found, or None
        """
        schema = self.catalog[table]
        if operation == "delete":
            return self._validate_delete(schema, row)

        pk = set(schema.primary_key)
        for col, value in zip(schema.columns, row):
            if value is not None:
                continue
            if col.name in pk:
                return Violation(
                    "primary_key", table, f"pk_{table}",
                    f"{table}: primary key column '{col.name}' cannot be null", row,
                )
            if not col.nullable:
                return Violation(
                    "not_null", table, f"nn_{table}_{col.name}",
                    f"{table}: column '{col.name}' cannot be null", row,
                )

        for name, predicate in self._check_predicates(schema):
            if predicate(row) is False:
                return Violation(
                    "check", table, name,
                    f"{table}: row {row!r} violates check constraint '{name}'", row,
                )

        if schema.primary_key:
            key = project(row, [schema.column_index(c) for c in schema.primary_key])
            if self.key_index(table, schema.primary_key)[key] > 1:
                return Violation(
                    "primary_key", table, f"pk_{table}",
                    f"{table}: duplicate primary key {key!r}", row,
                )

        for unique in schema.unique_keys:
            key = project(row, [schema.column_index(c) for c in unique])
            if any(v is None for v in key):
                if self.null_key_count(table, unique) > 1:
                    return Violation(
                        "unique", table, f"uq_{table}_{'_'.join(unique)}",
                        f"{table}: only one row may have a null in unique key {unique}", row,
                    )
            elif self.key_index(table, unique)[key] > 1:
                return Violation(
                    "unique", table, f"uq_{table}_{'_'.join(unique)}",
                    f"{table}: duplicate value {key!r} for unique key {unique}", row,
                )

        for fk in schema.foreign_keys:
            key = project(row, [schema.column_index(c) for c in fk.columns])
            if any(v is None for v in key):
                continue
            if self.key_index(fk.ref_table, fk.ref_columns)[key] == 0:
                return Violation(
                    "foreign_key", table, fk.label(table),
                    f"{table}: {dict(zip(fk.columns, key))} has no matching row in "
                    f"'{fk.ref_table}' {fk.ref_columns}", row,
                )

        return None

    def _validate_delete(self, schema: TableSchema, row: Row) -> Optional[Violation]:
        """A deleted row's keys must no longer be referenced, unless another row still provides them."""
        for child, fk in referencing(self.catalog, schema.name):
            key = project(row, [schema.column_index(c) for c in fk.ref_columns])
            if any(v is None for v in key):
                continue
            if self.key_index(schema.name, fk.ref_columns)[key] > 0:
                continue
            if self.key_index(child.name, fk.columns)[key] > 0:
                return Violation(
                    "restrict", schema.name, fk.label(child.name),
                    f"{schema.name}: key {key!r} is still referenced by '{child.name}'", row,
                )
        return None


class MutationPlan:
    """
    Working copy of the database state for one mutation and its cascades.

    Args:
        catalog: Table definitions keyed by name
        base: Committed rows keyed by table name
        max_depth: Maximum nesting of cascading actions
    """

    def __init__(self, catalog: Mapping[str, TableSchema], base: Mapping[str, Sequence[Row]], max_depth: int):
        self.catalog = catalog
        self.max_depth = max_depth
        self._base = base
        self._state: Dict[str, List[Row]] = {}
        self.dirty: Set[str] = set()
        self.touched: Dict[str, List[Tuple[Row, OperationKind]]] = defaultdict(list)
        self.removed: Dict[str, List[Row]] = defaultdict(list)
        self.effects: Counter = Counter()  # (table, action) -> rows affected

    def rows(self, table: str) -> List[Row]:
        if table not in self._state:
            self._state[table] = list(self._base[table])
        return self._state[table]

    def state(self) -> Dict[str, Sequence[Row]]:
        """Post-mutation rows for every table."""
        merged: Dict[str, Sequence[Row]] = dict(self._base)
        merged.update(self._state)
        return merged

    def changed(self) -> Dict[str, Tuple[Row, ...]]:
        return {t: tuple(self._state[t]) for t in self.dirty}

    def insert(self, table: str, rows: Sequence[Row]) -> None:
        self.rows(table).extend(rows)
        self.dirty.add(table)
        self.touched[table].extend((r, "insert") for r in rows)

    def delete(self, table: str, positions: Sequence[int], depth: int = 0) -> None:
        if not positions:
            return
        current = self.rows(table)
        doomed = set(positions)
        removed = [current[i] for i in sorted(doomed)]
        self._state[table] = [r for i, r in enumerate(current) if i not in doomed]
        self.dirty.add(table)
        self.removed[table].extend(removed)
        logger.debug(f"Plan: delete {len(removed)} row(s) from '{table}' at depth {depth}")
        self._propagate(table, [(r, None) for r in removed], "delete", depth)

    def update(self, table: str, changes: Mapping[int, Row], depth: int = 0) -> None:
        if not changes:
            return
        current = self.rows(table)
        pairs: List[Tuple[Row, Optional[Row]]] = []
        for i, new in changes.items():
            pairs.append((current[i], new))
            current[i] = new
            self.touched[table].append((new, "update"))
        self.dirty.add(table)
        logger.debug(f"Plan: update {len(pairs)} row(s) in '{table}' at depth {depth}")
        self._propagate(table, pairs, "update", depth)

    def _propagate(
        self,
        table: str,
        pairs: List[Tuple[Row, Optional[Row]]],
        operation: OperationKind,
        depth: int,
    ) -> None:
        """Apply referential actions for keys that disappeared from a table."""
        schema = self.catalog[table]
        for child, fk in referencing(self.catalog, table):
            ref_idx = [schema.column_index(c) for c in fk.ref_columns]
            remaining = {project(r, ref_idx) for r in self.rows(table)}

            # old key -> new key (None when the row was deleted)
            lost: Dict[Row, Optional[Row]] = {}
            for old, new in pairs:
                key = project(old, ref_idx)
                if any(v is None for v in key) or key in remaining:
                    continue
                lost[key] = project(new, ref_idx) if new is not None else None
            if not lost:
                continue

            child_rows = self.rows(child.name)
            fk_idx = [child.column_index(c) for c in fk.columns]
            hits = [i for i, r in enumerate(child_rows) if project(r, fk_idx) in lost]
            if not hits:
                continue

            action = fk.on_delete if operation == "delete" else fk.on_update
            label = fk.label(child.name)
            if action == "RESTRICT":
                raise Violation(
                    "restrict", table, label,
                    f"Cannot {operation} '{table}': {len(hits)} row(s) in '{child.name}' "
                    f"reference it through '{label}' (RESTRICT)",
                    child_rows[hits[0]],
                ).to_error()

            if depth + 1 > self.max_depth:
                raise CascadeDepthError(
                    f"Cascading actions from '{table}' to '{child.name}' exceed "
                    f"max_cascade_depth={self.max_depth}"
                )

            self.effects[(child.name, action)] += len(hits)
            if action == "CASCADE" and operation == "delete":
                self.delete(child.name, hits, depth + 1)
                continue

            rewritten: Dict[int, Row] = {}
            for i in hits:
                values = list(child_rows[i])
                new_key = lost[project(child_rows[i], fk_idx)] if action == "CASCADE" else None
                for pos, j in enumerate(fk_idx):
                    values[j] = None if new_key is None else new_key[pos]
                rewritten[i] = tuple(values)
            self.update(child.name, rewritten, depth + 1)

    def validate(self) -> None:
        """
        Validate every touched and removed row against the final state.

        Raises:
            ConstraintViolation: On a domain, entity, unique, check or missing-parent failure
            ReferentialBlock: If a removed key is still referenced
        """
        validator = ConstraintValidator(self.catalog, self.state())
        for table, entries in self.touched.items():
            present = Counter(self._state[table])
            for row, operation in entries:
                # rows rewritten or removed later in the cascade are checked in their final form
                if present[row] == 0:
                    continue
                violation = validator.validate(table, row, operation)
                if violation is not None:
                    raise violation.to_error()
        for table, rows in self.removed.items():
            for row in rows:
                violation = validator.validate(table, row, "delete")
                if violation is not None:
                    raise violation.to_error()
