"""In-memory tuple store with copy-on-write snapshots."""

import threading
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from minirel.config.logging import get_logger
from minirel.config.settings import Settings, get_settings
from minirel.engine.constraints import MutationPlan, referencing
from minirel.engine.error_logging import log_error
from minirel.errors import (
    CascadeCycleError,
    InvalidQuery,
    MinirelError,
    ReferentialBlock,
    SchemaError,
    SchemaMismatch,
)
from minirel.engine.executor import QueryExecutor
from minirel.engine.expressions import compile_condition
from minirel.engine.relation import Relation, Row
from minirel.engine.table import Snapshot, TableData, initial_identity
from minirel.ir.types import coerce_value
from minirel.engine.window import row_numbers
from minirel.ir.predicate import ConditionExpr
from minirel.ir.query import OrderKey, QuerySpec
from minirel.ir.schema import ColumnSpec, DatabaseSchema, TableSchema
from minirel.ir.validators import SchemaIssue, validate_tables

logger = get_logger(__name__)

_MISSING = object()

# (plan, schema, committed data) -> (rows affected, new identity counters or None)
MutationBuilder = Callable[[MutationPlan, TableSchema, TableData], Tuple[int, Optional[Dict[str, int]]]]


def _advance_identity(identity: Dict[str, int], col: ColumnSpec, value: Any) -> None:
    """Move an identity counter past an explicitly supplied value."""
    if value is None:
        return
    step = col.identity.step
    current = identity[col.name]
    if (step > 0 and value >= current) or (step < 0 and value <= current):
        identity[col.name] = value + step


class Database:
    """
    In-memory relational store.

    All state lives in one immutable Snapshot. Readers take the current
    snapshot without locking. Writers serialize on a re-entrant lock, build
    the next snapshot (including every cascaded change), validate it, and
    publish it with a single reference assignment.

    Args:
        settings: Engine settings; defaults to the process-wide instance
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._lock = threading.RLock()
        self._state = Snapshot()

    def snapshot(self) -> Snapshot:
        return self._state

    # Catalog ---------------------------------------------------------------

    def create_table(self, schema: TableSchema) -> None:
        self.create_schema([schema])

    def create_schema(self, tables: Union[DatabaseSchema, Sequence[TableSchema]]) -> None:
        """
        Validate and register table definitions as one unit.

        Raises:
            SchemaError: If any definition is invalid
            CascadeCycleError: If CASCADE actions would form a cycle
        """
        if isinstance(tables, DatabaseSchema):
            tables = tables.tables
        tables = list(tables)
        names = [t.name for t in tables]

        with self._lock:
            state = self._state
            issues = validate_tables(tables, state.schemas)
            for name in names:
                if name in state.views:
                    issues.append(SchemaIssue("VIEW_NAME_CLASH", name, f"'{name}' is already a view"))
            if issues:
                error_cls = CascadeCycleError if any(i.code == "CASCADE_CYCLE" for i in issues) else SchemaError
                summary = "; ".join(i.message for i in issues[:5])
                error = error_cls(f"Invalid table definitions ({len(issues)} issues): {summary}", issues)
                log_error(error, operation="create_schema", context={"tables": names}, log_level="warning")
                raise error

            schemas = dict(state.schemas)
            data = dict(state.data)
            for table in tables:
                schemas[table.name] = table
                data[table.name] = TableData((), MappingProxyType(initial_identity(table)))
            self._state = state.replace(schemas=schemas, data=data)

        logger.info(f"Created {len(tables)} table(s): {names}")

    def drop_table(self, name: str) -> None:
        """
        Remove a table and its rows.

        Raises:
            ReferentialBlock: While another table's foreign key references it
        """
        with self._lock:
            state = self._state
            try:
                state.schema(name)
                dependents = sorted({child.name for child, _ in referencing(state.schemas, name)} - {name})
                if dependents:
                    raise ReferentialBlock(f"Cannot drop '{name}': referenced by {dependents}")
            except MinirelError as e:
                log_error(e, operation="drop_table", table_name=name, log_level="warning")
                raise

            schemas = {k: v for k, v in state.schemas.items() if k != name}
            data = {k: v for k, v in state.data.items() if k != name}
            self._state = state.replace(schemas=schemas, data=data)

        logger.info(f"Dropped table '{name}'")

    def create_view(self, name: str, query: QuerySpec, replace: bool = False) -> None:
        """
        Register a named query usable as a source.

        The view is evaluated once against the current data so that unknown
        references and recursion fail here rather than at first use.
        """
        with self._lock:
            state = self._state
            try:
                if name in state.schemas:
                    raise InvalidQuery(f"'{name}' is already a table")
                if name in state.views and not replace:
                    raise InvalidQuery(f"View '{name}' already exists")
                views = dict(state.views)
                views[name] = query
                candidate = state.replace(views=views)
                QueryExecutor(self, self.settings).execute_on(candidate, query)
            except MinirelError as e:
                log_error(e, operation="create_view", table_name=name, log_level="warning")
                raise
            self._state = candidate

        logger.info(f"Created view '{name}'")

    def drop_view(self, name: str) -> None:
        with self._lock:
            state = self._state
            if name not in state.views:
                raise InvalidQuery(f"Unknown view '{name}'")
            self._state = state.replace(views={k: v for k, v in state.views.items() if k != name})
        logger.info(f"Dropped view '{name}'")

    # Reads -------------------------------------------------------------------

    def table_names(self) -> List[str]:
        return list(self._state.schemas)

    def view_names(self) -> List[str]:
        return list(self._state.views)

    def schema(self, table: str) -> TableSchema:
        return self._state.schema(table)

    def row_count(self, table: str) -> int:
        return len(self._state.rows(table))

    def scan(self, table: str) -> Iterator[Row]:
        """Iterate the rows of a table as of this call."""
        return iter(self._state.rows(table))

    def relation(self, table: str, alias: Optional[str] = None) -> Relation:
        return self._state.relation(table, alias)

    def execute(self, query: QuerySpec) -> Relation:
        return QueryExecutor(self, self.settings).execute(query)

    # Mutations ---------------------------------------------------------------

    def insert_rows(self, table: str, rows: Iterable[Union[Sequence[Any], Mapping[str, Any]]]) -> int:
        """
        Insert rows given as full-arity sequences or column mappings.

        Mapping rows may omit columns: identity columns take the next counter
        value and other columns take their default.

        Returns:
            Number of rows inserted

        Raises:
            ConstraintViolation: If a row breaks a key, referential or check constraint
            ColumnTypeError: If a value does not conform to its column type
            SchemaMismatch: If a sequence row has the wrong arity
        """
        rows = list(rows)

        def build(plan: MutationPlan, schema: TableSchema, data: TableData):
            identity = dict(data.identity)
            prepared = [self._prepare_row(schema, raw, identity) for raw in rows]
            plan.insert(table, prepared)
            return len(prepared), identity

        return self._mutate("insert", table, build, {"rows": len(rows)})

    def insert_tables(self, rows_by_table: Mapping[str, Iterable[Union[Sequence[Any], Mapping[str, Any]]]]) -> Dict[str, int]:
        """
        Insert into several tables as one atomic mutation.

        Constraints are checked once against the combined result, so tables
        that reference each other can be loaded in any order.

        Returns:
            Rows inserted per table
        """
        batches = {table: list(rows) for table, rows in rows_by_table.items()}
        with self._lock:
            state = self._state
            try:
                plan = self._plan(state)
                identities: Dict[str, Dict[str, int]] = {}
                for table, rows in batches.items():
                    schema = state.schema(table)
                    identity = dict(state.data[table].identity)
                    plan.insert(table, [self._prepare_row(schema, raw, identity) for raw in rows])
                    identities[table] = identity
                plan.validate()
            except MinirelError as e:
                log_error(e, operation="insert_tables", context={"tables": list(batches)}, log_level="warning")
                raise
            self._state = self._next_state(state, plan, identities)

        counts = {table: len(rows) for table, rows in batches.items()}
        logger.info(f"insert into {len(counts)} table(s): {counts}")
        return counts

    def update_rows(self, table: str, where: Optional[ConditionExpr], changes: Mapping[str, Any]) -> int:
        """
        Set columns on every row matching a condition (all rows when None).

        Changes to referenced key columns fire the on_update actions of
        referencing foreign keys.
        """

        def build(plan: MutationPlan, schema: TableSchema, data: TableData):
            unknown = [c for c in changes if not schema.has_column(c)]
            if unknown:
                raise InvalidQuery(f"{table}: unknown columns {unknown}")
            assignments = {
                schema.column_index(c): coerce_value(v, schema.get_column(c).sql_type, table, c)
                for c, v in changes.items()
            }
            positions = self._matching(schema, data.rows, where)
            rewritten: Dict[int, Row] = {}
            for i in positions:
                values = list(data.rows[i])
                for j, v in assignments.items():
                    values[j] = v
                rewritten[i] = tuple(values)
            plan.update(table, rewritten)
            return len(positions), None

        return self._mutate("update", table, build, {"changes": sorted(changes)})

    def delete_rows(self, table: str, where: Optional[ConditionExpr] = None) -> int:
        """Delete rows matching a condition (all rows when None), firing on_delete actions."""

        def build(plan: MutationPlan, schema: TableSchema, data: TableData):
            positions = self._matching(schema, data.rows, where)
            plan.delete(table, positions)
            return len(positions), None

        return self._mutate("delete", table, build)

    def truncate(self, table: str) -> int:
        """Remove all rows and reset identity counters to their seeds."""

        def build(plan: MutationPlan, schema: TableSchema, data: TableData):
            plan.delete(table, range(len(data.rows)))
            return len(data.rows), initial_identity(schema)

        return self._mutate("truncate", table, build)

    def deduplicate(
        self,
        table: str,
        partition_by: Sequence[str],
        order_by: Sequence[Union[OrderKey, str]] = (),
    ) -> int:
        """
        Keep the first row of each partition and delete the rest.

        Rows are ranked with row_number over (partition_by, order_by); ties
        keep the earlier row.

        Returns:
            Number of rows removed
        """

        def build(plan: MutationPlan, schema: TableSchema, data: TableData):
            numbers = row_numbers(Relation.from_table(schema, data.rows), partition_by, order_by)
            doomed = [i for i, n in enumerate(numbers) if n > 1]
            plan.delete(table, doomed)
            return len(doomed), None

        return self._mutate("deduplicate", table, build, {"partition_by": list(partition_by)})

    # Internals ---------------------------------------------------------------

    def _mutate(
        self,
        operation: str,
        table: str,
        build: MutationBuilder,
        context: Optional[Dict[str, Any]] = None,
    ) -> int:
        with self._lock:
            state = self._state
            try:
                schema = state.schema(table)
                plan = self._plan(state)
                count, identity = build(plan, schema, state.data[table])
                plan.validate()
            except MinirelError as e:
                log_error(e, context=context, operation=operation, table_name=table, log_level="warning")
                raise
            self._state = self._next_state(state, plan, {table: identity} if identity is not None else {})

        message = f"{operation} on '{table}': {count} row(s)"
        if plan.effects:
            effects = ", ".join(f"{action} {n} row(s) in '{t}'" for (t, action), n in plan.effects.items())
            message += f"; cascades: {effects}"
        logger.info(message)
        return count

    def _plan(self, state: Snapshot) -> MutationPlan:
        return MutationPlan(
            state.schemas,
            {name: d.rows for name, d in state.data.items()},
            self.settings.max_cascade_depth,
        )

    @staticmethod
    def _next_state(state: Snapshot, plan: MutationPlan, identities: Mapping[str, Dict[str, int]]) -> Snapshot:
        data = dict(state.data)
        for name, rows in plan.changed().items():
            data[name] = TableData(rows, data[name].identity)
        for name, identity in identities.items():
            data[name] = TableData(data[name].rows, MappingProxyType(identity))
        return state.replace(data=data)

    @staticmethod
    def _matching(schema: TableSchema, rows: Sequence[Row], where: Optional[ConditionExpr]) -> List[int]:
        if where is None:
            return list(range(len(rows)))
        predicate = compile_condition(where, Relation.from_table(schema, ()))
        return [i for i, row in enumerate(rows) if predicate(row) is True]

    @staticmethod
    def _prepare_row(
        schema: TableSchema,
        raw: Union[Sequence[Any], Mapping[str, Any]],
        identity: Dict[str, int],
    ) -> Row:
        if isinstance(raw, Mapping):
            unknown = [k for k in raw if not schema.has_column(k)]
            if unknown:
                raise InvalidQuery(f"{schema.name}: unknown columns {unknown}")
            values = [raw.get(c.name, _MISSING) for c in schema.columns]
        else:
            values = list(raw)
            if len(values) != len(schema.columns):
                raise SchemaMismatch(
                    f"{schema.name}: expected {len(schema.columns)} values, got {len(values)}: {raw!r}"
                )

        out = []
        for col, value in zip(schema.columns, values):
            if col.identity is not None and (value is _MISSING or value is None):
                value = identity[col.name]
                identity[col.name] = value + col.identity.step
            elif value is _MISSING:
                value = col.default
            value = coerce_value(value, col.sql_type, schema.name, col.name)
            if col.identity is not None:
                _advance_identity(identity, col, value)
            out.append(value)
        return tuple(out)
