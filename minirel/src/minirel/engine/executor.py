"""Query executor: evaluates a QuerySpec stage by stage."""

import time
from operator import itemgetter
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from minirel.config.logging import get_logger
from minirel.config.settings import Settings, get_settings
from minirel.engine.aggregate import group_by
from minirel.engine.error_logging import log_error
from minirel.errors import InvalidQuery, MinirelError
from minirel.engine.expressions import compile_value, filter_relation, value_label, value_type
from minirel.engine.join import join
from minirel.engine.pivot import discover_spread_values, pivot, unpivot
from minirel.engine.relation import RelColumn, Relation
from minirel.engine.setops import distinct, set_operation
from minirel.engine.table import Snapshot
from minirel.engine.window import apply_window, sort_relation
from minirel.ir.query import JoinSpec, ProjectionItem, QuerySpec, SourceRef

if TYPE_CHECKING:
    from minirel.engine.store import Database

logger = get_logger(__name__)


class QueryExecutor:
    """
    Evaluates query descriptions against one snapshot of a database.

    Stages run in a fixed order: sources, joins, filter, group/having,
    window/qualify, pivot/unpivot, projection, distinct, set operation,
    ordering, offset/limit. Each stage resolves its column references before
    it touches any row.

    Args:
        database: Store to read from
        settings: Engine settings; defaults to the database's
    """

    def __init__(self, database: "Database", settings: Optional[Settings] = None):
        self.database = database
        self.settings = settings or getattr(database, "settings", None) or get_settings()

    def execute(self, query: QuerySpec) -> Relation:
        """Evaluate a query against the database's current snapshot."""
        return self.execute_on(self.database.snapshot(), query)

    def execute_on(self, snapshot: Snapshot, query: QuerySpec) -> Relation:
        """
        Evaluate a query against a given snapshot.

        Raises:
            InvalidQuery: On undefined or ambiguous references, recursive views,
                or unknown functions
            SchemaMismatch: If set-operation operands are incompatible
        """
        start = time.perf_counter()
        try:
            result = self._evaluate(snapshot, query, ())
        except MinirelError as e:
            log_error(e, operation="query", context={"sources": [s.label for s in query.sources]}, log_level="warning")
            raise
        logger.debug(
            f"Query returned {len(result)} row(s) x {result.width} column(s) "
            f"in {time.perf_counter() - start:.4f}s"
        )
        return result

    def _evaluate(self, snapshot: Snapshot, query: QuerySpec, views: Tuple[str, ...]) -> Relation:
        stage_start = time.perf_counter()

        def done(stage: str, rel: Relation) -> Relation:
            nonlocal stage_start
            now = time.perf_counter()
            logger.debug(f"Stage {stage}: {len(rel)} row(s) in {now - stage_start:.4f}s")
            stage_start = now
            return rel

        rel = done("sources", self._sources(snapshot, query.sources, views))

        for spec in query.joins:
            rel = done(f"join {spec.kind}", self._join(snapshot, rel, spec, views))

        if query.filter is not None:
            rel = done("filter", filter_relation(rel, query.filter))

        if query.group_by or query.aggregates:
            rel = group_by(rel, query.group_by, query.aggregates)
            if query.having is not None:
                rel = filter_relation(rel, query.having)
            rel = done("group", rel)

        if query.window is not None:
            w = query.window
            rel = apply_window(rel, w.partition_by, w.order_by, w.function, w.name)
            if query.qualify is not None:
                rel = filter_relation(rel, query.qualify)
            rel = done("window", rel)

        if query.pivot is not None:
            p = query.pivot
            values = p.values if p.values is not None else discover_spread_values(rel, p.spread)
            rel = done("pivot", pivot(rel, p.group_by, p.spread, p.value, p.aggregate, values))
        elif query.unpivot is not None:
            u = query.unpivot
            rel = done(
                "unpivot",
                unpivot(rel, u.keys, u.columns, u.name_column, u.value_column, u.include_nulls),
            )

        if query.project:
            rel = done("project", self._project(rel, query.project))

        if query.distinct:
            rel = done("distinct", distinct(rel))

        if query.set_op is not None:
            right = self._evaluate(snapshot, query.set_op.right, views)
            rel = done(f"set_op {query.set_op.kind}", set_operation(rel, right, query.set_op.kind))

        if query.order_by:
            rel = done("order", sort_relation(rel, query.order_by))

        if query.offset or query.limit is not None:
            rows = rel.rows[query.offset:]
            if query.limit is not None:
                rows = rows[:query.limit]
            rel = rel.with_rows(rows)

        return rel

    def _sources(self, snapshot: Snapshot, sources: List[SourceRef], views: Tuple[str, ...]) -> Relation:
        rel = self._source(snapshot, sources[0], views)
        for src in sources[1:]:
            if rel.has_qualifier(src.label):
                raise InvalidQuery(f"Source alias '{src.label}' is used more than once")
            rel = join(rel, self._source(snapshot, src, views), None, "CROSS")
        return rel

    def _source(self, snapshot: Snapshot, src: SourceRef, views: Tuple[str, ...]) -> Relation:
        """Resolve a table, view or derived table to a relation qualified by its label."""
        if src.query is not None:
            return self._evaluate(snapshot, src.query, views).requalify(src.alias)

        name = src.table
        if snapshot.has_table(name):
            return snapshot.relation(name, src.alias)

        if name in snapshot.views:
            if name in views:
                chain = " -> ".join(views + (name,))
                raise InvalidQuery(f"View '{name}' refers to itself: {chain}")
            if len(views) >= self.settings.max_view_depth:
                raise InvalidQuery(
                    f"Views nested deeper than max_view_depth={self.settings.max_view_depth}"
                )
            return self._evaluate(snapshot, snapshot.views[name], views + (name,)).requalify(src.label)

        raise InvalidQuery(
            f"Unknown table or view '{name}'. Available: "
            f"{sorted(list(snapshot.schemas) + list(snapshot.views))}"
        )

    def _join(self, snapshot: Snapshot, rel: Relation, spec: JoinSpec, views: Tuple[str, ...]) -> Relation:
        if spec.left is not None and not rel.has_qualifier(spec.left):
            raise InvalidQuery(f"Join refers to '{spec.left}', which is not an earlier source")
        if rel.has_qualifier(spec.right.label):
            raise InvalidQuery(f"Source alias '{spec.right.label}' is used more than once")
        right = self._source(snapshot, spec.right, views)
        return join(rel, right, spec.on, spec.kind)

    def _project(self, rel: Relation, items: List[Union[str, ProjectionItem]]) -> Relation:
        """Select columns ("*", "alias.*", references) and computed expressions."""
        columns: List[RelColumn] = []
        getters: List[Callable] = []
        for item in items:
            if isinstance(item, str):
                if item == "*":
                    positions = list(range(rel.width))
                elif item.endswith(".*"):
                    qualifier = item[:-2]
                    positions = [i for i, c in enumerate(rel.columns) if c.qualifier == qualifier]
                    if not positions:
                        raise InvalidQuery(f"Unknown source '{qualifier}' in '{item}'")
                else:
                    positions = [rel.index_of(item)]
                for i in positions:
                    columns.append(rel.columns[i])
                    getters.append(itemgetter(i))
                continue

            getters.append(compile_value(item.expr, rel))
            if item.expr.kind == "col" and item.name is None:
                columns.append(rel.columns[rel.index_of(item.expr.col)])
            else:
                columns.append(
                    RelColumn(item.name or value_label(item.expr), None, value_type(item.expr, rel))
                )

        return Relation(columns, [tuple(g(row) for g in getters) for row in rel.rows])
