"""Relational engine: store, constraints and query evaluation."""

from minirel.errors import (
    MinirelError,
    SchemaError,
    CascadeCycleError,
    SchemaMismatch,
    InvalidQuery,
    ConstraintViolation,
    ReferentialBlock,
    ColumnTypeError,
    CascadeDepthError,
)
from .relation import Relation, RelColumn
from .join import join
from .setops import set_operation, distinct
from .window import apply_window, dedup_keep_first, sort_relation
from .aggregate import group_by
from .pivot import pivot, unpivot, discover_spread_values
from .executor import QueryExecutor
from .store import Database

__all__ = [
    "MinirelError",
    "SchemaError",
    "CascadeCycleError",
    "SchemaMismatch",
    "InvalidQuery",
    "ConstraintViolation",
    "ReferentialBlock",
    "ColumnTypeError",
    "CascadeDepthError",
    "Relation",
    "RelColumn",
    "join",
    "set_operation",
    "distinct",
    "apply_window",
    "dedup_keep_first",
    "sort_relation",
    "group_by",
    "pivot",
    "unpivot",
    "discover_spread_values",
    "QueryExecutor",
    "Database",
]
