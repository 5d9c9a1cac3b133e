"""minirel: a small in-memory relational query evaluator."""

from minirel.engine import Database, QueryExecutor, Relation

__all__ = ["Database", "QueryExecutor", "Relation"]
