"""Error taxonomy for the engine.

Every error here is recoverable: the failed call leaves the database as it
was, and the caller decides what to do based on the class.
"""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from minirel.engine.constraints import Violation
    from minirel.ir.validators import SchemaIssue


class MinirelError(Exception):
    """Base class for engine errors."""


class SchemaError(MinirelError):
    """Table definitions are invalid."""

    def __init__(self, message: str, issues: Optional[List["SchemaIssue"]] = None):
        super().__init__(message)
        self.issues = issues or []


class CascadeCycleError(SchemaError):
    """CASCADE actions form a cycle through two or more tables."""


class SchemaMismatch(MinirelError):
    """Operands disagree on arity or column types."""


class InvalidQuery(MinirelError):
    """A query or store call names an undefined table, view, column or function."""


class ConstraintViolation(MinirelError):
    """A mutation would break a domain, entity, unique or check constraint."""

    def __init__(self, message: str, violation: Optional["Violation"] = None):
        super().__init__(message)
        self.violation = violation


class ReferentialBlock(MinirelError):
    """A mutation is blocked by a foreign key."""

    def __init__(self, message: str, violation: Optional["Violation"] = None):
        super().__init__(message)
        self.violation = violation


class ColumnTypeError(MinirelError, TypeError):
    """A value does not conform to its column's declared type."""

    def __init__(self, message: str, table: Optional[str] = None, column: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.column = column


class CascadeDepthError(MinirelError):
    """Cascading actions nested deeper than the configured limit."""
