"""Error logging for rejected mutations and failed queries."""

import traceback
from typing import Any, Dict, Optional

from minirel.config.logging import get_logger
from minirel.errors import (
    CascadeDepthError,
    ColumnTypeError,
    ConstraintViolation,
    InvalidQuery,
    ReferentialBlock,
    SchemaError,
    SchemaMismatch,
)

logger = get_logger(__name__)


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    operation: Optional[str] = None,
    table_name: Optional[str] = None,
    log_level: str = "error",
) -> None:
    """
    Log an error with its type, message, context, and traceback.

    Args:
        error: The exception that occurred
        context: Additional context dictionary (e.g., {'rows': 3, 'where': 'id = 1'})
        operation: Description of the operation being performed
        table_name: Name of the table involved
        log_level: Logging level ('error', 'warning', 'critical')
    """
    error_type = type(error).__name__
    error_message = str(error)

    context_parts = []
    if operation:
        context_parts.append(f"Operation: {operation}")
    if table_name:
        context_parts.append(f"Table: {table_name}")
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        context_parts.append(f"Context: {context_str}")

    error_msg = f"[{error_type}] {error_message}"
    if context_parts:
        error_msg += f" | {' | '.join(context_parts)}"

    # Engine errors are expected outcomes of bad input; keep tracebacks at debug
    if log_level.lower() == "critical":
        logger.critical(error_msg, exc_info=True)
    elif log_level.lower() == "warning":
        logger.warning(error_msg)
    else:
        logger.error(error_msg, exc_info=True)

    if isinstance(error, ReferentialBlock):
        logger.debug(f"ReferentialBlock details: blocked by a foreign key - {error_message}")
    elif isinstance(error, ConstraintViolation):
        violation = error.violation
        if violation is not None:
            logger.debug(
                f"ConstraintViolation details: {violation.kind} '{violation.constraint}' "
                f"on row {violation.row!r}"
            )
    elif isinstance(error, ColumnTypeError):
        logger.debug(f"ColumnTypeError details: {error.table}.{error.column} - {error_message}")
    elif isinstance(error, SchemaError):
        for issue in error.issues:
            logger.debug(f"SchemaError issue: [{issue.code}] {issue.location}: {issue.message}")
    elif isinstance(error, SchemaMismatch):
        logger.debug(f"SchemaMismatch details: incompatible operands - {error_message}")
    elif isinstance(error, InvalidQuery):
        logger.debug(f"InvalidQuery details: unresolved reference - {error_message}")
    elif isinstance(error, CascadeDepthError):
        logger.debug(f"CascadeDepthError details: cascade too deep - {error_message}")

    logger.debug(f"Full traceback for {error_type}:\n{traceback.format_exc()}")
