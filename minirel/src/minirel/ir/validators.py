"""Validators for schema IR models."""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Set

from minirel.config.logging import get_logger
from minirel.errors import ColumnTypeError
from minirel.ir.types import coerce_value, types_compatible
from .schema import TableSchema

logger = get_logger(__name__)


@dataclass
class SchemaIssue:
    """Issue found while validating table definitions."""

    code: str  # e.g., "PK_COL_MISSING", "FK_REF_NOT_KEY"
    location: str  # e.g., "table_name" or "table_name.column_name"
    message: str
    details: dict = field(default_factory=dict)


def _bare(name: str) -> str:
    return name.split(".", 1)[-1]


def _validate_table(table: TableSchema, catalog: Mapping[str, TableSchema]) -> List[SchemaIssue]:
    issues: List[SchemaIssue] = []
    name = table.name
    column_names = set()

    if not table.columns:
        issues.append(SchemaIssue("NO_COLUMNS", name, f"{name}: table has no columns"))

    for col in table.columns:
        if col.name in column_names:
            issues.append(
                SchemaIssue(
                    "DUPLICATE_COLUMN",
                    f"{name}.{col.name}",
                    f"{name}: column '{col.name}' is defined more than once",
                )
            )
        column_names.add(col.name)

        if col.identity is not None and col.sql_type != "INT":
            issues.append(
                SchemaIssue(
                    "IDENTITY_TYPE",
                    f"{name}.{col.name}",
                    f"{name}: identity column '{col.name}' must be INT, not {col.sql_type}",
                )
            )

        if col.default is not None:
            try:
                coerce_value(col.default, col.sql_type, name, col.name)
            except ColumnTypeError as e:
                issues.append(
                    SchemaIssue(
                        "DEFAULT_TYPE",
                        f"{name}.{col.name}",
                        f"{name}: default for '{col.name}' is invalid: {e}",
                        details={"default": repr(col.default)},
                    )
                )

    for pk_col in table.primary_key:
        if pk_col not in column_names:
            issues.append(
                SchemaIssue(
                    "PK_COL_MISSING",
                    f"{name}.{pk_col}",
                    f"{name}: primary key column '{pk_col}' does not exist",
                )
            )

    for key in table.unique_keys:
        for key_col in key:
            if key_col not in column_names:
                issues.append(
                    SchemaIssue(
                        "UNIQUE_COL_MISSING",
                        f"{name}.{key_col}",
                        f"{name}: unique key column '{key_col}' does not exist",
                    )
                )

    for check in table.checks:
        for ref in check.condition.referenced_columns():
            if _bare(ref) not in column_names:
                issues.append(
                    SchemaIssue(
                        "CHECK_COL_MISSING",
                        f"{name}.{check.name}",
                        f"{name}: check '{check.name}' references unknown column '{ref}'",
                    )
                )

    for fk in table.foreign_keys:
        label = fk.label(name)
        if fk.ref_table not in catalog:
            issues.append(
                SchemaIssue(
                    "FK_REF_TABLE_MISSING",
                    f"{name}.{label}",
                    f"{name}: foreign key '{label}' references missing table '{fk.ref_table}'",
                    details={"ref_table": fk.ref_table},
                )
            )
            continue

        if not fk.columns or len(fk.columns) != len(fk.ref_columns):
            issues.append(
                SchemaIssue(
                    "FK_ARITY",
                    f"{name}.{label}",
                    f"{name}: foreign key '{label}' maps {len(fk.columns)} columns "
                    f"to {len(fk.ref_columns)}",
                )
            )
            continue

        missing = [c for c in fk.columns if c not in column_names]
        if missing:
            issues.append(
                SchemaIssue(
                    "FK_COL_MISSING",
                    f"{name}.{label}",
                    f"{name}: foreign key columns {missing} do not exist",
                )
            )
            continue

        ref = catalog[fk.ref_table]
        ref_missing = [c for c in fk.ref_columns if not ref.has_column(c)]
        if ref_missing:
            issues.append(
                SchemaIssue(
                    "FK_REF_COL_MISSING",
                    f"{name}.{label}",
                    f"{name}: foreign key '{label}' references "
                    f"'{fk.ref_table}.{ref_missing}' which does not exist",
                )
            )
            continue

        if set(fk.ref_columns) not in [set(k) for k in ref.key_sets()]:
            issues.append(
                SchemaIssue(
                    "FK_REF_NOT_KEY",
                    f"{name}.{label}",
                    f"{name}: foreign key '{label}' must reference the primary key or a "
                    f"unique key of '{fk.ref_table}', not {fk.ref_columns}",
                )
            )

        local_cols = {c.name: c for c in table.columns}
        for local, remote in zip(fk.columns, fk.ref_columns):
            local_type = local_cols[local].sql_type
            remote_type = ref.get_column(remote).sql_type
            if not types_compatible(local_type, remote_type):
                issues.append(
                    SchemaIssue(
                        "FK_TYPE_MISMATCH",
                        f"{name}.{local}",
                        f"{name}: '{local}' ({local_type}) cannot reference "
                        f"'{fk.ref_table}.{remote}' ({remote_type})",
                    )
                )

        if "SET_NULL" in (fk.on_delete, fk.on_update):
            not_nullable = [
                c for c in fk.columns
                if not local_cols[c].nullable or c in table.primary_key
            ]
            if not_nullable:
                issues.append(
                    SchemaIssue(
                        "FK_SET_NULL_NOT_NULLABLE",
                        f"{name}.{label}",
                        f"{name}: foreign key '{label}' uses SET_NULL but columns "
                        f"{not_nullable} are not nullable",
                    )
                )

    return issues


def detect_cascade_cycles(catalog: Mapping[str, TableSchema]) -> List[SchemaIssue]:
    """
    Find CASCADE actions that form a cycle through two or more tables.

    A self-referencing table (employee -> manager) is allowed; the runtime
    depth cap bounds it.

    Args:
        catalog: All table definitions, keyed by name

    Returns:
        One CASCADE_CYCLE issue listing the unresolved tables, or an empty list
    """
    # Edges run from the referenced table to the referencing one
    dependents: Dict[str, Set[str]] = {t: set() for t in catalog}
    for table in catalog.values():
        for fk in table.foreign_keys:
            if fk.ref_table == table.name or fk.ref_table not in catalog:
                continue
            if "CASCADE" in (fk.on_delete, fk.on_update):
                dependents[fk.ref_table].add(table.name)

    # Kahn's algorithm
    in_degree: Dict[str, int] = {t: 0 for t in catalog}
    for targets in dependents.values():
        for t in targets:
            in_degree[t] += 1

    queue: List[str] = [t for t, d in in_degree.items() if d == 0]
    resolved: List[str] = []
    while queue:
        t = queue.pop(0)
        resolved.append(t)
        for dep in dependents[t]:
            in_degree[dep] -= 1
            if in_degree[dep] == 0:
                queue.append(dep)

    if len(resolved) < len(catalog):
        remaining = sorted(set(catalog) - set(resolved))
        return [
            SchemaIssue(
                "CASCADE_CYCLE",
                ",".join(remaining),
                f"Cascading foreign keys form a cycle. Unresolved tables: {remaining}",
                details={"tables": remaining},
            )
        ]
    return []


def validate_tables(
    tables: Sequence[TableSchema],
    existing: Mapping[str, TableSchema] | None = None,
) -> List[SchemaIssue]:
    """
    Validate new table definitions against each other and the existing catalog.

    Args:
        tables: Definitions to add
        existing: Tables already registered

    Returns:
        List of SchemaIssue objects (empty if validation passes)
    """
    existing = existing or {}
    issues: List[SchemaIssue] = []
    catalog: Dict[str, TableSchema] = dict(existing)

    for table in tables:
        if table.name in catalog:
            issues.append(
                SchemaIssue(
                    "DUPLICATE_TABLE",
                    table.name,
                    f"Table '{table.name}' already exists",
                )
            )
            continue
        catalog[table.name] = table

    for table in tables:
        issues.extend(_validate_table(table, catalog))

    issues.extend(detect_cascade_cycles(catalog))

    if issues:
        logger.warning(f"Schema validation found {len(issues)} issues")
    else:
        logger.debug(f"Schema validation passed for {[t.name for t in tables]}")

    return issues
