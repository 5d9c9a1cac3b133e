"""Schema IR: tables, columns, keys and constraints."""

from typing import Any, List, Optional, Literal
from pydantic import BaseModel, Field, model_validator
from minirel.errors import ColumnTypeError
from .predicate import ConditionExpr
from .types import SQLType, parse_text

ReferentialAction = Literal["RESTRICT", "CASCADE", "SET_NULL"]


class IdentitySpec(BaseModel):
    """Auto-increment settings for a column."""

    seed: int = 1
    step: int = 1

    @model_validator(mode="after")
    def check_step(self):
        if self.step == 0:
            raise ValueError("identity step must be non-zero")
        return self


class ColumnSpec(BaseModel):
    """Specification for a table column."""

    name: str
    sql_type: SQLType
    nullable: bool = True
    default: Any = None
    identity: Optional[IdentitySpec] = None

    @model_validator(mode="after")
    def read_json_default(self):
        # JSON carries decimal and date defaults as text
        if isinstance(self.default, str) and self.sql_type in ("DECIMAL", "DATE"):
            try:
                self.default = parse_text(self.default, self.sql_type, column=self.name)
            except ColumnTypeError as e:
                raise ValueError(str(e)) from e
        return self


class ForeignKeySpec(BaseModel):
    """Specification for a foreign key constraint."""

    columns: List[str]
    ref_table: str
    ref_columns: List[str]
    on_delete: ReferentialAction = "RESTRICT"
    on_update: ReferentialAction = "RESTRICT"
    name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_single_column(cls, data: Any) -> Any:
        """Allow the single-column form {"column": ..., "ref_column": ...}."""
        if isinstance(data, dict):
            data = dict(data)
            if "column" in data and "columns" not in data:
                data["columns"] = [data.pop("column")]
            if "ref_column" in data and "ref_columns" not in data:
                data["ref_columns"] = [data.pop("ref_column")]
        return data

    def label(self, table: str) -> str:
        if self.name:
            return self.name
        return f"fk_{table}_{'_'.join(self.columns)}"


class CheckSpec(BaseModel):
    """Named row-level check constraint."""

    name: str
    condition: ConditionExpr


class TableSchema(BaseModel):
    """Specification for a table."""

    name: str
    columns: List[ColumnSpec]
    primary_key: List[str] = Field(default_factory=list)
    unique_keys: List[List[str]] = Field(default_factory=list)
    foreign_keys: List[ForeignKeySpec] = Field(default_factory=list)
    checks: List[CheckSpec] = Field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def has_column(self, name: str) -> bool:
        return any(c.name == name for c in self.columns)

    def column_index(self, name: str) -> int:
        for i, c in enumerate(self.columns):
            if c.name == name:
                return i
        raise KeyError(name)

    def get_column(self, name: str) -> ColumnSpec:
        return self.columns[self.column_index(name)]

    def key_sets(self) -> List[List[str]]:
        """Primary key (if any) followed by unique keys."""
        keys = [self.primary_key] if self.primary_key else []
        return keys + [k for k in self.unique_keys if k]


class DatabaseSchema(BaseModel):
    """A set of tables created together."""

    tables: List[TableSchema] = Field(default_factory=list)
