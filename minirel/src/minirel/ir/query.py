"""Query IR: declarative query descriptions evaluated by the executor."""

from __future__ import annotations

from typing import Any, List, Literal, Optional, Union
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from .predicate import ConditionExpr
from .types import SQLType, typed_literal

JoinKind = Literal["INNER", "LEFT_OUTER", "RIGHT_OUTER", "FULL_OUTER", "CROSS"]
SetOpKind = Literal["UNION", "UNION_ALL", "INTERSECT", "EXCEPT"]
WindowFunction = Literal["row_number", "rank", "dense_rank"]
AggregateFunction = Literal["count", "sum", "avg", "min", "max"]


class ValueExpr(BaseModel):
    """Scalar expression: column reference, literal, or function call."""

    kind: Literal["col", "lit", "func"]
    col: Optional[str] = None
    value: Any = None
    func: Optional[str] = None
    args: List[ValueExpr] = Field(default_factory=list)
    sql_type: Optional[SQLType] = None  # literal type, needed for decimals and dates in JSON

    @model_validator(mode="after")
    def check_shape(self):
        if self.kind == "col" and not self.col:
            raise ValueError("Column expression must name a column")
        if self.kind == "func" and not self.func:
            raise ValueError("Function expression must name a function")
        if self.kind == "lit":
            self.value, self.sql_type = typed_literal(self.value, self.sql_type)
        return self


def col(name: str) -> ValueExpr:
    return ValueExpr(kind="col", col=name)


def lit(value: Any) -> ValueExpr:
    return ValueExpr(kind="lit", value=value)


def func(name: str, *args: Union[ValueExpr, str]) -> ValueExpr:
    """Function call; bare strings are taken as column references."""
    return ValueExpr(
        kind="func",
        func=name,
        args=[col(a) if isinstance(a, str) else a for a in args],
    )


class ProjectionItem(BaseModel):
    """Computed output column."""

    expr: ValueExpr
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "as"))


class OrderKey(BaseModel):
    """Sort key: a column and its direction."""

    column: str
    descending: bool = False


def parse_order_keys(v: Any) -> Any:
    """Accept "col", "col DESC" and "col ASC" shorthands."""
    if not isinstance(v, list):
        return v
    out = []
    for item in v:
        if isinstance(item, str):
            parts = item.split()
            if len(parts) == 2 and parts[1].upper() in ("ASC", "DESC"):
                out.append({"column": parts[0], "descending": parts[1].upper() == "DESC"})
            else:
                out.append({"column": item})
        else:
            out.append(item)
    return out


class SourceRef(BaseModel):
    """A table, view, or derived table in a FROM list."""

    table: Optional[str] = None
    alias: Optional[str] = None
    query: Optional[QuerySpec] = None  # derived table

    @model_validator(mode="after")
    def check_source(self):
        if (self.table is None) == (self.query is None):
            raise ValueError("Source must name exactly one of 'table' or 'query'")
        if self.query is not None and not self.alias:
            raise ValueError("Derived table requires an alias")
        return self

    @property
    def label(self) -> str:
        return self.alias or self.table


def _coerce_source(v: Any) -> Any:
    if isinstance(v, str):
        return {"table": v}
    return v


class JoinSpec(BaseModel):
    """Join of the current relation with one more source."""

    right: SourceRef
    on: Optional[ConditionExpr] = None
    kind: JoinKind = "INNER"
    left: Optional[str] = None  # qualifier expected on the left side

    @field_validator("right", mode="before")
    @classmethod
    def coerce_right(cls, v: Any) -> Any:
        return _coerce_source(v)

    @model_validator(mode="after")
    def check_predicate(self):
        if self.kind != "CROSS" and self.on is None:
            raise ValueError(f"{self.kind} join requires an 'on' condition")
        return self


class WindowSpec(BaseModel):
    """Window function appended as a new column."""

    partition_by: List[str] = Field(default_factory=list)
    order_by: List[OrderKey] = Field(default_factory=list)
    function: WindowFunction = "row_number"
    name: str = Field(default="row_num", validation_alias=AliasChoices("name", "as"))

    @field_validator("order_by", mode="before")
    @classmethod
    def coerce_order_by(cls, v: Any) -> Any:
        return parse_order_keys(v)


class AggregateSpec(BaseModel):
    """Aggregate output column for GROUP BY."""

    func: AggregateFunction
    col: Optional[str] = None  # None means count(*)
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "as"))
    distinct: bool = False

    @model_validator(mode="after")
    def check_column(self):
        if self.col is None and self.func != "count":
            raise ValueError(f"Aggregate '{self.func}' requires a column")
        return self

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        return f"{self.func}_{self.col}" if self.col else self.func


class PivotSpec(BaseModel):
    """Rows to columns. Omitting values asks the executor to discover them."""

    group_by: List[str]
    spread: str
    value: str
    aggregate: AggregateFunction = "sum"
    values: Optional[List[Any]] = None
    sql_type: Optional[SQLType] = None  # type of values

    @model_validator(mode="after")
    def type_values(self):
        if self.values is not None:
            self.values, self.sql_type = typed_literal(self.values, self.sql_type)
        return self

    @field_validator("group_by", mode="before")
    @classmethod
    def coerce_group_by(cls, v: Any) -> Any:
        return [v] if isinstance(v, str) else v


class UnpivotSpec(BaseModel):
    """Columns to rows."""

    keys: List[str]
    columns: List[str]
    name_column: str = "name"
    value_column: str = "value"
    include_nulls: bool = False


class SetOpSpec(BaseModel):
    kind: SetOpKind
    right: QuerySpec


class QuerySpec(BaseModel):
    """Declarative query description."""

    sources: List[SourceRef]
    joins: List[JoinSpec] = Field(default_factory=list)
    filter: Optional[ConditionExpr] = None
    group_by: List[str] = Field(default_factory=list)
    aggregates: List[AggregateSpec] = Field(default_factory=list)
    having: Optional[ConditionExpr] = None
    window: Optional[WindowSpec] = None
    qualify: Optional[ConditionExpr] = None
    pivot: Optional[PivotSpec] = None
    unpivot: Optional[UnpivotSpec] = None
    project: List[Union[str, ProjectionItem]] = Field(default_factory=list)
    distinct: bool = False
    set_op: Optional[SetOpSpec] = None
    order_by: List[OrderKey] = Field(default_factory=list)
    limit: Optional[int] = None
    offset: int = 0

    @field_validator("sources", mode="before")
    @classmethod
    def coerce_sources(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [_coerce_source(s) for s in v]
        return v

    @field_validator("order_by", mode="before")
    @classmethod
    def coerce_order_by(cls, v: Any) -> Any:
        return parse_order_keys(v)

    @model_validator(mode="after")
    def check_stages(self):
        if not self.sources:
            raise ValueError("Query needs at least one source")
        if self.pivot is not None and self.unpivot is not None:
            raise ValueError("Query cannot both pivot and unpivot")
        if self.having is not None and not (self.group_by or self.aggregates):
            raise ValueError("'having' requires 'group_by' or 'aggregates'")
        if self.qualify is not None and self.window is None:
            raise ValueError("'qualify' requires 'window'")
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be non-negative")
        if self.offset < 0:
            raise ValueError("offset must be non-negative")
        return self


SourceRef.model_rebuild()
JoinSpec.model_rebuild()
SetOpSpec.model_rebuild()
QuerySpec.model_rebuild()
