"""Relation graph, request model and schema discovery."""

from .relations import Relation, RelationGraph
from .model import (
    Operator,
    AggregateFunction,
    Connective,
    FieldRef,
    Range,
    FilterClause,
    FilterGroup,
    AggregationOp,
    JoinEdge,
    QueryPlan,
    AggregateValue,
    QueryResult,
    QueryResponse,
    QueryRequest,
    parse_filter,
    parse_aggregation,
    parse_operator,
    restrict_filter,
)
from .introspection import DuckDBIntrospector, MongoIntrospector, TableInfo, ColumnInfo

__all__ = [
    "Relation",
    "RelationGraph",
    "Operator",
    "AggregateFunction",
    "Connective",
    "FieldRef",
    "Range",
    "FilterClause",
    "FilterGroup",
    "AggregationOp",
    "JoinEdge",
    "QueryPlan",
    "AggregateValue",
    "QueryResult",
    "QueryResponse",
    "QueryRequest",
    "parse_filter",
    "parse_aggregation",
    "parse_operator",
    "restrict_filter",
    "DuckDBIntrospector",
    "MongoIntrospector",
    "TableInfo",
    "ColumnInfo",
]
