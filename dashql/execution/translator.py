"""Filter and statement translation for the tabular (SQL) backend."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import json

from sqlglot.expressions import Select

from ..exceptions import MalformedFilterError, UnsupportedOperatorError
from ..schema.model import (
    AggregateFunction, AggregationOp, Connective, FieldRef, FilterClause,
    FilterGroup, FilterNode, Operator, QueryPlan,
)


@dataclass
class Statement:
    """A backend-native statement ready for execution."""
    entity: str
    operation: str  # detail, aggregate, lookup
    body: Any
    params: List[Any] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body, default=str)


def aggregate_output_names(root_entity: str, aggregations: Sequence[AggregationOp]) -> List[str]:
    """Output column names for aggregations, made unique by suffixing."""
    names: List[str] = []
    for op in aggregations:
        name = op.output_name(root_entity)
        candidate, n = name, 2
        while candidate in names:
            candidate = f"{name}_{n}"
            n += 1
        names.append(candidate)
    return names


class QueryTranslator(ABC):
    """Backend-specific translation of filters and query plans."""

    @abstractmethod
    def translate(self, node: Optional[FilterNode], root_entity: Optional[str] = None) -> Any:
        """Translate a filter tree into the backend's predicate form."""

    @abstractmethod
    def build_select(self, plan: QueryPlan, predicate: Any) -> Statement:
        """Statement returning detail rows."""

    @abstractmethod
    def build_aggregate(
        self,
        plan: QueryPlan,
        predicate: Any,
        aggregations: Sequence[AggregationOp]
    ) -> Statement:
        """Statement returning the single aggregate summary row."""

    @abstractmethod
    def build_lookup(self, entity: str, key_field: str, ids: Sequence[Any]) -> Statement:
        """Statement fetching records of ``entity`` by identifier."""

    @staticmethod
    def _reject_aggregate(clause: FilterClause) -> None:
        if isinstance(clause.operator, AggregateFunction):
            raise TypeError(
                f"Aggregate function '{clause.operator.value}' on "
                f"'{clause.entity}.{clause.field}' reached the filter translator"
            )


def quote_identifier(name: str) -> str:
    """Double-quote an identifier."""
    return '"' + name.replace('"', '""') + '"'


LIKE_ESCAPE = "!"

_COMPARATORS = {
    Operator.EQ: "=",
    Operator.NE: "!=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}

_SQL_FUNCTIONS = {
    AggregateFunction.SUM: "SUM",
    AggregateFunction.AVG: "AVG",
    AggregateFunction.MIN: "MIN",
    AggregateFunction.MAX: "MAX",
    AggregateFunction.COUNT: "COUNT",
}


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


class SQLTranslator(QueryTranslator):
    """Translates filter trees and plans to parameterized SQL.

    Values are only ever bound as positional ``?`` parameters; column typing
    in the database handles conversion, so no value coercion happens here.
    """

    def __init__(self, dialect: str = "duckdb", row_limit: Optional[int] = None):
        self.dialect = dialect
        self.row_limit = row_limit

    def column(self, entity: str, field_name: str) -> str:
        """Entity-qualified, quoted column reference."""
        if field_name == "*":
            return f"{quote_identifier(entity)}.*"
        return f"{quote_identifier(entity)}.{quote_identifier(field_name)}"

    def translate(
        self,
        node: Optional[FilterNode],
        root_entity: Optional[str] = None
    ) -> Tuple[str, List[Any]]:
        """Translate a filter tree to a WHERE fragment and its parameters.

        Columns are always entity-qualified, so ``root_entity`` is unused.
        """
        params: List[Any] = []
        if node is None:
            return "", params
        fragment = self._translate_node(node, params)
        return fragment, params

    def _translate_node(self, node: FilterNode, params: List[Any]) -> str:
        if isinstance(node, FilterGroup):
            joiner = " AND " if node.connective is Connective.AND else " OR "
            return joiner.join(
                f"({self._translate_node(child, params)})" for child in node.children
            )
        return self._translate_clause(node, params)

    def _translate_clause(self, clause: FilterClause, params: List[Any]) -> str:
        self._reject_aggregate(clause)

        column = self.column(clause.entity, clause.field)
        operator = clause.operator
        value = clause.value

        if operator in _COMPARATORS:
            if value is None:
                if operator is Operator.EQ:
                    return f"{column} IS NULL"
                if operator is Operator.NE:
                    return f"{column} IS NOT NULL"
                raise MalformedFilterError(
                    f"'{operator.value}' cannot compare against null",
                    filter_field=clause.field,
                    filter_operation=operator.value
                )
            params.append(value)
            return f"{column} {_COMPARATORS[operator]} ?"

        if operator in (Operator.IN, Operator.NOT_IN):
            if not value:
                # Empty membership: nothing is in it, everything is outside it
                return "FALSE" if operator is Operator.IN else "TRUE"
            params.extend(value)
            placeholders = ", ".join("?" for _ in value)
            keyword = "IN" if operator is Operator.IN else "NOT IN"
            return f"{column} {keyword} ({placeholders})"

        if operator is Operator.BETWEEN:
            params.extend([value.low, value.high])
            return f"({column} >= ? AND {column} <= ?)"

        if operator is Operator.CONTAINS:
            params.append(f"%{escape_like(value)}%")
            return f"{column} ILIKE ? ESCAPE '{LIKE_ESCAPE}'"

        if operator is Operator.STARTS_WITH:
            params.append(f"{escape_like(value)}%")
            return f"{column} ILIKE ? ESCAPE '{LIKE_ESCAPE}'"

        if operator is Operator.ENDS_WITH:
            params.append(f"%{escape_like(value)}")
            return f"{column} ILIKE ? ESCAPE '{LIKE_ESCAPE}'"

        if operator is Operator.REGEX:
            # Raw pattern: only regex wildcards are mapped onto LIKE
            params.append(value.replace(".*", "%").replace("*", "%"))
            return f"{column} ILIKE ?"

        raise UnsupportedOperatorError(operator)

    def _from_with_joins(self, query: Select, plan: QueryPlan) -> Select:
        query = query.from_(quote_identifier(plan.root_entity))
        for join in plan.joins:
            query = query.join(
                quote_identifier(join.to_entity),
                on=(
                    f"{self.column(join.from_entity, join.local_field)} = "
                    f"{self.column(join.to_entity, join.foreign_field)}"
                ),
                join_type="inner",
            )
        return query

    def build_select(self, plan: QueryPlan, predicate: Tuple[str, List[Any]]) -> Statement:
        """SELECT the projection over the join chain, filtered by the predicate."""
        fragment, params = predicate
        query = Select()

        for ref in plan.projection or [FieldRef(plan.root_entity, "*")]:
            if ref.field == "*":
                query = query.select(self.column(ref.entity, "*"))
            else:
                # Joined fields keep their entity prefix to avoid name clashes
                query = query.select(
                    f"{self.column(ref.entity, ref.field)} AS {quote_identifier(str(ref))}"
                )

        query = self._from_with_joins(query, plan)

        if fragment:
            query = query.where(fragment)

        if self.row_limit is not None:
            query = query.limit(self.row_limit)

        return Statement(
            entity=plan.root_entity,
            operation="detail",
            body=query.sql(dialect=self.dialect, pretty=True),
            params=list(params),
            columns=[str(ref) for ref in plan.projection],
        )

    def build_aggregate(
        self,
        plan: QueryPlan,
        predicate: Tuple[str, List[Any]],
        aggregations: Sequence[AggregationOp]
    ) -> Statement:
        """One summary row with every aggregation over the same join/filter."""
        fragment, params = predicate
        names = aggregate_output_names(plan.root_entity, aggregations)
        query = Select()

        for op, name in zip(aggregations, names):
            function = _SQL_FUNCTIONS[op.function]
            if op.field == "*":
                expression = f"{function}(*)"
            else:
                expression = f"{function}({self.column(op.entity, op.field)})"
            query = query.select(f"{expression} AS {quote_identifier(name)}")

        query = self._from_with_joins(query, plan)

        if fragment:
            query = query.where(fragment)

        return Statement(
            entity=plan.root_entity,
            operation="aggregate",
            body=query.sql(dialect=self.dialect, pretty=True),
            params=list(params),
            columns=names,
        )

    def build_lookup(self, entity: str, key_field: str, ids: Sequence[Any]) -> Statement:
        """Fetch referenced records in one batch."""
        ids = list(ids)
        placeholders = ", ".join("?" for _ in ids)
        query = (
            Select()
            .select(self.column(entity, "*"))
            .from_(quote_identifier(entity))
            .where(f"{self.column(entity, key_field)} IN ({placeholders})")
        )
        return Statement(
            entity=entity,
            operation="lookup",
            body=query.sql(dialect=self.dialect, pretty=True),
            params=ids,
        )


def predicate_summary(predicate: Any) -> Dict[str, Any]:
    """Loggable view of a predicate from either backend."""
    if isinstance(predicate, tuple):
        fragment, params = predicate
        return {"where": fragment, "param_count": len(params)}
    return {"match": predicate}
