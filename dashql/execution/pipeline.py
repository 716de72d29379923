"""Filter and pipeline translation for the document (MongoDB) backend."""

from typing import Any, Dict, List, Optional, Sequence
import re

from bson import ObjectId
import dateutil.parser

from ..exceptions import UnsupportedOperatorError
from ..schema.model import (
    AggregateFunction, AggregationOp, Connective, FilterClause, FilterGroup,
    FilterNode, Operator, QueryPlan,
)
from .translator import QueryTranslator, Statement, aggregate_output_names

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
NUMBER_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")
RADIX_PATTERN = re.compile(r"^0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")
INFINITY_PATTERN = re.compile(r"^([+-]?)Infinity$")


def coerce_value(value: Any) -> Any:
    """Infer a typed value from filter input.

    Documents are compared by BSON type, so a date stored as a date never
    matches the string ``"2024-01-01"``. Checks run in order: 24-hex
    identifier, ISO date, number. Numbers include exponents, 0x/0o/0b
    literals and signed ``Infinity``. Anything else is returned unchanged.
    """
    if not isinstance(value, str):
        return value

    if OBJECT_ID_PATTERN.match(value):
        return ObjectId(value)

    if DATE_PATTERN.match(value):
        try:
            return dateutil.parser.isoparse(value)
        except (ValueError, OverflowError):
            # Looks like a date but is not one
            return value

    text = value.strip()
    if not text:
        return value
    if NUMBER_PATTERN.match(text):
        if INTEGER_PATTERN.match(text):
            return int(text)
        return float(text)
    if RADIX_PATTERN.match(text):
        return int(text, 0)
    infinity = INFINITY_PATTERN.match(text)
    if infinity:
        return float(f"{infinity.group(1)}inf")

    return value


_COMPARATORS = {
    Operator.EQ: "$eq",
    Operator.NE: "$ne",
    Operator.GT: "$gt",
    Operator.GTE: "$gte",
    Operator.LT: "$lt",
    Operator.LTE: "$lte",
}


class PipelineTranslator(QueryTranslator):
    """Translates filter trees and plans to aggregation pipelines."""

    def __init__(self, row_limit: Optional[int] = None):
        self.row_limit = row_limit

    @staticmethod
    def field_path(root_entity: Optional[str], entity: str, field_name: str) -> str:
        """Document path of a field once joined entities are embedded."""
        if root_entity is None or entity == root_entity:
            return field_name
        return f"{entity}.{field_name}"

    def translate(self, node: Optional[FilterNode], root_entity: Optional[str] = None) -> Dict[str, Any]:
        """Translate a filter tree to a ``$match`` expression."""
        if node is None:
            return {}
        return self._translate_node(node, root_entity)

    def _translate_node(self, node: FilterNode, root_entity: Optional[str]) -> Dict[str, Any]:
        if isinstance(node, FilterGroup):
            key = "$and" if node.connective is Connective.AND else "$or"
            return {key: [self._translate_node(child, root_entity) for child in node.children]}
        return self._translate_clause(node, root_entity)

    def _translate_clause(self, clause: FilterClause, root_entity: Optional[str]) -> Dict[str, Any]:
        self._reject_aggregate(clause)

        path = self.field_path(root_entity, clause.entity, clause.field)
        operator = clause.operator
        value = clause.value

        if operator in _COMPARATORS:
            condition = {_COMPARATORS[operator]: coerce_value(value)}
        elif operator is Operator.IN:
            condition = {"$in": [coerce_value(item) for item in value]}
        elif operator is Operator.NOT_IN:
            condition = {"$nin": [coerce_value(item) for item in value]}
        elif operator is Operator.BETWEEN:
            condition = {"$gte": coerce_value(value.low), "$lte": coerce_value(value.high)}
        elif operator is Operator.CONTAINS:
            condition = {"$regex": re.escape(value), "$options": "i"}
        elif operator is Operator.STARTS_WITH:
            condition = {"$regex": f"^{re.escape(value)}", "$options": "i"}
        elif operator is Operator.ENDS_WITH:
            condition = {"$regex": f"{re.escape(value)}$", "$options": "i"}
        elif operator is Operator.REGEX:
            condition = {"$regex": value, "$options": "i"}
        else:
            raise UnsupportedOperatorError(operator)

        return {path: condition}

    def _join_stages(self, plan: QueryPlan) -> List[Dict[str, Any]]:
        stages = []
        for join in plan.joins:
            target = join.to_entity
            stages.extend([
                {"$lookup": {
                    "from": target,
                    "localField": self.field_path(plan.root_entity, join.from_entity, join.local_field),
                    "foreignField": join.foreign_field,
                    "as": target,
                }},
                # Inner join, then keep only the first match per key
                {"$match": {f"{target}.0": {"$exists": True}}},
                {"$addFields": {target: {"$arrayElemAt": [f"${target}", 0]}}},
            ])
        return stages

    def build_select(self, plan: QueryPlan, predicate: Dict[str, Any]) -> Statement:
        pipeline = self._join_stages(plan)
        if predicate:
            pipeline.append({"$match": predicate})
        if self.row_limit is not None:
            pipeline.append({"$limit": self.row_limit})

        return Statement(
            entity=plan.root_entity,
            operation="detail",
            body=pipeline,
            columns=[str(ref) for ref in plan.projection],
        )

    def build_aggregate(
        self,
        plan: QueryPlan,
        predicate: Dict[str, Any],
        aggregations: Sequence[AggregationOp]
    ) -> Statement:
        names = aggregate_output_names(plan.root_entity, aggregations)
        group: Dict[str, Any] = {"_id": None}

        for op, name in zip(aggregations, names):
            if op.function is AggregateFunction.COUNT:
                if op.field == "*":
                    group[name] = {"$sum": 1}
                else:
                    path = self.field_path(plan.root_entity, op.entity, op.field)
                    # Only documents where the field holds a non-null value
                    group[name] = {"$sum": {"$cond": [{"$gt": [f"${path}", None]}, 1, 0]}}
            else:
                path = self.field_path(plan.root_entity, op.entity, op.field)
                group[name] = {f"${op.function.value}": f"${path}"}

        pipeline = self._join_stages(plan)
        if predicate:
            pipeline.append({"$match": predicate})
        pipeline.append({"$group": group})
        pipeline.append({"$project": {"_id": 0}})

        return Statement(
            entity=plan.root_entity,
            operation="aggregate",
            body=pipeline,
            columns=names,
        )

    def build_lookup(self, entity: str, key_field: str, ids: Sequence[Any]) -> Statement:
        return Statement(
            entity=entity,
            operation="lookup",
            body={key_field: {"$in": list(ids)}},
        )
