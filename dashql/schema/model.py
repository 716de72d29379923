"""Request, plan and result types shared by every backend."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ..exceptions import MalformedFilterError, UnsupportedOperatorError


class Operator(str, Enum):
    """Filter operators."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "notIn"
    REGEX = "regex"


class AggregateFunction(str, Enum):
    """Aggregation operators; never valid inside a filter predicate."""
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"


class Connective(str, Enum):
    AND = "and"
    OR = "or"


COMPARISON_OPERATORS = frozenset({
    Operator.EQ, Operator.NE, Operator.GT, Operator.GTE, Operator.LT, Operator.LTE,
})
PATTERN_OPERATORS = frozenset({
    Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH, Operator.REGEX,
})
MEMBERSHIP_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})

_OPERATORS = {op.value: op for op in Operator}
_AGGREGATES = {fn.value: fn for fn in AggregateFunction}


def parse_operator(tag: Any) -> Union[Operator, AggregateFunction]:
    """Resolve an operator tag to its enum member.

    Raises:
        UnsupportedOperatorError: If the tag is not in either vocabulary
    """
    if isinstance(tag, (Operator, AggregateFunction)):
        return tag
    if isinstance(tag, str):
        if tag in _OPERATORS:
            return _OPERATORS[tag]
        if tag in _AGGREGATES:
            return _AGGREGATES[tag]
    raise UnsupportedOperatorError(tag)


def is_aggregate_tag(tag: Any) -> bool:
    return isinstance(tag, AggregateFunction) or (isinstance(tag, str) and tag in _AGGREGATES)


@dataclass(frozen=True)
class FieldRef:
    """Reference to a field of an entity."""
    entity: str
    field: str

    def __str__(self) -> str:
        return f"{self.entity}.{self.field}"


@dataclass(frozen=True)
class Range:
    """Inclusive bounds for ``between``."""
    low: Any
    high: Any


@dataclass
class FilterClause:
    """A single ``field operator value`` predicate."""
    entity: str
    field: str
    operator: Operator
    value: Any = None

    @property
    def ref(self) -> FieldRef:
        return FieldRef(self.entity, self.field)


@dataclass
class FilterGroup:
    """Logical composition of clauses and nested groups."""
    connective: Connective
    children: List["FilterNode"] = field(default_factory=list)


FilterNode = Union[FilterClause, FilterGroup]


@dataclass
class AggregationOp:
    """A reduction over the filtered, joined row set."""
    entity: str
    field: str
    function: AggregateFunction
    alias: Optional[str] = None

    @property
    def ref(self) -> FieldRef:
        return FieldRef(self.entity, self.field)

    def output_name(self, root_entity: str) -> str:
        """Alias, or a name derived from the function and field."""
        if self.alias:
            return self.alias
        if self.field == "*":
            return self.function.value
        if self.entity == root_entity:
            return f"{self.function.value}_{self.field}"
        return f"{self.function.value}_{self.entity}_{self.field}"


@dataclass(frozen=True)
class JoinEdge:
    """One inner join, oriented from the side nearer the root."""
    from_entity: str
    to_entity: str
    local_field: str
    foreign_field: str

    @property
    def signature(self) -> tuple:
        return (self.from_entity, self.to_entity, self.local_field, self.foreign_field)

    def to_dict(self) -> Dict[str, str]:
        return {
            "from": self.from_entity,
            "to": self.to_entity,
            "localField": self.local_field,
            "foreignField": self.foreign_field,
        }


@dataclass
class QueryPlan:
    """Root entity, ordered join chain and projection for one request."""
    root_entity: str
    joins: List[JoinEdge] = field(default_factory=list)
    projection: List[FieldRef] = field(default_factory=list)

    @property
    def joined_entities(self) -> List[str]:
        return [self.root_entity] + [join.to_entity for join in self.joins]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_entity": self.root_entity,
            "joins": [join.to_dict() for join in self.joins],
            "projection": [str(ref) for ref in self.projection],
        }


@dataclass
class AggregateValue:
    """One computed aggregate."""
    alias: str
    value: Any
    function: AggregateFunction
    field: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alias": self.alias,
            "value": self.value,
            "operation": self.function.value,
            "field": self.field,
        }


@dataclass
class QueryResult:
    """Detail rows plus the aggregate summary computed beside them."""
    rows: List[Dict[str, Any]]
    aggregates: List[AggregateValue] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class QueryResponse:
    """What the engine hands back to the surrounding layer."""
    plan: QueryPlan
    rows: List[Dict[str, Any]]
    aggregates: Optional[List[AggregateValue]] = None

    @property
    def has_aggregates(self) -> bool:
        return self.aggregates is not None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "root_entity": self.plan.root_entity,
            "joins": [join.to_dict() for join in self.plan.joins],
        }
        if self.has_aggregates:
            result["detailed_rows"] = self.rows
            result["aggregate_rows"] = [agg.to_dict() for agg in self.aggregates]
        else:
            result["projection"] = [str(ref) for ref in self.plan.projection]
            result["rows"] = self.rows
        return result


@dataclass
class QueryRequest:
    """A parsed request: optional root hint, filter tree, aggregations."""
    root: Optional[str] = None
    filter: Optional[FilterNode] = None
    aggregations: List[AggregationOp] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueryRequest":
        """Parse a request body.

        Accepts ``filters`` as a list (implicit AND) or as an ``and``/``or``
        tree, and ``aggregations`` (or ``aggregation``) as a list. Top-level
        filters tagged with an aggregate function are moved to the
        aggregation list.
        """
        if not isinstance(data, Mapping):
            raise MalformedFilterError("request must be an object")

        root = data.get("root")
        if root is not None and not isinstance(root, str):
            raise MalformedFilterError("root must be a string")

        aggregations = [
            parse_aggregation(item)
            for item in _as_list(data.get("aggregations", data.get("aggregation")), "aggregations")
        ]

        raw_filters = data.get("filters")
        filter_node = None
        if isinstance(raw_filters, Mapping):
            filter_node = parse_filter(raw_filters)
        else:
            children = []
            for item in _as_list(raw_filters, "filters"):
                if isinstance(item, Mapping) and is_aggregate_tag(item.get("operator")):
                    aggregations.append(parse_aggregation(item))
                else:
                    children.append(parse_filter(item))
            filter_node = _combine(Connective.AND, children)

        return cls(root=root, filter=filter_node, aggregations=aggregations)


def _as_list(value: Any, name: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedFilterError(f"{name} must be a list")
    return value


def _combine(connective: Connective, children: List[FilterNode]) -> Optional[FilterNode]:
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return FilterGroup(connective, children)


def _entity_of(data: Mapping[str, Any]) -> Any:
    # Older clients send ``collection`` instead of ``entity``
    return data.get("entity", data.get("collection"))


def parse_filter(data: Any) -> FilterNode:
    """Parse one filter node (leaf clause or ``and``/``or`` group)."""
    if not isinstance(data, Mapping):
        raise MalformedFilterError("filter must be an object")

    for connective in Connective:
        if connective.value in data:
            if len(data) != 1:
                raise MalformedFilterError(f"'{connective.value}' group must be the only key")
            items = data[connective.value]
            if not isinstance(items, list) or not items:
                raise MalformedFilterError(f"'{connective.value}' expects a non-empty list")
            return FilterGroup(connective, [parse_filter(item) for item in items])

    entity = _entity_of(data)
    field_name = data.get("field")
    if not isinstance(entity, str) or not entity:
        raise MalformedFilterError("filter is missing its entity", filter_field=field_name)
    if not isinstance(field_name, str) or not field_name:
        raise MalformedFilterError("filter is missing its field")

    value = data.get("value")
    tag = data.get("operator", data.get("op"))

    if tag is None:
        # Operator-keyed value object: {"value": {"gt": 1, "lt": 5}}
        if isinstance(value, Mapping):
            if not value:
                raise MalformedFilterError("operator object is empty", filter_field=field_name)
            clauses = [
                _parse_clause(entity, field_name, op_tag, op_value)
                for op_tag, op_value in value.items()
            ]
            return _combine(Connective.AND, clauses)
        tag = Operator.EQ

    return _parse_clause(entity, field_name, tag, value)


def _parse_clause(entity: str, field_name: str, tag: Any, value: Any) -> FilterClause:
    operator = parse_operator(tag)
    if isinstance(operator, AggregateFunction):
        raise MalformedFilterError(
            f"aggregate '{operator.value}' cannot be used as a filter",
            filter_field=field_name,
            filter_operation=operator.value
        )

    if operator in MEMBERSHIP_OPERATORS:
        if not isinstance(value, (list, tuple)):
            raise MalformedFilterError(
                f"'{operator.value}' requires a list value",
                filter_field=field_name,
                filter_operation=operator.value
            )
        value = list(value)
    elif operator is Operator.BETWEEN:
        value = _parse_range(value, field_name)
    elif operator in PATTERN_OPERATORS:
        if not isinstance(value, str):
            raise MalformedFilterError(
                f"'{operator.value}' requires a string pattern",
                filter_field=field_name,
                filter_operation=operator.value
            )
    elif isinstance(value, (list, dict)):
        raise MalformedFilterError(
            f"'{operator.value}' requires a scalar value",
            filter_field=field_name,
            filter_operation=operator.value
        )

    return FilterClause(entity=entity, field=field_name, operator=operator, value=value)


def _parse_range(value: Any, field_name: str) -> Range:
    if isinstance(value, Range):
        return value
    if isinstance(value, Mapping):
        low = value.get("from", value.get("min"))
        high = value.get("to", value.get("max"))
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = value
    else:
        low = high = None

    if low is None or high is None:
        raise MalformedFilterError(
            "'between' requires both a lower and an upper bound",
            filter_field=field_name,
            filter_operation=Operator.BETWEEN.value
        )
    return Range(low, high)


def parse_aggregation(data: Any) -> AggregationOp:
    """Parse one aggregation op."""
    if not isinstance(data, Mapping):
        raise MalformedFilterError("aggregation must be an object")

    entity = _entity_of(data)
    field_name = data.get("field")
    tag = data.get("operator", data.get("operation"))

    function = parse_operator(tag)
    if not isinstance(function, AggregateFunction):
        raise UnsupportedOperatorError(tag, context={"expected": "aggregate function"})
    if not isinstance(entity, str) or not entity:
        raise MalformedFilterError("aggregation is missing its entity", filter_field=field_name)
    if not isinstance(field_name, str) or not field_name:
        raise MalformedFilterError("aggregation is missing its field")
    if field_name == "*" and function is not AggregateFunction.COUNT:
        raise MalformedFilterError(
            f"'{function.value}' needs a concrete field",
            filter_field=field_name,
            filter_operation=function.value
        )

    alias = data.get("alias")
    if alias is not None and not isinstance(alias, str):
        raise MalformedFilterError("alias must be a string", filter_field=field_name)

    return AggregationOp(entity=entity, field=field_name, function=function, alias=alias or None)


def iter_clauses(node: Optional[FilterNode]) -> List[FilterClause]:
    """All leaf clauses of a filter tree, in traversal order."""
    if node is None:
        return []
    if isinstance(node, FilterClause):
        return [node]
    clauses = []
    for child in node.children:
        clauses.extend(iter_clauses(child))
    return clauses


def referenced_fields(
    node: Optional[FilterNode],
    aggregations: Sequence[AggregationOp] = ()
) -> List[FieldRef]:
    """Field references of every clause and aggregation, in request order."""
    refs = [clause.ref for clause in iter_clauses(node)]
    refs.extend(op.ref for op in aggregations)
    return refs


def restrict_filter(node: Optional[FilterNode], entities: Sequence[str]) -> Optional[FilterNode]:
    """Drop clauses on entities outside ``entities``; empty groups vanish."""
    if node is None:
        return None
    if isinstance(node, FilterClause):
        return node if node.entity in entities else None
    children = [
        child for child in (restrict_filter(c, entities) for c in node.children)
        if child is not None
    ]
    return _combine(node.connective, children)
