"""Join plan construction."""

from typing import List, Optional, Sequence
import logging

from ..exceptions import NoPathError
from ..schema.model import (
    AggregationOp, FieldRef, FilterNode, JoinEdge, QueryPlan,
    iter_clauses, referenced_fields,
)
from ..schema.relations import RelationGraph
from .paths import PathResolver

logger = logging.getLogger(__name__)


class JoinPlanner:
    """Turns field references into a deduplicated linear join chain."""

    def __init__(self, graph: RelationGraph, strict: bool = True):
        """
        Initialize the planner.

        Args:
            graph: Relation graph to plan over
            strict: Raise NoPathError for unreachable entities instead of
                planning without them
        """
        self.graph = graph
        self.resolver = PathResolver(graph)
        self.strict = strict

    def build_join_plan(self, root: str, refs: Sequence[FieldRef]) -> List[JoinEdge]:
        """Ordered, deduplicated join edges reaching every referenced entity."""
        joins: List[JoinEdge] = []
        seen = set()

        for ref in refs:
            if ref.entity == root:
                continue

            path = self.resolver.find_path(root, ref.entity)
            if path is None:
                if self.strict:
                    raise NoPathError(root, ref.entity, context={"field": ref.field})
                logger.warning(
                    f"No join path from '{root}' to '{ref.entity}'; "
                    f"'{ref}' contributes no join"
                )
                continue

            for a, b in zip(path, path[1:]):
                edge = self._orient(a, b)
                if edge.signature not in seen:
                    seen.add(edge.signature)
                    joins.append(edge)

        return joins

    def _orient(self, a: str, b: str) -> JoinEdge:
        relation = self.graph.relation_between(a, b)
        if relation.from_entity == a:
            local_field, foreign_field = relation.local_key, relation.foreign_key
        else:
            local_field, foreign_field = relation.foreign_key, relation.local_key

        return JoinEdge(
            from_entity=a,
            to_entity=b,
            local_field=local_field,
            foreign_field=foreign_field,
        )

    def build_plan(
        self,
        root: str,
        filter_node: Optional[FilterNode] = None,
        aggregations: Sequence[AggregationOp] = ()
    ) -> QueryPlan:
        """Full plan: joins for filters and aggregations, plus projection."""
        joins = self.build_join_plan(root, referenced_fields(filter_node, aggregations))
        joined = {root} | {join.to_entity for join in joins}

        # Root row plus every joined field the caller filtered on
        projection = [FieldRef(root, "*")]
        for clause in iter_clauses(filter_node):
            ref = clause.ref
            if ref.entity != root and ref.entity in joined and ref not in projection:
                projection.append(ref)

        plan = QueryPlan(root_entity=root, joins=joins, projection=projection)
        logger.debug(
            f"Planned {len(joins)} joins from '{root}': "
            f"{' -> '.join(plan.joined_entities)}"
        )
        return plan
