"""Core DashQL query engine."""

from typing import Any, Dict, List, Mapping, Optional, Union
import duckdb
import logging
import uuid

from pymongo.database import Database

from .exceptions import DashQLError, PlanningError, wrap_backend_error
from .execution import (
    DuckDBExecutor, MongoExecutor, QueryExecutor, ResultEnhancer, predicate_summary,
)
from .metrics import MetricsCollector
from .planning import JoinPlanner, PathResolver
from .schema import QueryPlan, QueryRequest, QueryResponse, RelationGraph, restrict_filter
from .schema.model import referenced_fields

logger = logging.getLogger(__name__)


# Hub entity most relations radiate from
DEFAULT_ROOT = "invoices"


class QueryEngine:
    """Plans, executes and enhances declarative filter/aggregation requests."""

    def __init__(self,
                 graph: RelationGraph,
                 executor: QueryExecutor,
                 enhancer: Optional[ResultEnhancer] = None,
                 default_root: Optional[str] = DEFAULT_ROOT,
                 strict_paths: bool = True):
        """
        Initialize the engine.

        Args:
            graph: Relation graph between entities
            executor: Backend executor; its translator builds the statements
            enhancer: Optional result enhancer applied to detail rows
            default_root: Hub entity used when the request names no root
            strict_paths: Fail with NoPathError when a referenced entity is
                unreachable from the root, instead of dropping its filters
        """
        self.graph = graph
        self.executor = executor
        self.enhancer = enhancer
        self.default_root = default_root
        self.planner = JoinPlanner(graph, strict=strict_paths)

    @classmethod
    def for_duckdb(cls,
                   connection: duckdb.DuckDBPyConnection,
                   graph: RelationGraph,
                   enhance: bool = True,
                   enable_metrics: bool = True,
                   metrics_history_size: int = 10000,
                   default_root: Optional[str] = DEFAULT_ROOT,
                   strict_paths: bool = True,
                   **executor_kwargs) -> "QueryEngine":
        """Engine over a DuckDB connection; extra kwargs configure the executor."""
        executor = DuckDBExecutor(
            connection,
            metrics_collector=_metrics(enable_metrics, metrics_history_size, executor_kwargs),
            **executor_kwargs
        )
        enhancer = ResultEnhancer(executor, graph, default_key="id") if enhance else None
        return cls(graph, executor, enhancer, default_root=default_root, strict_paths=strict_paths)

    @classmethod
    def for_mongo(cls,
                  database: Database,
                  graph: RelationGraph,
                  enhance: bool = True,
                  enable_metrics: bool = True,
                  metrics_history_size: int = 10000,
                  default_root: Optional[str] = DEFAULT_ROOT,
                  strict_paths: bool = True,
                  **executor_kwargs) -> "QueryEngine":
        """Engine over a pymongo database; extra kwargs configure the executor."""
        executor = MongoExecutor(
            database,
            metrics_collector=_metrics(enable_metrics, metrics_history_size, executor_kwargs),
            **executor_kwargs
        )
        enhancer = ResultEnhancer(executor, graph, default_key="_id") if enhance else None
        return cls(graph, executor, enhancer, default_root=default_root, strict_paths=strict_paths)

    def resolve_root(self, request: QueryRequest) -> str:
        """Pick the root entity for a request.

        An explicit root wins. Otherwise the hub is used when it is
        referenced, when several entities are, or when the lone referenced
        entity is connected to it. An entity the hub cannot reach is its
        own root.
        """
        if request.root:
            return request.root

        entities: List[str] = []
        for ref in referenced_fields(request.filter, request.aggregations):
            if ref.entity not in entities:
                entities.append(ref.entity)

        hub = self.default_root
        if hub and (hub in entities or len(entities) > 1):
            return hub
        if len(entities) == 1:
            entity = entities[0]
            if hub and PathResolver(self.graph).find_path(hub, entity) is not None:
                return hub
            return entity
        if len(entities) > 1:
            raise PlanningError(
                f"Request references {', '.join(entities)} but no root was given",
                context={"entities": entities},
                suggestions=["Pass 'root' in the request or configure a default root"]
            )
        if hub:
            return hub

        raise PlanningError(
            "Request references no entity and no default root is configured",
            suggestions=["Pass 'root' in the request or configure a default root"]
        )

    def plan(self, request: Union[QueryRequest, Mapping[str, Any]]) -> QueryPlan:
        """Build the query plan for a request without executing it."""
        request = self._as_request(request)
        root = self.resolve_root(request)
        return self.planner.build_plan(root, request.filter, request.aggregations)

    async def run(
        self,
        request: Union[QueryRequest, Mapping[str, Any]],
        correlation_id: Optional[str] = None
    ) -> QueryResponse:
        """Plan, execute and enhance a request."""
        correlation_id = correlation_id or str(uuid.uuid4())
        request = self._as_request(request)
        plan = self.plan(request)

        filter_node = request.filter
        aggregations = request.aggregations
        if not self.planner.strict:
            # Unreachable entities were left out of the plan; so are their clauses
            joined = plan.joined_entities
            filter_node = restrict_filter(filter_node, joined)
            aggregations = [op for op in aggregations if op.entity in joined]

        predicate = self.executor.translator.translate(filter_node, plan.root_entity)
        logger.debug(
            f"[{correlation_id}] Running query rooted at '{plan.root_entity}'",
            extra={
                "correlation_id": correlation_id,
                "plan": plan.to_dict(),
                "predicate": predicate_summary(predicate)
            }
        )

        context = {
            "correlation_id": correlation_id,
            "root_entity": plan.root_entity,
            "operation": "query",
        }

        try:
            result = await self.executor.execute(plan, predicate, aggregations, context)

            rows = result.rows
            if self.enhancer:
                rows = await self.enhancer.enhance(rows, context)
        except DashQLError:
            raise
        except Exception as e:
            raise wrap_backend_error(
                e,
                correlation_id=correlation_id,
                entity=plan.root_entity,
                operation="query"
            ) from e

        return QueryResponse(
            plan=plan,
            rows=rows,
            aggregates=result.aggregates if request.aggregations else None
        )

    @staticmethod
    def _as_request(request: Union[QueryRequest, Mapping[str, Any]]) -> QueryRequest:
        if isinstance(request, QueryRequest):
            return request
        return QueryRequest.from_dict(request)

    def get_stats(self) -> Dict[str, Any]:
        """Execution statistics, plus collected metrics when enabled."""
        stats = {"executor": self.executor.get_stats()}
        if self.executor.metrics:
            stats["metrics"] = self.executor.metrics.get_stats()
        return stats

    def close(self) -> None:
        """Release worker threads. Backend handles stay with the caller."""
        self.executor.close()


def _metrics(enabled: bool, history_size: int, executor_kwargs: Dict[str, Any]) -> Optional[MetricsCollector]:
    if not enabled:
        return None
    return MetricsCollector(
        max_history=history_size,
        keep_statements=executor_kwargs.get("log_queries", False)
    )
