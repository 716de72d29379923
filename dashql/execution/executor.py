"""Async statement execution."""

import asyncio
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Type
import duckdb
import threading
import time
import logging
import uuid
from functools import wraps

from ..exceptions import DashQLError, wrap_backend_error
from ..metrics import MetricsCollector, StatementMetrics
from ..schema.model import (
    AggregateFunction, AggregateValue, AggregationOp, QueryPlan, QueryResult,
)
from .translator import QueryTranslator, SQLTranslator, Statement

logger = logging.getLogger(__name__)


# Default retryable error types for DuckDB
DEFAULT_RETRYABLE_ERRORS = {
    duckdb.ConnectionException,
    duckdb.IOException,
}


def with_retry(max_retries: int = 3,
               delay: float = 0.1,
               backoff: float = 2.0,
               retryable_errors: Optional[Set[Type[Exception]]] = None,
               on_retry: Optional[Callable[[int, Exception], None]] = None):
    """
    Decorator to retry a function on specific errors with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        delay: Initial delay between retries in seconds
        backoff: Multiplier for exponential backoff
        retryable_errors: Set of exception types to retry on
        on_retry: Called with the attempt number and error before each retry
    """
    if retryable_errors is None:
        retryable_errors = DEFAULT_RETRYABLE_ERRORS

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    last_exception = e

                    # Non-retryable error, raise immediately
                    if not any(isinstance(e, error_type) for error_type in retryable_errors):
                        raise

                    if attempt < max_retries:
                        logger.warning(
                            f"Statement failed (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                            f"Retrying in {current_delay:.2f}s..."
                        )
                        if on_retry:
                            on_retry(attempt + 1, e)
                        time.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(
                            f"Statement failed after {max_retries + 1} attempts: {e}"
                        )

            # All retries exhausted
            raise last_exception

        return wrapper

    return decorator


class QueryExecutor(ABC):
    """Runs translated plans through an externally supplied backend handle.

    Driver calls block, so they run in a thread pool; the detail and
    aggregate statements of one request are awaited concurrently.
    """

    default_retryable_errors: Set[Type[Exception]] = set()

    def __init__(self,
                 translator: QueryTranslator,
                 max_workers: int = 4,
                 max_retries: int = 3,
                 retry_delay: float = 0.1,
                 retry_backoff: float = 2.0,
                 retryable_errors: Optional[Set[Type[Exception]]] = None,
                 log_queries: bool = False,
                 log_slow_queries: bool = True,
                 slow_query_ms: int = 1000,
                 metrics_collector: Optional[MetricsCollector] = None):
        """
        Initialize the executor.

        Args:
            translator: Translator producing this backend's statements
            max_workers: Maximum number of worker threads
            max_retries: Maximum number of retry attempts for failed statements
            retry_delay: Initial delay between retries in seconds
            retry_backoff: Multiplier for exponential backoff
            retryable_errors: Set of exception types to retry on
            log_queries: Whether to log every statement at DEBUG level
            log_slow_queries: Whether to log slow statements at WARNING level
            slow_query_ms: Threshold in milliseconds for slow statement logging
            metrics_collector: Optional metrics collector instance
        """
        self.translator = translator

        # Retry configuration
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.retryable_errors = retryable_errors or self.default_retryable_errors

        # Logging configuration
        self.log_queries = log_queries
        self.log_slow_queries = log_slow_queries
        self.slow_query_ms = slow_query_ms

        # Performance tracking
        self._query_count = 0
        self._total_query_time = 0.0
        self._lock = threading.Lock()

        self.metrics = metrics_collector
        self.max_workers = max_workers
        self.executor = ThreadPoolExecutor(max_workers=max_workers)

    async def execute(
        self,
        plan: QueryPlan,
        predicate: Any,
        aggregations: Sequence[AggregationOp] = (),
        context: Optional[Dict[str, Any]] = None
    ) -> QueryResult:
        """Run the detail statement and, if requested, the aggregate statement."""
        detail = self.translator.build_select(plan, predicate)
        tasks = [self.run_statement(detail, context)]

        aggregate = None
        if aggregations:
            aggregate = self.translator.build_aggregate(plan, predicate, aggregations)
            tasks.append(self.run_statement(aggregate, context))

        results = await asyncio.gather(*tasks)

        aggregates = []
        if aggregate is not None:
            aggregates = self._to_aggregates(aggregations, aggregate.columns, results[1])

        return QueryResult(rows=results[0], aggregates=aggregates)

    @staticmethod
    def _to_aggregates(
        aggregations: Sequence[AggregationOp],
        names: List[str],
        rows: List[Dict[str, Any]]
    ) -> List[AggregateValue]:
        # No matching rows may yield no summary row at all
        summary = rows[0] if rows else {}
        values = []
        for op, name in zip(aggregations, names):
            value = summary.get(name)
            if value is None and op.function is AggregateFunction.COUNT:
                value = 0
            values.append(AggregateValue(alias=name, value=value, function=op.function, field=op.field))
        return values

    async def fetch_by_ids(
        self,
        entity: str,
        key_field: str,
        ids: Sequence[Any],
        context: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch records of ``entity`` whose ``key_field`` is in ``ids``."""
        if not ids:
            return []
        statement = self.translator.build_lookup(entity, key_field, ids)
        return await self.run_statement(statement, context)

    async def run_statement(
        self,
        statement: Statement,
        context: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Execute one statement asynchronously with logging and tracking."""
        correlation_id = context.get("correlation_id") if context else None
        if not correlation_id:
            correlation_id = str(uuid.uuid4())

        statement_metrics = None
        if self.metrics:
            statement_metrics = self.metrics.start_statement(
                correlation_id=correlation_id,
                operation=statement.operation,
                entity=statement.entity,
                statement=str(statement)
            )

        if self.log_queries:
            text = str(statement)
            logger.debug(
                f"[{correlation_id}] Executing {statement.operation} on {statement.entity}: "
                f"{text[:200]}{'...' if len(text) > 200 else ''}",
                extra={"correlation_id": correlation_id, "statement": text, "params": statement.params}
            )

        start_time = time.time()
        loop = asyncio.get_event_loop()

        try:
            rows = await loop.run_in_executor(
                self.executor,
                self._execute_with_retry,
                statement,
                statement_metrics
            )
        except Exception as e:
            execution_time = (time.time() - start_time) * 1000

            if statement_metrics:
                self.metrics.finish_statement(statement_metrics, error=type(e).__name__)

            if isinstance(e, DashQLError):
                raise

            raise wrap_backend_error(
                e,
                correlation_id=correlation_id,
                entity=statement.entity,
                operation=statement.operation,
                execution_time_ms=execution_time
            ) from e

        execution_time = (time.time() - start_time) * 1000

        with self._lock:
            self._query_count += 1
            self._total_query_time += execution_time

        if statement_metrics:
            self.metrics.finish_statement(statement_metrics, row_count=len(rows))

        if self.log_slow_queries and execution_time > self.slow_query_ms:
            logger.warning(
                f"[{correlation_id}] Slow {statement.operation} on {statement.entity}: "
                f"{execution_time:.2f}ms",
                extra={
                    "correlation_id": correlation_id,
                    "execution_time_ms": execution_time,
                    "row_count": len(rows)
                }
            )
        elif self.log_queries:
            logger.debug(
                f"[{correlation_id}] {statement.operation} completed in {execution_time:.2f}ms, "
                f"returned {len(rows)} rows",
                extra={
                    "correlation_id": correlation_id,
                    "execution_time_ms": execution_time,
                    "row_count": len(rows)
                }
            )

        return rows

    def _execute_with_retry(
        self,
        statement: Statement,
        statement_metrics: Optional[StatementMetrics] = None
    ) -> List[Dict[str, Any]]:
        def record(attempt: int, error: Exception) -> None:
            if statement_metrics:
                self.metrics.record_retry(statement_metrics)

        @with_retry(
            max_retries=self.max_retries,
            delay=self.retry_delay,
            backoff=self.retry_backoff,
            retryable_errors=self.retryable_errors,
            on_retry=record
        )
        def attempt():
            return self._execute_sync(statement)

        return attempt()

    @abstractmethod
    def _execute_sync(self, statement: Statement) -> List[Dict[str, Any]]:
        """Run a statement on the calling thread and return rows as dicts."""

    def get_stats(self) -> Dict[str, Any]:
        """Get statement execution statistics."""
        with self._lock:
            avg_time = self._total_query_time / self._query_count if self._query_count > 0 else 0
            return {
                "query_count": self._query_count,
                "total_query_time_ms": self._total_query_time,
                "average_query_time_ms": avg_time,
                "max_workers": self.max_workers,
                "max_retries": self.max_retries,
                "slow_query_threshold_ms": self.slow_query_ms
            }

    def reset_stats(self) -> None:
        """Reset statement execution statistics."""
        with self._lock:
            self._query_count = 0
            self._total_query_time = 0.0

    def close(self):
        """Shut down the worker threads. The backend handle stays open."""
        stats = self.get_stats()
        if stats["query_count"] > 0:
            logger.info(
                f"{type(self).__name__} closing. Executed {stats['query_count']} statements, "
                f"average time: {stats['average_query_time_ms']:.2f}ms"
            )

        self.executor.shutdown(wait=True)


class DuckDBExecutor(QueryExecutor):
    """Executes SQL statements on a caller-supplied DuckDB connection."""

    default_retryable_errors = DEFAULT_RETRYABLE_ERRORS

    def __init__(self,
                 connection: duckdb.DuckDBPyConnection,
                 translator: Optional[SQLTranslator] = None,
                 **kwargs):
        """
        Initialize the executor.

        Args:
            connection: Open DuckDB connection; each statement runs on its own cursor
            translator: SQL translator, defaults to the DuckDB dialect
            **kwargs: Passed through to QueryExecutor
        """
        super().__init__(translator or SQLTranslator(), **kwargs)
        self.connection = connection
        self._cursor_lock = threading.Lock()

    def _execute_sync(self, statement: Statement) -> List[Dict[str, Any]]:
        """Execute a statement on a fresh cursor of the shared connection."""
        with self._cursor_lock:
            cursor = self.connection.cursor()

        try:
            if statement.params:
                result = cursor.execute(statement.body, statement.params)
            else:
                result = cursor.execute(statement.body)

            rows = result.fetchall()
            columns = [desc[0] for desc in result.description] if result.description else []
        finally:
            cursor.close()

        return [
            {col: _to_json_value(value) for col, value in zip(columns, row)}
            for row in rows
        ]


def _to_json_value(value: Any) -> Any:
    """Convert driver types to JSON-serializable values."""
    if isinstance(value, memoryview):
        return value.tobytes().decode('utf-8', errors='replace')
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value
