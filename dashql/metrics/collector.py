"""Metrics collection for DashQL statements."""

import time
import threading
import statistics
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional


@dataclass
class StatementMetrics:
    """Timing and outcome of one executed statement."""

    correlation_id: str
    operation: str  # detail, aggregate, lookup
    entity: Optional[str]
    started_at: float
    finished_at: Optional[float] = None
    duration_ms: Optional[float] = None
    row_count: Optional[int] = None
    error: Optional[str] = None
    retries: int = 0
    statement: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    def finish(self, row_count: Optional[int] = None, error: Optional[str] = None):
        self.finished_at = time.time()
        self.duration_ms = (self.finished_at - self.started_at) * 1000
        self.row_count = row_count
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'correlation_id': self.correlation_id,
            'operation': self.operation,
            'entity': self.entity,
            'duration_ms': self.duration_ms,
            'row_count': self.row_count,
            'error': self.error,
            'retries': self.retries,
            'timestamp': datetime.fromtimestamp(self.started_at).isoformat(),
            'statement': self.statement,
        }


def _summarize(values: List[float]) -> Dict[str, float]:
    if not values:
        return {}
    return {
        'min': min(values),
        'max': max(values),
        'mean': statistics.mean(values),
        'p95': statistics.quantiles(values, n=20)[18] if len(values) > 1 else values[0],
    }


class MetricsCollector:
    """Thread-safe counters and bounded history of executed statements.

    Counters cover every statement seen since the last reset. Duration and
    row-count summaries are computed from the retained history only.
    """

    def __init__(self, max_history: int = 10000, keep_statements: bool = False):
        """
        Args:
            max_history: Number of finished or in-flight statements to retain
            keep_statements: Store rendered statement text with each entry
        """
        self.max_history = max_history
        self.keep_statements = keep_statements
        self._lock = threading.Lock()
        self._history: Deque[StatementMetrics] = deque(maxlen=max_history)
        self._totals: Counter = Counter()
        self._operations: Counter = Counter()
        self._entity_statements: Counter = Counter()
        self._entity_errors: Counter = Counter()

    def start_statement(self,
                        correlation_id: str,
                        operation: str,
                        entity: Optional[str] = None,
                        statement: Optional[str] = None) -> StatementMetrics:
        """Begin tracking a statement and return its record."""
        metrics = StatementMetrics(
            correlation_id=correlation_id,
            operation=operation,
            entity=entity,
            started_at=time.time(),
            statement=statement if self.keep_statements else None,
        )

        with self._lock:
            self._history.append(metrics)
            self._totals['statements'] += 1
            self._operations[operation] += 1
            if entity:
                self._entity_statements[entity] += 1

        return metrics

    def finish_statement(self,
                         metrics: StatementMetrics,
                         row_count: Optional[int] = None,
                         error: Optional[str] = None):
        metrics.finish(row_count=row_count, error=error)

        with self._lock:
            self._totals['retries'] += metrics.retries
            if error:
                self._totals['errors'] += 1
                if metrics.entity:
                    self._entity_errors[metrics.entity] += 1

    def record_retry(self, metrics: StatementMetrics):
        with self._lock:
            metrics.retries += 1

    def get_stats(self) -> Dict[str, Any]:
        """Counters plus per-operation summaries of the retained history."""
        with self._lock:
            finished = [m for m in self._history if m.finished]
            failed = [m for m in finished if m.error]
            succeeded = [m for m in finished if not m.error]
            total = self._totals['statements']

            durations: Dict[str, List[float]] = {}
            for m in succeeded:
                durations.setdefault(m.operation, []).append(m.duration_ms)

            rows = [m.row_count for m in succeeded if m.row_count is not None]

            return {
                'summary': {
                    'total_statements': total,
                    'total_errors': self._totals['errors'],
                    'error_rate': self._totals['errors'] / total if total else 0,
                    'total_retries': self._totals['retries'],
                },
                'operations': dict(self._operations),
                'entities': {
                    'statements': dict(self._entity_statements),
                    'errors': dict(self._entity_errors),
                },
                'durations_ms': {op: _summarize(values) for op, values in durations.items()},
                'row_counts': {'total': sum(rows), **_summarize(rows)} if rows else {},
                'recent_errors': [m.to_dict() for m in failed[-10:]],
            }

    def history(self,
                limit: int = 100,
                entity: Optional[str] = None,
                operation: Optional[str] = None,
                include_errors: bool = True) -> List[Dict[str, Any]]:
        """Most recent statements, oldest first, optionally filtered."""
        with self._lock:
            entries = list(self._history)

        if entity:
            entries = [m for m in entries if m.entity == entity]
        if operation:
            entries = [m for m in entries if m.operation == operation]
        if not include_errors:
            entries = [m for m in entries if not m.error]

        return [m.to_dict() for m in entries[-limit:]]

    def reset(self):
        with self._lock:
            self._history.clear()
            self._totals.clear()
            self._operations.clear()
            self._entity_statements.clear()
            self._entity_errors.clear()
