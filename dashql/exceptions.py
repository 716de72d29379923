"""Custom exceptions for DashQL with structured error context."""

from typing import Optional, Dict, Any, List
import logging
import uuid

logger = logging.getLogger(__name__)


class DashQLError(Exception):
    """Base exception for all DashQL errors."""

    # Whether the error was caused by the request rather than the backend
    client_error = True

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        correlation_id: Optional[str] = None
    ):
        """
        Initialize DashQL error with rich context.

        Args:
            message: The error message
            error_code: Optional error code for categorization
            context: Additional context about the error
            suggestions: List of suggestions to fix the error
            correlation_id: ID to track this error across logs
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "DASHQL_ERROR"
        self.context = context or {}
        self.suggestions = suggestions or []
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
            "suggestions": self.suggestions,
            "correlation_id": self.correlation_id
        }

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [f"[{self.error_code}] {self.message}"]

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.suggestions:
            parts.append("Suggestions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                parts.append(f"  {i}. {suggestion}")

        parts.append(f"Correlation ID: {self.correlation_id}")

        return "\n".join(parts)


class ConfigurationError(DashQLError):
    """Invalid relation graph or engine configuration."""

    client_error = False

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if source:
            context["source"] = source

        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            context=context,
            **kwargs
        )


class PlanningError(DashQLError):
    """Error while building a query plan."""

    def __init__(self, message: str, root_entity: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if root_entity:
            context["root"] = root_entity

        error_code = kwargs.pop("error_code", "PLANNING_ERROR")
        super().__init__(
            message=message,
            error_code=error_code,
            context=context,
            **kwargs
        )


class NoPathError(PlanningError):
    """No join path connects two entities in the relation graph."""

    def __init__(self, from_entity: str, to_entity: str, **kwargs):
        self.from_entity = from_entity
        self.to_entity = to_entity

        context = kwargs.pop("context", {})
        context.update({"from": from_entity, "to": to_entity})

        suggestions = kwargs.pop("suggestions", None) or [
            f"Check that '{to_entity}' is related to '{from_entity}' in the relation config",
            "Choose a root entity connected to every filtered entity",
        ]

        super().__init__(
            f"No join path from '{from_entity}' to '{to_entity}'",
            error_code="NO_PATH",
            context=context,
            suggestions=suggestions,
            **kwargs
        )


class FilterError(DashQLError):
    """Error in a filter or aggregation clause."""

    def __init__(
        self,
        message: str,
        filter_field: Optional[str] = None,
        filter_operation: Optional[str] = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if filter_field:
            context["filter_field"] = filter_field
        if filter_operation:
            context["filter_operation"] = filter_operation

        error_code = kwargs.pop("error_code", "FILTER_ERROR")
        super().__init__(
            message=message,
            error_code=error_code,
            context=context,
            **kwargs
        )


class UnsupportedOperatorError(FilterError):
    """Operator tag is not part of the filter or aggregation vocabulary."""

    def __init__(self, operator: Any, **kwargs):
        self.operator = operator
        super().__init__(
            f"Unsupported operator: {operator!r}",
            filter_operation=str(operator),
            error_code="UNSUPPORTED_OPERATOR",
            **kwargs
        )


class MalformedFilterError(FilterError):
    """Filter clause is structurally invalid."""

    def __init__(self, reason: str, **kwargs):
        self.reason = reason
        super().__init__(
            f"Malformed filter: {reason}",
            error_code="MALFORMED_FILTER",
            **kwargs
        )


class BackendExecutionError(DashQLError):
    """Opaque wrapper around a database driver failure.

    The driver's message never appears in the error text or its serialized
    form; it is logged and kept as ``__cause__`` for operators.
    """

    client_error = False

    def __init__(self, message: str = "Query execution failed", **kwargs):
        super().__init__(
            message=message,
            error_code="BACKEND_ERROR",
            **kwargs
        )


def wrap_backend_error(original_error: Exception, **context) -> BackendExecutionError:
    """
    Turn a driver exception into an opaque BackendExecutionError.

    Args:
        original_error: The exception raised by the database driver
        **context: Safe context to attach (entity, operation, correlation_id)

    Returns:
        BackendExecutionError chained to the original error
    """
    correlation_id = context.pop("correlation_id", None)
    safe_context = {
        key: value for key, value in context.items()
        if key in ("entity", "operation")
    }

    logger.error(
        f"[{correlation_id}] Backend failure ({type(original_error).__name__}): {original_error}",
        extra={"correlation_id": correlation_id, **safe_context}
    )

    error = BackendExecutionError(
        context=safe_context,
        correlation_id=correlation_id,
    )
    error.__cause__ = original_error
    return error
