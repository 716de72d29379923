"""DashQL - declarative filter and aggregation queries over related entities."""

from .core import QueryEngine
from .schema import QueryRequest, QueryResponse, RelationGraph

__version__ = "0.1.0"
__all__ = ["QueryEngine", "QueryRequest", "QueryResponse", "RelationGraph"]
