"""Statement translation, execution and result enhancement."""

from .translator import QueryTranslator, SQLTranslator, Statement, predicate_summary
from .pipeline import PipelineTranslator, coerce_value
from .executor import QueryExecutor, DuckDBExecutor, with_retry
from .mongo import MongoExecutor
from .enhancer import ResultEnhancer, LookupSpec, DEFAULT_LOOKUPS

__all__ = [
    "QueryTranslator",
    "SQLTranslator",
    "PipelineTranslator",
    "Statement",
    "predicate_summary",
    "coerce_value",
    "QueryExecutor",
    "DuckDBExecutor",
    "MongoExecutor",
    "with_retry",
    "ResultEnhancer",
    "LookupSpec",
    "DEFAULT_LOOKUPS",
]
