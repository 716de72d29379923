"""Execution against a MongoDB database."""

from typing import Any, Dict, List, Optional
import logging

from pymongo.database import Database
from pymongo.errors import AutoReconnect

from .executor import QueryExecutor
from .pipeline import PipelineTranslator
from .translator import Statement

logger = logging.getLogger(__name__)


# NetworkTimeout and the connection-failure errors derive from AutoReconnect
DEFAULT_RETRYABLE_ERRORS = {
    AutoReconnect,
}


class MongoExecutor(QueryExecutor):
    """Runs aggregation pipelines on a caller-supplied pymongo database."""

    default_retryable_errors = DEFAULT_RETRYABLE_ERRORS

    def __init__(self,
                 database: Database,
                 translator: Optional[PipelineTranslator] = None,
                 allow_disk_use: bool = True,
                 **kwargs):
        """
        Initialize the executor.

        Args:
            database: Database handle; one collection per entity
            translator: Pipeline translator
            allow_disk_use: Let large pipelines spill to disk on the server
            **kwargs: Passed through to QueryExecutor
        """
        super().__init__(translator or PipelineTranslator(), **kwargs)
        self.database = database
        self.allow_disk_use = allow_disk_use

    def _execute_sync(self, statement: Statement) -> List[Dict[str, Any]]:
        collection = self.database[statement.entity]

        if statement.operation == "lookup":
            cursor = collection.find(statement.body)
        else:
            cursor = collection.aggregate(statement.body, allowDiskUse=self.allow_disk_use)

        return list(cursor)
