"""Field discovery for DuckDB databases and MongoDB collections."""

from dataclasses import dataclass
from typing import List, Dict, Optional
import duckdb
from pymongo.database import Database

from .model import FieldRef


@dataclass
class ColumnInfo:
    """Information about a database column."""
    name: str
    data_type: str
    is_nullable: bool


@dataclass
class TableInfo:
    """Information about a database table."""
    name: str
    columns: List[ColumnInfo]


class DuckDBIntrospector:
    """Lists the tables and fields a request can filter on."""

    def __init__(self, connection: duckdb.DuckDBPyConnection):
        self.connection = connection

    def get_tables(self) -> List[str]:
        """Get all table names in the database."""
        result = self.connection.execute(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'main'
                AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """
        ).fetchall()
        return [row[0] for row in result]

    def get_table_info(self, table_name: str) -> TableInfo:
        """Get the columns of a table in declaration order."""
        result = self.connection.execute(
            """
            SELECT
                column_name,
                data_type,
                is_nullable
            FROM information_schema.columns
            WHERE table_schema = 'main'
                AND table_name = ?
            ORDER BY ordinal_position
            """,
            [table_name]
        ).fetchall()

        columns = [
            ColumnInfo(name=row[0], data_type=row[1], is_nullable=row[2] == 'YES')
            for row in result
        ]
        return TableInfo(name=table_name, columns=columns)

    def get_fields(
        self,
        tables: Optional[List[str]] = None,
        skip: tuple = ("id",)
    ) -> List[FieldRef]:
        """Every filterable field, skipping identifier columns."""
        fields = []
        for table_name in tables or self.get_tables():
            for column in self.get_table_info(table_name).columns:
                if column.name not in skip:
                    fields.append(FieldRef(table_name, column.name))
        return fields

    def get_schema(self) -> Dict[str, TableInfo]:
        """Get complete schema information for all tables."""
        return {name: self.get_table_info(name) for name in self.get_tables()}


class MongoIntrospector:
    """Lists the collections and fields a request can filter on.

    Collections carry no schema, so fields are read off one sampled
    document per collection.
    """

    def __init__(self, database: Database):
        self.database = database

    def get_tables(self) -> List[str]:
        """Get all collection names, sorted."""
        return sorted(self.database.list_collection_names())

    def get_table_info(self, collection: str) -> TableInfo:
        """Describe a collection from a sampled document."""
        document = self.database[collection].find_one()
        if not document:
            return TableInfo(name=collection, columns=[])

        columns = [
            ColumnInfo(name=key, data_type=type(value).__name__, is_nullable=True)
            for key, value in document.items()
        ]
        return TableInfo(name=collection, columns=columns)

    def get_fields(
        self,
        collections: Optional[List[str]] = None,
        skip: tuple = ("_id",)
    ) -> List[FieldRef]:
        """Every field seen in the sampled documents, skipping ``_id``."""
        fields = []
        for collection in collections or self.get_tables():
            for column in self.get_table_info(collection).columns:
                if column.name not in skip:
                    fields.append(FieldRef(collection, column.name))
        return fields
