"""Shared fixtures: a small sales schema in DuckDB and its relation graph."""

import pytest
import duckdb

from dashql.schema import RelationGraph


SALES_RELATIONS = [
    {"from": "customers", "to": "invoices", "localKey": "id", "foreignKey": "customer_id"},
    {"from": "products", "to": "invoices", "localKey": "id", "foreignKey": "product_id"},
    {"from": "categories", "to": "invoices", "localKey": "id", "foreignKey": "category_id"},
    {"from": "categories", "to": "products", "localKey": "id", "foreignKey": "category_id"},
]

# Document stores key every collection by _id
MONGO_RELATIONS = [
    {**relation, "localKey": "_id"} for relation in SALES_RELATIONS
]

SALES_SCHEMA = [
    """
    CREATE TABLE customers (
        id INTEGER PRIMARY KEY,
        name VARCHAR,
        region VARCHAR,
        zone VARCHAR
    )
    """,
    """
    CREATE TABLE categories (
        id INTEGER PRIMARY KEY,
        name VARCHAR
    )
    """,
    """
    CREATE TABLE products (
        id INTEGER PRIMARY KEY,
        name VARCHAR,
        category_id INTEGER,
        price DOUBLE
    )
    """,
    """
    CREATE TABLE invoices (
        id INTEGER PRIMARY KEY,
        customer_id INTEGER,
        product_id INTEGER,
        category_id INTEGER,
        amount DOUBLE,
        invoice_date DATE,
        note VARCHAR
    )
    """,
]

SALES_DATA = [
    """
    INSERT INTO customers VALUES
    (1, 'Acme Corp', 'North', 'N1'),
    (2, 'Globex', 'South', 'S2'),
    (3, 'Initech', 'North', 'N2')
    """,
    "INSERT INTO categories VALUES (1, 'Hardware'), (2, 'Software')",
    """
    INSERT INTO products VALUES
    (1, 'Widget', 1, 25.0),
    (2, 'Gadget', 1, 120.0),
    (3, 'License', 2, 499.0)
    """,
    # Invoice 5 points at a customer that does not exist
    """
    INSERT INTO invoices VALUES
    (1, 1, 1, 1, 50.0, '2024-01-05', '10% off'),
    (2, 1, 3, 2, 499.0, '2024-01-20', NULL),
    (3, 2, 2, 1, 240.0, '2024-02-11', 'rush_order'),
    (4, 3, 3, 2, 998.0, '2024-03-02', NULL),
    (5, 9, 1, 1, 10.0, '2024-03-10', 'sample')
    """,
]


@pytest.fixture
def sales_graph():
    """Relation graph over the sales schema."""
    return RelationGraph.from_config(SALES_RELATIONS)


@pytest.fixture
def mongo_graph():
    """Relation graph over the sales collections."""
    return RelationGraph.from_config(MONGO_RELATIONS)


@pytest.fixture
def sales_db():
    """In-memory DuckDB database with sales data."""
    conn = duckdb.connect(":memory:")
    for statement in SALES_SCHEMA + SALES_DATA:
        conn.execute(statement)
    yield conn
    conn.close()


@pytest.fixture
def relations_file(tmp_path):
    """Relation graph written to a JSON file."""
    import json

    path = tmp_path / "relations.json"
    path.write_text(json.dumps(SALES_RELATIONS))
    return path


@pytest.fixture
def sales_db_file(tmp_path):
    """Sales database persisted to a DuckDB file."""
    path = tmp_path / "sales.duckdb"
    conn = duckdb.connect(str(path))
    for statement in SALES_SCHEMA + SALES_DATA:
        conn.execute(statement)
    conn.close()
    return path


ACME_ID = "507f1f77bcf86cd799439011"
GLOBEX_ID = "507f1f77bcf86cd799439012"
INITECH_ID = "507f1f77bcf86cd799439013"


@pytest.fixture
def sales_documents():
    """In-process MongoDB database with the sales data as documents."""
    from datetime import datetime

    import mongomock
    from bson import ObjectId

    acme, globex, initech = ObjectId(ACME_ID), ObjectId(GLOBEX_ID), ObjectId(INITECH_ID)
    client = mongomock.MongoClient()
    db = client["sales"]

    db.customers.insert_many([
        {"_id": acme, "name": "Acme Corp", "region": "North", "zone": "N1"},
        {"_id": globex, "name": "Globex", "region": "South", "zone": "S2"},
        {"_id": initech, "name": "Initech", "region": "North", "zone": "N2"},
    ])
    db.categories.insert_many([
        {"_id": 1, "name": "Hardware"},
        {"_id": 2, "name": "Software"},
    ])
    db.products.insert_many([
        {"_id": 1, "name": "Widget", "category_id": 1, "price": 25.0},
        {"_id": 2, "name": "Gadget", "category_id": 1, "price": 120.0},
        {"_id": 3, "name": "License", "category_id": 2, "price": 499.0},
    ])
    # Invoice 5 points at a missing customer; invoice 6 stores its key as a plain string
    db.invoices.insert_many([
        {"_id": 1, "customer_id": acme, "product_id": 1, "category_id": 1,
         "amount": 50.0, "invoice_date": datetime(2024, 1, 5)},
        {"_id": 2, "customer_id": acme, "product_id": 3, "category_id": 2,
         "amount": 499.0, "invoice_date": datetime(2024, 1, 20)},
        {"_id": 3, "customer_id": globex, "product_id": 2, "category_id": 1,
         "amount": 240.0, "invoice_date": datetime(2024, 2, 11)},
        {"_id": 4, "customer_id": initech, "product_id": 3, "category_id": 2,
         "amount": 998.0, "invoice_date": datetime(2024, 3, 2)},
        {"_id": 5, "customer_id": ObjectId("507f1f77bcf86cd799439099"), "product_id": 1, "category_id": 1,
         "amount": 10.0, "invoice_date": datetime(2024, 3, 10)},
        {"_id": 6, "customer_id": ACME_ID, "product_id": 1, "category_id": 1,
         "amount": 1.0, "invoice_date": datetime(2024, 4, 1)},
    ])

    yield db
    client.close()
