"""
Getting Started with DashQL

This example builds a small sales database in DuckDB, declares how its
tables relate, and runs a filter request that spans several of them.
"""

import asyncio
import json
from pathlib import Path

import duckdb
from dashql import QueryEngine, RelationGraph


def create_sample_database():
    """Create a sales database with customers, products and invoices."""
    conn = duckdb.connect(":memory:")

    conn.execute("""
        CREATE TABLE customers (
            id INTEGER PRIMARY KEY,
            name VARCHAR,
            region VARCHAR,
            zone VARCHAR
        )
    """)
    conn.execute("""
        CREATE TABLE categories (
            id INTEGER PRIMARY KEY,
            name VARCHAR
        )
    """)
    conn.execute("""
        CREATE TABLE products (
            id INTEGER PRIMARY KEY,
            name VARCHAR,
            category_id INTEGER,
            price DOUBLE
        )
    """)
    conn.execute("""
        CREATE TABLE invoices (
            id INTEGER PRIMARY KEY,
            customer_id INTEGER,
            product_id INTEGER,
            category_id INTEGER,
            amount DOUBLE,
            invoice_date DATE
        )
    """)

    conn.execute("""
        INSERT INTO customers VALUES
        (1, 'Acme Corp', 'North', 'N1'),
        (2, 'Globex', 'South', 'S2'),
        (3, 'Initech', 'North', 'N2')
    """)
    conn.execute("INSERT INTO categories VALUES (1, 'Hardware'), (2, 'Software')")
    conn.execute("""
        INSERT INTO products VALUES
        (1, 'Widget', 1, 25.0),
        (2, 'Gadget', 1, 120.0),
        (3, 'License', 2, 499.0)
    """)
    conn.execute("""
        INSERT INTO invoices VALUES
        (1, 1, 1, 1, 50.0, '2024-01-05'),
        (2, 1, 3, 2, 499.0, '2024-01-20'),
        (3, 2, 2, 1, 240.0, '2024-02-11'),
        (4, 3, 3, 2, 998.0, '2024-03-02')
    """)

    return conn


async def main():
    """Basic DashQL usage example."""
    print("📊 Getting Started with DashQL\n")

    conn = create_sample_database()
    graph = RelationGraph.from_file(Path(__file__).with_name("sales_relations.json"))
    engine = QueryEngine.for_duckdb(conn, graph)

    request = {
        "filters": [
            {"entity": "customers", "field": "region", "operator": "eq", "value": "North"},
            {"entity": "invoices", "field": "amount", "operator": "gt", "value": 100},
            {"entity": "invoices", "field": "amount", "operator": "sum"},
        ]
    }

    print("1. Join plan:")
    print(json.dumps(engine.plan(request).to_dict(), indent=2))

    print("\n2. Results:")
    response = await engine.run(request)
    print(json.dumps(response.to_dict(), indent=2, default=str))

    engine.close()


if __name__ == "__main__":
    asyncio.run(main())
