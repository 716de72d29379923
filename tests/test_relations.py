"""Tests for the relation graph."""

import pytest

from dashql.exceptions import ConfigurationError
from dashql.schema import Relation, RelationGraph


class TestRelationGraph:
    """Test graph construction and lookups."""

    def test_entities_in_declaration_order(self, sales_graph):
        """Test entities are listed in first-declared order."""
        assert sales_graph.entities == ["customers", "invoices", "products", "categories"]
        assert len(sales_graph) == 4

    def test_neighbors_are_undirected(self, sales_graph):
        """Test both endpoints of a relation see each other."""
        assert sales_graph.neighbors("invoices") == ["customers", "products", "categories"]
        assert sales_graph.neighbors("customers") == ["invoices"]
        assert sales_graph.neighbors("products") == ["invoices", "categories"]

    def test_unknown_entity_has_no_neighbors(self, sales_graph):
        """Test unknown entities are isolated rather than errors."""
        assert sales_graph.neighbors("suppliers") == []
        assert "suppliers" not in sales_graph
        assert "invoices" in sales_graph

    def test_relation_between_either_direction(self, sales_graph):
        """Test the relation is found regardless of argument order."""
        forward = sales_graph.relation_between("customers", "invoices")
        backward = sales_graph.relation_between("invoices", "customers")

        assert forward is backward
        assert forward.local_key == "id"
        assert forward.foreign_key == "customer_id"
        assert sales_graph.relation_between("customers", "products") is None

    def test_first_declared_relation_wins(self):
        """Test duplicate pairs resolve to the first declaration."""
        graph = RelationGraph([
            Relation("a", "b", "id", "a_id"),
            Relation("b", "a", "id", "b_id"),
        ])

        assert graph.relation_between("b", "a").foreign_key == "a_id"
        assert graph.neighbors("a") == ["b"]

    def test_referenced_key(self, sales_graph):
        """Test the key a foreign key column points at."""
        assert sales_graph.referenced_key("customers", "customer_id") == "id"
        assert sales_graph.referenced_key("categories", "category_id") == "id"
        assert sales_graph.referenced_key("customers", "product_id") is None

    def test_self_relation_rejected(self):
        """Test a relation must join two distinct entities."""
        with pytest.raises(ConfigurationError) as exc_info:
            RelationGraph([Relation("a", "a", "id", "parent_id")])

        assert exc_info.value.error_code == "CONFIGURATION_ERROR"

    def test_to_config_round_trip(self, sales_graph):
        """Test the graph serializes to the config it came from."""
        rebuilt = RelationGraph.from_config(sales_graph.to_config())
        assert rebuilt.relations == sales_graph.relations


class TestRelationConfig:
    """Test loading relations from config."""

    def test_short_key_aliases(self):
        """Test 'local' and 'foreign' are accepted."""
        graph = RelationGraph.from_config([
            {"from": "customers", "to": "invoices", "local": "_id", "foreign": "customer_id"}
        ])

        relation = graph.relations[0]
        assert relation.local_key == "_id"
        assert relation.foreign_key == "customer_id"

    def test_missing_keys(self):
        """Test records missing fields are rejected with their names."""
        with pytest.raises(ConfigurationError) as exc_info:
            RelationGraph.from_config([{"from": "customers", "to": "invoices"}], source="rel.json")

        assert "localKey" in exc_info.value.message
        assert "foreignKey" in exc_info.value.message
        assert exc_info.value.context["source"] == "rel.json"

    def test_config_must_be_list(self):
        """Test a non-list config is rejected."""
        with pytest.raises(ConfigurationError):
            RelationGraph.from_config({"from": "a"})

    def test_from_file(self, relations_file):
        """Test loading from a JSON file."""
        graph = RelationGraph.from_file(relations_file)
        assert len(graph) == 4

    def test_from_missing_file(self, tmp_path):
        """Test a missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            RelationGraph.from_file(tmp_path / "nope.json")

        assert exc_info.value.context["source"].endswith("nope.json")

    def test_from_invalid_json(self, tmp_path):
        """Test invalid JSON raises ConfigurationError."""
        path = tmp_path / "bad.json"
        path.write_text("[{")

        with pytest.raises(ConfigurationError) as exc_info:
            RelationGraph.from_file(path)

        assert "not valid JSON" in exc_info.value.message
