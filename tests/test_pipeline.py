"""Tests for filter to aggregation-pipeline translation."""

from datetime import datetime

import pytest
from bson import ObjectId

from dashql.execution.pipeline import PipelineTranslator, coerce_value
from dashql.planning import JoinPlanner
from dashql.schema import (
    AggregateFunction, AggregationOp, Connective, FilterClause, FilterGroup,
    Operator, Range,
)


class TestCoerceValue:
    """Test value type inference."""

    def test_object_id(self):
        """Test 24-hex strings become ObjectIds."""
        assert coerce_value("507f1f77bcf86cd799439011") == ObjectId("507f1f77bcf86cd799439011")

    def test_date(self):
        """Test ISO dates become datetimes."""
        assert coerce_value("2024-01-01") == datetime(2024, 1, 1)
        assert coerce_value("2024-01-01T10:30:00") == datetime(2024, 1, 1, 10, 30)

    def test_invalid_date_stays_string(self):
        """Test date-shaped garbage is left alone."""
        assert coerce_value("2024-13-45") == "2024-13-45"

    def test_numbers(self):
        """Test numeric strings become numbers."""
        assert coerce_value("42") == 42
        assert isinstance(coerce_value("42"), int)
        assert coerce_value("3.5") == 3.5
        assert coerce_value("-7") == -7

    def test_number_literals(self):
        """Test radix literals, exponents, padding and infinity become numbers."""
        assert coerce_value("0x1F") == 31
        assert coerce_value("0o17") == 15
        assert coerce_value("0b101") == 5
        assert coerce_value("1e3") == 1000.0
        assert coerce_value(" 42 ") == 42
        assert coerce_value("Infinity") == float("inf")
        assert coerce_value("-Infinity") == float("-inf")

    def test_number_lookalikes_stay_strings(self):
        """Test strings that only resemble numbers are left alone."""
        for text in ("-0x1F", "0x", "1_000", "inf", "NaN", "12abc", "   "):
            assert coerce_value(text) == text

    def test_passthrough(self):
        """Test other values are unchanged."""
        assert coerce_value("North") == "North"
        assert coerce_value("") == ""
        assert coerce_value(7) == 7
        assert coerce_value(None) is None
        assert coerce_value(True) is True


class TestPipelineTranslator:
    """Test match expression generation."""

    @pytest.fixture
    def translator(self):
        return PipelineTranslator()

    def test_no_filter(self, translator):
        """Test an absent filter matches everything."""
        assert translator.translate(None) == {}

    def test_comparison_coerces(self, translator):
        """Test comparison values are coerced."""
        match = translator.translate(FilterClause("invoices", "amount", Operator.GTE, "100"), "invoices")
        assert match == {"amount": {"$gte": 100}}

    def test_joined_field_path(self, translator):
        """Test fields of joined entities are addressed through their embedding."""
        match = translator.translate(FilterClause("customers", "region", Operator.EQ, "North"), "invoices")
        assert match == {"customers.region": {"$eq": "North"}}

    def test_groups(self, translator):
        """Test and/or groups."""
        node = FilterGroup(Connective.OR, [
            FilterClause("invoices", "amount", Operator.LT, 10),
            FilterGroup(Connective.AND, [
                FilterClause("invoices", "amount", Operator.GT, 100),
                FilterClause("invoices", "customer_id", Operator.NE, "507f1f77bcf86cd799439011"),
            ]),
        ])
        match = translator.translate(node, "invoices")

        assert match == {"$or": [
            {"amount": {"$lt": 10}},
            {"$and": [
                {"amount": {"$gt": 100}},
                {"customer_id": {"$ne": ObjectId("507f1f77bcf86cd799439011")}},
            ]},
        ]}

    def test_membership(self, translator):
        """Test in and notIn coerce every element."""
        assert translator.translate(FilterClause("t", "n", Operator.IN, ["1", "2"]), "t") == {"n": {"$in": [1, 2]}}
        assert translator.translate(FilterClause("t", "n", Operator.NOT_IN, []), "t") == {"n": {"$nin": []}}

    def test_between_dates(self, translator):
        """Test between coerces both bounds."""
        match = translator.translate(
            FilterClause("invoices", "date", Operator.BETWEEN, Range("2024-01-01", "2024-01-31")),
            "invoices"
        )
        assert match == {"date": {"$gte": datetime(2024, 1, 1), "$lte": datetime(2024, 1, 31)}}

    def test_patterns_escaped(self, translator):
        """Test pattern operators escape regex metacharacters."""
        contains = translator.translate(FilterClause("t", "n", Operator.CONTAINS, "a.b"), "t")
        starts = translator.translate(FilterClause("t", "n", Operator.STARTS_WITH, "Acme"), "t")
        ends = translator.translate(FilterClause("t", "n", Operator.ENDS_WITH, "(x)"), "t")

        assert contains == {"n": {"$regex": r"a\.b", "$options": "i"}}
        assert starts == {"n": {"$regex": "^Acme", "$options": "i"}}
        assert ends == {"n": {"$regex": r"\(x\)$", "$options": "i"}}

    def test_regex_raw(self, translator):
        """Test regex patterns pass through."""
        match = translator.translate(FilterClause("t", "n", Operator.REGEX, "^Wid.*"), "t")
        assert match == {"n": {"$regex": "^Wid.*", "$options": "i"}}

    def test_aggregate_in_filter_is_a_bug(self, translator):
        """Test aggregate functions never reach the match stage."""
        with pytest.raises(TypeError):
            translator.translate(FilterClause("t", "a", AggregateFunction.SUM), "t")


class TestPipelineStatements:
    """Test pipeline generation."""

    @pytest.fixture
    def translator(self):
        return PipelineTranslator()

    @pytest.fixture
    def plan(self, mongo_graph):
        node = FilterClause("customers", "region", Operator.EQ, "North")
        return JoinPlanner(mongo_graph).build_plan("invoices", node)

    def test_select_pipeline(self, translator, plan):
        """Test lookup, inner-join match, collapse, then the filter."""
        predicate = translator.translate(FilterClause("customers", "region", Operator.EQ, "North"), "invoices")
        statement = translator.build_select(plan, predicate)

        assert statement.entity == "invoices"
        assert statement.body == [
            {"$lookup": {
                "from": "customers",
                "localField": "customer_id",
                "foreignField": "_id",
                "as": "customers",
            }},
            {"$match": {"customers.0": {"$exists": True}}},
            {"$addFields": {"customers": {"$arrayElemAt": ["$customers", 0]}}},
            {"$match": {"customers.region": {"$eq": "North"}}},
        ]

    def test_multi_hop_local_field(self, translator, mongo_graph):
        """Test later hops read their local key from the embedded entity."""
        node = FilterClause("products", "name", Operator.EQ, "Widget")
        plan = JoinPlanner(mongo_graph).build_plan("customers", node)

        lookups = [stage["$lookup"] for stage in translator.build_select(plan, {}).body if "$lookup" in stage]

        assert [lookup["localField"] for lookup in lookups] == ["_id", "invoices.product_id"]

    def test_row_limit(self, plan):
        """Test the optional row limit."""
        statement = PipelineTranslator(row_limit=5).build_select(plan, {})
        assert statement.body[-1] == {"$limit": 5}

    def test_aggregate_pipeline(self, translator, plan):
        """Test aggregations share one $group stage."""
        aggregations = [
            AggregationOp("invoices", "amount", AggregateFunction.SUM),
            AggregationOp("invoices", "*", AggregateFunction.COUNT),
            AggregationOp("customers", "zone", AggregateFunction.COUNT),
        ]
        statement = translator.build_aggregate(plan, {}, aggregations)

        group = statement.body[-2]["$group"]
        assert group["_id"] is None
        assert group["sum_amount"] == {"$sum": "$amount"}
        assert group["count"] == {"$sum": 1}
        assert group["count_customers_zone"] == {
            "$sum": {"$cond": [{"$gt": ["$customers.zone", None]}, 1, 0]}
        }
        assert statement.body[-1] == {"$project": {"_id": 0}}
        assert statement.columns == ["sum_amount", "count", "count_customers_zone"]

    def test_lookup_filter(self, translator):
        """Test the batched lookup is a find filter."""
        statement = translator.build_lookup("customers", "_id", [1, 2])

        assert statement.operation == "lookup"
        assert statement.body == {"_id": {"$in": [1, 2]}}
