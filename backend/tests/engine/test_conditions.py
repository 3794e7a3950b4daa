"""
Tests for workflow_core.engine.conditions
"""
import pytest

from workflow_core.engine.conditions import (
    UNDEFINED, AndCondition, OrCondition, condition_to_dict, evaluate_condition, parse_condition, resolve_field,
)
from workflow_core.errors import ValidationError


def _eval(tree, payload):
    return evaluate_condition(parse_condition(tree), payload)


class TestResolveField:

    def test_nested_path(self):
        assert resolve_field("campaign.budget", {"campaign": {"budget": 5000}}) == 5000

    def test_list_index(self):
        assert resolve_field("spots.1.show", {"spots": [{"show": 1}, {"show": 2}]}) == 2

    def test_missing_segment_is_undefined(self):
        assert resolve_field("campaign.owner.name", {"campaign": {"budget": 1}}) is UNDEFINED
        assert resolve_field("campaign.budget.amount", {"campaign": {"budget": 1}}) is UNDEFINED

    def test_explicit_none_is_not_undefined(self):
        assert resolve_field("campaign.agency", {"campaign": {"agency": None}}) is None


class TestEvaluate:

    def test_or_second_branch_matches(self):
        """budget 5000: gt 10000 is false, gte 5000 is true"""
        tree = {"or": [
            {"field": "campaign.budget", "operator": "gt", "value": 10000},
            {"field": "campaign.budget", "operator": "gte", "value": 5000},
        ]}
        assert _eval(tree, {"campaign": {"budget": 5000}}) is True

    def test_and_requires_every_child(self):
        tree = {"and": [
            {"field": "campaign.budget", "operator": "gte", "value": 5000},
            {"field": "campaign.status", "operator": "eq", "value": "verbal"},
        ]}
        assert _eval(tree, {"campaign": {"budget": 5000, "status": "verbal"}}) is True
        assert _eval(tree, {"campaign": {"budget": 5000, "status": "draft"}}) is False

    def test_nested_composites(self):
        tree = {"and": [
            {"field": "new_probability", "operator": "gte", "value": 90},
            {"or": [
                {"field": "campaign.agency_id", "operator": "in", "value": [3, 4]},
                {"field": "campaign.budget", "operator": "gt", "value": 50000},
            ]},
        ]}
        assert _eval(tree, {"new_probability": 90, "campaign": {"agency_id": 4, "budget": 1}}) is True
        assert _eval(tree, {"new_probability": 90, "campaign": {"agency_id": 5, "budget": 1}}) is False

    @pytest.mark.parametrize("operator,value", [
        ("eq", 1), ("gt", 1), ("gte", 1), ("lt", 1), ("lte", 1),
        ("in", [1]), ("nin", [1]), ("contains", "x"), ("regex", ".*"),
    ])
    def test_absent_field_is_false(self, operator, value):
        assert _eval({"field": "missing", "operator": operator, "value": value}, {}) is False

    def test_absent_field_neq_is_true(self):
        assert _eval({"field": "missing", "operator": "neq", "value": 1}, {}) is True

    def test_numeric_strings_compare_numerically(self):
        assert _eval({"field": "budget", "operator": "gt", "value": 999}, {"budget": "1000.50"}) is True
        assert _eval({"field": "budget", "operator": "gt", "value": 1}, {"budget": "n/a"}) is False

    def test_bool_is_not_one(self):
        assert _eval({"field": "flag", "operator": "eq", "value": 1}, {"flag": True}) is False

    def test_contains_on_list_and_string(self):
        assert _eval({"field": "tags", "operator": "contains", "value": "auto"}, {"tags": ["auto", "food"]}) is True
        assert _eval({"field": "name", "operator": "contains", "value": "Launch"}, {"name": "Spring Launch"}) is True

    def test_nin(self):
        assert _eval({"field": "status", "operator": "nin", "value": ["lost"]}, {"status": "verbal"}) is True

    def test_regex(self):
        assert _eval({"field": "name", "operator": "regex", "value": "^Spring"}, {"name": "Spring Launch"}) is True

    def test_and_short_circuits(self):
        """The second child is never evaluated once the first is false"""
        tree = parse_condition({"and": [
            {"field": "a", "operator": "eq", "value": 1},
            {"field": "b", "operator": "eq", "value": 1},
        ]})
        calls = []

        class Payload(dict):
            def __getitem__(self, key):
                calls.append(key)
                return super().__getitem__(key)

        assert evaluate_condition(tree, Payload(a=2, b=1)) is False
        assert calls == ["a"]


class TestParse:

    def test_aliases_round_trip(self):
        raw = {"or": [{"and": [{"field": "a", "operator": "eq", "value": 1}]}]}
        node = parse_condition(raw)
        assert isinstance(node, OrCondition)
        assert isinstance(node.any_of[0], AndCondition)
        assert condition_to_dict(node) == raw

    def test_unknown_operator_has_field_path(self):
        with pytest.raises(ValidationError) as exc:
            parse_condition({"or": [
                {"field": "a", "operator": "eq", "value": 1},
                {"field": "b", "operator": "between", "value": [1, 2]},
            ]})
        assert "condition.or.1.operator" in exc.value.field_errors

    def test_in_requires_list(self):
        with pytest.raises(ValidationError) as exc:
            parse_condition({"field": "a", "operator": "in", "value": 3})
        assert "condition" in exc.value.field_errors

    def test_invalid_regex_rejected(self):
        with pytest.raises(ValidationError):
            parse_condition({"field": "a", "operator": "regex", "value": "("})

    def test_numeric_operator_requires_number(self):
        with pytest.raises(ValidationError):
            parse_condition({"field": "a", "operator": "gt", "value": "lots"})

    def test_empty_composite_rejected(self):
        with pytest.raises(ValidationError) as exc:
            parse_condition({"and": []})
        assert exc.value.field_errors == {"condition.and": "expected a non-empty list"}

    def test_mixed_composite_rejected(self):
        with pytest.raises(ValidationError):
            parse_condition({"and": [{"field": "a", "operator": "eq", "value": 1}], "field": "b"})

    def test_extra_leaf_keys_rejected(self):
        with pytest.raises(ValidationError):
            parse_condition({"field": "a", "operator": "eq", "value": 1, "op": "eq"})

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError) as exc:
            parse_condition(["a"])
        assert exc.value.field_errors == {"condition": "expected an object"}
