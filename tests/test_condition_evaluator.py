"""Tests for predicate parsing and evaluation."""

import pytest

from app.services.flow_processor.condition_evaluator import (
    And,
    Comparison,
    Const,
    Not,
    Var,
    evaluate_predicate,
    parse_predicate,
    resolve_path,
)
from app.services.flow_processor.errors import InvalidPredicate


def variables(**payload):
    return {"trigger": {"deviceId": "d1", "eventName": "e", "payload": payload}}


class TestParsing:
    def test_parses_comparison_tree(self):
        expression = parse_predicate({">": [{"var": "trigger.payload.t"}, 28]})
        assert expression == Comparison(">", Var("trigger.payload.t"), Const(28))

    def test_parses_nested_logic(self):
        expression = parse_predicate(
            {"and": [{"==": [1, 1]}, {"!": {"var": "trigger.payload.x"}}]}
        )
        assert isinstance(expression, And)
        assert isinstance(expression.operands[1], Not)

    def test_missing_predicate(self):
        with pytest.raises(InvalidPredicate):
            parse_predicate(None)

    def test_unknown_operator(self):
        with pytest.raises(InvalidPredicate) as exc_info:
            parse_predicate({"between": [1, 2, 3]})
        assert "Unknown operator" in str(exc_info.value)

    def test_wrong_arity(self):
        with pytest.raises(InvalidPredicate):
            parse_predicate({">": [1]})

    def test_multiple_operators_in_one_object(self):
        with pytest.raises(InvalidPredicate):
            parse_predicate({">": [1, 0], "<": [0, 1]})


class TestComparisons:
    def test_temperature_threshold(self):
        predicate = {">": [{"var": "trigger.payload.temperature"}, 28]}
        assert evaluate_predicate(predicate, variables(temperature=30.5)) is True
        assert evaluate_predicate(predicate, variables(temperature=28)) is False

    def test_boolean_equality(self):
        predicate = {"==": [{"var": "trigger.payload.occupied"}, True]}
        assert evaluate_predicate(predicate, variables(occupied=True)) is True
        assert evaluate_predicate(predicate, variables(occupied=False)) is False

    def test_numeric_strings_compare_as_numbers(self):
        assert evaluate_predicate({">": ["30", 28]}, {}) is True
        assert evaluate_predicate({"==": ["1.0", 1]}, {}) is True

    def test_booleans_are_not_numbers(self):
        assert evaluate_predicate({"==": [True, 1]}, {}) is False
        assert evaluate_predicate({">": [True, 0]}, {}) is False

    def test_strict_equality(self):
        assert evaluate_predicate({"===": ["1", 1]}, {}) is False
        assert evaluate_predicate({"!==": ["1", 1]}, {}) is True
        assert evaluate_predicate({"===": ["on", "on"]}, {}) is True

    def test_string_ordering(self):
        assert evaluate_predicate({"<": ["abc", "abd"]}, {}) is True

    def test_mixed_types_do_not_order(self):
        assert evaluate_predicate({">": ["warm", 1]}, {}) is False
        assert evaluate_predicate({"<": ["warm", 1]}, {}) is False


class TestNullHandling:
    def test_missing_variable_is_null(self):
        predicate = {"==": [{"var": "trigger.payload.missing"}, None]}
        assert evaluate_predicate(predicate, variables()) is True

    def test_null_equals_only_null(self):
        assert evaluate_predicate({"==": [None, None]}, {}) is True
        assert evaluate_predicate({"==": [None, 0]}, {}) is False
        assert evaluate_predicate({"!=": [None, 0]}, {}) is True

    @pytest.mark.parametrize("op", [">", ">=", "<", "<="])
    def test_ordering_with_null_is_false(self, op):
        predicate = {op: [{"var": "trigger.payload.temperature"}, 28]}
        assert evaluate_predicate(predicate, variables()) is False
        assert evaluate_predicate({op: [None, None]}, {}) is False

    def test_var_default(self):
        predicate = {">": [{"var": ["trigger.payload.t", 50]}, 28]}
        assert evaluate_predicate(predicate, variables()) is True


class TestLogic:
    def test_and_or_not(self):
        vars_ = variables(temperature=30, humidity=40)
        hot = {">": [{"var": "trigger.payload.temperature"}, 28]}
        humid = {">": [{"var": "trigger.payload.humidity"}, 60]}
        assert evaluate_predicate({"and": [hot, humid]}, vars_) is False
        assert evaluate_predicate({"or": [hot, humid]}, vars_) is True
        assert evaluate_predicate({"not": humid}, vars_) is True

    def test_literal_truthiness(self):
        assert evaluate_predicate(True, {}) is True
        assert evaluate_predicate(0, {}) is False

    def test_accepts_parsed_expression(self):
        expression = parse_predicate({"==": [{"var": "trigger.deviceId"}, "d1"]})
        assert evaluate_predicate(expression, variables()) is True


class TestResolvePath:
    def test_nested_dicts(self):
        assert resolve_path({"a": {"b": {"c": 3}}}, "a.b.c") == 3

    def test_list_index(self):
        assert resolve_path({"a": [10, 20]}, "a.1") == 20
        assert resolve_path({"a": [10, 20]}, "a.5") is None

    def test_absent_segment(self):
        assert resolve_path({"a": 1}, "a.b") is None
        assert resolve_path({}, "x") is None

    def test_empty_path_returns_everything(self):
        data = {"a": 1}
        assert resolve_path(data, "") is data
