"""
Unit tests for field transforms and the aggregation stage.
"""

from datetime import datetime, timezone

import pytest

from src.core.models import AggregationConfig
from src.transformation import AGGREGATE_FUNCTIONS, aggregate
from src.transformation.aggregation import group_key
from src.transformation.transforms import (
    custom,
    date_format,
    lowercase,
    number_format,
    trim,
    uppercase,
)


class TestStringTransforms:
    """Tests for uppercase, lowercase and trim"""

    def test_case_and_trim(self):
        """Test simple string transforms stringify their input"""
        assert uppercase("msku", {}) == "MSKU"
        assert lowercase("MSKU", {}) == "msku"
        assert trim("  MSKU \t", {}) == "MSKU"
        assert uppercase(12, {}) == "12"


class TestDateFormat:
    """Tests for date_format"""

    def test_string_is_reformatted(self):
        """Test parseable strings are re-formatted with strftime"""
        assert date_format("2024-03-05T10:20:00", {"format": "%d.%m.%Y"}) == "05.03.2024"

    def test_default_format(self):
        """Test the default output format is ISO date"""
        assert date_format("March 5, 2024", {}) == "2024-03-05"

    def test_epoch_milliseconds(self):
        """Test numbers are read as epoch milliseconds"""
        assert date_format(0, {"format": "%Y"}) == "1970"

    def test_datetime_object(self):
        """Test datetime values are formatted directly"""
        value = datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert date_format(value, {"format": "%Y/%m/%d"}) == "2024/01/02"

    def test_unparseable_value_raises(self):
        """Test garbage raises ValueError"""
        with pytest.raises(ValueError):
            date_format("not a date", {})


class TestNumberFormat:
    """Tests for number_format"""

    def test_zero_decimals_gives_int(self):
        """Test decimals=0 rounds to an int"""
        assert number_format("2.6", {"decimals": 0}) == 3
        assert isinstance(number_format("2", {"decimals": 0}), int)

    def test_decimals_round(self):
        """Test rounding to a number of places"""
        assert number_format("3.14159", {"decimals": 2}) == 3.14

    def test_without_decimals(self):
        """Test integral strings become ints, floats stay floats"""
        assert number_format("12", {}) == 12
        assert number_format(1.5, {}) == 1.5

    @pytest.mark.parametrize("value", ["abc", "nan", True, None])
    def test_non_numbers_raise(self, value):
        """Test non-numeric values raise ValueError"""
        with pytest.raises(ValueError):
            number_format(value, {})


class TestCustomTransform:
    """Tests for the custom transform"""

    def test_function_is_applied(self):
        """Test params['function'] is called with the value"""
        assert custom("abc", {"function": lambda v: v[::-1]}) == "cba"

    def test_without_function_is_identity(self):
        """Test a missing function leaves the value unchanged"""
        assert custom("abc", {}) == "abc"

    def test_non_callable_raises(self):
        """Test a non-callable function is rejected"""
        with pytest.raises(ValueError):
            custom("abc", {"function": "reverse"})


class TestAggregation:
    """Tests for aggregate"""

    RECORDS = [
        {"carrier": "MSC", "qty": 2},
        {"carrier": "MSC", "qty": 3},
        {"carrier": "ONE", "qty": "10"},
        {"carrier": "ONE", "qty": None},
    ]

    def test_group_by_with_functions(self):
        """Test grouped reductions keep first-seen group order"""
        config = AggregationConfig(
            enabled=True,
            group_by=["carrier"],
            functions=[{"field": "qty", "function": "sum"}, {"field": "qty", "function": "count"}],
        )

        assert aggregate(self.RECORDS, config) == [
            {"carrier": "MSC", "qty_sum": 5, "qty_count": 2},
            {"carrier": "ONE", "qty_sum": 10.0, "qty_count": 1},
        ]

    def test_single_group_without_group_by(self):
        """Test all records form one group when group_by is empty"""
        config = AggregationConfig(enabled=True, functions=[
            {"field": "qty", "function": "max"},
            {"field": "qty", "function": "first"},
            {"field": "carrier", "function": "last"},
        ])

        assert aggregate(self.RECORDS, config) == [{"qty_max": 10.0, "qty_first": 2, "carrier_last": "ONE"}]

    def test_missing_and_null_values_are_skipped(self):
        """Test count, first and last only see present values"""
        config = AggregationConfig(enabled=True, functions=[
            {"field": "q", "function": "count"},
            {"field": "q", "function": "first"},
            {"field": "q", "function": "last"},
        ])
        records = [{"q": None}, {"q": 2}, {"x": 1}, {"q": 5}, {"q": None}]

        assert aggregate(records, config) == [{"q_count": 2, "q_first": 2, "q_last": 5}]

    def test_empty_inputs(self):
        """Test reductions over no numbers"""
        assert AGGREGATE_FUNCTIONS["avg"]([]) == 0
        assert AGGREGATE_FUNCTIONS["min"]([None, "x"]) is None
        assert AGGREGATE_FUNCTIONS["max"]([]) is None

    def test_unknown_function_yields_none(self):
        """Test an unknown function produces a None column"""
        config = AggregationConfig(enabled=True, functions=[{"field": "qty", "function": "median"}])
        assert aggregate(self.RECORDS, config) == [{"qty_median": None}]

    def test_group_key(self):
        """Test group keys join values with a separator"""
        assert group_key({"a": 1, "b": None}, ["a", "b"]) == "1|"
