"""
NumberValidator - validates numeric values are within a specified range.
"""

import math
from typing import Any

from .base_validator import BaseValidator


class NumberValidator(BaseValidator):
    """
    Validates that a field is numeric (numeric strings are accepted) and
    within an optional range.

    Parameters:
    - min: Minimum value (inclusive)
    - max: Maximum value (inclusive)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None,
                 error_message: str | None = None):
        super().__init__(field_name, parameters, error_message)
        self.min_value = self.parameters.get("min")
        self.max_value = self.parameters.get("max")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise self.fail(f"Value '{value}' is not a number")

        if math.isnan(number):
            raise self.fail("Value is NaN")

        if self.min_value is not None and number < self.min_value:
            raise self.fail(f"Value {value} is less than minimum {self.min_value}")

        if self.max_value is not None and number > self.max_value:
            raise self.fail(f"Value {value} exceeds maximum {self.max_value}")

    @property
    def rule_type(self) -> str:
        return "number"
