"""
DateValidator - validates that a value is a parseable date.
"""

from datetime import date
from typing import Any

from dateutil import parser as date_parser

from .base_validator import BaseValidator


class DateValidator(BaseValidator):
    """
    Accepts date/datetime objects, epoch numbers and strings dateutil can parse.
    """

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if isinstance(value, date) or (isinstance(value, int | float) and not isinstance(value, bool)):
            return

        try:
            date_parser.parse(str(value))
        except (ValueError, OverflowError) as e:
            raise self.fail(f"Value '{value}' is not a valid date: {e}")

    @property
    def rule_type(self) -> str:
        return "date"
