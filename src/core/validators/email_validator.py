"""
EmailValidator - validates e-mail address shape.
"""

import re
from typing import Any

from .base_validator import BaseValidator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class EmailValidator(BaseValidator):

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if not EMAIL_PATTERN.match(str(value)):
            raise self.fail(f"Value '{value}' is not a valid e-mail address")

    @property
    def rule_type(self) -> str:
        return "email"
