"""
StringValidator - validates string values and their length.
"""

from typing import Any

from .base_validator import BaseValidator


class StringValidator(BaseValidator):
    """
    Validates that a field is a string, optionally within length bounds.

    Parameters:
    - minLength: Minimum length (inclusive)
    - maxLength: Maximum length (inclusive)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None,
                 error_message: str | None = None):
        super().__init__(field_name, parameters, error_message)
        self.min_length = self.parameters.get("minLength", self.parameters.get("min_length"))
        self.max_length = self.parameters.get("maxLength", self.parameters.get("max_length"))

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if not isinstance(value, str):
            raise self.fail(f"Expected string, got {type(value).__name__}")

        if self.min_length is not None and len(value) < self.min_length:
            raise self.fail(f"Length {len(value)} is less than minimum {self.min_length}")

        if self.max_length is not None and len(value) > self.max_length:
            raise self.fail(f"Length {len(value)} exceeds maximum {self.max_length}")

    @property
    def rule_type(self) -> str:
        return "string"
