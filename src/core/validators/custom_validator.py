"""
CustomValidator - validates using a custom Python function.
"""

from typing import Any

from .base_validator import BaseValidator


class CustomValidator(BaseValidator):
    """
    Validates using a custom validation function.

    Parameters:
    - validator: A callable taking (value, record). Returning False or
                 raising fails the check; any other result passes.

    Without a validator the check passes.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None,
                 error_message: str | None = None):
        super().__init__(field_name, parameters, error_message)

        self.validator_func = self.parameters.get("validator", self.parameters.get("customValidator"))
        if self.validator_func is not None and not callable(self.validator_func):
            raise ValueError("validator must be callable")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if self.validator_func is None:
            return

        try:
            outcome = self.validator_func(value, record)
        except Exception as e:
            raise self.fail(f"Custom validation failed: {e}")

        if outcome is False:
            raise self.fail("Custom validation failed")

    @property
    def rule_type(self) -> str:
        return "custom"
