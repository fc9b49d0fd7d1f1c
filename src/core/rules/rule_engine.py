"""
Rule engine for orchestrating validation rules on records.

The rule engine builds validators from ValidationRule models, applies
them to transformed records, and reports the failure messages.
"""

from typing import Any, Callable

from src.core.models import ValidationRule
from src.core.records import get_path
from src.core.validators import (
    BaseValidator,
    CustomValidator,
    DateValidator,
    EmailValidator,
    NumberValidator,
    RegexValidator,
    StringValidator,
    ValidationError,
)


class RuleEngine:
    """
    Orchestrates validation rules on records.

    Rules are applied in order and every failure is collected, so one call
    reports all problems of a record.
    """

    VALIDATOR_REGISTRY: dict[str, type[BaseValidator]] = {
        "string": StringValidator,
        "number": NumberValidator,
        "date": DateValidator,
        "email": EmailValidator,
        "regex": RegexValidator,
        "custom": CustomValidator,
    }

    def __init__(
        self,
        rules: list[ValidationRule],
        custom_validators: dict[str, Callable[[Any, dict[str, Any]], Any]] | None = None
    ):
        """
        Initialize the rule engine with validation rules.

        Args:
            rules: Validation rules, applied in order
            custom_validators: Named validator functions that ``custom``
                               rules may reference by name in
                               ``constraints["validator"]``
        """
        self.rules = rules
        self.custom_validators = custom_validators or {}
        self.validators: list[BaseValidator] = []
        self._build_validators()

    def _build_validators(self) -> None:
        """Build validator instances from rule configurations."""
        for rule in self.rules:
            validator_class = self.VALIDATOR_REGISTRY.get(rule.type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule.type}")

            constraints = dict(rule.constraints)
            named = constraints.get("validator")
            if rule.type == "custom" and isinstance(named, str):
                if named not in self.custom_validators:
                    raise ValueError(f"Custom validator '{named}' is not registered")
                constraints["validator"] = self.custom_validators[named]

            try:
                self.validators.append(validator_class(rule.field, constraints, rule.error_message))
            except ValueError as e:
                raise ValueError(f"Failed to create {rule.type} validator for '{rule.field}': {e}")

    def validate_record(self, record: dict[str, Any]) -> list[ValidationError]:
        """
        Validate a record against all rules.

        A null or missing value passes unless the rule's constraints set
        ``required``.

        Args:
            record: The record to validate

        Returns:
            One ValidationError per failed rule, empty when the record is valid
        """
        errors = []

        for validator in self.validators:
            value = get_path(record, validator.field_name)

            if value is None:
                if validator.required:
                    errors.append(validator.fail("Field is required"))
                continue

            try:
                validator.validate(value, record)
            except ValidationError as e:
                errors.append(e)

        return errors

    def get_rule_summary(self) -> dict[str, Any]:
        """
        Get summary of loaded rules.

        Returns:
            Dictionary with rule counts and types
        """
        counts: dict[str, int] = {}
        for validator in self.validators:
            counts[validator.rule_type] = counts.get(validator.rule_type, 0) + 1
        return {
            "total_rules": len(self.validators),
            "rules_by_type": counts,
        }
