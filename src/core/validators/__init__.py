"""
Validation rule implementations.

Provides validators for strings, numbers, dates, e-mail addresses,
regex patterns, and custom validation logic.
"""

from .base_validator import BaseValidator, ValidationError
from .custom_validator import CustomValidator
from .date_validator import DateValidator
from .email_validator import EmailValidator
from .number_validator import NumberValidator
from .regex_validator import RegexValidator
from .string_validator import StringValidator

__all__ = [
    "BaseValidator",
    "ValidationError",
    "StringValidator",
    "NumberValidator",
    "DateValidator",
    "EmailValidator",
    "RegexValidator",
    "CustomValidator",
]
