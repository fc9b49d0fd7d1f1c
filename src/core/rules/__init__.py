"""
Validation rule engine, condition evaluation and configuration management.
"""

from .conditions import SUPPORTED_OPERATORS, check_value, evaluate_condition
from .rule_config import ConfigurationError, EndpointConfigLoader, ProcessingConfigBuilder
from .rule_engine import RuleEngine

__all__ = [
    "RuleEngine",
    "EndpointConfigLoader",
    "ProcessingConfigBuilder",
    "ConfigurationError",
    "check_value",
    "evaluate_condition",
    "SUPPORTED_OPERATORS",
]
