"""
Endpoint configuration management.

Loads integration endpoint configurations from YAML files and provides a
builder for processing configurations assembled in code.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from src.core.models import (
    AggregationConfig,
    AggregationFunction,
    DataFormat,
    DataProcessingConfig,
    FilterRule,
    IntegrationEndpoint,
    TransformationRule,
    ValidationRule,
)


class ConfigurationError(Exception):
    """Raised when an endpoint configuration is missing or invalid."""


class EndpointConfigLoader:
    """
    Loads integration endpoints from YAML configuration files.

    Expected YAML format (camelCase or snake_case keys):
    ```yaml
    endpoints:
      - id: edi-partner
        name: EDI partner drop
        type: file_watcher
        dataProcessingConfig:
          inputFormat: csv
          outputFormat: json
          transformationRules:
            - sourceField: qty
              targetField: quantity
              transformation: number_format
              transformationParams: {decimals: 0}
        routingConfig:
          targets:
            - type: webhook
              endpoint: https://erp.example.com/hooks/containers
              retryPolicy: {maxAttempts: 3, backoffMultiplier: 2, initialDelay: 1000}
        fileMonitorConfig:
          watchPaths:
            - path: /data/inbox
              pattern: "*.csv"
    ```

    A document holding a single endpoint mapping (no ``endpoints`` list)
    is accepted too.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the endpoint config loader.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            ConfigurationError: If the file does not exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigurationError(f"Endpoint configuration file not found: {config_path}")

    def load_endpoints(self) -> list[IntegrationEndpoint]:
        """
        Load and validate every endpoint in the file.

        Returns:
            Validated endpoints, in file order

        Raises:
            ConfigurationError: If the YAML is invalid or an endpoint fails validation
        """
        try:
            with open(self.config_path) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}")

        if not config:
            raise ConfigurationError(f"Configuration file {self.config_path} is empty")

        if isinstance(config, dict) and "endpoints" in config:
            entries = config["endpoints"]
            if not isinstance(entries, list):
                raise ConfigurationError("'endpoints' must be a list")
        elif isinstance(config, dict):
            entries = [config]
        else:
            raise ConfigurationError("Configuration must be a mapping")

        endpoints = [self.parse_endpoint(entry, idx) for idx, entry in enumerate(entries)]

        seen: set[str] = set()
        for endpoint in endpoints:
            if endpoint.id in seen:
                raise ConfigurationError(f"Duplicate endpoint id '{endpoint.id}'")
            seen.add(endpoint.id)

        return endpoints

    def load_endpoint(self, endpoint_id: str | None = None) -> IntegrationEndpoint:
        """
        Load one endpoint by id, or the only endpoint in the file.

        Raises:
            ConfigurationError: If the endpoint is not found or the choice is ambiguous
        """
        endpoints = self.load_endpoints()
        if endpoint_id is None:
            if len(endpoints) != 1:
                raise ConfigurationError(
                    f"{self.config_path} defines {len(endpoints)} endpoints, specify one by id"
                )
            return endpoints[0]

        for endpoint in endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        raise ConfigurationError(f"Endpoint '{endpoint_id}' not found in {self.config_path}")

    @staticmethod
    def parse_endpoint(entry: Any, idx: int = 0) -> IntegrationEndpoint:
        """
        Validate a single endpoint definition.

        Raises:
            ConfigurationError: If the definition is invalid
        """
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Endpoint #{idx} must be a mapping")
        try:
            return IntegrationEndpoint.model_validate(entry)
        except PydanticValidationError as e:
            label = entry.get("id", f"#{idx}")
            raise ConfigurationError(f"Invalid configuration for endpoint '{label}': {e}") from e


class ProcessingConfigBuilder:
    """
    Programmatically build processing configurations (for testing or dynamic rules).
    """

    def __init__(self, input_format: DataFormat | str = DataFormat.JSON,
                 output_format: DataFormat | str = DataFormat.JSON):
        """Initialize an empty configuration."""
        self.input_format = DataFormat(input_format)
        self.output_format = DataFormat(output_format)
        self.transformation_rules: list[TransformationRule] = []
        self.validation_rules: list[ValidationRule] = []
        self.filters: list[FilterRule] = []
        self.aggregation: AggregationConfig | None = None

    def map_field(
        self,
        source_field: str,
        target_field: str | None = None,
        transformation: str | None = None,
        required: bool = False,
        default_value: Any = None,
        **params: Any
    ) -> "ProcessingConfigBuilder":
        """Add a transformation rule; extra keyword arguments become transformation params."""
        self.transformation_rules.append(TransformationRule(
            source_field=source_field,
            target_field=target_field or source_field,
            transformation=transformation,
            transformation_params=params,
            required=required,
            default_value=default_value,
        ))
        return self

    def validate(self, field: str, rule_type: str, error_message: str | None = None,
                 **constraints: Any) -> "ProcessingConfigBuilder":
        """Add a validation rule; keyword arguments become constraints."""
        self.validation_rules.append(ValidationRule(
            field=field,
            type=rule_type,
            constraints=constraints,
            error_message=error_message,
        ))
        return self

    def include(self, field: str, operator: str, value: Any = None) -> "ProcessingConfigBuilder":
        """Keep only records matching the condition."""
        self.filters.append(FilterRule(field=field, operator=operator, value=value, condition="include"))
        return self

    def exclude(self, field: str, operator: str, value: Any = None) -> "ProcessingConfigBuilder":
        """Drop records matching the condition."""
        self.filters.append(FilterRule(field=field, operator=operator, value=value, condition="exclude"))
        return self

    def aggregate(self, functions: dict[str, str] | list[tuple[str, str]],
                  group_by: list[str] | None = None,
                  time_window: int = 0) -> "ProcessingConfigBuilder":
        """Enable aggregation with (field, function) pairs."""
        pairs = functions.items() if isinstance(functions, dict) else functions
        self.aggregation = AggregationConfig(
            enabled=True,
            group_by=group_by or [],
            time_window=time_window,
            functions=[AggregationFunction(field=f, function=fn) for f, fn in pairs],
        )
        return self

    def build(self) -> DataProcessingConfig:
        """Build and return the processing configuration."""
        return DataProcessingConfig(
            input_format=self.input_format,
            output_format=self.output_format,
            transformation_rules=list(self.transformation_rules),
            validation_rules=list(self.validation_rules),
            filters=list(self.filters),
            aggregation=self.aggregation,
        )
