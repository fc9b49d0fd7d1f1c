"""
Processing configuration models: how the transformation engine turns raw
input into validated records for one integration endpoint.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, Field, field_validator

from .base import GatewayModel


class DataFormat(str, Enum):
    """Payload formats the codecs understand."""

    JSON = "json"
    XML = "xml"
    CSV = "csv"
    FIXED_WIDTH = "fixed_width"
    BINARY = "binary"
    EDI = "edi"
    CUSTOM = "custom"


BUILTIN_TRANSFORMATIONS = ("uppercase", "lowercase", "trim", "date_format", "number_format", "custom")

FILTER_OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "starts_with",
    "ends_with",
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
    "in_array",
    "regex",
    "exists",
    "not_exists",
)


class TransformationRule(GatewayModel):
    """
    Builds one output field from one input field.

    Attributes:
        source_field: Dotted path read from the input record
        target_field: Dotted path written in the output record
        transformation: Named transform (uppercase, lowercase, trim,
                        date_format, number_format, custom) or the name of a
                        transform registered on the engine
        transformation_params: Transform parameters ({"format": "%Y-%m-%d"},
                               {"decimals": 2}, {"function": callable})
        required: Missing value with no default fails the record
        default_value: Substituted when the source field is absent or null
    """

    source_field: str = Field(..., min_length=1)
    target_field: str = Field(..., min_length=1)
    transformation: str | None = Field(
        None, validation_alias=AliasChoices("transformation", "transform_kind", "transformKind")
    )
    transformation_params: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices(
            "transformation_params", "transformationParams", "transform_params", "transformParams"
        ),
    )
    required: bool = False
    default_value: Any = None

    @field_validator("transformation_params", mode="before")
    @classmethod
    def none_params_to_empty(cls, v):
        return v or {}


class ValidationRule(GatewayModel):
    """
    A check applied to a transformed record.

    Attributes:
        field: Dotted path of the checked field
        type: string, number, date, email, regex or custom
        constraints: Type-specific constraints (minLength, min, pattern,
                     required, validator, ...)
        error_message: Message reported when the check fails
    """

    field: str = Field(..., min_length=1)
    type: Literal["string", "number", "date", "email", "regex", "custom"]
    constraints: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("constraints", "rules")
    )
    error_message: str | None = None

    @field_validator("constraints", mode="before")
    @classmethod
    def none_constraints_to_empty(cls, v):
        return v or {}


class FilterRule(GatewayModel):
    """
    Record-level include/exclude filter applied before transformation.

    Attributes:
        field: Dotted path compared
        operator: Comparison operator
        value: Operand
        condition: include (keep only matches) or exclude (drop matches)
    """

    field: str = Field(..., min_length=1)
    operator: str
    value: Any = None
    condition: Literal["include", "exclude"] = "include"

    @field_validator("operator")
    @classmethod
    def check_operator(cls, v: str) -> str:
        if v not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator '{v}'. Supported: {', '.join(FILTER_OPERATORS)}")
        return v


class AggregationFunction(GatewayModel):
    """One reduction; the output field is named ``<field>_<function>``."""

    field: str = Field(..., min_length=1)
    function: str


class AggregationConfig(GatewayModel):
    """
    Optional final stage collapsing records into grouped records.

    Attributes:
        enabled: Whether the stage runs
        group_by: Dotted paths forming the group key (empty: one group)
        time_window: Window length in ms, informational for callers that buffer
        functions: Reductions applied per group
    """

    enabled: bool = False
    group_by: list[str] = Field(default_factory=list)
    time_window: int = 0
    functions: list[AggregationFunction] = Field(default_factory=list)


class DataProcessingConfig(GatewayModel):
    """
    Complete transformation engine configuration for one endpoint.
    """

    input_format: DataFormat = DataFormat.JSON
    output_format: DataFormat = DataFormat.JSON
    transformation_rules: list[TransformationRule] = Field(default_factory=list)
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    filters: list[FilterRule] = Field(default_factory=list)
    aggregation: AggregationConfig | None = None
