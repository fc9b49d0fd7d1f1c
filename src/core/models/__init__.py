"""
Core data models for the integration gateway.

All models use Pydantic for runtime validation and type safety.
"""

from .endpoint import IntegrationEndpoint, IntegrationType
from .file_event import FileContent, FileEvent, ProcessingJob
from .file_monitor import (
    FileMonitorConfig,
    FileProcessorKind,
    FileTypeRule,
    MonitorSettings,
    NamingRules,
    PostProcessingRules,
    ProcessingRules,
    WatchPath,
)
from .processing_config import (
    AggregationConfig,
    AggregationFunction,
    DataFormat,
    DataProcessingConfig,
    FilterRule,
    TransformationRule,
    ValidationRule,
)
from .processing_result import ProcessingMetrics, ProcessingResult
from .routing import (
    Condition,
    DeadLetterEntry,
    DeadLetterQueueConfig,
    RetryContext,
    RetryPolicy,
    RouteTarget,
    RoutingConfig,
    RoutingResult,
    RoutingRule,
    TargetType,
    retry_key,
)

__all__ = [
    "IntegrationEndpoint",
    "IntegrationType",
    "FileContent",
    "FileEvent",
    "ProcessingJob",
    "FileMonitorConfig",
    "FileProcessorKind",
    "FileTypeRule",
    "MonitorSettings",
    "NamingRules",
    "PostProcessingRules",
    "ProcessingRules",
    "WatchPath",
    "AggregationConfig",
    "AggregationFunction",
    "DataFormat",
    "DataProcessingConfig",
    "FilterRule",
    "TransformationRule",
    "ValidationRule",
    "ProcessingMetrics",
    "ProcessingResult",
    "Condition",
    "DeadLetterEntry",
    "DeadLetterQueueConfig",
    "RetryContext",
    "RetryPolicy",
    "RouteTarget",
    "RoutingConfig",
    "RoutingResult",
    "RoutingRule",
    "TargetType",
    "retry_key",
]
