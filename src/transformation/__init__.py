"""
Transformation engine: filter, transform, validate and aggregate records
between the input and output codecs.
"""

from .aggregation import AGGREGATE_FUNCTIONS, aggregate
from .engine import TransformationEngine, apply_filters, passes_filters
from .errors import TransformationError
from .transforms import BUILTIN_TRANSFORMS

__all__ = [
    "TransformationEngine",
    "TransformationError",
    "apply_filters",
    "passes_filters",
    "aggregate",
    "AGGREGATE_FUNCTIONS",
    "BUILTIN_TRANSFORMS",
]
