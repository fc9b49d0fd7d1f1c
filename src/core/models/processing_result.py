"""
ProcessingResult model: the outcome of one transformation engine call.
"""

from typing import Any

from pydantic import BaseModel, Field


class ProcessingMetrics(BaseModel):
    """
    Counters for one call.

    Attributes:
        records_processed: Records decoded from the input
        records_filtered: Records dropped by filter rules
        records_transformed: Records that made it through the transform stage
        records_failed: Records that failed transform or validation
        processing_time_ms: Wall time of the call
    """

    records_processed: int = 0
    records_filtered: int = 0
    records_transformed: int = 0
    records_failed: int = 0
    processing_time_ms: float = 0.0


class ProcessingResult(BaseModel):
    """
    Outcome of processing one raw payload (ephemeral).

    Always returned, even on partial failure. ``success`` is False only
    for fatal errors (undecodable input, unencodable output); per-record
    failures show up in ``errors`` and ``metrics.records_failed``.

    Attributes:
        success: False on a fatal batch error
        data: Encoded output (list of records for JSON, text otherwise)
        records: The final records before encoding
        errors: Fatal and per-record error messages
        warnings: Non-blocking notes ("all records were filtered")
        metrics: Per-call counters
    """

    success: bool = False
    data: Any = None
    records: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metrics: ProcessingMetrics = Field(default_factory=ProcessingMetrics)

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "data": [{"quantity_sum": 5}],
                "records": [{"quantity_sum": 5}],
                "errors": [],
                "warnings": [],
                "metrics": {
                    "records_processed": 2,
                    "records_filtered": 0,
                    "records_transformed": 2,
                    "records_failed": 0,
                    "processing_time_ms": 1.8
                }
            }
        }
