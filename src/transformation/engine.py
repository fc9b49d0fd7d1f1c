"""
Transformation engine.

Turns one raw payload into encoded output records:

    decode -> filter -> transform -> validate -> aggregate -> encode

Decode and encode failures are fatal for the call; transform and
validation failures only drop the affected record.
"""

import time
from typing import Any, Callable

from src.core.codecs import CodecError, get_codec
from src.core.models import (
    DataProcessingConfig,
    FilterRule,
    ProcessingMetrics,
    ProcessingResult,
    TransformationRule,
)
from src.core.records import build_record, get_path
from src.core.rules import RuleEngine, check_value
from src.observability import metrics
from src.observability.events import EventChannel
from src.observability.logger import get_logger

from .aggregation import aggregate
from .errors import TransformationError
from .transforms import BUILTIN_TRANSFORMS, TransformFunc

logger = get_logger(__name__)


def passes_filters(record: dict[str, Any], filters: list[FilterRule]) -> bool:
    """
    True when the record survives every filter rule.

    An ``include`` rule drops records that do not match, an ``exclude``
    rule drops records that do.
    """
    for rule in filters:
        matches = check_value(get_path(record, rule.field), rule.operator, rule.value)
        if rule.condition == "include" and not matches:
            return False
        if rule.condition == "exclude" and matches:
            return False
    return True


def apply_filters(records: list[dict[str, Any]], filters: list[FilterRule]) -> list[dict[str, Any]]:
    if not filters:
        return list(records)
    return [record for record in records if passes_filters(record, filters)]


class TransformationEngine:
    """
    Stateless processor for DataProcessingConfig pipelines.

    Named transforms and validators can be registered so configurations
    loaded from YAML can reference Python functions by name.
    """

    def __init__(self, events: EventChannel | None = None):
        self.events = events
        self._transforms: dict[str, TransformFunc] = dict(BUILTIN_TRANSFORMS)
        self._validators: dict[str, Callable[[Any, dict[str, Any]], Any]] = {}

    def register_transform(self, name: str, func: TransformFunc) -> None:
        """
        Register a transform usable as ``transformation: <name>``.

        Args:
            name: Transform name
            func: Callable taking (value, params) and returning the new value
        """
        if name in BUILTIN_TRANSFORMS:
            raise ValueError(f"Cannot override built-in transform '{name}'")
        self._transforms[name] = func

    def register_validator(self, name: str, func: Callable[[Any, dict[str, Any]], Any]) -> None:
        """Register a validator usable as ``{type: custom, constraints: {validator: <name>}}``."""
        self._validators[name] = func

    def process(
        self,
        raw_input: Any,
        config: DataProcessingConfig,
        source_id: str
    ) -> ProcessingResult:
        """
        Run one payload through the pipeline.

        Args:
            raw_input: Text, bytes or already-decoded data
            config: Processing configuration of the endpoint
            source_id: Endpoint id, used for logs, metrics and events

        Returns:
            ProcessingResult; never raises for bad data
        """
        start = time.monotonic()
        result = ProcessingResult(metrics=ProcessingMetrics())

        try:
            rule_engine = RuleEngine(config.validation_rules, self._validators)
        except ValueError as e:
            return self._fail(result, source_id, start, f"Invalid validation rules: {e}")

        try:
            records = get_codec(config.input_format).decode(raw_input)
        except CodecError as e:
            return self._fail(result, source_id, start, f"Failed to decode input: {e}")

        result.metrics.records_processed = len(records)

        filtered = apply_filters(records, config.filters)
        result.metrics.records_filtered = len(records) - len(filtered)

        if not filtered:
            result.success = True
            result.data = []
            result.warnings.append("All records were filtered")
            return self._complete(result, source_id, start)

        transformed = []
        for record in filtered:
            try:
                transformed.append(self.transform_record(record, config.transformation_rules))
                result.metrics.records_transformed += 1
            except TransformationError as e:
                result.errors.append(f"Record transformation failed: {e}")
                result.metrics.records_failed += 1

        validated = []
        for record in transformed:
            failures = rule_engine.validate_record(record)
            if failures:
                result.metrics.records_failed += 1
                for failure in failures:
                    result.errors.append(str(failure))
                    metrics.record_validation_failure(source_id, failure.rule_name, failure.field_name)
            else:
                validated.append(record)

        final = validated
        if config.aggregation and config.aggregation.enabled and validated:
            final = aggregate(validated, config.aggregation)

        try:
            result.data = get_codec(config.output_format).encode(final)
        except CodecError as e:
            return self._fail(result, source_id, start, f"Failed to encode output: {e}")

        result.records = final
        result.success = True
        return self._complete(result, source_id, start)

    def transform_record(self, record: dict[str, Any], rules: list[TransformationRule]) -> dict[str, Any]:
        """
        Build the output record from the transformation rules.

        Without rules the record passes through unchanged.

        Raises:
            TransformationError: If a required value is missing or a
                                 transform fails
        """
        if not rules:
            return dict(record)

        items = []
        for rule in rules:
            value = get_path(record, rule.source_field)

            if value is None and rule.default_value is not None:
                value = rule.default_value

            if rule.required and value is None:
                raise TransformationError(rule.source_field, "required field is missing")

            if value is not None and rule.transformation:
                transform = self._transforms.get(rule.transformation)
                if transform is None:
                    raise TransformationError(
                        rule.source_field, f"unknown transformation '{rule.transformation}'"
                    )
                try:
                    value = transform(value, rule.transformation_params)
                except Exception as e:
                    raise TransformationError(rule.source_field, f"{rule.transformation} failed: {e}")

            items.append((rule.target_field, value))

        return build_record(items)

    def _fail(self, result: ProcessingResult, source_id: str, start: float, message: str) -> ProcessingResult:
        result.success = False
        result.errors.append(message)
        duration = time.monotonic() - start
        result.metrics.processing_time_ms = duration * 1000

        logger.error(message, extra={"endpoint_id": source_id})
        metrics.record_processing_result(
            source_id,
            received=result.metrics.records_processed,
            filtered=0,
            transformed=0,
            failed=0,
            duration_seconds=duration,
            success=False,
        )
        metrics.increment_counter(
            metrics.errors_total, 1, source_id=source_id, error_type="codec", component="transformation"
        )
        if self.events:
            self.events.offer(
                "data.processing.failed",
                endpoint_id=source_id,
                error=message,
                processing_time_ms=result.metrics.processing_time_ms,
            )
        return result

    def _complete(self, result: ProcessingResult, source_id: str, start: float) -> ProcessingResult:
        duration = time.monotonic() - start
        result.metrics.processing_time_ms = duration * 1000
        m = result.metrics

        logger.debug(
            f"Processed {m.records_processed} records for {source_id}",
            extra={
                "endpoint_id": source_id,
                "records_processed": m.records_processed,
                "records_filtered": m.records_filtered,
                "records_transformed": m.records_transformed,
                "records_failed": m.records_failed,
                "processing_time_ms": round(m.processing_time_ms, 3),
            }
        )
        metrics.record_processing_result(
            source_id,
            received=m.records_processed,
            filtered=m.records_filtered,
            transformed=m.records_transformed,
            failed=m.records_failed,
            duration_seconds=duration,
            success=result.success,
        )
        if self.events:
            self.events.offer(
                "data.processing.completed",
                endpoint_id=source_id,
                success=result.success,
                records_processed=m.records_processed,
                records_transformed=m.records_transformed,
                records_failed=m.records_failed,
                processing_time_ms=m.processing_time_ms,
            )
        return result
