"""
Integration pipeline orchestration.

Coordinates the flow for one endpoint:
file event source / protocol adapter → transformation engine → router
"""

import time
from typing import Any

from src.core.models import DataFormat, FileContent, IntegrationEndpoint, ProcessingResult
from src.file_source import FileEventSource
from src.observability.logger import get_logger
from src.observability.metrics import EndpointMetricsRecorder
from src.routing import Router
from src.transformation import TransformationEngine

logger = get_logger(__name__)

_BINARY_FORMATS = (DataFormat.BINARY, DataFormat.CUSTOM)


class IngestError(Exception):
    """A payload could not be processed at all (fatal transformation failure)."""

    def __init__(self, endpoint_id: str, errors: list[str]):
        self.endpoint_id = endpoint_id
        self.errors = errors
        super().__init__(f"Processing failed for {endpoint_id}: {'; '.join(errors)}")


class IntegrationPipeline:
    """
    Wires the gateway components together for one endpoint.

    Flow:
    1. Receive a raw payload (processed file or ``ingest`` call)
    2. Decode, filter, transform, validate and aggregate it
    3. Route every output record to the endpoint's targets
    4. Report the outcome to the metrics recorder

    A fatal processing failure raises IngestError; for files this makes the
    file source retry the job and finally move the file to the error
    directory. Delivery failures never fail the payload: targets with a
    retry policy are retried by the router, the rest are logged.
    """

    def __init__(
        self,
        endpoint: IntegrationEndpoint,
        engine: TransformationEngine,
        router: Router,
        source: FileEventSource | None = None,
        metrics_recorder: EndpointMetricsRecorder | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            endpoint: Endpoint configuration
            engine: Transformation engine
            router: Router (shared between endpoints)
            source: File event source; its result consumer is set to this
                    pipeline. None for endpoints fed only through ``ingest``.
            metrics_recorder: Operational metrics sink
        """
        self.endpoint = endpoint
        self.engine = engine
        self.router = router
        self.source = source
        self.metrics_recorder = metrics_recorder or EndpointMetricsRecorder()

        if self.source is not None:
            self.source.on_file_processed = self._on_file_processed

    @property
    def endpoint_id(self) -> str:
        return self.endpoint.id

    async def start(self) -> bool:
        """
        Start the router retry tick and, for file endpoints, file monitoring.

        Returns:
            False when file monitoring could not be started
        """
        self.router.start()
        if self.source is None or self.endpoint.file_monitor_config is None:
            return True

        started = await self.source.start_monitoring(self.endpoint)
        self.metrics_recorder.record_connection_attempt(self.endpoint_id, started)
        if not started:
            logger.error(f"Pipeline for {self.endpoint_id} could not start file monitoring",
                         extra={"endpoint_id": self.endpoint_id})
        return started

    async def stop(self) -> None:
        if self.source is not None:
            await self.source.stop_monitoring(self.endpoint_id)
            await self.source.wait_idle()
        await self.router.stop()

    async def ingest(self, raw: Any, size: int | None = None) -> dict[str, Any]:
        """
        Process one raw payload and route its output.

        Args:
            raw: Text, bytes or already-decoded data
            size: Payload size in bytes for metrics (derived when omitted)

        Returns:
            Dictionary with:
            - processing: The ProcessingResult
            - routing: One RoutingResult per routed record

        Raises:
            IngestError: If the payload could not be processed
        """
        start = time.monotonic()
        size = size if size is not None else _payload_size(raw)
        config = self.endpoint.data_processing_config

        result = self.engine.process(raw, config, self.endpoint_id)
        if not result.success:
            duration_ms = (time.monotonic() - start) * 1000
            self.metrics_recorder.record_error(self.endpoint_id, "; ".join(result.errors), duration_ms)
            raise IngestError(self.endpoint_id, result.errors)

        routing = []
        for record in _output_records(result):
            routing.append(await self.router.route(record, self.endpoint.routing_config, self.endpoint_id))

        duration_ms = (time.monotonic() - start) * 1000
        self.metrics_recorder.record_message(self.endpoint_id, size, duration_ms)

        failed = sum(1 for r in routing if not r.success)
        logger.info(
            f"Ingested payload for {self.endpoint_id}: {len(routing)} records routed",
            extra={
                "endpoint_id": self.endpoint_id,
                "records": len(routing),
                "routing_failures": failed,
                "processing_time_ms": round(duration_ms, 3),
            },
        )
        return {"processing": result, "routing": routing}

    async def _on_file_processed(
        self, endpoint: IntegrationEndpoint, content: FileContent, handler_result: dict[str, Any]
    ) -> None:
        if endpoint.id != self.endpoint_id:
            return
        if endpoint.data_processing_config.input_format in _BINARY_FORMATS:
            raw = content.content
        else:
            raw = content.as_text()
        await self.ingest(raw, size=content.size)


def _payload_size(raw: Any) -> int:
    if isinstance(raw, bytes):
        return len(raw)
    if isinstance(raw, str):
        return len(raw.encode("utf-8"))
    return 0


def _output_records(result: ProcessingResult) -> list[Any]:
    """Records to route: the JSON records, or the encoded text as one payload."""
    if isinstance(result.data, list):
        return result.data
    if result.data in (None, ""):
        return []
    return [result.data]
