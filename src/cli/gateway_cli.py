"""
CLI for running and administering the integration gateway.

Usage:
    integration-gateway run --config config/endpoints.yaml [--endpoint <id>]
    integration-gateway process --config config/endpoints.yaml --endpoint <id> --input <file>
    integration-gateway dlq list [--endpoint <id>]
    integration-gateway dlq clear [--endpoint <id>]
    integration-gateway dlq redrive --endpoint <id> [--config config/endpoints.yaml]
    integration-gateway check --config config/endpoints.yaml
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

from src.core.models import IntegrationEndpoint
from src.core.rules import ConfigurationError, EndpointConfigLoader
from src.core.settings import GatewaySettings
from src.file_source import FileEventSource
from src.observability import metrics
from src.observability.events import EventChannel
from src.observability.logger import configure_logging, get_logger, log_operation
from src.observability.metrics import EndpointMetricsRecorder
from src.pipeline import IngestError, IntegrationPipeline
from src.routing import Router
from src.storage import create_store
from src.transformation import TransformationEngine

logger = get_logger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load_endpoints(config_path: str, endpoint_id: str | None = None) -> list[IntegrationEndpoint]:
    loader = EndpointConfigLoader(config_path)
    if endpoint_id:
        return [loader.load_endpoint(endpoint_id)]
    return [e for e in loader.load_endpoints() if e.is_active]


def _build_router(settings: GatewaySettings, events: EventChannel | None = None) -> Router:
    return Router(
        create_store(settings.redis_url),
        events=events,
        http_timeout_seconds=settings.http_timeout_seconds,
        retry_tick_seconds=settings.retry_tick_seconds,
    )


async def _log_events(events: EventChannel) -> None:
    """Alerting stand-in: write every domain event to the log."""
    async for event in events:
        level = "warning" if event.name.endswith(("error", "failed", "dead_letter", "alert")) else "info"
        getattr(logger, level)(
            f"Event {event.name}",
            extra={"event_name": event.name, "endpoint_id": event.endpoint_id,
                   "payload": json.loads(json.dumps(event.payload, default=str))},
        )


# =======================
# COMMANDS
# =======================

async def run_gateway(args: argparse.Namespace, settings: GatewaySettings) -> int:
    """
    Start a pipeline per endpoint and run until SIGINT/SIGTERM.

    Args:
        args: Parsed command-line arguments
        settings: Process settings

    Returns:
        Exit code (0 for success)
    """
    endpoints = _load_endpoints(args.config, args.endpoint)
    if not endpoints:
        logger.error(f"No active endpoints in {args.config}")
        return 1

    if settings.metrics_port:
        metrics.start_metrics_server(settings.metrics_port)
        logger.info(f"Metrics server listening on port {settings.metrics_port}")

    events = EventChannel(maxsize=settings.event_channel_size)
    router = _build_router(settings, events)
    engine = TransformationEngine(events=events)
    recorder = EndpointMetricsRecorder()
    event_logger = asyncio.create_task(_log_events(events), name="event-logger")

    # One file source per endpoint; each pipeline owns its consumer
    pipelines = [
        IntegrationPipeline(
            endpoint, engine, router,
            source=FileEventSource(events=events) if endpoint.file_monitor_config else None,
            metrics_recorder=recorder,
        )
        for endpoint in endpoints
    ]

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    exit_code = 0
    try:
        started = [await p.start() for p in pipelines]
        if not all(started):
            failed = [p.endpoint_id for p, ok in zip(pipelines, started) if not ok]
            _print_json({"status": "error", "error": "Endpoints failed to start", "endpoints": failed})
            exit_code = 1
        else:
            _print_json({"status": "started", "endpoints": [p.endpoint_id for p in pipelines]})
            logger.info("Gateway running (press Ctrl+C to stop)...")
            await shutdown.wait()
            logger.info("Shutdown requested, stopping pipelines...")
    finally:
        for pipeline in pipelines:
            await pipeline.stop()
        await router.close()
        event_logger.cancel()
        logger.info("Shutdown complete")

    return exit_code


async def process_input(args: argparse.Namespace, settings: GatewaySettings) -> int:
    """One-shot: transform a file with an endpoint's configuration and route the output."""
    endpoint = EndpointConfigLoader(args.config).load_endpoint(args.endpoint)
    input_path = Path(args.input)
    if not input_path.is_file():
        _print_json({"status": "error", "error": f"Input file not found: {args.input}"})
        return 1

    router = _build_router(settings)
    pipeline = IntegrationPipeline(endpoint, TransformationEngine(), router)
    try:
        raw = input_path.read_text(encoding="utf-8")
        try:
            with log_operation("Processing input file", logger=logger, endpoint_id=endpoint.id, input=str(input_path)):
                outcome = await pipeline.ingest(raw, size=input_path.stat().st_size)
        except IngestError as e:
            _print_json({"status": "error", "endpoint_id": endpoint.id, "errors": e.errors})
            return 1

        # No background tick in a one-shot run: settle retries before exiting
        retries = await router.drain_retries()

        processing = outcome["processing"]
        _print_json({
            "status": "processed",
            "endpoint_id": endpoint.id,
            "metrics": processing.metrics.model_dump(),
            "errors": processing.errors,
            "warnings": processing.warnings,
            "routing": [r.model_dump() for r in outcome["routing"]],
            "retries_attempted": retries,
            "dead_letters": len(await router.get_dead_letter_queue(endpoint.id)),
        })
        return 0
    finally:
        await router.close()


async def dead_letter_command(args: argparse.Namespace, settings: GatewaySettings) -> int:
    """List, clear or re-drive dead letters."""
    router = _build_router(settings)
    try:
        if args.action == "list":
            entries = await router.get_dead_letter_queue(args.endpoint)
            _print_json({"count": len(entries), "entries": entries})

        elif args.action == "clear":
            cleared = await router.clear_dead_letter_queue(args.endpoint)
            _print_json({"status": "cleared", "count": cleared})

        elif args.action == "redrive":
            if not args.endpoint:
                _print_json({"status": "error", "error": "--endpoint is required for redrive"})
                return 1
            routing_config = None
            if args.config:
                routing_config = EndpointConfigLoader(args.config).load_endpoint(args.endpoint).routing_config
            result = await router.redrive_dead_letters(args.endpoint, routing_config)
            _print_json({"status": "redriven", **result})
            return 0 if result["failed"] == 0 else 1
        return 0
    finally:
        await router.close()


def check_endpoints(args: argparse.Namespace) -> int:
    """Pre-flight: validate the configuration and the watch paths of file endpoints."""
    source = FileEventSource()
    endpoints = _load_endpoints(args.config, args.endpoint)

    results = []
    for endpoint in endpoints:
        entry: dict[str, Any] = {"id": endpoint.id, "name": endpoint.name, "type": endpoint.type.value}
        if endpoint.file_monitor_config is not None:
            entry["ok"] = source.test_connection(endpoint)
        else:
            entry["ok"] = True
        results.append(entry)

    _print_json({"endpoints": results})
    return 0 if all(r["ok"] for r in results) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="integration-gateway",
        description="Integration gateway: transform, route and watch files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every active endpoint in a config file
  %(prog)s run --config config/endpoints.yaml

  # Transform and route one file with an endpoint's configuration
  %(prog)s process --config config/endpoints.yaml --endpoint edi-partner --input data/drop.csv

  # Inspect and re-drive dead letters (needs REDIS_URL)
  %(prog)s dlq list --endpoint edi-partner
  %(prog)s dlq redrive --endpoint edi-partner --config config/endpoints.yaml
        """
    )
    parser.add_argument("--env-file", default=".env", help="Optional .env file (default: .env)")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    run_parser = subparsers.add_parser("run", help="Run pipelines until interrupted")
    run_parser.add_argument("--config", required=True, help="Endpoint configuration YAML file")
    run_parser.add_argument("--endpoint", help="Run only this endpoint")

    process_parser = subparsers.add_parser("process", help="Transform and route one input file")
    process_parser.add_argument("--config", required=True, help="Endpoint configuration YAML file")
    process_parser.add_argument("--endpoint", help="Endpoint id (default: the only endpoint in the file)")
    process_parser.add_argument("--input", required=True, help="Path to input file")

    dlq_parser = subparsers.add_parser("dlq", help="Dead-letter administration")
    dlq_parser.add_argument("action", choices=["list", "clear", "redrive"])
    dlq_parser.add_argument("--endpoint", help="Restrict to one endpoint")
    dlq_parser.add_argument("--config", help="Endpoint configuration (redrive fallback targets)")

    check_parser = subparsers.add_parser("check", help="Validate configuration and watch paths")
    check_parser.add_argument("--config", required=True, help="Endpoint configuration YAML file")
    check_parser.add_argument("--endpoint", help="Check only this endpoint")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the gateway CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = GatewaySettings.from_env(args.env_file)
    configure_logging(level=args.log_level or settings.log_level, format_type=settings.log_format)

    try:
        if args.command == "run":
            return asyncio.run(run_gateway(args, settings))
        elif args.command == "process":
            return asyncio.run(process_input(args, settings))
        elif args.command == "dlq":
            return asyncio.run(dead_letter_command(args, settings))
        elif args.command == "check":
            return check_endpoints(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        _print_json({"status": "error", "error": str(e)})
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
