"""
File event source.

Watches the directories of file-watcher endpoints, waits for files to
become stable, and runs bounded concurrent processing jobs:

    detect -> stabilize -> queue -> read -> handle -> consume -> post-process

Each endpoint has its own FIFO queue and ``max_concurrent_files`` slots.
A path is never processed twice at the same time; change events for a
path that is already pending are coalesced into the pending job.
"""

import asyncio
import re
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable
from uuid import uuid4

from src.core.models import (
    FileContent,
    FileEvent,
    FileMonitorConfig,
    FileProcessorKind,
    IntegrationEndpoint,
    ProcessingJob,
)
from src.observability import metrics
from src.observability.events import EventChannel
from src.observability.logger import get_logger

from .handlers import dispatch
from .post_processing import apply_post_processing
from .reader import CHECKSUM_MAX_BYTES, file_checksum, read_file
from .stability import wait_until_stable
from .watcher import DirectoryEventHandler, existing_files, start_observer

logger = get_logger(__name__)

FileConsumer = Callable[[IntegrationEndpoint, FileContent, dict[str, Any]], Awaitable[None]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _EndpointMonitor:
    """Watch and queue state of one endpoint."""

    def __init__(self, endpoint: IntegrationEndpoint, config: FileMonitorConfig):
        self.endpoint = endpoint
        self.config = config
        self.observer = None
        self.handlers: list[DirectoryEventHandler] = []
        self.queue: deque[str] = deque()
        self.active: set[str] = set()
        # Paths stabilizing, queued or processing
        self.pending_paths: set[Path] = set()
        self.stabilizing: dict[Path, asyncio.Task] = {}

    @property
    def endpoint_id(self) -> str:
        return self.endpoint.id


class FileEventSource:
    """
    Owns the watchers, file events and processing jobs of all file endpoints.

    Args:
        events: Optional channel for ``file-monitor.*`` events
        on_file_processed: Coroutine called with (endpoint, content, handler
                           result) for every successfully handled file;
                           raising makes the attempt fail
    """

    def __init__(self, events: EventChannel | None = None, on_file_processed: FileConsumer | None = None):
        self.events = events
        self.on_file_processed = on_file_processed
        self._monitors: dict[str, _EndpointMonitor] = {}
        self._file_events: dict[str, FileEvent] = {}
        self._jobs: dict[str, ProcessingJob] = {}
        self._tasks: set[asyncio.Task] = set()

    # =======================
    # LIFECYCLE
    # =======================

    async def start_monitoring(self, endpoint: IntegrationEndpoint) -> bool:
        """
        Start watching an endpoint's directories.

        Every enabled watch path must exist; otherwise nothing is started.

        Returns:
            True when monitoring runs (or already ran), False on failure
        """
        config = endpoint.file_monitor_config
        if config is None:
            logger.error(f"Endpoint {endpoint.id} has no file monitor configuration",
                         extra={"endpoint_id": endpoint.id})
            return False

        if endpoint.id in self._monitors:
            logger.warning(f"File monitoring for {endpoint.id} already running", extra={"endpoint_id": endpoint.id})
            return True

        missing = self._missing_paths(config)
        if missing:
            message = f"Watch path does not exist: {', '.join(missing)}"
            logger.error(message, extra={"endpoint_id": endpoint.id})
            await self._publish("file-monitor.error", endpoint.id, error=message)
            return False

        monitor = _EndpointMonitor(endpoint, config)
        loop = asyncio.get_running_loop()
        rules = config.processing_rules.processing
        ignored_roots = [Path(p) for p in (rules.processed_path, rules.error_path, rules.backup_path) if p]

        for watch_path in config.enabled_paths:
            monitor.handlers.append(DirectoryEventHandler(
                loop,
                watch_path,
                lambda event_type, path, m=monitor: self._on_fs_event(m, event_type, path),
                exclude_pattern=config.processing_rules.naming.exclude_pattern,
                ignored_roots=ignored_roots,
            ))

        try:
            monitor.observer = await asyncio.to_thread(start_observer, monitor.handlers)
        except OSError as e:
            logger.error(f"Failed to start watcher for {endpoint.id}: {e}", extra={"endpoint_id": endpoint.id})
            await self._publish("file-monitor.error", endpoint.id, error=str(e))
            return False

        self._monitors[endpoint.id] = monitor

        if not config.settings.ignore_initial:
            for handler in monitor.handlers:
                for path in await asyncio.to_thread(existing_files, handler):
                    self._on_fs_event(monitor, "added", path)

        logger.info(
            f"File monitoring started for {endpoint.name}",
            extra={"endpoint_id": endpoint.id, "watch_paths": [p.path for p in config.enabled_paths]},
        )
        await self._publish(
            "file-monitor.started", endpoint.id,
            endpoint_name=endpoint.name,
            watch_paths=[p.model_dump() for p in config.enabled_paths],
        )
        return True

    async def stop_monitoring(self, endpoint_id: str) -> None:
        """
        Stop watching an endpoint.

        Files still waiting to stabilize are dropped; queued and running
        jobs finish.
        """
        monitor = self._monitors.pop(endpoint_id, None)
        if monitor is None:
            return

        for task in monitor.stabilizing.values():
            task.cancel()
        if monitor.observer is not None:
            monitor.observer.stop()
            await asyncio.to_thread(monitor.observer.join)

        logger.info(f"File monitoring stopped for {endpoint_id}", extra={"endpoint_id": endpoint_id})

    async def stop_all(self) -> None:
        for endpoint_id in list(self._monitors):
            await self.stop_monitoring(endpoint_id)

    def is_monitoring(self, endpoint_id: str) -> bool:
        return endpoint_id in self._monitors

    async def wait_idle(self) -> None:
        """Wait until no file is stabilizing, queued or processing."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    # =======================
    # DETECTION
    # =======================

    @staticmethod
    def _missing_paths(config: FileMonitorConfig) -> list[str]:
        return [p.path for p in config.enabled_paths if not Path(p.path).is_dir()]

    def should_process_file(self, path: Path, config: FileMonitorConfig) -> bool:
        """Eligibility by extension list and naming patterns."""
        naming = config.processing_rules.naming
        extensions = {ft.extension for ft in config.processing_rules.file_types}
        if extensions and path.suffix.lower() not in extensions:
            return False
        if naming.require_pattern and not re.search(naming.require_pattern, path.name):
            return False
        if naming.exclude_pattern and re.search(naming.exclude_pattern, path.name):
            return False
        return True

    def _on_fs_event(self, monitor: _EndpointMonitor, event_type: str, path: Path) -> None:
        """Runs on the event loop for every accepted watchdog event."""
        if self._monitors.get(monitor.endpoint_id) is not monitor:
            return
        if not self.should_process_file(path, monitor.config):
            return

        if event_type == "removed":
            self._spawn(self._record_removal(monitor, path))
            return

        if path in monitor.pending_paths:
            logger.debug(f"Coalesced {event_type} event for {path.name}",
                         extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path)})
            return

        monitor.pending_paths.add(path)
        task = self._spawn(self._stabilize_and_queue(monitor, event_type, path))
        monitor.stabilizing[path] = task

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _record_removal(self, monitor: _EndpointMonitor, path: Path) -> None:
        event = FileEvent(
            event_id=f"file_{uuid4().hex}",
            endpoint_id=monitor.endpoint_id,
            event_type="removed",
            file_path=str(path),
            file_name=path.name,
            extension=path.suffix.lower(),
            directory=str(path.parent),
        )
        self._file_events[event.event_id] = event
        await self._publish("file-monitor.file.detected", monitor.endpoint_id,
                            file_event=event.model_dump(mode="json"))

    async def _stabilize_and_queue(self, monitor: _EndpointMonitor, event_type: str, path: Path) -> None:
        settings = monitor.config.settings
        try:
            size = await wait_until_stable(path, settings.stability_threshold, settings.poll_interval)
        except asyncio.CancelledError:
            monitor.pending_paths.discard(path)
            raise
        finally:
            monitor.stabilizing.pop(path, None)

        if size is None:
            monitor.pending_paths.discard(path)
            logger.debug(f"{path.name} disappeared before it was stable",
                         extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path)})
            return

        try:
            event = await self._create_file_event(monitor.endpoint_id, event_type, path)
        except OSError as e:
            monitor.pending_paths.discard(path)
            logger.warning(f"Could not stat {path}: {e}", extra={"endpoint_id": monitor.endpoint_id})
            return

        logger.info(
            f"File {event_type}: {event.file_name} ({event.file_size} bytes)",
            extra={"endpoint_id": monitor.endpoint_id, "file_path": event.file_path},
        )
        await self._publish("file-monitor.file.detected", monitor.endpoint_id,
                            file_event=event.model_dump(mode="json"))
        self._enqueue(monitor, event)

    async def _create_file_event(self, endpoint_id: str, event_type: str, path: Path) -> FileEvent:
        stat = await asyncio.to_thread(path.stat)
        checksum = None
        if 0 < stat.st_size < CHECKSUM_MAX_BYTES:
            checksum = await asyncio.to_thread(file_checksum, path)

        event = FileEvent(
            event_id=f"file_{uuid4().hex}",
            endpoint_id=endpoint_id,
            event_type=event_type,
            file_path=str(path),
            file_name=path.name,
            file_size=stat.st_size,
            checksum=checksum,
            extension=path.suffix.lower(),
            directory=str(path.parent),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )
        self._file_events[event.event_id] = event
        return event

    # =======================
    # PROCESSING
    # =======================

    def _enqueue(self, monitor: _EndpointMonitor, event: FileEvent) -> ProcessingJob:
        job = ProcessingJob(job_id=f"job_{event.event_id}", file_event=event)
        self._jobs[job.job_id] = job
        monitor.queue.append(job.job_id)
        if len(monitor.active) >= monitor.config.settings.max_concurrent_files:
            logger.debug(f"{event.file_name} queued, concurrency limit reached",
                         extra={"endpoint_id": monitor.endpoint_id, "queued": len(monitor.queue)})
        self._pump(monitor)
        return job

    def _pump(self, monitor: _EndpointMonitor) -> None:
        """Start queued jobs while slots are free."""
        limit = monitor.config.settings.max_concurrent_files
        while monitor.queue and len(monitor.active) < limit:
            job_id = monitor.queue.popleft()
            monitor.active.add(job_id)
            metrics.set_gauge(metrics.active_file_jobs, len(monitor.active), source_id=monitor.endpoint_id)
            self._spawn(self._run_job(monitor, self._jobs[job_id]))

    async def _run_job(self, monitor: _EndpointMonitor, job: ProcessingJob) -> None:
        settings = monitor.config.settings
        event = job.file_event
        path = Path(event.file_path)

        try:
            while True:
                job.attempts += 1
                job.status = "processing"
                job.start_time = _now()
                event.transition("processing")
                logger.info(f"Processing {event.file_name} (attempt {job.attempts})",
                            extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path),
                                   "attempt": job.attempts})
                try:
                    job.result = await self._process_once(monitor, path)
                except Exception as e:
                    job.error = str(e)
                    event.error_message = str(e)
                    if job.attempts < settings.retry_attempts:
                        logger.warning(
                            f"Processing {event.file_name} failed, retrying in {settings.retry_delay}ms: {e}",
                            extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path),
                                   "attempt": job.attempts},
                        )
                        metrics.increment_counter(metrics.file_jobs_total, 1,
                                                  source_id=monitor.endpoint_id, status="retried")
                        await asyncio.sleep(settings.retry_delay / 1000)
                        continue
                    await self._fail_job(monitor, job, path, e)
                    return
                await self._complete_job(monitor, job, path)
                return
        finally:
            monitor.active.discard(job.job_id)
            monitor.pending_paths.discard(path)
            metrics.set_gauge(metrics.active_file_jobs, len(monitor.active), source_id=monitor.endpoint_id)
            self._pump(monitor)

    async def _process_once(self, monitor: _EndpointMonitor, path: Path) -> dict[str, Any]:
        file_type = monitor.config.processing_rules.file_type_for(path.suffix)
        if file_type is not None:
            kind, encoding, max_size = file_type.processor, file_type.encoding, file_type.max_size
        else:
            kind, encoding, max_size = FileProcessorKind.GENERIC, "binary", CHECKSUM_MAX_BYTES

        content = await asyncio.to_thread(read_file, path, encoding, max_size)
        metrics.increment_counter(metrics.file_bytes_read_total, content.size, source_id=monitor.endpoint_id)

        result = dispatch(kind, content)
        if self.on_file_processed is not None:
            await self.on_file_processed(monitor.endpoint, content, result)
        return result

    async def _complete_job(self, monitor: _EndpointMonitor, job: ProcessingJob, path: Path) -> None:
        event = job.file_event
        rules = monitor.config.processing_rules.processing
        try:
            final = await asyncio.to_thread(apply_post_processing, path, rules, True)
            job.final_path = str(final) if final else None
        except OSError as e:
            job.final_path = str(path)
            logger.error(f"Post-processing of {event.file_name} failed: {e}",
                         extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path)})
            await self._publish("file-monitor.error", monitor.endpoint_id,
                                error=f"Post-processing failed: {e}", file_path=str(path))

        job.status = "completed"
        job.end_time = _now()
        job.error = None
        event.transition("completed")
        event.error_message = None
        metrics.increment_counter(metrics.file_jobs_total, 1, source_id=monitor.endpoint_id, status="completed")

        logger.info(f"Processed {event.file_name}",
                    extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path),
                           "processing_time_ms": round(job.processing_time_ms, 3)})
        await self._publish(
            "file-monitor.file.processed", monitor.endpoint_id,
            file_event=event.model_dump(mode="json"),
            result=job.result,
            processing_time_ms=job.processing_time_ms,
        )

    async def _fail_job(self, monitor: _EndpointMonitor, job: ProcessingJob, path: Path, error: Exception) -> None:
        event = job.file_event
        rules = monitor.config.processing_rules.processing
        try:
            final = await asyncio.to_thread(apply_post_processing, path, rules, False)
            job.final_path = str(final) if final else None
        except OSError as e:
            job.final_path = str(path)
            logger.error(f"Moving {event.file_name} to the error directory failed: {e}",
                         extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path)})

        job.status = "failed"
        job.end_time = _now()
        event.transition("error")
        metrics.increment_counter(metrics.file_jobs_total, 1, source_id=monitor.endpoint_id, status="failed")
        metrics.increment_counter(metrics.errors_total, 1, source_id=monitor.endpoint_id,
                                  error_type=type(error).__name__, component="file_source")

        logger.error(f"Processing {event.file_name} failed after {job.attempts} attempts: {error}",
                     extra={"endpoint_id": monitor.endpoint_id, "file_path": str(path), "attempt": job.attempts})
        await self._publish(
            "file-monitor.file.error", monitor.endpoint_id,
            file_event=event.model_dump(mode="json"),
            error=str(error),
            attempts=job.attempts,
        )

    # =======================
    # MANUAL OPERATIONS
    # =======================

    async def process_file(self, endpoint_id: str, file_path: str | Path) -> ProcessingJob | None:
        """
        Queue a file for processing now, skipping the stability wait.

        Returns:
            The queued job, or None if the file is already pending

        Raises:
            KeyError: If the endpoint is not monitored
            FileNotFoundError: If the file does not exist
        """
        monitor = self._monitors.get(endpoint_id)
        if monitor is None:
            raise KeyError(f"Endpoint {endpoint_id} is not monitored")

        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(str(path))
        if path in monitor.pending_paths:
            return None

        monitor.pending_paths.add(path)
        try:
            event = await self._create_file_event(endpoint_id, "added", path)
        except OSError:
            monitor.pending_paths.discard(path)
            raise
        return self._enqueue(monitor, event)

    async def retry_failed(self, endpoint_id: str, job_id: str | None = None) -> list[ProcessingJob]:
        """
        Re-queue failed jobs of an endpoint from where their file ended up.

        Each retry is a new FileEvent and job; the failed job keeps its
        history.

        Returns:
            The newly queued jobs
        """
        failed = [
            job for job in self._jobs.values()
            if job.status == "failed" and job.file_event.endpoint_id == endpoint_id
            and (job_id is None or job.job_id == job_id)
        ]

        queued = []
        for job in failed:
            path = Path(job.final_path or job.file_event.file_path)
            if not path.is_file():
                logger.warning(f"Cannot retry {job.job_id}, {path} no longer exists",
                               extra={"endpoint_id": endpoint_id})
                continue
            new_job = await self.process_file(endpoint_id, path)
            if new_job is not None:
                queued.append(new_job)
        return queued

    # =======================
    # INSPECTION
    # =======================

    def get_file_events(self, endpoint_id: str | None = None) -> list[FileEvent]:
        return [e for e in self._file_events.values() if endpoint_id is None or e.endpoint_id == endpoint_id]

    def get_file_event(self, event_id: str) -> FileEvent | None:
        return self._file_events.get(event_id)

    def get_processing_jobs(self, endpoint_id: str | None = None) -> list[ProcessingJob]:
        return [
            j for j in self._jobs.values()
            if endpoint_id is None or j.file_event.endpoint_id == endpoint_id
        ]

    def get_processing_job(self, job_id: str) -> ProcessingJob | None:
        return self._jobs.get(job_id)

    def get_monitoring_stats(self, endpoint_id: str | None = None) -> dict[str, Any]:
        events = self.get_file_events(endpoint_id)
        jobs = self.get_processing_jobs(endpoint_id)

        events_by_type: dict[str, int] = {}
        events_by_status: dict[str, int] = {}
        for event in events:
            events_by_type[event.event_type] = events_by_type.get(event.event_type, 0) + 1
            events_by_status[event.processing_status] = events_by_status.get(event.processing_status, 0) + 1

        monitors = [m for m in self._monitors.values() if endpoint_id is None or m.endpoint_id == endpoint_id]
        return {
            "total_watchers": len(monitors),
            "total_events": len(events),
            "events_by_type": events_by_type,
            "events_by_status": events_by_status,
            "processing_queue": {
                "total": len(jobs),
                "queued": sum(1 for j in jobs if j.status == "queued"),
                "processing": sum(1 for j in jobs if j.status == "processing"),
                "completed": sum(1 for j in jobs if j.status == "completed"),
                "failed": sum(1 for j in jobs if j.status == "failed"),
            },
            "active_processing": sum(len(m.active) for m in monitors),
        }

    def test_connection(self, endpoint: IntegrationEndpoint) -> bool:
        """True when the endpoint has a file monitor config and every enabled watch path exists."""
        config = endpoint.file_monitor_config
        if config is None:
            return False
        missing = self._missing_paths(config)
        if missing:
            logger.error(f"File monitor check failed for {endpoint.name}: missing {', '.join(missing)}",
                         extra={"endpoint_id": endpoint.id})
            return False
        return True

    def clear_event_data(self, event_id: str | None = None) -> int:
        """
        Forget finished file events and their jobs (all, or one event).

        Events whose job is still queued or processing are kept.

        Returns:
            Number of events removed
        """
        busy = {j.file_event.event_id for j in self._jobs.values() if j.status in ("queued", "processing")}
        targets = [event_id] if event_id else list(self._file_events)
        removed = 0
        for eid in targets:
            if eid in busy or eid not in self._file_events:
                continue
            del self._file_events[eid]
            for jid in [jid for jid, j in self._jobs.items() if j.file_event.event_id == eid]:
                del self._jobs[jid]
            removed += 1
        logger.info(f"Cleared {removed} file events", extra={"event_id": event_id})
        return removed

    async def _publish(self, name: str, endpoint_id: str, **payload: Any) -> None:
        if self.events is not None:
            await self.events.publish(name, endpoint_id=endpoint_id, **payload)
