"""
Integration tests for the file event source.

Tests watching real directories with watchdog, bounded concurrency,
in-place retries, post-processing and the manual operations.
"""

import asyncio
from pathlib import Path

import pytest

from src.file_source import FileEventSource


async def _eventually(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


@pytest.fixture
async def source(event_channel):
    source = FileEventSource(events=event_channel)
    yield source
    await source.stop_all()
    await source.wait_idle()


@pytest.fixture
def inbox(tmp_path) -> Path:
    path = tmp_path / "inbox"
    path.mkdir()
    return path


@pytest.fixture
def file_endpoint(make_endpoint, inbox, fast_monitor_settings):
    def factory(settings: dict | None = None, processing: dict | None = None, pattern: str = "*.csv", **rules):
        return make_endpoint(
            endpoint_id="edi",
            file_monitor={
                "watchPaths": [{"path": str(inbox), "pattern": pattern}],
                "processingRules": {
                    "fileTypes": [{"extension": ".csv", "processor": "csv"}],
                    "processing": processing or {},
                    **rules,
                },
                "settings": {**fast_monitor_settings, **(settings or {})},
            },
        )
    return factory


@pytest.mark.integration
@pytest.mark.slow
async def test_detects_new_file_and_hands_it_to_consumer(source, file_endpoint, inbox, event_channel):
    """Test a file written to the inbox is read, handled and consumed once."""
    seen = []

    async def consumer(endpoint, content, result):
        seen.append((endpoint.id, content.content, result["total_rows"]))

    source.on_file_processed = consumer
    assert await source.start_monitoring(file_endpoint()) is True

    (inbox / "orders.csv").write_text("id,qty\n1,2\n")
    await _eventually(lambda: source.get_monitoring_stats("edi")["processing_queue"]["completed"] == 1)

    assert seen == [("edi", "id,qty\n1,2\n", 1)]
    [event] = [e for e in source.get_file_events("edi") if e.event_type == "added"]
    assert event.processing_status == "completed"
    assert event.checksum is not None
    names = [e.name for e in event_channel.drain()]
    assert names[0] == "file-monitor.started"
    assert "file-monitor.file.detected" in names
    assert "file-monitor.file.processed" in names


@pytest.mark.integration
@pytest.mark.slow
async def test_processed_file_is_moved_and_not_reprocessed(source, file_endpoint, inbox):
    """Test move-after-processing into a directory inside the watch path."""
    done = inbox / "done"
    endpoint = file_endpoint(
        processing={"moveAfterProcessing": True, "processedPath": str(done)},
    )
    endpoint.file_monitor_config.watch_paths[0].recursive = True
    assert await source.start_monitoring(endpoint) is True

    (inbox / "orders.csv").write_text("id\n1\n")
    await _eventually(lambda: (done / "orders.csv").exists())
    await asyncio.sleep(0.3)
    await source.wait_idle()

    [job] = source.get_processing_jobs("edi")
    assert job.final_path == str(done / "orders.csv")
    assert not (inbox / "orders.csv").exists()


@pytest.mark.integration
async def test_concurrency_is_bounded(source, file_endpoint, inbox):
    """Test ten files with max_concurrent_files=2 never run more than two at once."""
    state = {"current": 0, "peak": 0}

    async def consumer(endpoint, content, result):
        state["current"] += 1
        state["peak"] = max(state["peak"], state["current"])
        await asyncio.sleep(0.03)
        state["current"] -= 1

    for i in range(10):
        (inbox / f"f{i}.csv").write_text(f"id\n{i}\n")
    source.on_file_processed = consumer
    await source.start_monitoring(file_endpoint(settings={"maxConcurrentFiles": 2}))

    for i in range(10):
        await source.process_file("edi", inbox / f"f{i}.csv")
    await source.wait_idle()

    assert state["peak"] == 2
    assert source.get_monitoring_stats("edi")["processing_queue"]["completed"] == 10


@pytest.mark.integration
async def test_failed_file_is_retried_then_moved_to_error(source, file_endpoint, inbox, tmp_path, event_channel):
    """Test retry_attempts total attempts, then the error directory and a file error event."""
    calls = []

    async def consumer(endpoint, content, result):
        calls.append(content.file_path)
        raise RuntimeError("ERP rejected the file")

    source.on_file_processed = consumer
    errors = tmp_path / "errors"
    path = inbox / "orders.csv"
    path.write_text("id\n1\n")
    await source.start_monitoring(file_endpoint(
        settings={"retryAttempts": 3, "retryDelay": 5},
        processing={"errorPath": str(errors)},
    ))

    job = await source.process_file("edi", path)
    await source.wait_idle()

    assert len(calls) == 3
    assert job.status == "failed"
    assert job.attempts == 3
    assert job.error == "ERP rejected the file"
    assert job.file_event.processing_status == "error"
    assert job.final_path == str(errors / "orders.csv")
    assert (errors / "orders.csv").exists()
    error_event = next(e for e in event_channel.drain() if e.name == "file-monitor.file.error")
    assert error_event.payload["attempts"] == 3


@pytest.mark.integration
async def test_retry_failed_requeues_from_error_directory(source, file_endpoint, inbox, tmp_path):
    """Test retry_failed creates a new job for the file where it ended up."""
    state = {"fail": True}

    async def consumer(endpoint, content, result):
        if state["fail"]:
            raise RuntimeError("down")

    source.on_file_processed = consumer
    errors = tmp_path / "errors"
    path = inbox / "orders.csv"
    path.write_text("id\n1\n")
    await source.start_monitoring(file_endpoint(processing={"errorPath": str(errors)}))
    failed = await source.process_file("edi", path)
    await source.wait_idle()

    state["fail"] = False
    [retried] = await source.retry_failed("edi")
    await source.wait_idle()

    assert retried.job_id != failed.job_id
    assert retried.status == "completed"
    assert retried.file_event.file_path == str(errors / "orders.csv")
    assert failed.status == "failed"


@pytest.mark.integration
async def test_unreadable_file_fails_without_consumer(source, file_endpoint, inbox):
    """Test a file above max_size fails before the consumer runs."""
    consumed = []

    async def consumer(endpoint, content, result):
        consumed.append(content)

    source.on_file_processed = consumer
    endpoint = file_endpoint()
    endpoint.file_monitor_config.processing_rules.file_types[0].max_size = 4
    path = inbox / "big.csv"
    path.write_text("id\n1\n2\n3\n")
    await source.start_monitoring(endpoint)

    job = await source.process_file("edi", path)
    await source.wait_idle()

    assert job.status == "failed"
    assert "too large" in job.error
    assert consumed == []


@pytest.mark.integration
async def test_backup_and_delete(source, file_endpoint, inbox, tmp_path):
    """Test the backup copy is taken before the file is deleted."""
    backups = tmp_path / "backup"
    path = inbox / "orders.csv"
    path.write_text("id\n1\n")
    await source.start_monitoring(file_endpoint(processing={
        "deleteAfterProcessing": True, "backupOriginal": True, "backupPath": str(backups),
    }))

    job = await source.process_file("edi", path)
    await source.wait_idle()

    assert job.status == "completed"
    assert job.final_path is None
    assert not path.exists()
    [backup] = list(backups.iterdir())
    assert backup.read_text() == "id\n1\n"


@pytest.mark.integration
async def test_initial_files_are_processed_when_not_ignored(source, file_endpoint, inbox):
    """Test ignore_initial=False queues files already in the inbox."""
    (inbox / "a.csv").write_text("id\n1\n")
    (inbox / "b.csv").write_text("id\n2\n")
    (inbox / "c.txt").write_text("skip")

    await source.start_monitoring(file_endpoint(settings={"ignoreInitial": False}))
    await _eventually(lambda: source.get_monitoring_stats("edi")["processing_queue"]["completed"] == 2)

    names = sorted(j.file_event.file_name for j in source.get_processing_jobs("edi"))
    assert names == ["a.csv", "b.csv"]


@pytest.mark.integration
async def test_start_monitoring_failures(source, make_endpoint, tmp_path, event_channel):
    """Test missing configuration or watch paths start nothing."""
    assert await source.start_monitoring(make_endpoint("plain")) is False

    missing = make_endpoint("edi", file_monitor={"watchPaths": [{"path": str(tmp_path / "nope")}]})
    assert await source.start_monitoring(missing) is False
    assert source.is_monitoring("edi") is False
    assert source.test_connection(missing) is False
    [event] = event_channel.drain()
    assert event.name == "file-monitor.error"


@pytest.mark.integration
async def test_start_monitoring_twice(source, file_endpoint):
    endpoint = file_endpoint()

    assert await source.start_monitoring(endpoint) is True
    assert await source.start_monitoring(endpoint) is True
    assert source.get_monitoring_stats()["total_watchers"] == 1
    assert source.test_connection(endpoint) is True


@pytest.mark.integration
async def test_process_file_errors(source, file_endpoint, inbox):
    """Test manual processing of unknown endpoints and missing files."""
    with pytest.raises(KeyError):
        await source.process_file("nope", inbox / "a.csv")

    await source.start_monitoring(file_endpoint())
    with pytest.raises(FileNotFoundError):
        await source.process_file("edi", inbox / "missing.csv")


@pytest.mark.integration
async def test_pending_path_is_not_queued_twice(source, file_endpoint, inbox):
    """Test a path already pending is never processed concurrently."""
    release = asyncio.Event()

    async def consumer(endpoint, content, result):
        await release.wait()

    source.on_file_processed = consumer
    path = inbox / "orders.csv"
    path.write_text("id\n1\n")
    await source.start_monitoring(file_endpoint())

    first = await source.process_file("edi", path)
    second = await source.process_file("edi", path)
    release.set()
    await source.wait_idle()

    assert first is not None
    assert second is None
    assert len(source.get_processing_jobs("edi")) == 1


@pytest.mark.integration
async def test_should_process_file(source, file_endpoint):
    """Test extension and naming pattern eligibility."""
    config = file_endpoint(naming={"requirePattern": r"^ord", "excludePattern": r"_draft"}).file_monitor_config

    assert source.should_process_file(Path("orders.csv"), config) is True
    assert source.should_process_file(Path("orders.CSV"), config) is True
    assert source.should_process_file(Path("orders.xml"), config) is False
    assert source.should_process_file(Path("invoices.csv"), config) is False
    assert source.should_process_file(Path("orders_draft.csv"), config) is False


@pytest.mark.integration
async def test_stats_and_clear(source, file_endpoint, inbox):
    """Test monitoring stats and clearing finished events."""
    path = inbox / "orders.csv"
    path.write_text("id\n1\n")
    await source.start_monitoring(file_endpoint())
    job = await source.process_file("edi", path)
    await source.wait_idle()

    stats = source.get_monitoring_stats("edi")
    assert stats["total_watchers"] == 1
    assert stats["events_by_type"]["added"] >= 1
    assert stats["events_by_status"]["completed"] >= 1
    assert stats["active_processing"] == 0
    assert source.get_processing_job(job.job_id) is job
    assert source.get_file_event(job.file_event.event_id) is job.file_event

    assert source.clear_event_data(job.file_event.event_id) == 1
    assert source.get_processing_job(job.job_id) is None
    assert source.clear_event_data("missing") == 0
