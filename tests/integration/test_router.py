"""
Integration tests for the router.

Tests delivery to every target type, routing rules, retry with backoff,
dead-lettering and re-drive against an in-memory store and a mocked HTTP
transport.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.core.models import RoutingConfig, TargetType
from src.routing import Router


def _later(seconds: float = 3600) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


async def _wait_for(predicate, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def ok_router(kv_store, event_channel, http_recorder):
    client, transport = http_recorder(lambda request: httpx.Response(200, json={"ok": True}))
    router = Router(kv_store, events=event_channel, http_client=client, retry_tick_seconds=0.01)
    router.transport = transport
    return router


@pytest.mark.integration
async def test_webhook_delivery_sends_source_header(ok_router):
    """Test webhook targets receive the record as JSON with the source header."""
    config = RoutingConfig(targets=[{"type": "webhook", "endpoint": "https://erp.example.com/hooks"}])

    result = await ok_router.route({"container": "MSKU1"}, config, "edi")

    assert result.success is True
    assert result.routed_targets == ["https://erp.example.com/hooks"]
    [request] = ok_router.transport.requests
    assert request.method == "POST"
    assert request.headers["X-Integration-Source"] == "edi"
    assert json.loads(request.content) == {"container": "MSKU1"}


@pytest.mark.integration
async def test_api_target_methods(ok_router):
    """Test api targets honour the method suffix and send GET data as query params."""
    config = RoutingConfig(targets=[
        {"type": "api", "endpoint": "https://erp.example.com/orders|PUT"},
        {"type": "api", "endpoint": "https://erp.example.com/lookup|GET"},
    ])

    result = await ok_router.route({"id": "7"}, config, "edi")

    assert result.success is True
    by_method = {r.method: r for r in ok_router.transport.requests}
    assert set(by_method) == {"PUT", "GET"}
    assert by_method["GET"].url.params["id"] == "7"
    assert by_method["PUT"].url.path == "/orders"


@pytest.mark.integration
async def test_kafka_and_database_targets(ok_router, kv_store):
    """Test topic publishes and database-queue writes go through the store."""
    config = RoutingConfig(targets=[
        {"type": "kafkaTopic", "endpoint": "containers"},
        {"type": "database", "endpoint": "orders"},
    ])

    result = await ok_router.route({"id": 1}, config, "edi")

    assert result.success is True
    [(channel, message)] = kv_store.published
    assert channel == "kafka:containers"
    assert message["source"] == "edi"
    assert message["data"] == {"id": 1}

    [key] = await kv_store.keys("db_queue:orders:*")
    assert (await kv_store.get(key))["data"] == {"id": 1}
    assert kv_store.ttl(key) > 3500


@pytest.mark.integration
async def test_file_target_never_overwrites(ok_router, tmp_path):
    """Test two deliveries to one file target produce two distinct files."""
    config = RoutingConfig(targets=[{"type": "file", "endpoint": str(tmp_path / "out" / "orders.json")}])

    await ok_router.route({"id": 1}, config, "edi")
    await ok_router.route({"id": 2}, config, "edi")

    files = sorted((tmp_path / "out").iterdir())
    assert len(files) == 2
    assert all(f.name.startswith("orders_") and f.suffix == ".json" for f in files)
    assert sorted(json.loads(f.read_text())["data"]["id"] for f in files) == [1, 2]


@pytest.mark.integration
async def test_target_conditions(ok_router, kv_store):
    """Test target conditions select targets when no rule pins one."""
    config = RoutingConfig(targets=[
        {"type": "kafka", "endpoint": "hazmat", "condition": {"field": "class", "operator": "equals", "value": "hazmat"}},
        {"type": "kafka", "endpoint": "general", "condition": {"field": "class", "operator": "not_equals", "value": "hazmat"}},
    ])

    await ok_router.route({"class": "hazmat"}, config, "edi")
    await ok_router.route({"class": "dry"}, config, "edi")

    assert [channel for channel, _ in kv_store.published] == ["kafka:hazmat", "kafka:general"]


@pytest.mark.integration
async def test_no_matching_target_is_success(ok_router):
    config = RoutingConfig(targets=[
        {"type": "kafka", "endpoint": "x", "condition": {"field": "a", "operator": "exists"}},
    ])

    result = await ok_router.route({"b": 1}, config, "edi")

    assert result.success is True
    assert result.total_targets == 0


@pytest.mark.integration
async def test_route_rule_pins_target(ok_router, kv_store):
    """Test a route rule delivers only to the pinned target."""
    config = RoutingConfig(
        targets=[{"type": "kafka", "endpoint": "priority"}, {"type": "kafka", "endpoint": "bulk"}],
        rules=[{"condition": {"field": "priority", "operator": "greater_than", "value": 5},
                "action": "route", "target": "priority"}],
    )

    await ok_router.route({"priority": 9}, config, "edi")
    await ok_router.route({"priority": 1}, config, "edi")

    assert [channel for channel, _ in kv_store.published] == ["kafka:priority", "kafka:priority", "kafka:bulk"]


@pytest.mark.integration
async def test_discard_rule_drops_record(ok_router, kv_store):
    """Test discard stops routing before any delivery."""
    config = RoutingConfig(
        targets=[{"type": "kafka", "endpoint": "all"}],
        rules=[{"condition": {"field": "test", "operator": "equals", "value": True}, "action": "discard"}],
    )

    result = await ok_router.route({"test": True}, config, "edi")

    assert result.success is True
    assert result.total_targets == 0
    assert list(kv_store.published) == []


@pytest.mark.integration
async def test_alert_and_store_rules(ok_router, kv_store, event_channel):
    """Test alert emits an event and store parks the record; routing continues."""
    config = RoutingConfig(
        targets=[{"type": "kafka", "endpoint": "all"}],
        rules=[
            {"condition": {"field": "weight", "operator": "greater_than", "value": 30000},
             "action": "alert", "parameters": {"severity": "high"}},
            {"condition": {"field": "weight", "operator": "greater_than", "value": 30000},
             "action": "store", "parameters": {"key": "heavy", "ttl": 60}},
        ],
    )

    result = await ok_router.route({"weight": 41000}, config, "edi")

    assert result.routed_targets == ["all"]
    events = event_channel.drain()
    alert = next(e for e in events if e.name == "routing.alert")
    assert alert.payload["parameters"] == {"severity": "high"}
    assert alert.payload["data"] == {"weight": 41000}

    [key] = await kv_store.keys("stored_data:heavy:*")
    assert await kv_store.get(key) == {"weight": 41000}
    assert kv_store.ttl(key) <= 60


@pytest.mark.integration
async def test_failure_without_policy_is_final(kv_store, http_recorder):
    """Test a failing target without retry policy is reported and not retried."""
    client, _ = http_recorder(lambda request: httpx.Response(503))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[
        {"type": "webhook", "endpoint": "https://down.example.com"},
        {"type": "kafka", "endpoint": "up"},
    ])

    result = await router.route({"id": 1}, config, "edi")

    assert result.success is False
    assert result.routed_targets == ["up"]
    assert result.failed_targets == ["https://down.example.com"]
    assert "HTTP 503" in result.errors[0]
    assert router.get_retry_queue_status()["size"] == 0


@pytest.mark.integration
async def test_retry_budget_then_dead_letter(kv_store, event_channel, http_recorder):
    """Test max_attempts=3 gives exactly three deliveries then one dead letter."""
    client, transport = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, events=event_channel, http_client=client)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks",
        "retryPolicy": {"maxAttempts": 3, "backoffMultiplier": 2, "initialDelay": 1000},
    }])

    await router.route({"id": 1}, config, "edi")
    [item] = router.get_retry_queue_status()["items"]
    assert item["attempt"] == 1

    assert await router.retries.process_due(_later()) == 1
    assert router.get_retry_queue_status()["items"][0]["attempt"] == 2
    assert await router.retries.process_due(_later()) == 1
    assert await router.retries.process_due(_later()) == 0

    assert len(transport.requests) == 3
    assert router.get_retry_queue_status()["size"] == 0
    [entry] = await router.get_dead_letter_queue("edi")
    assert entry["attempts"] == 3
    assert entry["original_target"] == "https://erp.example.com/hooks"
    assert entry["key"].startswith("dlq:edi:")
    assert "routing.dead_letter" in [e.name for e in event_channel.drain()]


@pytest.mark.integration
async def test_retry_not_due_before_backoff(kv_store, http_recorder):
    """Test a retry is not attempted before its backoff delay."""
    client, transport = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks",
        "retryPolicy": {"maxAttempts": 3, "initialDelay": 60000},
    }])

    await router.route({"id": 1}, config, "edi")

    assert await router.retries.process_due() == 0
    assert len(transport.requests) == 1


@pytest.mark.integration
async def test_retry_success_clears_context(kv_store, http_recorder):
    """Test a successful retry removes the context without a dead letter."""
    responses = iter([500, 200])
    client, transport = http_recorder(lambda request: httpx.Response(next(responses)))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks",
        "retryPolicy": {"maxAttempts": 3, "initialDelay": 10},
    }])

    await router.route({"id": 1}, config, "edi")
    await router.retries.process_due(_later())

    assert len(transport.requests) == 2
    assert router.get_retry_queue_status()["size"] == 0
    assert await router.get_dead_letter_queue() == []


@pytest.mark.integration
async def test_single_attempt_policy_dead_letters_immediately(kv_store, http_recorder):
    client, _ = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks", "retryPolicy": {"maxAttempts": 1},
    }])

    await router.route({"id": 1}, config, "edi")

    [entry] = await router.get_dead_letter_queue("edi")
    assert entry["attempts"] == 1
    assert router.get_retry_queue_status()["size"] == 0


@pytest.mark.integration
async def test_newer_failure_takes_over_pending_retry(kv_store, http_recorder):
    """Test a second failure on the same key replaces the record and keeps counting attempts."""
    client, transport = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks",
        "retryPolicy": {"maxAttempts": 3, "initialDelay": 60000},
    }])

    await router.route({"id": 1}, config, "edi")
    await router.route({"id": 2}, config, "edi")

    [item] = router.get_retry_queue_status()["items"]
    assert item["attempt"] == 2
    assert await router.get_dead_letter_queue("edi") == []

    assert await router.retries.process_due(_later()) == 1

    assert len(transport.requests) == 3
    assert router.get_retry_queue_status()["size"] == 0
    [entry] = await router.get_dead_letter_queue("edi")
    assert entry["data"] == {"id": 2}
    assert entry["attempts"] == 3
    assert json.loads(transport.requests[-1].content) == {"id": 2}


@pytest.mark.integration
async def test_binary_record_is_delivered_to_every_target(ok_router, kv_store):
    """Test a passthrough binary record reaches webhook and topic as base64 text."""
    config = RoutingConfig(targets=[
        {"type": "webhook", "endpoint": "https://erp.example.com/hooks"},
        {"type": "kafkaTopic", "endpoint": "raw"},
    ])

    result = await ok_router.route({"data": b"\x00\x01"}, config, "edi")

    assert result.success is True
    assert len(result.routed_targets) == 2
    [request] = ok_router.transport.requests
    assert json.loads(request.content) == {"data": "AAE="}
    [(_, message)] = kv_store.published
    assert message["data"] == {"data": "AAE="}


@pytest.mark.integration
async def test_datetime_record_is_retried_then_dead_lettered(kv_store, http_recorder):
    """Test a record holding a datetime goes through retry and the dead-letter store."""
    client, transport = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks",
        "retryPolicy": {"maxAttempts": 2, "initialDelay": 10},
    }])
    when = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)

    result = await router.route({"when": when}, config, "edi")
    assert result.success is False
    assert await router.retries.process_due(_later()) == 1

    assert len(transport.requests) == 2
    assert json.loads(transport.requests[0].content) == {"when": "2025-03-01T08:30:00+00:00"}
    [entry] = await router.get_dead_letter_queue("edi")
    assert entry["attempts"] == 2
    assert router.get_retry_queue_status()["in_flight"] == 0


@pytest.mark.integration
async def test_unexpected_handler_error_is_isolated(ok_router, monkeypatch):
    """Test an unexpected exception in one target is reported as that target's failure."""
    async def broken(data, target, source_id):
        raise RuntimeError("driver crashed")

    monkeypatch.setitem(ok_router.dispatcher._handlers, TargetType.DATABASE, broken)
    config = RoutingConfig(targets=[
        {"type": "webhook", "endpoint": "https://erp.example.com/hooks"},
        {"type": "database", "endpoint": "orders"},
    ])

    result = await ok_router.route({"id": 1}, config, "edi")

    assert result.routed_targets == ["https://erp.example.com/hooks"]
    assert result.failed_targets == ["orders"]
    assert "driver crashed" in result.errors[0]


@pytest.mark.integration
async def test_disabled_dead_letter_queue_drops_record(kv_store, http_recorder):
    client, _ = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(
        targets=[{"type": "webhook", "endpoint": "https://h", "retryPolicy": {"maxAttempts": 1}}],
        dead_letter_queue={"enabled": False},
    )

    await router.route({"id": 1}, config, "edi")

    assert await kv_store.keys("dlq:*") == []


@pytest.mark.integration
@pytest.mark.slow
async def test_background_retry_timing(kv_store, http_recorder):
    """Test HTTP 500 with two attempts and 100ms backoff: retry after ~100ms, then a dead letter."""
    client, transport = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, http_client=client, retry_tick_seconds=0.01)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks",
        "retryPolicy": {"maxAttempts": 2, "backoffMultiplier": 2, "initialDelay": 100},
    }])
    router.start()
    try:
        await router.route({"id": 1}, config, "edi")

        async def dead_lettered():
            return bool(await kv_store.keys("dlq:edi:*"))

        await _wait_for(dead_lettered)
    finally:
        await router.stop()

    assert len(transport.requests) == 2
    gap = transport.times[1] - transport.times[0]
    assert 0.09 <= gap < 1.0
    [entry] = await router.get_dead_letter_queue("edi")
    assert entry["attempts"] == 2


@pytest.mark.integration
async def test_redrive_dead_letters(kv_store, http_recorder):
    """Test re-drive delivers dead letters once and removes the delivered ones."""
    state = {"status": 500}
    client, transport = http_recorder(lambda request: httpx.Response(state["status"]))
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[{
        "type": "webhook", "endpoint": "https://erp.example.com/hooks", "retryPolicy": {"maxAttempts": 1},
    }])
    await router.route({"id": 1}, config, "edi")

    failed = await router.redrive_dead_letters("edi")
    assert failed["redriven"] == 0 and failed["failed"] == 1
    assert len(await router.get_dead_letter_queue("edi")) == 1

    state["status"] = 200
    result = await router.redrive_dead_letters("edi")

    assert result == {"redriven": 1, "failed": 0, "errors": []}
    assert await router.get_dead_letter_queue("edi") == []
    assert json.loads(transport.requests[-1].content) == {"id": 1}
    assert router.get_retry_queue_status()["size"] == 0


@pytest.mark.integration
async def test_clear_queues(kv_store, http_recorder):
    client, _ = http_recorder(lambda request: httpx.Response(500))
    router = Router(kv_store, http_client=client)
    slow = RoutingConfig(targets=[{"type": "webhook", "endpoint": "https://a", "retryPolicy": {"initialDelay": 60000}}])
    final = RoutingConfig(targets=[{"type": "webhook", "endpoint": "https://b", "retryPolicy": {"maxAttempts": 1}}])

    await router.route({"id": 1}, slow, "edi")
    await router.route({"id": 2}, final, "rfid")

    assert await router.clear_retry_queue("edi") == 1
    assert await router.clear_dead_letter_queue("edi") == 0
    assert await router.clear_dead_letter_queue() == 1


@pytest.mark.integration
async def test_drain_settles_every_pending_retry(kv_store, http_recorder):
    """Test draining waits out the backoff until the retry table is empty."""
    calls = {"a.example.com": 0, "b.example.com": 0}

    def respond(request: httpx.Request) -> httpx.Response:
        calls[request.url.host] += 1
        # a recovers on its second delivery, b never does
        if request.url.host == "a.example.com" and calls["a.example.com"] == 2:
            return httpx.Response(200)
        return httpx.Response(500)

    client, _ = http_recorder(respond)
    router = Router(kv_store, http_client=client)
    config = RoutingConfig(targets=[
        {"type": "webhook", "endpoint": "https://a.example.com",
         "retryPolicy": {"maxAttempts": 3, "initialDelay": 10}},
        {"type": "webhook", "endpoint": "https://b.example.com",
         "retryPolicy": {"maxAttempts": 3, "initialDelay": 10, "backoffMultiplier": 2}},
    ])

    await router.route({"id": 1}, config, "edi")
    attempted = await router.drain_retries()

    assert attempted == 3
    assert calls == {"a.example.com": 2, "b.example.com": 3}
    assert router.get_retry_queue_status()["size"] == 0
    [entry] = await router.get_dead_letter_queue("edi")
    assert entry["original_target"] == "https://b.example.com"
    assert entry["attempts"] == 3
