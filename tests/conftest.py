"""
Pytest configuration and fixtures for integration-gateway tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import time
from typing import Any, Callable

import httpx
import pytest

from src.core.models import (
    DataProcessingConfig,
    FileMonitorConfig,
    IntegrationEndpoint,
    RouteTarget,
    RoutingConfig,
)
from src.observability.events import EventChannel
from src.storage import InMemoryKeyValueStore


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that exercise several components together"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that wait on timers or the file system watcher"
    )


# =======================
# STORE AND EVENT FIXTURES
# =======================

@pytest.fixture(scope="function")
def kv_store() -> InMemoryKeyValueStore:
    """
    In-memory key/value store standing in for Redis

    Returns:
        Empty InMemoryKeyValueStore
    """
    return InMemoryKeyValueStore()


@pytest.fixture(scope="function")
def event_channel() -> EventChannel:
    """
    Bounded event channel large enough that tests never block on it

    Returns:
        EventChannel
    """
    return EventChannel(maxsize=10_000)


# =======================
# HTTP FIXTURES
# =======================

class RecordingTransport(httpx.MockTransport):
    """
    MockTransport that remembers every request and its monotonic arrival time

    Args:
        responder: Function mapping a request to a response
    """

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []
        self.times: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            self.times.append(time.monotonic())
            return responder(request)

        super().__init__(handler)


@pytest.fixture(scope="function")
def http_recorder() -> Callable[..., tuple[httpx.AsyncClient, RecordingTransport]]:
    """
    Factory for an httpx client backed by a RecordingTransport

    Usage:
        client, transport = http_recorder(lambda request: httpx.Response(200))
    """
    def factory(responder: Callable[[httpx.Request], httpx.Response]):
        transport = RecordingTransport(responder)
        return httpx.AsyncClient(transport=transport), transport

    return factory


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="function")
def make_endpoint() -> Callable[..., IntegrationEndpoint]:
    """
    Factory for IntegrationEndpoint models

    Usage:
        endpoint = make_endpoint(processing={...}, targets=[...], file_monitor={...})
    """
    def factory(
        endpoint_id: str = "test-endpoint",
        processing: dict[str, Any] | None = None,
        targets: list[dict[str, Any]] | None = None,
        rules: list[dict[str, Any]] | None = None,
        file_monitor: dict[str, Any] | None = None,
    ) -> IntegrationEndpoint:
        return IntegrationEndpoint(
            id=endpoint_id,
            name=f"Endpoint {endpoint_id}",
            type="file_watcher" if file_monitor else "custom_api",
            data_processing_config=DataProcessingConfig.model_validate(processing or {}),
            routing_config=RoutingConfig(
                targets=[RouteTarget.model_validate(t) for t in targets or []],
                rules=rules or [],
            ),
            file_monitor_config=FileMonitorConfig.model_validate(file_monitor) if file_monitor else None,
        )

    return factory


@pytest.fixture(scope="function")
def fast_monitor_settings() -> dict[str, Any]:
    """
    File monitor settings with short timers for tests

    Returns:
        Settings dict (camelCase, as written in endpoint YAML)
    """
    return {
        "ignoreInitial": True,
        "pollInterval": 20,
        "stabilityThreshold": 60,
        "maxConcurrentFiles": 5,
        "retryAttempts": 1,
        "retryDelay": 10,
    }
