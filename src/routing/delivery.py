"""
Target transports.

One coroutine per TargetType; each either returns normally or raises
DeliveryError.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import httpx

from src.core.codecs.json_codec import json_default
from src.core.models import RouteTarget, TargetType
from src.observability import metrics
from src.observability.logger import get_logger
from src.storage import KeyValueStore

from .errors import DeliveryError

logger = get_logger(__name__)

SOURCE_HEADER = "X-Integration-Source"
DB_QUEUE_TTL_SECONDS = 3600
API_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def unique_suffix() -> str:
    """Millisecond timestamp plus a short random part, for store keys."""
    return f"{int(time.time() * 1000)}-{uuid4().hex[:8]}"


def dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=json_default)


def envelope(data: Any, source_id: str) -> dict[str, Any]:
    return {"source": source_id, "timestamp": _now_iso(), "data": data}


def split_api_endpoint(endpoint: str) -> tuple[str, str]:
    """``https://host/path|PUT`` -> (url, method); POST when no method is given."""
    if "|" not in endpoint:
        return endpoint, "POST"
    url, method = endpoint.rsplit("|", 1)
    method = method.strip().upper()
    return url, method if method in API_METHODS else "POST"


def unique_file_path(base: Path) -> Path:
    """``out/orders.json`` -> ``out/orders_20250101T120000123456Z.json``."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return base.with_name(f"{base.stem}_{stamp}{base.suffix or '.json'}")


class TargetDispatcher:
    """
    Delivers records to route targets.

    Args:
        store: Key/value store for kafka and database targets
        http_client: Shared client for webhook and api targets; one is
                     created (and owned) when omitted
        timeout_seconds: Timeout of every HTTP call
    """

    def __init__(
        self,
        store: KeyValueStore,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ):
        self.store = store
        self.timeout_seconds = timeout_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._handlers = {
            TargetType.WEBHOOK: self._deliver_webhook,
            TargetType.API: self._deliver_api,
            TargetType.KAFKA: self._deliver_kafka,
            TargetType.DATABASE: self._deliver_database,
            TargetType.FILE: self._deliver_file,
        }

    async def deliver(self, data: Any, target: RouteTarget, source_id: str) -> None:
        """
        Deliver one record.

        Raises:
            DeliveryError: If the target rejected the record or could not be reached
        """
        handler = self._handlers.get(target.type)
        if handler is None:
            raise DeliveryError(str(target.type), target.endpoint, "Unsupported target type")

        start = time.monotonic()
        try:
            try:
                await handler(data, target, source_id)
            except DeliveryError:
                raise
            except Exception as e:
                logger.error(
                    f"Unexpected error delivering to {target.endpoint}: {e}",
                    extra={"endpoint_id": source_id, "target": target.endpoint}, exc_info=True,
                )
                raise DeliveryError(target.type.value, target.endpoint, f"Unexpected error: {e}") from e
        except DeliveryError:
            metrics.increment_counter(
                metrics.deliveries_total, 1,
                source_id=source_id, target_type=target.type.value, status="failure",
            )
            raise
        finally:
            metrics.observe_histogram(
                metrics.delivery_duration_seconds, time.monotonic() - start, target_type=target.type.value
            )

        metrics.increment_counter(
            metrics.deliveries_total, 1,
            source_id=source_id, target_type=target.type.value, status="success",
        )

    async def _send(self, method: str, url: str, target: RouteTarget, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, timeout=self.timeout_seconds, **kwargs)
        except httpx.TimeoutException:
            raise DeliveryError(target.type.value, target.endpoint, f"Timed out after {self.timeout_seconds}s")
        except httpx.HTTPError as e:
            raise DeliveryError(target.type.value, target.endpoint, f"HTTP error: {e}")

        if response.status_code >= 400:
            raise DeliveryError(
                target.type.value, target.endpoint,
                f"HTTP {response.status_code}", status_code=response.status_code,
            )
        return response

    async def _deliver_webhook(self, data: Any, target: RouteTarget, source_id: str) -> None:
        response = await self._send(
            "POST", target.endpoint, target,
            content=dumps(data),
            headers={"Content-Type": "application/json", SOURCE_HEADER: source_id},
        )
        logger.debug(
            f"Delivered to webhook {target.endpoint}",
            extra={"endpoint_id": source_id, "target": target.endpoint, "status_code": response.status_code},
        )

    async def _deliver_api(self, data: Any, target: RouteTarget, source_id: str) -> None:
        url, method = split_api_endpoint(target.endpoint)
        headers = {SOURCE_HEADER: source_id}
        if method == "GET":
            response = await self._send(method, url, target, params=_query_params(data), headers=headers)
        else:
            headers["Content-Type"] = "application/json"
            response = await self._send(method, url, target, content=dumps(data), headers=headers)
        logger.debug(
            f"Delivered to API {url} ({method})",
            extra={"endpoint_id": source_id, "target": target.endpoint, "status_code": response.status_code},
        )

    async def _deliver_kafka(self, data: Any, target: RouteTarget, source_id: str) -> None:
        topic = target.endpoint.removeprefix("kafka://")
        try:
            await self.store.publish(f"kafka:{topic}", envelope(data, source_id))
        except Exception as e:
            raise DeliveryError(target.type.value, target.endpoint, f"Publish failed: {e}")
        logger.debug(f"Published to topic {topic}", extra={"endpoint_id": source_id, "target": target.endpoint})

    async def _deliver_database(self, data: Any, target: RouteTarget, source_id: str) -> None:
        key = f"db_queue:{target.endpoint}:{unique_suffix()}"
        try:
            await self.store.set(key, envelope(data, source_id), ttl_seconds=DB_QUEUE_TTL_SECONDS)
        except Exception as e:
            raise DeliveryError(target.type.value, target.endpoint, f"Queue write failed: {e}")
        logger.debug(f"Queued for database {target.endpoint}", extra={"endpoint_id": source_id, "key": key})

    async def _deliver_file(self, data: Any, target: RouteTarget, source_id: str) -> None:
        base = Path(target.endpoint.removeprefix("file://"))
        content = json.dumps(envelope(data, source_id), indent=2, ensure_ascii=False, default=json_default)
        try:
            written = await asyncio.to_thread(_write_new_file, base, content)
        except OSError as e:
            raise DeliveryError(target.type.value, target.endpoint, f"File write failed: {e}")
        logger.debug(f"Wrote {written}", extra={"endpoint_id": source_id, "target": target.endpoint})

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _query_params(data: Any) -> dict[str, str]:
    """Query string for GET targets: strings as is, everything else as JSON."""
    if not isinstance(data, dict):
        return {"data": dumps(data)}
    return {str(k): v if isinstance(v, str) else dumps(v) for k, v in data.items()}


def _write_new_file(base: Path, content: str) -> Path:
    base.parent.mkdir(parents=True, exist_ok=True)
    path = unique_file_path(base)
    candidate = path
    counter = 1
    while True:
        try:
            # "x" refuses to open an existing file
            with open(candidate, "x", encoding="utf-8") as f:
                f.write(content)
            return candidate
        except FileExistsError:
            candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
            counter += 1
