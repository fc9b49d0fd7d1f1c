"""
Router: delivers transformed records to the targets of an endpoint.

Routing rules are evaluated first (route / discard / alert / store); when
no rule selected a target, each target's own condition decides. Targets
are delivered concurrently and independently; failures with a retry
policy are handed to the RetryCoordinator.
"""

import asyncio
import time
from typing import Any

import httpx

from src.core.models import (
    Condition,
    RouteTarget,
    RoutingConfig,
    RoutingResult,
)
from src.core.rules import evaluate_condition
from src.observability.events import EventChannel
from src.observability.logger import get_logger
from src.storage import KeyValueStore

from .dead_letter import DeadLetterStore
from .delivery import TargetDispatcher, unique_suffix
from .errors import DeliveryError
from .retry import RetryCoordinator

logger = get_logger(__name__)

STORE_DEFAULT_TTL_SECONDS = 3600


def _matches(record: Any, condition: Condition) -> bool:
    if not isinstance(record, dict):
        return False
    return evaluate_condition(record, condition.field, condition.operator, condition.value)


class Router:
    """
    Rule-driven multi-target router with retry and dead-letter handling.

    Args:
        store: Key/value store (dead letters, stored records, topic and
               database-queue deliveries)
        events: Optional domain event channel
        http_client: Shared httpx client for webhook/api targets
        http_timeout_seconds: Timeout of each HTTP delivery
        retry_tick_seconds: Interval of the background retry scan
    """

    def __init__(
        self,
        store: KeyValueStore,
        events: EventChannel | None = None,
        http_client: httpx.AsyncClient | None = None,
        http_timeout_seconds: float = 30.0,
        retry_tick_seconds: float = 5.0,
    ):
        self.store = store
        self.events = events
        self.dispatcher = TargetDispatcher(store, http_client, http_timeout_seconds)
        self.dead_letters = DeadLetterStore(store)
        self.retries = RetryCoordinator(
            self.dispatcher.deliver, self.dead_letters, events, tick_seconds=retry_tick_seconds
        )

    def start(self) -> None:
        """Start the background retry processor."""
        self.retries.start()

    async def stop(self) -> None:
        await self.retries.stop()

    async def drain_retries(self) -> int:
        """Deliver or dead-letter every pending retry, waiting out backoffs."""
        return await self.retries.drain()

    async def close(self) -> None:
        await self.stop()
        await self.dispatcher.close()
        await self.store.close()

    async def route(self, record: Any, config: RoutingConfig, source_id: str) -> RoutingResult:
        """
        Route one record.

        Args:
            record: Transformed record
            config: Routing configuration of the endpoint
            source_id: Endpoint id of the record

        Returns:
            RoutingResult; success is False when any selected target failed
        """
        start = time.monotonic()
        result = RoutingResult()

        try:
            targets = await self._select_targets(record, config, source_id)
        except Exception as e:
            result.errors.append(f"Routing failed: {e}")
            result.processing_time_ms = (time.monotonic() - start) * 1000
            logger.error(f"Routing failed for {source_id}: {e}", extra={"endpoint_id": source_id}, exc_info=True)
            if self.events:
                await self.events.publish(
                    "routing.failed", endpoint_id=source_id,
                    error=str(e), processing_time_ms=result.processing_time_ms,
                )
            return result

        result.total_targets = len(targets)
        if not targets:
            logger.debug(f"No targets matched for record from {source_id}", extra={"endpoint_id": source_id})
            result.success = True
            result.processing_time_ms = (time.monotonic() - start) * 1000
            return result

        outcomes = await asyncio.gather(
            *(self._deliver_one(record, target, config, source_id) for target in targets)
        )
        for target, error in zip(targets, outcomes):
            if error is None:
                result.routed_targets.append(target.endpoint)
            else:
                result.failed_targets.append(target.endpoint)
                result.errors.append(f"Delivery to {target.endpoint} failed: {error}")

        result.success = not result.failed_targets
        result.processing_time_ms = (time.monotonic() - start) * 1000

        logger.debug(
            f"Routed record from {source_id}: {len(result.routed_targets)}/{result.total_targets} delivered",
            extra={
                "endpoint_id": source_id,
                "routed": len(result.routed_targets),
                "failed": len(result.failed_targets),
                "processing_time_ms": round(result.processing_time_ms, 3),
            },
        )
        if self.events:
            await self.events.publish(
                "routing.completed",
                endpoint_id=source_id,
                success=result.success,
                routed_targets=len(result.routed_targets),
                failed_targets=len(result.failed_targets),
                processing_time_ms=result.processing_time_ms,
            )
        return result

    async def _select_targets(self, record: Any, config: RoutingConfig, source_id: str) -> list[RouteTarget]:
        selected: list[RouteTarget] = []

        for rule in config.rules:
            if not _matches(record, rule.condition):
                continue

            if rule.action == "discard":
                logger.debug(
                    "Record discarded by routing rule",
                    extra={"endpoint_id": source_id, "field": rule.condition.field},
                )
                return []

            if rule.action == "route":
                target = config.find_target(rule.target) if rule.target else None
                if target is None:
                    logger.warning(
                        f"Routing rule names unknown target '{rule.target}'",
                        extra={"endpoint_id": source_id},
                    )
                elif target not in selected:
                    selected.append(target)

            elif rule.action == "alert":
                if self.events:
                    await self.events.publish(
                        "routing.alert",
                        endpoint_id=source_id,
                        condition=rule.condition.model_dump(),
                        data=record,
                        parameters=rule.parameters,
                    )

            elif rule.action == "store":
                await self._store(record, rule.parameters or {}, source_id)

        if not selected:
            selected = [
                target for target in config.targets
                if target.condition is None or _matches(record, target.condition)
            ]
        return selected

    async def _store(self, record: Any, parameters: dict[str, Any], source_id: str) -> None:
        key = f"stored_data:{parameters.get('key', 'default')}:{unique_suffix()}"
        ttl = int(parameters.get("ttl", STORE_DEFAULT_TTL_SECONDS))
        await self.store.set(key, record, ttl_seconds=ttl)
        logger.debug(f"Record stored under {key}", extra={"endpoint_id": source_id, "key": key})

    async def _deliver_one(
        self, record: Any, target: RouteTarget, config: RoutingConfig, source_id: str
    ) -> str | None:
        """Deliver to one target; returns the error message or None."""
        try:
            await self.dispatcher.deliver(record, target, source_id)
            return None
        except DeliveryError as e:
            logger.warning(
                f"Delivery to {target.endpoint} failed: {e.message}",
                extra={"endpoint_id": source_id, "target": target.endpoint, "target_type": target.type.value},
            )
            if target.retry_policy is not None:
                await self.retries.record_failure(
                    source_id, target, record, str(e), dead_letter=config.dead_letter_queue
                )
            return e.message

    # =======================
    # ADMINISTRATION
    # =======================

    def get_retry_queue_status(self) -> dict[str, Any]:
        return self.retries.status()

    async def clear_retry_queue(self, endpoint_id: str | None = None) -> int:
        cleared = await self.retries.clear(endpoint_id)
        logger.info(f"Cleared {cleared} retry contexts", extra={"endpoint_id": endpoint_id})
        return cleared

    async def get_dead_letter_queue(self, endpoint_id: str | None = None) -> list[dict[str, Any]]:
        """Dead letters as JSON-ready dicts with their store key."""
        return [
            {"key": key, **entry.model_dump(mode="json")}
            for key, entry in await self.dead_letters.entries(endpoint_id)
        ]

    async def clear_dead_letter_queue(self, endpoint_id: str | None = None) -> int:
        cleared = await self.dead_letters.clear(endpoint_id)
        logger.info(f"Cleared {cleared} dead letters", extra={"endpoint_id": endpoint_id})
        return cleared

    async def redrive_dead_letters(
        self, endpoint_id: str, config: RoutingConfig | None = None
    ) -> dict[str, Any]:
        """
        Re-deliver an endpoint's dead letters once each.

        Delivered entries are removed; failed ones stay in place with no
        new retry scheduled. The target comes from the entry, or from
        ``config`` when the entry predates stored targets.

        Returns:
            Counts of redriven and failed entries, with per-entry errors
        """
        redriven = 0
        failures: list[dict[str, str]] = []

        for key, entry in await self.dead_letters.entries(endpoint_id):
            target = entry.target or (config.find_target(entry.original_target) if config else None)
            if target is None:
                failures.append({"key": key, "error": f"Unknown target '{entry.original_target}'"})
                continue
            try:
                await self.dispatcher.deliver(entry.data, target, entry.endpoint_id)
            except DeliveryError as e:
                failures.append({"key": key, "error": e.message})
                continue
            await self.dead_letters.remove(key)
            redriven += 1

        logger.info(
            f"Re-drove {redriven} dead letters for {endpoint_id}",
            extra={"endpoint_id": endpoint_id, "redriven": redriven, "failed": len(failures)},
        )
        return {"redriven": redriven, "failed": len(failures), "errors": failures}
