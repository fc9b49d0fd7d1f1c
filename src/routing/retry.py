"""
Retry scheduling for failed deliveries.

RetryCoordinator owns the retry table (one RetryContext per
``<endpoint_id>:<target endpoint>`` key) and hands exhausted deliveries to
the dead-letter store. The table is only touched under one asyncio.Lock,
so failures reported by the router and results of the retry tick are
applied one at a time.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from src.core.models import DeadLetterEntry, DeadLetterQueueConfig, RetryContext, RouteTarget, retry_key
from src.observability import metrics
from src.observability.events import EventChannel
from src.observability.logger import get_logger

from .dead_letter import DeadLetterStore
from .errors import DeliveryError

logger = get_logger(__name__)

DeliverFunc = Callable[[Any, RouteTarget, str], Awaitable[None]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RetryCoordinator:
    """
    Schedules retries with exponential backoff and dead-letters exhausted deliveries.

    ``attempt`` in a context is the number of deliveries already made for
    the record. After a failed delivery number ``n``:

    * ``n < max_attempts``: retry after ``initial_delay * multiplier ** (n - 1)`` ms
    * ``n >= max_attempts``: dead-letter with ``attempts = n``, delete the context

    Args:
        deliver: Coroutine performing one delivery (raises DeliveryError)
        dead_letters: Dead-letter store
        events: Optional channel for ``routing.dead_letter`` events
        tick_seconds: Interval of the background retry scan
    """

    def __init__(
        self,
        deliver: DeliverFunc,
        dead_letters: DeadLetterStore,
        events: EventChannel | None = None,
        tick_seconds: float = 5.0,
    ):
        self._deliver = deliver
        self.dead_letters = dead_letters
        self.events = events
        self.tick_seconds = tick_seconds
        self._contexts: dict[str, RetryContext] = {}
        self._in_flight: set[str] = set()
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def record_failure(
        self,
        endpoint_id: str,
        target: RouteTarget,
        data: Any,
        error: str,
        dead_letter: DeadLetterQueueConfig | None = None,
    ) -> RetryContext | None:
        """
        Register a failed delivery of a record.

        A context already pending for the same key is replaced by the newer
        record, which carries the attempt count forward; a key never holds
        more than ``max_attempts`` deliveries.

        Returns:
            The scheduled context, or None if the record went to the
            dead-letter store because the key's attempts are spent
        """
        if target.retry_policy is None:
            return None

        dead_letter = dead_letter or DeadLetterQueueConfig()
        key = retry_key(endpoint_id, target.endpoint)

        async with self._lock:
            previous = self._contexts.get(key)
            attempt = previous.attempt + 1 if previous is not None else 1
            if previous is not None:
                logger.warning(
                    f"Pending retry for {target.endpoint} replaced by a newer failure",
                    extra={"endpoint_id": endpoint_id, "target": target.endpoint, "attempt": attempt},
                )

            context = RetryContext(
                endpoint_id=endpoint_id,
                target=target,
                data=data,
                attempt=attempt,
                max_attempts=target.retry_policy.max_attempts,
                next_retry_at=_now(),
                last_error=error,
                dead_letter=dead_letter,
            )
            return await self._schedule_or_dead_letter(key, context)

    async def _schedule_or_dead_letter(self, key: str, context: RetryContext) -> RetryContext | None:
        """Caller holds the lock."""
        if context.attempt >= context.max_attempts:
            self._contexts.pop(key, None)
            await self._dead_letter(context, context.last_error or "Delivery failed")
            self._update_gauge()
            return None

        delay_ms = context.target.retry_policy.delay_ms(context.attempt)
        context.next_retry_at = _now() + timedelta(milliseconds=delay_ms)
        self._contexts[key] = context
        self._update_gauge()

        metrics.increment_counter(metrics.retries_total, 1, source_id=context.endpoint_id, status="scheduled")
        logger.debug(
            f"Retry scheduled for {context.target.endpoint} in {delay_ms:.0f}ms",
            extra={
                "endpoint_id": context.endpoint_id,
                "target": context.target.endpoint,
                "attempt": context.attempt,
                "max_attempts": context.max_attempts,
            },
        )
        return context

    async def _dead_letter(self, context: RetryContext, error: str) -> None:
        if not context.dead_letter.enabled:
            logger.error(
                f"Retry budget exhausted for {context.target.endpoint}, dead-letter queue disabled; record dropped",
                extra={"endpoint_id": context.endpoint_id, "target": context.target.endpoint,
                       "attempt": context.attempt},
            )
            return

        entry = DeadLetterEntry(
            original_target=context.target.endpoint,
            endpoint_id=context.endpoint_id,
            data=context.data,
            error=error,
            attempts=context.attempt,
            target=context.target,
        )
        key = await self.dead_letters.add(entry, ttl_seconds=context.dead_letter.ttl_seconds)
        if self.events:
            await self.events.publish(
                "routing.dead_letter",
                endpoint_id=context.endpoint_id,
                target=context.target.endpoint,
                error=error,
                attempts=context.attempt,
                key=key,
                data=context.data,
            )

    async def process_due(self, now: datetime | None = None) -> int:
        """
        Re-attempt every context whose ``next_retry_at`` has passed.

        Contexts already being retried are skipped, so at most one retry
        per key is in flight.

        Returns:
            Number of retries attempted
        """
        now = now or _now()
        async with self._lock:
            due = [
                (key, context) for key, context in self._contexts.items()
                if context.next_retry_at <= now and key not in self._in_flight
            ]
            self._in_flight.update(key for key, _ in due)

        if due:
            await asyncio.gather(*(self._retry(key, context) for key, context in due))
        return len(due)

    async def _retry(self, key: str, context: RetryContext) -> None:
        error: str | None = None
        try:
            try:
                await self._deliver(context.data, context.target, context.endpoint_id)
            except DeliveryError as e:
                error = str(e)

            async with self._lock:
                current = self._contexts.get(key)

                if error is None:
                    metrics.increment_counter(metrics.retries_total, 1, source_id=context.endpoint_id, status="success")
                    logger.info(
                        f"Retry succeeded for {context.target.endpoint}",
                        extra={"endpoint_id": context.endpoint_id, "target": context.target.endpoint,
                               "attempt": context.attempt + 1},
                    )
                    if current is context:
                        del self._contexts[key]
                        self._update_gauge()
                    return

                metrics.increment_counter(metrics.retries_total, 1, source_id=context.endpoint_id, status="failure")
                context.attempt += 1
                context.last_error = error
                logger.warning(
                    f"Retry {context.attempt}/{context.max_attempts} failed for {context.target.endpoint}",
                    extra={"endpoint_id": context.endpoint_id, "target": context.target.endpoint,
                           "attempt": context.attempt, "error": error},
                )

                if current is context:
                    await self._schedule_or_dead_letter(key, context)
                else:
                    # A newer failure took over the key while this retry was in flight
                    logger.warning(
                        f"Retried record for {context.target.endpoint} was replaced by a newer failure",
                        extra={"endpoint_id": context.endpoint_id, "target": context.target.endpoint},
                    )
        finally:
            self._in_flight.discard(key)

    async def drain(self) -> int:
        """
        Run pending retries to completion, waiting out each backoff.

        Every context ends up delivered or dead-lettered. Used by one-shot
        runs that exit without the background tick.

        Returns:
            Number of retries attempted
        """
        attempted = 0
        while self._contexts:
            async with self._lock:
                waiting = [c.next_retry_at for k, c in self._contexts.items() if k not in self._in_flight]
            delay = (min(waiting) - _now()).total_seconds() if waiting else 0.01
            if delay > 0:
                await asyncio.sleep(delay)
            attempted += await self.process_due()
        return attempted

    async def _run(self) -> None:
        logger.info("Retry processor started", extra={"tick_seconds": self.tick_seconds})
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                await self.process_due()
            except Exception as e:
                logger.error(f"Retry tick failed: {e}", exc_info=True)

    def start(self) -> None:
        """Start the background tick (idempotent)."""
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="retry-processor")

    async def stop(self) -> None:
        """Stop the background tick; pending contexts are kept."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Retry processor stopped")

    def status(self) -> dict[str, Any]:
        """Snapshot of the retry table."""
        return {
            "size": len(self._contexts),
            "in_flight": len(self._in_flight),
            "items": [
                {
                    "key": key,
                    "endpoint_id": context.endpoint_id,
                    "target": context.target.endpoint,
                    "target_type": context.target.type.value,
                    "attempt": context.attempt,
                    "max_attempts": context.max_attempts,
                    "next_retry_at": context.next_retry_at.isoformat(),
                    "last_error": context.last_error,
                }
                for key, context in self._contexts.items()
            ],
        }

    async def clear(self, endpoint_id: str | None = None) -> int:
        """Drop pending contexts (all, or one endpoint's); returns how many were removed."""
        async with self._lock:
            keys = [
                key for key, context in self._contexts.items()
                if endpoint_id is None or context.endpoint_id == endpoint_id
            ]
            for key in keys:
                del self._contexts[key]
            self._update_gauge()
        return len(keys)

    def _update_gauge(self) -> None:
        metrics.set_gauge(metrics.retry_queue_size, len(self._contexts))
