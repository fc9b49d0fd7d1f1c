"""
Dead-letter storage.

Entries live in the key/value store under ``dlq:<endpoint_id>:<suffix>``
and expire after the configured TTL. Nothing here retries them; re-drive
is an explicit operation on the Router.
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from src.core.models import DeadLetterEntry
from src.observability import metrics
from src.observability.logger import get_logger
from src.storage import KeyValueStore

from .delivery import unique_suffix

logger = get_logger(__name__)

DLQ_PREFIX = "dlq"


def dlq_pattern(endpoint_id: str | None = None) -> str:
    return f"{DLQ_PREFIX}:{endpoint_id}:*" if endpoint_id else f"{DLQ_PREFIX}:*"


class DeadLetterStore:
    """Reads and writes dead-letter entries in a key/value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def add(self, entry: DeadLetterEntry, ttl_seconds: int) -> str:
        """Persist an entry and return its key."""
        key = f"{DLQ_PREFIX}:{entry.endpoint_id}:{unique_suffix()}"
        await self.store.set(key, entry.model_dump(mode="json"), ttl_seconds=ttl_seconds)
        metrics.increment_counter(metrics.dead_letters_total, 1, source_id=entry.endpoint_id)
        logger.warning(
            f"Message dead-lettered: {key}",
            extra={
                "endpoint_id": entry.endpoint_id,
                "target": entry.original_target,
                "attempts": entry.attempts,
                "error": entry.error,
            },
        )
        return key

    async def entries(self, endpoint_id: str | None = None) -> list[tuple[str, DeadLetterEntry]]:
        """(key, entry) pairs, oldest first; unreadable entries are skipped with a warning."""
        result = []
        for key in await self.store.keys(dlq_pattern(endpoint_id)):
            raw: Any = await self.store.get(key)
            if raw is None:
                continue
            try:
                result.append((key, DeadLetterEntry.model_validate(raw)))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable dead letter {key}", extra={"key": key, "error": str(e)})
        result.sort(key=lambda pair: pair[1].timestamp)
        return result

    async def remove(self, key: str) -> bool:
        return await self.store.delete(key) > 0

    async def clear(self, endpoint_id: str | None = None) -> int:
        keys = await self.store.keys(dlq_pattern(endpoint_id))
        if not keys:
            return 0
        return await self.store.delete(*keys)
