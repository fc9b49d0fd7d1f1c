"""
Debounce: wait until a file stops growing.
"""

import asyncio
import time
from pathlib import Path


def _size(path: Path) -> int | None:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return None


async def wait_until_stable(path: Path, threshold_ms: int, poll_interval_ms: int) -> int | None:
    """
    Poll the size of ``path`` until it has not changed for ``threshold_ms``.

    Returns:
        The stable size, or None if the file disappeared meanwhile
    """
    size = await asyncio.to_thread(_size, path)
    if size is None:
        return None

    threshold = threshold_ms / 1000
    poll = max(poll_interval_ms / 1000, 0.01)
    stable_since = time.monotonic()

    while True:
        remaining = threshold - (time.monotonic() - stable_since)
        if remaining <= 0:
            return size
        await asyncio.sleep(min(poll, remaining))

        current = await asyncio.to_thread(_size, path)
        if current is None:
            return None
        if current != size:
            size = current
            stable_since = time.monotonic()
