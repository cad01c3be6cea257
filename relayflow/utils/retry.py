from __future__ import annotations

import asyncio
import random


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter, in seconds."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Sleep for the computed backoff delay before retrying; returns the delay."""
    delay = compute_backoff(attempt, base=base, jitter=jitter)
    await asyncio.sleep(delay)
    return delay
