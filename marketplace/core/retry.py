"""
Marketplace — Re-running transactions that lose a uniqueness race

Two deliveries to one character can pick the same depot slot id, and two
first-adds of one cart line can both insert. The loser's whole transaction
is run again from a fresh snapshot, so the operation handed in here must
open its own transaction every time it is called.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError

from marketplace.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, settings: Settings) -> float:
    """Seconds to wait after failed attempt number `attempt` (1-based)."""
    capped_ms = min(settings.CONFLICT_BASE_DELAY_MS << (attempt - 1), settings.CONFLICT_MAX_DELAY_MS)
    return (capped_ms + random.uniform(0, settings.CONFLICT_JITTER_MS)) / 1000.0


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    label: str,
    settings: Settings | None = None,
) -> T:
    """Await operation(), running it again on IntegrityError up to CONFLICT_MAX_RETRIES attempts."""
    settings = settings or get_settings()
    attempts = max(settings.CONFLICT_MAX_RETRIES, 1)
    attempt = 1
    while True:
        try:
            return await operation()
        except IntegrityError:
            if attempt >= attempts:
                logger.error("%s still conflicting after %d attempts, giving up", label, attempt)
                raise
            delay = backoff_delay(attempt, settings)
            logger.warning("%s hit a uniqueness conflict (attempt %d of %d), again in %.3fs",
                           label, attempt, attempts, delay)
            await asyncio.sleep(delay)
            attempt += 1
