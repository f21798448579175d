"""Redis-backed key-value store for swap records.

Each swap is stored as the JSON of SwapRecordSchema under
"{swap_key_prefix}{swap_id}".

Usage:
    from htlc_swap.infrastructure.swap_store import SwapRepository, init_redis

    redis = await init_redis(settings)
    repo = SwapRepository(redis, key_prefix=settings.swap_key_prefix)
    await repo.save(swap)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as aioredis

from htlc_swap.domain.exceptions import SwapNotFoundError
from htlc_swap.logging_config import get_logger
from htlc_swap.schemas.swap import dump_swap, load_swap

if TYPE_CHECKING:
    from htlc_swap.config import Settings
    from htlc_swap.domain.models import SwapRecord

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis(settings: Settings) -> aioredis.Redis:
    """Initialize and return the Redis client."""
    global _redis_client
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


class SwapRepository:
    """Stores and loads SwapRecords by swap id.

    Accepts any client with redis.asyncio's get/set/delete/scan_iter
    coroutines. Never manages the client's lifecycle.
    """

    def __init__(self, client: aioredis.Redis, key_prefix: str = "swap:") -> None:
        self._client = client
        self._prefix = key_prefix

    def _key(self, swap_id: str) -> str:
        return f"{self._prefix}{swap_id}"

    async def save(self, swap: SwapRecord) -> None:
        """Write the full swap, replacing any earlier version."""
        await self._client.set(self._key(swap.swap_id), dump_swap(swap))
        logger.debug("swap_store.saved", swap_id=swap.swap_id)

    async def get(self, swap_id: str) -> SwapRecord | None:
        """Load a swap, or None if the id is unknown."""
        data = await self._client.get(self._key(swap_id))
        if data is None:
            return None
        return load_swap(data)

    async def get_or_raise(self, swap_id: str) -> SwapRecord:
        swap = await self.get(swap_id)
        if swap is None:
            raise SwapNotFoundError(swap_id)
        return swap

    async def delete(self, swap_id: str) -> bool:
        """Remove a swap. Returns False if it did not exist."""
        return bool(await self._client.delete(self._key(swap_id)))

    async def list_ids(self) -> list[str]:
        """All stored swap ids, sorted."""
        ids = []
        async for key in self._client.scan_iter(match=f"{self._prefix}*"):
            if isinstance(key, bytes):
                key = key.decode()
            ids.append(key[len(self._prefix):])
        return sorted(ids)
