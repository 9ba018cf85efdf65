"""
Grocery Manager — product read cache

Read-through cache of product snapshots keyed by product code. Only hits
are stored; a lookup that finds nothing is never cached. Every mutation
of a product evicts its key before returning to the caller.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable

import redis.asyncio as aioredis

from .config import CacheSettings
from .models import Product

logger = logging.getLogger(__name__)


class ProductCache(ABC):
    @abstractmethod
    async def get(self, code: str) -> Product | None: ...

    @abstractmethod
    async def put(self, product: Product) -> None: ...

    @abstractmethod
    async def evict(self, code: str) -> None: ...

    @abstractmethod
    async def clear(self) -> None: ...

    async def close(self) -> None:
        pass


class LocalProductCache(ProductCache):
    """In-process cache, expire-after-write TTL and LRU beyond max_size."""

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Product]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, code: str) -> Product | None:
        entry = self._entries.get(code)
        if entry is None:
            return None
        expires_at, product = entry
        if self._clock() >= expires_at:
            del self._entries[code]
            return None
        self._entries.move_to_end(code)
        return product

    async def put(self, product: Product) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[product.code] = (self._clock() + self.ttl_seconds, product)
        self._entries.move_to_end(product.code)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    async def evict(self, code: str) -> None:
        self._entries.pop(code, None)

    async def clear(self) -> None:
        self._entries.clear()


class RedisProductCache(ProductCache):
    """
    Snapshots stored as JSON under product:<code> with EX ttl.
    The entry bound is the Redis server's maxmemory / allkeys-lru policy.
    """

    key_prefix = "product:"

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    def _key(self, code: str) -> str:
        return f"{self.key_prefix}{code}"

    async def get(self, code: str) -> Product | None:
        raw = await self.redis.get(self._key(code))
        if raw is None:
            return None
        return Product.model_validate_json(raw)

    async def put(self, product: Product) -> None:
        if self.ttl_seconds <= 0:
            return
        await self.redis.set(
            self._key(product.code), product.model_dump_json(), ex=self.ttl_seconds
        )

    async def evict(self, code: str) -> None:
        await self.redis.delete(self._key(code))

    async def clear(self) -> None:
        keys = [key async for key in self.redis.scan_iter(match=f"{self.key_prefix}*")]
        if keys:
            await self.redis.delete(*keys)

    async def close(self) -> None:
        await self.redis.aclose()


def create_cache(settings: CacheSettings) -> ProductCache:
    if settings.backend == "redis":
        logger.info("Using Redis product cache at %s", settings.redis_url)
        redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        return RedisProductCache(redis, settings.ttl_seconds)
    return LocalProductCache(settings.ttl_seconds, settings.max_size)
