import math
import time
from pathlib import Path
import redis.exceptions
from redis.asyncio import Redis

from .config import GatewaySettings

LUA_SCRIPT = Path(__file__).parent / 'lua/token_bucket.lua'
LUA = LUA_SCRIPT.read_text()


class RateLimiter:
    """
    Redis-backed token-bucket rate limiter.

    One bucket per client, stored as a hash under `<namespace>:<client>:global`.
    The Lua script refills and consumes atomically, so gateway replicas
    sharing a Redis see one bucket. Idle buckets expire once they would
    have refilled completely.
    """
    def __init__(self, redis: Redis, capacity: int, rate: float, namespace: str = "rl"):
        if capacity <= 0 or rate <= 0:
            raise ValueError("capacity and rate must be positive")
        self.redis = redis
        self.capacity = capacity
        self.rate = rate
        self.namespace = namespace
        self.sha: str | None = None

    @classmethod
    def from_settings(cls, redis: Redis, settings: GatewaySettings) -> "RateLimiter":
        return cls(redis, capacity=settings.rate_limit_capacity, rate=settings.rate_limit_rate)

    @property
    def ttl_ms(self) -> int:
        """Time for an empty bucket to refill, plus a second of slack."""
        return math.ceil(self.capacity / self.rate * 1000) + 1000

    def key_for(self, client_id: str) -> str:
        return f"{self.namespace}:{client_id}:global"

    async def load(self) -> None:
        """Load the Lua script into Redis and cache its SHA."""
        self.sha = await self.redis.script_load(LUA)

    async def _consume(self, key: str, tokens: int):
        now_ms = int(time.time() * 1000)
        return await self.redis.evalsha(self.sha,
                                        0,  # no KEYS; the bucket key travels in ARGV
                                        key,
                                        self.capacity,
                                        self.rate,
                                        now_ms,
                                        tokens,
                                        self.ttl_ms)

    async def allow(self, client_id: str, tokens: int = 1) -> tuple[bool, float]:
        """
        Attempt to take `tokens` from the client's bucket.
        :return: (allowed, remaining_tokens)
        """
        if self.sha is None:
            raise RuntimeError("RateLimiter not initialized. Call load() first.")

        key = self.key_for(client_id)
        try:
            result = await self._consume(key, tokens)
        except redis.exceptions.NoScriptError:
            # script cache was flushed (e.g. Redis restart)
            await self.load()
            result = await self._consume(key, tokens)

        return bool(int(result[0])), float(result[1])
