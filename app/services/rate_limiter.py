"""
Rate Limiter Service using Redis sorted sets (sliding window).

Applied per tenant to the webhook management API. Fails open when Redis
is unavailable.
"""
import time
import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError
from app.config import settings

logger = structlog.get_logger()


class RateLimiter:
    """Per-tenant rate limiter using Redis sorted sets."""

    def __init__(self, redis_url: str | None = None, limit: int | None = None, window: int | None = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self._redis = None
        self.limit = limit or settings.RATE_LIMIT_REQUESTS
        self.window = window or settings.RATE_LIMIT_WINDOW_SECONDS

    async def get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def is_allowed(self, tenant_id: str) -> tuple[bool, int]:
        """
        Check if request is allowed for the tenant.

        Returns:
            (allowed: bool, retry_after: int)
        """
        r = await self.get_redis()
        key = f"ratelimit:webhooks:{tenant_id}"
        now = time.time()
        window_start = now - self.window

        try:
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            results = await pipe.execute()

            request_count = results[1]

            if request_count >= self.limit:
                oldest = await r.zrange(key, 0, 0, withscores=True)
                if oldest:
                    retry_after = int(self.window - (now - oldest[0][1]))
                else:
                    retry_after = self.window
                return False, max(retry_after, 1)

            await r.zadd(key, {str(now): now})
            await r.expire(key, self.window)

            return True, 0

        except (RedisError, OSError) as e:
            logger.warning("rate_limiter_unavailable", error=str(e))
            return True, 0


# Singleton instance
rate_limiter = RateLimiter()
