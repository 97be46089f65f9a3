from fastapi import HTTPException, Request
import logging
from redis.exceptions import RedisError
from downly.infra.redis import get_redis
from downly.config.settings import config

logger = logging.getLogger(__name__)

# Fixed window: the first hit opens the window, the rest count against it
FIXED_WINDOW = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
end
if current > tonumber(ARGV[1]) then
    return {0, redis.call('TTL', KEYS[1])}
end
return {1, 0}
"""

class RedisRateLimiter:
    """Per-client request budget for one operation"""

    def __init__(self, scope: str, max_requests: int, window_seconds: int = config.rate_limit.window_seconds):
        self.scope = scope
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def __call__(self, request: Request):
        if not config.rate_limit.enabled:
            return True

        redis = get_redis()
        if not redis:
            return True

        client_ip = request.client.host if request.client else "unknown"
        key = f"rate:{self.scope}:{client_ip}"

        try:
            allowed, ttl = await redis.eval(FIXED_WINDOW, 1, key, self.max_requests, self.window_seconds)
        except RedisError as e:
            logger.warning(f"Rate limit check skipped: {e}")
            return True

        if not allowed:
            retry_after = max(int(ttl), 1)
            raise HTTPException(
                status_code=429,
                detail=f"Too many {self.scope} requests, retry in {retry_after} seconds",
                headers={"Retry-After": str(retry_after)}
            )

        return True

inspect_rate_limiter = RedisRateLimiter("inspect", config.rate_limit.inspect_max_requests)
download_rate_limiter = RedisRateLimiter("download", config.rate_limit.download_max_requests)
