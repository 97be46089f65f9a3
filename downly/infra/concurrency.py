from fastapi import HTTPException, Request
import logging
import uuid
from redis.exceptions import RedisError
from downly.config.settings import config
from downly.infra.redis import ACTIVE_COUNTER_KEY, SLOT_KEY_PREFIX, get_redis

logger = logging.getLogger(__name__)

CLIENT_COUNTER_PREFIX = "active_downloads_client:"

# Returns 0 when the server is full, -1 when this client already holds its share
ACQUIRE_SLOT = """
local counter_key = KEYS[1]
local client_key = KEYS[2]
local slot_key = KEYS[3]
local limit = tonumber(ARGV[1])
local per_client = tonumber(ARGV[2])
local slot_ttl = tonumber(ARGV[3])

if tonumber(redis.call('GET', counter_key) or "0") >= limit then
    return 0
end
if tonumber(redis.call('GET', client_key) or "0") >= per_client then
    return -1
end

redis.call('INCR', counter_key)
redis.call('EXPIRE', counter_key, slot_ttl * 2)
redis.call('INCR', client_key)
redis.call('EXPIRE', client_key, slot_ttl)
redis.call('SETEX', slot_key, slot_ttl, client_key)
return 1
"""

# Decrements only if the slot still exists, so an expired slot is not counted twice
RELEASE_SLOT = """
local client_key = redis.call('GET', KEYS[2])
if not client_key then
    return 0
end
redis.call('DEL', KEYS[2])
if tonumber(redis.call('GET', KEYS[1]) or "0") > 0 then
    redis.call('DECR', KEYS[1])
end
if tonumber(redis.call('GET', client_key) or "0") > 0 then
    redis.call('DECR', client_key)
end
return 1
"""

class ConcurrencyLimiter:
    """Caps running downloads, globally and per client, with one slot per request"""

    async def __call__(self, request: Request):
        redis = get_redis()
        if not redis:
            return True

        client_ip = request.client.host if request.client else "unknown"
        slot_key = f"{SLOT_KEY_PREFIX}{uuid.uuid4()}"

        try:
            allowed = await redis.eval(
                ACQUIRE_SLOT,
                3,
                ACTIVE_COUNTER_KEY,
                f"{CLIENT_COUNTER_PREFIX}{client_ip}",
                slot_key,
                config.download.max_concurrent,
                config.download.max_per_client,
                config.download.slot_ttl_seconds,
            )
        except RedisError as e:
            logger.warning(f"Download slot check skipped: {e}")
            return True

        if allowed == 0:
            raise HTTPException(
                status_code=503,
                detail=f"Server busy, at most {config.download.max_concurrent} downloads at a time"
            )
        if allowed == -1:
            raise HTTPException(
                status_code=429,
                detail=f"At most {config.download.max_per_client} downloads per client at a time"
            )

        request.state.download_slot_key = slot_key
        request.state.download_slot_acquired = True
        return True

async def release_download_slot(request: Request):
    """Give the slot back; safe to call more than once"""
    if not getattr(request.state, 'download_slot_acquired', False):
        return
    request.state.download_slot_acquired = False

    redis = get_redis()
    if not redis:
        return
    try:
        await redis.eval(RELEASE_SLOT, 2, ACTIVE_COUNTER_KEY, request.state.download_slot_key)
    except RedisError as e:
        logger.warning(f"Failed to release download slot: {e}")

concurrency_limiter = ConcurrencyLimiter()
