from fastapi import APIRouter
from redis.exceptions import RedisError

from downly.config.settings import config
from downly.core.state import state
from downly.infra.redis import ACTIVE_COUNTER_KEY, get_redis
from downly.services.provisioner import EXTRACTOR, TRANSCODER

router = APIRouter()


async def _redis_status() -> str:
    redis = get_redis()
    if not redis:
        return "disabled"
    try:
        await redis.ping()
        return "connected"
    except RedisError:
        return "disconnected"


@router.get("/")
async def root():
    """Root endpoint"""
    return {
        "status": "running",
        "service": config.api.title,
        "version": config.api.version,
    }


@router.get("/health")
async def health_check():
    """Lightweight health check"""
    return {"status": "ok"}


@router.get("/health/full")
async def health_check_full():
    """Detailed health check: redis, provisioned tools, temp storage"""
    redis_status = await _redis_status()
    active_downloads = 0
    if redis_status == "connected":
        try:
            active_downloads = int(await get_redis().get(ACTIVE_COUNTER_KEY) or 0)
        except RedisError:
            redis_status = "disconnected"

    tools = {}
    for name in (EXTRACTOR, TRANSCODER):
        handle = state.provisioner.cached(name) if state.provisioner else None
        tools[name] = str(handle.path) if handle else None

    return {
        "status": "ok",
        "redis": redis_status,
        "active_downloads": active_downloads,
        "tools": tools,
        "storage_bytes": state.storage().usage(),
    }
