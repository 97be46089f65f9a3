from collections import Counter
from typing import Optional
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from rich.console import Console
from downly.config.settings import config
from downly.core.state import state

console = Console()

ACTIVE_COUNTER_KEY = "active_downloads_count"
SLOT_KEY_PREFIX = "active_download:"

async def init_redis() -> Optional[aioredis.Redis]:
    """Connect to Redis; the service runs without it (no cache, no limits)"""
    try:
        redis_client = aioredis.from_url(
            config.redis.url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=config.redis.socket_timeout
        )
        await redis_client.ping()

        # Slots of a previous run that crashed mid-download expire on their own;
        # rebuild the counters from the ones still alive
        keys = []
        per_client = Counter()
        async for key in redis_client.scan_iter(match=f"{SLOT_KEY_PREFIX}*", count=100):
            keys.append(key)
            client_key = await redis_client.get(key)
            if client_key:
                per_client[client_key] += 1
        await redis_client.set(ACTIVE_COUNTER_KEY, len(keys))
        for client_key, count in per_client.items():
            await redis_client.set(client_key, count, ex=config.download.slot_ttl_seconds)

        if keys:
            console.print(f"[yellow]✓ Redis connected ({len(keys)} downloads still in flight)[/yellow]")
        else:
            console.print("[green]✓ Redis connected[/green]")
        return redis_client

    except (RedisError, OSError) as e:
        console.print(f"[yellow]⚠ Redis unavailable, running without cache and limits: {str(e)}[/yellow]")
        return None

def get_redis() -> Optional[aioredis.Redis]:
    """Get Redis client from state"""
    return state.redis

async def close_redis() -> None:
    """Close Redis connection"""
    if state.redis:
        await state.redis.aclose()
        state.redis = None
        console.print("[dim]✓ Redis connection closed[/dim]")
