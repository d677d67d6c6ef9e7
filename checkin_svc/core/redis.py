from __future__ import annotations
import logging
import redis.asyncio as redis
from redis.exceptions import RedisError
from .config import get_settings

logger = logging.getLogger(__name__)

_r: redis.Redis | None = None

def get_redis() -> redis.Redis:
    global _r
    if _r is None:
        _r = redis.from_url(get_settings().redis_url, decode_responses=True)
    return _r

async def close_redis() -> None:
    global _r
    if _r is not None:
        await _r.aclose()
        _r = None

async def ping_redis() -> bool:
    try:
        r = get_redis()
        pong = await r.ping()
        return bool(pong)
    except (RedisError, OSError) as exc:
        logger.warning("redis ping failed: %s", exc)
        return False

# ---- Simple fixed-window rate limit per IP/route ----
async def allow_request(ip: str, route_key: str) -> bool:
    """
    Fixed window: increment a counter key; allow if <= max.
    Fails open when redis is unreachable.
    """
    settings = get_settings()
    if not settings.rl_enabled:
        return True
    r = get_redis()
    key = f"rl:{route_key}:{ip}"
    try:
        # INCR, set expire on first increment in a window
        pipe = r.pipeline()
        pipe.incr(key)
        pipe.expire(key, settings.rl_window_seconds)
        count, _ = await pipe.execute()
    except (RedisError, OSError) as exc:
        logger.warning("rate limit check skipped for %s: %s", route_key, exc)
        return True
    return int(count) <= settings.rl_max_reqs
