import json
from datetime import date
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from exhibit.settings import REDIS_URL

_redis: Redis | None = None
OCCUPANCY_TTL = 60  # 1 minute


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _occupancy_key(experience_id: UUID | str, day: date | str) -> str:
    return f"occupancy:{experience_id}:{day}"


async def get_occupancy_cache(
    experience_id: UUID | str, day: date | str
) -> dict[str, int] | None:
    try:
        data = await get_redis().get(_occupancy_key(experience_id, day))
        return json.loads(data) if data else None
    except Exception:
        logger.opt(exception=True).warning("Redis get failed, skipping occupancy cache")
        return None


async def set_occupancy_cache(
    experience_id: UUID | str, day: date | str, occupancy: dict[str, int]
) -> None:
    try:
        await get_redis().setex(
            _occupancy_key(experience_id, day), OCCUPANCY_TTL, json.dumps(occupancy)
        )
    except Exception:
        logger.opt(exception=True).warning("Redis set failed, skipping occupancy cache")


async def invalidate_occupancy_cache(experience_id: UUID | str, day: date | str) -> None:
    try:
        await get_redis().delete(_occupancy_key(experience_id, day))
    except Exception:
        logger.opt(exception=True).warning("Redis invalidate failed for occupancy cache")


async def clear_occupancy_cache() -> None:
    """Drop every occupancy entry (factory reset)."""
    try:
        redis = get_redis()
        keys = [key async for key in redis.scan_iter(match="occupancy:*")]
        if keys:
            await redis.delete(*keys)
    except Exception:
        logger.opt(exception=True).warning("Redis clear failed for occupancy cache")
