import json
import logging

from redis.exceptions import RedisError

from dayplan.infra.redis_client import get_sync_redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "dayplan"


def cache_key(*parts) -> str:
    return ":".join([KEY_PREFIX, *(str(p) for p in parts)])


def get_json_sync(key: str):
    raw = get_sync_redis().get(key)
    return json.loads(raw) if raw else None


def set_json_sync(key: str, value, ttl_sec: int):
    get_sync_redis().set(key, json.dumps(value), ex=ttl_sec)


def get_or_set_json_sync(key: str, ttl_sec: int, compute_func):
    """Return (value, hit). Falls back to compute_func when Redis is unreachable."""
    try:
        hit = get_json_sync(key)
    except RedisError as e:
        logger.warning(f"Redis read failed for {key}, computing without cache: {e}")
        return compute_func(), False

    if hit is not None:
        return hit, True

    val = compute_func()
    try:
        set_json_sync(key, val, ttl_sec)
    except RedisError as e:
        logger.warning(f"Redis write failed for {key}: {e}")
    return val, False
