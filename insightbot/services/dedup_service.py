import os
from typing import Optional

import redis

from insightbot.config import settings
from insightbot.logging_config import get_logger

logger = get_logger("dedup_service")

DEDUP_TTL_SECONDS = int(float(os.environ.get("DEDUP_TTL_SECONDS", "86400")))
DEDUP_SOCKET_TIMEOUT_SECONDS = float(os.environ.get("DEDUP_SOCKET_TIMEOUT_SECONDS", "0.3"))

_redis_client: Optional[redis.Redis] = None
_redis_url: Optional[str] = None


def get_redis() -> Optional[redis.Redis]:
    global _redis_client, _redis_url

    redis_url = settings.redis_url
    if not redis_url:
        return None

    if _redis_client is None or _redis_url != redis_url:
        _redis_url = redis_url
        _redis_client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=DEDUP_SOCKET_TIMEOUT_SECONDS,
            socket_timeout=DEDUP_SOCKET_TIMEOUT_SECONDS,
        )
    return _redis_client


def is_duplicate_message(instance_name: Optional[str], message_id: Optional[str], redis_client=None) -> bool:
    """Claim a gateway message id. Returns True when it was already claimed."""
    if not message_id:
        return False

    redis_client = redis_client or get_redis()
    if redis_client is None:
        return False

    key = f"insightbot:dedup:{instance_name or '-'}:{message_id}"
    try:
        was_set = redis_client.set(key, "1", ex=DEDUP_TTL_SECONDS, nx=True)
    except redis.RedisError as e:
        logger.warning(
            "Dedup redis unavailable, processing message",
            extra={"context": {"message_id": message_id, "error": str(e)}},
        )
        return False

    if not was_set:
        logger.info("Duplicate message_id", extra={"context": {"instance": instance_name, "message_id": message_id}})
        return True
    return False
