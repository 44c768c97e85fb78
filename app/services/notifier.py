"""
Push channel used to reach requesters and riders.

Topics are per entity: ``user:<id>`` for requesters, ``rider:<id>`` for riders.
Delivery is best-effort; nothing in the ride services waits for an ack.
"""
import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.redis_client import get_redis

logger = logging.getLogger(__name__)


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def rider_topic(rider_id: str) -> str:
    return f"rider:{rider_id}"


class Notifier(Protocol):
    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        ...


class RedisNotifier:
    """PUBLISHes `{"event", "data"}` JSON envelopes on Redis pub/sub."""

    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"event": event, "data": payload}, default=str)
        try:
            await self._redis.publish(topic, message)
        except RedisError as exc:
            logger.error("Publish failed topic=%s event=%s: %s", topic, event, exc)


async def get_notifier() -> Notifier:
    """FastAPI dependency."""
    return RedisNotifier(await get_redis())
