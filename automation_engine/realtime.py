import json
import logging
from typing import Optional

import redis.asyncio as redis

from .config import AUTOMATION_EVENTS_CHANNEL_PREFIX, REDIS_URL

log = logging.getLogger(__name__)


class RedisManager:
    """Optional Redis connection used to fan execution events out to dashboards."""

    def __init__(self, redis_url: str | None = None, channel_prefix: str | None = None):
        self.redis_url = redis_url if redis_url is not None else REDIS_URL
        self.channel_prefix = channel_prefix or AUTOMATION_EVENTS_CHANNEL_PREFIX
        self.redis_client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis (no-op when REDIS_URL is unset)."""
        if not self.redis_url:
            return
        try:
            self.redis_client = redis.from_url(self.redis_url)
            await self.redis_client.ping()
            log.info("Redis connected")
        except Exception as e:
            log.error("Redis connection failed: %s", e)
            self.redis_client = None

    async def close(self):
        if self.redis_client is None:
            return
        try:
            await self.redis_client.aclose()
        finally:
            self.redis_client = None

    def channel_for(self, tenant_id: str) -> str:
        return f"{self.channel_prefix}:{tenant_id}"

    async def publish_execution_event(self, tenant_id: str, event: dict) -> None:
        if not self.redis_client:
            return
        await self.redis_client.publish(self.channel_for(tenant_id), json.dumps(event, default=str))
