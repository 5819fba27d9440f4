"""
Redis notification channel for snapshot changes.

The syncer only ever publishes; downstream consumers subscribe to
REDIS_CHANNEL_SYNC and reload the snapshot file named in the event.
"""

import logging
from typing import Any, Optional

import orjson
import redis.asyncio as redis
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import settings

logger = logging.getLogger(__name__)


class RedisPublisher:
    """Publishes orjson-encoded events; the connection pool is opened on first use."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_connections: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self.redis_url = redis_url or settings.REDIS_URL
        self.max_connections = max_connections or settings.REDIS_MAX_CONNECTIONS
        self.client = client

    async def connect(self) -> redis.Redis:
        if self.client is None:
            self.client = redis.from_url(
                self.redis_url,
                max_connections=self.max_connections,
                decode_responses=False,
            )
        return self.client

    @retry(
        retry=retry_if_exception_type(redis.RedisError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Send one event.

        Returns:
            Number of subscribers that received it

        Raises:
            redis.RedisError: After the third failed attempt
        """
        client = await self.connect()
        receivers = await client.publish(channel, orjson.dumps(message))
        logger.debug("Event sent: channel=%s, receivers=%s", channel, receivers)
        return receivers

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> "RedisPublisher":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
