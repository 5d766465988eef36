# roomgate/services/redis_pub_sub.py
from __future__ import annotations

import json
import logging
from typing import Optional

import redis.asyncio as redis

from roomgate.services.channel_fanout import ChannelFanout

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "fanout:"


class AsyncRedisPubSubService:
    """
    Relays topic publishes between instances over Redis Pub/Sub.

    Every topic maps to the Redis channel ``fanout:<topic>``. Publishing
    goes to Redis only; each instance (this one included) receives it on
    its pattern subscription and delivers to its own local members.

    Redis delivers one client's publishes in order, so an event followed by
    a topic drop reaches every instance in that order.
    """

    def __init__(self, url: str, fanout: Optional[ChannelFanout] = None, client: Optional[redis.Redis] = None):
        self.url = url
        self.fanout = fanout
        self.client = client
        self.pubsub = None

    async def connect(self):
        """Establish async connection to Redis."""
        if self.client is None:
            self.client = redis.from_url(self.url, decode_responses=True)
        await self.client.ping()
        logger.info(f"✓ Fanout relay connected to Redis at {self.url}")

    async def publish(self, topic: str, message: dict):
        """Publish a built event message for ``topic``."""
        channel = f"{CHANNEL_PREFIX}{topic}"
        await self.client.publish(channel, json.dumps(message))
        logger.debug(f"📤 Published {message.get('type')} to Redis channel '{channel}'")

    async def subscribe(self, pattern: str = f"{CHANNEL_PREFIX}*"):
        """
        Subscribe to the relay channels.

        Awaited on startup before the listener task is spawned, so nothing
        published after startup returns is missed.
        """
        self.pubsub = self.client.pubsub()
        await self.pubsub.psubscribe(pattern)
        logger.info(f"✓ Subscribed to Redis pattern '{pattern}'")

    async def listen(self):
        """
        Listen to Redis channels and deliver to local connections.

        Runs until cancelled; started as a background task on startup.
        """
        if self.pubsub is None:
            await self.subscribe()

        async for message in self.pubsub.listen():
            if message["type"] not in ("message", "pmessage"):
                continue
            try:
                topic = message["channel"][len(CHANNEL_PREFIX):]
                data = json.loads(message["data"])
                await self.fanout.deliver(topic, data)
            except Exception as e:
                logger.error(f"Error processing Redis message: {e}")

    async def close(self):
        """Close connections."""
        if self.pubsub:
            await self.pubsub.punsubscribe()
            await self.pubsub.aclose()
        if self.client:
            await self.client.aclose()
        logger.info("Redis connection closed")
