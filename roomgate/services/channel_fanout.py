# roomgate/services/channel_fanout.py

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from roomgate.services.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def room_topic(room_code: str) -> str:
    return f"room_{room_code}"


def broadcast_topic(room_code: str) -> str:
    return f"broadcast_{room_code}"


def envelope(event: str, payload: Any = None) -> dict:
    return {"type": event, "data": payload}


# Set on a relayed message when every instance must drop the topic once
# the event (if any) has been delivered. Never sent to clients.
DROP_TOPIC_FLAG = "drop_topic"


class FanoutRelay(Protocol):
    """Carries topic publishes to every instance, including this one."""

    async def publish(self, topic: str, message: dict) -> None: ...


# ============================================================================
# CHANNEL FANOUT
# ============================================================================

class ChannelFanout:
    """
    Named topics that connections join and leave, and delivery of events to
    whoever is a member at the moment of delivery.

    Data Structures:
        topics: Maps topic -> Set of connection ids
                Example: {"room_AB12CD": {"9f1c...", "02be..."}}

        connection_topics: Maps connection_id -> Set of topics it joined
                           Example: {"9f1c...": {"room_AB12CD"}}

    Membership changes and the member snapshot taken for a publish happen
    under one asyncio lock. The sends themselves run outside it.

    Delivery is best-effort: no acknowledgment, no retry. A connection whose
    send fails is dropped from every topic.

    With a relay attached (Redis pub/sub), ``publish`` hands the event to the
    relay and the relay's listener calls ``deliver`` on every instance.
    Dropping a topic for good (``drop_after`` / ``close_topic``) travels the
    same way, so each instance drops it only after delivering what came
    before.
    """

    def __init__(self, registry: ConnectionRegistry, relay: Optional[FanoutRelay] = None) -> None:
        self.registry = registry
        self.relay = relay
        self.topics: Dict[str, Set[str]] = {}
        self.connection_topics: Dict[str, Set[str]] = {}
        self.published_events: int = 0
        self._lock = asyncio.Lock()

    async def join(self, connection_id: str, topic: str) -> None:
        async with self._lock:
            self.topics.setdefault(topic, set()).add(connection_id)
            self.connection_topics.setdefault(connection_id, set()).add(topic)
        logger.debug("→ %s joined topic %s", connection_id, topic)

    async def leave(self, connection_id: str, topic: str) -> None:
        async with self._lock:
            self._discard(connection_id, topic)
        logger.debug("← %s left topic %s", connection_id, topic)

    async def leave_all(self, connection_id: str) -> None:
        async with self._lock:
            for topic in list(self.connection_topics.get(connection_id, ())):
                self._discard(connection_id, topic)
            self.connection_topics.pop(connection_id, None)

    async def drop_topic(self, topic: str) -> None:
        """Remove every local member from a topic."""
        async with self._lock:
            for connection_id in list(self.topics.get(topic, ())):
                self._discard(connection_id, topic)
            self.topics.pop(topic, None)

    def _discard(self, connection_id: str, topic: str) -> None:
        members = self.topics.get(topic)
        if members is not None:
            members.discard(connection_id)
            # Clean up empty topics from memory
            if not members:
                del self.topics[topic]
        joined = self.connection_topics.get(connection_id)
        if joined is not None:
            joined.discard(topic)
            if not joined:
                del self.connection_topics[connection_id]

    def members(self, topic: str) -> Set[str]:
        return set(self.topics.get(topic, ()))

    async def publish(self, topic: str, event: str, payload: Any = None, drop_after: bool = False) -> None:
        """
        Deliver ``event`` with ``payload`` to every current member of ``topic``.

        Publishing to a topic nobody has joined is a no-op. With
        ``drop_after`` the topic is dropped on every instance right after
        its members received the event.
        """
        self.published_events += 1
        message = envelope(event, payload)
        if drop_after:
            message[DROP_TOPIC_FLAG] = True
        await self._dispatch(topic, message)

    async def close_topic(self, topic: str) -> None:
        """Drop ``topic`` on every instance without sending anything."""
        await self._dispatch(topic, {DROP_TOPIC_FLAG: True})

    async def _dispatch(self, topic: str, message: dict) -> None:
        if self.relay is not None:
            await self.relay.publish(topic, message)
            return
        await self.deliver(topic, message)

    async def deliver(self, topic: str, message: dict) -> None:
        """Send an already-built message to this instance's members of ``topic``."""
        message = dict(message)
        drop_after = message.pop(DROP_TOPIC_FLAG, False)

        if "type" in message:
            await self._deliver_event(topic, message)

        if drop_after:
            await self.drop_topic(topic)
            logger.debug("Dropped topic %s", topic)

    async def _deliver_event(self, topic: str, message: dict) -> None:
        async with self._lock:
            members = set(self.topics.get(topic, ()))

        if not members:
            logger.debug("[routing] Skipped %s: topic=%s has 0 members", message.get("type"), topic)
            return

        logger.info("📨 %s -> %s: %d clients", message.get("type"), topic, len(members))

        failed = set()
        for connection_id in members:
            if not await self._send(connection_id, message):
                failed.add(connection_id)

        for connection_id in failed:
            await self.leave_all(connection_id)

    async def send_to(self, connection_id: str, event: str, payload: Any = None) -> bool:
        """Send an event to one connection only (the requester)."""
        return await self._send(connection_id, envelope(event, payload))

    async def _send(self, connection_id: str, message: dict) -> bool:
        websocket = self.registry.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.error("Send error to %s: %s", connection_id, e)
            return False
