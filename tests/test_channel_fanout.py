"""Tests for topic membership and event delivery."""

import asyncio

import pytest

from roomgate.services.channel_fanout import DROP_TOPIC_FLAG, ChannelFanout, broadcast_topic, room_topic


class RecordingRelay:
    def __init__(self):
        self.published = []

    async def publish(self, topic, message):
        self.published.append((topic, message))


class TestMembership:
    """Joining and leaving topics."""

    @pytest.mark.asyncio
    async def test_join_is_per_topic(self, fanout, connect):
        """A connection can belong to several topics independently."""
        cid, _ = await connect()
        await fanout.join(cid, room_topic("AB12CD"))
        await fanout.join(cid, broadcast_topic("AB12CD"))

        await fanout.leave(cid, room_topic("AB12CD"))

        assert fanout.members(room_topic("AB12CD")) == set()
        assert fanout.members(broadcast_topic("AB12CD")) == {cid}

    @pytest.mark.asyncio
    async def test_empty_topics_are_removed(self, fanout, connect):
        cid, _ = await connect()
        await fanout.join(cid, "room_X")
        await fanout.leave(cid, "room_X")

        assert "room_X" not in fanout.topics
        assert cid not in fanout.connection_topics

    @pytest.mark.asyncio
    async def test_leave_all(self, fanout, connect):
        cid, _ = await connect()
        other, _ = await connect()
        await fanout.join(cid, "room_A")
        await fanout.join(cid, "broadcast_A")
        await fanout.join(other, "room_A")

        await fanout.leave_all(cid)

        assert fanout.members("room_A") == {other}
        assert "broadcast_A" not in fanout.topics

    @pytest.mark.asyncio
    async def test_drop_topic(self, fanout, connect):
        a, _ = await connect()
        b, _ = await connect()
        await fanout.join(a, "room_A")
        await fanout.join(b, "room_A")
        await fanout.join(b, "room_B")

        await fanout.drop_topic("room_A")

        assert "room_A" not in fanout.topics
        assert fanout.connection_topics[b] == {"room_B"}

    @pytest.mark.asyncio
    async def test_concurrent_joins_keep_every_member(self, fanout, connect):
        """Many joins racing with publishes still leave a consistent table."""
        connections = [await connect() for _ in range(50)]

        await asyncio.gather(
            *[fanout.join(cid, "room_BUSY") for cid, _ in connections],
            *[fanout.publish("room_BUSY", "refresh_user_lists") for _ in range(10)],
        )

        assert fanout.members("room_BUSY") == {cid for cid, _ in connections}


class TestPublish:
    """Delivering events to topic members."""

    @pytest.mark.asyncio
    async def test_publish_reaches_only_members(self, fanout, connect):
        member, member_ws = await connect()
        outsider, outsider_ws = await connect()
        await fanout.join(member, "room_A")

        await fanout.publish("room_A", "receive_message", {"content": "hi"})

        assert member_ws.sent == [{"type": "receive_message", "data": {"content": "hi"}}]
        assert outsider_ws.sent == []

    @pytest.mark.asyncio
    async def test_publish_to_empty_topic_is_noop(self, fanout):
        await fanout.publish("room_NOBODY", "room_deleted")
        assert fanout.published_events == 1

    @pytest.mark.asyncio
    async def test_failed_send_drops_connection(self, fanout, connect):
        """A connection whose socket errors is removed from every topic."""
        good, good_ws = await connect()
        bad, _ = await connect(fail_sends=True)
        await fanout.join(good, "room_A")
        await fanout.join(bad, "room_A")
        await fanout.join(bad, "broadcast_A")

        await fanout.publish("room_A", "refresh_user_lists")

        assert good_ws.event_names() == ["refresh_user_lists"]
        assert fanout.members("room_A") == {good}
        assert "broadcast_A" not in fanout.topics

    @pytest.mark.asyncio
    async def test_send_to_single_connection(self, fanout, connect):
        cid, ws = await connect()
        assert await fanout.send_to(cid, "auth_failed", "nope") is True
        assert ws.sent == [{"type": "auth_failed", "data": "nope"}]

    @pytest.mark.asyncio
    async def test_send_to_unknown_connection(self, fanout):
        assert await fanout.send_to("missing", "room_not_found") is False

    @pytest.mark.asyncio
    async def test_relay_takes_over_delivery(self, registry, connect):
        """With a relay attached, publishes go to the relay, not straight to sockets."""
        relay = RecordingRelay()
        fanout = ChannelFanout(registry, relay=relay)
        cid, ws = await connect()
        await fanout.join(cid, "room_A")

        await fanout.publish("room_A", "room_deleted", "A")

        assert relay.published == [("room_A", {"type": "room_deleted", "data": "A"})]
        assert ws.sent == []

        await fanout.deliver("room_A", relay.published[0][1])
        assert ws.event_names() == ["room_deleted"]


class TestTopicDrop:
    """Dropping a topic after its final event."""

    @pytest.mark.asyncio
    async def test_drop_after_delivers_then_drops(self, fanout, connect):
        cid, ws = await connect()
        await fanout.join(cid, "room_A")

        await fanout.publish("room_A", "room_deleted", "A", drop_after=True)

        assert ws.sent == [{"type": "room_deleted", "data": "A"}]
        assert "room_A" not in fanout.topics

    @pytest.mark.asyncio
    async def test_close_topic_sends_nothing(self, fanout, connect):
        cid, ws = await connect()
        await fanout.join(cid, "broadcast_A")

        await fanout.close_topic("broadcast_A")

        assert ws.sent == []
        assert "broadcast_A" not in fanout.topics
        assert fanout.published_events == 0

    @pytest.mark.asyncio
    async def test_relayed_drop_waits_for_delivery(self, registry, connect):
        """Through a relay the drop travels with the event and applies on delivery."""
        relay = RecordingRelay()
        fanout = ChannelFanout(registry, relay=relay)
        cid, ws = await connect()
        await fanout.join(cid, "room_A")

        await fanout.publish("room_A", "room_deleted", "A", drop_after=True)

        assert fanout.members("room_A") == {cid}
        topic, message = relay.published[0]
        assert message[DROP_TOPIC_FLAG] is True

        await fanout.deliver(topic, message)

        assert ws.sent == [{"type": "room_deleted", "data": "A"}]
        assert "room_A" not in fanout.topics
