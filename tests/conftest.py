"""Shared fixtures: a fresh in-memory coordinator wired to fake websockets."""

import pytest

from roomgate.models.models import Role
from roomgate.services.channel_fanout import ChannelFanout
from roomgate.services.connection_registry import ConnectionRegistry
from roomgate.services.coordinator import RoomSessionCoordinator
from roomgate.services.directory_store import InMemoryDirectoryStore

SUPERADMIN_KEY = "root-secret"
ADMIN_KEY = "mod-secret"
BROADCAST_KEY = "feed-secret"

CREDENTIALS = {
    Role.SUPERADMIN: SUPERADMIN_KEY,
    Role.ADMIN: ADMIN_KEY,
    Role.BROADCAST: BROADCAST_KEY,
}


class FakeWebSocket:
    """Records every JSON frame sent to it."""

    def __init__(self, fail_sends=False):
        self.accepted = False
        self.sent = []
        self.fail_sends = fail_sends

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, name):
        return [frame["data"] for frame in self.sent if frame.get("type") == name]

    def event_names(self):
        return [frame.get("type") for frame in self.sent]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def store():
    return InMemoryDirectoryStore()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def fanout(registry):
    return ChannelFanout(registry)


@pytest.fixture
def coordinator(store, registry, fanout):
    return RoomSessionCoordinator(
        store=store,
        registry=registry,
        fanout=fanout,
        credentials=dict(CREDENTIALS),
    )


@pytest.fixture
def connect(registry):
    """Factory: register a new fake websocket, returning (connection_id, websocket)."""

    async def _connect(fail_sends=False):
        websocket = FakeWebSocket(fail_sends=fail_sends)
        connection_id = await registry.register(websocket)
        return connection_id, websocket

    return _connect
