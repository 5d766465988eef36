"""Tests for the REST admin surface and the websocket endpoint."""

import pytest
from fastapi.testclient import TestClient

from roomgate.core import state
from roomgate.main import app
from roomgate.services.channel_fanout import ChannelFanout
from roomgate.services.connection_registry import ConnectionRegistry
from roomgate.services.coordinator import RoomSessionCoordinator
from roomgate.services.directory_store import InMemoryDirectoryStore

from conftest import ADMIN_KEY, CREDENTIALS, SUPERADMIN_KEY


@pytest.fixture
def client(monkeypatch):
    store = InMemoryDirectoryStore()
    registry = ConnectionRegistry()
    fanout = ChannelFanout(registry)
    coordinator = RoomSessionCoordinator(store, registry, fanout, dict(CREDENTIALS))
    monkeypatch.setattr(state, "store", store)
    monkeypatch.setattr(state, "registry", registry)
    monkeypatch.setattr(state, "fanout", fanout)
    monkeypatch.setattr(state, "coordinator", coordinator)

    with TestClient(app) as c:
        yield c


def create_room(client, name="Test"):
    response = client.post("/api/rooms/create", json={"name": name, "root_password": SUPERADMIN_KEY})
    assert response.status_code == 201
    return response.json()["room"]


def request_join(client, room_code, username="ana"):
    response = client.post("/api/rooms/join", json={"username": username, "room_code": room_code})
    assert response.status_code == 201
    return response.json()["user"]


def receive(ws, count):
    return [ws.receive_json() for _ in range(count)]


class TestRoomRoutes:

    def test_create_room(self, client):
        room = create_room(client)

        assert len(room["room_code"]) == 6
        assert room["room_code"] == room["room_code"].upper()
        assert room["name"] == "Test"

    def test_create_room_requires_root_password(self, client):
        response = client.post("/api/rooms/create", json={"name": "Test", "root_password": "guess"})
        assert response.status_code == 401

    def test_create_room_requires_name(self, client):
        response = client.post("/api/rooms/create", json={"name": "  ", "root_password": SUPERADMIN_KEY})
        assert response.status_code == 400

    def test_create_room_code_space_exhausted(self, client, monkeypatch):
        create_room(client)
        coordinator = state.coordinator
        taken = next(iter(state.store.rooms.values())).room_code
        monkeypatch.setattr(coordinator, "max_code_attempts", 3)
        monkeypatch.setattr(coordinator, "code_generator", lambda length: taken)

        response = client.post("/api/rooms/create", json={"name": "Again", "root_password": SUPERADMIN_KEY})

        assert response.status_code == 503

    def test_join_and_approve_flow(self, client):
        room = create_room(client)
        user = request_join(client, room["room_code"].lower())
        assert user["status"] == "pending"

        pending = client.get(f"/api/rooms/{room['room_code']}/pending-users").json()
        assert [u["id"] for u in pending] == [user["id"]]

        response = client.patch(f"/api/rooms/approve-user/{user['id']}")
        assert response.status_code == 200
        assert response.json()["user"]["status"] == "approved"

        approved = client.get(f"/api/rooms/{room['room_code']}/all-users").json()
        assert [u["id"] for u in approved] == [user["id"]]
        assert client.get(f"/api/rooms/{room['room_code']}/pending-users").json() == []

    def test_not_found_responses(self, client):
        assert client.post("/api/rooms/join", json={"username": "ana", "room_code": "NOPE00"}).status_code == 404
        assert client.get("/api/rooms/NOPE00/pending-users").status_code == 404
        assert client.get("/api/rooms/NOPE00/all-users").status_code == 404
        assert client.patch("/api/rooms/approve-user/ghost").status_code == 404
        assert client.delete("/api/rooms/kick-user/ghost").status_code == 404
        assert client.delete("/api/rooms/NOPE00").status_code == 404
        assert client.get("/api/messages/approved/NOPE00").status_code == 404
        assert client.delete("/api/messages/delete/ghost").status_code == 404

    def test_kick_user(self, client):
        room = create_room(client)
        user = request_join(client, room["room_code"])

        assert client.delete(f"/api/rooms/kick-user/{user['id']}").status_code == 200
        assert client.delete(f"/api/rooms/kick-user/{user['id']}").status_code == 404
        assert client.get(f"/api/rooms/{room['room_code']}/pending-users").json() == []

    def test_delete_room(self, client):
        room = create_room(client)
        request_join(client, room["room_code"])

        response = client.delete(f"/api/rooms/{room['room_code'].lower()}")

        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "room_code": room["room_code"]}
        assert client.get(f"/api/rooms/{room['room_code']}/pending-users").status_code == 404


class TestOperationalRoutes:

    def test_root(self, client):
        assert client.get("/").json()["endpoints"]["websocket"] == "/ws"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["connections"] == 0

    def test_metrics(self, client):
        body = client.get("/metrics").json()
        assert body["published_events"] == 0
        assert body["store_backend"] in ("memory", "redis")


class TestWebsocket:

    def test_invalid_json_and_unknown_action(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}

            ws.send_json({"action": "dance"})
            assert ws.receive_json() == {"type": "error", "message": "Unknown action: dance"}

    def test_chat_moderation_round_trip(self, client):
        """User sends, a user-role approve is ignored, the admin's approve lands."""
        room = create_room(client)
        code = room["room_code"]
        user = request_join(client, code)

        with client.websocket_connect("/ws") as user_ws, client.websocket_connect("/ws") as admin_ws:
            user_ws.send_json({"action": "join_room", "room_code": code, "role": "user", "user_id": user["id"]})
            frames = receive(user_ws, 3)
            assert [f["type"] for f in frames] == ["load_messages", "refresh_user_lists", "superadmin_live_users"]
            assert frames[0]["data"] == []

            user_ws.send_json({"action": "send_message", "user_id": user["id"], "room_code": code, "content": "hi"})
            sent = receive(user_ws, 2)
            assert [f["type"] for f in sent] == ["receive_message", "new_pending_message"]
            message_id = sent[0]["data"]["id"]

            # Users may not approve; the following error frame proves it was processed
            user_ws.send_json({"action": "approve_message", "message_id": message_id})
            user_ws.send_json({"action": "dance"})
            assert user_ws.receive_json()["type"] == "error"
            assert client.get(f"/api/messages/approved/{code}").json() == []

            admin_ws.send_json({"action": "join_room", "room_code": code, "role": "admin", "password": ADMIN_KEY})
            joined = receive(admin_ws, 2)
            assert joined[0]["type"] == "load_pending_messages"
            assert [m["id"] for m in joined[0]["data"]] == [message_id]

            admin_ws.send_json({"action": "approve_message", "message_id": message_id})
            approved = receive(admin_ws, 2)
            assert [f["type"] for f in approved] == ["receive_message", "message_approved"]

            listed = client.get(f"/api/messages/approved/{code}").json()
            assert [m["id"] for m in listed] == [message_id]
            assert listed[0]["sender"]["username"] == "ana"

            assert client.delete(f"/api/messages/delete/{message_id}").status_code == 200
            assert admin_ws.receive_json() == {"type": "message_deleted", "data": message_id}

    def test_wrong_admin_password(self, client):
        room = create_room(client)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"action": "join_room", "room_code": room["room_code"], "role": "admin", "password": "x"})
            assert ws.receive_json() == {"type": "auth_failed", "data": "Invalid Admin Access Key"}

        assert state.fanout.topics == {}
