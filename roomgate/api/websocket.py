# roomgate/api/websocket.py

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from roomgate.core import state
from roomgate.models.models import Role

logger = logging.getLogger(__name__)

router = APIRouter()

MODERATORS = {Role.ADMIN, Role.SUPERADMIN}

# Actions only forwarded when the connection joined with one of these roles
REQUIRED_ROLES = {
    "approve_message": MODERATORS,
    "get_pending_messages": MODERATORS,
    "approve_user": {Role.SUPERADMIN},
    "kick_user": {Role.SUPERADMIN},
    "delete_room": {Role.SUPERADMIN},
}


def is_permitted(connection_id: str, action: str) -> bool:
    required = REQUIRED_ROLES.get(action)
    if required is None:
        return True
    binding = state.registry.binding_for(connection_id)
    return binding is not None and binding.role in required


# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for room participants, moderators and viewers.

    Protocol:
    =========

    Client -> Server Actions:
    -------------------------
    Join Room:
        {"action": "join_room", "room_code": "AB12CD", "role": "user|admin|superadmin|broadcast",
         "user_id": "uuid-7", "password": "<role secret>"}

    Send Message:
        {"action": "send_message", "user_id": "uuid-7", "room_code": "AB12CD", "content": "hi"}

    Moderation (admin / superadmin):
        {"action": "approve_message", "message_id": "uuid-9"}
        {"action": "get_pending_messages", "room_code": "AB12CD"}

    Membership (superadmin):
        {"action": "approve_user", "user_id": "uuid-7", "room_code": "AB12CD"}
        {"action": "kick_user", "user_id": "uuid-7", "room_code": "AB12CD"}
        {"action": "delete_room", "room_code": "AB12CD"}

    Leave:
        {"action": "leave_room", "user_id": "uuid-7", "room_code": "AB12CD"}

    Server -> Client Messages:
    -------------------------
    Every event is {"type": "<event>", "data": <payload>}, e.g.
        {"type": "receive_message", "data": {"id": "...", "content": "hi", ...}}
        {"type": "superadmin_live_users", "data": [{"id": "...", "username": "..."}]}
        {"type": "auth_failed", "data": "Invalid Admin Access Key"}

    Error:
        {"type": "error", "message": "..."}

    Lifecycle:
    ==========
    1. Client connects, the registry assigns a connection id
    2. Client sends "join_room"; the coordinator validates and enrolls it
    3. Client receives events for the topics its role joined
    4. On disconnect the user is marked offline and live users republished

    Error Handling:
        - Invalid JSON / unknown actions: error message back to the client
        - Missing fields, unknown ids, insufficient role: silently ignored
        - Handler errors: logged, connection kept open
    """
    connection_id = await state.registry.register(websocket)
    coordinator = state.coordinator

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
                if not isinstance(message, dict):
                    raise json.JSONDecodeError("Expected an object", data, 0)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = message.get("action")
            logger.debug("Websocket input from %s: %s", connection_id, action)

            if not is_permitted(connection_id, action):
                logger.warning("Ignoring %s from %s: role not permitted", action, connection_id)
                continue

            try:
                if action == "join_room":
                    await coordinator.handle_join(
                        connection_id,
                        message.get("room_code"),
                        message.get("role"),
                        user_id=message.get("user_id"),
                        credential=message.get("password"),
                    )

                elif action == "send_message":
                    await coordinator.handle_send(
                        message.get("user_id"), message.get("room_code"), message.get("content")
                    )

                elif action == "approve_message":
                    await coordinator.handle_approve(message.get("message_id"))

                elif action == "get_pending_messages":
                    await coordinator.handle_get_pending_messages(connection_id, message.get("room_code"))

                elif action == "approve_user":
                    await coordinator.handle_approve_user(message.get("user_id"), message.get("room_code"))

                elif action == "kick_user":
                    await coordinator.handle_kick(message.get("user_id"), message.get("room_code"))

                elif action == "delete_room":
                    await coordinator.handle_delete_room(message.get("room_code"))

                elif action == "leave_room":
                    await coordinator.handle_leave(
                        connection_id, message.get("user_id"), message.get("room_code")
                    )

                else:
                    await websocket.send_json(
                        {
                            "type": "error",
                            "message": f"Unknown action: {action}",
                        }
                    )

            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.error("Error handling %s from %s: %s", action, connection_id, e)

    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", connection_id)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        await coordinator.handle_disconnect(connection_id)
