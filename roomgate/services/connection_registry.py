# roomgate/services/connection_registry.py

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import WebSocket

from roomgate.models.models import Role

logger = logging.getLogger(__name__)

# ============================================================================
# CONNECTION REGISTRY
# ============================================================================

@dataclass
class ConnectionBinding:
    """What a connection negotiated on its last successful join."""
    room_code: str
    role: Role
    user_id: Optional[str] = None


class ConnectionRegistry:
    """
    Tracks live WebSocket connections and what each one has joined as.

    Data Structures:
        connections: Maps connection_id -> WebSocket
                     Example: {"9f1c...": websocket1}

        bindings: Maps connection_id -> ConnectionBinding, present only once
                  a join request has been validated
                  Example: {"9f1c...": ConnectionBinding("AB12CD", Role.USER, "uuid-7")}

    Connection ids are generated here on register and are the identity the
    rest of the system (fanout topics, the user's stored connection id)
    refers to. Nothing is persisted; state is lost with the process.
    """

    def __init__(self) -> None:
        self.connections: Dict[str, WebSocket] = {}
        self.bindings: Dict[str, ConnectionBinding] = {}
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket) -> str:
        """
        Accept a new WebSocket connection and track it, unauthenticated.

        Returns:
            The connection id assigned to this socket
        """
        await websocket.accept()

        connection_id = uuid.uuid4().hex
        async with self._lock:
            self.connections[connection_id] = websocket

        logger.info("✓ Connection %s registered. Total: %d", connection_id, len(self.connections))
        return connection_id

    async def bind(
        self,
        connection_id: str,
        room_code: str,
        role: Role,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Record the room, role and user a connection joined with.

        A later join on the same connection overwrites the binding, which is
        how reconnects and role switches are handled.
        """
        async with self._lock:
            if connection_id not in self.connections:
                return  # Connection already closed
            self.bindings[connection_id] = ConnectionBinding(room_code, role, user_id)
        logger.debug("Bound %s to %s as %s (user=%s)", connection_id, room_code, role.value, user_id)

    async def release(self, connection_id: str, room_code: str) -> Optional[ConnectionBinding]:
        """
        Drop the binding if it is for ``room_code``; the socket stays registered.

        Called when a connection leaves a room, so it no longer holds that
        room's role.
        """
        async with self._lock:
            binding = self.bindings.get(connection_id)
            if binding is None or binding.room_code != room_code:
                return None
            del self.bindings[connection_id]
        logger.debug("Released %s from %s", connection_id, room_code)
        return binding

    async def unbind(self, connection_id: str) -> Optional[ConnectionBinding]:
        """
        Forget a connection entirely. Called on disconnect.

        Returns:
            The binding the connection had, if it ever joined
        """
        async with self._lock:
            self.connections.pop(connection_id, None)
            binding = self.bindings.pop(connection_id, None)
        logger.info("✗ Connection %s unregistered. Total: %d", connection_id, len(self.connections))
        return binding

    def get(self, connection_id: str) -> Optional[WebSocket]:
        return self.connections.get(connection_id)

    def binding_for(self, connection_id: str) -> Optional[ConnectionBinding]:
        return self.bindings.get(connection_id)

    def __len__(self) -> int:
        return len(self.connections)
