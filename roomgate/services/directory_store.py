# roomgate/services/directory_store.py

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from roomgate.core.errors import RoomCodeTakenError
from roomgate.models.models import Message, Room, Status, User

logger = logging.getLogger(__name__)

# ============================================================================
# DIRECTORY STORE INTERFACE
# ============================================================================

class DirectoryStore(ABC):
    """
    Durable home of rooms, users and messages.

    The coordinator keeps no copy of these records: every read goes through
    the store, and every change is written back with one of the ``save_*``
    calls. Implementations return detached copies, so mutating a returned
    object has no effect until it is saved.

    Concurrent handlers touch the same user records, so field-level changes
    (presence, approval) go through targeted updates that apply to the
    current record and never re-create a deleted one.

    Multi-record mutations (cascading deletes) are a sequence of independent
    calls; the store gives no transaction around them.
    """

    # -- rooms ---------------------------------------------------------------

    @abstractmethod
    async def find_room_by_id(self, room_id: str) -> Optional[Room]: ...

    @abstractmethod
    async def find_room_by_code(self, room_code: str) -> Optional[Room]: ...

    @abstractmethod
    async def save_room(self, room: Room) -> Room:
        """
        Insert or update a room.

        Raises:
            RoomCodeTakenError: another live room already holds ``room.room_code``
        """

    @abstractmethod
    async def delete_room(self, room_id: str) -> None: ...

    # -- users ---------------------------------------------------------------

    @abstractmethod
    async def find_user_by_id(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def find_user_by_connection_id(self, connection_id: str) -> Optional[User]: ...

    @abstractmethod
    async def find_users_by_room(self, room_id: str) -> List[User]: ...

    async def find_users_by_room_and_status(self, room_id: str, status: Status) -> List[User]:
        return [u for u in await self.find_users_by_room(room_id) if u.status == status]

    async def find_users_by_room_and_status_and_online(
        self, room_id: str, status: Status, online: bool
    ) -> List[User]:
        users = await self.find_users_by_room_and_status(room_id, status)
        return [u for u in users if u.is_online == online]

    @abstractmethod
    async def save_user(self, user: User) -> User:
        """Insert a user, or replace the whole record."""

    @abstractmethod
    async def set_presence(self, user_id: str, connection_id: str) -> Optional[User]:
        """
        Mark an existing user online on ``connection_id``.

        Only the presence fields change. Returns None, writing nothing, if
        the user no longer exists.
        """

    @abstractmethod
    async def clear_presence(self, connection_id: str) -> Optional[User]:
        """Mark the user currently bound to ``connection_id`` offline, if any."""

    @abstractmethod
    async def mark_user_approved(self, user_id: str) -> Optional[User]:
        """Set an existing user's status to approved. None if it no longer exists."""

    @abstractmethod
    async def delete_user(self, user_id: str) -> None: ...

    async def delete_users(self, users: Iterable[User]) -> None:
        for user in users:
            await self.delete_user(user.id)

    # -- messages ------------------------------------------------------------

    @abstractmethod
    async def find_message_by_id(self, message_id: str) -> Optional[Message]: ...

    @abstractmethod
    async def find_messages_by_room(
        self, room_id: str, status: Optional[Status] = None
    ) -> List[Message]:
        """Messages of a room, oldest first, optionally filtered by status."""

    @abstractmethod
    async def save_message(self, message: Message) -> Message: ...

    @abstractmethod
    async def delete_message(self, message_id: str) -> None: ...

    @abstractmethod
    async def delete_messages_by_room(self, room_id: str) -> None: ...

    @abstractmethod
    async def delete_messages_by_sender(self, sender_id: str) -> None: ...

    async def connect(self) -> None:
        """Open backing connections, if any."""

    async def close(self) -> None:
        """Release backing connections, if any."""


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryDirectoryStore(DirectoryStore):
    """
    Process-local store used for single-instance deployments and tests.

    Data Structures:
        rooms:    room_id -> Room
        users:    user_id -> User
        messages: message_id -> Message (kept in insertion order)

    A single asyncio lock serialises writers so that the room-code
    uniqueness check and the insert happen as one step.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, Room] = {}
        self.users: Dict[str, User] = {}
        self.messages: Dict[str, Message] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(record):
        return record.model_copy(deep=True) if record is not None else None

    async def find_room_by_id(self, room_id: str) -> Optional[Room]:
        return self._copy(self.rooms.get(room_id))

    async def find_room_by_code(self, room_code: str) -> Optional[Room]:
        for room in self.rooms.values():
            if room.room_code == room_code:
                return self._copy(room)
        return None

    async def save_room(self, room: Room) -> Room:
        async with self._lock:
            for other in self.rooms.values():
                if other.room_code == room.room_code and other.id != room.id:
                    raise RoomCodeTakenError(room.room_code)
            self.rooms[room.id] = self._copy(room)
        return room

    async def delete_room(self, room_id: str) -> None:
        async with self._lock:
            self.rooms.pop(room_id, None)

    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        return self._copy(self.users.get(user_id))

    async def find_user_by_connection_id(self, connection_id: str) -> Optional[User]:
        for user in self.users.values():
            if user.connection_id == connection_id:
                return self._copy(user)
        return None

    async def find_users_by_room(self, room_id: str) -> List[User]:
        return [self._copy(u) for u in self.users.values() if u.room_id == room_id]

    async def save_user(self, user: User) -> User:
        async with self._lock:
            self.users[user.id] = self._copy(user)
        return user

    async def set_presence(self, user_id: str, connection_id: str) -> Optional[User]:
        async with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            user.is_online = True
            user.connection_id = connection_id
            return self._copy(user)

    async def clear_presence(self, connection_id: str) -> Optional[User]:
        async with self._lock:
            for user in self.users.values():
                if user.connection_id == connection_id:
                    user.is_online = False
                    user.connection_id = None
                    return self._copy(user)
        return None

    async def mark_user_approved(self, user_id: str) -> Optional[User]:
        async with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            user.status = Status.APPROVED
            return self._copy(user)

    async def delete_user(self, user_id: str) -> None:
        async with self._lock:
            self.users.pop(user_id, None)

    async def find_message_by_id(self, message_id: str) -> Optional[Message]:
        return self._copy(self.messages.get(message_id))

    async def find_messages_by_room(
        self, room_id: str, status: Optional[Status] = None
    ) -> List[Message]:
        found = [
            self._copy(m)
            for m in self.messages.values()
            if m.room_id == room_id and (status is None or m.status == status)
        ]
        # Stable sort keeps insertion order for identical timestamps
        found.sort(key=lambda m: m.created_at)
        return found

    async def save_message(self, message: Message) -> Message:
        stored = message.model_copy(deep=True, update={"sender": None})
        async with self._lock:
            self.messages[message.id] = stored
        return message

    async def delete_message(self, message_id: str) -> None:
        async with self._lock:
            self.messages.pop(message_id, None)

    async def delete_messages_by_room(self, room_id: str) -> None:
        async with self._lock:
            doomed = [mid for mid, m in self.messages.items() if m.room_id == room_id]
            for mid in doomed:
                del self.messages[mid]
        logger.debug("Deleted %d messages of room %s", len(doomed), room_id)

    async def delete_messages_by_sender(self, sender_id: str) -> None:
        async with self._lock:
            doomed = [mid for mid, m in self.messages.items() if m.sender_id == sender_id]
            for mid in doomed:
                del self.messages[mid]
        logger.debug("Deleted %d messages sent by %s", len(doomed), sender_id)
