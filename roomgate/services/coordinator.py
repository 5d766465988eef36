# roomgate/services/coordinator.py

from __future__ import annotations

import hmac
import logging
from typing import Callable, Dict, List, Optional

from roomgate.core.errors import RoomCodeSpaceExhaustedError, RoomCodeTakenError
from roomgate.models.models import (
    Message,
    Role,
    Room,
    Status,
    User,
    normalize_room_code,
    utc_now,
)
from roomgate.services.channel_fanout import ChannelFanout, broadcast_topic, room_topic
from roomgate.services.connection_registry import ConnectionRegistry
from roomgate.services.directory_store import DirectoryStore
from roomgate.services.room_codes import generate_room_code

logger = logging.getLogger(__name__)

# Roles that must present their shared secret on join
AUTH_FAILED_REASONS: Dict[Role, str] = {
    Role.SUPERADMIN: "Invalid SuperAdmin Credentials",
    Role.ADMIN: "Invalid Admin Access Key",
    Role.BROADCAST: "Invalid Stream Authorization",
}


def user_payload(user: User) -> dict:
    return user.model_dump(mode="json", exclude={"connection_id"})


def message_payload(message: Message) -> dict:
    return message.model_dump(mode="json", exclude={"sender": {"connection_id"}})


# ============================================================================
# ROOM SESSION COORDINATOR
# ============================================================================

class RoomSessionCoordinator:
    """
    Drives joins, the message moderation pipeline, presence and cascading
    removal for every room.

    The coordinator owns no durable state. Each operation reads what it
    needs from the Directory Store, writes its changes back, and then
    publishes events through the Channel Fanout. Topics per room code C:

        room_C       every joined participant (chat, approvals, kicks, presence)
        broadcast_C  broadcast viewers only (approved messages)

    Event-driven entry points treat missing rooms/users/messages as a
    no-op and return None; the REST layer turns that None into a 404.
    """

    def __init__(
        self,
        store: DirectoryStore,
        registry: ConnectionRegistry,
        fanout: ChannelFanout,
        credentials: Dict[Role, str],
        code_length: int = 6,
        max_code_attempts: int = 100,
        code_generator: Callable[[int], str] = generate_room_code,
    ) -> None:
        self.store = store
        self.registry = registry
        self.fanout = fanout
        self.credentials = credentials
        self.code_length = code_length
        self.max_code_attempts = max_code_attempts
        self.code_generator = code_generator

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def verify_credential(self, role: Role, credential: Optional[str]) -> bool:
        """Compare a presented credential against the role's configured secret."""
        expected = self.credentials.get(role) or ""
        if not expected or credential is None:
            return False
        return hmac.compare_digest(expected.encode(), str(credential).encode())

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def create_room(self, name: str, created_by: Optional[str] = None) -> Room:
        """
        Create a room under a freshly generated, unused code.

        Codes are rejection-sampled: generate, check, insert. The store
        refuses a duplicate code on insert, so a concurrent creation that
        slipped in between check and insert just costs another attempt.

        Raises:
            RoomCodeSpaceExhaustedError: no free code within max_code_attempts
        """
        for attempt in range(1, self.max_code_attempts + 1):
            code = normalize_room_code(self.code_generator(self.code_length))
            if await self.store.find_room_by_code(code) is not None:
                continue
            room = Room(room_code=code, name=name, created_by=created_by)
            try:
                await self.store.save_room(room)
            except RoomCodeTakenError:
                logger.warning("Room code %s claimed concurrently, retrying", code)
                continue
            logger.info("✓ Created room '%s' with code %s (attempt %d)", name, code, attempt)
            return room

        logger.error("Room code space exhausted after %d attempts", self.max_code_attempts)
        raise RoomCodeSpaceExhaustedError(self.max_code_attempts)

    async def request_join(self, username: str, room_code: str) -> Optional[User]:
        """Create a pending participant for the room, or None if the room doesn't exist."""
        room = await self.store.find_room_by_code(normalize_room_code(room_code))
        if room is None:
            return None
        user = User(username=username.strip(), role=Role.USER, room_id=room.id)
        await self.store.save_user(user)
        logger.info("Join request from '%s' for room %s", user.username, room.room_code)
        return user

    async def list_users(self, room_code: str, status: Status) -> Optional[List[User]]:
        room = await self.store.find_room_by_code(normalize_room_code(room_code))
        if room is None:
            return None
        return await self.store.find_users_by_room_and_status(room.id, status)

    async def list_messages(self, room_code: str, status: Optional[Status] = None) -> Optional[List[Message]]:
        room = await self.store.find_room_by_code(normalize_room_code(room_code))
        if room is None:
            return None
        return await self.resolve_senders(await self.store.find_messages_by_room(room.id, status))

    # ------------------------------------------------------------------
    # Join protocol
    # ------------------------------------------------------------------

    async def handle_join(
        self,
        connection_id: str,
        room_code: Optional[str],
        role: Optional[str],
        user_id: Optional[str] = None,
        credential: Optional[str] = None,
    ) -> None:
        """
        Validate a join request and enroll the connection.

        Steps (order is fixed):
            1. Ignore requests without a room code or with an unknown role
            2. Elevated roles must present their secret, else auth_failed
            3. Resolve the room, else room_not_found
            4. Enroll into room_C and bind the connection
            5. Mark the referenced user online on this connection
            6. Send the role's initial snapshot
            7. Publish the live-user snapshot to room_C
        """
        if not room_code or not room_code.strip():
            return
        try:
            role = Role(role)
        except ValueError:
            logger.warning("Ignoring join with unknown role %r", role)
            return

        if role in AUTH_FAILED_REASONS and not self.verify_credential(role, credential):
            logger.warning("Auth failed for %s joining as %s", connection_id, role.value)
            await self.fanout.send_to(connection_id, "auth_failed", AUTH_FAILED_REASONS[role])
            return

        code = normalize_room_code(room_code)
        room = await self.store.find_room_by_code(code)
        if room is None:
            await self.fanout.send_to(connection_id, "room_not_found")
            return

        await self.fanout.join(connection_id, room_topic(code))
        await self.registry.bind(connection_id, code, role, user_id)

        if user_id:
            # A user kicked meanwhile stays gone
            user = await self.store.set_presence(user_id, connection_id)
            # Approved while offline: move the client straight past the waiting screen
            if user is not None and user.status == Status.APPROVED:
                await self.fanout.send_to(connection_id, "user_approved", user.id)

        if role == Role.USER:
            messages = await self.list_room_messages(room.id)
            await self.fanout.send_to(connection_id, "load_messages", [message_payload(m) for m in messages])
            await self.fanout.publish(room_topic(code), "refresh_user_lists")
        elif role == Role.ADMIN:
            pending = await self.list_room_messages(room.id, Status.PENDING)
            await self.fanout.send_to(connection_id, "load_pending_messages", [message_payload(m) for m in pending])
        elif role == Role.BROADCAST:
            await self.fanout.join(connection_id, broadcast_topic(code))
            approved = await self.list_room_messages(room.id, Status.APPROVED)
            await self.fanout.send_to(connection_id, "load_broadcast_messages", [message_payload(m) for m in approved])
        elif role == Role.SUPERADMIN:
            live = await self.live_users(room.id)
            await self.fanout.send_to(connection_id, "superadmin_live_users", [user_payload(u) for u in live])
            await self.fanout.send_to(connection_id, "refresh_user_lists")

        await self.broadcast_live_users(room)
        logger.info("Role %s joined room %s. UserID: %s", role.value, code, user_id)

    async def handle_get_pending_messages(self, connection_id: str, room_code: Optional[str]) -> None:
        """Re-send pending messages to the requester, without any join side effects."""
        if not room_code:
            return
        room = await self.store.find_room_by_code(normalize_room_code(room_code))
        if room is None:
            return
        pending = await self.list_room_messages(room.id, Status.PENDING)
        await self.fanout.send_to(connection_id, "load_pending_messages", [message_payload(m) for m in pending])

    # ------------------------------------------------------------------
    # Moderation pipeline
    # ------------------------------------------------------------------

    async def handle_send(
        self, user_id: Optional[str], room_code: Optional[str], content: Optional[str]
    ) -> Optional[Message]:
        if not content or not content.strip() or not room_code or not user_id:
            return None

        code = normalize_room_code(room_code)
        room = await self.store.find_room_by_code(code)
        if room is None:
            logger.debug("send_message dropped: room %s not found", code)
            return None
        sender = await self.store.find_user_by_id(user_id)
        if sender is None:
            logger.debug("send_message dropped: sender %s not found", user_id)
            return None

        message = Message(
            room_id=room.id,
            sender_id=sender.id,
            sender_username=sender.username,
            content=content.strip(),
            status=Status.PENDING,
        )
        await self.store.save_message(message)
        message.sender = sender

        payload = message_payload(message)
        # Room members see every send live; moderation only gates broadcast_C
        await self.fanout.publish(room_topic(code), "receive_message", payload)
        await self.fanout.publish(room_topic(code), "new_pending_message", payload)
        return message

    async def handle_approve(self, message_id: Optional[str]) -> Optional[Message]:
        """
        Advance a message from pending to approved and broadcast it.

        Approving an approved message writes nothing and re-publishes the
        same three events.
        """
        if not message_id:
            return None
        message = await self.store.find_message_by_id(message_id)
        if message is None:
            return None

        if message.status != Status.APPROVED:
            message.status = Status.APPROVED
            message.updated_at = utc_now()
            await self.store.save_message(message)

        room = await self.store.find_room_by_id(message.room_id)
        if room is None:
            return message

        await self.resolve_senders([message])
        payload = message_payload(message)
        code = room.room_code
        await self.fanout.publish(broadcast_topic(code), "broadcast_message", payload)
        await self.fanout.publish(room_topic(code), "receive_message", payload)
        await self.fanout.publish(room_topic(code), "message_approved", payload)
        return message

    async def handle_delete(self, message_id: Optional[str]) -> Optional[Message]:
        if not message_id:
            return None
        message = await self.store.find_message_by_id(message_id)
        if message is None:
            return None

        await self.store.delete_message(message_id)
        logger.info("Message deleted permanently: %s", message_id)

        room = await self.store.find_room_by_id(message.room_id)
        if room is not None:
            await self.fanout.publish(room_topic(room.room_code), "message_deleted", message_id)
            await self.fanout.publish(broadcast_topic(room.room_code), "message_deleted", message_id)
        return message

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def handle_approve_user(self, user_id: Optional[str], room_code_hint: Optional[str] = None) -> Optional[User]:
        if not user_id:
            return None
        user = await self.store.mark_user_approved(user_id)
        if user is None:
            return None
        logger.info("✅ User approved: %s", user.username)

        if user.connection_id:
            await self.fanout.send_to(user.connection_id, "user_approved", user.id)

        room = await self._room_for(user, room_code_hint)
        code = room.room_code if room else self._hint(room_code_hint)
        if code:
            await self.fanout.publish(room_topic(code), "user_approved", user.id)
            await self.fanout.publish(room_topic(code), "refresh_user_lists")
        if room is not None:
            await self.broadcast_live_users(room)
        return user

    async def handle_kick(self, user_id: Optional[str], room_code_hint: Optional[str] = None) -> Optional[User]:
        """
        Remove a user completely: its messages first, then the record.

        Kicking a user that no longer exists is logged and ignored.
        """
        if not user_id:
            return None
        user = await self.store.find_user_by_id(user_id)
        if user is None:
            logger.warning("Kick failed - user %s not found", user_id)
            return None

        logger.info("👢 Kicking %s from room %s", user.username, user.room_id)
        if user.connection_id:
            await self.fanout.send_to(
                user.connection_id, "kicked_from_room", {"message": "You were removed by Super Admin"}
            )

        await self.store.delete_messages_by_sender(user.id)
        await self.store.delete_user(user.id)

        room = await self._room_for(user, room_code_hint)
        code = room.room_code if room else self._hint(room_code_hint)
        if code:
            await self.fanout.publish(room_topic(code), "user_kicked", user.id)
            await self.fanout.publish(room_topic(code), "refresh_user_lists")
        if room is not None:
            await self.broadcast_live_users(room)
        return user

    async def handle_leave(
        self,
        connection_id: str,
        user_id: Optional[str] = None,
        room_code_hint: Optional[str] = None,
    ) -> None:
        """
        Leave a room. Leaving deletes the user record outright.

        The user deletion and the topic cleanup are independent: either
        half runs when its field is present. Leaving also drops the
        connection's role for that room.
        """
        if user_id:
            user = await self.store.find_user_by_id(user_id)
            if user is not None:
                logger.info("User %s leaving room %s. Deleting...", user.username, user.room_id)
                await self.store.delete_user(user.id)
                room = await self._room_for(user, None)
                if room is not None:
                    await self.broadcast_live_users(room)
                    await self.fanout.publish(room_topic(room.room_code), "refresh_user_lists")

        code = self._hint(room_code_hint)
        if code:
            await self.fanout.leave(connection_id, room_topic(code))
            await self.fanout.leave(connection_id, broadcast_topic(code))
            await self.registry.release(connection_id, code)
            await self.fanout.publish(room_topic(code), "refresh_user_lists")

    async def handle_delete_room(self, room_code: Optional[str]) -> Optional[Room]:
        """
        Delete a room with all its users and messages.

        Dependents go first (users, then messages, then the room record) so
        an interrupted cascade never leaves a user or message pointing at a
        room that is gone. The steps are not transactional and a partial
        cascade is not resumed.
        """
        if not room_code:
            return None
        code = normalize_room_code(room_code)
        room = await self.store.find_room_by_code(code)
        if room is None:
            return None

        await self.store.delete_users(await self.store.find_users_by_room(room.id))
        await self.store.delete_messages_by_room(room.id)
        await self.store.delete_room(room.id)

        await self.fanout.publish(room_topic(code), "room_deleted", code, drop_after=True)
        await self.fanout.close_topic(broadcast_topic(code))
        logger.info("🗑️ Room deleted: %s", code)
        return room

    async def handle_disconnect(self, connection_id: str) -> None:
        await self.fanout.leave_all(connection_id)
        await self.registry.unbind(connection_id)

        user = await self.store.clear_presence(connection_id)
        if user is None:
            return

        room = await self._room_for(user, None)
        if room is not None:
            await self.broadcast_live_users(room)

    # ------------------------------------------------------------------
    # Presence & reads
    # ------------------------------------------------------------------

    async def live_users(self, room_id: str) -> List[User]:
        return await self.store.find_users_by_room_and_status_and_online(room_id, Status.APPROVED, True)

    async def broadcast_live_users(self, room: Room) -> None:
        live = await self.live_users(room.id)
        await self.fanout.publish(room_topic(room.room_code), "superadmin_live_users", [user_payload(u) for u in live])

    async def list_room_messages(self, room_id: str, status: Optional[Status] = None) -> List[Message]:
        return await self.resolve_senders(await self.store.find_messages_by_room(room_id, status))

    async def resolve_senders(self, messages: List[Message]) -> List[Message]:
        """
        Attach the live sender record to each message where it still exists.

        A kicked sender leaves ``sender`` as None; ``sender_username`` still
        carries the name captured at send time.
        """
        seen: Dict[str, Optional[User]] = {}
        for message in messages:
            if not message.sender_id:
                continue
            if message.sender_id not in seen:
                seen[message.sender_id] = await self.store.find_user_by_id(message.sender_id)
            message.sender = seen[message.sender_id]
        return messages

    async def _room_for(self, user: User, room_code_hint: Optional[str]) -> Optional[Room]:
        if user.room_id:
            room = await self.store.find_room_by_id(user.room_id)
            if room is not None:
                return room
        code = self._hint(room_code_hint)
        if code:
            return await self.store.find_room_by_code(code)
        return None

    @staticmethod
    def _hint(room_code_hint: Optional[str]) -> Optional[str]:
        if not room_code_hint or not room_code_hint.strip():
            return None
        return normalize_room_code(room_code_hint)
