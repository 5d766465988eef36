# roomgate/services/redis_store.py

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from roomgate.core.errors import RoomCodeTakenError
from roomgate.models.models import Message, Room, Status, User
from roomgate.services.directory_store import DirectoryStore

logger = logging.getLogger(__name__)


class RedisDirectoryStore(DirectoryStore):
    """
    Directory Store kept in Redis, shared by every instance of the service.

    Key Layout (prefix defaults to "roomgate"):
        {p}:room:{id}                 -> Room JSON
        {p}:room_code:{CODE}          -> room id (unique index, claimed with NX)
        {p}:room:{id}:users           -> Set of user ids
        {p}:room:{id}:messages        -> Sorted set of message ids, score = created_at
        {p}:user:{id}                 -> User JSON
        {p}:conn:{connection_id}      -> user id
        {p}:message:{id}              -> Message JSON (without resolved sender)
        {p}:sender:{id}:messages      -> Set of message ids sent by that user

    Records are JSON strings written with pydantic; indexes are plain Redis
    sets. Each call is its own round trip, so multi-record changes are not
    atomic across calls. Field-level user updates run under WATCH/MULTI.
    """

    def __init__(self, url: str, prefix: str = "roomgate", client: Optional[redis.Redis] = None):
        self.url = url
        self.prefix = prefix
        self.client = client

    async def connect(self) -> None:
        """Establish async connection to Redis."""
        if self.client is None:
            self.client = redis.from_url(self.url, decode_responses=True)
        await self.client.ping()
        logger.info("✓ Directory store connected to Redis at %s", self.url)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            logger.info("Directory store Redis connection closed")

    # -- keys ----------------------------------------------------------------

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    def _room_key(self, room_id: str) -> str:
        return self._key("room", room_id)

    def _code_key(self, room_code: str) -> str:
        return self._key("room_code", room_code)

    def _room_users_key(self, room_id: str) -> str:
        return self._key("room", room_id, "users")

    def _room_messages_key(self, room_id: str) -> str:
        return self._key("room", room_id, "messages")

    def _user_key(self, user_id: str) -> str:
        return self._key("user", user_id)

    def _conn_key(self, connection_id: str) -> str:
        return self._key("conn", connection_id)

    def _message_key(self, message_id: str) -> str:
        return self._key("message", message_id)

    def _sender_messages_key(self, sender_id: str) -> str:
        return self._key("sender", sender_id, "messages")

    # -- rooms ---------------------------------------------------------------

    async def find_room_by_id(self, room_id: str) -> Optional[Room]:
        raw = await self.client.get(self._room_key(room_id))
        return Room.model_validate_json(raw) if raw else None

    async def find_room_by_code(self, room_code: str) -> Optional[Room]:
        room_id = await self.client.get(self._code_key(room_code))
        if not room_id:
            return None
        return await self.find_room_by_id(room_id)

    async def save_room(self, room: Room) -> Room:
        code_key = self._code_key(room.room_code)
        claimed = await self.client.set(code_key, room.id, nx=True)
        if not claimed:
            owner = await self.client.get(code_key)
            if owner != room.id:
                raise RoomCodeTakenError(room.room_code)
        await self.client.set(self._room_key(room.id), room.model_dump_json())
        return room

    async def delete_room(self, room_id: str) -> None:
        room = await self.find_room_by_id(room_id)
        if room is None:
            return
        code_key = self._code_key(room.room_code)
        if await self.client.get(code_key) == room_id:
            await self.client.delete(code_key)
        await self.client.delete(self._room_key(room_id), self._room_users_key(room_id))

    # -- users ---------------------------------------------------------------

    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        raw = await self.client.get(self._user_key(user_id))
        return User.model_validate_json(raw) if raw else None

    async def find_user_by_connection_id(self, connection_id: str) -> Optional[User]:
        user_id = await self.client.get(self._conn_key(connection_id))
        if not user_id:
            return None
        user = await self.find_user_by_id(user_id)
        if user is None or user.connection_id != connection_id:
            return None
        return user

    async def find_users_by_room(self, room_id: str) -> List[User]:
        user_ids = await self.client.smembers(self._room_users_key(room_id))
        if not user_ids:
            return []
        raws = await self.client.mget([self._user_key(uid) for uid in user_ids])
        users = [User.model_validate_json(raw) for raw in raws if raw]
        users.sort(key=lambda u: u.created_at)
        return users

    async def save_user(self, user: User) -> User:
        previous = await self.find_user_by_id(user.id)
        if previous and previous.connection_id and previous.connection_id != user.connection_id:
            await self._release_connection(previous.connection_id, user.id)

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(self._user_key(user.id), user.model_dump_json())
            if user.room_id:
                pipe.sadd(self._room_users_key(user.room_id), user.id)
            if user.connection_id:
                pipe.set(self._conn_key(user.connection_id), user.id)
            await pipe.execute()
        return user

    async def set_presence(self, user_id: str, connection_id: str) -> Optional[User]:
        return await self._update_user(user_id, is_online=True, connection_id=connection_id)

    async def clear_presence(self, connection_id: str) -> Optional[User]:
        user_id = await self.client.get(self._conn_key(connection_id))
        if not user_id:
            return None
        return await self._update_user(
            user_id, expected_connection_id=connection_id, is_online=False, connection_id=None
        )

    async def mark_user_approved(self, user_id: str) -> Optional[User]:
        return await self._update_user(user_id, status=Status.APPROVED)

    async def _update_user(
        self, user_id: str, expected_connection_id: Optional[str] = None, **changes
    ) -> Optional[User]:
        """
        Apply ``changes`` to the stored user under WATCH, retrying when
        another writer touched the record in between.

        Nothing is written if the user is gone, or if
        ``expected_connection_id`` is given and no longer matches.
        """
        key = self._user_key(user_id)
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return None
                    user = User.model_validate_json(raw)
                    if expected_connection_id is not None and user.connection_id != expected_connection_id:
                        return None

                    released = user.connection_id
                    user = user.model_copy(update=changes)

                    pipe.multi()
                    pipe.set(key, user.model_dump_json())
                    if released and released != user.connection_id:
                        pipe.delete(self._conn_key(released))
                    if user.connection_id:
                        pipe.set(self._conn_key(user.connection_id), user.id)
                    await pipe.execute()
                    return user
                except WatchError:
                    logger.debug("User %s changed during update, retrying", user_id)
                    continue

    async def delete_user(self, user_id: str) -> None:
        user = await self.find_user_by_id(user_id)
        if user is None:
            return
        if user.connection_id:
            await self._release_connection(user.connection_id, user_id)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.delete(self._user_key(user_id))
            if user.room_id:
                pipe.srem(self._room_users_key(user.room_id), user_id)
            await pipe.execute()

    async def _release_connection(self, connection_id: str, user_id: str) -> None:
        conn_key = self._conn_key(connection_id)
        if await self.client.get(conn_key) == user_id:
            await self.client.delete(conn_key)

    # -- messages ------------------------------------------------------------

    async def find_message_by_id(self, message_id: str) -> Optional[Message]:
        raw = await self.client.get(self._message_key(message_id))
        return Message.model_validate_json(raw) if raw else None

    async def find_messages_by_room(
        self, room_id: str, status: Optional[Status] = None
    ) -> List[Message]:
        message_ids = await self.client.zrange(self._room_messages_key(room_id), 0, -1)
        if not message_ids:
            return []
        raws = await self.client.mget([self._message_key(mid) for mid in message_ids])
        messages = [Message.model_validate_json(raw) for raw in raws if raw]
        if status is not None:
            messages = [m for m in messages if m.status == status]
        return messages

    async def save_message(self, message: Message) -> Message:
        score = datetime.fromisoformat(message.created_at).timestamp()
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(self._message_key(message.id), message.model_dump_json(exclude={"sender"}))
            pipe.zadd(self._room_messages_key(message.room_id), {message.id: score})
            if message.sender_id:
                pipe.sadd(self._sender_messages_key(message.sender_id), message.id)
            await pipe.execute()
        return message

    async def delete_message(self, message_id: str) -> None:
        message = await self.find_message_by_id(message_id)
        if message is None:
            return
        await self._delete_messages([message])

    async def delete_messages_by_room(self, room_id: str) -> None:
        await self._delete_messages(await self.find_messages_by_room(room_id))
        await self.client.delete(self._room_messages_key(room_id))

    async def delete_messages_by_sender(self, sender_id: str) -> None:
        message_ids = await self.client.smembers(self._sender_messages_key(sender_id))
        if message_ids:
            raws = await self.client.mget([self._message_key(mid) for mid in message_ids])
            await self._delete_messages([Message.model_validate_json(raw) for raw in raws if raw])
        await self.client.delete(self._sender_messages_key(sender_id))

    async def _delete_messages(self, messages: List[Message]) -> None:
        if not messages:
            return
        async with self.client.pipeline(transaction=True) as pipe:
            for message in messages:
                pipe.delete(self._message_key(message.id))
                pipe.zrem(self._room_messages_key(message.room_id), message.id)
                if message.sender_id:
                    pipe.srem(self._sender_messages_key(message.sender_id), message.id)
            await pipe.execute()
        logger.debug("Deleted %d messages from Redis", len(messages))
