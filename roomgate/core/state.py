# roomgate/core/state.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from roomgate.core.config import settings
from roomgate.models.models import Role
from roomgate.services.channel_fanout import ChannelFanout
from roomgate.services.connection_registry import ConnectionRegistry
from roomgate.services.coordinator import RoomSessionCoordinator
from roomgate.services.directory_store import DirectoryStore, InMemoryDirectoryStore
from roomgate.services.redis_pub_sub import AsyncRedisPubSubService
from roomgate.services.redis_store import RedisDirectoryStore


def build_store() -> DirectoryStore:
    if settings.STORE_BACKEND == "redis":
        return RedisDirectoryStore(settings.REDIS_URL, prefix=settings.REDIS_KEY_PREFIX)
    return InMemoryDirectoryStore()


def role_credentials() -> dict:
    return {
        Role.SUPERADMIN: settings.SUPERADMIN_KEY,
        Role.ADMIN: settings.ADMIN_KEY,
        Role.BROADCAST: settings.BROADCAST_KEY,
    }


# Global singletons for app state
store: DirectoryStore = build_store()
registry = ConnectionRegistry()
fanout = ChannelFanout(registry)
coordinator = RoomSessionCoordinator(
    store=store,
    registry=registry,
    fanout=fanout,
    credentials=role_credentials(),
    code_length=settings.ROOM_CODE_LENGTH,
    max_code_attempts=settings.ROOM_CODE_MAX_ATTEMPTS,
)

# Set on startup when FANOUT_BACKEND=redis
redis_service: Optional[AsyncRedisPubSubService] = None

app_start_time: datetime = datetime.now(timezone.utc)
