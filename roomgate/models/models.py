# roomgate/models/models.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_room_code(room_code: str) -> str:
    return room_code.strip().upper()


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"
    BROADCAST = "broadcast"


class Status(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class Room(BaseModel):
    id: str = Field(default_factory=new_id)
    room_code: str
    name: str
    created_by: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    username: str
    role: Role = Role.USER
    room_id: Optional[str] = None
    status: Status = Status.PENDING
    is_online: bool = False
    connection_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    room_id: str
    sender_id: Optional[str] = None
    # Captured at send time so it survives the sender being kicked
    sender_username: str = ""
    content: str
    status: Status = Status.PENDING
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    # Resolved at read time, never persisted
    sender: Optional[User] = None


# ============================================================================
# REST REQUEST BODIES
# ============================================================================

class CreateRoomRequest(BaseModel):
    name: str
    root_password: Optional[str] = ""

class JoinRoomRequest(BaseModel):
    username: str
    room_code: str
