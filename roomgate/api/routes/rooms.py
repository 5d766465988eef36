# roomgate/api/routes/rooms.py

from fastapi import APIRouter, HTTPException

from roomgate.core import state
from roomgate.core.errors import RoomCodeSpaceExhaustedError
from roomgate.models.models import CreateRoomRequest, JoinRoomRequest, Role, Room, Status
from roomgate.services.coordinator import user_payload

router = APIRouter(prefix="/api/rooms", tags=["Rooms"])

# ============================================================================
# ROOM ADMIN ENDPOINTS
# ============================================================================

@router.post("/create", status_code=201)
async def create_room(request: CreateRoomRequest):
    """
    Create a new room under a generated room code.

    Only callers holding the superadmin secret may create rooms.

    Args:
        request: CreateRoomRequest with name and root_password

    Returns:
        dict: Confirmation message and the new room

    Raises:
        HTTPException: 400 if name is empty, 401 on a bad root password,
            503 if no free room code could be found
    """
    if not request.name.strip():
        raise HTTPException(status_code=400, detail="Room name is required")

    password = (request.root_password or "").strip()
    if not state.coordinator.verify_credential(Role.SUPERADMIN, password):
        raise HTTPException(status_code=401, detail="Invalid root credentials")

    try:
        room = await state.coordinator.create_room(request.name.strip())
    except RoomCodeSpaceExhaustedError:
        raise HTTPException(status_code=503, detail="No room code available, try again later")

    return {"message": "Room created successfully", "room": room.model_dump(mode="json")}


@router.post("/join", status_code=201)
async def join_room(request: JoinRoomRequest):
    """
    Ask to join a room. The user is created as pending until a superadmin
    approves it.

    Raises:
        HTTPException: 400 if username or room code is blank, 404 if the room doesn't exist
    """
    if not request.username.strip() or not request.room_code.strip():
        raise HTTPException(status_code=400, detail="Username and Room Code are required")

    user = await state.coordinator.request_join(request.username, request.room_code)
    if user is None:
        raise HTTPException(status_code=404, detail="Room not found")

    return {
        "message": "Join request sent. Waiting for approval.",
        "user": user_payload(user),
    }


@router.get("/{room_code}/pending-users")
async def get_pending_users(room_code: str):
    users = await state.coordinator.list_users(room_code, Status.PENDING)
    if users is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return [user_payload(u) for u in users]


@router.get("/{room_code}/all-users")
async def get_approved_users(room_code: str):
    """Approved participants of a room, online or not."""
    users = await state.coordinator.list_users(room_code, Status.APPROVED)
    if users is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return [user_payload(u) for u in users]


@router.patch("/approve-user/{user_id}")
async def approve_user(user_id: str):
    """
    Approve a pending user.

    Same side effects as the "approve_user" websocket action: user_approved
    and refresh_user_lists on the room topic, live users republished.

    Raises:
        HTTPException: 404 if the user doesn't exist
    """
    user = await state.coordinator.handle_approve_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "User approved successfully", "user": user_payload(user)}


@router.delete("/kick-user/{user_id}")
async def kick_user(user_id: str):
    """
    Kick a user: the user record and every message it sent are deleted.

    Raises:
        HTTPException: 404 if the user doesn't exist
    """
    user = await state.coordinator.handle_kick(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "User kicked and removed successfully"}


@router.delete("/{room_code}")
async def delete_room(room_code: str):
    """
    Delete a room together with its users and messages.

    Everyone in the room receives "room_deleted" and is dropped from the
    room's topics.

    Raises:
        HTTPException: 404 if room not found
    """
    room: Room = await state.coordinator.handle_delete_room(room_code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return {"status": "deleted", "room_code": room.room_code}
