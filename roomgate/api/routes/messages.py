# roomgate/api/routes/messages.py

from fastapi import APIRouter, HTTPException

from roomgate.core import state
from roomgate.models.models import Status
from roomgate.services.coordinator import message_payload

# ============================================================================
# MESSAGE ADMIN ENDPOINTS
# ============================================================================

router = APIRouter(prefix="/api/messages", tags=["Messages"])


@router.get("/approved/{room_code}")
async def get_approved_messages(room_code: str):
    """
    Approved messages of a room, oldest first, with senders resolved.

    Raises:
        HTTPException: 404 if room not found
    """
    messages = await state.coordinator.list_messages(room_code, Status.APPROVED)
    if messages is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return [message_payload(m) for m in messages]


@router.delete("/delete/{message_id}")
async def delete_message(message_id: str):
    """
    Permanently delete a message.

    Flow:
        1. Remove the record from the store
        2. Publish "message_deleted" to room_<C> and broadcast_<C>
        3. Chat, moderation and broadcast views drop it immediately

    Raises:
        HTTPException: 404 if the message doesn't exist
    """
    message = await state.coordinator.handle_delete(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"success": True, "message": "Message deleted successfully"}
