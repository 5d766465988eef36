# roomgate/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.
    
    Returns basic info about the API and its features.
    """
    return {
        "message": "Roomgate - Moderated Chat Rooms",
        "version": "1.0",
        "features": ["room_codes", "role_gated_join", "message_moderation", "live_presence"],
        "endpoints": {
            "websocket": "/ws",
            "rooms": "/api/rooms",
            "messages": "/api/messages",
            "health": "/health",
            "metrics": "/metrics",
        },
    }
