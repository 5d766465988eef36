# roomgate/api/routes/health.py

from fastapi import APIRouter

from roomgate.core import state

router = APIRouter()

@router.get("/health")
async def health():
    """
    Health check endpoint.
    
    Returns current system status, connection counts and topic counts.
    Used by container health probes and monitoring.
    
    Returns:
        dict: Status, connection count, joined connection count, active topic count
    """
    return {
        "status": "healthy",
        "connections": len(state.registry),
        "joined_connections": len(state.registry.bindings),
        "active_topics": len(state.fanout.topics),
    }
