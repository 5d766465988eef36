# roomgate/api/routes/metrics.py
from fastapi import APIRouter
from datetime import datetime, timezone

from roomgate.core import state
from roomgate.core.config import settings

router = APIRouter()

@router.get("/metrics")
async def get_metrics():
    """
    Runtime metrics for this instance.

    Returns:
        dict: Uptime, published event counts and rate, live connections,
            topic membership and the configured backends

    Example Response:
        {
            "uptime_hours": 1.5,
            "published_events": 1200,
            "events_per_second": 0.22,
            "concurrent_connections": 40,
            "joined_connections": 38,
            "active_topics": 6,
            "topic_members": {"room_AB12CD": 30, "broadcast_AB12CD": 2},
            "store_backend": "memory",
            "fanout_backend": "local"
        }

    Counts are per instance; with FANOUT_BACKEND=redis each instance
    reports only its own connections.
    """
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()
    published = state.fanout.published_events

    if uptime_seconds > 0:
        events_per_second = published / uptime_seconds
    else:
        events_per_second = 0

    return {
        # Statistics
        "uptime_hours": round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,
        "published_events": published,
        "events_per_second": round(events_per_second, 2),

        # Capacity
        "concurrent_connections": len(state.registry),
        "joined_connections": len(state.registry.bindings),
        "active_topics": len(state.fanout.topics),
        "topic_members": {topic: len(members) for topic, members in state.fanout.topics.items()},

        # Backends
        "store_backend": settings.STORE_BACKEND,
        "fanout_backend": settings.FANOUT_BACKEND,
    }
