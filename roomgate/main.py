# roomgate/main.py

from __future__ import annotations

import asyncio

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomgate.core import state
from roomgate.core.config import settings
from roomgate.core.logging import setup_logging, get_logger
from roomgate.services.redis_pub_sub import AsyncRedisPubSubService
from roomgate.api.routes import root, health, metrics, rooms, messages
from roomgate.api import websocket as websocket_module

# Configure logging first
setup_logging()
logger = get_logger(__name__)

# FastAPI app
app = FastAPI(title="Roomgate - Moderated Chat Rooms")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# REST routes
app.include_router(root.router)
app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(rooms.router)
app.include_router(messages.router)

# WebSocket routes
app.include_router(websocket_module.router)

_listener_task: asyncio.Task | None = None


@app.on_event("startup")
async def startup_event():
    global _listener_task
    logger.info("🚀 Application starting (store=%s, fanout=%s)", settings.STORE_BACKEND, settings.FANOUT_BACKEND)

    await state.store.connect()

    if settings.FANOUT_BACKEND == "redis":
        redis_service = AsyncRedisPubSubService(url=settings.REDIS_URL, fanout=state.fanout)
        await redis_service.connect()
        await redis_service.subscribe()

        # Store globally and route topic publishes through Redis
        state.redis_service = redis_service
        state.fanout.relay = redis_service

        # Start subscriber in background
        _listener_task = asyncio.create_task(redis_service.listen())


@app.on_event("shutdown")
async def on_shutdown():
    if _listener_task is not None:
        _listener_task.cancel()
    if state.redis_service is not None:
        state.fanout.relay = None
        await state.redis_service.close()
    await state.store.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("roomgate.main:app", host="0.0.0.0", port=8000)
