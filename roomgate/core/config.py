# roomgate/core/config.py
import os
from typing import Literal
from dotenv import load_dotenv

class Settings:
    """
    Setup environment variables.
        - STORE_BACKEND where rooms, users and messages live: "memory" or "redis"
        - FANOUT_BACKEND how topic events reach connections: "local" or "redis"
        - SUPERADMIN_KEY / ADMIN_KEY / BROADCAST_KEY the per-deployment role secrets
        - ROOM_CODE_LENGTH / ROOM_CODE_MAX_ATTEMPTS shape of generated room codes
    """

    # Load environment variables from the .env file
    load_dotenv()

    STORE_BACKEND: Literal["memory", "redis"] = os.getenv("STORE_BACKEND", "memory")
    FANOUT_BACKEND: Literal["local", "redis"] = os.getenv("FANOUT_BACKEND", "local")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_KEY_PREFIX: str = os.getenv("REDIS_KEY_PREFIX", "roomgate")

    # An empty secret never authenticates anyone
    SUPERADMIN_KEY: str = os.getenv("SUPERADMIN_KEY", "")
    ADMIN_KEY: str = os.getenv("ADMIN_KEY", "")
    BROADCAST_KEY: str = os.getenv("BROADCAST_KEY", "")

    ROOM_CODE_LENGTH: int = int(os.getenv("ROOM_CODE_LENGTH", "6"))
    ROOM_CODE_MAX_ATTEMPTS: int = int(os.getenv("ROOM_CODE_MAX_ATTEMPTS", "100"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    CORS_ORIGINS: list = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

settings = Settings()
