"""
Configuration module for RetroChat.
Stores backend, bot and timing settings, overridable from the environment.
"""

import os
from typing import Dict, Any


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Config:
    """Application configuration class."""

    # Storage / realtime backend
    BACKEND_URL = os.environ.get("RETROCHAT_BACKEND_URL", "http://127.0.0.1:8090")
    REQUEST_TIMEOUT_SECONDS = 30

    # Bot completion service
    BOT_API_KEY = os.environ.get("RETROCHAT_BOT_API_KEY") or os.environ.get("API_KEY", "")
    BOT_MODEL = os.environ.get("RETROCHAT_BOT_MODEL", "gemini-3-flash-preview")
    BOT_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models"

    # Logging profile (development, production, testing)
    ENV = os.environ.get("RETROCHAT_ENV", "development")

    # Sync cadence
    HEARTBEAT_SECONDS = _env_float("RETROCHAT_HEARTBEAT_SECONDS", 20.0)
    PRESENCE_POLL_SECONDS = _env_float("RETROCHAT_PRESENCE_POLL_SECONDS", 12.0)
    RESYNC_SECONDS = _env_float("RETROCHAT_RESYNC_SECONDS", 60.0)

    @classmethod
    def get_config(cls) -> Dict[str, Any]:
        """Get all configuration values as a dictionary."""
        return {
            "BACKEND_URL": cls.BACKEND_URL,
            "REQUEST_TIMEOUT_SECONDS": cls.REQUEST_TIMEOUT_SECONDS,
            "BOT_API_KEY": "***" if cls.BOT_API_KEY else "",
            "BOT_MODEL": cls.BOT_MODEL,
            "BOT_ENDPOINT": cls.BOT_ENDPOINT,
            "ENV": cls.ENV,
            "HEARTBEAT_SECONDS": cls.HEARTBEAT_SECONDS,
            "PRESENCE_POLL_SECONDS": cls.PRESENCE_POLL_SECONDS,
            "RESYNC_SECONDS": cls.RESYNC_SECONDS,
        }


# Create config instance
config = Config()
