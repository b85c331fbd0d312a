"""
Timing and sizing constants for the sync engine.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from RetroChat.config import Config, config as default_config

# Presence classification
ONLINE_WINDOW = timedelta(minutes=3)
AWAY_WINDOW = timedelta(minutes=15)

# Background cadence (seconds)
HEARTBEAT_SECONDS = 20.0
PRESENCE_POLL_SECONDS = 12.0
RESYNC_SECONDS = 60.0
SUBSCRIBE_RETRY_SECONDS = 5.0
TRIM_SECONDS = 600.0

# Snapshot and bot sizing
PAGE_SIZE = 50
BOT_HISTORY_LINES = 5

# Rooms
DEFAULT_ROOM_NAME = "General"
DEFAULT_ROOM_TOPIC = "The lobby"
NEW_ROOM_NAME = "New Room"
NEW_ROOM_TOPIC = "New Topic"

# Bodies
ATTACHMENT_PLACEHOLDER = "[Attachment Sent]"
BOT_APOLOGY = "Sorry, I can't answer right now. Please try again later. 🤖"


@dataclass(frozen=True)
class SyncSettings:
    """Tunables for one orchestrator instance."""
    online_window: timedelta = ONLINE_WINDOW
    away_window: timedelta = AWAY_WINDOW
    heartbeat_seconds: float = HEARTBEAT_SECONDS
    presence_poll_seconds: float = PRESENCE_POLL_SECONDS
    resync_seconds: float = RESYNC_SECONDS
    subscribe_retry_seconds: float = SUBSCRIBE_RETRY_SECONDS
    trim_seconds: float = TRIM_SECONDS
    page_size: int = PAGE_SIZE
    bot_history_lines: int = BOT_HISTORY_LINES

    @classmethod
    def from_config(cls, cfg: Optional[Config] = None) -> 'SyncSettings':
        """Build settings from the application config."""
        cfg = cfg or default_config
        return cls(
            heartbeat_seconds=cfg.HEARTBEAT_SECONDS,
            presence_poll_seconds=cfg.PRESENCE_POLL_SECONDS,
            resync_seconds=cfg.RESYNC_SECONDS,
        )
