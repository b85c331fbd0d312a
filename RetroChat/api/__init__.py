"""
Backend adapters for RetroChat: REST records, realtime stream and bot completion.
"""

from .client import PocketBaseClient, SessionManager, close_shared_session
from .completion import GeminiCompletionClient
from .realtime import RealtimeConnection

__all__ = [
    'PocketBaseClient', 'SessionManager', 'close_shared_session',
    'GeminiCompletionClient', 'RealtimeConnection',
]
