"""
Client-side sync engine for RetroChat.
Keeps presence, rooms and conversations consistent with the backend.
"""

from .backend import Backend, CompletionService
from .constants import SyncSettings
from .exceptions import (
    BannedError,
    DeniedError,
    InvalidError,
    NetworkUnavailableError,
    NotFoundError,
    SyncError,
)
from .models import (
    Account,
    Attachment,
    ChangeAction,
    Message,
    MessageKind,
    PrivateMessage,
    PrivateTab,
    PrivateView,
    Role,
    Room,
    RoomView,
    Scope,
    ScopeKind,
)
from .orchestrator import SyncOrchestrator
from .presence import PresenceStatus, PresenceTracker, classify
from .reconciler import MessageReconciler, merge
from .router import ViewRouter
from .subscriber import ChangeStreamSubscriber, SubscriptionState

__all__ = [
    'Backend', 'CompletionService', 'SyncSettings', 'SyncOrchestrator',
    'SyncError', 'DeniedError', 'NotFoundError', 'NetworkUnavailableError', 'InvalidError', 'BannedError',
    'Account', 'Attachment', 'ChangeAction', 'Message', 'MessageKind', 'PrivateMessage', 'PrivateTab',
    'PrivateView', 'Role', 'Room', 'RoomView', 'Scope', 'ScopeKind',
    'PresenceStatus', 'PresenceTracker', 'classify',
    'MessageReconciler', 'merge', 'ViewRouter',
    'ChangeStreamSubscriber', 'SubscriptionState',
]
