"""
Change-stream subscription lifecycle.

Each slot ("room", "rooms", "accounts", "private") holds at most one scope.
Its state machine is::

    UNSUBSCRIBED -> SUBSCRIBING -> SUBSCRIBED -> (ERROR | UNSUBSCRIBED)

Events from a live subscription become immutable ChangeEvent records on the
orchestrator's inbound queue. Subscription identity is the scope alone, so
asking again for the scope a slot already holds is a no-op.
"""

import asyncio
from enum import Enum, auto
from typing import Any, Dict, Optional, Set

from RetroChat.core.logging import get_logger
from .backend import Backend
from .constants import SUBSCRIBE_RETRY_SECONDS
from .exceptions import SyncError
from .models import ChangeAction, ChangeEvent, Record, Scope

logger = get_logger(__name__)


class SubscriptionState(Enum):
    UNSUBSCRIBED = auto()
    SUBSCRIBING = auto()
    SUBSCRIBED = auto()
    ERROR = auto()


class _Subscription:
    """Mutable bookkeeping for the scope currently held by one slot."""

    def __init__(self, slot: str, scope: Scope):
        self.slot = slot
        self.scope = scope
        self.state = SubscriptionState.UNSUBSCRIBED
        self.handle: Any = None
        self.last_error: Optional[Exception] = None


class ChangeStreamSubscriber:
    """Opens, replaces, retries and tears down scoped subscriptions."""

    def __init__(
        self,
        backend: Backend,
        queue: "asyncio.Queue[ChangeEvent]",
        retry_delay: float = SUBSCRIBE_RETRY_SECONDS,
    ):
        self._backend = backend
        self._queue = queue
        self._retry_delay = retry_delay
        self._slots: Dict[str, _Subscription] = {}
        self._retries: Set[asyncio.Task] = set()
        self._closed = False

    def state(self, slot: str) -> SubscriptionState:
        entry = self._slots.get(slot)
        return entry.state if entry else SubscriptionState.UNSUBSCRIBED

    def scope(self, slot: str) -> Optional[Scope]:
        entry = self._slots.get(slot)
        return entry.scope if entry else None

    async def subscribe(self, slot: str, scope: Scope) -> SubscriptionState:
        """
        Point ``slot`` at ``scope``.

        The previous scope of the slot is torn down first. Failures leave the
        slot in ERROR with a retry scheduled; they are never raised.
        """
        self._closed = False
        current = self._slots.get(slot)
        if current is not None and current.scope == scope and current.state in (
            SubscriptionState.SUBSCRIBING, SubscriptionState.SUBSCRIBED
        ):
            return current.state

        await self.unsubscribe(slot)
        entry = _Subscription(slot, scope)
        self._slots[slot] = entry
        await self._attempt(entry)
        return entry.state

    async def unsubscribe(self, slot: str) -> None:
        """Tear down a slot. A failing unsubscribe is logged and otherwise ignored."""
        entry = self._slots.pop(slot, None)
        if entry is None:
            return
        handle, entry.handle = entry.handle, None
        entry.state = SubscriptionState.UNSUBSCRIBED
        if handle is not None:
            await self._safe_unsubscribe(handle, entry.scope)

    async def close(self) -> None:
        """Tear down every slot and cancel pending retries."""
        self._closed = True
        for task in list(self._retries):
            task.cancel()
        if self._retries:
            await asyncio.gather(*self._retries, return_exceptions=True)
        self._retries.clear()
        for slot in list(self._slots):
            await self.unsubscribe(slot)

    def _is_current(self, entry: _Subscription) -> bool:
        return not self._closed and self._slots.get(entry.slot) is entry

    async def _attempt(self, entry: _Subscription) -> None:
        entry.state = SubscriptionState.SUBSCRIBING
        logger.debug("Subscribing to %s", entry.scope)
        try:
            handle = await self._backend.subscribe(
                entry.scope,
                lambda action, record: self._on_event(entry, action, record),
                lambda error: self._on_stream_error(entry, error),
            )
        except SyncError as e:
            if not self._is_current(entry):
                return
            entry.state = SubscriptionState.ERROR
            entry.last_error = e
            logger.warning("Subscribe to %s failed (%s); retrying in %.1fs",
                           entry.scope, e, self._retry_delay)
            self._schedule_retry(entry)
            return

        if not self._is_current(entry):
            # The slot moved on while we were waiting.
            await self._safe_unsubscribe(handle, entry.scope)
            return
        entry.handle = handle
        entry.state = SubscriptionState.SUBSCRIBED
        entry.last_error = None
        logger.info("Subscribed to %s", entry.scope)

    def _on_event(self, entry: _Subscription, action: ChangeAction, record: Record) -> None:
        if not self._is_current(entry) or entry.state is not SubscriptionState.SUBSCRIBED:
            logger.debug("Dropping %s event from retired subscription %s", action.value, entry.scope)
            return
        self._queue.put_nowait(ChangeEvent(scope=entry.scope, action=action, record=record))

    def _on_stream_error(self, entry: _Subscription, error: Exception) -> None:
        if not self._is_current(entry):
            return
        logger.warning("Change stream for %s broke: %s", entry.scope, error)
        entry.handle = None
        entry.state = SubscriptionState.ERROR
        entry.last_error = error
        self._schedule_retry(entry)

    def _schedule_retry(self, entry: _Subscription) -> None:
        task = asyncio.get_running_loop().create_task(self._retry_after(entry))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _retry_after(self, entry: _Subscription) -> None:
        await asyncio.sleep(self._retry_delay)
        if self._is_current(entry) and entry.state is SubscriptionState.ERROR:
            await self._attempt(entry)

    async def _safe_unsubscribe(self, handle: Any, scope: Scope) -> None:
        try:
            await self._backend.unsubscribe(handle)
        except Exception as e:
            logger.warning("Ignoring failed unsubscribe from %s: %s", scope, e)
