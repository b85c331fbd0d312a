"""
View routing: which conversation is active and which private tabs are open.
"""
from typing import Dict, Optional, Tuple

from .models import PrivateTab, PrivateView, RoomView, ViewState


class ViewRouter:
    """
    Active view state machine.

    Transitions return the view that was active before them when the active
    view changed, so the caller can retire that conversation's ephemeral
    state and rescope subscriptions. Inbound private messages never change
    the active view.
    """

    def __init__(self):
        self._view: Optional[ViewState] = None
        self._last_room_id: Optional[str] = None
        # account id -> unread, in opening order
        self._tabs: Dict[str, bool] = {}

    @property
    def view(self) -> Optional[ViewState]:
        return self._view

    @property
    def last_active_room_id(self) -> Optional[str]:
        return self._last_room_id

    @property
    def open_tabs(self) -> Tuple[PrivateTab, ...]:
        return tuple(PrivateTab(account_id, unread) for account_id, unread in self._tabs.items())

    def is_open(self, account_id: str) -> bool:
        return account_id in self._tabs

    def is_unread(self, account_id: str) -> bool:
        return self._tabs.get(account_id, False)

    def switch_room(self, room_id: str) -> Tuple[bool, Optional[ViewState]]:
        """Activate a room. Returns (changed, previous view)."""
        previous = self._view
        self._last_room_id = room_id
        target = RoomView(room_id)
        if previous == target:
            return False, previous
        self._view = target
        return True, previous

    def open_private(self, account_id: str) -> Tuple[bool, Optional[ViewState]]:
        """Open (or focus) the tab for ``account_id``. Returns (changed, previous view)."""
        previous = self._view
        self._tabs[account_id] = False
        target = PrivateView(account_id)
        if previous == target:
            return False, previous
        self._view = target
        return True, previous

    def close_private(self, account_id: str) -> Tuple[bool, Optional[ViewState]]:
        """
        Close a tab. Closing the active tab falls back to the last room, or
        to the most recently opened other tab when no room was ever active.
        The only remaining view is never closed.

        Returns (changed, previous view).
        """
        previous = self._view
        if account_id not in self._tabs:
            return False, previous
        if previous != PrivateView(account_id):
            del self._tabs[account_id]
            return False, previous

        others = [other for other in self._tabs if other != account_id]
        if self._last_room_id is not None:
            self._view = RoomView(self._last_room_id)
        elif others:
            self._view = PrivateView(others[-1])
            self._tabs[others[-1]] = False
        else:
            return False, previous
        del self._tabs[account_id]
        return True, previous

    def receive_private(self, sender_id: str) -> bool:
        """
        Register an inbound private message from ``sender_id``.

        Opens a tab for new senders and flags it unread unless that
        conversation is the one on screen. Returns True if tabs changed.
        """
        viewing = self._view == PrivateView(sender_id)
        before = self._tabs.get(sender_id)
        after = not viewing
        self._tabs[sender_id] = after
        return before != after

    def reset(self) -> None:
        self._view = None
        self._last_room_id = None
        self._tabs.clear()
