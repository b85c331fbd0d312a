"""Presence classification for RetroChat.

Status is derived from the server-maintained liveness timestamp of each
account rather than from its ``isOnline`` flag: a tab closed without signing
off leaves the flag stuck at true, but the timestamp stops advancing.

Design:
- The current account and the bot are always online.
- Everyone else is online, away or offline by the age of their timestamp.
- The boolean flag is consulted only when no timestamp could be parsed.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .constants import AWAY_WINDOW, ONLINE_WINDOW
from .models import BOT_ACCOUNT, BOT_ID, Account, utcnow


class PresenceStatus(Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


def classify(
    account: Account,
    self_id: Optional[str],
    now: datetime,
    online_window: timedelta = ONLINE_WINDOW,
    away_window: timedelta = AWAY_WINDOW,
) -> PresenceStatus:
    """Classify ``account`` as seen by ``self_id`` at ``now``."""
    if account.id == BOT_ID or account.id == self_id:
        return PresenceStatus.ONLINE

    if account.last_liveness is None:
        return PresenceStatus.ONLINE if account.is_online else PresenceStatus.OFFLINE

    age = now - account.last_liveness
    if age < online_window:
        return PresenceStatus.ONLINE
    if age < away_window:
        return PresenceStatus.AWAY
    return PresenceStatus.OFFLINE


class PresenceTracker:
    """
    Per-account presence map for one session.

    Holds the latest Account record for every known user, fed both by the
    account-list poll and by pushed account changes.
    """

    def __init__(
        self,
        self_id: str,
        online_window: timedelta = ONLINE_WINDOW,
        away_window: timedelta = AWAY_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._self_id = self_id
        self._online_window = online_window
        self._away_window = away_window
        self._clock = clock
        self._accounts: Dict[str, Account] = {BOT_ID: BOT_ACCOUNT}

    @property
    def self_id(self) -> str:
        return self._self_id

    def get(self, account_id: str) -> Optional[Account]:
        return self._accounts.get(account_id)

    def display_name(self, account_id: str, default: str = "User") -> str:
        account = self._accounts.get(account_id)
        return account.display_name if account and account.display_name else default

    def apply(self, account: Account) -> None:
        """Record a fresh copy of one account. The bot record is synthetic and never replaced."""
        if account.id == BOT_ID:
            return
        self._accounts[account.id] = account

    def replace_all(self, accounts: List[Account]) -> None:
        """
        Replace the map with a full account list.

        The current account survives even if permission rules hid it from
        the list, and the bot is always present.
        """
        fresh: Dict[str, Account] = {}
        for account in accounts:
            if account.id != BOT_ID:
                fresh[account.id] = account
        me = self._accounts.get(self._self_id)
        if self._self_id not in fresh and me is not None:
            fresh[self._self_id] = me
        fresh[BOT_ID] = BOT_ACCOUNT
        self._accounts = fresh

    def remove(self, account_id: str) -> None:
        if account_id in (BOT_ID, self._self_id):
            return
        self._accounts.pop(account_id, None)

    def status_of(self, account_id: str, now: Optional[datetime] = None) -> PresenceStatus:
        account = self._accounts.get(account_id)
        if account is None:
            return PresenceStatus.OFFLINE
        return self._classify(account, now)

    def classified(self, now: Optional[datetime] = None) -> List[Tuple[Account, PresenceStatus]]:
        """All accounts with their status, humans by name and the bot last."""
        now = self._clock() if now is None else now
        people = sorted(
            (a for a in self._accounts.values() if a.id != BOT_ID),
            key=lambda a: (a.display_name.lower(), a.id),
        )
        people.append(self._accounts[BOT_ID])
        return [(account, self._classify(account, now)) for account in people]

    def online_count(self, now: Optional[datetime] = None) -> int:
        return sum(1 for _, status in self.classified(now) if status is PresenceStatus.ONLINE)

    def reset(self) -> None:
        self._accounts = {BOT_ID: BOT_ACCOUNT}

    def _classify(self, account: Account, now: Optional[datetime]) -> PresenceStatus:
        now = self._clock() if now is None else now
        return classify(account, self._self_id, now, self._online_window, self._away_window)
