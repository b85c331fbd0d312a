"""
Unit tests for presence classification and the presence map.
"""

from datetime import timedelta

from RetroChat.core.sync.constants import AWAY_WINDOW, ONLINE_WINDOW
from RetroChat.core.sync.models import BOT_ACCOUNT, BOT_ID, Account
from RetroChat.core.sync.presence import PresenceStatus, PresenceTracker, classify

from .conftest import START, FakeClock


def account(account_id="u2", name="bob", minutes_ago=None, is_online=False):
    liveness = START - timedelta(minutes=minutes_ago) if minutes_ago is not None else None
    return Account(id=account_id, display_name=name, last_liveness=liveness, is_online=is_online)


class TestClassify:
    """Tests for the timestamp-driven classification."""

    def test_fresh_timestamp_is_online(self):
        assert classify(account(minutes_ago=1), "u1", START) is PresenceStatus.ONLINE

    def test_five_minutes_is_away(self):
        assert classify(account(minutes_ago=5), "u1", START) is PresenceStatus.AWAY

    def test_stale_timestamp_overrides_online_flag(self):
        """A ghost: the flag says online but the timestamp is 20 minutes old."""
        ghost = account(minutes_ago=20, is_online=True)
        assert classify(ghost, "u1", START) is PresenceStatus.OFFLINE

    def test_window_boundaries(self):
        at_online_edge = Account("u2", "bob", last_liveness=START - ONLINE_WINDOW)
        at_away_edge = Account("u2", "bob", last_liveness=START - AWAY_WINDOW)
        assert classify(at_online_edge, "u1", START) is PresenceStatus.AWAY
        assert classify(at_away_edge, "u1", START) is PresenceStatus.OFFLINE

    def test_self_is_always_online(self):
        me = account("u1", "alice", minutes_ago=600)
        assert classify(me, "u1", START) is PresenceStatus.ONLINE
        assert classify(me, "u1", START + timedelta(days=30)) is PresenceStatus.ONLINE

    def test_bot_is_always_online(self):
        assert classify(BOT_ACCOUNT, "anyone", START) is PresenceStatus.ONLINE
        assert classify(BOT_ACCOUNT, None, START + timedelta(days=30)) is PresenceStatus.ONLINE

    def test_missing_timestamp_falls_back_to_flag(self):
        assert classify(account(is_online=True), "u1", START) is PresenceStatus.ONLINE
        assert classify(account(is_online=False), "u1", START) is PresenceStatus.OFFLINE

    def test_custom_windows(self):
        short = classify(account(minutes_ago=2), "u1", START, timedelta(minutes=1), timedelta(minutes=3))
        assert short is PresenceStatus.AWAY


class TestPresenceTracker:
    """Tests for the per-session presence map."""

    def setup_method(self):
        self.clock = FakeClock()
        self.tracker = PresenceTracker("u1", clock=self.clock)

    def test_bot_is_always_listed_last(self):
        self.tracker.replace_all([account("u2", "zed", 1), account("u3", "amy", 1)])
        names = [acc.display_name for acc, _ in self.tracker.classified()]
        assert names == ["amy", "zed", BOT_ACCOUNT.display_name]

    def test_backend_bot_record_is_replaced(self):
        impostor = Account(BOT_ID, "Fake Bot", is_online=False)
        self.tracker.replace_all([impostor])
        self.tracker.apply(impostor)
        assert self.tracker.get(BOT_ID) is BOT_ACCOUNT

    def test_self_kept_when_hidden_from_list(self):
        me = account("u1", "alice", 1)
        self.tracker.apply(me)
        self.tracker.replace_all([account("u2", "bob", 1)])
        assert self.tracker.get("u1") == me

    def test_remove_never_drops_self_or_bot(self):
        self.tracker.apply(account("u1", "alice", 1))
        self.tracker.apply(account("u2", "bob", 1))
        for account_id in ("u1", "u2", BOT_ID):
            self.tracker.remove(account_id)
        assert self.tracker.get("u1") is not None
        assert self.tracker.get("u2") is None
        assert self.tracker.get(BOT_ID) is BOT_ACCOUNT

    def test_status_follows_clock(self):
        self.tracker.apply(account("u2", "bob", 0))
        assert self.tracker.status_of("u2") is PresenceStatus.ONLINE
        self.clock.advance(minutes=5)
        assert self.tracker.status_of("u2") is PresenceStatus.AWAY
        self.clock.advance(minutes=15)
        assert self.tracker.status_of("u2") is PresenceStatus.OFFLINE

    def test_unknown_account_is_offline(self):
        assert self.tracker.status_of("nobody") is PresenceStatus.OFFLINE
        assert self.tracker.display_name("nobody") == "User"

    def test_online_count_includes_bot(self):
        self.tracker.replace_all([account("u2", "bob", 1), account("u3", "carol", 30)])
        assert self.tracker.online_count() == 2

    def test_reset(self):
        self.tracker.apply(account("u2", "bob", 1))
        self.tracker.reset()
        assert [acc.id for acc, _ in self.tracker.classified()] == [BOT_ID]
