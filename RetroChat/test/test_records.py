"""
Unit tests for wire record parsing and serialization.
"""

from datetime import datetime, timezone

import pytest

from RetroChat.api.records import (
    account_patch_to_wire,
    format_timestamp,
    parse_record,
    parse_timestamp,
    room_patch_to_wire,
)
from RetroChat.core.sync.exceptions import InvalidError
from RetroChat.core.sync.models import (
    Account,
    AccountPatch,
    Message,
    MessageKind,
    PrivateMessage,
    PrivateView,
    Role,
    Room,
    RoomPatch,
    RoomView,
)
from RetroChat.core.sync.presence import PresenceStatus, classify

FILES = "http://pb.local/api/files"


class TestTimestamps:
    """Tests for backend timestamp handling."""

    def test_backend_format(self):
        parsed = parse_timestamp("2024-05-01 12:30:00.123Z")
        assert parsed == datetime(2024, 5, 1, 12, 30, 0, 123000, tzinfo=timezone.utc)

    def test_iso_format(self):
        assert parse_timestamp("2024-05-01T12:30:00+00:00").tzinfo is not None

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2024-13-45 99:99:99Z"])
    def test_unparseable_is_none(self, value):
        assert parse_timestamp(value) is None

    def test_format_round_trips_milliseconds(self):
        value = datetime(2024, 5, 1, 12, 30, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2024-05-01 12:30:00.123Z"


class TestParseRecord:
    """Tests for collection payload conversion."""

    def test_account(self):
        account = parse_record("users", {
            "id": "u1",
            "collectionId": "_pb_users",
            "username": "alice",
            "avatar": "me.png",
            "role": "user",
            "isOnline": True,
            "lastSeen": "2024-05-01 12:00:00.000Z",
            "updated": "2024-05-01 11:00:00.000Z",
            "email": "ignored@example.com",
        }, FILES)
        assert isinstance(account, Account)
        assert account.role is Role.MEMBER
        assert account.is_online
        assert account.last_liveness == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        assert account.avatar_ref == f"{FILES}/_pb_users/u1/me.png"

    def test_kicked_account_without_last_seen_is_offline(self):
        account = parse_record("users", {
            "id": "u2", "username": "bob", "isOnline": False, "updated": "2024-05-01 11:59:00.000Z",
        })
        assert account.last_liveness is None
        assert classify(account, "u1", datetime(2024, 5, 1, 12, tzinfo=timezone.utc)) is PresenceStatus.OFFLINE

    def test_account_without_timestamps(self):
        account = parse_record("users", {"id": "u2", "username": "bob", "lastSeen": "garbage", "isOnline": True})
        assert account.last_liveness is None
        assert account.is_online

    def test_room_lock_flag(self):
        room = parse_record("rooms", {"id": "r1", "name": "General", "isMuted": True})
        assert room == Room("r1", "General", "", True)

    def test_message(self):
        message = parse_record("messages", {
            "id": "m1", "text": "/me waves", "user": "u1", "room": "r1",
            "type": "action", "created": "2024-05-01 12:00:00.000Z",
        })
        assert isinstance(message, Message)
        assert message.conversation == RoomView("r1")
        assert message.kind is MessageKind.ACTION

    def test_private_message(self):
        item = parse_record("private_messages", {
            "id": "p1", "text": "psst", "sender": "u2", "recipient": "u1",
            "created": "2024-05-01 12:00:00.000Z",
        })
        assert isinstance(item, PrivateMessage)
        assert item.to_message("u1").conversation == PrivateView("u2")
        assert item.kind is MessageKind.TEXT

    def test_missing_id_is_invalid(self):
        with pytest.raises(InvalidError):
            parse_record("rooms", {"name": "nameless"})

    def test_unknown_collection(self):
        with pytest.raises(InvalidError):
            parse_record("tracks", {"id": "t1"})


class TestPatches:
    """Tests for outgoing patch bodies."""

    def test_heartbeat_patch(self):
        now = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        body = account_patch_to_wire(AccountPatch(is_online=True, last_liveness=now))
        assert body == {"isOnline": True, "lastSeen": "2024-05-01 12:00:00.000Z"}

    def test_member_role_is_user_on_the_wire(self):
        assert account_patch_to_wire(AccountPatch(role=Role.MEMBER)) == {"role": "user"}
        assert account_patch_to_wire(AccountPatch(role=Role.OPERATOR)) == {"role": "operator"}

    def test_nick_and_ban(self):
        body = account_patch_to_wire(AccountPatch(display_name="neo", banned=True))
        assert body == {"username": "neo", "banned": True}

    def test_room_lock(self):
        assert room_patch_to_wire(RoomPatch(locked=False)) == {"isMuted": False}
