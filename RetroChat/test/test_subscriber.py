"""
Tests for the change-stream subscription lifecycle.
"""

import asyncio

import pytest

from RetroChat.core.sync.exceptions import DeniedError, NetworkUnavailableError
from RetroChat.core.sync.models import ChangeAction, RoomView, Scope
from RetroChat.core.sync.subscriber import ChangeStreamSubscriber, SubscriptionState

from .conftest import FakeBackend, FakeClock

GENERAL = Scope.room_messages("general")
LOBBY = Scope.room_messages("lobby")


class TestChangeStreamSubscriber:
    """Tests for subscribe, rescope, retry and teardown."""

    def setup_method(self):
        self.backend = FakeBackend(FakeClock())
        self.backend.add_room("general", "General")
        self.queue = asyncio.Queue()
        self.subscriber = ChangeStreamSubscriber(self.backend, self.queue, retry_delay=0.01)

    @pytest.mark.asyncio
    async def test_subscribe_delivers_events_to_queue(self):
        state = await self.subscriber.subscribe("room", GENERAL)
        assert state is SubscriptionState.SUBSCRIBED

        message = self.backend.add_message("general", "u2", "hi")
        self.backend.emit(GENERAL, ChangeAction.CREATE, message)

        event = self.queue.get_nowait()
        assert event.scope == GENERAL
        assert event.action is ChangeAction.CREATE
        assert event.record == message

    @pytest.mark.asyncio
    async def test_same_scope_is_noop(self):
        await self.subscriber.subscribe("room", GENERAL)
        await self.subscriber.subscribe("room", GENERAL)
        assert self.backend.count("subscribe") == 1
        assert self.backend.count("unsubscribe") == 0

    @pytest.mark.asyncio
    async def test_rescope_tears_down_previous_first(self):
        await self.subscriber.subscribe("room", GENERAL)
        await self.subscriber.subscribe("room", LOBBY)
        ops = [op for op, _ in self.backend.calls]
        assert ops == ["subscribe", "unsubscribe", "subscribe"]
        assert self.backend.scopes() == [LOBBY]
        assert self.subscriber.scope("room") == LOBBY

    @pytest.mark.asyncio
    async def test_failed_unsubscribe_does_not_block_subscribe(self):
        await self.subscriber.subscribe("room", GENERAL)
        self.backend.fail["unsubscribe"] = DeniedError("nope")
        state = await self.subscriber.subscribe("room", LOBBY)
        assert state is SubscriptionState.SUBSCRIBED

    @pytest.mark.asyncio
    async def test_denied_subscribe_moves_to_error_and_retries(self):
        self.backend.fail["subscribe"] = DeniedError("token race")
        state = await self.subscriber.subscribe("room", GENERAL)
        assert state is SubscriptionState.ERROR

        del self.backend.fail["subscribe"]
        await asyncio.sleep(0.05)
        assert self.subscriber.state("room") is SubscriptionState.SUBSCRIBED
        assert self.backend.scopes() == [GENERAL]

    @pytest.mark.asyncio
    async def test_broken_stream_resubscribes(self):
        await self.subscriber.subscribe("room", GENERAL)
        self.backend.break_stream(GENERAL, NetworkUnavailableError("dropped"))
        assert self.subscriber.state("room") is SubscriptionState.ERROR

        await asyncio.sleep(0.05)
        assert self.subscriber.state("room") is SubscriptionState.SUBSCRIBED
        assert self.backend.count("subscribe") == 2

    @pytest.mark.asyncio
    async def test_events_from_retired_scope_are_dropped(self):
        await self.subscriber.subscribe("room", GENERAL)
        (_, stale_callback, _), = self.backend.subscriptions.values()
        await self.subscriber.subscribe("room", LOBBY)

        stale_callback(ChangeAction.CREATE, self.backend.add_message("general", "u2", "late"))
        assert self.queue.empty()

    @pytest.mark.asyncio
    async def test_slow_subscribe_for_old_scope_is_released(self):
        gate = asyncio.Event()
        self.backend.gates[("subscribe", str(GENERAL))] = gate
        slow = asyncio.create_task(self.subscriber.subscribe("room", GENERAL))
        await asyncio.sleep(0)

        await self.subscriber.subscribe("room", LOBBY)
        gate.set()
        await slow

        assert self.backend.scopes() == [LOBBY]
        assert self.subscriber.scope("room") == LOBBY
        assert self.subscriber.state("room") is SubscriptionState.SUBSCRIBED

    @pytest.mark.asyncio
    async def test_close_tears_down_every_slot(self):
        await self.subscriber.subscribe("room", GENERAL)
        await self.subscriber.subscribe("accounts", Scope.accounts())
        self.backend.fail["subscribe"] = DeniedError("denied")
        await self.subscriber.subscribe("rooms", Scope.rooms())

        await self.subscriber.close()
        assert self.backend.subscriptions == {}
        for slot in ("room", "accounts", "rooms"):
            assert self.subscriber.state(slot) is SubscriptionState.UNSUBSCRIBED

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_slot(self):
        await self.subscriber.unsubscribe("nothing")
        assert self.backend.calls == []


def test_scope_identity():
    assert Scope.room_messages("general") == GENERAL
    assert Scope.room_messages("general") != LOBBY
    assert str(GENERAL) == "messages:general"
    assert str(Scope.accounts()) == "users"
    assert RoomView("general") != GENERAL
