"""
Test configuration and fixtures for RetroChat sync tests.

Provides:
- A controllable clock
- An in-memory backend with injectable failures, gates and pushed events
- A scripted completion service
- Orchestrator fixtures wired to all of the above
"""

import asyncio
import itertools
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from RetroChat.core.logging import configure_logging, create_testing_config
from RetroChat.core.sync.constants import SyncSettings
from RetroChat.core.sync.exceptions import NotFoundError
from RetroChat.core.sync.models import (
    Account,
    AccountPatch,
    ChangeAction,
    Message,
    MessageDraft,
    PrivateMessage,
    PrivateMessageDraft,
    Role,
    Room,
    RoomDraft,
    RoomPatch,
    RoomView,
    Scope,
)
from RetroChat.core.sync.orchestrator import SyncOrchestrator

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

configure_logging(create_testing_config())


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeBackend:
    """
    In-memory Backend.

    ``fail[op]`` (or ``fail[(op, key)]``) makes a call raise, ``gates[op]``
    (or ``gates[(op, key)]``) holds a call until the event is set, and
    ``emit`` pushes a change to matching subscriptions.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.accounts: Dict[str, Account] = {}
        self.rooms: Dict[str, Room] = {}
        self.messages: List[Message] = []
        self.private: List[PrivateMessage] = []
        self.calls: List[Tuple[str, Any]] = []
        self.fail: Dict[Any, Exception] = {}
        self.gates: Dict[Any, asyncio.Event] = {}
        self.subscriptions: Dict[int, Tuple[Scope, Callable, Optional[Callable]]] = {}
        self._ids = itertools.count(1)

    # ---- helpers ----

    def new_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def add_account(self, account_id: str, name: str, role: Role = Role.MEMBER, **fields) -> Account:
        fields.setdefault("last_liveness", self.clock())
        fields.setdefault("is_online", True)
        account = Account(id=account_id, display_name=name, role=role, **fields)
        self.accounts[account_id] = account
        return account

    def add_room(self, room_id: str, name: str, topic: str = "", locked: bool = False) -> Room:
        room = Room(room_id, name, topic, locked)
        self.rooms[room_id] = room
        return room

    def add_message(self, room_id: str, author_id: str, body: str, minutes_ago: float = 0, message_id=None) -> Message:
        message = Message(
            id=message_id or self.new_id("m"),
            author_id=author_id,
            conversation=RoomView(room_id),
            body=body,
            created_at=self.clock() - timedelta(minutes=minutes_ago),
        )
        self.messages.append(message)
        return message

    def add_private(self, sender_id: str, recipient_id: str, body: str, minutes_ago: float = 0) -> PrivateMessage:
        item = PrivateMessage(
            id=self.new_id("pm"),
            sender_id=sender_id,
            recipient_id=recipient_id,
            body=body,
            created_at=self.clock() - timedelta(minutes=minutes_ago),
        )
        self.private.append(item)
        return item

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    def scopes(self) -> List[Scope]:
        return [scope for scope, _, _ in self.subscriptions.values()]

    def emit(self, scope: Scope, action: ChangeAction, record) -> int:
        delivered = 0
        for sub_scope, on_event, _ in list(self.subscriptions.values()):
            if sub_scope == scope:
                on_event(action, record)
                delivered += 1
        return delivered

    def break_stream(self, scope: Scope, error: Exception) -> None:
        for handle, (sub_scope, _, on_error) in list(self.subscriptions.items()):
            if sub_scope == scope:
                del self.subscriptions[handle]
                if on_error is not None:
                    on_error(error)

    async def _enter(self, op: str, key: Any = None) -> None:
        self.calls.append((op, key))
        gate = self.gates.get((op, key)) or self.gates.get(op)
        if gate is not None:
            await gate.wait()
        error = self.fail.get((op, key)) or self.fail.get(op)
        if error is not None:
            raise error

    # ---- Backend contract ----

    async def fetch_account(self, account_id: str) -> Account:
        await self._enter("fetch_account", account_id)
        if account_id not in self.accounts:
            raise NotFoundError("account not found", {"id": account_id})
        return self.accounts[account_id]

    async def list_accounts(self, sort: str = "username") -> List[Account]:
        await self._enter("list_accounts")
        return sorted(self.accounts.values(), key=lambda a: a.display_name)

    async def update_account(self, account_id: str, patch: AccountPatch) -> Account:
        await self._enter("update_account", account_id)
        if account_id not in self.accounts:
            raise NotFoundError("account not found", {"id": account_id})
        changes = {
            name: value
            for name, value in (
                ("display_name", patch.display_name),
                ("role", patch.role),
                ("banned", patch.banned),
                ("is_online", patch.is_online),
            )
            if value is not None
        }
        if patch.last_liveness is not None:
            changes["last_liveness"] = patch.last_liveness
        account = replace(self.accounts[account_id], **changes)
        self.accounts[account_id] = account
        return account

    async def list_rooms(self, sort: str = "created") -> List[Room]:
        await self._enter("list_rooms")
        return list(self.rooms.values())

    async def create_room(self, draft: RoomDraft) -> Room:
        await self._enter("create_room")
        return self.add_room(self.new_id("r"), draft.name, draft.topic, draft.locked)

    async def update_room(self, room_id: str, patch: RoomPatch) -> Room:
        await self._enter("update_room", room_id)
        room = self.rooms[room_id]
        changes = {k: v for k, v in (("name", patch.name), ("topic", patch.topic), ("locked", patch.locked))
                   if v is not None}
        room = replace(room, **changes)
        self.rooms[room_id] = room
        return room

    async def list_messages(self, room_id: str, page: int = 1, page_size: int = 50,
                            sort_desc: bool = True) -> List[Message]:
        await self._enter("list_messages", room_id)
        items = [m for m in self.messages if m.conversation == RoomView(room_id)]
        items.sort(key=lambda m: m.created_at, reverse=sort_desc)
        start = (page - 1) * page_size
        return items[start:start + page_size]

    async def create_message(self, draft: MessageDraft) -> Message:
        await self._enter("create_message", draft.room_id)
        message = Message(
            id=self.new_id("m"),
            author_id=draft.author_id,
            conversation=RoomView(draft.room_id),
            body=draft.body,
            created_at=self.clock(),
            kind=draft.kind,
            attachment_ref=draft.attachment.filename if draft.attachment else None,
        )
        self.messages.append(message)
        return message

    async def list_private_messages(self, account_id: str) -> List[PrivateMessage]:
        await self._enter("list_private_messages", account_id)
        return [p for p in self.private if p.involves(account_id)]

    async def create_private_message(self, draft: PrivateMessageDraft) -> PrivateMessage:
        await self._enter("create_private_message", draft.recipient_id)
        item = PrivateMessage(
            id=self.new_id("pm"),
            sender_id=draft.sender_id,
            recipient_id=draft.recipient_id,
            body=draft.body,
            created_at=self.clock(),
            kind=draft.kind,
            attachment_ref=draft.attachment.filename if draft.attachment else None,
        )
        self.private.append(item)
        return item

    async def subscribe(self, scope: Scope, on_event, on_error=None) -> int:
        await self._enter("subscribe", str(scope))
        handle = next(self._ids)
        self.subscriptions[handle] = (scope, on_event, on_error)
        return handle

    async def unsubscribe(self, handle: int) -> None:
        await self._enter("unsubscribe", handle)
        self.subscriptions.pop(handle, None)


class FakeCompletion:
    """Completion service returning a scripted reply or raising."""

    def __init__(self, reply: str = "Hello from the bot!"):
        self.reply = reply
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, List[str]]] = []

    async def complete(self, prompt: str, history) -> str:
        self.calls.append((prompt, list(history)))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


def quiet_settings(**overrides) -> SyncSettings:
    """Settings whose background timers never fire during a test."""
    values = dict(
        heartbeat_seconds=3600.0,
        presence_poll_seconds=3600.0,
        resync_seconds=3600.0,
        subscribe_retry_seconds=3600.0,
        trim_seconds=3600.0,
    )
    values.update(overrides)
    return SyncSettings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> FakeBackend:
    """Backend seeded with three accounts and two rooms."""
    fake = FakeBackend(clock)
    fake.add_account("u1", "alice")
    fake.add_account("u2", "bob")
    fake.add_account("u3", "carol", role=Role.ADMIN)
    fake.add_room("general", "General", "The lobby")
    fake.add_room("lobby", "Lobby", "Hang out")
    return fake


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest_asyncio.fixture
async def make_orchestrator(backend: FakeBackend, completion: FakeCompletion, clock: FakeClock):
    """Factory for orchestrators; every one created is signed out afterwards."""
    created: List[SyncOrchestrator] = []

    def factory(self_id: str = "u1", settings: Optional[SyncSettings] = None, **kwargs) -> SyncOrchestrator:
        orch = SyncOrchestrator(
            backend,
            self_id,
            completion=kwargs.pop("completion", completion),
            settings=settings or quiet_settings(),
            clock=clock,
        )
        created.append(orch)
        return orch

    yield factory

    for instance in created:
        await instance.logout()


@pytest_asyncio.fixture
async def orchestrator(make_orchestrator):
    """A started orchestrator signed in as alice (u1)."""
    orch = make_orchestrator()
    await orch.start()
    return orch


def message_bodies(messages) -> List[str]:
    return [m.body for m in messages]


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
