"""
Sync orchestration for one authenticated session.

The orchestrator owns everything with a session lifetime: the presence map,
the per-conversation timelines, the view router, every subscription and
every background timer. ``logout()`` (or a ban) destroys all of it as a
unit.

All shared state is mutated on the event loop only. Pushed changes arrive as
immutable ChangeEvent records on a single inbound queue and are applied
against whatever state is current when they are processed. Responses that
belong to a conversation the user already left are dropped by comparing the
scope sequence captured before the request with the current one.

Session start, in order:
1. fetch our own account and refuse to continue if it is banned
2. load rooms, creating a default room when there are none, select the first
3. start the liveness heartbeat
4. start the account-list poll and the account/room change streams
5. load the active conversation, then subscribe to it
and finally load private messages and subscribe to them.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from RetroChat.core.logging import get_logger
from .backend import Backend, CompletionService
from .commands import InputKind, format_history_line, kind_for_attachment, parse_input, should_trigger_bot
from .constants import (
    ATTACHMENT_PLACEHOLDER,
    BOT_APOLOGY,
    DEFAULT_ROOM_NAME,
    DEFAULT_ROOM_TOPIC,
    NEW_ROOM_NAME,
    NEW_ROOM_TOPIC,
    SyncSettings,
)
from .exceptions import BannedError, DeniedError, InvalidError, SyncError
from .models import (
    BOT_ID,
    Account,
    AccountPatch,
    Attachment,
    ChangeAction,
    ChangeEvent,
    ConversationKey,
    Message,
    MessageDraft,
    MessageKind,
    PrivateMessage,
    PrivateMessageDraft,
    PrivateTab,
    PrivateView,
    Provenance,
    Role,
    Room,
    RoomDraft,
    RoomPatch,
    RoomView,
    Scope,
    ViewState,
    new_ephemeral_id,
    utcnow,
)
from .presence import PresenceStatus, PresenceTracker
from .reconciler import MessageReconciler
from .router import ViewRouter
from .subscriber import ChangeStreamSubscriber, SubscriptionState

logger = get_logger(__name__)

ROOM_SLOT = "room"
ROOMS_SLOT = "rooms"
ACCOUNTS_SLOT = "accounts"
PRIVATE_SLOT = "private"

Listener = Callable[[], None]


class SyncOrchestrator:
    """
    Ties presence, reconciliation, subscriptions and routing together.

    Presentation code reads state through the properties and query methods
    and drives the session through the async action methods. Actions raise
    InvalidError before touching the network when the input is rejected,
    and re-raise backend errors (DeniedError, ...) so the single action can
    be reported inline. Background work never raises.
    """

    def __init__(
        self,
        backend: Backend,
        self_id: str,
        completion: Optional[CompletionService] = None,
        settings: Optional[SyncSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._backend = backend
        self._self_id = self_id
        self._completion = completion
        self._settings = settings or SyncSettings.from_config()
        self._clock = clock

        self._queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()
        self._presence = PresenceTracker(
            self_id, self._settings.online_window, self._settings.away_window, clock
        )
        self._reconciler = MessageReconciler()
        self._router = ViewRouter()
        self._subscriber = ChangeStreamSubscriber(
            backend, self._queue, self._settings.subscribe_retry_seconds
        )

        self._rooms: Dict[str, Room] = {}
        self._current: Optional[Account] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []
        self._running = False
        self._visible = True
        self._composing = False
        # Private message ids already ingested this session.
        self._seen_private: Set[str] = set()
        # Bumped on every view change and on sign-out.
        self._scope_seq = 0
        # Bumped on every session start and sign-out.
        self._epoch = 0

        self.presence_impaired = False
        self.rooms_impaired = False
        self.private_impaired = False
        self.signed_out_reason: Optional[str] = None

    # ==================== Read-only state ====================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def self_id(self) -> str:
        return self._self_id

    @property
    def current_account(self) -> Optional[Account]:
        return self._current

    @property
    def view(self) -> Optional[ViewState]:
        return self._router.view

    @property
    def open_tabs(self) -> Tuple[PrivateTab, ...]:
        return self._router.open_tabs

    @property
    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    @property
    def active_room(self) -> Optional[Room]:
        room_id = self._router.last_active_room_id
        return self._rooms.get(room_id) if room_id is not None else None

    @property
    def is_composing(self) -> bool:
        return self._composing

    def subscription_state(self, slot: str) -> SubscriptionState:
        return self._subscriber.state(slot)

    def timeline(self) -> List[Message]:
        """Reconciled messages of the active view."""
        view = self._router.view
        return self._reconciler.messages(view) if view is not None else []

    def conversation(self, key: ConversationKey) -> List[Message]:
        return self._reconciler.messages(key)

    def accounts(self) -> List[Tuple[Account, PresenceStatus]]:
        return self._presence.classified(self._clock())

    def status_of(self, account_id: str) -> PresenceStatus:
        return self._presence.status_of(account_id, self._clock())

    def display_name(self, account_id: str) -> str:
        return self._presence.display_name(account_id)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_visible(self, visible: bool) -> None:
        """Heartbeats are only written while the client is in the foreground."""
        self._visible = visible

    def set_composing(self, composing: bool) -> None:
        """While composing, the active conversation is never trimmed."""
        self._composing = composing

    async def flush(self) -> None:
        """Wait until every queued change event has been applied."""
        await self._queue.join()

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """
        Start the session.

        Raises:
            BannedError: the account is banned
            SyncError: our own account could not be verified
        """
        if self._running:
            return
        self.signed_out_reason = None
        self.presence_impaired = self.rooms_impaired = self.private_impaired = False

        account = await self._backend.fetch_account(self._self_id)
        if account.banned:
            self.signed_out_reason = "banned"
            logger.warning("Account %s is banned; refusing to start", self._self_id)
            raise BannedError("This account is banned", {"account": self._self_id})

        self._current = account
        self._presence.apply(account)
        self._running = True
        self._epoch += 1
        self._spawn(self._consume_events(), "events")
        logger.info("Session started for %s (%s)", account.display_name, account.id)

        await self._load_rooms()

        if self._visible:
            await self._beat()
        self._check_started()
        self._spawn(self._heartbeat_loop(), "heartbeat")

        await self._refresh_accounts()
        self._check_started()
        self._spawn(self._account_poll_loop(), "account-poll")
        await self._subscriber.subscribe(ACCOUNTS_SLOT, Scope.accounts())
        await self._subscriber.subscribe(ROOMS_SLOT, Scope.rooms())
        self._check_started()

        await self._enter_view(self._scope_seq)
        self._check_started()

        await self._refresh_private(announce=False)
        self._check_started()
        await self._subscriber.subscribe(PRIVATE_SLOT, Scope.private_messages(self._self_id))
        self._check_started()

        self._spawn(self._resync_loop(), "resync")
        self._spawn(self._trim_loop(), "trim")
        self._notify()

    def _check_started(self) -> None:
        if self._running:
            return
        if self.signed_out_reason == "banned":
            raise BannedError("This account is banned", {"account": self._self_id})
        raise SyncError("Session ended while starting", {"reason": self.signed_out_reason})

    async def logout(self) -> None:
        await self._shutdown("logout")

    async def _shutdown(self, reason: str) -> None:
        if not self._running:
            return
        logger.info("Signing out (%s)", reason)
        self._running = False
        self.signed_out_reason = reason
        self._scope_seq += 1
        self._epoch += 1

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self._mark_stale()
        await self._subscriber.close()
        self._drain_queue()

        self._reconciler.reset()
        self._router.reset()
        self._presence.reset()
        self._rooms.clear()
        self._seen_private.clear()
        self._current = None
        self._composing = False
        self._notify()

    async def _mark_stale(self) -> None:
        stale = self._clock() - self._settings.away_window
        try:
            await self._backend.update_account(
                self._self_id, AccountPatch(is_online=False, last_liveness=stale)
            )
        except SyncError as e:
            logger.warning("Could not mark %s offline: %s", self._self_id, e)

    def _drain_queue(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=f"retrochat-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background task %s crashed", task.get_name(), exc_info=error)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("State listener %r failed", listener)

    # ==================== Initial load & refresh ====================

    async def _load_rooms(self) -> None:
        try:
            rooms = await self._backend.list_rooms(sort="created")
        except SyncError as e:
            self.rooms_impaired = True
            logger.error("Could not load rooms: %s", e)
            return

        if not rooms and self._current is not None and self._current.role is not Role.BOT:
            try:
                rooms = [await self._backend.create_room(RoomDraft(DEFAULT_ROOM_NAME, DEFAULT_ROOM_TOPIC))]
                logger.info("Created default room %s", rooms[0].name)
            except SyncError as e:
                logger.warning("Could not auto-create a room: %s", e)

        self.rooms_impaired = False
        self._rooms = {room.id: room for room in rooms}
        if rooms:
            self._router.switch_room(rooms[0].id)

    async def _enter_view(self, seq: int) -> None:
        view = self._router.view
        if isinstance(view, RoomView):
            await self._load_room_snapshot(view, seq)
            if seq != self._scope_seq:
                return
            await self._subscriber.subscribe(ROOM_SLOT, Scope.room_messages(view.room_id))
        elif isinstance(view, PrivateView):
            await self._refresh_private()

    async def _load_room_snapshot(self, view: RoomView, seq: int) -> None:
        try:
            page = await self._backend.list_messages(
                view.room_id, page=1, page_size=self._settings.page_size, sort_desc=True
            )
        except SyncError as e:
            self.rooms_impaired = True
            logger.warning("Could not load messages of room %s: %s", view.room_id, e)
            self._notify()
            return

        if seq != self._scope_seq or self._router.view != view:
            logger.debug("Dropping stale snapshot of room %s", view.room_id)
            return
        self.rooms_impaired = False
        added = self._reconciler.ingest(view, [m for m in reversed(page) if m.conversation == view])
        if added:
            logger.debug("Loaded %d messages of room %s", added, view.room_id)
        self._notify()

    async def _refresh_private(self, announce: bool = True) -> None:
        """
        Reload every private message of ours.

        Messages not seen before are announced like pushed ones (tab plus
        unread flag), unless ``announce`` is off for the initial history.
        """
        epoch = self._epoch
        try:
            items = await self._backend.list_private_messages(self._self_id)
        except SyncError as e:
            self.private_impaired = True
            logger.warning("Could not load private messages: %s", e)
            self._notify()
            return
        if epoch != self._epoch:
            return

        self.private_impaired = False
        changed = False
        for item in items:
            if item.involves(self._self_id):
                changed = self._ingest_private(item, announce) or changed
        if changed:
            self._notify()

    def _ingest_private(self, item: PrivateMessage, announce: bool = True) -> bool:
        """Store a private message; the first sighting of an inbound one opens its tab."""
        message = item.to_message(self._self_id)
        changed = bool(self._reconciler.ingest(message.conversation, [message]))
        if item.id in self._seen_private:
            return changed
        self._seen_private.add(item.id)
        if announce and item.recipient_id == self._self_id and item.sender_id != self._self_id:
            changed = self._router.receive_private(item.sender_id) or changed
        return changed

    async def _refresh_accounts(self) -> None:
        epoch = self._epoch
        try:
            accounts = await self._backend.list_accounts(sort="username")
        except SyncError as e:
            logger.warning("Could not refresh the account list: %s", e)
            return
        if epoch != self._epoch:
            return

        self._presence.replace_all(accounts)
        me = next((a for a in accounts if a.id == self._self_id), None)
        if me is not None:
            await self._observe_self(me)
        self._notify()

    async def _beat(self) -> None:
        try:
            account = await self._backend.update_account(
                self._self_id, AccountPatch(is_online=True, last_liveness=self._clock())
            )
        except DeniedError as e:
            if not self.presence_impaired:
                logger.warning("Presence heartbeat denied: %s", e)
            self.presence_impaired = True
            self._notify()
            return
        except SyncError as e:
            logger.info("Heartbeat failed, retrying on next tick: %s", e)
            return

        if self.presence_impaired:
            self.presence_impaired = False
            self._notify()
        self._presence.apply(account)
        await self._observe_self(account)

    async def _observe_self(self, account: Account) -> None:
        """Track our own record; a ban ends the session immediately."""
        if not self._running:
            return
        self._current = account
        if account.banned:
            logger.warning("Account %s has been banned; signing out", account.id)
            await self._shutdown("banned")
            return
        if not account.is_online:
            logger.info("Account %s was marked offline by a moderator", account.id)

    # ==================== Background loops ====================

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.heartbeat_seconds)
            if self._visible:
                await self._beat()

    async def _account_poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.presence_poll_seconds)
            await self._refresh_accounts()

    async def _resync_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.resync_seconds)
            view = self._router.view
            if isinstance(view, RoomView):
                await self._load_room_snapshot(view, self._scope_seq)
            await self._refresh_private()

    async def _trim_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.trim_seconds)
            self.trim()

    def trim(self) -> int:
        """
        Bound memory by dropping persisted messages.

        The active conversation keeps its newest page (and is skipped
        entirely while the user is composing); the others are emptied and
        reload on their next visit. Ephemeral messages always stay.
        """
        active = self._router.view
        dropped = 0
        for key in self._reconciler.keys():
            if key == active:
                if self._composing:
                    continue
                dropped += self._reconciler.trim(key, keep_last=self._settings.page_size)
            else:
                dropped += self._reconciler.trim(key)
        if dropped:
            logger.debug("Trimmed %d persisted messages", dropped)
            self._notify()
        return dropped

    # ==================== Change events ====================

    async def _consume_events(self) -> None:
        while self._running:
            event = await self._queue.get()
            try:
                await self._apply_event(event)
            except Exception:
                logger.exception("Failed to apply %s event from %s", event.action.value, event.scope)
            finally:
                self._queue.task_done()

    async def _apply_event(self, event: ChangeEvent) -> None:
        record = event.record
        if isinstance(record, Message):
            self._apply_room_message(event, record)
        elif isinstance(record, Account):
            await self._apply_account(event, record)
        elif isinstance(record, Room):
            self._apply_room(event, record)
        elif isinstance(record, PrivateMessage):
            self._apply_private_message(event, record)

    def _apply_room_message(self, event: ChangeEvent, message: Message) -> None:
        if event.action is not ChangeAction.CREATE:
            logger.debug("Ignoring %s of message %s", event.action.value, message.id)
            return
        room_id = self._router.last_active_room_id
        if room_id is None or message.conversation != RoomView(room_id) or event.scope.key != room_id:
            return
        if self._reconciler.ingest(message.conversation, [message]):
            self._notify()

    async def _apply_account(self, event: ChangeEvent, account: Account) -> None:
        if event.action is ChangeAction.DELETE:
            self._presence.remove(account.id)
        else:
            self._presence.apply(account)
        if account.id == self._self_id and event.action is ChangeAction.UPDATE:
            await self._observe_self(account)
        self._notify()

    def _apply_room(self, event: ChangeEvent, room: Room) -> None:
        if event.action is ChangeAction.DELETE:
            logger.debug("Ignoring deletion of room %s", room.id)
            return
        self._rooms[room.id] = room
        self._notify()

    def _apply_private_message(self, event: ChangeEvent, item: PrivateMessage) -> None:
        if event.action is not ChangeAction.CREATE or not item.involves(self._self_id):
            return
        if self._ingest_private(item):
            self._notify()

    # ==================== Navigation ====================

    async def switch_room(self, room_id: str) -> None:
        self._require_session()
        if room_id not in self._rooms:
            raise InvalidError(f"Unknown room: {room_id}")
        changed, previous = self._router.switch_room(room_id)
        if changed:
            await self._after_view_change(previous)

    async def open_private(self, account_id: str) -> None:
        me = self._require_session()
        if account_id == me.id:
            raise InvalidError("Cannot open a private conversation with yourself")
        changed, previous = self._router.open_private(account_id)
        if changed:
            await self._after_view_change(previous)
        else:
            self._notify()

    async def close_private(self, account_id: str) -> None:
        self._require_session()
        changed, previous = self._router.close_private(account_id)
        if changed:
            await self._after_view_change(previous)
            return
        if self._router.is_open(account_id):
            raise InvalidError("Cannot close the only open conversation")
        self._notify()

    async def _after_view_change(self, previous: Optional[ViewState]) -> None:
        self._scope_seq += 1
        seq = self._scope_seq
        if previous is not None:
            self._reconciler.clear_ephemeral(previous)
        self._composing = False
        self._notify()
        await self._enter_view(seq)

    # ==================== Messaging ====================

    async def send_message(self, text: str, attachment: Optional[Attachment] = None) -> Optional[Message]:
        """
        Send a line typed into the active view.

        Handles ``/nick`` and ``/me``. In a room, a body mentioning the bot
        gets an ephemeral bot reply once the message is stored. Returns the
        stored message, or None for commands that create no message.
        """
        me = self._require_session()
        view = self._router.view
        if isinstance(view, PrivateView):
            created = await self.send_private(view.account_id, text, attachment)
            return created.to_message(me.id)

        body = (text or "").strip()
        if not body and attachment is None:
            raise InvalidError("Message is empty")
        if view is None:
            raise InvalidError("No active room")
        room = self._rooms.get(view.room_id)
        if room is not None and room.locked and not me.is_moderator:
            raise InvalidError("Room is locked. Only admins and operators can speak.")

        parsed = parse_input(body)
        if parsed.kind is InputKind.NICK:
            await self.change_nick(parsed.body)
            return None
        if parsed.kind is InputKind.ACTION:
            if not parsed.body:
                raise InvalidError("Usage: /me <action>")
            kind = MessageKind.ACTION
        else:
            kind = kind_for_attachment(attachment)
        message_body = parsed.body or ATTACHMENT_PLACEHOLDER

        epoch, seq = self._epoch, self._scope_seq
        history = self._bot_history(view)
        try:
            created = await self._backend.create_message(
                MessageDraft(view.room_id, me.id, message_body, kind, attachment)
            )
        except SyncError as e:
            logger.warning("Sending to room %s failed: %s", view.room_id, e)
            raise
        if epoch != self._epoch:
            return created
        if self._reconciler.ingest(created.conversation, [created]):
            self._notify()

        if self._completion is not None and should_trigger_bot(message_body):
            await self._answer_bot(view, message_body, history, seq)
        return created

    async def send_private(
        self, account_id: str, text: str, attachment: Optional[Attachment] = None
    ) -> PrivateMessage:
        me = self._require_session()
        if account_id == me.id:
            raise InvalidError("Cannot message yourself")
        body = (text or "").strip()
        if not body and attachment is None:
            raise InvalidError("Message is empty")

        epoch = self._epoch
        try:
            created = await self._backend.create_private_message(PrivateMessageDraft(
                me.id, account_id, body or ATTACHMENT_PLACEHOLDER, kind_for_attachment(attachment), attachment
            ))
        except SyncError as e:
            logger.warning("Private message to %s failed: %s", account_id, e)
            raise
        if epoch == self._epoch and self._ingest_private(created, announce=False):
            self._notify()
        return created

    async def change_nick(self, name: str) -> Account:
        me = self._require_session()
        name = (name or "").strip()
        if not name:
            raise InvalidError("Usage: /nick <name>")
        try:
            account = await self._backend.update_account(me.id, AccountPatch(display_name=name))
        except SyncError as e:
            logger.warning("Nickname change failed: %s", e)
            raise
        self._presence.apply(account)
        self._current = account
        self._notify()
        return account

    def _bot_history(self, key: ConversationKey) -> List[str]:
        recent = self._reconciler.messages(key)[-self._settings.bot_history_lines:]
        return [format_history_line(self._presence.display_name(m.author_id), m.body) for m in recent]

    async def _answer_bot(self, key: ConversationKey, prompt: str, history: List[str], seq: int) -> None:
        try:
            reply = await self._completion.complete(prompt, history)
        except Exception as e:
            logger.warning("Bot completion failed: %s", e)
            reply = BOT_APOLOGY

        if seq != self._scope_seq or self._router.view != key:
            logger.debug("Discarding bot reply; %s is no longer active", key)
            return
        self._reconciler.add_ephemeral(key, Message(
            id=new_ephemeral_id(),
            author_id=BOT_ID,
            conversation=key,
            body=reply or BOT_APOLOGY,
            created_at=self._clock(),
            provenance=Provenance.EPHEMERAL,
        ))
        self._notify()

    # ==================== Moderation ====================

    async def create_room(self, name: str = NEW_ROOM_NAME, topic: str = NEW_ROOM_TOPIC) -> Room:
        self._require_moderator()
        name = (name or "").strip()
        if not name:
            raise InvalidError("Room name is empty")
        try:
            room = await self._backend.create_room(RoomDraft(name, topic))
        except SyncError as e:
            logger.warning("Room creation failed: %s", e)
            raise
        self._rooms[room.id] = room
        await self.switch_room(room.id)
        return room

    async def toggle_room_lock(self) -> Room:
        self._require_moderator()
        room = self.active_room
        if room is None:
            raise InvalidError("No active room")
        try:
            updated = await self._backend.update_room(room.id, RoomPatch(locked=not room.locked))
        except SyncError as e:
            logger.warning("Toggling lock of room %s failed: %s", room.id, e)
            raise
        self._rooms[updated.id] = updated
        self._notify()
        return updated

    async def kick(self, account_id: str) -> None:
        """Mark an account offline and announce it; the target is not signed out."""
        me = self._require_moderator()
        target = self._moderation_target(account_id)
        await self._moderate(target, AccountPatch(is_online=False))
        await self._post_notice(f"*** {target.display_name} was kicked by {me.display_name}")

    async def toggle_ban(self, account_id: str) -> None:
        me = self._require_admin()
        target = self._moderation_target(account_id)
        banning = not target.banned
        await self._moderate(target, AccountPatch(banned=banning, is_online=False if banning else None))
        verb = "was BANNED" if banning else "was unbanned"
        await self._post_notice(f"*** {target.display_name} {verb} by {me.display_name}")

    async def toggle_operator(self, account_id: str) -> None:
        self._require_admin()
        target = self._moderation_target(account_id)
        promote = target.role is not Role.OPERATOR
        await self._moderate(target, AccountPatch(role=Role.OPERATOR if promote else Role.MEMBER))
        if promote:
            await self._post_notice(f"*** {target.display_name} is now an Operator (+o)")
        else:
            await self._post_notice(f"*** {target.display_name} lost Operator status (-o)")

    async def _moderate(self, target: Account, patch: AccountPatch) -> None:
        try:
            updated = await self._backend.update_account(target.id, patch)
        except SyncError as e:
            logger.warning("Moderation of %s failed: %s", target.id, e)
            raise
        self._presence.apply(updated)
        self._notify()

    async def _post_notice(self, text: str) -> None:
        room_id = self._router.last_active_room_id
        if room_id is None or self._current is None:
            return
        try:
            created = await self._backend.create_message(MessageDraft(room_id, self._current.id, text))
        except SyncError as e:
            logger.warning("Could not post moderation notice: %s", e)
            return
        if self._reconciler.ingest(created.conversation, [created]):
            self._notify()

    def _moderation_target(self, account_id: str) -> Account:
        target = self._presence.get(account_id)
        if target is None:
            raise InvalidError(f"Unknown account: {account_id}")
        if target.is_bot or target.id == self._self_id:
            raise InvalidError("That account cannot be moderated")
        if target.is_admin:
            raise InvalidError("Cannot moderate an admin")
        return target

    # ==================== Guards ====================

    def _require_session(self) -> Account:
        if not self._running or self._current is None:
            raise InvalidError("Not signed in")
        return self._current

    def _require_moderator(self) -> Account:
        me = self._require_session()
        if not me.is_moderator:
            raise InvalidError("Only admins and operators can do that")
        return me

    def _require_admin(self) -> Account:
        me = self._require_session()
        if not me.is_admin:
            raise InvalidError("Only admins can do that")
        return me


__all__ = [
    'SyncOrchestrator',
    'ROOM_SLOT',
    'ROOMS_SLOT',
    'ACCOUNTS_SLOT',
    'PRIVATE_SLOT',
]
