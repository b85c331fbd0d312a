import asyncio
import getpass
from typing import Optional, Set

from RetroChat.api import GeminiCompletionClient, PocketBaseClient, close_shared_session
from RetroChat.core.logging import get_logger
from RetroChat.core.sync import (
    Account,
    BannedError,
    InvalidError,
    Message,
    MessageKind,
    PrivateView,
    RoomView,
    SyncError,
    SyncOrchestrator,
)

logger = get_logger(__name__)

HELP = """Commands:
  :room <name>    switch room         :pm <user>     open private chat
  :close <user>   close private chat  :who           list who is online
  :rooms          list rooms          :newroom [name] create a room
  :kick <user>    :ban <user>         :op <user>     :lock
  :quit           sign out
Anything else is sent to the active conversation (/me and /nick work too)."""


class StandardCommandlineClient:
    """
    Line-oriented chat client.
    Prints the active conversation as it changes and sends typed lines to it.
    """

    def __init__(self, base_url: Optional[str] = None):
        self.backend = PocketBaseClient(base_url)
        self.orchestrator: Optional[SyncOrchestrator] = None
        self._printed: Set[str] = set()
        self._view = None

    async def run(self, username: Optional[str] = None, password: Optional[str] = None) -> None:
        """Sign in, start syncing and read commands until ``:quit`` or sign-out."""
        username = username or input("Username: ").strip()
        password = password or getpass.getpass("Password: ").strip()

        try:
            account = await self.backend.authenticate(username, password)
        except SyncError as e:
            print(f"Login failed: {e.message}")
            return

        self.orchestrator = SyncOrchestrator(self.backend, account.id, completion=GeminiCompletionClient())
        self.orchestrator.add_listener(self._render)
        try:
            await self.orchestrator.start()
        except BannedError:
            print("This account is banned.")
            await self._close()
            return
        except SyncError as e:
            print(f"Could not start session: {e}")
            await self._close()
            return

        print(f"Signed in as {account.display_name}. Type :help for commands.")
        try:
            await self._input_loop()
        finally:
            await self._close()

    async def _input_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self.orchestrator.is_running:
            text = await loop.run_in_executor(None, input, "> ")
            if not self.orchestrator.is_running:
                break
            try:
                if text.startswith(':'):
                    if not await self._command(text[1:].split()):
                        break
                elif text.strip():
                    await self.orchestrator.send_message(text)
            except InvalidError as e:
                print(f"! {e.message}")
            except SyncError as e:
                print(f"! {e}")
        if self.orchestrator.signed_out_reason == "banned":
            print("You have been banned.")

    async def _command(self, parts) -> bool:
        """Run one ``:`` command. Returns False to quit."""
        orch = self.orchestrator
        match parts:
            case ["quit"]:
                return False
            case ["help"]:
                print(HELP)
            case ["who"]:
                for acc, status in orch.accounts():
                    print(f"  {status.value:<8}{acc.display_name} ({acc.role.value})")
            case ["rooms"]:
                for room in orch.rooms:
                    marker = "*" if room is orch.active_room else " "
                    lock = " [locked]" if room.locked else ""
                    print(f" {marker} {room.name}: {room.topic}{lock}")
            case ["room", *name] if name:
                room = self._find_room(" ".join(name))
                await orch.switch_room(room.id)
            case ["pm", name]:
                await orch.open_private(self._find_account(name).id)
            case ["close", name]:
                await orch.close_private(self._find_account(name).id)
            case ["newroom", *name]:
                if name:
                    await orch.create_room(" ".join(name))
                else:
                    await orch.create_room()
            case ["kick", name]:
                await orch.kick(self._find_account(name).id)
            case ["ban", name]:
                await orch.toggle_ban(self._find_account(name).id)
            case ["op", name]:
                await orch.toggle_operator(self._find_account(name).id)
            case ["lock"]:
                room = await orch.toggle_room_lock()
                print(f"* {room.name} is now {'locked' if room.locked else 'open'}")
            case _:
                print(f"Unknown command: :{' '.join(parts)}, try :help")
        return True

    def _find_room(self, name: str):
        for room in self.orchestrator.rooms:
            if room.name.lower() == name.lower() or room.id == name:
                return room
        raise InvalidError(f"No such room: {name}")

    def _find_account(self, name: str) -> Account:
        for acc, _ in self.orchestrator.accounts():
            if acc.display_name.lower() == name.lower() or acc.id == name:
                return acc
        raise InvalidError(f"No such user: {name}")

    def _render(self) -> None:
        orch = self.orchestrator
        view = orch.view
        if view != self._view:
            self._view = view
            self._printed.clear()
            if isinstance(view, RoomView) and orch.active_room is not None:
                room = orch.active_room
                print(f"\n=== #{room.name} - {room.topic} ===")
            elif isinstance(view, PrivateView):
                print(f"\n=== private chat with {orch.display_name(view.account_id)} ===")
        for message in orch.timeline():
            if message.id not in self._printed:
                self._printed.add(message.id)
                print(self._format(message))
        unread = [orch.display_name(tab.account_id) for tab in orch.open_tabs if tab.unread]
        if unread:
            print(f"* unread private messages from {', '.join(unread)}")

    def _format(self, message: Message) -> str:
        name = self.orchestrator.display_name(message.author_id)
        stamp = message.created_at.astimezone().strftime("%H:%M")
        if message.kind is MessageKind.ACTION:
            return f"[{stamp}] * {name} {message.body}"
        if message.attachment_ref:
            return f"[{stamp}] <{name}> {message.body} ({message.attachment_ref})"
        return f"[{stamp}] <{name}> {message.body}"

    async def _close(self) -> None:
        if self.orchestrator is not None:
            await self.orchestrator.logout()
        await self.backend.close()
        await close_shared_session()
