"""
Contracts of the collaborators the sync engine talks to.

Any storage/realtime backend offering these primitives can drive the
engine. Implementations raise the errors from
``RetroChat.core.sync.exceptions``; the engine never sees transport errors.
"""

from typing import Any, Callable, List, Optional, Protocol, Sequence, runtime_checkable

from .models import (
    Account,
    AccountPatch,
    ChangeAction,
    Message,
    MessageDraft,
    PrivateMessage,
    PrivateMessageDraft,
    Record,
    Room,
    RoomDraft,
    RoomPatch,
    Scope,
)

EventCallback = Callable[[ChangeAction, Record], None]
ErrorCallback = Callable[[Exception], None]


@runtime_checkable
class Backend(Protocol):
    """Storage and change-stream primitives."""

    async def fetch_account(self, account_id: str) -> Account:
        """Raises NotFoundError when the account vanished."""
        ...

    async def list_accounts(self, sort: str = "username") -> List[Account]:
        ...

    async def update_account(self, account_id: str, patch: AccountPatch) -> Account:
        """Raises DeniedError or NotFoundError."""
        ...

    async def list_rooms(self, sort: str = "created") -> List[Room]:
        ...

    async def create_room(self, draft: RoomDraft) -> Room:
        ...

    async def update_room(self, room_id: str, patch: RoomPatch) -> Room:
        ...

    async def list_messages(
        self,
        room_id: str,
        page: int = 1,
        page_size: int = 50,
        sort_desc: bool = True,
    ) -> List[Message]:
        """Most recent first when ``sort_desc``; the caller reverses."""
        ...

    async def create_message(self, draft: MessageDraft) -> Message:
        ...

    async def list_private_messages(self, account_id: str) -> List[PrivateMessage]:
        """Every private message sent or received by ``account_id``."""
        ...

    async def create_private_message(self, draft: PrivateMessageDraft) -> PrivateMessage:
        ...

    async def subscribe(
        self,
        scope: Scope,
        on_event: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Any:
        """
        Start pushing changes of ``scope`` to ``on_event``.

        ``on_error`` is called if the stream breaks after subscribing.
        Returns an opaque handle for ``unsubscribe``.
        """
        ...

    async def unsubscribe(self, handle: Any) -> None:
        ...


@runtime_checkable
class CompletionService(Protocol):
    """Bot text completion."""

    async def complete(self, prompt: str, history: Sequence[str]) -> str:
        """Expected to answer with an apology string rather than raise."""
        ...


__all__ = ['Backend', 'CompletionService', 'EventCallback', 'ErrorCallback']
