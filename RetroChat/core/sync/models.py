"""
Domain records for the sync engine.

Each record kind the backend can push is a frozen dataclass with every field
declared, so event handling dispatches on type instead of probing dicts.
Persisted records are immutable once received; ephemeral messages are
created locally with ids from the ``local:`` namespace.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

BOT_ID = "bot"
BOT_NAME = "Gemini AI"
EPHEMERAL_PREFIX = "local:"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_ephemeral_id() -> str:
    """Id for a client-synthesized message; never collides with backend ids."""
    return f"{EPHEMERAL_PREFIX}{uuid.uuid4().hex}"


class Role(Enum):
    """Account roles."""
    ADMIN = "admin"
    OPERATOR = "operator"
    MEMBER = "member"
    BOT = "bot"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'Role':
        """Map a wire value to a role; the backend calls members "user"."""
        normalized = (value or "").strip().lower()
        if normalized == "user":
            return cls.MEMBER
        for role in cls:
            if role.value == normalized:
                return role
        return cls.MEMBER

    @property
    def is_moderator(self) -> bool:
        return self in (Role.ADMIN, Role.OPERATOR)


class MessageKind(Enum):
    """Kinds of chat message body."""
    TEXT = "text"
    ACTION = "action"
    IMAGE = "image"
    AUDIO = "audio"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'MessageKind':
        for kind in cls:
            if kind.value == (value or "").strip().lower():
                return kind
        return cls.TEXT


class Provenance(Enum):
    """Where a message came from."""
    PERSISTED = "persisted"
    EPHEMERAL = "ephemeral"


@dataclass(frozen=True)
class Account:
    """A chat account as last seen from the backend."""
    id: str
    display_name: str
    avatar_ref: Optional[str] = None
    role: Role = Role.MEMBER
    banned: bool = False
    last_liveness: Optional[datetime] = None
    is_online: bool = False

    @property
    def is_bot(self) -> bool:
        return self.id == BOT_ID

    @property
    def is_moderator(self) -> bool:
        return self.role.is_moderator

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


BOT_ACCOUNT = Account(id=BOT_ID, display_name=BOT_NAME, role=Role.BOT, is_online=True)


@dataclass(frozen=True)
class Room:
    """A public room. ``locked`` rooms only accept messages from moderators."""
    id: str
    name: str
    topic: str = ""
    locked: bool = False


@dataclass(frozen=True)
class RoomView:
    """Room conversation; also used as the key of its timeline."""
    room_id: str


@dataclass(frozen=True)
class PrivateView:
    """Private conversation with another account; also its timeline key."""
    account_id: str


ViewState = Union[RoomView, PrivateView]
ConversationKey = ViewState


@dataclass(frozen=True)
class Message:
    """A message as displayed in one conversation timeline."""
    id: str
    author_id: str
    conversation: ConversationKey
    body: str
    created_at: datetime
    kind: MessageKind = MessageKind.TEXT
    attachment_ref: Optional[str] = None
    provenance: Provenance = Provenance.PERSISTED

    @property
    def is_ephemeral(self) -> bool:
        return self.provenance is Provenance.EPHEMERAL


@dataclass(frozen=True)
class PrivateMessage:
    """A persisted private message between two accounts."""
    id: str
    sender_id: str
    recipient_id: str
    body: str
    created_at: datetime
    kind: MessageKind = MessageKind.TEXT
    attachment_ref: Optional[str] = None

    def involves(self, account_id: str) -> bool:
        return account_id in (self.sender_id, self.recipient_id)

    def other_party(self, self_id: str) -> str:
        return self.recipient_id if self.sender_id == self_id else self.sender_id

    def to_message(self, self_id: str) -> Message:
        """Project onto the timeline of the conversation seen by ``self_id``."""
        return Message(
            id=self.id,
            author_id=self.sender_id,
            conversation=PrivateView(self.other_party(self_id)),
            body=self.body,
            created_at=self.created_at,
            kind=self.kind,
            attachment_ref=self.attachment_ref,
        )


Record = Union[Account, Room, Message, PrivateMessage]


class ScopeKind(Enum):
    """Subscription granularity, named after the backend collection."""
    ROOM_MESSAGES = "messages"
    ROOMS = "rooms"
    ACCOUNTS = "users"
    PRIVATE_MESSAGES = "private_messages"


@dataclass(frozen=True)
class Scope:
    """One subscribable unit: a room's messages, all rooms, all accounts or own PMs."""
    kind: ScopeKind
    key: Optional[str] = None

    @classmethod
    def room_messages(cls, room_id: str) -> 'Scope':
        return cls(ScopeKind.ROOM_MESSAGES, room_id)

    @classmethod
    def rooms(cls) -> 'Scope':
        return cls(ScopeKind.ROOMS)

    @classmethod
    def accounts(cls) -> 'Scope':
        return cls(ScopeKind.ACCOUNTS)

    @classmethod
    def private_messages(cls, self_id: str) -> 'Scope':
        return cls(ScopeKind.PRIVATE_MESSAGES, self_id)

    @property
    def collection(self) -> str:
        return self.kind.value

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.key}" if self.key else self.kind.value


class ChangeAction(Enum):
    """Actions carried by change-stream events."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """Immutable event queued by the subscriber for the orchestrator."""
    scope: Scope
    action: ChangeAction
    record: Record


@dataclass(frozen=True)
class PrivateTab:
    """An open private-conversation tab."""
    account_id: str
    unread: bool = False


@dataclass(frozen=True)
class Attachment:
    """File sent along with a message."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class MessageDraft:
    room_id: str
    author_id: str
    body: str
    kind: MessageKind = MessageKind.TEXT
    attachment: Optional[Attachment] = None


@dataclass(frozen=True)
class PrivateMessageDraft:
    sender_id: str
    recipient_id: str
    body: str
    kind: MessageKind = MessageKind.TEXT
    attachment: Optional[Attachment] = None


@dataclass(frozen=True)
class RoomDraft:
    name: str
    topic: str = ""
    locked: bool = False


@dataclass(frozen=True)
class AccountPatch:
    """Partial account update; ``None`` fields are left untouched."""
    display_name: Optional[str] = None
    role: Optional[Role] = None
    banned: Optional[bool] = None
    is_online: Optional[bool] = None
    last_liveness: Optional[datetime] = None


@dataclass(frozen=True)
class RoomPatch:
    """Partial room update; ``None`` fields are left untouched."""
    name: Optional[str] = None
    topic: Optional[str] = None
    locked: Optional[bool] = None
