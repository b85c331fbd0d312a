"""
Wire records of the PocketBase-style backend.

Collections carry camelCase JSON; these pydantic models validate it and
convert to the sync engine's domain records. Unknown fields are ignored so
backend schema additions never break the client.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from RetroChat.core.logging import get_logger
from RetroChat.core.sync.exceptions import InvalidError
from RetroChat.core.sync.models import (
    Account,
    AccountPatch,
    Message,
    MessageKind,
    PrivateMessage,
    Record,
    Role,
    Room,
    RoomDraft,
    RoomPatch,
    RoomView,
    ScopeKind,
)

logger = get_logger(__name__)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a backend timestamp such as ``2024-05-01 12:30:00.123Z``.

    Returns None for missing or unparseable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way the backend stores it."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def file_url(files_url: str, collection_id: str, record_id: str, filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    if not files_url or not collection_id:
        return filename
    return f"{files_url}/{collection_id}/{record_id}/{filename}"


class _WireRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    collection_id: str = Field("", alias="collectionId")
    created: datetime | None = None
    updated: datetime | None = None

    @field_validator("created", "updated", mode="before")
    @classmethod
    def _parse_times(cls, value):
        return parse_timestamp(value)


class AccountRecord(_WireRecord):
    username: str = ""
    avatar: str | None = None
    role: str | None = None
    banned: bool = False
    is_online: bool = Field(False, alias="isOnline")
    last_seen: datetime | None = Field(None, alias="lastSeen")

    @field_validator("last_seen", mode="before")
    @classmethod
    def _parse_last_seen(cls, value):
        return parse_timestamp(value)

    def to_account(self, files_url: str = "") -> Account:
        return Account(
            id=self.id,
            display_name=self.username,
            avatar_ref=file_url(files_url, self.collection_id, self.id, self.avatar),
            role=Role.parse(self.role),
            banned=self.banned,
            last_liveness=self.last_seen,
            is_online=self.is_online,
        )


class RoomRecord(_WireRecord):
    name: str = ""
    topic: str | None = None
    is_muted: bool = Field(False, alias="isMuted")

    def to_room(self) -> Room:
        return Room(id=self.id, name=self.name, topic=self.topic or "", locked=self.is_muted)


class MessageRecord(_WireRecord):
    text: str = ""
    user: str = ""
    room: str = ""
    attachment: str | None = None
    type: str | None = None

    def to_message(self, files_url: str = "") -> Message:
        return Message(
            id=self.id,
            author_id=self.user,
            conversation=RoomView(self.room),
            body=self.text,
            created_at=self.created or datetime.now(timezone.utc),
            kind=MessageKind.parse(self.type),
            attachment_ref=file_url(files_url, self.collection_id, self.id, self.attachment),
        )


class PrivateMessageRecord(_WireRecord):
    text: str = ""
    sender: str = ""
    recipient: str = ""
    attachment: str | None = None
    type: str | None = None

    def to_private_message(self, files_url: str = "") -> PrivateMessage:
        return PrivateMessage(
            id=self.id,
            sender_id=self.sender,
            recipient_id=self.recipient,
            body=self.text,
            created_at=self.created or datetime.now(timezone.utc),
            kind=MessageKind.parse(self.type),
            attachment_ref=file_url(files_url, self.collection_id, self.id, self.attachment),
        )


def parse_record(collection: str, data: Dict[str, Any], files_url: str = "") -> Record:
    """
    Convert one JSON record of ``collection`` into a domain record.

    Raises:
        InvalidError: the payload does not validate or the collection is unknown
    """
    try:
        if collection == ScopeKind.ACCOUNTS.value:
            return AccountRecord.model_validate(data).to_account(files_url)
        if collection == ScopeKind.ROOMS.value:
            return RoomRecord.model_validate(data).to_room()
        if collection == ScopeKind.ROOM_MESSAGES.value:
            return MessageRecord.model_validate(data).to_message(files_url)
        if collection == ScopeKind.PRIVATE_MESSAGES.value:
            return PrivateMessageRecord.model_validate(data).to_private_message(files_url)
    except ValidationError as e:
        raise InvalidError(f"Malformed {collection} record", {"errors": e.errors()}) from e
    raise InvalidError(f"Unknown collection {collection}")


def account_patch_to_wire(patch: AccountPatch) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if patch.display_name is not None:
        body["username"] = patch.display_name
    if patch.role is not None:
        body["role"] = "user" if patch.role is Role.MEMBER else patch.role.value
    if patch.banned is not None:
        body["banned"] = patch.banned
    if patch.is_online is not None:
        body["isOnline"] = patch.is_online
    if patch.last_liveness is not None:
        body["lastSeen"] = format_timestamp(patch.last_liveness)
    return body


def room_draft_to_wire(draft: RoomDraft) -> Dict[str, Any]:
    return {"name": draft.name, "topic": draft.topic, "isMuted": draft.locked}


def room_patch_to_wire(patch: RoomPatch) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if patch.name is not None:
        body["name"] = patch.name
    if patch.topic is not None:
        body["topic"] = patch.topic
    if patch.locked is not None:
        body["isMuted"] = patch.locked
    return body


__all__ = [
    'AccountRecord',
    'RoomRecord',
    'MessageRecord',
    'PrivateMessageRecord',
    'parse_record',
    'parse_timestamp',
    'format_timestamp',
    'account_patch_to_wire',
    'room_draft_to_wire',
    'room_patch_to_wire',
]
