"""
REST adapter for the PocketBase-style backend.
Implements the sync engine's Backend contract over aiohttp.
Uses singleton pattern for aiohttp.ClientSession to enable connection pooling.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp

from RetroChat.config import config
from RetroChat.core.logging import get_logger
from RetroChat.core.sync.exceptions import (
    DeniedError,
    InvalidError,
    NetworkUnavailableError,
    NotFoundError,
    SyncError,
)
from RetroChat.core.sync.models import (
    Account,
    AccountPatch,
    Attachment,
    ChangeAction,
    Message,
    MessageDraft,
    PrivateMessage,
    PrivateMessageDraft,
    Room,
    RoomDraft,
    RoomPatch,
    RoomView,
    Scope,
    ScopeKind,
)
from .realtime import RealtimeConnection
from .records import (
    AccountRecord,
    MessageRecord,
    PrivateMessageRecord,
    RoomRecord,
    account_patch_to_wire,
    parse_record,
    room_draft_to_wire,
    room_patch_to_wire,
)

logger = get_logger(__name__)

FULL_LIST_PAGE_SIZE = 200


class SessionManager:
    """
    Singleton manager for aiohttp.ClientSession.

    Provides a shared session across all client instances,
    enabling connection pooling and reducing overhead.
    """

    _instance: Optional['SessionManager'] = None
    _session: Optional[aiohttp.ClientSession] = None
    _lock = asyncio.Lock()

    def __new__(cls) -> 'SessionManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    connector = aiohttp.TCPConnector(ttl_dns_cache=300, enable_cleanup_closed=True)
                    timeout = aiohttp.ClientTimeout(total=config.REQUEST_TIMEOUT_SECONDS, connect=10)
                    self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the shared session."""
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    @property
    def is_closed(self) -> bool:
        return self._session is None or self._session.closed


_session_manager = SessionManager()


def _error_for_status(status: int, message: str, details: Dict[str, Any]) -> SyncError:
    if status in (401, 403):
        return DeniedError(message, details)
    if status == 404:
        return NotFoundError(message, details)
    if status >= 500:
        return NetworkUnavailableError(message, details)
    return InvalidError(message, details)


def _quote(value: str) -> str:
    return json.dumps(value)


class _Subscription:
    __slots__ = ("scope", "handle")

    def __init__(self, scope: Scope, handle: int):
        self.scope = scope
        self.handle = handle


class PocketBaseClient:
    """
    Backend adapter for one authenticated user.

    Every failure is translated into the sync error taxonomy; aiohttp
    exceptions never leave this class.
    """

    def __init__(self, base_url: str = None):
        self.base_url = (base_url or config.BACKEND_URL).rstrip("/")
        self.files_url = f"{self.base_url}/api/files"
        self.token: Optional[str] = None
        self.account_id: Optional[str] = None
        self._realtime = RealtimeConnection(self.base_url, self._get_session, self._auth_headers)

    async def _get_session(self) -> aiohttp.ClientSession:
        return await _session_manager.get_session()

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": self.token} if self.token else {}

    async def _request(
        self,
        endpoint: str,
        method: str = "GET",
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        form: Optional[aiohttp.FormData] = None,
    ) -> Dict[str, Any]:
        """
        Make an HTTP request to the backend.

        Args:
            endpoint: Path below the base URL
            method: HTTP method
            data: JSON body
            params: Query string parameters
            form: Multipart body, used instead of ``data`` for uploads

        Returns:
            dict: Decoded JSON response (empty for 204)

        Raises:
            SyncError: mapped from the HTTP status or transport failure
        """
        url = f"{self.base_url}{endpoint}"
        try:
            session = await self._get_session()
            async with session.request(
                method=method,
                url=url,
                json=data if form is None else None,
                data=form,
                params=params,
                headers=self._auth_headers(),
            ) as response:
                if response.status == 204:
                    return {}
                try:
                    payload = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    payload = {}
                if response.status >= 400:
                    message = payload.get("message") if isinstance(payload, dict) else None
                    raise _error_for_status(
                        response.status,
                        message or f"Request failed with status {response.status}",
                        {"method": method, "endpoint": endpoint, "status": response.status},
                    )
                return payload if isinstance(payload, dict) else {"items": payload}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkUnavailableError(f"Request failed: {e}", {"method": method, "endpoint": endpoint}) from e

    async def _full_list(self, collection: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            payload = await self._request(
                f"/api/collections/{collection}/records",
                params={**params, "page": page, "perPage": FULL_LIST_PAGE_SIZE},
            )
            items.extend(payload.get("items", []))
            if page >= payload.get("totalPages", 1):
                return items
            page += 1

    # ==================== Authentication ====================

    async def authenticate(self, username: str, password: str) -> Account:
        """
        Sign in with username and password.

        Raises:
            DeniedError: wrong credentials
        """
        try:
            payload = await self._request(
                "/api/collections/users/auth-with-password",
                method="POST",
                data={"identity": username, "password": password},
            )
        except InvalidError as e:
            raise DeniedError("Invalid username or password", e.details) from e
        if "token" not in payload:
            raise DeniedError("Invalid username or password")
        self.token = payload["token"]
        account = AccountRecord.model_validate(payload.get("record", {})).to_account(self.files_url)
        self.account_id = account.id
        logger.info("Authenticated as %s", account.display_name)
        return account

    async def register(self, username: str, password: str) -> Account:
        payload = await self._request(
            "/api/collections/users/records",
            method="POST",
            data={
                "username": username,
                "password": password,
                "passwordConfirm": password,
                "role": "user",
                "isOnline": True,
            },
        )
        return AccountRecord.model_validate(payload).to_account(self.files_url)

    async def close(self) -> None:
        """Drop the realtime stream and the credentials."""
        await self._realtime.close()
        self.token = None
        self.account_id = None

    # ==================== Accounts ====================

    async def fetch_account(self, account_id: str) -> Account:
        payload = await self._request(f"/api/collections/users/records/{account_id}")
        return AccountRecord.model_validate(payload).to_account(self.files_url)

    async def list_accounts(self, sort: str = "username") -> List[Account]:
        items = await self._full_list("users", {"sort": sort})
        return [AccountRecord.model_validate(item).to_account(self.files_url) for item in items]

    async def update_account(self, account_id: str, patch: AccountPatch) -> Account:
        payload = await self._request(
            f"/api/collections/users/records/{account_id}",
            method="PATCH",
            data=account_patch_to_wire(patch),
        )
        return AccountRecord.model_validate(payload).to_account(self.files_url)

    # ==================== Rooms ====================

    async def list_rooms(self, sort: str = "created") -> List[Room]:
        items = await self._full_list("rooms", {"sort": sort})
        return [RoomRecord.model_validate(item).to_room() for item in items]

    async def create_room(self, draft: RoomDraft) -> Room:
        payload = await self._request(
            "/api/collections/rooms/records", method="POST", data=room_draft_to_wire(draft)
        )
        return RoomRecord.model_validate(payload).to_room()

    async def update_room(self, room_id: str, patch: RoomPatch) -> Room:
        payload = await self._request(
            f"/api/collections/rooms/records/{room_id}", method="PATCH", data=room_patch_to_wire(patch)
        )
        return RoomRecord.model_validate(payload).to_room()

    # ==================== Messages ====================

    async def list_messages(
        self,
        room_id: str,
        page: int = 1,
        page_size: int = 50,
        sort_desc: bool = True,
    ) -> List[Message]:
        payload = await self._request(
            "/api/collections/messages/records",
            params={
                "page": page,
                "perPage": page_size,
                "sort": "-created" if sort_desc else "created",
                "filter": f"room={_quote(room_id)}",
            },
        )
        return [MessageRecord.model_validate(item).to_message(self.files_url) for item in payload.get("items", [])]

    async def create_message(self, draft: MessageDraft) -> Message:
        fields = {"text": draft.body, "user": draft.author_id, "room": draft.room_id, "type": draft.kind.value}
        payload = await self._create("messages", fields, draft.attachment)
        return MessageRecord.model_validate(payload).to_message(self.files_url)

    async def list_private_messages(self, account_id: str) -> List[PrivateMessage]:
        quoted = _quote(account_id)
        items = await self._full_list(
            "private_messages",
            {"sort": "created", "filter": f"(sender={quoted} || recipient={quoted})"},
        )
        return [PrivateMessageRecord.model_validate(item).to_private_message(self.files_url) for item in items]

    async def create_private_message(self, draft: PrivateMessageDraft) -> PrivateMessage:
        fields = {
            "text": draft.body,
            "sender": draft.sender_id,
            "recipient": draft.recipient_id,
            "type": draft.kind.value,
        }
        payload = await self._create("private_messages", fields, draft.attachment)
        return PrivateMessageRecord.model_validate(payload).to_private_message(self.files_url)

    async def _create(self, collection: str, fields: Dict[str, Any], attachment: Optional[Attachment]) -> Dict[str, Any]:
        endpoint = f"/api/collections/{collection}/records"
        if attachment is None:
            return await self._request(endpoint, method="POST", data=fields)
        form = aiohttp.FormData()
        for name, value in fields.items():
            form.add_field(name, str(value))
        form.add_field(
            "attachment", attachment.content, filename=attachment.filename, content_type=attachment.content_type
        )
        return await self._request(endpoint, method="POST", form=form)

    # ==================== Realtime ====================

    async def subscribe(self, scope: Scope, on_event, on_error=None) -> _Subscription:
        topic = f"{scope.collection}/*"

        def deliver(action: str, data: Dict[str, Any]) -> None:
            try:
                change = ChangeAction(action)
                record = parse_record(scope.collection, data, self.files_url)
            except (ValueError, SyncError) as e:
                logger.warning("Dropping malformed %s event: %s", scope, e)
                return
            if self._in_scope(scope, record):
                on_event(change, record)

        handle = await self._realtime.add(topic, deliver, on_error)
        return _Subscription(scope, handle)

    async def unsubscribe(self, handle: _Subscription) -> None:
        await self._realtime.remove(handle.handle)

    @staticmethod
    def _in_scope(scope: Scope, record) -> bool:
        """The stream is per collection; narrow it to the scope's key."""
        if scope.kind is ScopeKind.ROOM_MESSAGES:
            return record.conversation == RoomView(scope.key)
        if scope.kind is ScopeKind.PRIVATE_MESSAGES:
            return record.involves(scope.key)
        return True


async def close_shared_session() -> None:
    await _session_manager.close()


__all__ = ['PocketBaseClient', 'SessionManager', 'close_shared_session']
