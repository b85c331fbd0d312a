"""
Realtime change stream over Server-Sent Events.

The backend pushes record changes on one SSE connection per client:

1. ``GET /api/realtime`` opens the stream; its first event, ``PB_CONNECT``,
   carries the client id.
2. ``POST /api/realtime`` with ``{"clientId", "subscriptions"}`` sets the
   topics (``<collection>/*``) delivered on that stream.
3. Each change arrives as an event named after its topic with
   ``{"action": ..., "record": {...}}`` as data.

One RealtimeConnection multiplexes every listener onto a single stream and
reopens it lazily. When the stream drops, every listener's error callback
fires and the listeners are forgotten; re-adding them reconnects.
"""

import asyncio
import itertools
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from RetroChat.core.logging import get_logger
from RetroChat.core.sync.exceptions import NetworkUnavailableError, SyncError

logger = get_logger(__name__)

CONNECT_EVENT = "PB_CONNECT"
CONNECT_TIMEOUT_SECONDS = 15.0

RawCallback = Callable[[str, Dict[str, Any]], None]
ErrorCallback = Callable[[Exception], None]


class ServerSentEvent:
    """A single parsed SSE event."""

    __slots__ = ("event", "data", "id")

    def __init__(self, event: str = "message", data: str = "", id: Optional[str] = None):
        self.event = event
        self.data = data
        self.id = id

    def json(self) -> Any:
        return json.loads(self.data) if self.data else None


class EventStreamParser:
    """Incremental parser for ``text/event-stream`` lines."""

    def __init__(self):
        self._event = ""
        self._data: List[str] = []
        self._id: Optional[str] = None

    def feed_line(self, line: str) -> Optional[ServerSentEvent]:
        """Consume one line (without its terminator); returns an event on a blank line."""
        if not line:
            if not self._data and not self._event:
                return None
            event = ServerSentEvent(self._event or "message", "\n".join(self._data), self._id)
            self._event, self._data = "", []
            return event
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._id = value
        return None


class RealtimeConnection:
    """Shared SSE stream with topic listeners."""

    def __init__(
        self,
        base_url: str,
        get_session: Callable[[], Awaitable[aiohttp.ClientSession]],
        get_headers: Callable[[], Dict[str, str]],
    ):
        self.base_url = base_url.rstrip("/")
        self._get_session = get_session
        self._get_headers = get_headers
        self._client_id: Optional[str] = None
        self._response: Optional[aiohttp.ClientResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._listeners: Dict[int, Tuple[str, RawCallback, Optional[ErrorCallback]]] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._client_id is not None

    @property
    def topics(self) -> List[str]:
        return sorted({topic for topic, _, _ in self._listeners.values()})

    async def add(self, topic: str, on_event: RawCallback, on_error: Optional[ErrorCallback] = None) -> int:
        """
        Listen to ``topic``; returns a handle for ``remove``.

        Raises:
            NetworkUnavailableError: the stream could not be opened
            SyncError: the backend rejected the subscription
        """
        async with self._lock:
            if not self.connected:
                await self._connect()
            handle = next(self._ids)
            self._listeners[handle] = (topic, on_event, on_error)
            try:
                await self._submit()
            except SyncError:
                self._listeners.pop(handle, None)
                raise
            return handle

    async def remove(self, handle: int) -> None:
        async with self._lock:
            if self._listeners.pop(handle, None) is None:
                return
            if not self._listeners:
                await self._disconnect()
            elif self.connected:
                await self._submit()

    async def close(self) -> None:
        async with self._lock:
            self._listeners.clear()
            await self._disconnect()

    async def _connect(self) -> None:
        session = await self._get_session()
        url = f"{self.base_url}/api/realtime"
        try:
            response = await session.get(
                url,
                headers={"Accept": "text/event-stream", **self._get_headers()},
                timeout=aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT_SECONDS, sock_read=None),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkUnavailableError("Realtime stream unavailable", {"url": url, "error": str(e)}) from e
        if response.status != 200:
            response.release()
            raise NetworkUnavailableError("Realtime stream refused", {"url": url, "status": response.status})

        parser = EventStreamParser()
        try:
            client_id = await asyncio.wait_for(self._await_connect(response, parser), CONNECT_TIMEOUT_SECONDS)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            response.close()
            raise NetworkUnavailableError("Realtime handshake failed", {"error": str(e)}) from e

        self._response = response
        self._client_id = client_id
        self._reader = asyncio.get_running_loop().create_task(self._read_events(response, parser))
        logger.info("Realtime stream connected (client %s)", client_id)

    @staticmethod
    async def _await_connect(response: aiohttp.ClientResponse, parser: EventStreamParser) -> str:
        async for raw in response.content:
            event = parser.feed_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
            if event is not None and event.event == CONNECT_EVENT:
                payload = event.json() or {}
                return payload.get("clientId") or event.id or ""
        raise ValueError("stream closed before handshake")

    async def _submit(self) -> None:
        """Send the current topic set to the backend."""
        session = await self._get_session()
        url = f"{self.base_url}/api/realtime"
        body = {"clientId": self._client_id, "subscriptions": self.topics}
        try:
            async with session.post(url, json=body, headers=self._get_headers()) as response:
                if response.status >= 400:
                    text = await response.text()
                    if response.status >= 500:
                        raise NetworkUnavailableError("Realtime subscribe failed", {"status": response.status})
                    raise SyncError("Realtime subscribe rejected", {"status": response.status, "body": text})
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkUnavailableError("Realtime subscribe failed", {"error": str(e)}) from e

    async def _read_events(self, response: aiohttp.ClientResponse, parser: EventStreamParser) -> None:
        error: Exception = NetworkUnavailableError("Realtime stream closed")
        try:
            async for raw in response.content:
                event = parser.feed_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
                if event is not None:
                    self._dispatch(event)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            error = NetworkUnavailableError("Realtime stream broke", {"error": str(e)})
        if self._response is response:
            self._on_lost(error)

    def _dispatch(self, event: ServerSentEvent) -> None:
        try:
            payload = event.json()
        except ValueError:
            logger.warning("Ignoring malformed realtime event %s", event.event)
            return
        if not isinstance(payload, dict) or "record" not in payload:
            return
        action = payload.get("action", "")
        for topic, on_event, _ in list(self._listeners.values()):
            if topic == event.event:
                try:
                    on_event(action, payload["record"])
                except Exception:
                    logger.exception("Realtime listener for %s failed", topic)

    def _on_lost(self, error: Exception) -> None:
        logger.warning("Realtime stream lost: %s", error)
        listeners = list(self._listeners.values())
        self._listeners.clear()
        self._reset()
        for _, _, on_error in listeners:
            if on_error is not None:
                on_error(error)

    def _reset(self) -> None:
        if self._response is not None:
            self._response.close()
        self._response = None
        self._client_id = None
        self._reader = None

    async def _disconnect(self) -> None:
        reader = self._reader
        self._reset()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        logger.debug("Realtime stream closed")


__all__ = ['RealtimeConnection', 'EventStreamParser', 'ServerSentEvent']
