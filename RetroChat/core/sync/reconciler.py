"""
Message reconciliation.

Merges persisted messages (initial fetch, periodic resync, change stream,
own sends) with ephemeral ones (bot replies) into one ordered timeline per
conversation. Re-delivery of a record is harmless: the first arrival of an
id wins and later copies are dropped.
"""

from itertools import chain
from typing import Dict, Iterable, List, Set

from .models import ConversationKey, Message


def merge(persisted: Iterable[Message], ephemeral: Iterable[Message]) -> List[Message]:
    """
    Merge two message sequences into one timeline.

    Ordered by ``created_at`` with ties kept in arrival order (persisted
    first, then ephemeral, each in the given order). Duplicate ids keep the
    earliest arrival. Pure: calling it again with the same inputs, or with
    its own output as ``persisted``, gives the same result.
    """
    seen: Set[str] = set()
    entries = []
    for sequence, message in enumerate(chain(persisted, ephemeral)):
        if message.id in seen:
            continue
        seen.add(message.id)
        entries.append((message.created_at, sequence, message))
    entries.sort(key=lambda entry: (entry[0], entry[1]))
    return [message for _, _, message in entries]


class ConversationTimeline:
    """In-memory message sets of one conversation."""

    def __init__(self):
        self._persisted: List[Message] = []
        self._persisted_ids: Set[str] = set()
        self._ephemeral: List[Message] = []

    @property
    def persisted(self) -> List[Message]:
        return self._persisted.copy()

    @property
    def ephemeral(self) -> List[Message]:
        return self._ephemeral.copy()

    def add_persisted(self, messages: Iterable[Message]) -> int:
        """Append messages not seen before; returns how many were new."""
        added = 0
        for message in messages:
            if message.id in self._persisted_ids:
                continue
            self._persisted.append(message)
            self._persisted_ids.add(message.id)
            added += 1
        return added

    def add_ephemeral(self, message: Message) -> None:
        self._ephemeral.append(message)

    def clear_ephemeral(self) -> None:
        self._ephemeral = []

    def trim(self, keep_last: int = 0) -> int:
        """
        Drop persisted messages except the newest ``keep_last``.

        Ephemeral messages are never touched. Returns how many were dropped.
        """
        if len(self._persisted) <= keep_last:
            return 0
        ordered = merge(self._persisted, ())
        kept = ordered[-keep_last:] if keep_last > 0 else []
        kept_ids = {m.id for m in kept}
        dropped = len(self._persisted) - len(kept)
        self._persisted = [m for m in self._persisted if m.id in kept_ids]
        self._persisted_ids = kept_ids
        return dropped

    def messages(self) -> List[Message]:
        return merge(self._persisted, self._ephemeral)

    def __len__(self) -> int:
        return len(self._persisted) + len(self._ephemeral)


class MessageReconciler:
    """Owns the timelines of every conversation seen in this session."""

    def __init__(self):
        self._timelines: Dict[ConversationKey, ConversationTimeline] = {}

    def timeline(self, key: ConversationKey) -> ConversationTimeline:
        if key not in self._timelines:
            self._timelines[key] = ConversationTimeline()
        return self._timelines[key]

    def keys(self) -> List[ConversationKey]:
        return list(self._timelines)

    def ingest(self, key: ConversationKey, messages: Iterable[Message]) -> int:
        """Add persisted messages to a conversation; returns how many were new."""
        return self.timeline(key).add_persisted(messages)

    def add_ephemeral(self, key: ConversationKey, message: Message) -> None:
        self.timeline(key).add_ephemeral(message)

    def clear_ephemeral(self, key: ConversationKey) -> None:
        timeline = self._timelines.get(key)
        if timeline is not None:
            timeline.clear_ephemeral()

    def messages(self, key: ConversationKey) -> List[Message]:
        timeline = self._timelines.get(key)
        return timeline.messages() if timeline is not None else []

    def trim(self, key: ConversationKey, keep_last: int = 0) -> int:
        timeline = self._timelines.get(key)
        return timeline.trim(keep_last) if timeline is not None else 0

    def reset(self) -> None:
        self._timelines.clear()
