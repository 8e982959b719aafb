"""Bounded per-conversation message windows with per-id serialization.

``ConversationMemory.exclusive(id)`` holds an ``asyncio.Lock`` dedicated to
that id for the whole read → invoke → write exchange.  Locks are created
lazily, shared by waiters in arrival order and dropped once idle, so
unrelated conversations never contend.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from chatgate.chat.schemas import Message
from chatgate.memory.schemas import Conversation
from chatgate.memory.store import ConversationStore
from chatgate.memory.store import InMemoryConversationStore

logger = logging.getLogger(__name__)


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLock:
    """One FIFO ``asyncio.Lock`` per key, discarded when nobody holds or awaits it."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class ConversationWindow:
    """Exclusive handle on one conversation, valid inside ``exclusive()``."""

    def __init__(self, store: ConversationStore, conversation: Conversation) -> None:
        self._store = store
        self._conversation = conversation

    @property
    def conversation_id(self) -> str:
        return self._conversation.id

    @property
    def messages(self) -> list[Message]:
        return list(self._conversation.messages)

    async def append(self, messages: list[Message]) -> None:
        """Append *messages* in order, evict oldest first, persist."""
        if not messages:
            return
        evicted = self._conversation.append(list(messages))
        await self._store.save(self._conversation.id, self._conversation.messages)
        if evicted:
            logger.debug(
                "Evicted %d message(s) from conversation %s (window=%d)",
                evicted,
                self._conversation.id,
                self._conversation.max_window,
            )


class ConversationMemory:
    """Per-conversation windows over a ``ConversationStore``."""

    def __init__(
        self,
        store: ConversationStore | None = None,
        *,
        max_window: int = 20,
    ) -> None:
        if max_window < 1:
            raise ValueError("max_window must be >= 1")
        self._store = store if store is not None else InMemoryConversationStore()
        self._max_window = max_window
        self._locks = KeyedLock()

    @property
    def max_window(self) -> int:
        return self._max_window

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def active_locks(self) -> int:
        """Number of conversation ids currently held or awaited."""
        return len(self._locks)

    @asynccontextmanager
    async def exclusive(self, conversation_id: str) -> AsyncIterator[ConversationWindow]:
        """Serialize access to *conversation_id* for the duration of the block."""
        async with self._locks.hold(conversation_id):
            conversation = await self._load(conversation_id)
            yield ConversationWindow(self._store, conversation)

    async def get(self, conversation_id: str) -> Conversation:
        """Return a snapshot of the conversation (empty if unseen)."""
        async with self.exclusive(conversation_id) as window:
            return Conversation(
                id=conversation_id,
                messages=window.messages,
                max_window=self._max_window,
            )

    async def append(self, conversation_id: str, messages: list[Message]) -> Conversation:
        """Append outside of an advisor exchange; returns the new snapshot."""
        async with self.exclusive(conversation_id) as window:
            await window.append(messages)
            return Conversation(
                id=conversation_id,
                messages=window.messages,
                max_window=self._max_window,
            )

    async def clear(self, conversation_id: str) -> None:
        async with self._locks.hold(conversation_id):
            await self._store.delete(conversation_id)

    async def _load(self, conversation_id: str) -> Conversation:
        messages = await self._store.load(conversation_id)
        if len(messages) > self._max_window:
            messages = messages[-self._max_window :]
        return Conversation(
            id=conversation_id,
            messages=messages,
            max_window=self._max_window,
        )
