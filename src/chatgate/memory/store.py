"""Conversation stores.

A store only persists whole windows: ``load(id) -> messages`` and
``save(id, messages)``.  Window bounds and locking live in
``ConversationMemory``.

The Redis store keeps one JSON list per conversation under
``chatgate:conversation:{id}`` with a sliding TTL.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol
from typing import runtime_checkable

from redis.asyncio import Redis  # type: ignore[import-untyped]

from chatgate.chat.schemas import Message

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "chatgate"
_CONVERSATION_KEY = f"{_PREFIX}:conversation"

_CLEAR_BATCH_SIZE = 100


@runtime_checkable
class ConversationStore(Protocol):
    """Persistence contract for conversation windows."""

    async def load(self, conversation_id: str) -> list[Message]: ...

    async def save(self, conversation_id: str, messages: list[Message]) -> None: ...

    async def delete(self, conversation_id: str) -> None: ...


# ---------------------------------------------------------------------------
# In-process store
# ---------------------------------------------------------------------------


class InMemoryConversationStore:
    """Process-lifetime store backed by a dict."""

    def __init__(self) -> None:
        self._windows: dict[str, list[Message]] = {}

    async def load(self, conversation_id: str) -> list[Message]:
        return list(self._windows.get(conversation_id, ()))

    async def save(self, conversation_id: str, messages: list[Message]) -> None:
        self._windows[conversation_id] = list(messages)

    async def delete(self, conversation_id: str) -> None:
        self._windows.pop(conversation_id, None)

    def conversation_ids(self) -> list[str]:
        return sorted(self._windows)

    async def close(self) -> None:
        self._windows.clear()


# ---------------------------------------------------------------------------
# Redis store
# ---------------------------------------------------------------------------


def _decode(raw: bytes | str) -> list[Message]:
    data = json.loads(raw)
    return [Message.model_validate(item) for item in data]


class RedisConversationStore:
    """Redis-backed conversation windows with TTL."""

    def __init__(self, redis: Redis, *, ttl: int = 3600) -> None:
        self._redis = redis
        self._ttl = ttl

    @staticmethod
    def _key(conversation_id: str) -> str:
        return f"{_CONVERSATION_KEY}:{conversation_id}"

    async def load(self, conversation_id: str) -> list[Message]:
        """Return the stored window, or ``[]`` if missing/expired."""
        raw = await self._redis.get(self._key(conversation_id))
        if raw is None:
            return []
        try:
            return _decode(raw)
        except (ValueError, TypeError):
            logger.warning(
                "Discarding malformed conversation window for %s", conversation_id
            )
            return []

    async def save(self, conversation_id: str, messages: list[Message]) -> None:
        """Replace the stored window and refresh its TTL."""
        data = json.dumps([m.model_dump(mode="json") for m in messages])
        await self._redis.set(self._key(conversation_id), data, ex=self._ttl)

    async def delete(self, conversation_id: str) -> None:
        await self._redis.delete(self._key(conversation_id))

    async def clear(self) -> None:
        """Remove all conversation windows.

        Deletes in batches to avoid loading all keys into memory at once.
        """
        batch: list = []
        async for key in self._redis.scan_iter(match=f"{_CONVERSATION_KEY}:*"):
            batch.append(key)
            if len(batch) >= _CLEAR_BATCH_SIZE:
                await self._redis.delete(*batch)
                batch.clear()
        if batch:
            await self._redis.delete(*batch)

    async def close(self) -> None:
        await self._redis.aclose()
