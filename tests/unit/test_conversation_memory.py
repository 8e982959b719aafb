"""Conversation memory unit tests.

Tests exercise ``ConversationMemory`` and ``KeyedLock`` directly over the
in-process store.
"""

from __future__ import annotations

import asyncio

import pytest

from chatgate.chat.schemas import Message
from chatgate.config import MemoryConfig
from chatgate.memory import ConversationMemory
from chatgate.memory import InMemoryConversationStore
from chatgate.memory import KeyedLock
from chatgate.memory import RedisConversationStore
from chatgate.memory import build_conversation_store


def _exchange(i: int) -> list[Message]:
    return [Message.user(f"q{i}"), Message.assistant(f"a{i}")]


# -----------------------------------------------------------------------
# Window bounds
# -----------------------------------------------------------------------


class TestWindow:
    """Bounded FIFO windows."""

    async def test_unseen_conversation_is_empty(self, memory):
        conv = await memory.get("missing")
        assert conv.messages == []
        assert conv.max_window == 20

    @pytest.mark.parametrize("exchanges", [1, 5, 10, 11, 25])
    async def test_window_length_is_min_of_two_n_and_max(self, exchanges):
        memory = ConversationMemory(max_window=20)
        for i in range(exchanges):
            await memory.append("c1", _exchange(i))

        conv = await memory.get("c1")
        assert len(conv.messages) == min(2 * exchanges, 20)

        expected: list[str] = []
        for i in range(exchanges):
            expected += [f"q{i}", f"a{i}"]
        assert [m.content for m in conv.messages] == expected[-20:]

    async def test_conversations_are_independent(self, memory):
        await memory.append("a", _exchange(1))
        await memory.append("b", _exchange(2))
        assert [m.content for m in (await memory.get("a")).messages] == ["q1", "a1"]
        assert [m.content for m in (await memory.get("b")).messages] == ["q2", "a2"]

    async def test_oversized_stored_window_is_trimmed_on_load(self):
        store = InMemoryConversationStore()
        await store.save("c1", [Message.user(str(i)) for i in range(10)])
        memory = ConversationMemory(store, max_window=4)
        conv = await memory.get("c1")
        assert [m.content for m in conv.messages] == ["6", "7", "8", "9"]

    async def test_clear_removes_conversation(self, memory):
        await memory.append("c1", _exchange(1))
        await memory.clear("c1")
        assert (await memory.get("c1")).messages == []

    async def test_empty_append_does_not_create_entry(self):
        store = InMemoryConversationStore()
        memory = ConversationMemory(store)
        await memory.append("c1", [])
        assert store.conversation_ids() == []

    def test_max_window_must_be_positive(self):
        with pytest.raises(ValueError, match="max_window"):
            ConversationMemory(max_window=0)


# -----------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------


class TestExclusiveAccess:
    """Per-id serialization and lock lifecycle."""

    async def test_concurrent_appends_lose_no_updates(self):
        memory = ConversationMemory(max_window=200)

        async def _one(i: int) -> None:
            async with memory.exclusive("c1") as window:
                await asyncio.sleep(0)
                await window.append(_exchange(i))

        await asyncio.gather(*(_one(i) for i in range(50)))
        conv = await memory.get("c1")
        assert len(conv.messages) == 100

    async def test_same_id_runs_in_arrival_order(self, memory):
        order: list[int] = []

        async def _one(i: int) -> None:
            async with memory.exclusive("c1"):
                order.append(i)
                await asyncio.sleep(0.01)

        tasks = []
        for i in range(5):
            tasks.append(asyncio.create_task(_one(i)))
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)
        assert order == [0, 1, 2, 3, 4]

    async def test_distinct_ids_do_not_block_each_other(self, memory):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def _hold_a() -> None:
            async with memory.exclusive("a"):
                entered.set()
                await release.wait()

        holder = asyncio.create_task(_hold_a())
        await entered.wait()

        async with asyncio.timeout(1.0):
            async with memory.exclusive("b") as window:
                await window.append(_exchange(1))

        release.set()
        await holder
        assert len((await memory.get("b")).messages) == 2

    async def test_idle_locks_are_discarded(self, memory):
        for i in range(10):
            await memory.append(f"c{i}", _exchange(i))
        assert memory.active_locks == 0

    async def test_lock_released_when_block_raises(self, memory):
        with pytest.raises(RuntimeError):
            async with memory.exclusive("c1"):
                raise RuntimeError("boom")
        assert memory.active_locks == 0
        async with asyncio.timeout(1.0):
            await memory.append("c1", _exchange(1))


class TestKeyedLock:
    async def test_entry_shared_while_waiters_exist(self):
        locks = KeyedLock()
        release = asyncio.Event()

        async def _holder() -> None:
            async with locks.hold("k"):
                await release.wait()

        async def _waiter() -> None:
            async with locks.hold("k"):
                pass

        first = asyncio.create_task(_holder())
        await asyncio.sleep(0)
        second = asyncio.create_task(_waiter())
        await asyncio.sleep(0)
        assert len(locks) == 1

        release.set()
        await asyncio.gather(first, second)
        assert len(locks) == 0

    async def test_cancelled_waiter_releases_entry(self):
        locks = KeyedLock()
        release = asyncio.Event()

        async def _holder() -> None:
            async with locks.hold("k"):
                await release.wait()

        async def _waiter() -> None:
            async with locks.hold("k"):
                pass

        holder = asyncio.create_task(_holder())
        await asyncio.sleep(0)
        waiter = asyncio.create_task(_waiter())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        await holder
        assert len(locks) == 0


# -----------------------------------------------------------------------
# Store factory
# -----------------------------------------------------------------------


class TestBuildConversationStore:
    def test_memory_backend(self):
        store = build_conversation_store(MemoryConfig(backend="memory"))
        assert isinstance(store, InMemoryConversationStore)

    def test_redis_backend(self):
        store = build_conversation_store(
            MemoryConfig(backend="redis", redis_url="redis://localhost:6379/0")
        )
        assert isinstance(store, RedisConversationStore)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError, match="Unsupported memory_config.backend"):
            build_conversation_store(MemoryConfig(backend="sqlite"))
