# tests/test_memory.py
import pytest

from telehealth.services.memory import (
    ConversationMemory,
    InMemoryBackend,
    context_key,
    memory_key,
)


def test_key_layout():
    assert memory_key(7, "advice_1") == "ai:memory:7:advice_1"
    assert context_key(7) == "ai:context:7"


async def test_set_and_get_memory(memory):
    await memory.set_memory(1, "allergy", "penicillin")
    assert await memory.get_memory(1, "allergy") == "penicillin"
    assert await memory.get_memory(1, "missing") is None
    assert await memory.get_memory(2, "allergy") is None


async def test_get_all_memories_strips_prefix(memory):
    await memory.set_memory(1, "b", "second")
    await memory.set_memory(1, "a", "first")
    await memory.set_memory(10, "a", "other consultation")

    assert await memory.get_all_memories(1) == {"a": "first", "b": "second"}
    assert await memory.get_all_memories(10) == {"a": "other consultation"}
    assert await memory.get_all_memories(3) == {}


async def test_context_is_newest_first_and_bounded(memory):
    for i in range(60):
        await memory.add_to_context(1, f"patient: line {i}")

    context = await memory.get_context(1)
    assert len(context) == 50
    assert context[0] == "patient: line 59"
    assert context[-1] == "patient: line 10"


async def test_custom_window_size():
    small = ConversationMemory(InMemoryBackend(), context_window=3)
    for word in ("one", "two", "three", "four"):
        await small.add_to_context(5, word)
    assert await small.get_context(5) == ["four", "three", "two"]


async def test_clear_consultation_data_only_touches_that_consultation(memory):
    await memory.set_memory(1, "advice_1", "rest")
    await memory.add_to_context(1, "doctor: rest")
    await memory.set_memory(10, "advice_2", "fluids")
    await memory.add_to_context(10, "doctor: fluids")

    removed = await memory.clear_consultation_data(1)

    assert removed == 2
    assert await memory.get_all_memories(1) == {}
    assert await memory.get_context(1) == []
    assert await memory.get_all_memories(10) == {"advice_2": "fluids"}
    assert await memory.get_context(10) == ["doctor: fluids"]


async def test_in_process_backend_without_redis_url():
    store = ConversationMemory.from_url(None)
    assert store.backend_name == "memory"
    assert await store.ping() is True
    await store.close()


@pytest.mark.parametrize("window", [1, 50])
async def test_window_never_exceeded(window):
    store = ConversationMemory(InMemoryBackend(), context_window=window)
    for i in range(window + 5):
        await store.add_to_context(1, str(i))
    assert len(await store.get_context(1)) == window
