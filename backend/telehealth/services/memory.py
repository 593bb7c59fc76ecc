"""
Conversational memory
=====================

Per-consultation grounding for the AI assistant, kept outside the record store:

* memory facts   ``ai:memory:<consultation_id>:<key>`` -> text, durable until purged
* context window ``ai:context:<consultation_id>``      -> list, newest first,
  trimmed to the most recent ``context_window_size`` lines on every write

Usage:
    store = ConversationMemory.from_url("redis://localhost:6379/0")
    store = ConversationMemory(InMemoryBackend())   # development / tests
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from telehealth.config.constants import CONTEXT_KEY_PREFIX, MEMORY_KEY_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 50


def memory_key(consultation_id, fact_key: str) -> str:
    return f"{MEMORY_KEY_PREFIX}:{consultation_id}:{fact_key}"


def context_key(consultation_id) -> str:
    return f"{CONTEXT_KEY_PREFIX}:{consultation_id}"


# =============================================================================
# BACKENDS
# =============================================================================

class MemoryBackend(ABC):
    """Minimal key/value + list surface the memory store needs."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def get_prefixed(self, prefix: str) -> Dict[str, str]:
        """All keys starting with ``prefix`` mapped to their values."""
        pass

    @abstractmethod
    async def push_trim(self, key: str, value: str, max_len: int) -> None:
        """Prepend ``value`` and keep only the first ``max_len`` items."""
        pass

    @abstractmethod
    async def list_range(self, key: str) -> List[str]:
        pass

    @abstractmethod
    async def delete_prefixed(self, prefix: str, *extra_keys: str) -> int:
        pass

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryBackend(MemoryBackend):
    """Process-local backend for development and tests. Lost on restart."""

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._lists: Dict[str, List[str]] = {}

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def get_prefixed(self, prefix: str) -> Dict[str, str]:
        return {k: v for k, v in self._values.items() if k.startswith(prefix)}

    async def push_trim(self, key: str, value: str, max_len: int) -> None:
        items = self._lists.setdefault(key, [])
        items.insert(0, value)
        del items[max_len:]

    async def list_range(self, key: str) -> List[str]:
        return list(self._lists.get(key, []))

    async def delete_prefixed(self, prefix: str, *extra_keys: str) -> int:
        doomed = [k for k in self._values if k.startswith(prefix)]
        for k in doomed:
            del self._values[k]
        removed = len(doomed)
        for k in extra_keys:
            if self._lists.pop(k, None) is not None:
                removed += 1
        return removed


class RedisBackend(MemoryBackend):
    """Redis backend for production (``redis.asyncio`` client, decoded responses)."""

    def __init__(self, redis_client):
        self._redis = redis_client

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(key, value)

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(key)

    async def get_prefixed(self, prefix: str) -> Dict[str, str]:
        keys = [k async for k in self._redis.scan_iter(match=f"{prefix}*")]
        if not keys:
            return {}
        values = await self._redis.mget(keys)
        return {k: v for k, v in zip(keys, values) if v is not None}

    async def push_trim(self, key: str, value: str, max_len: int) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, max_len - 1)
            await pipe.execute()

    async def list_range(self, key: str) -> List[str]:
        return await self._redis.lrange(key, 0, -1)

    async def delete_prefixed(self, prefix: str, *extra_keys: str) -> int:
        keys = [k async for k in self._redis.scan_iter(match=f"{prefix}*")]
        keys.extend(extra_keys)
        if not keys:
            return 0
        return await self._redis.delete(*keys)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


# =============================================================================
# STORE
# =============================================================================

class ConversationMemory:
    """Memory facts and the rolling context window for every consultation."""

    def __init__(self, backend: MemoryBackend, context_window: int = DEFAULT_CONTEXT_WINDOW):
        self._backend = backend
        self.context_window = context_window

    @classmethod
    def from_url(cls, redis_url: Optional[str], context_window: int = DEFAULT_CONTEXT_WINDOW) -> "ConversationMemory":
        """Redis when a URL is configured, process memory otherwise."""
        if redis_url:
            import redis.asyncio as redis

            client = redis.from_url(redis_url, decode_responses=True)
            logger.info(f"Conversation memory using Redis: {redis_url}")
            return cls(RedisBackend(client), context_window=context_window)

        logger.info("Conversation memory using in-process backend (REDIS_URL not set)")
        return cls(InMemoryBackend(), context_window=context_window)

    @property
    def backend_name(self) -> str:
        return "redis" if isinstance(self._backend, RedisBackend) else "memory"

    # ------------------------------------------------------------------ facts
    async def set_memory(self, consultation_id, key: str, value: str) -> None:
        await self._backend.set(memory_key(consultation_id, key), value)
        logger.debug(f"Stored memory '{key}' for consultation {consultation_id}")

    async def get_memory(self, consultation_id, key: str) -> Optional[str]:
        return await self._backend.get(memory_key(consultation_id, key))

    async def get_all_memories(self, consultation_id) -> Dict[str, str]:
        prefix = memory_key(consultation_id, "")
        raw = await self._backend.get_prefixed(prefix)
        return {k[len(prefix):]: v for k, v in sorted(raw.items()) if v}

    # ---------------------------------------------------------------- context
    async def add_to_context(self, consultation_id, line: str) -> None:
        await self._backend.push_trim(context_key(consultation_id), line, self.context_window)

    async def get_context(self, consultation_id) -> List[str]:
        """Context lines, most recent first."""
        return await self._backend.list_range(context_key(consultation_id))

    # ------------------------------------------------------------------ purge
    async def clear_consultation_data(self, consultation_id) -> int:
        removed = await self._backend.delete_prefixed(
            memory_key(consultation_id, ""), context_key(consultation_id)
        )
        logger.info(f"Purged {removed} memory keys for consultation {consultation_id}")
        return removed

    async def ping(self) -> bool:
        try:
            return await self._backend.ping()
        except Exception as e:
            logger.warning(f"Conversation memory ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._backend.close()
