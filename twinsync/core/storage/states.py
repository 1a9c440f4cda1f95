"""
State repositories.

States are append-only per twin: ``save`` appends, ``retrieve_last`` returns
the newest snapshot or an empty state when the twin has none yet.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, List, Protocol

import redis.asyncio as redis

from twinsync.core.twin.models import State, StatesPage


class StateRepository(Protocol):
    async def save(self, state: State) -> None: ...

    async def retrieve_last(self, twin_id: str) -> State: ...

    async def retrieve_all(self, offset: int, limit: int, twin_id: str) -> StatesPage: ...


class InMemoryStateRepository:
    def __init__(self) -> None:
        self._states: Dict[str, List[State]] = defaultdict(list)
        self._lock: asyncio.Lock | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Lazily create lock to avoid issues with missing event loop at import time."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def save(self, state: State) -> None:
        async with self._get_lock():
            self._states[state.twin_id].append(state.model_copy(deep=True))

    async def retrieve_last(self, twin_id: str) -> State:
        async with self._get_lock():
            states = self._states.get(twin_id)
            if not states:
                return State()
            return states[-1].model_copy(deep=True)

    async def retrieve_all(self, offset: int, limit: int, twin_id: str) -> StatesPage:
        async with self._get_lock():
            states = self._states.get(twin_id, [])
            return StatesPage(
                total=len(states),
                offset=offset,
                limit=limit,
                states=[s.model_copy(deep=True) for s in states[offset:offset + limit]],
            )


class RedisStateRepository:
    """States as a JSON list per twin under ``{prefix}:states:{twin_id}``."""

    def __init__(self, client: redis.Redis, prefix: str = "twins") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, twin_id: str) -> str:
        return f"{self._prefix}:states:{twin_id}"

    async def save(self, state: State) -> None:
        await self._client.rpush(self._key(state.twin_id), state.model_dump_json())

    async def retrieve_last(self, twin_id: str) -> State:
        raw = await self._client.lindex(self._key(twin_id), -1)
        if raw is None:
            return State()
        return State.model_validate_json(raw)

    async def retrieve_all(self, offset: int, limit: int, twin_id: str) -> StatesPage:
        key = self._key(twin_id)
        total = await self._client.llen(key)
        raws = await self._client.lrange(key, offset, offset + limit - 1) if limit > 0 else []
        return StatesPage(
            total=total,
            offset=offset,
            limit=limit,
            states=[State.model_validate_json(raw) for raw in raws],
        )


__all__ = ["StateRepository", "InMemoryStateRepository", "RedisStateRepository"]
