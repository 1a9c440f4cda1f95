"""
Twin repositories.

``InMemoryTwinRepository`` keeps twins in process memory for tests and
single-node setups; ``RedisTwinRepository`` stores each twin as a JSON
document with owner and thing indexes.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Protocol

import redis.asyncio as redis

from twinsync.core.errors import ConflictError, NotFoundError
from twinsync.core.twin.models import Metadata, Twin, TwinsPage


class TwinRepository(Protocol):
    async def save(self, twin: Twin) -> str: ...

    async def update(self, twin: Twin) -> None: ...

    async def retrieve_by_id(self, twin_id: str) -> Twin: ...

    async def retrieve_by_thing(self, thing_id: str) -> Twin: ...

    async def retrieve_all(
        self,
        owner: str,
        offset: int,
        limit: int,
        name: str = "",
        metadata: Optional[Metadata] = None,
    ) -> TwinsPage: ...

    async def remove(self, twin_id: str) -> None: ...


def _matches(twin: Twin, owner: str, name: str, metadata: Optional[Metadata]) -> bool:
    if twin.owner != owner:
        return False
    if name and twin.name != name:
        return False
    if metadata and twin.metadata != metadata:
        return False
    return True


class InMemoryTwinRepository:
    """Insertion-ordered twin store; returns copies so callers never alias stored twins."""

    def __init__(self) -> None:
        self._twins: Dict[str, Twin] = {}
        # twin id -> sequence of its last save/update; highest claim wins a thing
        self._claims: Dict[str, int] = {}
        self._seq = 0
        self._lock: asyncio.Lock | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Lazily create lock to avoid issues with missing event loop at import time."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def save(self, twin: Twin) -> str:
        async with self._get_lock():
            if twin.id in self._twins:
                raise ConflictError(f"twin {twin.id} already exists")
            self._twins[twin.id] = twin.model_copy(deep=True)
            self._claim(twin.id)
            return twin.id

    async def update(self, twin: Twin) -> None:
        async with self._get_lock():
            if twin.id not in self._twins:
                raise NotFoundError(f"twin {twin.id} not found")
            self._twins[twin.id] = twin.model_copy(deep=True)
            self._claim(twin.id)

    def _claim(self, twin_id: str) -> None:
        self._seq += 1
        self._claims[twin_id] = self._seq

    async def retrieve_by_id(self, twin_id: str) -> Twin:
        async with self._get_lock():
            twin = self._twins.get(twin_id)
            if twin is None:
                raise NotFoundError(f"twin {twin_id} not found")
            return twin.model_copy(deep=True)

    async def retrieve_by_thing(self, thing_id: str) -> Twin:
        async with self._get_lock():
            claimants = [t for t in self._twins.values() if t.thing_id == thing_id]
            if claimants:
                latest = max(claimants, key=lambda t: self._claims[t.id])
                return latest.model_copy(deep=True)
        raise NotFoundError(f"no twin for thing {thing_id}")

    async def retrieve_all(
        self,
        owner: str,
        offset: int,
        limit: int,
        name: str = "",
        metadata: Optional[Metadata] = None,
    ) -> TwinsPage:
        async with self._get_lock():
            matched = [t for t in self._twins.values() if _matches(t, owner, name, metadata)]
            page = matched[offset:offset + limit]
            return TwinsPage(
                total=len(matched),
                offset=offset,
                limit=limit,
                twins=[t.model_copy(deep=True) for t in page],
            )

    async def remove(self, twin_id: str) -> None:
        async with self._get_lock():
            self._twins.pop(twin_id, None)
            self._claims.pop(twin_id, None)


class RedisTwinRepository:
    """Twins as JSON documents under ``{prefix}:twin:{id}``.

    ``{prefix}:owner:{owner}`` is a sorted set of twin ids scored by
    insertion sequence. ``{prefix}:thing:{thing_id}`` is a sorted set of the twins
    claiming a thing, scored by the sequence of their last save or update; the
    highest score resolves the thing.
    """

    def __init__(self, client: redis.Redis, prefix: str = "twins") -> None:
        self._client = client
        self._prefix = prefix

    def _twin_key(self, twin_id: str) -> str:
        return f"{self._prefix}:twin:{twin_id}"

    def _owner_key(self, owner: str) -> str:
        return f"{self._prefix}:owner:{owner}"

    def _thing_key(self, thing_id: str) -> str:
        return f"{self._prefix}:thing:{thing_id}"

    async def save(self, twin: Twin) -> str:
        created = await self._client.set(self._twin_key(twin.id), twin.model_dump_json(), nx=True)
        if not created:
            raise ConflictError(f"twin {twin.id} already exists")
        seq = await self._client.incr(f"{self._prefix}:seq")
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zadd(self._owner_key(twin.owner), {twin.id: seq})
            if twin.thing_id:
                pipe.zadd(self._thing_key(twin.thing_id), {twin.id: seq})
            await pipe.execute()
        return twin.id

    async def update(self, twin: Twin) -> None:
        raw = await self._client.get(self._twin_key(twin.id))
        if raw is None:
            raise NotFoundError(f"twin {twin.id} not found")
        previous = Twin.model_validate_json(raw)
        seq = await self._client.incr(f"{self._prefix}:seq")
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._twin_key(twin.id), twin.model_dump_json())
            if previous.thing_id and previous.thing_id != twin.thing_id:
                pipe.zrem(self._thing_key(previous.thing_id), twin.id)
            if twin.thing_id:
                pipe.zadd(self._thing_key(twin.thing_id), {twin.id: seq})
            await pipe.execute()

    async def retrieve_by_id(self, twin_id: str) -> Twin:
        raw = await self._client.get(self._twin_key(twin_id))
        if raw is None:
            raise NotFoundError(f"twin {twin_id} not found")
        return Twin.model_validate_json(raw)

    async def retrieve_by_thing(self, thing_id: str) -> Twin:
        ids: List[str] = await self._client.zrange(self._thing_key(thing_id), 0, 0, desc=True)
        if not ids:
            raise NotFoundError(f"no twin for thing {thing_id}")
        return await self.retrieve_by_id(ids[0])

    async def retrieve_all(
        self,
        owner: str,
        offset: int,
        limit: int,
        name: str = "",
        metadata: Optional[Metadata] = None,
    ) -> TwinsPage:
        ids: List[str] = await self._client.zrange(self._owner_key(owner), 0, -1)
        raws = await self._client.mget([self._twin_key(i) for i in ids]) if ids else []
        twins = [Twin.model_validate_json(raw) for raw in raws if raw is not None]
        matched = [t for t in twins if _matches(t, owner, name, metadata)]
        return TwinsPage(
            total=len(matched),
            offset=offset,
            limit=limit,
            twins=matched[offset:offset + limit],
        )

    async def remove(self, twin_id: str) -> None:
        raw = await self._client.get(self._twin_key(twin_id))
        if raw is None:
            return
        twin = Twin.model_validate_json(raw)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(self._twin_key(twin_id))
            pipe.zrem(self._owner_key(twin.owner), twin_id)
            if twin.thing_id:
                pipe.zrem(self._thing_key(twin.thing_id), twin_id)
            await pipe.execute()

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["TwinRepository", "InMemoryTwinRepository", "RedisTwinRepository"]
