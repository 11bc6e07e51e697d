"""Keyed-document and sorted-set storage used for topic records and indices.

Topic records live in hashes (``topic:<tid>``) and every feed ordering lives in
a sorted set (``cid:<cid>:tids``, ``tid:<tid>:posts`` ...). Each primitive is
atomic on its own; callers compose them without transactions.

Two implementations share the ``KeyValueStore`` contract:

- ``RedisStore`` talks to Redis through ``redis.asyncio``.
- ``MemoryStore`` keeps everything in-process; it is used by the test-suite and
  for local development (``STORE_BACKEND=memory``).

Hash values always come back as strings, mirroring Redis; callers coerce them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

import redis.asyncio as aioredis

from forum_topics.core.settings import settings

logger = logging.getLogger(__name__)

Member = str | int
Score = int | float
BulkItem = tuple[str, Score, Member]


class KeyValueStore(Protocol):
    """Subset of keyed-store primitives the topic engine relies on."""

    async def exists(self, key: str) -> bool: ...

    async def exists_many(self, keys: Sequence[str]) -> list[bool]: ...

    async def delete(self, key: str) -> None: ...

    async def delete_all(self, keys: Sequence[str]) -> None: ...

    async def get_object(self, key: str) -> dict[str, str] | None: ...

    async def get_objects(
        self, keys: Sequence[str], fields: Sequence[str] | None = None
    ) -> list[dict[str, str | None] | None]: ...

    async def get_object_field(self, key: str, field: str) -> str | None: ...

    async def set_object(self, key: str, data: dict[str, Any]) -> None: ...

    async def set_object_field(self, key: str, field: str, value: Any) -> None: ...

    async def delete_object_field(self, key: str, field: str) -> None: ...

    async def delete_object_fields(self, key: str, fields: Sequence[str]) -> None: ...

    async def incr_object_field_by(self, key: str, field: str, by: int) -> int: ...

    async def sorted_set_add(self, key: str, score: Score, member: Member) -> None: ...

    async def sorted_set_add_many(
        self, key: str, scores: Sequence[Score], members: Sequence[Member]
    ) -> None: ...

    async def sorted_set_add_bulk(self, items: Sequence[BulkItem]) -> None: ...

    async def sorted_sets_add(
        self, keys: Sequence[str], scores: Score | Sequence[Score], member: Member
    ) -> None: ...

    async def sorted_set_remove(self, key: str, members: Member | Sequence[Member]) -> None: ...

    async def sorted_sets_remove(self, keys: Sequence[str], member: Member) -> None: ...

    async def sorted_sets_remove_range_by_score(
        self, keys: Sequence[str], min_score: Score | str, max_score: Score | str
    ) -> None: ...

    async def sorted_set_incr_by(self, key: str, by: Score, member: Member) -> float: ...

    async def sorted_set_card(self, key: str) -> int: ...

    async def sorted_set_score(self, key: str, member: Member) -> float | None: ...

    async def is_sorted_set_member(self, key: str, member: Member) -> bool: ...

    async def get_sorted_set_range(self, key: str, start: int, stop: int) -> list[str]: ...

    async def get_sorted_set_rev_range(self, key: str, start: int, stop: int) -> list[str]: ...

    async def get_sorted_set_range_with_scores(
        self, key: str, start: int, stop: int
    ) -> list[tuple[str, float]]: ...

    async def get_sorted_set_rev_range_with_scores(
        self, key: str, start: int, stop: int
    ) -> list[tuple[str, float]]: ...

    async def get_sorted_set_members(self, key: str) -> list[str]: ...

    async def get_sorted_sets_members(self, keys: Sequence[str]) -> list[list[str]]: ...

    async def close(self) -> None: ...


def _as_members(members: Member | Sequence[Member]) -> list[str]:
    if isinstance(members, (str, int)):
        return [str(members)]
    return [str(m) for m in members]


def _parse_bound(value: Score | str) -> float:
    # float() accepts "-inf" / "+inf" as Redis does
    return float(value)


def _slice_range(items: list[Any], start: int, stop: int) -> list[Any]:
    """Apply Redis inclusive range semantics (negative indices count from the end)."""
    size = len(items)
    if start < 0:
        start = max(size + start, 0)
    if stop < 0:
        stop = size + stop
    if start >= size or start > stop:
        return []
    return items[start : stop + 1]


class MemoryStore:
    """In-process implementation of ``KeyValueStore``."""

    def __init__(self) -> None:
        self._hashes: dict[str, dict[str, str]] = {}
        self._zsets: dict[str, dict[str, float]] = {}
        self._lock = asyncio.Lock()

    # --- keys ---------------------------------------------------------------
    async def exists(self, key: str) -> bool:
        return key in self._hashes or key in self._zsets

    async def exists_many(self, keys: Sequence[str]) -> list[bool]:
        return [await self.exists(key) for key in keys]

    async def delete(self, key: str) -> None:
        self._hashes.pop(key, None)
        self._zsets.pop(key, None)

    async def delete_all(self, keys: Sequence[str]) -> None:
        for key in keys:
            await self.delete(key)

    # --- hashes -------------------------------------------------------------
    async def get_object(self, key: str) -> dict[str, str] | None:
        data = self._hashes.get(key)
        return dict(data) if data else None

    async def get_objects(
        self, keys: Sequence[str], fields: Sequence[str] | None = None
    ) -> list[dict[str, str | None] | None]:
        results: list[dict[str, str | None] | None] = []
        for key in keys:
            data = self._hashes.get(key)
            if fields:
                source = data or {}
                results.append({field: source.get(field) for field in fields})
            else:
                results.append(dict(data) if data else None)
        return results

    async def get_object_field(self, key: str, field: str) -> str | None:
        return self._hashes.get(key, {}).get(field)

    async def set_object(self, key: str, data: dict[str, Any]) -> None:
        values = {field: str(value) for field, value in data.items() if value is not None}
        if values:
            self._hashes.setdefault(key, {}).update(values)

    async def set_object_field(self, key: str, field: str, value: Any) -> None:
        await self.set_object(key, {field: value})

    async def delete_object_field(self, key: str, field: str) -> None:
        await self.delete_object_fields(key, [field])

    async def delete_object_fields(self, key: str, fields: Sequence[str]) -> None:
        data = self._hashes.get(key)
        if data is None:
            return
        for field in fields:
            data.pop(field, None)
        if not data:
            self._hashes.pop(key, None)

    async def incr_object_field_by(self, key: str, field: str, by: int) -> int:
        async with self._lock:
            data = self._hashes.setdefault(key, {})
            value = int(data.get(field) or 0) + int(by)
            data[field] = str(value)
            return value

    # --- sorted sets --------------------------------------------------------
    def _ordered(self, key: str) -> list[tuple[str, float]]:
        zset = self._zsets.get(key, {})
        return sorted(zset.items(), key=lambda item: (item[1], item[0]))

    async def sorted_set_add(self, key: str, score: Score, member: Member) -> None:
        self._zsets.setdefault(key, {})[str(member)] = float(score)

    async def sorted_set_add_many(
        self, key: str, scores: Sequence[Score], members: Sequence[Member]
    ) -> None:
        if len(scores) != len(members):
            raise ValueError("scores and members must have the same length")
        for score, member in zip(scores, members):
            await self.sorted_set_add(key, score, member)

    async def sorted_set_add_bulk(self, items: Sequence[BulkItem]) -> None:
        for key, score, member in items:
            await self.sorted_set_add(key, score, member)

    async def sorted_sets_add(
        self, keys: Sequence[str], scores: Score | Sequence[Score], member: Member
    ) -> None:
        per_key = list(scores) if isinstance(scores, (list, tuple)) else [scores] * len(keys)
        for key, score in zip(keys, per_key):
            await self.sorted_set_add(key, score, member)

    async def sorted_set_remove(self, key: str, members: Member | Sequence[Member]) -> None:
        zset = self._zsets.get(key)
        if zset is None:
            return
        for member in _as_members(members):
            zset.pop(member, None)
        if not zset:
            self._zsets.pop(key, None)

    async def sorted_sets_remove(self, keys: Sequence[str], member: Member) -> None:
        for key in keys:
            await self.sorted_set_remove(key, member)

    async def sorted_sets_remove_range_by_score(
        self, keys: Sequence[str], min_score: Score | str, max_score: Score | str
    ) -> None:
        low, high = _parse_bound(min_score), _parse_bound(max_score)
        for key in keys:
            zset = self._zsets.get(key)
            if zset is None:
                continue
            for member in [m for m, s in zset.items() if low <= s <= high]:
                zset.pop(member)
            if not zset:
                self._zsets.pop(key, None)

    async def sorted_set_incr_by(self, key: str, by: Score, member: Member) -> float:
        async with self._lock:
            zset = self._zsets.setdefault(key, {})
            value = zset.get(str(member), 0.0) + float(by)
            zset[str(member)] = value
            return value

    async def sorted_set_card(self, key: str) -> int:
        return len(self._zsets.get(key, {}))

    async def sorted_set_score(self, key: str, member: Member) -> float | None:
        return self._zsets.get(key, {}).get(str(member))

    async def is_sorted_set_member(self, key: str, member: Member) -> bool:
        return str(member) in self._zsets.get(key, {})

    async def get_sorted_set_range(self, key: str, start: int, stop: int) -> list[str]:
        return [m for m, _ in _slice_range(self._ordered(key), start, stop)]

    async def get_sorted_set_rev_range(self, key: str, start: int, stop: int) -> list[str]:
        return [m for m, _ in _slice_range(self._ordered(key)[::-1], start, stop)]

    async def get_sorted_set_range_with_scores(
        self, key: str, start: int, stop: int
    ) -> list[tuple[str, float]]:
        return _slice_range(self._ordered(key), start, stop)

    async def get_sorted_set_rev_range_with_scores(
        self, key: str, start: int, stop: int
    ) -> list[tuple[str, float]]:
        return _slice_range(self._ordered(key)[::-1], start, stop)

    async def get_sorted_set_members(self, key: str) -> list[str]:
        return [m for m, _ in self._ordered(key)]

    async def get_sorted_sets_members(self, keys: Sequence[str]) -> list[list[str]]:
        return [await self.get_sorted_set_members(key) for key in keys]

    async def close(self) -> None:
        return None

    def flush(self) -> None:
        """Drop every key; used between tests."""
        self._hashes.clear()
        self._zsets.clear()


class RedisStore:
    """Redis-backed implementation of ``KeyValueStore``."""

    def __init__(self, client: aioredis.Redis | None = None, url: str | None = None) -> None:
        self._redis = client or aioredis.Redis.from_url(
            url or settings.redis_url,
            decode_responses=True,
        )

    # --- keys ---------------------------------------------------------------
    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(key))

    async def exists_many(self, keys: Sequence[str]) -> list[bool]:
        if not keys:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.exists(key)
            results = await pipe.execute()
        return [bool(r) for r in results]

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def delete_all(self, keys: Sequence[str]) -> None:
        if keys:
            await self._redis.delete(*keys)

    # --- hashes -------------------------------------------------------------
    async def get_object(self, key: str) -> dict[str, str] | None:
        data = await self._redis.hgetall(key)
        return data or None

    async def get_objects(
        self, keys: Sequence[str], fields: Sequence[str] | None = None
    ) -> list[dict[str, str | None] | None]:
        if not keys:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                if fields:
                    pipe.hmget(key, list(fields))
                else:
                    pipe.hgetall(key)
            raw = await pipe.execute()
        if fields:
            return [dict(zip(fields, values)) for values in raw]
        return [data or None for data in raw]

    async def get_object_field(self, key: str, field: str) -> str | None:
        return await self._redis.hget(key, field)

    async def set_object(self, key: str, data: dict[str, Any]) -> None:
        values = {field: str(value) for field, value in data.items() if value is not None}
        if values:
            await self._redis.hset(key, mapping=values)

    async def set_object_field(self, key: str, field: str, value: Any) -> None:
        await self.set_object(key, {field: value})

    async def delete_object_field(self, key: str, field: str) -> None:
        await self._redis.hdel(key, field)

    async def delete_object_fields(self, key: str, fields: Sequence[str]) -> None:
        if fields:
            await self._redis.hdel(key, *fields)

    async def incr_object_field_by(self, key: str, field: str, by: int) -> int:
        return int(await self._redis.hincrby(key, field, int(by)))

    # --- sorted sets --------------------------------------------------------
    async def sorted_set_add(self, key: str, score: Score, member: Member) -> None:
        await self._redis.zadd(key, {str(member): float(score)})

    async def sorted_set_add_many(
        self, key: str, scores: Sequence[Score], members: Sequence[Member]
    ) -> None:
        if len(scores) != len(members):
            raise ValueError("scores and members must have the same length")
        if members:
            await self._redis.zadd(key, {str(m): float(s) for s, m in zip(scores, members)})

    async def sorted_set_add_bulk(self, items: Sequence[BulkItem]) -> None:
        if not items:
            return
        async with self._redis.pipeline(transaction=False) as pipe:
            for key, score, member in items:
                pipe.zadd(key, {str(member): float(score)})
            await pipe.execute()

    async def sorted_sets_add(
        self, keys: Sequence[str], scores: Score | Sequence[Score], member: Member
    ) -> None:
        per_key = list(scores) if isinstance(scores, (list, tuple)) else [scores] * len(keys)
        await self.sorted_set_add_bulk(
            [(key, score, member) for key, score in zip(keys, per_key)]
        )

    async def sorted_set_remove(self, key: str, members: Member | Sequence[Member]) -> None:
        values = _as_members(members)
        if values:
            await self._redis.zrem(key, *values)

    async def sorted_sets_remove(self, keys: Sequence[str], member: Member) -> None:
        if not keys:
            return
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.zrem(key, str(member))
            await pipe.execute()

    async def sorted_sets_remove_range_by_score(
        self, keys: Sequence[str], min_score: Score | str, max_score: Score | str
    ) -> None:
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.zremrangebyscore(key, min_score, max_score)
            await pipe.execute()

    async def sorted_set_incr_by(self, key: str, by: Score, member: Member) -> float:
        return float(await self._redis.zincrby(key, float(by), str(member)))

    async def sorted_set_card(self, key: str) -> int:
        return int(await self._redis.zcard(key))

    async def sorted_set_score(self, key: str, member: Member) -> float | None:
        return await self._redis.zscore(key, str(member))

    async def is_sorted_set_member(self, key: str, member: Member) -> bool:
        return await self.sorted_set_score(key, member) is not None

    async def get_sorted_set_range(self, key: str, start: int, stop: int) -> list[str]:
        return list(await self._redis.zrange(key, start, stop))

    async def get_sorted_set_rev_range(self, key: str, start: int, stop: int) -> list[str]:
        return list(await self._redis.zrevrange(key, start, stop))

    async def get_sorted_set_range_with_scores(
        self, key: str, start: int, stop: int
    ) -> list[tuple[str, float]]:
        return [(m, float(s)) for m, s in await self._redis.zrange(key, start, stop, withscores=True)]

    async def get_sorted_set_rev_range_with_scores(
        self, key: str, start: int, stop: int
    ) -> list[tuple[str, float]]:
        return [
            (m, float(s)) for m, s in await self._redis.zrevrange(key, start, stop, withscores=True)
        ]

    async def get_sorted_set_members(self, key: str) -> list[str]:
        return await self.get_sorted_set_range(key, 0, -1)

    async def get_sorted_sets_members(self, keys: Sequence[str]) -> list[list[str]]:
        if not keys:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.zrange(key, 0, -1)
            return [list(r) for r in await pipe.execute()]

    async def close(self) -> None:
        await self._redis.aclose()


_store: KeyValueStore | None = None


def get_store() -> KeyValueStore:
    """Return the process-wide keyed store selected by ``STORE_BACKEND``."""
    global _store
    if _store is None:
        if settings.store_backend == "redis":
            logger.info("Using Redis keyed store at %s", settings.redis_url)
            _store = RedisStore()
        else:
            logger.info("Using in-process keyed store")
            _store = MemoryStore()
    return _store


async def close_store() -> None:
    """Close and forget the process-wide keyed store."""
    global _store
    if _store is not None:
        await _store.close()
        _store = None


def iter_keys(prefix: str, ids: Iterable[Member], suffix: str = "") -> list[str]:
    """Build ``<prefix><id><suffix>`` keys for a batch of ids."""
    return [f"{prefix}{i}{suffix}" for i in ids]
