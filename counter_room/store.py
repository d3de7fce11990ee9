"""
Identity store: user id -> {name, count}.

Two backends:
- MemoryIdentityStore: per-process dict, lost on restart.
- RedisIdentityStore: one hash per user plus a sorted set that keeps roster order.
  Conditional updates run as Lua scripts so each call is a single atomic step at
  the server, no matter how many coordinators share the keyspace.

All methods are coroutines; callers must assume other handlers run while they await.
"""

from __future__ import annotations

import abc
import time
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .messages import UserRecord


class IdentityStoreError(RuntimeError):
    """The backing store failed (unreachable, write rejected, ...)."""


class IdentityStore(abc.ABC):
    @abc.abstractmethod
    async def get(self, user_id: str) -> Optional[UserRecord]: ...

    @abc.abstractmethod
    async def list_users(self) -> List[UserRecord]: ...

    @abc.abstractmethod
    async def create(self, record: UserRecord) -> UserRecord:
        """Insert `record`, replacing any record with the same id."""

    @abc.abstractmethod
    async def set_count(self, user_id: str, count: int) -> Optional[UserRecord]: ...

    @abc.abstractmethod
    async def set_name(self, user_id: str, name: str) -> Optional[UserRecord]: ...

    @abc.abstractmethod
    async def increment(self, user_id: str) -> Optional[UserRecord]:
        """Add one to the stored count in a single step. None if the record is gone."""

    @abc.abstractmethod
    async def remove(self, user_id: str) -> None: ...

    async def aclose(self) -> None:
        return None


class MemoryIdentityStore(IdentityStore):
    def __init__(self) -> None:
        # dicts keep insertion order, which is the roster order
        self._records: Dict[str, UserRecord] = {}

    async def get(self, user_id: str) -> Optional[UserRecord]:
        return self._records.get(user_id)

    async def list_users(self) -> List[UserRecord]:
        return list(self._records.values())

    async def create(self, record: UserRecord) -> UserRecord:
        self._records[record.id] = record
        return record

    async def set_count(self, user_id: str, count: int) -> Optional[UserRecord]:
        return self._update(user_id, count=count)

    async def set_name(self, user_id: str, name: str) -> Optional[UserRecord]:
        return self._update(user_id, name=name)

    async def increment(self, user_id: str) -> Optional[UserRecord]:
        current = self._records.get(user_id)
        if current is None:
            return None
        return self._update(user_id, count=current.count + 1)

    async def remove(self, user_id: str) -> None:
        self._records.pop(user_id, None)

    def _update(self, user_id: str, **changes) -> Optional[UserRecord]:
        current = self._records.get(user_id)
        if current is None:
            return None
        updated = current.model_copy(update=changes)
        self._records[user_id] = updated
        return updated


_LUA_SET_IF_EXISTS = r"""
local key = KEYS[1]
local field = ARGV[1]
local value = ARGV[2]

if redis.call("EXISTS", key) == 0 then
  return nil
end
redis.call("HSET", key, field, value)
return redis.call("HMGET", key, "name", "count")
"""


_LUA_INCREMENT_IF_EXISTS = r"""
local key = KEYS[1]

if redis.call("EXISTS", key) == 0 then
  return nil
end
redis.call("HINCRBY", key, "count", 1)
return redis.call("HMGET", key, "name", "count")
"""


class RedisIdentityStore(IdentityStore):
    """
    Key layout (prefix defaults to `counter:<room>`):
    - <prefix>:user:<id>  hash {name, count}
    - <prefix>:users      sorted set of ids, score = creation time
    """

    def __init__(self, client: redis.Redis, *, prefix: str) -> None:
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, room_name: str) -> "RedisIdentityStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            health_check_interval=30,
        )
        return cls(client, prefix=f"counter:{room_name}")

    def user_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}"

    @property
    def index_key(self) -> str:
        return f"{self._prefix}:users"

    @staticmethod
    def _record(user_id: str, name: Optional[str], count: Optional[str]) -> Optional[UserRecord]:
        if name is None:
            return None
        try:
            parsed = int(count) if count is not None else 0
        except ValueError:
            parsed = 0
        return UserRecord(id=user_id, name=name, count=max(parsed, 0))

    async def get(self, user_id: str) -> Optional[UserRecord]:
        try:
            name, count = await self._redis.hmget(self.user_key(user_id), "name", "count")
        except RedisError as exc:
            raise IdentityStoreError(f"get {user_id!r} failed: {exc}") from exc
        return self._record(user_id, name, count)

    async def list_users(self) -> List[UserRecord]:
        try:
            ids = await self._redis.zrange(self.index_key, 0, -1)
            if not ids:
                return []
            async with self._redis.pipeline(transaction=False) as pipe:
                for user_id in ids:
                    pipe.hmget(self.user_key(user_id), "name", "count")
                rows = await pipe.execute()
        except RedisError as exc:
            raise IdentityStoreError(f"list failed: {exc}") from exc

        records: List[UserRecord] = []
        for user_id, (name, count) in zip(ids, rows):
            record = self._record(user_id, name, count)
            if record is not None:
                records.append(record)
        return records

    async def create(self, record: UserRecord) -> UserRecord:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(self.user_key(record.id), mapping={"name": record.name, "count": record.count})
                pipe.zadd(self.index_key, {record.id: time.time()}, nx=True)
                await pipe.execute()
        except RedisError as exc:
            raise IdentityStoreError(f"create {record.id!r} failed: {exc}") from exc
        return record

    async def set_count(self, user_id: str, count: int) -> Optional[UserRecord]:
        return await self._set_field(user_id, "count", str(count))

    async def set_name(self, user_id: str, name: str) -> Optional[UserRecord]:
        return await self._set_field(user_id, "name", name)

    async def increment(self, user_id: str) -> Optional[UserRecord]:
        try:
            row = await self._redis.eval(_LUA_INCREMENT_IF_EXISTS, 1, self.user_key(user_id))
        except RedisError as exc:
            raise IdentityStoreError(f"increment {user_id!r} failed: {exc}") from exc
        if not row:
            return None
        return self._record(user_id, row[0], row[1])

    async def remove(self, user_id: str) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self.user_key(user_id))
                pipe.zrem(self.index_key, user_id)
                await pipe.execute()
        except RedisError as exc:
            raise IdentityStoreError(f"remove {user_id!r} failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._redis.aclose()

    async def _set_field(self, user_id: str, field: str, value: str) -> Optional[UserRecord]:
        # NOTE: redis-py `eval` is positional: eval(script, numkeys, *keys_and_args)
        try:
            row = await self._redis.eval(_LUA_SET_IF_EXISTS, 1, self.user_key(user_id), field, value)
        except RedisError as exc:
            raise IdentityStoreError(f"set {field} for {user_id!r} failed: {exc}") from exc
        if not row:
            return None
        return self._record(user_id, row[0], row[1])
