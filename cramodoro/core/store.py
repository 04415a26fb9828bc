"""
Durable string-keyed store shared by every component.

All reads and writes go through LocalStore; there is no in-memory source of
truth that survives a restart. Multi-key updates use ``transaction()`` so a
crash or an exception never leaves half of a change on disk.

    store = await LocalStore.open("sqlite+aiosqlite:///./local.db")
    await store.set("authToken", token)

    async with store.transaction() as tx:
        await tx.remove("localUser_old@example.com")
        await tx.set_json("localUser_new@example.com", record)
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .database import init_db, make_engine, make_sessionmaker
from .models import KeyValue


class _JsonHelpers:
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def get_json(self, key: str, default: Any = None) -> Any:
        raw = await self.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set_json(self, key: str, value: Any) -> None:
        await self.set(key, json.dumps(value))


class StoreTransaction(_JsonHelpers):
    """Read/write view bound to one open database transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, key: str) -> Optional[str]:
        row = await self._session.get(KeyValue, key)
        return None if row is None else row.value

    async def set(self, key: str, value: str) -> None:
        row = await self._session.get(KeyValue, key)
        if row is None:
            self._session.add(KeyValue(key=key, value=value))
        else:
            row.value = value
        await self._session.flush()

    async def remove(self, key: str) -> None:
        row = await self._session.get(KeyValue, key)
        if row is not None:
            await self._session.delete(row)
            await self._session.flush()

    async def get_all_keys(self) -> List[str]:
        result = await self._session.execute(select(KeyValue.key).order_by(KeyValue.key))
        return list(result.scalars().all())

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        for key, value in pairs:
            await self.set(key, value)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            await self.remove(key)


class LocalStore(_JsonHelpers):
    """Process-wide asynchronous key-value store on top of SQLite."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self.engine = engine
        self._sessions = session_factory or make_sessionmaker(engine)
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, database_url: str) -> "LocalStore":
        engine = make_engine(database_url)
        await init_db(engine)
        return cls(engine)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """
        Yield a StoreTransaction; commit on normal exit, roll back on error.

        Do not call the LocalStore write methods inside the block, use the
        yielded transaction instead (writes are serialized by one lock).
        """
        async with self._write_lock:
            async with self._sessions() as session:
                async with session.begin():
                    yield StoreTransaction(session)

    # ---------- reads ----------

    async def get(self, key: str) -> Optional[str]:
        async with self._sessions() as session:
            return await StoreTransaction(session).get(key)

    async def get_all_keys(self) -> List[str]:
        async with self._sessions() as session:
            return await StoreTransaction(session).get_all_keys()

    # ---------- writes ----------

    async def set(self, key: str, value: str) -> None:
        async with self.transaction() as tx:
            await tx.set(key, value)

    async def remove(self, key: str) -> None:
        async with self.transaction() as tx:
            await tx.remove(key)

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        async with self.transaction() as tx:
            await tx.multi_set(pairs)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        async with self.transaction() as tx:
            await tx.multi_remove(keys)
