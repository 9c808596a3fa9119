from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Sequence

import aiosqlite


MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"
MEMORY_PATH = ":memory:"


class Transaction:
    """A write transaction on a dedicated connection.

    Exactly one of commit() or rollback() ends it; both close the connection.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self._finished = False

    async def commit(self) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            await self.conn.commit()
        finally:
            await self.conn.close()

    async def rollback(self) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            await self.conn.rollback()
        finally:
            await self.conn.close()


class Database:
    def __init__(self, path: str | Path, *, busy_timeout_ms: int = 5000) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        self.path = str(path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: aiosqlite.Connection | None = None

    async def open(self) -> None:
        if self._conn is None:
            self._conn = await self._connect()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("database is not open")
        return self._conn

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        await self.connection.execute(sql, params or ())

    async def fetch_all(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        rows = await self.connection.execute_fetchall(sql, params or ())
        return [dict(row) for row in rows]

    async def fetch_one(self, sql: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        async with self.connection.execute(sql, params or ()) as cur:
            row = await cur.fetchone()
        return dict(row) if row is not None else None

    async def begin(self) -> Transaction:
        conn = await self._connect()
        try:
            await conn.execute("begin immediate")
        except BaseException:
            await conn.close()
            raise
        return Transaction(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        tx = await self.begin()
        try:
            yield tx.conn
        except BaseException:
            await tx.rollback()
            raise
        await tx.commit()

    async def apply_migrations(self) -> list[str]:
        applied_now: list[str] = []
        conn = self.connection
        await conn.execute(
            """
            create table if not exists schema_migrations (
                version text primary key,
                applied_at text not null default (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            )
            """
        )
        rows = await conn.execute_fetchall("select version from schema_migrations")
        applied = {row[0] for row in rows}
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            version = path.name
            if version in applied:
                continue
            sql = path.read_text(encoding="utf-8")
            await conn.executescript(
                f"begin;\n{sql}\ninsert into schema_migrations(version) values ('{version}');\ncommit;"
            )
            applied_now.append(version)
        return applied_now

    async def _connect(self) -> aiosqlite.Connection:
        if self.path != MEMORY_PATH:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self.path, isolation_level=None)
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute(f"pragma busy_timeout = {int(self.busy_timeout_ms)}")
            if self.path != MEMORY_PATH:
                await conn.execute("pragma journal_mode = wal")
            await conn.execute("pragma synchronous = normal")
            await conn.execute("pragma cache_size = -10000")
        except BaseException:
            await conn.close()
            raise
        return conn
