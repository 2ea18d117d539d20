from __future__ import annotations
import asyncio
import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass

import aiosqlite

from .errors import ConstraintViolation, StoreConnectionError
from .schema import MIGRATIONS, Migration
from ..utils.day_time import now_ms

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteResult:
    rowcount: int
    lastrowid: int | None


class Database:
    """
    Single aiosqlite connection shared by the whole process.

    Every write statement and every transaction runs under one asyncio
    lock. A transaction keeps the lock until it commits or rolls back, and
    statements issued by the owning task inside it run without re-locking.
    """

    def __init__(self, path: str):
        self.path = path
        self.conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None
        self._tx_conn: aiosqlite.Connection | None = None

    @property
    def is_connected(self) -> bool:
        return self.conn is not None

    async def connect(self):
        if self.path != ":memory:":
            folder = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(folder, exist_ok=True)
        try:
            self.conn = await aiosqlite.connect(self.path)
        except (sqlite3.Error, OSError) as e:
            self.conn = None
            raise StoreConnectionError(f"Could not open database {self.path}: {e}") from e
        self.conn.row_factory = aiosqlite.Row
        # WAL + enforced foreign keys
        await self.conn.execute("PRAGMA journal_mode=WAL;")
        await self.conn.execute("PRAGMA foreign_keys=ON;")
        await self.conn.execute("PRAGMA synchronous=NORMAL;")
        await self.conn.commit()
        log.info("Connected to %s", self.path)

    async def close(self):
        if self.conn:
            conn, self.conn = self.conn, None
            await conn.close()
            log.info("Closed %s", self.path)

    def _require(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise StoreConnectionError("Database not connected")
        return self.conn

    def _owns_tx(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    async def _run(self, sql: str, params) -> WriteResult:
        conn = self._require()
        if self._owns_tx() and conn is not self._tx_conn:
            raise StoreConnectionError("Connection was replaced during a transaction")
        try:
            cur = await conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(str(e)) from e
        except (sqlite3.ProgrammingError, ValueError) as e:
            # aiosqlite raises ValueError once its worker thread is gone
            raise StoreConnectionError(str(e)) from e
        result = WriteResult(cur.rowcount, cur.lastrowid)
        await cur.close()
        return result

    async def _rollback(self, conn: aiosqlite.Connection):
        try:
            await conn.rollback()
        except (sqlite3.Error, ValueError) as e:
            raise StoreConnectionError(f"Rollback failed on {self.path}: {e}") from e

    async def execute(self, sql: str, params=()) -> WriteResult:
        """Execute one write. Commits immediately unless the caller is inside transaction()."""
        if self._owns_tx():
            return await self._run(sql, params)
        async with self._write_lock:
            conn = self._require()
            try:
                result = await self._run(sql, params)
            except BaseException:
                # sqlite opened an implicit transaction for the failed DML
                if self.conn is conn and conn.in_transaction:
                    await self._rollback(conn)
                raise
            await conn.commit()
            return result

    @asynccontextmanager
    async def transaction(self):
        """BEGIN on enter, COMMIT on success, ROLLBACK on any exception. Nested use joins the outer one."""
        if self._owns_tx():
            yield self
            return
        async with self._write_lock:
            conn = self._require()
            self._tx_owner = asyncio.current_task()
            self._tx_conn = conn
            try:
                await conn.execute("BEGIN IMMEDIATE")
                yield self
                if self.conn is not conn:
                    raise StoreConnectionError("Connection was replaced during a transaction")
                await conn.commit()
            except BaseException:
                # A reconnect mid-transaction already discarded it
                if self.conn is conn:
                    await self._rollback(conn)
                raise
            finally:
                self._tx_owner = None
                self._tx_conn = None

    async def fetchone(self, sql: str, params=()):
        conn = self._require()
        try:
            cur = await conn.execute(sql, params)
        except (sqlite3.ProgrammingError, ValueError) as e:
            raise StoreConnectionError(str(e)) from e
        row = await cur.fetchone()
        await cur.close()
        return row

    async def fetchall(self, sql: str, params=()):
        conn = self._require()
        try:
            cur = await conn.execute(sql, params)
        except (sqlite3.ProgrammingError, ValueError) as e:
            raise StoreConnectionError(str(e)) from e
        rows = await cur.fetchall()
        await cur.close()
        return rows

    async def ensure_column(self, table: str, col: str, ddl: str):
        """Add column if missing (SQLite)."""
        rows = await self.fetchall(f"PRAGMA table_info({table});")
        existing = {r["name"] for r in rows}
        if col not in existing:
            await self.execute(f"ALTER TABLE {table} ADD COLUMN {col} {ddl};")
            log.info("Added column %s.%s", table, col)

    async def schema_version(self) -> int:
        row = await self.fetchone("SELECT MAX(version) AS version FROM schema_migrations")
        return int(row["version"]) if row and row["version"] is not None else 0

    async def migrate(self, migrations: list[Migration] | None = None) -> int:
        """Apply pending migrations in version order. Returns how many ran."""
        migrations = MIGRATIONS if migrations is None else migrations
        await self.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
          version INTEGER PRIMARY KEY,
          name TEXT NOT NULL UNIQUE,
          applied_at INTEGER NOT NULL
        );
        """)
        rows = await self.fetchall("SELECT version FROM schema_migrations")
        applied = {int(r["version"]) for r in rows}

        ran = 0
        for m in sorted(migrations, key=lambda m: m.version):
            if m.version in applied:
                continue
            log.info("Applying migration v%d: %s", m.version, m.name)
            try:
                async with self.transaction():
                    await m.apply(self)
                    await self.execute(
                        "INSERT INTO schema_migrations(version, name, applied_at) VALUES(?,?,?)",
                        (m.version, m.name, now_ms()),
                    )
            except Exception:
                log.exception("Migration v%d (%s) failed", m.version, m.name)
                raise
            ran += 1

        if ran:
            log.info("Schema at v%d (%d migration(s) applied)", await self.schema_version(), ran)
        return ran
