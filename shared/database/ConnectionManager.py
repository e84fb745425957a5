"""
SQLite connection management for the context metadata store.

One long-lived aiosqlite connection is shared by all repositories. Reads go
straight through it (WAL mode allows concurrent readers); writes go through
``transaction()``, which serialises writers with a semaphore and commits or
rolls back as a unit.

Usage
-----
    manager = ConnectionManager(helper_config)
    await manager.open(path)

    async with manager.transaction() as conn:
        await conn.execute("UPDATE ...")

    await manager.close()
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from shared.helper.HelperConfig import HelperConfig

_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA temp_store = MEMORY",
]


class ConnectionManager:
    """Owner of the single aiosqlite connection."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)
        self._path: Path | None = None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def open(self, path: Path | str) -> None:
        """
        Open the database file and apply pragmas.

        Args:
            path: Path to the SQLite database file; parent directories are created.
        """
        if self._conn is not None:
            self.logging.warning("[DB CONNECTION] open() called but connection already exists, ignoring")
            return

        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self._path)
        self._conn.row_factory = aiosqlite.Row

        for pragma in _PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.commit()

        self.logging.info("[DB CONNECTION] Opened connection to %s", self._path)

    async def close(self) -> None:
        """Flush the WAL and close the connection."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except aiosqlite.Error as exc:
            self.logging.error("[DB CONNECTION] WAL checkpoint failed during close: %s", exc)
        finally:
            await self._conn.close()
            self._conn = None
            self.logging.info("[DB CONNECTION] Connection closed")

    ##########################################
    ################ ACCESS ##################
    ##########################################

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw connection for read operations.

        Raises:
            RuntimeError: If the connection has not been opened yet.
        """
        if self._conn is None:
            raise RuntimeError("ConnectionManager: connection is not open. Call await open(path) at startup.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialised write transaction: commits on clean exit, rolls back on error.

        Raises:
            RuntimeError: If the connection is not open.
        """
        conn = self.connection

        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
