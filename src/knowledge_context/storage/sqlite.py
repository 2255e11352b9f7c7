# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""SQLite implementation of the Storage contract.

A single connection shared behind a lock; blocking calls run in a worker
thread via asyncio.to_thread so lookups fanned out with asyncio.gather do not
stall the event loop. SQLite errors are re-raised as StorageError, with
missing tables, columns and full-text modules flagged as unsupported.
"""

import asyncio
import logging
import re
import sqlite3
import threading
from importlib import resources
from pathlib import Path
from typing import Optional, Union

from knowledge_context.storage.protocols import Params, Row, RunResult, StorageError

logger = logging.getLogger(__name__)

_UNSUPPORTED = re.compile(r"no such (table|column|module|function)|fts5", re.IGNORECASE)


class SqliteStorage:
    """Knowledge store backed by a SQLite database file (or ``:memory:``).

    Example:
        >>> store = SqliteStorage(":memory:")
        >>> store.initialize_schema()
        >>> row = await store.get("SELECT 1 AS one")
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn = self._connect()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    def initialize_schema(self, full_text: bool = True) -> None:
        """Create the knowledge tables, and the FTS5 indexes when requested.

        Args:
            full_text: Also create the full-text indexes and their sync
                triggers. Without them lookups use substring search.
        """
        package = resources.files("knowledge_context.storage")
        scripts = [package.joinpath("schema.sql").read_text()]
        if full_text:
            scripts.append(package.joinpath("fts.sql").read_text())
        with self._lock:
            for script in scripts:
                self._conn.executescript(script)
            self._conn.commit()

    def _execute(self, query: str, params: Params) -> sqlite3.Cursor:
        try:
            return self._conn.execute(query, tuple(params))
        except sqlite3.Error as e:
            raise StorageError(str(e), unsupported=bool(_UNSUPPORTED.search(str(e)))) from e

    def _get(self, query: str, params: Params) -> Optional[Row]:
        with self._lock:
            row = self._execute(query, params).fetchone()
        return dict(row) if row is not None else None

    def _all(self, query: str, params: Params) -> list[Row]:
        with self._lock:
            rows = self._execute(query, params).fetchall()
        return [dict(r) for r in rows]

    def _run(self, query: str, params: Params) -> RunResult:
        with self._lock:
            cursor = self._execute(query, params)
            self._conn.commit()
        return RunResult(last_id=cursor.lastrowid, changes=cursor.rowcount)

    async def get(self, query: str, params: Params = ()) -> Optional[Row]:
        return await asyncio.to_thread(self._get, query, params)

    async def all(self, query: str, params: Params = ()) -> list[Row]:
        return await asyncio.to_thread(self._all, query, params)

    async def run(self, query: str, params: Params = ()) -> RunResult:
        return await asyncio.to_thread(self._run, query, params)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug(f"Closed knowledge store {self.db_path}")
