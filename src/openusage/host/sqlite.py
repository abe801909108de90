# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Structured local-database capability, scoped to a single SQLite file."""

import asyncio
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config import defaults


def is_locked_error(error: sqlite3.Error) -> bool:
    """True when another process holds the database lock past the busy timeout."""
    text = str(error).lower()
    return isinstance(error, sqlite3.OperationalError) and (
        "locked" in text or "busy" in text
    )


class SqliteStore:
    """
    Read/write access to one SQLite database.

    Each call opens and closes its own connection on a worker thread; the
    database usually belongs to another application that keeps it open
    and may hold its lock for up to the busy timeout. sqlite3.Error
    propagates to the caller.
    """

    def __init__(self, path: Path, timeout: Optional[float] = None):
        self.path = Path(path)
        self.timeout = timeout if timeout is not None else defaults.SQLITE_BUSY_TIMEOUT_SECONDS

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.path), timeout=self.timeout)

    def _query(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        with closing(self._connect()) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    def _execute(self, sql: str, params: Sequence[Any]) -> None:
        with closing(self._connect()) as conn:
            with conn:
                conn.execute(sql, tuple(params))

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._query, sql, params)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        await asyncio.to_thread(self._execute, sql, params)
