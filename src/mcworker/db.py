"""Worker bookkeeping in SQLite.

All functions are async using aiosqlite. Single module-level connection,
initialized by init_database(). The lifecycle service never touches this
module; the HTTP layer records what it created so operators can list it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from mcworker.logger import logger

_db: aiosqlite.Connection | None = None

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS workers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    container TEXT NOT NULL UNIQUE,
    volume TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'created',
    port INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_workers_status ON workers(status);
"""


@dataclass
class Worker:
    id: int
    name: str
    container: str
    volume: str
    status: str
    port: int
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, str | int]:
        return {
            "id": self.id,
            "name": self.name,
            "container": self.container,
            "volume": self.volume,
            "status": self.status,
            "port": self.port,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db


def _row_to_worker(row: aiosqlite.Row) -> Worker:
    return Worker(
        id=row["id"],
        name=row["name"],
        container=row["container"],
        volume=row["volume"],
        status=row["status"],
        port=row["port"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def init_database(path: Path) -> None:
    """Initialize the database connection and schema."""
    global _db
    path.parent.mkdir(parents=True, exist_ok=True)
    _db = await aiosqlite.connect(str(path))
    _db.row_factory = aiosqlite.Row
    await _db.executescript(_SCHEMA)
    await _db.commit()
    logger.info("Database ready", path=str(path))


async def _init_test_database() -> None:
    """Create an in-memory database for tests.

    Uses ``stop()`` + thread join instead of ``await close()`` because
    pytest-asyncio creates a new event loop per test function, and the
    previous connection's worker thread still targets the old loop.
    """
    global _db
    if _db is not None:
        _db.stop()
        if _db._thread is not None and _db._thread.is_alive():
            _db._thread.join(timeout=2)
    _db = await aiosqlite.connect(":memory:")
    _db.row_factory = aiosqlite.Row
    await _db.executescript(_SCHEMA)
    await _db.commit()


async def close_database() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


async def record_worker(*, name: str, container: str, volume: str, port: int) -> Worker:
    db = _get_db()
    now = _now()
    cursor = await db.execute(
        """INSERT INTO workers (name, container, volume, status, port, created_at, updated_at)
        VALUES (?, ?, ?, 'created', ?, ?, ?)""",
        (name, container, volume, port, now, now),
    )
    await db.commit()
    return Worker(
        id=cursor.lastrowid or 0,
        name=name,
        container=container,
        volume=volume,
        status="created",
        port=port,
        created_at=now,
        updated_at=now,
    )


async def set_worker_status(container: str, status: str) -> bool:
    """Update a worker's status. Returns False when the container is unknown."""
    db = _get_db()
    cursor = await db.execute(
        "UPDATE workers SET status = ?, updated_at = ? WHERE container = ?",
        (status, _now(), container),
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_worker(container: str) -> bool:
    db = _get_db()
    cursor = await db.execute("DELETE FROM workers WHERE container = ?", (container,))
    await db.commit()
    return cursor.rowcount > 0


async def get_worker(container: str) -> Worker | None:
    db = _get_db()
    async with db.execute("SELECT * FROM workers WHERE container = ?", (container,)) as cursor:
        row = await cursor.fetchone()
    return _row_to_worker(row) if row else None


async def list_workers() -> list[Worker]:
    db = _get_db()
    async with db.execute("SELECT * FROM workers ORDER BY id") as cursor:
        rows = await cursor.fetchall()
    return [_row_to_worker(r) for r in rows]
