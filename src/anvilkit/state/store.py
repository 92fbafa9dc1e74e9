"""
Durable instance store.

Persists node instance records across supervisor restarts so the startup
reconciler can find instances a previous process left behind. Records are
inserted and updated, never deleted.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from anvilkit.node.types import InstanceRecord, NodeStatus
from anvilkit.utils.logging import get_logger

_logger = get_logger(__name__)


@runtime_checkable
class InstanceStore(Protocol):
    """Persistence operations used by the supervisor and reconciler."""

    async def upsert(self, instance_id: str, record: InstanceRecord) -> None:
        ...

    async def list_by_status(self, status: NodeStatus) -> List[InstanceRecord]:
        ...

    async def get(self, instance_id: str) -> Optional[InstanceRecord]:
        ...

    async def list_all(self, status: Optional[NodeStatus] = None) -> List[InstanceRecord]:
        ...

    def close(self) -> None:
        ...


class InMemoryInstanceStore:
    """
    Dict-backed store for tests and ephemeral runs.

    Example:
        >>> store = InMemoryInstanceStore()
        >>> await store.upsert(record.id, record)
    """

    def __init__(self) -> None:
        self._records: Dict[str, InstanceRecord] = {}

    async def upsert(self, instance_id: str, record: InstanceRecord) -> None:
        if record.id != instance_id:
            raise ValueError(f"Record id {record.id} does not match {instance_id}")
        self._records[instance_id] = record

    async def list_by_status(self, status: NodeStatus) -> List[InstanceRecord]:
        return sorted(
            (r for r in self._records.values() if r.status == status),
            key=lambda r: r.started_at,
            reverse=True,
        )

    async def get(self, instance_id: str) -> Optional[InstanceRecord]:
        return self._records.get(instance_id)

    async def list_all(self, status: Optional[NodeStatus] = None) -> List[InstanceRecord]:
        if status is not None:
            return await self.list_by_status(status)
        return sorted(self._records.values(), key=lambda r: r.started_at, reverse=True)

    def close(self) -> None:
        pass


_SCHEMA = """
CREATE TABLE IF NOT EXISTS anvil_instances (
    id TEXT PRIMARY KEY,
    port INTEGER NOT NULL,
    status TEXT NOT NULL,
    forked_from TEXT,
    chain_id INTEGER,
    started_at TEXT NOT NULL,
    stopped_at TEXT,
    pid INTEGER,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_anvil_status ON anvil_instances(status);
"""

_COLUMNS = "id, port, status, forked_from, chain_id, started_at, stopped_at, pid"


class SQLiteInstanceStore:
    """
    SQLite-backed durable store.

    Blocking sqlite3 calls run in a worker thread via ``asyncio.to_thread``;
    a lock serializes access to the shared connection.

    Example:
        ```python
        store = SQLiteInstanceStore("./anvilkit.db")
        running = await store.list_by_status(NodeStatus.RUNNING)
        store.close()
        ```
    """

    def __init__(self, db_path: str) -> None:
        """
        Open (and create if needed) the database.

        Args:
            db_path: File path, or ":memory:" for a private in-memory database
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    @staticmethod
    def _to_row(record: InstanceRecord) -> tuple:
        return (
            record.id,
            record.port,
            record.status.value,
            record.forked_from,
            record.chain_id,
            record.started_at.isoformat(),
            record.stopped_at.isoformat() if record.stopped_at else None,
            record.pid,
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> InstanceRecord:
        return InstanceRecord(
            id=row["id"],
            port=row["port"],
            status=NodeStatus(row["status"]),
            forked_from=row["forked_from"],
            chain_id=row["chain_id"],
            started_at=datetime.fromisoformat(row["started_at"]),
            stopped_at=datetime.fromisoformat(row["stopped_at"]) if row["stopped_at"] else None,
            pid=row["pid"],
        )

    def _upsert_sync(self, record: InstanceRecord) -> None:
        with self._lock:
            self._conn.execute(
                f"""
                INSERT INTO anvil_instances ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    port = excluded.port,
                    status = excluded.status,
                    forked_from = excluded.forked_from,
                    chain_id = excluded.chain_id,
                    stopped_at = excluded.stopped_at,
                    pid = excluded.pid
                """,
                self._to_row(record),
            )
            self._conn.commit()

    def _query_sync(self, sql: str, params: tuple = ()) -> List[InstanceRecord]:
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    async def upsert(self, instance_id: str, record: InstanceRecord) -> None:
        if record.id != instance_id:
            raise ValueError(f"Record id {record.id} does not match {instance_id}")
        await asyncio.to_thread(self._upsert_sync, record)

    async def list_by_status(self, status: NodeStatus) -> List[InstanceRecord]:
        return await asyncio.to_thread(
            self._query_sync,
            f"SELECT {_COLUMNS} FROM anvil_instances WHERE status = ? ORDER BY started_at DESC",
            (status.value,),
        )

    async def get(self, instance_id: str) -> Optional[InstanceRecord]:
        records = await asyncio.to_thread(
            self._query_sync,
            f"SELECT {_COLUMNS} FROM anvil_instances WHERE id = ?",
            (instance_id,),
        )
        return records[0] if records else None

    async def list_all(self, status: Optional[NodeStatus] = None) -> List[InstanceRecord]:
        if status is not None:
            return await self.list_by_status(status)
        return await asyncio.to_thread(
            self._query_sync,
            f"SELECT {_COLUMNS} FROM anvil_instances ORDER BY started_at DESC",
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        _logger.debug("Instance store closed", extra={"db_path": self.db_path})
