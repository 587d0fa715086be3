"""
Durable storage for pending scheduled tasks.

This module provides the persistence layer the scheduler depends on:
- TaskStore: Abstract keyed store of ScheduledTask records
- InMemoryTaskStore: Process-local store for tests and dry runs
- SqliteTaskStore: File-backed store that survives process restarts

Both implementations make put() and delete() atomic per record, so a
concurrent fire-and-delete and cancel-and-delete can never both succeed:
the loser sees delete() return False and treats it as a no-op.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from loguru import logger
from pydantic import ValidationError

from .exceptions import PersistenceError
from .models import ScheduledTask


class TaskStore(ABC):
    """
    Keyed storage of ScheduledTask records, indexed by task id.

    Implementations raise PersistenceError for storage failures.
    """

    @abstractmethod
    def put(self, task: ScheduledTask) -> None:
        """Insert or replace the record for task.id."""

    @abstractmethod
    def get(self, task_id: str) -> Optional[ScheduledTask]:
        """Return the stored task, or None if absent."""

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        """
        Remove the record if present.

        Returns:
            bool: True if this call removed it, False if it was already gone
        """

    @abstractmethod
    def list_all(self) -> List[ScheduledTask]:
        """Every stored task, ordered by fire_at. Used at startup recovery."""

    def close(self) -> None:
        """Release underlying resources. Default implementation does nothing."""
        pass


class InMemoryTaskStore(TaskStore):
    """
    Dictionary-backed task store.

    Records are kept as serialized JSON so a stored task can never be
    mutated through a reference the caller still holds.

    Examples:
        >>> store = InMemoryTaskStore()
        >>> store.put(task)
        >>> store.delete(task.id)
        True
        >>> store.delete(task.id)
        False
    """

    def __init__(self):
        self._records: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, task: ScheduledTask) -> None:
        payload = task.model_dump_json()
        with self._lock:
            self._records[task.id] = payload

    def get(self, task_id: str) -> Optional[ScheduledTask]:
        with self._lock:
            payload = self._records.get(task_id)
        if payload is None:
            return None
        return ScheduledTask.model_validate_json(payload)

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._records.pop(task_id, None) is not None

    def list_all(self) -> List[ScheduledTask]:
        with self._lock:
            payloads = list(self._records.values())
        tasks = [ScheduledTask.model_validate_json(p) for p in payloads]
        return sorted(tasks, key=lambda t: t.fire_at)

    def __len__(self) -> int:
        return len(self._records)


SCHEMA = """
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id TEXT PRIMARY KEY,
    fire_at TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('pending', 'fired', 'cancelled')),
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_scheduled_tasks_fire_at ON scheduled_tasks(fire_at);
"""


class SqliteTaskStore(TaskStore):
    """
    SQLite-backed task store.

    The whole ScheduledTask is stored as JSON in `payload`; fire_at and
    status are duplicated into columns for ordering and inspection.

    Args:
        db_path: Database file. Parent directories are created as needed.
            Use ":memory:" for a throwaway database.

    Raises:
        PersistenceError: If the database cannot be opened or initialized
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self._lock = threading.RLock()
            with self.conn:
                self.conn.executescript(SCHEMA)
                self.conn.execute("PRAGMA journal_mode=WAL")
                self.conn.execute("PRAGMA synchronous=NORMAL")
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open task store at {self.db_path}: {e}") from e

        logger.debug(f"SqliteTaskStore opened at {self.db_path}")

    def put(self, task: ScheduledTask) -> None:
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    "INSERT OR REPLACE INTO scheduled_tasks "
                    "(id, fire_at, status, payload, created_at) VALUES (?, ?, ?, ?, ?)",
                    (
                        task.id,
                        task.fire_at.isoformat(),
                        task.status,
                        task.model_dump_json(),
                        task.created_at.isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to persist task {task.id}: {e}") from e

    def get(self, task_id: str) -> Optional[ScheduledTask]:
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT payload FROM scheduled_tasks WHERE id = ?", (task_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read task {task_id}: {e}") from e
        if row is None:
            return None
        return ScheduledTask.model_validate_json(row["payload"])

    def delete(self, task_id: str) -> bool:
        try:
            with self._lock, self.conn:
                cursor = self.conn.execute(
                    "DELETE FROM scheduled_tasks WHERE id = ?", (task_id,)
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete task {task_id}: {e}") from e
        return cursor.rowcount > 0

    def list_all(self) -> List[ScheduledTask]:
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT id, payload FROM scheduled_tasks ORDER BY fire_at"
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list scheduled tasks: {e}") from e

        tasks = []
        for row in rows:
            try:
                tasks.append(ScheduledTask.model_validate_json(row["payload"]))
            except ValidationError as e:
                logger.error(f"Skipping unreadable scheduled task {row['id']}: {e}")
        return tasks

    def close(self) -> None:
        with self._lock:
            self.conn.close()
