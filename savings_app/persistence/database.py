"""SQLite connection handling shared by the relayer stores."""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..errors import PersistenceError
from ..logging.config import get_logger


class SQLiteDatabase:
    """One SQLite file; every write commits durably before returning."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.logger = get_logger("savings.store").bind(db_path=str(self.db_path))
        self.lock = threading.Lock()

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with proper error handling."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA synchronous=FULL")
            yield conn
        except sqlite3.Error:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    @contextmanager
    def write(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction; commits on success, raises PersistenceError on failure."""
        with self.lock:
            try:
                with self.connection() as conn:
                    yield conn
                    conn.commit()
            except sqlite3.Error as e:
                self.logger.error("Database write failed", operation=operation, error=str(e))
                raise PersistenceError(f"{operation} failed: {e}", operation=operation,
                                       target=str(self.db_path)) from e

    @contextmanager
    def read(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.connection() as conn:
                yield conn
        except sqlite3.Error as e:
            self.logger.error("Database read failed", operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e}", operation=operation,
                                   target=str(self.db_path)) from e
