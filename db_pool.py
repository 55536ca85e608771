"""Thread-safe SQLite connection pool for the session store."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator, List

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Hands out at most ``max_connections`` SQLite connections."""

    def __init__(self, database: str, max_connections: int = 5):
        if max_connections <= 0:
            raise ValueError("max_connections must be positive")
        self.database = database
        self.max_connections = max_connections
        self._pool: "Queue[sqlite3.Connection]" = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created: List[sqlite3.Connection] = []

    def _create_connection(self) -> sqlite3.Connection:
        # Connections move between threads through the pool.
        conn = sqlite3.connect(self.database, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection; uncommitted work is rolled back on return."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if len(self._created) < self.max_connections:
                    connection = self._create_connection()
                    self._created.append(connection)
                    logger.debug("Created new connection (total: %d)", len(self._created))
            if connection is None:
                connection = self._pool.get(block=True)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as exc:
                logger.error("Error returning connection to pool: %s", exc)
                with self._lock:
                    if connection in self._created:
                        self._created.remove(connection)
                connection.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection and commit when the block succeeds."""
        with self.get_connection() as connection:
            yield connection
            connection.commit()

    def close_all(self) -> None:
        with self._lock:
            while True:
                try:
                    self._pool.get(block=False)
                except Empty:
                    break
            for connection in self._created:
                try:
                    connection.close()
                except sqlite3.Error:
                    logger.debug("Ignoring error while closing pooled connection")
            self._created.clear()
