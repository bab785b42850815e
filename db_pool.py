"""Pooled SQLite connections for the profile database."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, LifoQueue
from typing import Generator, List

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Hand out at most ``max_connections`` SQLite connections across threads."""

    def __init__(self, database: str, max_connections: int = 5, timeout: float = 5.0):
        self.database = database
        self.max_connections = max_connections
        self.timeout = timeout
        self._idle: LifoQueue[sqlite3.Connection] = LifoQueue(maxsize=max_connections)
        self._all: List[sqlite3.Connection] = []
        self._lock = threading.Lock()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self.timeout * 1000)}")
        return conn

    def _acquire(self) -> sqlite3.Connection:
        try:
            return self._idle.get(block=False)
        except Empty:
            pass
        with self._lock:
            if len(self._all) < self.max_connections:
                conn = self._open()
                self._all.append(conn)
                logger.debug("Opened SQLite connection %d/%d to %s", len(self._all), self.max_connections, self.database)
                return conn
        try:
            return self._idle.get(block=True, timeout=self.timeout)
        except Empty:
            raise sqlite3.OperationalError(
                f"no SQLite connection to {self.database} became free within {self.timeout}s"
            ) from None

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection; uncommitted work is rolled back on return."""
        conn = self._acquire()
        try:
            yield conn
        finally:
            try:
                conn.rollback()
                self._idle.put(conn, block=False)
            except sqlite3.Error:
                logger.exception("Discarding broken SQLite connection to %s", self.database)
                self._discard(conn)

    def _discard(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            if conn in self._all:
                self._all.remove(conn)
        try:
            conn.close()
        except sqlite3.Error:
            logger.debug("Ignoring close() failure on discarded connection")

    def close_all(self) -> None:
        with self._lock:
            connections, self._all = self._all, []
        while True:
            try:
                self._idle.get(block=False)
            except Empty:
                break
        for conn in connections:
            conn.close()
