"""
DuckDB bootstrap and a fixed-size connection pool.

One database instance is opened per process; the pool hands out
``cursor()`` duplicates of it, each used by one request at a time.
"""

import contextlib
import logging
import os
import queue
import threading

import duckdb

from ..config import Config, DuckDBConfig
from .errors import Upstream

logger = logging.getLogger(__name__)

DEFAULT_ACQUIRE_TIMEOUT = 30.0


class ConnectionPool:
    """Fixed set of cursors over one DuckDB database."""

    def __init__(self, connection, size: int, timeout: float = DEFAULT_ACQUIRE_TIMEOUT):
        self._connection = connection
        self._idle: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self.size = size
        self.timeout = timeout
        for _ in range(size):
            self._idle.put(connection.cursor())

    def checkout(self):
        if self._closed:
            raise Upstream("Connection pool is closed")
        try:
            return self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise Upstream("Timed out waiting for a database connection") from None

    def release(self, cursor) -> None:
        if self._closed:
            cursor.close()
            return
        self._idle.put(cursor)

    @contextlib.contextmanager
    def acquire(self):
        cursor = self.checkout()
        try:
            yield cursor
        finally:
            self.release(cursor)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        while True:
            try:
                self._idle.get_nowait().close()
            except queue.Empty:
                break
        self._connection.close()


def connect(path: str):
    """Open the database file, read-only when possible."""
    if not path or path == ":memory:":
        logger.warning("No database path configured; using an empty in-memory database")
        return duckdb.connect()
    if not os.path.exists(path):
        raise Upstream(f"Database file not found: {path}")
    try:
        return duckdb.connect(path, read_only=True)
    except duckdb.Error as e:
        logger.warning("Cannot open %s read-only (%s); retrying read-write", path, e)
    try:
        return duckdb.connect(path)
    except duckdb.Error as e:
        raise Upstream(f"Cannot open database {path}: {e}", e) from e


def load_spatial(conn) -> None:
    """Load the spatial extension, installing it first if needed."""
    try:
        conn.load_extension("spatial")
        return
    except duckdb.Error:
        logger.info("DuckDB spatial extension not loaded; installing")
    try:
        conn.install_extension("spatial")
        conn.load_extension("spatial")
    except duckdb.Error as e:
        raise Upstream(f"DuckDB spatial extension not available: {e}", e) from e


def start_http_server(conn, settings: DuckDBConfig) -> bool:
    """Start DuckDB's community ``httpserver`` extension. Never fatal."""
    try:
        conn.execute("INSTALL httpserver FROM community")
        conn.execute("LOAD httpserver")
        conn.execute(
            "SELECT httpserve_start(?, ?, ?)",
            ["localhost", settings.port, settings.api_key],
        )
    except duckdb.Error as e:
        logger.error("Failed to start DuckDB httpserver extension: %s", e)
        return False
    logger.info("DuckDB httpserver extension listening on localhost:%d", settings.port)
    return True


def open_database(config: Config) -> ConnectionPool:
    conn = connect(config.database.path)
    load_spatial(conn)
    if config.duckdb.enable_http_server:
        start_http_server(conn, config.duckdb)
    pool = ConnectionPool(conn, config.database.pool_size)
    logger.info(
        "Opened %s with a pool of %d connections",
        config.database.path or ":memory:",
        pool.size,
    )
    return pool
