"""Database initialization and connection management.

Creates the schema on first boot and hands out one shared, lazily
opened connection per database path.
"""

import pathlib
import sqlite3
import threading

_SCHEMA = """
CREATE TABLE IF NOT EXISTS strategy_state (
    strategy TEXT NOT NULL,
    symbol TEXT NOT NULL,
    state_json TEXT NOT NULL,
    last_updated TEXT NOT NULL,
    PRIMARY KEY (strategy, symbol)
);

CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    strategy TEXT NOT NULL,
    symbol TEXT,
    type TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_activity_strategy
    ON activity_log (strategy, timestamp);
"""

_connections: dict[str, sqlite3.Connection] = {}
_lock = threading.Lock()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return the shared connection for *db_path*, opening it on first use.

    The connection is created with ``check_same_thread=False`` because the
    scheduler loop and the HTTP server may run on different threads.
    """
    with _lock:
        conn = _connections.get(db_path)
        if conn is None:
            if db_path != ":memory:":
                pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            _connections[db_path] = conn
        return conn


def init_db(db_path: str) -> None:
    """Create all tables and indexes that don't exist yet.

    Args:
        db_path: Path to the SQLite database file (or ``":memory:"``).
    """
    conn = get_connection(db_path)
    conn.executescript(_SCHEMA)
    conn.commit()


def close_all() -> None:
    """Close every shared connection (used on shutdown and in tests)."""
    with _lock:
        for conn in _connections.values():
            conn.close()
        _connections.clear()
