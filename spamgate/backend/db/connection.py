"""Database connection manager with FK enforcement and WAL mode."""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

DEFAULT_DB_PATH = './data/spamgate.db'

_DB_DIR = Path(__file__).parent
SCHEMA_SQL_PATH = _DB_DIR / "schema.sql"
SEED_SQL_PATH = _DB_DIR / "seed.sql"


def resolve_db_path(db_path: str = None) -> str:
    """Return db_path, or DB_PATH from the environment, or the default."""
    if db_path is None:
        db_path = os.environ.get('DB_PATH', DEFAULT_DB_PATH)
    return db_path


def open_connection(db_path: str = None) -> sqlite3.Connection:
    """Open a long-lived connection (caller closes it).

    The connection may be shared across request threads, so same-thread
    checking is disabled.
    """
    db_path = resolve_db_path(db_path)
    if db_path != ':memory:':
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def get_connection(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager that yields an SQLite connection with FK enforcement and WAL mode.

    Args:
        db_path: Path to the SQLite database file. If None, reads from DB_PATH
                 environment variable, falling back to './data/spamgate.db'.

    Yields:
        sqlite3.Connection with row_factory set to sqlite3.Row.

    Example:
        with get_connection() as conn:
            rows = conn.execute("SELECT * FROM spam_decision_log").fetchall()
    """
    conn = None
    try:
        conn = open_connection(db_path)
        yield conn
    finally:
        if conn is not None:
            conn.close()


def _exec_sql_file(conn: sqlite3.Connection, path: Path) -> None:
    """Execute a .sql file, running PRAGMAs separately.

    executescript() commits and resets per-connection PRAGMAs, so they are
    stripped from the script and re-applied afterwards.
    """
    sql = path.read_text()
    lines = [line for line in sql.splitlines()
             if not line.strip().upper().startswith("PRAGMA")]
    conn.executescript("\n".join(lines))
    conn.execute("PRAGMA foreign_keys = ON")


def init_db(conn: sqlite3.Connection, seed: bool = True) -> None:
    """Create all tables (idempotent) and optionally insert default settings."""
    _exec_sql_file(conn, SCHEMA_SQL_PATH)
    if seed:
        _exec_sql_file(conn, SEED_SQL_PATH)
    conn.commit()
