import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, List, Optional, Sequence

from dotenv import load_dotenv

from config import settings

# Make sure .env is loaded before LIBRARY_DB_FILE is read, whatever the import order.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override, also when loaded from .env)
# 2) settings.database_file, which defaults to library.db in the working directory
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.database_file or "library.db"


class LockNotHeldError(RuntimeError):
    """A locking read was issued in a transaction that cannot hold row locks."""


class TransactionCancelled(RuntimeError):
    """The caller's cancellation signal fired while the transaction was open."""


class IsolationLevel(Enum):
    """Isolation levels a caller can request, mapped onto SQLite BEGIN modes.

    SQLite has no row locks. A transaction begun IMMEDIATE takes the write
    reservation up front, which blocks every other locking transaction on the
    same file until commit or rollback. That is coarser than a row lock but
    gives the same guarantee to every read issued inside the transaction, so
    those levels are the ones allowed to do locking reads.
    """

    READ_UNCOMMITTED = "read uncommitted"
    READ_COMMITTED = "read committed"
    REPEATABLE_READ = "repeatable read"
    SERIALIZABLE = "serializable"

    @property
    def begin_mode(self) -> str:
        return _BEGIN_MODES[self]

    @property
    def allows_locking_reads(self) -> bool:
        return self.begin_mode != "DEFERRED"


_BEGIN_MODES = {
    IsolationLevel.READ_UNCOMMITTED: "DEFERRED",
    IsolationLevel.READ_COMMITTED: "IMMEDIATE",
    IsolationLevel.REPEATABLE_READ: "IMMEDIATE",
    IsolationLevel.SERIALIZABLE: "EXCLUSIVE",
}


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a new connection to the SQLite database.

    Connections are opened per call and never shared between threads. The
    driver's implicit transactions are disabled (``isolation_level=None``);
    multi-statement work goes through ``transaction()``.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.database_busy_timeout,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {int(settings.database_busy_timeout * 1000)};")
    return conn


class Transaction:
    """An open database transaction, passed explicitly to ledger operations."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        isolation: IsolationLevel,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.conn = conn
        self.isolation = isolation
        self.cancel = cancel
        self.committed = False

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise TransactionCancelled("transaction cancelled by caller")

    def _check_lock(self, for_update: bool) -> None:
        if for_update and not self.isolation.allows_locking_reads:
            raise LockNotHeldError(
                f"locking read requested in a {self.isolation.name} transaction"
            )

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        self._check_cancelled()
        return self.conn.execute(sql, params)

    def fetch_one(self, sql: str, params: Sequence[Any] = (), for_update: bool = False) -> Optional[sqlite3.Row]:
        self._check_lock(for_update)
        return self.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any] = (), for_update: bool = False) -> List[sqlite3.Row]:
        self._check_lock(for_update)
        return self.execute(sql, params).fetchall()

    def commit(self) -> None:
        self._check_cancelled()
        self.conn.commit()
        self.committed = True

    def rollback(self) -> None:
        # No-op when nothing is open, including after commit.
        self.conn.rollback()


@contextmanager
def transaction(
    isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
    cancel: Optional[threading.Event] = None,
    db_file: Optional[str] = None,
) -> Iterator[Transaction]:
    """Open a connection, BEGIN at ``isolation`` and yield the transaction.

    Rollback always runs on exit, so a block that raises (or forgets to
    commit) never leaves partial writes or held locks behind.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute(f"BEGIN {isolation.begin_mode}")
    except sqlite3.Error:
        conn.close()
        raise
    tx = Transaction(conn, isolation, cancel)
    try:
        yield tx
    finally:
        try:
            tx.rollback()
        finally:
            conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the books, members and loans tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets plain reads run while a borrow/return holds the write reservation.
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                stock INTEGER NOT NULL DEFAULT 0 CHECK (stock >= 0)
            );

            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE
            );

            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                borrowed_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                returned_at TIMESTAMP,
                FOREIGN KEY (member_id) REFERENCES members(id),
                FOREIGN KEY (book_id) REFERENCES books(id)
            );

            CREATE INDEX IF NOT EXISTS idx_books_title ON books(title);
            CREATE INDEX IF NOT EXISTS idx_loans_member_active ON loans(member_id, returned_at);
            CREATE INDEX IF NOT EXISTS idx_loans_member_book ON loans(member_id, book_id);
        """)
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialise the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug(f"Database ready at {db_file or DATABASE_FILE}")
