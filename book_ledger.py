"""Book records and their stock counter.

Stock only changes through ``adjust_stock``, a single conditional UPDATE run
inside the caller's transaction. The ``stock > 0`` guard on decrements is what
keeps stock from going negative, not any earlier read.
"""

import sqlite3
from typing import List, Optional

from book import Book
from database import Transaction, get_db_connection

_BOOK_COLUMNS = "id, title, author, stock"


class StockNotAdjusted(Exception):
    """The stock UPDATE matched no row: the book is missing or has no copies left."""

    def __init__(self, book_id: int, delta: int) -> None:
        super().__init__(f"stock of book {book_id} not adjusted by {delta:+d}")
        self.book_id = book_id
        self.delta = delta


class BookLedger:
    """Reads and stock mutations for the ``books`` table."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def get_by_id(self, book_id: int) -> Optional[Book]:
        """Plain read without a lock. Returns None when no row matches."""
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)
            ).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def get_by_id_for_locking(self, tx: Transaction, book_id: int) -> Optional[Book]:
        """Read the book inside ``tx`` holding the lock until it ends."""
        row = tx.fetch_one(
            f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,), for_update=True
        )
        return Book.from_dict(dict(row)) if row else None

    def adjust_stock(self, tx: Transaction, book_id: int, delta: int) -> None:
        if delta == 0:
            raise ValueError("delta must be non-zero")

        query = "UPDATE books SET stock = stock + ? WHERE id = ?"
        if delta < 0:
            query += " AND stock > 0"

        cursor = tx.execute(query, (delta, book_id))
        if cursor.rowcount == 0:
            raise StockNotAdjusted(book_id, delta)

    def decrement(self, tx: Transaction, book_id: int) -> None:
        self.adjust_stock(tx, book_id, -1)

    def increment(self, tx: Transaction, book_id: int) -> None:
        self.adjust_stock(tx, book_id, +1)

    # ------------------------- Catalog ------------------------- #
    def list_all(self) -> List[Book]:
        """All books ordered by title."""
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY title, id"
            ).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def add(self, title: str, author: str, stock: int = 1) -> Book:
        """Register a new book and return it with its assigned id."""
        title = (title or "").strip()
        author = (author or "").strip()
        if not title or not author:
            raise ValueError("Title and author are required.")
        if stock < 0:
            raise ValueError("Stock cannot be negative.")

        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "INSERT INTO books (title, author, stock) VALUES (?, ?, ?)",
                (title, author, stock),
            )
            return Book(id=cursor.lastrowid, title=title, author=author, stock=stock)
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Could not add book {title!r}: {e}") from e
        finally:
            conn.close()
