import os
from typing import Any, Dict, List, Optional
import threading

import database
from book import Book
from book_ledger import BookLedger
from database import get_db_connection, initialize_database
from errors import LoanError
from loan import LoanDetail, LoanHistoryItem, MemberLoans
from loan_engine import LoanEngine
from loan_ledger import LoanLedger
from member import Member
from member_directory import MemberDirectory


class Library:
    """Wires the ledgers and the loan engine together over one database file."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # Each instance keeps its own file; nothing here touches database.DATABASE_FILE
        self.db_file = db_file or os.environ.get("LIBRARY_DB_FILE") or database.DATABASE_FILE

        # Make sure the schema exists on every start
        initialize_database(self.db_file)

        self.books = BookLedger(self.db_file)
        self.members = MemberDirectory(self.db_file)
        self.loans = LoanLedger(self.db_file)
        self.engine = LoanEngine(self.books, self.members, self.loans, db_file=self.db_file)

    # ------------------------- Loans ------------------------- #
    def borrow(self, member_id: int, book_id: int, cancel: Optional[threading.Event] = None) -> LoanDetail:
        return self.engine.borrow(member_id, book_id, cancel=cancel)

    def return_book(self, member_id: int, book_id: int, cancel: Optional[threading.Event] = None) -> None:
        self.engine.return_book(member_id, book_id, cancel=cancel)

    def get_member_loans(self, member_id: int) -> MemberLoans:
        """Loan history of a member with derived status and display timestamps."""
        member = self.members.get_by_id(member_id)
        if member is None:
            raise LoanError.not_found("Member not found")
        items = [LoanHistoryItem.from_loan(loan) for loan in self.loans.list_by_member(member_id)]
        return MemberLoans(member_id=member.id, member_name=member.name, loans=items)

    # ------------------------- Catalog ------------------------- #
    def list_books(self) -> List[Book]:
        return self.books.list_all()

    def get_book(self, book_id: int) -> Book:
        book = self.books.get_by_id(book_id)
        if book is None:
            raise LoanError.not_found("Book not found")
        return book

    def add_book(self, title: str, author: str, stock: int = 1) -> Book:
        return self.books.add(title, author, stock)

    def add_member(self, name: str, email: str) -> Member:
        return self.members.add(name, email)

    def get_member(self, member_id: int) -> Optional[Member]:
        return self.members.get_by_id(member_id)

    def get_statistics(self) -> Dict[str, Any]:
        conn = get_db_connection(self.db_file)
        try:
            total_books, total_stock = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(stock), 0) FROM books"
            ).fetchone()
            total_members = conn.execute("SELECT COUNT(*) FROM members").fetchone()[0]
            active_loans = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE returned_at IS NULL"
            ).fetchone()[0]
            return {
                "total_books": total_books,
                "total_stock": total_stock,
                "total_members": total_members,
                "active_loans": active_loans,
            }
        finally:
            conn.close()

    def close(self) -> None:
        """Compatibility helper for tests; connections are opened per call so there is nothing to close."""
        return None


def seed_demo_data(lib: Library) -> Dict[str, List[Any]]:
    """Register a small demo catalog and a few members."""
    books = [
        lib.add_book("Bumi Manusia", "Pramoedya Ananta Toer", stock=2),
        lib.add_book("Laskar Pelangi", "Andrea Hirata", stock=3),
        lib.add_book("Clean Code", "Robert C. Martin", stock=1),
        lib.add_book("The Pragmatic Programmer", "Andrew Hunt", stock=4),
    ]
    members = [
        lib.add_member("Alice Reader", "alice@example.com"),
        lib.add_member("Budi Santoso", "budi@example.com"),
        lib.add_member("Citra Lestari", "citra@example.com"),
    ]
    return {"books": books, "members": members}
