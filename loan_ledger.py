from typing import List, Optional

from database import Transaction, get_db_connection
from loan import Loan

_LOAN_COLUMNS = "id, member_id, book_id, borrowed_at, returned_at"


class LoanLedger:
    """Queries and mutations for the ``loans`` table.

    Everything except ``list_by_member`` runs inside the caller's transaction.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def count_active_loans_for_member(self, tx: Transaction, member_id: int) -> int:
        # Locked so two borrows by the same member serialize at the quota check.
        row = tx.fetch_one(
            "SELECT COUNT(*) FROM loans WHERE member_id = ? AND returned_at IS NULL",
            (member_id,),
            for_update=True,
        )
        return int(row[0])

    def has_active_loan(self, tx: Transaction, member_id: int, book_id: int) -> bool:
        # Advisory duplicate check; it does not ask for a lock.
        row = tx.fetch_one(
            """
            SELECT EXISTS(
                SELECT 1 FROM loans
                WHERE member_id = ? AND book_id = ? AND returned_at IS NULL
            )
            """,
            (member_id, book_id),
        )
        return bool(row[0])

    def create_loan(self, tx: Transaction, member_id: int, book_id: int) -> int:
        """Insert an active loan stamped with the store's clock; return its id."""
        cursor = tx.execute(
            "INSERT INTO loans (member_id, book_id, borrowed_at) VALUES (?, ?, CURRENT_TIMESTAMP)",
            (member_id, book_id),
        )
        return int(cursor.lastrowid)

    def get_by_id(self, tx: Transaction, loan_id: int) -> Optional[Loan]:
        row = tx.fetch_one(f"SELECT {_LOAN_COLUMNS} FROM loans WHERE id = ?", (loan_id,))
        return Loan.from_dict(dict(row)) if row else None

    def get_active_loan(self, tx: Transaction, member_id: int, book_id: int) -> Optional[Loan]:
        """Locked lookup of the loan for (member, book).

        Prefers the active loan; when there is none, returns the most recent
        returned one so the caller can tell "already returned" from "never
        borrowed". Returns None only if the pair has no loan at all.
        """
        row = tx.fetch_one(
            f"""
            SELECT {_LOAN_COLUMNS} FROM loans
            WHERE member_id = ? AND book_id = ?
            ORDER BY (returned_at IS NULL) DESC, id DESC
            LIMIT 1
            """,
            (member_id, book_id),
            for_update=True,
        )
        return Loan.from_dict(dict(row)) if row else None

    def mark_returned(self, tx: Transaction, loan_id: int) -> None:
        # Repeating this on a returned loan matches no row and is not an error;
        # the already-returned rule is checked by the engine before calling it.
        tx.execute(
            "UPDATE loans SET returned_at = CURRENT_TIMESTAMP WHERE id = ? AND returned_at IS NULL",
            (loan_id,),
        )

    def list_by_member(self, member_id: int) -> List[Loan]:
        """Loan history joined with book title/author, most recent first."""
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(
                """
                SELECT l.id, l.member_id, l.book_id, l.borrowed_at, l.returned_at,
                       b.title AS book_title, b.author AS book_author
                FROM loans l
                JOIN books b ON l.book_id = b.id
                WHERE l.member_id = ?
                ORDER BY l.borrowed_at DESC, l.id DESC
                """,
                (member_id,),
            ).fetchall()
            return [Loan.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()
