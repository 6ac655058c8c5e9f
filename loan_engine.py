"""Borrow and return workflows.

Each call runs as one database transaction: ordered locking reads, business
checks, then writes and commit. Any failure rolls the transaction back and
surfaces as a ``LoanError`` whose code says what went wrong.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from book_ledger import BookLedger, StockNotAdjusted
from config import settings
from database import IsolationLevel, LockNotHeldError, TransactionCancelled, transaction
from errors import ErrorCode, LoanError
from loan import LoanDetail, format_display_time
from loan_ledger import LoanLedger
from member_directory import MemberDirectory

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


class LoanEngine:
    """Runs borrow/return as atomic transactions over the three ledgers."""

    def __init__(
        self,
        books: Optional[BookLedger] = None,
        members: Optional[MemberDirectory] = None,
        loans: Optional[LoanLedger] = None,
        quota: Optional[int] = None,
        isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
        db_file: Optional[str] = None,
    ) -> None:
        # The ledgers must point at the same file as the transactions
        self.db_file = db_file
        self.books = books or BookLedger(db_file)
        self.members = members or MemberDirectory(db_file)
        self.loans = loans or LoanLedger(db_file)
        self.quota = settings.loan_quota if quota is None else quota
        self.isolation = isolation

    # ------------------------- Borrow ------------------------- #
    def borrow(self, member_id: int, book_id: int, cancel: Optional[threading.Event] = None) -> LoanDetail:
        """Lend one copy of ``book_id`` to ``member_id``.

        Raises LoanError with NOT_FOUND, QUOTA_EXCEEDED, STOCK_EMPTY,
        ALREADY_BORROWED or TRANSACTION_FAILED.
        """
        with self._classified("borrow", member_id, book_id):
            with transaction(self.isolation, cancel, self.db_file) as tx:
                member = self.members.get_by_id(member_id)
                if member is None:
                    raise LoanError.not_found("Member not found")

                active = self.loans.count_active_loans_for_member(tx, member_id)
                if active >= self.quota:
                    raise LoanError(
                        f"Member has reached the limit of {self.quota} active loans",
                        ErrorCode.QUOTA_EXCEEDED,
                    )

                book = self.books.get_by_id_for_locking(tx, book_id)
                if book is None:
                    raise LoanError.not_found("Book not found")
                if book.stock <= 0:
                    raise LoanError("Book is out of stock", ErrorCode.STOCK_EMPTY)

                if self.loans.has_active_loan(tx, member_id, book_id):
                    raise LoanError("Member is already borrowing this book", ErrorCode.ALREADY_BORROWED)

                try:
                    self.books.decrement(tx, book_id)
                except StockNotAdjusted as e:
                    raise LoanError("Book is out of stock", ErrorCode.STOCK_EMPTY) from e

                loan_id = self.loans.create_loan(tx, member_id, book_id)
                loan = self.loans.get_by_id(tx, loan_id)

                tx.commit()

        logger.info(f"Loan {loan_id} created: member={member_id} book={book_id} stock_left={book.stock - 1}")
        return LoanDetail(
            loan_id=loan_id,
            member_id=member_id,
            book_id=book_id,
            book_title=book.title,
            book_author=book.author,
            borrowed_at=format_display_time(loan.borrowed_at),
        )

    # ------------------------- Return ------------------------- #
    def return_book(self, member_id: int, book_id: int, cancel: Optional[threading.Event] = None) -> None:
        """Close the member's loan of ``book_id`` and put the copy back in stock.

        Raises LoanError with NOT_FOUND, ALREADY_RETURNED or TRANSACTION_FAILED.
        """
        with self._classified("return", member_id, book_id):
            with transaction(self.isolation, cancel, self.db_file) as tx:
                loan = self.loans.get_active_loan(tx, member_id, book_id)
                if loan is None:
                    raise LoanError.not_found("Member is not borrowing this book")
                if not loan.is_active:
                    raise LoanError("Book has already been returned", ErrorCode.ALREADY_RETURNED)

                self.loans.mark_returned(tx, loan.id)
                # Unconditional: the loan row lock above already rules out a double return.
                self.books.increment(tx, book_id)

                tx.commit()

        logger.info(f"Loan {loan.id} returned: member={member_id} book={book_id}")

    # ------------------------- Helpers ------------------------- #
    @contextmanager
    def _classified(self, action: str, member_id: int, book_id: int) -> Iterator[None]:
        """Turn everything raised by a workflow into a LoanError.

        Business errors pass through untouched. Store failures become
        TRANSACTION_FAILED with the original exception chained as the cause.
        """
        try:
            yield
        except LoanError as e:
            logger.info(f"{action} rejected [{e.code.value}]: member={member_id} book={book_id}: {e.message}")
            raise
        except TransactionCancelled as e:
            logger.warning(f"{action} cancelled: member={member_id} book={book_id}")
            raise LoanError.transaction_failed("Transaction cancelled") from e
        except StockNotAdjusted as e:
            # Only reachable from the return path: the book row disappeared.
            logger.error(f"{action} failed: {e}")
            raise LoanError.transaction_failed() from e
        except (sqlite3.Error, LockNotHeldError) as e:
            err = LoanError.transaction_failed()
            logger.error(f"{action} failed [trace_id={err.trace_id}]: member={member_id} book={book_id}: {e!r}")
            raise err from e
