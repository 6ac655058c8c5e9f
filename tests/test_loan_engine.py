import re
import sqlite3
import threading

import pytest

from book import Book
from config import settings
from database import get_db_connection
from errors import ErrorCode, LoanError
from loan import format_display_time
from loan_engine import LoanEngine
from loan_ledger import LoanLedger


def _stock(book_id):
    conn = get_db_connection()
    try:
        return conn.execute("SELECT stock FROM books WHERE id = ?", (book_id,)).fetchone()[0]
    finally:
        conn.close()


def _loan_count(member_id=None):
    conn = get_db_connection()
    try:
        if member_id is None:
            return conn.execute("SELECT COUNT(*) FROM loans").fetchone()[0]
        return conn.execute("SELECT COUNT(*) FROM loans WHERE member_id = ?", (member_id,)).fetchone()[0]
    finally:
        conn.close()


def _code_of(fn, *args, **kwargs):
    with pytest.raises(LoanError) as exc_info:
        fn(*args, **kwargs)
    return exc_info.value.code


# ------------------------- Borrow ------------------------- #

def test_borrow_success_returns_loan_detail(lib, make_book, make_member):
    book = make_book("Bumi Manusia", "Pramoedya Ananta Toer", stock=2)
    member = make_member()

    detail = lib.borrow(member.id, book.id)

    assert detail.loan_id > 0
    assert detail.member_id == member.id
    assert detail.book_id == book.id
    assert detail.book_title == "Bumi Manusia"
    assert detail.book_author == "Pramoedya Ananta Toer"
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", detail.borrowed_at)
    assert _stock(book.id) == 1


def test_borrow_timestamp_comes_from_the_store(lib, make_book, make_member):
    book = make_book()
    member = make_member()
    detail = lib.borrow(member.id, book.id)

    conn = get_db_connection()
    try:
        stored = conn.execute("SELECT borrowed_at FROM loans WHERE id = ?", (detail.loan_id,)).fetchone()[0]
    finally:
        conn.close()
    assert detail.borrowed_at == format_display_time(stored)


def test_borrow_unknown_member(lib, make_book):
    book = make_book()
    assert _code_of(lib.borrow, 999, book.id) == ErrorCode.NOT_FOUND
    assert _stock(book.id) == 1


def test_borrow_unknown_book(lib, make_member):
    member = make_member()
    assert _code_of(lib.borrow, member.id, 999) == ErrorCode.NOT_FOUND
    assert _loan_count() == 0


def test_borrow_out_of_stock(lib, make_book, make_member):
    book = make_book(stock=0)
    member = make_member()
    assert _code_of(lib.borrow, member.id, book.id) == ErrorCode.STOCK_EMPTY
    assert _stock(book.id) == 0
    assert _loan_count() == 0


def test_borrow_same_book_twice(lib, make_book, make_member):
    book = make_book(stock=5)
    member = make_member()
    lib.borrow(member.id, book.id)

    assert _code_of(lib.borrow, member.id, book.id) == ErrorCode.ALREADY_BORROWED
    assert _stock(book.id) == 4
    assert _loan_count(member.id) == 1


def test_borrow_quota(lib, make_book, make_member):
    member = make_member()
    books = [make_book(f"Book {i}", "Author", stock=1) for i in range(4)]
    for book in books[:3]:
        lib.borrow(member.id, book.id)

    assert _code_of(lib.borrow, member.id, books[3].id) == ErrorCode.QUOTA_EXCEEDED
    assert _stock(books[3].id) == 1


def test_quota_frees_up_after_return(lib, make_book, make_member):
    member = make_member()
    books = [make_book(f"Book {i}", "Author", stock=1) for i in range(4)]
    for book in books[:3]:
        lib.borrow(member.id, book.id)
    lib.return_book(member.id, books[0].id)

    detail = lib.borrow(member.id, books[3].id)
    assert detail.book_id == books[3].id


def test_quota_is_checked_before_book_existence(lib, make_book, make_member):
    member = make_member()
    for i in range(3):
        lib.borrow(member.id, make_book(f"Book {i}", "Author").id)
    assert _code_of(lib.borrow, member.id, 999) == ErrorCode.QUOTA_EXCEEDED


def test_custom_quota(lib, make_book, make_member):
    engine = LoanEngine(lib.books, lib.members, lib.loans, quota=1, db_file=lib.db_file)
    member = make_member()
    engine.borrow(member.id, make_book("A", "X").id)
    assert _code_of(engine.borrow, member.id, make_book("B", "Y").id) == ErrorCode.QUOTA_EXCEEDED


def test_stale_stock_read_is_caught_by_the_decrement(lib, make_book, make_member, monkeypatch):
    book = make_book(stock=0)
    member = make_member()
    # Pretend the locked read saw a copy that is no longer there
    monkeypatch.setattr(
        lib.books, "get_by_id_for_locking",
        lambda tx, book_id: Book(id=book_id, title=book.title, author=book.author, stock=1),
    )

    assert _code_of(lib.borrow, member.id, book.id) == ErrorCode.STOCK_EMPTY
    assert _stock(book.id) == 0
    assert _loan_count() == 0


def test_store_failure_is_wrapped_and_rolled_back(lib, make_book, make_member, monkeypatch):
    book = make_book(stock=1)
    member = make_member()
    cause = sqlite3.OperationalError("disk I/O error")

    def broken_create(tx, member_id, book_id):
        raise cause

    monkeypatch.setattr(lib.loans, "create_loan", broken_create)

    with pytest.raises(LoanError) as exc_info:
        lib.borrow(member.id, book.id)

    err = exc_info.value
    assert err.code == ErrorCode.TRANSACTION_FAILED
    assert err.__cause__ is cause
    assert "disk I/O" not in err.message
    # The decrement that ran before the failure was rolled back
    assert _stock(book.id) == 1

    monkeypatch.undo()
    # Locks were released: the next borrow goes through
    assert lib.borrow(member.id, book.id).book_id == book.id


def test_cancelled_before_start(lib, make_book, make_member):
    book = make_book(stock=1)
    member = make_member()
    cancel = threading.Event()
    cancel.set()

    assert _code_of(lib.borrow, member.id, book.id, cancel=cancel) == ErrorCode.TRANSACTION_FAILED
    assert _stock(book.id) == 1
    assert _loan_count() == 0


def test_cancelled_mid_transaction_leaves_no_partial_state(lib, make_book, make_member):
    book = make_book(stock=1)
    member = make_member()
    cancel = threading.Event()

    class CancellingLedger(LoanLedger):
        def create_loan(self, tx, member_id, book_id):
            loan_id = super().create_loan(tx, member_id, book_id)
            cancel.set()
            return loan_id

    engine = LoanEngine(lib.books, lib.members, CancellingLedger(lib.db_file), db_file=lib.db_file)

    with pytest.raises(LoanError) as exc_info:
        engine.borrow(member.id, book.id, cancel=cancel)

    assert exc_info.value.code == ErrorCode.TRANSACTION_FAILED
    assert exc_info.value.message == "Transaction cancelled"
    assert _stock(book.id) == 1
    assert _loan_count() == 0


# ------------------------- Return ------------------------- #

def test_return_success(lib, make_book, make_member):
    book = make_book(stock=1)
    member = make_member()
    lib.borrow(member.id, book.id)
    assert _stock(book.id) == 0

    lib.return_book(member.id, book.id)

    assert _stock(book.id) == 1
    history = lib.get_member_loans(member.id)
    assert history.loans[0].status == "returned"


def test_return_without_loan(lib, make_book, make_member):
    book = make_book(stock=2)
    member = make_member()
    assert _code_of(lib.return_book, member.id, book.id) == ErrorCode.NOT_FOUND
    assert _stock(book.id) == 2


def test_return_twice(lib, make_book, make_member):
    book = make_book(stock=1)
    member = make_member()
    lib.borrow(member.id, book.id)
    lib.return_book(member.id, book.id)

    assert _code_of(lib.return_book, member.id, book.id) == ErrorCode.ALREADY_RETURNED
    assert _stock(book.id) == 1


def test_borrow_again_after_return(lib, make_book, make_member):
    book = make_book(stock=1)
    member = make_member()
    lib.borrow(member.id, book.id)
    lib.return_book(member.id, book.id)
    lib.borrow(member.id, book.id)
    assert _stock(book.id) == 0

    lib.return_book(member.id, book.id)

    assert _stock(book.id) == 1
    assert _code_of(lib.return_book, member.id, book.id) == ErrorCode.ALREADY_RETURNED


def test_return_by_another_member(lib, make_book, make_member):
    book = make_book(stock=1)
    owner, other = make_member(), make_member()
    lib.borrow(owner.id, book.id)
    assert _code_of(lib.return_book, other.id, book.id) == ErrorCode.NOT_FOUND
    assert _stock(book.id) == 0


def test_return_when_book_row_is_gone(lib, make_book, make_member, monkeypatch):
    book = make_book(stock=1)
    member = make_member()
    lib.borrow(member.id, book.id)

    def missing_book(tx, book_id):
        lib.books.adjust_stock(tx, book_id + 1000, +1)

    monkeypatch.setattr(lib.books, "increment", missing_book)

    assert _code_of(lib.return_book, member.id, book.id) == ErrorCode.TRANSACTION_FAILED
    # The loan is still open because the whole transaction rolled back
    assert lib.get_member_loans(member.id).loans[0].status == "active"


# ------------------------- Scenario ------------------------- #

def test_end_to_end_scenario(lib, make_book, make_member):
    book_a = make_book("A", "Author", stock=2)
    m1, m2, m3 = make_member("M1"), make_member("M2"), make_member("M3")

    l1 = lib.borrow(m1.id, book_a.id)
    assert _stock(book_a.id) == 1
    l2 = lib.borrow(m2.id, book_a.id)
    assert _stock(book_a.id) == 0

    assert _code_of(lib.borrow, m3.id, book_a.id) == ErrorCode.STOCK_EMPTY

    lib.return_book(m1.id, book_a.id)
    assert _stock(book_a.id) == 1
    assert lib.get_member_loans(m1.id).loans[0].status == "returned"

    l3 = lib.borrow(m3.id, book_a.id)
    assert _stock(book_a.id) == 0
    assert len({l1.loan_id, l2.loan_id, l3.loan_id}) == 3
    assert lib.get_member_loans(m2.id).loans[0].status == "active"
    assert lib.get_member_loans(m3.id).loans[0].status == "active"


# ------------------------- Display values ------------------------- #

def test_format_display_time_uses_fixed_offset(monkeypatch):
    monkeypatch.setattr(settings, "display_tz_offset_hours", 7)
    assert format_display_time("2024-01-31 20:30:00") == "2024-02-01 03:30:00"
    assert format_display_time(None) is None


def test_loan_error_payload():
    err = LoanError("Book is out of stock", ErrorCode.STOCK_EMPTY)
    payload = err.to_dict()
    assert payload["error_code"] == "LIB-ERR-001"
    assert payload["message"] == "Book is out of stock"
    assert len(payload["trace_id"]) == 32
