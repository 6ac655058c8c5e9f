"""Loan records and the display values derived from them.

``Loan`` mirrors a row of the ``loans`` table. ``LoanDetail`` and
``LoanHistoryItem`` are what callers get back; their formatted timestamps and
status label are computed here from the stored values and never persisted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from config import settings

STATUS_ACTIVE = "active"
STATUS_RETURNED = "returned"

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"
# SQLite's CURRENT_TIMESTAMP is UTC in this format
STORE_FORMAT = "%Y-%m-%d %H:%M:%S"


def display_timezone() -> timezone:
    return timezone(timedelta(hours=settings.display_tz_offset_hours), settings.display_tz_name)


def parse_store_timestamp(raw: Union[str, datetime]) -> datetime:
    """Parse a timestamp written by the store into an aware UTC datetime."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    value = raw.strip()
    try:
        parsed = datetime.strptime(value, STORE_FORMAT)
    except ValueError:
        # Fractional seconds or ISO "T" separator
        parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_display_time(raw: Union[str, datetime, None]) -> Optional[str]:
    """Render a stored timestamp in the fixed display timezone, or None."""
    if raw is None:
        return None
    return parse_store_timestamp(raw).astimezone(display_timezone()).strftime(DISPLAY_FORMAT)


class Loan:
    """A single borrowing of one book by one member."""

    def __init__(
        self,
        id: int,
        member_id: int,
        book_id: int,
        borrowed_at: str,
        returned_at: Optional[str] = None,
        book_title: Optional[str] = None,
        book_author: Optional[str] = None,
    ) -> None:
        self.id = id
        self.member_id = member_id
        self.book_id = book_id
        self.borrowed_at = borrowed_at
        self.returned_at = returned_at
        # Only filled by history queries that join books
        self.book_title = book_title
        self.book_author = book_author

    @property
    def is_active(self) -> bool:
        return self.returned_at is None

    @property
    def status(self) -> str:
        return STATUS_ACTIVE if self.is_active else STATUS_RETURNED

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            id=int(data["id"]),
            member_id=int(data["member_id"]),
            book_id=int(data["book_id"]),
            borrowed_at=data["borrowed_at"],
            returned_at=data.get("returned_at"),
            book_title=data.get("book_title"),
            book_author=data.get("book_author"),
        )


@dataclass
class LoanDetail:
    """Result of a successful borrow."""

    loan_id: int
    member_id: int
    book_id: int
    book_title: str
    book_author: str
    borrowed_at: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LoanHistoryItem:
    loan_id: int
    book_id: int
    book_title: str
    book_author: str
    borrowed_at: str
    returned_at: Optional[str]
    status: str

    @staticmethod
    def from_loan(loan: Loan) -> "LoanHistoryItem":
        return LoanHistoryItem(
            loan_id=loan.id,
            book_id=loan.book_id,
            book_title=loan.book_title or "",
            book_author=loan.book_author or "",
            borrowed_at=format_display_time(loan.borrowed_at),
            returned_at=format_display_time(loan.returned_at),
            status=loan.status,
        )


@dataclass
class MemberLoans:
    """Loan history of one member, most recent first."""

    member_id: int
    member_name: str
    loans: List[LoanHistoryItem] = field(default_factory=list)

    @property
    def total_loans(self) -> int:
        return len(self.loans)

    @property
    def active_loans(self) -> int:
        return sum(1 for item in self.loans if item.status == STATUS_ACTIVE)

    def to_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "member_name": self.member_name,
            "total_loans": self.total_loans,
            "loans": [asdict(item) for item in self.loans],
        }
