from typing import Any

from errors import LoanError


class IDValidator:
    """Validation of the integer identifiers callers hand to the loan workflows."""

    @staticmethod
    def is_valid_id(value: Any) -> bool:
        # bool is an int subclass; True must not pass as id 1
        if isinstance(value, bool):
            return False
        if isinstance(value, int):
            return value > 0
        if isinstance(value, str):
            s = value.strip()
            return s.isdigit() and int(s) > 0
        return False

    @staticmethod
    def parse_id(value: Any, field: str = "id") -> int:
        """Return ``value`` as a positive int or raise an INVALID_INPUT LoanError."""
        if not IDValidator.is_valid_id(value):
            raise LoanError.invalid_input(f"{field} must be a positive integer")
        return int(value)

    @staticmethod
    def parse_pair(member_id: Any, book_id: Any) -> tuple:
        if not (IDValidator.is_valid_id(member_id) and IDValidator.is_valid_id(book_id)):
            raise LoanError.invalid_input("member_id and book_id must be greater than 0")
        return int(member_id), int(book_id)
