"""Classified failures raised by the loan workflows.

Every failure surfaced to callers is a ``LoanError`` whose ``code`` is one
member of ``ErrorCode``. Callers decide what to do by looking at the code,
e.g. the HTTP layer maps it to a status with a plain dictionary lookup.
"""

from __future__ import annotations

import secrets
from enum import Enum


class ErrorCode(str, Enum):
    STOCK_EMPTY = "LIB-ERR-001"
    QUOTA_EXCEEDED = "LIB-ERR-002"
    ALREADY_BORROWED = "LIB-ERR-003"
    TRANSACTION_FAILED = "LIB-ERR-004"
    NOT_FOUND = "LIB-ERR-005"
    INVALID_INPUT = "LIB-ERR-006"
    ALREADY_RETURNED = "LIB-ERR-007"


def generate_trace_id() -> str:
    """Random 32-character hex id used to correlate an error with log lines."""
    return secrets.token_hex(16)


class LoanError(Exception):
    """A business-rule or infrastructure failure with a stable machine code."""

    def __init__(self, message: str, code: ErrorCode) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.trace_id = generate_trace_id()

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "error_code": self.code.value,
            "trace_id": self.trace_id,
        }

    @classmethod
    def not_found(cls, message: str) -> "LoanError":
        return cls(message, ErrorCode.NOT_FOUND)

    @classmethod
    def invalid_input(cls, message: str) -> "LoanError":
        return cls(message, ErrorCode.INVALID_INPUT)

    @classmethod
    def transaction_failed(cls, message: str = "Database transaction failed") -> "LoanError":
        return cls(message, ErrorCode.TRANSACTION_FAILED)
