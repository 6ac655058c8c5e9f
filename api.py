from datetime import datetime, timezone
import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import settings
from database import get_db_connection
from errors import ErrorCode, LoanError
from library import Library
from validators import IDValidator

logger = logging.getLogger(__name__)

library = Library()

app = FastAPI(title="Library Loan API", version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Error mapping ---
HTTP_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.ALREADY_BORROWED: 409,
    ErrorCode.ALREADY_RETURNED: 409,
    ErrorCode.QUOTA_EXCEEDED: 409,
    ErrorCode.STOCK_EMPTY: 409,
    ErrorCode.TRANSACTION_FAILED: 500,
}


def http_status_for(err: LoanError) -> int:
    return HTTP_STATUS_BY_CODE.get(err.code, 400)


@app.exception_handler(LoanError)
async def loan_error_handler(request: Request, exc: LoanError):
    return JSONResponse(status_code=http_status_for(exc), content=exc.to_dict())


def validation_message(errors) -> str:
    """Name the first offending field, e.g. 'book_id must be a positive integer'."""
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "path", "query"))
    if not field:
        return "Invalid request: body must be a JSON object with member_id and book_id"
    if first.get("type") == "missing":
        return f"Invalid request: {field} is required"
    return f"Invalid request: {field} must be a positive integer"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    err = LoanError.invalid_input(validation_message(exc.errors()))
    return JSONResponse(status_code=400, content=err.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    err = LoanError.transaction_failed("Internal server error")
    logger.exception(f"Unhandled error on {request.method} {request.url.path} [trace_id={err.trace_id}]")
    return JSONResponse(status_code=500, content=err.to_dict())


# --- Models ---
class LoanRequest(BaseModel):
    member_id: int
    book_id: int

class BookModel(BaseModel):
    id: int
    title: str
    author: str
    stock: int

class BooksListModel(BaseModel):
    total: int
    books: List[BookModel]

class LoanDetailModel(BaseModel):
    loan_id: int
    member_id: int
    book_id: int
    book_title: str
    book_author: str
    borrowed_at: str

class LoanHistoryItemModel(BaseModel):
    loan_id: int
    book_id: int
    book_title: str
    book_author: str
    borrowed_at: str
    returned_at: Optional[str] = None
    status: str  # "active" or "returned"

class MemberLoansModel(BaseModel):
    member_id: int
    member_name: str
    total_loans: int
    loans: List[LoanHistoryItemModel]

class BorrowResponse(BaseModel):
    message: str
    data: LoanDetailModel

class ReturnResponse(BaseModel):
    message: str
    data: Optional[dict] = None

class BookResponse(BaseModel):
    message: str
    data: BookModel

class BooksResponse(BaseModel):
    message: str
    data: BooksListModel

class MemberLoansResponse(BaseModel):
    message: str
    data: MemberLoansModel


# --- Health check ---
@app.get("/health")
@app.get("/api/v1/health")
def health():
    """Lightweight health endpoint with a quick database round trip."""
    db_ok = True
    try:
        conn = get_db_connection(library.db_file)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception:
        db_ok = False
    return {
        "status": "ok",
        "service": settings.app_name,
        "db": db_ok,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# --- Loans ---
@app.post("/api/v1/borrow", response_model=BorrowResponse, status_code=201)
def borrow_book(payload: LoanRequest):
    """Borrow one copy of a book for a member."""
    member_id, book_id = IDValidator.parse_pair(payload.member_id, payload.book_id)
    detail = library.borrow(member_id, book_id)
    return BorrowResponse(message="Book borrowed successfully", data=LoanDetailModel(**detail.to_dict()))


@app.post("/api/v1/return", response_model=ReturnResponse)
def return_book(payload: LoanRequest):
    """Return a borrowed book."""
    member_id, book_id = IDValidator.parse_pair(payload.member_id, payload.book_id)
    library.return_book(member_id, book_id)
    return ReturnResponse(message="Book returned successfully")


# --- Books ---
@app.get("/api/v1/books", response_model=BooksResponse)
def get_books():
    books = [BookModel(**b.to_dict()) for b in library.list_books()]
    return BooksResponse(
        message="Books retrieved successfully",
        data=BooksListModel(total=len(books), books=books),
    )


@app.get("/api/v1/books/{book_id}", response_model=BookResponse)
def get_book(book_id: int):
    book = library.get_book(IDValidator.parse_id(book_id, "book_id"))
    return BookResponse(message="Book retrieved successfully", data=BookModel(**book.to_dict()))


# --- Members ---
@app.get("/api/v1/members/{member_id}/loans", response_model=MemberLoansResponse)
def get_member_loans(member_id: int):
    """Loan history of a member, most recent first."""
    history = library.get_member_loans(IDValidator.parse_id(member_id, "member_id"))
    return MemberLoansResponse(
        message="Member loans retrieved successfully",
        data=MemberLoansModel(**history.to_dict()),
    )
