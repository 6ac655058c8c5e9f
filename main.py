import os
import subprocess
import sys
from typing import Optional

import typer

import database
from config import settings
from errors import LoanError
from library import Library, seed_demo_data
from ui_helpers import (
    print_book_result,
    print_books_result,
    print_error,
    print_loan_detail,
    print_member_loans,
    print_stats_result,
    set_output_mode,
)
from validators import IDValidator

APP_NAME = "Library CLI"


class LibraryManager:
    """Holds one Library per database file."""

    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_db = os.environ.get("LIBRARY_DB_FILE") or database.DATABASE_FILE
        # Rebuild when the database file changes (e.g. a per-test database)
        if cls._instance is None or current_db != cls._db_file_snapshot:
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = Library(db_file=current_db)
            cls._db_file_snapshot = current_db
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None
        cls._db_file_snapshot = None


def _fail(err: LoanError) -> None:
    print_error(err)
    raise typer.Exit(code=1)


# --- Typer CLI app ---
app = typer.Typer(help=APP_NAME)

@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)

@app.command("list")
def cli_list():
    """List all books with their available stock."""
    print_books_result(LibraryManager.get_instance().list_books())

@app.command("find")
def cli_find(book_id: str = typer.Argument(..., help="Book ID")):
    """Show a single book."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.get_book(IDValidator.parse_id(book_id, "book_id"))
    except LoanError as e:
        _fail(e)
    print_book_result(book)

@app.command("borrow")
def cli_borrow(
    member_id: str = typer.Argument(..., help="Member ID"),
    book_id: str = typer.Argument(..., help="Book ID"),
):
    """Borrow a book for a member."""
    lib = LibraryManager.get_instance()
    try:
        detail = lib.borrow(*IDValidator.parse_pair(member_id, book_id))
    except LoanError as e:
        _fail(e)
    print_loan_detail(detail)

@app.command("return")
def cli_return(
    member_id: str = typer.Argument(..., help="Member ID"),
    book_id: str = typer.Argument(..., help="Book ID"),
):
    """Return a borrowed book."""
    lib = LibraryManager.get_instance()
    try:
        lib.return_book(*IDValidator.parse_pair(member_id, book_id))
    except LoanError as e:
        _fail(e)
    print(f"Book {book_id} returned by member {member_id}.")

@app.command("loans")
def cli_loans(member_id: str = typer.Argument(..., help="Member ID")):
    """Show a member's loan history, most recent first."""
    lib = LibraryManager.get_instance()
    try:
        history = lib.get_member_loans(IDValidator.parse_id(member_id, "member_id"))
    except LoanError as e:
        _fail(e)
    print_member_loans(history)

@app.command("stats")
def cli_stats():
    """Show catalog and loan statistics."""
    print_stats_result(LibraryManager.get_instance().get_statistics())

@app.command("seed")
def cli_seed():
    """Load a small demo catalog and member list."""
    lib = LibraryManager.get_instance()
    try:
        seeded = seed_demo_data(lib)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Seeded {len(seeded['books'])} books and {len(seeded['members'])} members.")

@app.command("serve")
def cli_serve(timeout: int = typer.Option(0, "--timeout", help="Seconds to run before exiting (0 = no timeout)")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if timeout and timeout > 0:
        proc = subprocess.Popen(args, start_new_session=os.name != "nt")
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            # Time is up; try a clean shutdown first, then force
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=3)
    else:
        subprocess.run(args)


if __name__ == "__main__":
    app()
