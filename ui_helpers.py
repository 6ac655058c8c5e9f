import os
import json
from typing import Any, Dict, List
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.markup import escape

from book import Book
from errors import LoanError
from loan import LoanDetail, MemberLoans

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False))

def print_books_result(books: List[Book]) -> None:
    """Print the catalog in the current output mode.
    - plain: '[id] Title by Author (stock: n)' lines, or 'No books in library.'
    - json: array of book objects
    - rich: a Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        _print_json([b.to_dict() for b in books])
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Stock", justify="right")
        for b in books:
            stock_style = "green" if b.stock > 0 else "red"
            table.add_row(str(b.id), b.title, b.author, f"[{stock_style}]{b.stock}[/]")
        _console.print(table)
    else:
        for b in books:
            print(f"[{b.id}] {b.title} by {b.author} (stock: {b.stock})")

def print_book_result(book: Book) -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json(book.to_dict())
    elif mode == "rich":
        content = (
            f"[bold]Title:[/] {book.title}\n"
            f"[bold]Author:[/] {book.author}\n"
            f"[bold]Stock:[/] {book.stock}"
        )
        _console.print(Panel.fit(content, title=f"📖 Book {book.id}", border_style="blue"))
    else:
        print("Book Found")
        print(f"ID: {book.id}")
        print(f"Title: {book.title}")
        print(f"Author: {book.author}")
        print(f"Stock: {book.stock}")

def print_loan_detail(detail: LoanDetail) -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json(detail.to_dict())
    elif mode == "rich":
        content = (
            f"[bold]Loan:[/] {detail.loan_id}\n"
            f"[bold]Book:[/] {detail.book_title} - {detail.book_author}\n"
            f"[bold]Member:[/] {detail.member_id}\n"
            f"[bold]Borrowed at:[/] {detail.borrowed_at}"
        )
        _console.print(Panel.fit(content, title="✅ Borrowed", border_style="green"))
    else:
        print(f"Borrowed: {detail.book_title} by {detail.book_author}")
        print(f"Loan ID: {detail.loan_id}")
        print(f"Borrowed at: {detail.borrowed_at}")

def print_member_loans(history: MemberLoans) -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json(history.to_dict())
        return

    if not history.loans:
        print(f"No loans for {history.member_name}.")
        return

    if mode == "rich":
        table = Table(
            title=f"Loans of {history.member_name} ({history.active_loans} active)",
            header_style="bold cyan",
        )
        table.add_column("Loan", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("Borrowed at")
        table.add_column("Returned at")
        table.add_column("Status")
        for item in history.loans:
            status_style = "yellow" if item.status == "active" else "dim"
            table.add_row(
                str(item.loan_id),
                f"{item.book_title} - {item.book_author}",
                item.borrowed_at,
                item.returned_at or "-",
                f"[{status_style}]{item.status}[/]",
            )
        _console.print(table)
    else:
        print(f"Loans of {history.member_name}: {history.total_loans}")
        for item in history.loans:
            print(f"[{item.loan_id}] {item.book_title} - {item.status} (borrowed {item.borrowed_at})")

def print_stats_result(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        _print_json(stats)
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")

def print_error(err: LoanError) -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json(err.to_dict())
    elif mode == "rich":
        _console.print(f"[bold red]Error ({err.code.value}):[/] {escape(err.message)}")
    else:
        print(f"Error ({err.code.value}): {err.message}")
