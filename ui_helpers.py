import os
import json
from typing import List

from rich.console import Console
from rich.table import Table

from loan import Loan
from results import LoanFailure

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LOAN_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _plain_line(loan: Loan) -> str:
    returned = loan.return_date.isoformat() if loan.return_date else "active"
    return f"#{loan.id} - user {loan.user_id} - book {loan.book_id} - {loan.loan_date.isoformat()} - {returned}"


def print_loan_list(loans: List[Loan]) -> None:
    """Print loans in the current output mode.
    - plain: one '#id - user - book - loan date - return date' line per loan, or 'No loans found.'
    - json: JSON array of loans
    - rich: Rich table
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
        return

    if not loans:
        print("No loans found.")
        return

    if mode == "rich":
        table = Table(title="Loans", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("User", style="white")
        table.add_column("Book", style="white")
        table.add_column("Loaned", style="white")
        table.add_column("Returned", style="green")
        for loan in loans:
            table.add_row(
                str(loan.id),
                str(loan.user_id),
                str(loan.book_id),
                loan.loan_date.isoformat(),
                loan.return_date.isoformat() if loan.return_date else "[yellow]active[/]",
            )
        _console.print(table)
    else:
        for loan in loans:
            print(_plain_line(loan))


def print_loan(loan: Loan, heading: str = "Loan") -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(loan.to_dict(), ensure_ascii=False))
    elif mode == "rich":
        _console.print(f"[bold green]{heading}[/] {_plain_line(loan)}")
    else:
        print(f"{heading}: {_plain_line(loan)}")


def print_failure(failure: LoanFailure) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"error": failure.to_dict()}, ensure_ascii=False))
    elif mode == "rich":
        _console.print(f"[bold red]Error [{failure.cause.value}]:[/] {failure.message}")
    else:
        print(f"Error [{failure.cause.value}]: {failure.message}")
