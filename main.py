import logging
import subprocess
import sys
from typing import Optional

import typer

from config import settings
from loans import LoanService, build_service
from ui_helpers import print_failure, print_loan, print_loan_list, set_output_mode

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Loan service CLI")


class ServiceManager:
    """Lazily built ``LoanService`` shared by the commands of one CLI run."""
    _instance: Optional[LoanService] = None

    @classmethod
    def get_instance(cls) -> LoanService:
        if cls._instance is None:
            cls._instance = build_service()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None


def get_service() -> LoanService:
    return ServiceManager.get_instance()


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (output mode)."""
    if output:
        set_output_mode(output)


@app.command("create")
def cli_create(user_id: int, book_id: int):
    """Lend BOOK_ID to USER_ID."""
    result = get_service().create_loan(user_id, book_id)
    if not result.ok:
        print_failure(result.failure)
        raise typer.Exit(code=1)
    print_loan(result.loan, heading="Loan created")


@app.command("return")
def cli_return(loan_id: int):
    """Return the book of loan LOAN_ID."""
    result = get_service().return_loan(loan_id)
    if not result.ok:
        print_failure(result.failure)
        raise typer.Exit(code=1)
    print_loan(result.loan, heading="Loan returned")


@app.command("show")
def cli_show(loan_id: int):
    """Show one loan."""
    result = get_service().get_loan_by_id(loan_id)
    if not result.ok:
        print_failure(result.failure)
        raise typer.Exit(code=1)
    print_loan(result.loan)


@app.command("list")
def cli_list(
    active: bool = typer.Option(False, "--active", help="Only loans not yet returned"),
    user: Optional[int] = typer.Option(None, "--user", help="Only loans of this patron"),
    book: Optional[int] = typer.Option(None, "--book", help="Only loans of this book"),
):
    """List loans, optionally filtered."""
    service = get_service()
    if user is not None:
        loans = service.get_loans_by_user_id(user)
    elif book is not None:
        loans = service.get_loans_by_book_id(book)
    elif active:
        loans = service.get_active_loans()
    else:
        loans = service.get_all_loans()

    # Filters combine when more than one is given
    if book is not None:
        loans = [loan for loan in loans if loan.book_id == book]
    if active:
        loans = [loan for loan in loans if loan.is_active]
    print_loan_list(loans)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default from API_PORT)"),
):
    """Run the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting loan API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if settings.debug:
        args.append("--reload")
    completed = subprocess.run(args)
    if completed.returncode != 0:
        raise typer.Exit(code=completed.returncode)


if __name__ == "__main__":
    app()
