import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from loan import Loan
from loans import LoanService, build_service
from results import ErrorKind, FailureCause, LoanFailure

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.UPSTREAM: 503,
    ErrorKind.INTERNAL: 500,
}


# --- Models ---
class LoanRequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId", description="Patron borrowing the book")
    book_id: int = Field(alias="bookId", description="Book being lent")


class LoanModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    user_id: int = Field(alias="userId")
    book_id: int = Field(alias="bookId")
    loan_date: date = Field(alias="loanDate")
    return_date: Optional[date] = Field(default=None, alias="returnDate")

    @staticmethod
    def from_loan(loan: Loan) -> "LoanModel":
        return LoanModel(id=loan.id, user_id=loan.user_id, book_id=loan.book_id,
                         loan_date=loan.loan_date, return_date=loan.return_date)


class HealthModel(BaseModel):
    status: str
    timestamp: str
    db: bool
    total_loans: int


# --- Helpers ---
def _raise_for_failure(failure: LoanFailure) -> None:
    raise HTTPException(status_code=STATUS_BY_KIND[failure.kind], detail=failure.to_dict())


def _to_models(loans: List[Loan]) -> List[LoanModel]:
    return [LoanModel.from_loan(loan) for loan in loans]


def get_loan_service(request: Request) -> LoanService:
    return request.app.state.loan_service


# --- Application ---
def create_app(service: Optional[LoanService] = None) -> FastAPI:
    """Build the HTTP app around ``service``, or around one wired from the settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "loan_service", None) is None:
            app.state.loan_service = build_service()
        try:
            yield
        finally:
            app.state.loan_service.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.loan_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error handlers ---
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = {}
        for error in exc.errors():
            name = str(error.get("loc", ["body"])[-1])
            fields[name] = error.get("msg", "invalid value")
        return JSONResponse(
            status_code=400,
            content={"detail": {
                "cause": FailureCause.INVALID_REQUEST.value,
                "message": "Request validation failed.",
                "fields": fields,
            }},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"detail": {"cause": "INTERNAL_ERROR", "message": "Internal server error."}},
        )

    # --- Health ---
    @app.get("/health", response_model=HealthModel)
    def health(service: LoanService = Depends(get_loan_service)):
        db_ok = True
        total = 0
        try:
            db_ok = service.store.ping()
            total = service.store.count()
        except Exception:
            logger.warning("Loan store health check failed", exc_info=True)
            db_ok = False
        return HealthModel(
            status="healthy" if db_ok else "degraded",
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            db=db_ok,
            total_loans=total,
        )

    # --- Loan endpoints ---
    @app.post("/loans", response_model=LoanModel, status_code=201)
    def create_loan(payload: LoanRequestModel, service: LoanService = Depends(get_loan_service)):
        """Lend a book: checks the patron, checks and reserves stock, then records the loan."""
        result = service.create_loan(payload.user_id, payload.book_id)
        if not result.ok:
            _raise_for_failure(result.failure)
        return LoanModel.from_loan(result.loan)

    @app.get("/loans", response_model=List[LoanModel])
    def get_all_loans(service: LoanService = Depends(get_loan_service)):
        return _to_models(service.get_all_loans())

    @app.get("/loans/active", response_model=List[LoanModel])
    def get_active_loans(service: LoanService = Depends(get_loan_service)):
        """Loans that have not been returned yet."""
        return _to_models(service.get_active_loans())

    @app.get("/loans/user/{user_id}", response_model=List[LoanModel])
    def get_loans_by_user(user_id: int, service: LoanService = Depends(get_loan_service)):
        return _to_models(service.get_loans_by_user_id(user_id))

    @app.get("/loans/book/{book_id}", response_model=List[LoanModel])
    def get_loans_by_book(book_id: int, service: LoanService = Depends(get_loan_service)):
        return _to_models(service.get_loans_by_book_id(book_id))

    @app.get("/loans/{loan_id}", response_model=LoanModel)
    def get_loan(loan_id: int, service: LoanService = Depends(get_loan_service)):
        result = service.get_loan_by_id(loan_id)
        if not result.ok:
            _raise_for_failure(result.failure)
        return LoanModel.from_loan(result.loan)

    @app.post("/loans/{loan_id}/return", response_model=LoanModel)
    def return_loan(loan_id: int, service: LoanService = Depends(get_loan_service)):
        """Close a loan and give its copy back to the stock service. A second return is an error."""
        result = service.return_loan(loan_id)
        if not result.ok:
            _raise_for_failure(result.failure)
        return LoanModel.from_loan(result.loan)

    return app


app = create_app()
