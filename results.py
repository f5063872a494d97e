"""Result types shared by the collaborators, the loan service and its boundaries.

Collaborator calls answer with a ``CallResult`` carrying one of the four
``Outcome`` values; loan operations answer with a ``LoanResult`` that either
holds a loan (or a list of loans) or a ``LoanFailure`` naming its cause.
Exceptions are reserved for faults nobody expected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class Outcome(str, Enum):
    """Classified outcome of a collaborator call."""
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    REJECTED = "REJECTED"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass(frozen=True)
class CallResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @staticmethod
    def success(value: Any = None) -> "CallResult":
        return CallResult(Outcome.OK, value)

    @staticmethod
    def not_found(detail: str = "") -> "CallResult":
        return CallResult(Outcome.NOT_FOUND, detail=detail)

    @staticmethod
    def rejected(detail: str = "") -> "CallResult":
        return CallResult(Outcome.REJECTED, detail=detail)

    @staticmethod
    def unavailable(detail: str = "") -> "CallResult":
        return CallResult(Outcome.UNAVAILABLE, detail=detail)


class ErrorKind(str, Enum):
    """How a failure is reported to callers of the service."""
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INVALID_REQUEST = "invalid_request"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


class FailureCause(str, Enum):
    LOAN_NOT_FOUND = "LOAN_NOT_FOUND"
    ALREADY_RETURNED = "ALREADY_RETURNED"
    INVALID_REQUEST = "INVALID_REQUEST"
    PATRON_NOT_FOUND = "PATRON_NOT_FOUND"
    PATRON_INACTIVE = "PATRON_INACTIVE"
    PATRON_SERVICE_UNAVAILABLE = "PATRON_SERVICE_UNAVAILABLE"
    BOOK_NOT_FOUND = "BOOK_NOT_FOUND"
    BOOK_UNAVAILABLE = "BOOK_UNAVAILABLE"
    STOCK_SERVICE_UNAVAILABLE = "STOCK_SERVICE_UNAVAILABLE"
    STOCK_UPDATE_FAILED = "STOCK_UPDATE_FAILED"
    LOAN_PERSISTENCE_FAILED = "LOAN_PERSISTENCE_FAILED"

    @property
    def kind(self) -> ErrorKind:
        return _CAUSE_KINDS.get(self, ErrorKind.UPSTREAM)


_CAUSE_KINDS = {
    FailureCause.LOAN_NOT_FOUND: ErrorKind.NOT_FOUND,
    FailureCause.ALREADY_RETURNED: ErrorKind.INVALID_STATE,
    FailureCause.INVALID_REQUEST: ErrorKind.INVALID_REQUEST,
    FailureCause.LOAN_PERSISTENCE_FAILED: ErrorKind.INTERNAL,
}


@dataclass(frozen=True)
class LoanFailure:
    cause: FailureCause
    message: str

    @property
    def kind(self) -> ErrorKind:
        return self.cause.kind

    def to_dict(self) -> dict:
        return {"cause": self.cause.value, "message": self.message}


@dataclass(frozen=True)
class LoanResult:
    loan: Any = None
    failure: Optional[LoanFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def cause(self) -> Optional[FailureCause]:
        return self.failure.cause if self.failure else None

    @staticmethod
    def success(loan: Any) -> "LoanResult":
        return LoanResult(loan=loan)

    @staticmethod
    def fail(cause: FailureCause, message: str) -> "LoanResult":
        return LoanResult(failure=LoanFailure(cause, message))

