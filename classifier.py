"""Translate raw collaborator responses and transport errors into an ``Outcome``.

The loan service only ever branches on the four outcomes, so nothing above
this module needs to know about HTTP status codes or httpx exception types.
"""

import logging
from typing import Callable, Optional, TypeVar

import httpx

from results import CallResult, Outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

REJECTED_STATUSES = frozenset({400, 409, 422})
RETRYABLE_STATUSES = frozenset({502, 503, 504})


def classify_status(status_code: int) -> Outcome:
    if 200 <= status_code < 300:
        return Outcome.OK
    if status_code == 404:
        return Outcome.NOT_FOUND
    if status_code in REJECTED_STATUSES:
        return Outcome.REJECTED
    return Outcome.UNAVAILABLE


def is_transient(outcome: Outcome) -> bool:
    return outcome is Outcome.UNAVAILABLE


def classify_response(
    response: Optional[httpx.Response],
    parse: Optional[Callable[[httpx.Response], T]] = None,
    service: str = "service",
) -> CallResult[T]:
    """Build a ``CallResult`` from a response, decoding the body with ``parse`` on success.

    ``None`` stands for a request that never produced a response.
    """
    if response is None:
        return CallResult.unavailable(f"{service} did not respond")

    outcome = classify_status(response.status_code)
    if outcome is not Outcome.OK:
        return CallResult(outcome, detail=f"{service} answered HTTP {response.status_code}")

    if parse is None:
        return CallResult.success()
    try:
        return CallResult.success(parse(response))
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning(f"{service} returned an unreadable body: {exc}")
        return CallResult.unavailable(f"{service} returned an unreadable response")
