"""HTTP implementations of the patron and stock collaborators."""

import logging
from typing import Optional

import httpx

from classifier import classify_response
from collaborators import PatronStatusCollaborator, StockCollaborator
from config import settings
from http_client import ServiceHTTPClient
from loan import PatronStatus, StockInfo
from results import CallResult, Outcome

logger = logging.getLogger(__name__)


def _build_client(base_url: str, transport: Optional[httpx.BaseTransport]) -> ServiceHTTPClient:
    return ServiceHTTPClient(
        base_url,
        timeout=settings.http_timeout,
        connect_timeout=settings.http_connect_timeout,
        retries=settings.http_retries,
        backoff=settings.http_backoff,
        transport=transport,
    )


class HttpPatronStatusClient(PatronStatusCollaborator):
    """Patron service client: an inactive patron is reported as REJECTED."""

    service_name = "patron service"

    def __init__(self, base_url: Optional[str] = None, status_path: Optional[str] = None,
                 client: Optional[ServiceHTTPClient] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> None:
        self.status_path = status_path or settings.patron_status_path
        self._client = client or _build_client(base_url or settings.patron_service_url, transport)

    def check_active(self, user_id: int) -> CallResult[PatronStatus]:
        response = self._client.get(self.status_path.format(user_id=user_id))
        result = classify_response(
            response,
            lambda r: PatronStatus.from_payload(user_id, r.json()),
            service=self.service_name,
        )
        if result.ok and not result.value.active:
            return CallResult(Outcome.REJECTED, result.value, detail=f"patron {user_id} is not active")
        return result

    def close(self) -> None:
        self._client.close()


class HttpStockClient(StockCollaborator):
    """Stock service client.

    The stock service performs the decrement atomically and answers 400/409
    when no copy is left; that answer classifies as REJECTED.
    """

    service_name = "stock service"

    def __init__(self, base_url: Optional[str] = None, read_path: Optional[str] = None,
                 reserve_path: Optional[str] = None, release_path: Optional[str] = None,
                 client: Optional[ServiceHTTPClient] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> None:
        self.read_path = read_path or settings.stock_read_path
        self.reserve_path = reserve_path or settings.stock_reserve_path
        self.release_path = release_path or settings.stock_release_path
        self._client = client or _build_client(base_url or settings.stock_service_url, transport)

    def read_stock(self, book_id: int) -> CallResult[StockInfo]:
        response = self._client.get(self.read_path.format(book_id=book_id))
        return classify_response(
            response,
            lambda r: StockInfo.from_payload(book_id, r.json()),
            service=self.service_name,
        )

    def reserve(self, book_id: int) -> CallResult:
        response = self._client.patch(self.reserve_path.format(book_id=book_id))
        return classify_response(response, service=self.service_name)

    def release(self, book_id: int) -> CallResult:
        response = self._client.patch(self.release_path.format(book_id=book_id))
        result = classify_response(response, service=self.service_name)
        if result.outcome is Outcome.NOT_FOUND or result.outcome is Outcome.REJECTED:
            # release answers only OK or UNAVAILABLE
            logger.warning(f"Stock release for book {book_id} refused: {result.detail}")
            return CallResult.unavailable(result.detail)
        return result

    def close(self) -> None:
        self._client.close()
