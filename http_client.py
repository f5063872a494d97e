import logging
import time
from typing import Optional

import httpx

from classifier import RETRYABLE_STATUSES

logger = logging.getLogger(__name__)

# Failures where the request cannot have reached the remote service
_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class ServiceHTTPClient:
    """Pooled HTTP client with bounded timeouts and retry with exponential backoff.

    Reads (``idempotent=True``) are retried on any transport error and on
    502/503/504. Mutating calls are retried only when the connection could not
    be established, so a decrement is never sent twice.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, connect_timeout: float = 2.0,
                 retries: int = 3, backoff: float = 0.25,
                 transport: Optional[httpx.BaseTransport] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.retries = max(1, retries)
        self.backoff = backoff

        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )
        timeout_config = httpx.Timeout(
            timeout=timeout,
            connect=connect_timeout,
        )
        self._client = httpx.Client(
            base_url=self.base_url,
            limits=limits,
            timeout=timeout_config,
            follow_redirects=True,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def request_with_retry(self, method: str, path: str, *, idempotent: bool = True,
                           **kwargs) -> Optional[httpx.Response]:
        """Send a request, returning the last response or ``None`` if none was received."""
        retryable = httpx.RequestError if idempotent else _NOT_SENT_ERRORS
        response: Optional[httpx.Response] = None
        for attempt in range(self.retries):
            try:
                response = self._client.request(method, path, **kwargs)
            except retryable as e:
                logger.debug(f"{method} {self.base_url}{path} failed ({e!r}), attempt {attempt + 1}/{self.retries}")
                response = None
                if attempt < self.retries - 1:
                    time.sleep(self.backoff * (2 ** attempt))
                    continue
                return None
            except httpx.RequestError as e:
                logger.warning(f"{method} {self.base_url}{path} failed and will not be retried: {e!r}")
                return None

            if idempotent and response.status_code in RETRYABLE_STATUSES and attempt < self.retries - 1:
                logger.debug(f"{method} {self.base_url}{path} answered {response.status_code}, retrying")
                time.sleep(self.backoff * (2 ** attempt))
                continue
            return response
        return response

    def get(self, path: str, **kwargs) -> Optional[httpx.Response]:
        return self.request_with_retry("GET", path, idempotent=True, **kwargs)

    def patch(self, path: str, **kwargs) -> Optional[httpx.Response]:
        return self.request_with_retry("PATCH", path, idempotent=False, **kwargs)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
