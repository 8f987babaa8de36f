"""Request/response transport to the remote canvas store.

Wraps a shared httpx.AsyncClient, attaches the bearer token when one is
available and maps httpx failures onto the sync core's error taxonomy.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import httpx

from canvas_sync.app.core.logging import get_logger
from canvas_sync.app.exceptions import (
    NetworkUnavailableError,
    OperationTimeoutError,
    TransportStatusError,
    ValidationError,
)

logger = get_logger(__name__)

TokenProvider = Callable[[], Optional[str]]

# Statuses the remote store uses to reject a document outright
VALIDATION_STATUSES = frozenset({400, 409, 422})


class Transport(ABC):
    """Contract consumed by the sync engine and the oracles."""

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None when empty).

        Raises:
            OperationTimeoutError: The deadline elapsed
            NetworkUnavailableError: The store could not be reached
            ValidationError: The store rejected the document (400/409/422)
            TransportStatusError: Any other error status
        """
        pass

    def set_offline(self, offline: bool) -> None:
        """Receive the explicit connectivity signal (ignored by default)."""

    async def get(self, path: str, timeout: Optional[float] = None) -> Any:
        return await self.request("GET", path, timeout=timeout)

    async def post(
        self, path: str, body: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        return await self.request("POST", path, body=body, timeout=timeout)

    async def put(
        self, path: str, body: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        return await self.request("PUT", path, body=body, timeout=timeout)

    async def patch(
        self, path: str, body: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        """Merge ``body`` into the document at ``path``."""
        return await self.request("PATCH", path, body=body, timeout=timeout)

    async def delete(self, path: str, timeout: Optional[float] = None) -> Any:
        return await self.request("DELETE", path, timeout=timeout)


class HttpTransport(Transport):
    """httpx-backed transport.

    Args:
        http_client: Shared client (base_url already configured)
        token_provider: Returns the current auth token, or None for public calls
        timeout: Default deadline in seconds for every call
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 10.0,
    ):
        self._http_client = http_client
        self._token_provider = token_provider
        self.timeout = timeout
        self._offline = False

    @property
    def offline(self) -> bool:
        return self._offline

    def set_offline(self, offline: bool) -> None:
        """Explicit offline signal; calls fail fast while set."""
        self._offline = offline

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        if self._offline:
            raise NetworkUnavailableError(f"Offline: {method} {path} not sent")

        deadline = timeout if timeout is not None else self.timeout
        started = time.perf_counter()
        try:
            response = await self._http_client.request(
                method,
                path,
                json=body,
                headers=self._build_headers(),
                timeout=deadline,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise OperationTimeoutError(
                f"{method} {path} timed out after {deadline}s", timeout=deadline
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in VALIDATION_STATUSES:
                raise ValidationError(
                    f"{method} {path} rejected with HTTP {status}: {e.response.text[:200]}"
                ) from e
            raise TransportStatusError(status) from e
        except httpx.TransportError as e:
            raise NetworkUnavailableError(
                f"{method} {path} failed: {type(e).__name__}: {e}"
            ) from e
        finally:
            duration_ms = round((time.perf_counter() - started) * 1000, 1)
            logger.debug(
                f"{method} {path}",
                extra={"duration_ms": duration_ms},
            )

        if not response.content:
            return None
        return response.json()
