"""HTTP transport used by grant flows.

The flow hands fully built ``httpx.Request`` objects to a transport and
gets back the status code and raw body. Network failures surface as
``GenericError``; cancelling the awaiting task cancels the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from grantflow.models.errors import GenericError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    """Status code, body and headers of a completed request."""

    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


class Transport(Protocol):
    """Protocol for sending a single request."""

    async def perform(self, request: httpx.Request) -> TransportResponse:
        """Send ``request`` and return the response.

        Raises:
            GenericError: If the request could not be completed
        """
        ...


class HttpxTransport:
    """Transport backed by a shared ``httpx.AsyncClient``."""

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize the transport.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Client to use instead of creating one
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def perform(self, request: httpx.Request) -> TransportResponse:
        logger.debug(f"{request.method} {request.url.host}{request.url.path}")
        try:
            response = await self._http_client.send(request)
        except httpx.HTTPError as e:
            raise GenericError(f"HTTP error during request: {e}") from e

        logger.debug(f"Response status {response.status_code}")
        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
