"""Signing outgoing requests with a flow's access token."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING

import httpx

from grantflow.models.errors import OAuth2Error

if TYPE_CHECKING:
    from grantflow.flows.base import OAuth2Flow

logger = logging.getLogger(__name__)


class OAuth2BearerAuth(httpx.Auth):
    """HTTPX auth adding the flow's access token as a bearer token.

    With an async client, a 401 response triggers one refresh with the
    flow's refresh token and a retry of the request, unless the flow is
    busy authorizing.
    """

    def __init__(self, flow: OAuth2Flow):
        self.flow = flow

    def _sign(self, request: httpx.Request) -> None:
        access_token = self.flow.client_config.access_token
        if access_token:
            request.headers["Authorization"] = f"Bearer {access_token}"

    def sync_auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        self._sign(request)
        yield request

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        self._sign(request)
        response = yield request

        if response.status_code != 401 or not self.flow.client_config.refresh_token:
            return
        if self.flow.is_authorizing:
            logger.debug("Request was rejected with 401 while authorizing")
            return

        logger.debug("Request was rejected with 401, refreshing access token")
        try:
            await self.flow.do_refresh_token()
        except OAuth2Error as e:
            logger.warning(f"Token refresh failed: {e}")
            return

        self._sign(request)
        yield request
