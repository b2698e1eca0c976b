"""Resource owner password credentials grant (RFC 6749 Section 4.3)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from grantflow.flows.base import OAuth2Flow
from grantflow.models.errors import (
    NoPasswordError,
    NoUsernameError,
    WrongUsernamePasswordError,
)
from grantflow.models.requests import AuthRequest


class OAuth2PasswordGrant(OAuth2Flow):
    """Password grant.

    The username and password come from the ``username`` / ``password``
    settings and may be changed on the instance before authorizing.
    """

    grant_type = "password"

    def __init__(self, settings: Mapping[str, Any], **kwargs: Any):
        super().__init__(settings, **kwargs)
        self.username = self.settings.username
        self.password = self.settings.password

    def access_token_request(
        self, params: Mapping[str, str] | None = None
    ) -> AuthRequest:
        """Build the token request.

        Raises:
            NoUsernameError: If no username is set
            NoPasswordError: If no password is set
        """
        if not self.username:
            raise NoUsernameError()
        if not self.password:
            raise NoPasswordError()

        request = AuthRequest(url=self.client_config.token_endpoint)
        request.params["grant_type"] = self.grant_type
        request.params["username"] = self.username
        request.params["password"] = self.password
        if self.client_config.client_id:
            request.params["client_id"] = self.client_config.client_id
        if self.client_config.scope:
            request.params["scope"] = self.client_config.scope
        request.add_params(params)
        return request

    async def do_authorize(self, params: Mapping[str, str] | None = None) -> None:
        request = self.access_token_request(params).as_http_request(self.client_config)
        self.logger.debug(f"Requesting new access token from {request.url}")
        response = await self.perform_request(request)
        if response.status_code in (401, 403):
            raise WrongUsernamePasswordError()
        self.raise_for_status(response)
        result = self.parse_access_token_response_data(response.body)
        self.logger.debug("Did get access token")
        self._did_authorize(result)
