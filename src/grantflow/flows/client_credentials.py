"""Client credentials grant (RFC 6749 Section 4.4).

The client authenticates with its own id and secret; no user is involved.
"""

from __future__ import annotations

from collections.abc import Mapping

from grantflow.flows.base import OAuth2Flow
from grantflow.models.errors import NoClientIdError, NoClientSecretError
from grantflow.models.requests import AuthRequest


class OAuth2ClientCredentials(OAuth2Flow):
    grant_type = "client_credentials"

    def access_token_request(
        self, params: Mapping[str, str] | None = None
    ) -> AuthRequest:
        """Build the token request.

        Raises:
            NoClientIdError: If no client id is configured
            NoClientSecretError: If no client secret is configured
        """
        if not self.client_config.client_id:
            raise NoClientIdError()
        if not self.client_config.client_secret:
            raise NoClientSecretError()

        request = AuthRequest(url=self.client_config.token_endpoint)
        request.params["grant_type"] = self.grant_type
        if self.client_config.scope:
            request.params["scope"] = self.client_config.scope
        request.add_params(params)
        return request

    async def do_authorize(self, params: Mapping[str, str] | None = None) -> None:
        request = self.access_token_request(params).as_http_request(self.client_config)
        self.logger.debug(f"Requesting new access token from {request.url}")
        response = await self.perform_request(request)
        self.raise_for_status(response)
        result = self.parse_access_token_response_data(response.body)
        self.logger.debug("Did get access token")
        self._did_authorize(result)
