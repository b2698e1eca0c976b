"""OAuth 2.0 dynamic client registration service.

Implements RFC 7591 (OAuth 2.0 Dynamic Client Registration Protocol) to
obtain a client id, and possibly a secret, for a flow that has none.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from grantflow.models.errors import GenericError, NoRegistrationURLError
from grantflow.models.registration import ClientCredentials, ClientMetadata
from grantflow.models.requests import AuthRequest

if TYPE_CHECKING:
    from grantflow.flows.base import OAuth2Flow


class DynamicRegistrar:
    """Registers a flow's client with its authorization server.

    The registration request is sent through the flow, so it is the flow's
    tracked, cancellable request, and a successful registration updates the
    flow's client configuration and stored credentials.
    """

    def __init__(
        self,
        extra_headers: Mapping[str, str] | None = None,
        allow_refresh_tokens: bool = True,
        initial_access_token: str | None = None,
    ):
        """Initialize the registrar.

        Args:
            extra_headers: Headers added to the registration request
            allow_refresh_tokens: Also register the ``refresh_token`` grant
            initial_access_token: Token for protected registration endpoints
        """
        self.extra_headers = dict(extra_headers or {})
        self.allow_refresh_tokens = allow_refresh_tokens
        self.initial_access_token = initial_access_token

    def client_metadata(self, flow: OAuth2Flow) -> ClientMetadata:
        """The client metadata to register for ``flow``."""
        config = flow.client_config
        grant_types = [flow.grant_type]
        if self.allow_refresh_tokens:
            grant_types.append("refresh_token")

        redirect_uris = list(config.redirect_urls)
        if config.redirect and config.redirect not in redirect_uris:
            redirect_uris.insert(0, config.redirect)

        return ClientMetadata(
            client_name=config.client_name,
            redirect_uris=redirect_uris,
            logo_uri=config.logo_url,
            scope=config.scope,
            grant_types=grant_types,
            response_types=[flow.response_type] if flow.response_type else [],
            token_endpoint_auth_method=config.endpoint_auth_method,
        )

    def registration_request(self, flow: OAuth2Flow) -> httpx.Request:
        """Build the registration request for ``flow``.

        Raises:
            NoRegistrationURLError: If the flow has no registration URL
            NotUsingTLSError: If the registration URL is not ``https``
        """
        registration_url = flow.client_config.registration_url
        if not registration_url:
            raise NoRegistrationURLError()
        url = AuthRequest(url=registration_url).as_url()

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        # RFC 7591 Section 3.1
        if self.initial_access_token:
            headers["Authorization"] = f"Bearer {self.initial_access_token}"
        headers.update(self.extra_headers)

        try:
            metadata = self.client_metadata(flow)
        except ValidationError as e:
            raise GenericError(f"Invalid client metadata: {e}") from e
        return httpx.Request(
            "POST",
            url,
            json=metadata.model_dump(exclude_none=True, mode="json"),
            headers=headers,
        )

    async def register(self, flow: OAuth2Flow) -> dict[str, Any]:
        """Register the client and adopt the returned credentials.

        Args:
            flow: The flow to register a client for

        Returns:
            The registration response parameters

        Raises:
            OAuth2Error: If registration fails
        """
        request = self.registration_request(flow)
        flow.logger.debug(f"Registering client at {request.url}")

        response = await flow.perform_request(request)
        flow.raise_for_status(response)
        params = flow.parse_json(response.body)
        flow.assure_no_error_in_response(params)

        try:
            credentials = ClientCredentials.model_validate(params)
        except ValidationError as e:
            raise GenericError(f"Invalid registration response format: {e}") from e

        flow.did_register(
            credentials.client_id,
            credentials.client_secret,
            credentials.token_endpoint_auth_method,
        )
        flow.logger.info(f"Successfully registered client {credentials.client_id}")
        return params
