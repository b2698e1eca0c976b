"""Authorization code grant (RFC 6749 Section 4.1).

The user authorizes in a browser, the authorization server redirects back
with a code, and the code is exchanged for tokens at the token endpoint.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from grantflow.flows.base import OAuth2Flow, unexpected_error
from grantflow.models.errors import (
    GenericError,
    NoClientIdError,
    NoDataInResponseError,
    NoRedirectURLError,
    OAuth2Error,
    PrerequisiteFailedError,
)
from grantflow.models.requests import AuthRequest
from grantflow.primitives.params import params_from_query
from grantflow.services.security import validate_redirect_prefix


class OAuth2CodeGrant(OAuth2Flow):
    """Authorization code grant.

    The redirect reaches the flow either through the authorization handler
    or through ``handle_redirect_url()``.
    """

    grant_type = "authorization_code"
    response_type = "code"

    def token_request_with_code(
        self, code: str, params: Mapping[str, str] | None = None
    ) -> AuthRequest:
        """Build the request exchanging ``code`` for tokens.

        Raises:
            NoClientIdError: If no client id is configured
            NoRedirectURLError: If no authorize URL was built in this context
        """
        client_id = self.client_config.client_id
        if not client_id:
            raise NoClientIdError()
        redirect = self.context.redirect_url
        if not redirect:
            raise NoRedirectURLError()

        request = AuthRequest(url=self.client_config.token_endpoint)
        request.params["code"] = code
        request.params["grant_type"] = self.grant_type
        request.params["redirect_uri"] = redirect
        request.params["client_id"] = client_id
        request.add_params(params)
        return request

    async def handle_redirect_url(self, redirect: str) -> dict[str, Any] | None:
        """Validate the redirect and exchange its code for tokens.

        Returns:
            The token response parameters, or None if the exchange failed

        Raises:
            OAuth2Error: If the redirect is invalid; the failure callback has
                been invoked as well
        """
        self.logger.debug("Handling redirect URL")
        try:
            code = self.validate_redirect_url(redirect)
        except OAuth2Error as e:
            self._did_fail(e)
            raise
        return await self.exchange_code_for_token(code)

    async def exchange_code_for_token(self, code: str) -> dict[str, Any] | None:
        """Exchange ``code`` for tokens and finish the authorization.

        Failures are reported through the failure callback.
        """
        try:
            if not code:
                raise PrerequisiteFailedError(
                    "I don't have a code to exchange, let the user authorize first"
                )
            request = self.token_request_with_code(code).as_http_request(
                self.client_config
            )
            self.logger.debug(f"Exchanging code for access token at {request.url}")
            response = await self.perform_request(request)
            self.raise_for_status(response)
            params = self.parse_access_token_response_data(response.body)
        except OAuth2Error as e:
            self._did_fail(e)
            return None
        except Exception as e:
            self.logger.exception("Unexpected error while exchanging code")
            self._did_fail(unexpected_error(e))
            return None

        has_refresh_token = self.client_config.refresh_token is not None
        self.logger.debug(
            f"Did exchange code for access token, refresh token [{has_refresh_token}]"
        )
        self._did_authorize(params)
        return params

    def validate_redirect_url(self, redirect: str) -> str:
        """Check the redirect and return the code it carries.

        Raises:
            NoRedirectURLError: If no authorize URL was built in this context
            InvalidRedirectURLError: If the redirect goes somewhere unexpected
            InvalidStateError: If the state does not match
            PrerequisiteFailedError: If the redirect has no query or no code
            OAuth2Error: If the redirect carries an error
        """
        expected = self.context.redirect_url
        if not expected:
            raise NoRedirectURLError()
        validate_redirect_prefix(redirect, expected)

        query = urlsplit(redirect).query
        if not query:
            raise PrerequisiteFailedError("The redirect URL contains no query fragment")

        params = params_from_query(query)
        self.assure_no_error_in_response(params)
        code = params.get("code")
        if not code:
            raise PrerequisiteFailedError("No “code” received")
        self.assure_matches_state(params)
        return code


class OAuth2CodeGrantNoTokenType(OAuth2CodeGrant):
    """Code grant for providers that omit ``token_type``.

    The client id and secret always travel in the request body.
    """

    check_bearer_type = False

    def __init__(self, settings: Mapping[str, Any], **kwargs: Any):
        super().__init__({**settings, "secret_in_body": True}, **kwargs)


class OAuth2CodeGrantFormResponse(OAuth2CodeGrant):
    """Code grant for providers answering with ``access_token=...&...``.

    The token endpoint returns a form-encoded body instead of JSON.
    """

    def parse_response_body(self, data: bytes) -> dict[str, Any]:
        if not data:
            raise NoDataInResponseError()
        try:
            return params_from_query(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise GenericError("Failed to decode given data as a UTF-8 string") from e
