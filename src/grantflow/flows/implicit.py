"""Implicit grant (RFC 6749 Section 4.2).

The access token arrives directly in the redirect URL's fragment, so no
token endpoint request is made.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from grantflow.flows.base import OAuth2Flow
from grantflow.models.errors import InvalidRedirectURLError, OAuth2Error
from grantflow.primitives.params import params_from_query
from grantflow.services.security import validate_redirect_prefix


class OAuth2ImplicitGrant(OAuth2Flow):
    """Implicit grant, token delivered in the redirect fragment."""

    grant_type = "implicit"
    response_type = "token"

    def redirect_params(self, redirect: str) -> str:
        """The part of the redirect URL carrying the response."""
        return urlsplit(redirect).fragment

    async def handle_redirect_url(self, redirect: str) -> dict[str, Any] | None:
        """Parse the token out of the redirect and finish the authorization.

        Raises:
            OAuth2Error: If the redirect is invalid or carries an error; the
                failure callback has been invoked as well
        """
        self.logger.debug("Handling redirect URL")
        try:
            if self.context.redirect_url:
                validate_redirect_prefix(redirect, self.context.redirect_url)
            encoded = self.redirect_params(redirect)
            if not encoded:
                raise InvalidRedirectURLError(redirect)
            params = self.parse_access_token_response(params_from_query(encoded))
        except OAuth2Error as e:
            self._did_fail(e)
            raise

        self.logger.debug("Successfully extracted access token")
        self._did_authorize(params)
        return params

    def assure_access_token_params_are_valid(self, params: Mapping[str, Any]) -> None:
        self.assure_matches_state(params)


class OAuth2ImplicitGrantWithQueryParams(OAuth2ImplicitGrant):
    """Implicit grant for servers putting the token in the query instead."""

    def redirect_params(self, redirect: str) -> str:
        return urlsplit(redirect).query
