"""Tests for the client credentials grant."""

import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from grantflow.flows.client_credentials import OAuth2ClientCredentials
from grantflow.models.errors import (
    NoClientIdError,
    NoClientSecretError,
    UnsupportedTokenTypeError,
)
from grantflow.primitives.params import params_from_query
from grantflow.services.transport import TransportResponse

SETTINGS = {
    "client_id": "abc",
    "client_secret": "s3cr3t",
    "authorize_uri": "https://auth.test/authorize",
    "token_uri": "https://auth.test/token",
    "scope": "read",
}


def json_response(payload, status_code=200) -> TransportResponse:
    return TransportResponse(status_code, json.dumps(payload).encode())


class TestClientCredentials:
    """Test obtaining a token with the client's own credentials."""

    def setup_method(self):
        self.transport = AsyncMock()
        self.transport.perform.return_value = json_response(
            {"access_token": "abc", "token_type": "bearer", "expires_in": 3600}
        )

    async def test_token_request(self):
        # Arrange
        flow = OAuth2ClientCredentials(SETTINGS, transport=self.transport)

        # Act
        result = await flow.authorize({"audience": "api"})

        # Assert
        assert result["access_token"] == "abc"
        request = self.transport.perform.await_args.args[0]
        assert str(request.url) == "https://auth.test/token"
        assert params_from_query(request.content.decode()) == {
            "grant_type": "client_credentials",
            "scope": "read",
            "audience": "api",
        }
        encoded = request.headers["Authorization"].removeprefix("Basic ")
        assert base64.b64decode(encoded) == b"abc:s3cr3t"

    async def test_secret_in_body(self):
        flow = OAuth2ClientCredentials(
            {**SETTINGS, "secret_in_body": True}, transport=self.transport
        )

        await flow.authorize()

        request = self.transport.perform.await_args.args[0]
        body = params_from_query(request.content.decode())
        assert body["client_id"] == "abc"
        assert body["client_secret"] == "s3cr3t"

    def test_requires_client_id(self):
        flow = OAuth2ClientCredentials(
            {**SETTINGS, "client_id": None}, transport=self.transport
        )

        with pytest.raises(NoClientIdError):
            flow.access_token_request()

    def test_requires_client_secret(self):
        flow = OAuth2ClientCredentials(
            {**SETTINGS, "client_secret": None}, transport=self.transport
        )

        with pytest.raises(NoClientSecretError):
            flow.access_token_request()

    async def test_non_bearer_token_fails(self):
        # Arrange
        self.transport.perform.return_value = json_response(
            {"access_token": "abc", "token_type": "mac"}
        )
        on_failure = MagicMock()
        flow = OAuth2ClientCredentials(SETTINGS, transport=self.transport)

        # Act
        result = await flow.authorize(on_failure=on_failure)

        # Assert
        assert result is None
        (error,) = on_failure.call_args.args
        assert isinstance(error, UnsupportedTokenTypeError)
        assert flow.access_token is None
