"""Tests for building endpoint requests.

Covers:
- TLS enforcement
- Query string composition for GET requests
- Client authentication via Basic header or request body
- JSON and form bodies
"""

import base64
import json

import pytest

from grantflow.models.config import ClientConfig, EndpointAuthMethod
from grantflow.models.errors import NoClientIdError, NotUsingTLSError
from grantflow.models.requests import AuthRequest, ContentType, HTTPMethod
from grantflow.primitives.params import params_from_query


def form_body(request) -> dict[str, str]:
    return params_from_query(request.content.decode("utf-8"))


class TestAsURL:
    """Test URL resolution."""

    def test_plain_http_is_rejected(self):
        request = AuthRequest(url="http://auth.test/token")

        with pytest.raises(NotUsingTLSError):
            request.as_url()

    def test_post_url_has_no_query(self):
        request = AuthRequest(url="https://auth.test/token")
        request.params["grant_type"] = "password"

        assert request.as_url() == "https://auth.test/token"

    def test_get_appends_params(self):
        # Arrange
        request = AuthRequest(url="https://auth.test/authorize", method=HTTPMethod.GET)
        request.params["client_id"] = "abc"
        request.params["redirect_uri"] = "myapp://cb"

        # Act
        url = request.as_url()

        # Assert
        assert url == (
            "https://auth.test/authorize?client_id=abc&redirect_uri=myapp%3A%2F%2Fcb"
        )

    def test_get_keeps_existing_query(self):
        request = AuthRequest(
            url="https://auth.test/authorize?tenant=x", method=HTTPMethod.GET
        )
        request.params["client_id"] = "abc"

        assert request.as_url() == "https://auth.test/authorize?tenant=x&client_id=abc"


class TestAsHTTPRequest:
    """Test concrete request construction and client authentication."""

    def setup_method(self):
        self.request = AuthRequest(url="https://auth.test/token")
        self.request.params["grant_type"] = "client_credentials"
        self.request.params["client_id"] = "abc"

    def test_public_client_sends_params_in_body(self):
        # Arrange
        config = ClientConfig(client_id="abc")

        # Act
        http_request = self.request.as_http_request(config)

        # Assert
        assert http_request.method == "POST"
        assert str(http_request.url) == "https://auth.test/token"
        assert http_request.headers["Content-Type"] == ContentType.WWW_FORM.value
        assert http_request.headers["Accept"] == "application/json"
        assert "Authorization" not in http_request.headers
        assert form_body(http_request) == {
            "grant_type": "client_credentials",
            "client_id": "abc",
        }

    def test_secret_goes_into_basic_header(self):
        # Arrange
        config = ClientConfig(
            client_id="abc",
            client_secret="s3 cr&t",
            endpoint_auth_method=EndpointAuthMethod.CLIENT_SECRET_BASIC,
        )

        # Act
        http_request = self.request.as_http_request(config)

        # Assert
        scheme, encoded = http_request.headers["Authorization"].split(" ")
        assert scheme == "Basic"
        assert base64.b64decode(encoded).decode() == "abc:s3+cr%26t"
        body = form_body(http_request)
        assert "client_id" not in body
        assert "client_secret" not in body

    def test_secret_goes_into_body(self):
        config = ClientConfig(
            client_id="abc",
            client_secret="s3cr3t",
            endpoint_auth_method=EndpointAuthMethod.CLIENT_SECRET_POST,
        )

        http_request = self.request.as_http_request(config)

        assert "Authorization" not in http_request.headers
        assert form_body(http_request) == {
            "grant_type": "client_credentials",
            "client_id": "abc",
            "client_secret": "s3cr3t",
        }

    def test_secret_without_client_id(self):
        config = ClientConfig(client_secret="s3cr3t")

        with pytest.raises(NoClientIdError):
            self.request.as_http_request(config)

    def test_request_params_are_not_mutated(self):
        config = ClientConfig(
            client_id="abc",
            client_secret="s3cr3t",
            endpoint_auth_method=EndpointAuthMethod.CLIENT_SECRET_BASIC,
        )

        self.request.as_http_request(config)

        assert self.request.params["client_id"] == "abc"

    def test_header_authorize_overrides(self):
        self.request.header_authorize = "Bearer initial"

        http_request = self.request.as_http_request(ClientConfig(client_id="abc"))

        assert http_request.headers["Authorization"] == "Bearer initial"

    def test_json_body(self):
        self.request.content_type = ContentType.JSON

        http_request = self.request.as_http_request(ClientConfig(client_id="abc"))

        assert http_request.headers["Content-Type"] == "application/json"
        assert json.loads(http_request.content) == {
            "grant_type": "client_credentials",
            "client_id": "abc",
        }

    def test_get_request_carries_params_in_url(self):
        request = AuthRequest(url="https://auth.test/device", method=HTTPMethod.GET)
        request.params["client_id"] = "abc"

        http_request = request.as_http_request(ClientConfig(client_id="abc"))

        assert http_request.method == "GET"
        assert http_request.url.params["client_id"] == "abc"

    def test_tls_is_enforced(self):
        request = AuthRequest(url="http://auth.test/token")

        with pytest.raises(NotUsingTLSError):
            request.as_http_request(ClientConfig(client_id="abc"))
