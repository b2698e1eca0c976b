"""Tests for client settings and configuration.

Covers:
- Building the configuration from a settings mapping
- Token expiry handling and response merging
- Storable records and restoring them
- Forgetting credentials and tokens
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from grantflow.models.config import (
    DEFAULT_AUTHORIZE_URL,
    ClientConfig,
    ClientSettings,
    CredentialRecord,
    EndpointAuthMethod,
    TokenRecord,
)


def config_from(**settings) -> ClientConfig:
    return ClientConfig.from_settings(ClientSettings.model_validate(settings))


class TestFromSettings:
    """Test building a ClientConfig from settings."""

    def test_full_settings(self):
        # Arrange & Act
        config = config_from(
            client_id="abc",
            client_secret="s3cr3t",
            authorize_uri="https://auth.test/authorize",
            token_uri="https://auth.test/token",
            redirect_uris=["myapp://cb", "https://app.test/cb"],
            scope="read write",
        )

        # Assert
        assert config.client_id == "abc"
        assert config.client_secret == "s3cr3t"
        assert config.authorize_url == "https://auth.test/authorize"
        assert config.token_endpoint == "https://auth.test/token"
        assert config.redirect == "myapp://cb"
        assert config.redirect_urls == ["myapp://cb", "https://app.test/cb"]
        assert config.scope == "read write"
        assert config.endpoint_auth_method == EndpointAuthMethod.CLIENT_SECRET_BASIC

    def test_defaults(self):
        config = config_from()

        assert config.authorize_url == DEFAULT_AUTHORIZE_URL
        assert config.token_endpoint == DEFAULT_AUTHORIZE_URL
        assert config.redirect is None
        assert config.endpoint_auth_method == EndpointAuthMethod.NONE
        assert config.assume_unexpired_if_no_expiry is True

    def test_secret_in_body_selects_post(self):
        config = config_from(client_id="abc", client_secret="x", secret_in_body=True)

        assert config.endpoint_auth_method == EndpointAuthMethod.CLIENT_SECRET_POST
        assert config.secret_in_body is True

    def test_secret_in_body_without_secret(self):
        config = config_from(client_id="abc", secret_in_body=True)

        assert config.endpoint_auth_method == EndpointAuthMethod.NONE

    def test_unknown_settings_are_accepted(self):
        settings = ClientSettings.model_validate({"client_id": "a", "keychain": False})

        assert settings.client_id == "a"

    def test_malformed_settings_are_rejected(self):
        with pytest.raises(ValidationError):
            ClientSettings.model_validate({"redirect_uris": "not-a-list"})

    def test_service_key(self):
        assert config_from(authorize_uri="https://a.test").service_key == (
            "https://a.test"
        )
        assert (
            config_from(authorize_uri="https://a.test", storage_service="svc")
        ).service_key == "svc"


class TestTokenState:
    """Test access token expiry and response merging."""

    def test_no_token_is_not_unexpired(self):
        assert config_from().has_unexpired_access_token() is False

    def test_token_without_expiry_follows_assumption(self):
        # Arrange
        assumed = config_from()
        not_assumed = config_from(token_assume_unexpired=False)

        # Act
        assumed.access_token = "t"
        not_assumed.access_token = "t"

        # Assert
        assert assumed.has_unexpired_access_token() is True
        assert not_assumed.has_unexpired_access_token() is False

    def test_expired_token(self):
        config = config_from()
        config.access_token = "t"
        config.access_token_expiry = datetime.now(timezone.utc) - timedelta(seconds=1)

        assert config.has_unexpired_access_token() is False

    def test_update_from_response(self):
        # Arrange
        config = config_from()
        before = datetime.now(timezone.utc)

        # Act
        config.update_from_response(
            {
                "access_token": "abc",
                "token_type": "bearer",
                "expires_in": 3600,
                "refresh_token": "def",
            }
        )

        # Assert
        assert config.access_token == "abc"
        assert config.refresh_token == "def"
        assert config.access_token_expiry >= before + timedelta(seconds=3600)
        assert config.has_unexpired_access_token() is True

    def test_update_accepts_numeric_string_expiry(self):
        config = config_from()
        before = datetime.now(timezone.utc)

        config.update_from_response({"access_token": "abc", "expires_in": "60"})

        assert config.access_token_expiry >= before + timedelta(seconds=60)

    def test_update_without_expiry_clears_previous_expiry(self):
        config = config_from()
        config.update_from_response({"access_token": "a", "expires_in": 60})

        config.update_from_response({"access_token": "b"})

        assert config.access_token == "b"
        assert config.access_token_expiry is None

    def test_update_ignores_non_numeric_expiry(self):
        config = config_from()

        config.update_from_response({"access_token": "a", "expires_in": "soon"})

        assert config.access_token_expiry is None

    def test_update_keeps_refresh_token_if_absent(self):
        config = config_from()
        config.refresh_token = "keep-me"

        config.update_from_response({"access_token": "a"})

        assert config.refresh_token == "keep-me"


class TestRecords:
    """Test storable records and restoring from them."""

    def test_storable_credential_record(self):
        config = config_from(client_id="abc", client_secret="x", secret_in_body=True)

        record = config.storable_credential_record()

        assert record.to_storage() == {
            "id": "abc",
            "secret": "x",
            "endpointAuthMethod": "client_secret_post",
        }

    def test_no_credential_record_without_client_id(self):
        assert config_from().storable_credential_record() is None

    def test_storable_token_record(self):
        # Arrange
        config = config_from()
        expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)
        config.access_token = "abc"
        config.access_token_expiry = expiry
        config.refresh_token = "def"

        # Act
        record = config.storable_token_record()

        # Assert
        assert record.access_token == "abc"
        assert record.access_token_date == expiry
        assert record.refresh_token == "def"
        assert set(record.to_storage()) == {
            "accessToken",
            "accessTokenDate",
            "refreshToken",
        }

    def test_no_token_record_without_tokens(self):
        assert config_from().storable_token_record() is None

    def test_restore_credentials(self):
        config = config_from()

        config.update_from_records(
            credentials=CredentialRecord.model_validate(
                {"id": "abc", "secret": "x", "endpointAuthMethod": "client_secret_post"}
            )
        )

        assert config.client_id == "abc"
        assert config.client_secret == "x"
        assert config.secret_in_body is True

    def test_restore_unexpired_token(self):
        config = config_from()
        expiry = datetime.now(timezone.utc) + timedelta(hours=1)

        config.update_from_records(
            tokens=TokenRecord(access_token="abc", access_token_date=expiry)
        )

        assert config.access_token == "abc"
        assert config.access_token_expiry == expiry

    def test_expired_token_is_discarded_refresh_token_kept(self):
        # Arrange
        config = config_from()
        tokens = TokenRecord.model_validate(
            {
                "accessToken": "abc",
                "accessTokenDate": "2020-01-01T00:00:00Z",
                "refreshToken": "def",
            }
        )

        # Act
        config.update_from_records(tokens=tokens)

        # Assert
        assert config.access_token is None
        assert config.refresh_token == "def"

    def test_undated_token_discarded_when_not_assumed_unexpired(self):
        config = config_from(token_assume_unexpired=False)

        config.update_from_records(tokens=TokenRecord(access_token="abc"))

        assert config.access_token is None

    def test_undated_token_restored_when_assumed_unexpired(self):
        config = config_from()

        config.update_from_records(tokens=TokenRecord(access_token="abc"))

        assert config.access_token == "abc"
        assert config.has_unexpired_access_token() is True

    def test_forget(self):
        # Arrange
        config = config_from(client_id="abc", client_secret="x")
        config.update_from_response(
            {"access_token": "a", "refresh_token": "r", "expires_in": 60}
        )

        # Act
        config.forget_tokens()
        config.forget_credentials()

        # Assert
        assert config.access_token is None
        assert config.access_token_expiry is None
        assert config.refresh_token is None
        assert config.client_id is None
        assert config.client_secret is None
