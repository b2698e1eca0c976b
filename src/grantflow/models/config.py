"""Client configuration and token state.

``ClientSettings`` validates the raw settings mapping a flow is created
with; ``ClientConfig`` is the typed, mutable configuration the flow works
with afterwards. ``TokenRecord`` and ``CredentialRecord`` are the shapes
written to and read from a credential store.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_AUTHORIZE_URL = "http://localhost"


class EndpointAuthMethod(str, Enum):
    """How the client authenticates against the token endpoint."""

    NONE = "none"
    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_BASIC = "client_secret_basic"


class ClientSettings(BaseModel):
    """Raw settings a flow is configured with.

    Unknown keys are accepted and ignored so provider-specific settings can
    travel in the same mapping.
    """

    model_config = ConfigDict(extra="allow")

    client_id: str | None = None
    client_secret: str | None = None
    client_name: str | None = None
    authorize_uri: str | None = None
    token_uri: str | None = None
    device_authorize_uri: str | None = None
    registration_uri: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    logo_uri: str | None = None
    scope: str | None = None
    secret_in_body: bool = False
    token_assume_unexpired: bool = True
    username: str | None = None
    password: str | None = None
    storage_service: str | None = None


class TokenRecord(BaseModel):
    """Persisted token state."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str | None = Field(default=None, alias="accessToken")
    access_token_date: datetime | None = Field(default=None, alias="accessTokenDate")
    refresh_token: str | None = Field(default=None, alias="refreshToken")

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class CredentialRecord(BaseModel):
    """Persisted client credentials."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    secret: str | None = None
    endpoint_auth_method: EndpointAuthMethod = Field(
        default=EndpointAuthMethod.NONE, alias="endpointAuthMethod"
    )

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClientConfig:
    """Server settings and token state of one client.

    Mutated in place whenever a token response is parsed, and cleared by
    ``forget_credentials`` / ``forget_tokens``.
    """

    authorize_url: str = DEFAULT_AUTHORIZE_URL
    client_id: str | None = None
    client_secret: str | None = None
    client_name: str | None = None
    token_url: str | None = None
    device_authorize_url: str | None = None
    registration_url: str | None = None
    logo_url: str | None = None
    scope: str | None = None
    redirect: str | None = None
    redirect_urls: list[str] = field(default_factory=list)

    access_token: str | None = None
    access_token_expiry: datetime | None = None
    refresh_token: str | None = None
    assume_unexpired_if_no_expiry: bool = True

    endpoint_auth_method: EndpointAuthMethod = EndpointAuthMethod.NONE
    storage_service: str | None = None

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> ClientConfig:
        """Build the configuration from validated settings."""
        if settings.client_secret:
            method = (
                EndpointAuthMethod.CLIENT_SECRET_POST
                if settings.secret_in_body
                else EndpointAuthMethod.CLIENT_SECRET_BASIC
            )
        else:
            method = EndpointAuthMethod.NONE

        return cls(
            authorize_url=settings.authorize_uri or DEFAULT_AUTHORIZE_URL,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            client_name=settings.client_name,
            token_url=settings.token_uri,
            device_authorize_url=settings.device_authorize_uri,
            registration_url=settings.registration_uri,
            logo_url=settings.logo_uri,
            scope=settings.scope,
            redirect=settings.redirect_uris[0] if settings.redirect_uris else None,
            redirect_urls=list(settings.redirect_uris),
            assume_unexpired_if_no_expiry=settings.token_assume_unexpired,
            endpoint_auth_method=method,
            storage_service=settings.storage_service,
        )

    @property
    def token_endpoint(self) -> str:
        """The token URL, falling back to the authorize URL."""
        return self.token_url or self.authorize_url

    @property
    def service_key(self) -> str:
        """Key under which credentials and tokens are stored."""
        return self.storage_service or self.authorize_url

    @property
    def secret_in_body(self) -> bool:
        return self.endpoint_auth_method == EndpointAuthMethod.CLIENT_SECRET_POST

    @secret_in_body.setter
    def secret_in_body(self, value: bool) -> None:
        if value:
            self.endpoint_auth_method = EndpointAuthMethod.CLIENT_SECRET_POST
        elif self.client_secret:
            self.endpoint_auth_method = EndpointAuthMethod.CLIENT_SECRET_BASIC
        else:
            self.endpoint_auth_method = EndpointAuthMethod.NONE

    def has_unexpired_access_token(self, now: datetime | None = None) -> bool:
        """Whether an access token is present and not yet expired."""
        if not self.access_token:
            return False
        if self.access_token_expiry is None:
            return self.assume_unexpired_if_no_expiry
        return (now or _utcnow()) < self.access_token_expiry

    def update_from_response(self, params: Mapping[str, Any]) -> None:
        """Merge the token fields of a token response.

        ``expires_in`` may be a number or a numeric string.
        """
        access_token = params.get("access_token")
        if isinstance(access_token, str):
            self.access_token = access_token

        self.access_token_expiry = None
        expires_in = params.get("expires_in")
        seconds: float | None = None
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            seconds = float(expires_in)
        elif isinstance(expires_in, str):
            try:
                seconds = float(expires_in)
            except ValueError:
                logger.warning(f"Ignoring non-numeric expires_in '{expires_in}'")
        if seconds is not None:
            self.access_token_expiry = _utcnow() + timedelta(seconds=seconds)

        refresh_token = params.get("refresh_token")
        if isinstance(refresh_token, str):
            self.refresh_token = refresh_token

    def storable_credential_record(self) -> CredentialRecord | None:
        if not self.client_id:
            return None
        return CredentialRecord(
            id=self.client_id,
            secret=self.client_secret or None,
            endpoint_auth_method=self.endpoint_auth_method,
        )

    def storable_token_record(self) -> TokenRecord | None:
        record = TokenRecord()
        if self.access_token:
            record.access_token = self.access_token
            record.access_token_date = self.access_token_expiry
        if self.refresh_token:
            record.refresh_token = self.refresh_token
        if record.access_token is None and record.refresh_token is None:
            return None
        return record

    def update_from_records(
        self,
        credentials: CredentialRecord | None = None,
        tokens: TokenRecord | None = None,
        now: datetime | None = None,
    ) -> None:
        """Restore persisted credentials and tokens.

        An access token that has expired, or that has no expiry while
        ``assume_unexpired_if_no_expiry`` is off, is not restored. The refresh
        token is restored regardless.
        """
        if credentials is not None:
            self.client_id = credentials.id
            self.client_secret = credentials.secret
            self.endpoint_auth_method = credentials.endpoint_auth_method

        if tokens is not None:
            if tokens.access_token:
                expiry = tokens.access_token_date
                if expiry is not None and expiry.tzinfo is None:
                    expiry = expiry.replace(tzinfo=timezone.utc)
                if expiry is None and not self.assume_unexpired_if_no_expiry:
                    logger.debug("Not restoring stored access token without expiry")
                elif expiry is not None and expiry <= (now or _utcnow()):
                    logger.debug("Not restoring expired stored access token")
                else:
                    self.access_token = tokens.access_token
                    self.access_token_expiry = expiry
            if tokens.refresh_token:
                self.refresh_token = tokens.refresh_token

    def forget_credentials(self) -> None:
        self.client_id = None
        self.client_secret = None

    def forget_tokens(self) -> None:
        self.access_token = None
        self.access_token_expiry = None
        self.refresh_token = None
