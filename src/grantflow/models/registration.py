"""Client registration models for OAuth 2.0 Dynamic Client Registration.

Contains the client metadata sent to a registration endpoint (RFC 7591
Section 2) and the credentials it answers with (Section 3.2.1).
"""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from grantflow.models.config import EndpointAuthMethod

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


class ClientMetadata(BaseModel):
    """OAuth 2.0 Client Metadata for dynamic registration (RFC 7591)."""

    client_name: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    logo_uri: str | None = None
    scope: str | None = None
    grant_types: list[str] = Field(default_factory=list)
    response_types: list[str] = Field(default_factory=list)
    token_endpoint_auth_method: EndpointAuthMethod = EndpointAuthMethod.NONE

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        """Plain HTTP redirects are only allowed to loopback hosts."""
        for uri in v:
            parsed = urlparse(uri)
            if parsed.scheme == "http" and parsed.hostname not in LOOPBACK_HOSTS:
                raise ValueError(f"Redirect URI must use HTTPS or localhost: {uri}")
        return v


class ClientCredentials(BaseModel):
    """OAuth 2.0 Client Credentials from a registration response."""

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str | None = None  # None for public clients
    token_endpoint_auth_method: EndpointAuthMethod | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None
