"""Exception hierarchy for OAuth 2.0 client errors.

Every failure the library reports is an ``OAuth2Error`` subclass. The
subclasses are grouped by where the failure originates:

- ``ConfigurationError``: the client is missing settings it needs, detected
  before any request goes out
- ``RequestError``: a request could not be built, sent or completed
- ``ResponseFormatError``: the server answered with something unusable
- ``ProtocolError``: the server answered with an RFC 6749 / RFC 8628 error

Errors compare structurally: two errors are equal when they are of the same
class and carry the same payload.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 related errors."""

    description = "OAuth2 error"

    def __init__(self, message: str | None = None):
        super().__init__(message if message is not None else self.description)

    @property
    def message(self) -> str:
        return self.args[0]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OAuth2Error):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class GenericError(OAuth2Error):
    """Raised for failures that carry only a message, e.g. transport errors."""

    def __init__(self, message: str):
        super().__init__(message)


# Configuration


class ConfigurationError(OAuth2Error):
    """Raised when the client lacks a setting required for the operation."""

    pass


class NoClientIdError(ConfigurationError):
    description = "Client id not set"


class NoClientSecretError(ConfigurationError):
    description = "Client secret not set"


class NoRedirectURLError(ConfigurationError):
    description = "Redirect URL not set"


class NoUsernameError(ConfigurationError):
    description = "No username"


class NoPasswordError(ConfigurationError):
    description = "No password"


class NoRefreshTokenError(ConfigurationError):
    description = "I don't have a refresh token, not trying to refresh"


class NoRegistrationURLError(ConfigurationError):
    description = "No registration URL defined"


class NoDeviceCodeURLError(ConfigurationError):
    description = "No device code URL defined"


class NoAuthorizationContextError(ConfigurationError):
    description = "No authorization context present"


class InvalidAuthorizationContextError(ConfigurationError):
    description = "Invalid authorization context"


# Transport and request


class RequestError(OAuth2Error):
    """Raised when a request cannot be built, sent or completed."""

    pass


class NotUsingTLSError(RequestError):
    description = "You MUST use HTTPS/SSL/TLS"


class UnableToOpenAuthorizeURLError(RequestError):
    description = "Cannot open authorize URL"


class InvalidRequestError(RequestError):
    description = (
        "The request is missing a required parameter, includes an invalid "
        "parameter value, includes a parameter more than once, or is otherwise "
        "malformed."
    )


class RequestCancelledError(RequestError):
    """Raised when the user or the caller aborts the authorization.

    Never delivered to failure callbacks; a cancelled dance reports no error.
    """

    description = "The request has been cancelled"


# Response shape


class ResponseFormatError(OAuth2Error):
    """Raised when a server response cannot be used."""

    pass


class NoTokenTypeError(ResponseFormatError):
    description = "No token type received, will not use the token"


class UnsupportedTokenTypeError(ResponseFormatError):
    def __init__(self, message: str):
        super().__init__(message)


class NoDataInResponseError(ResponseFormatError):
    description = "No data in the response"


class InvalidStateError(ResponseFormatError):
    description = "The state was either empty or did not check out"


class JSONParserError(ResponseFormatError):
    description = "Error parsing JSON"


class InvalidRedirectURLError(ResponseFormatError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid redirect URL: {detail}")


class PrerequisiteFailedError(ResponseFormatError):
    def __init__(self, message: str):
        super().__init__(message)


# OAuth2 protocol errors


class ProtocolError(OAuth2Error):
    """Raised when the server reports an RFC 6749 or RFC 8628 error."""

    pass


class UnauthorizedClientError(ProtocolError):
    description = (
        "The client is not authorized to request an access token using this method."
    )


class AccessDeniedError(ProtocolError):
    description = "The resource owner or authorization server denied the request."


class UnsupportedResponseTypeError(ProtocolError):
    description = (
        "The authorization server does not support obtaining an access token "
        "using this method."
    )


class InvalidScopeError(ProtocolError):
    description = "The requested scope is invalid, unknown, or malformed."


class ServerError(ProtocolError):
    description = (
        "The authorization server encountered an unexpected condition that "
        "prevented it from fulfilling the request."
    )


class TemporarilyUnavailableError(ProtocolError):
    description = (
        "The authorization server is currently unable to handle the request due "
        "to a temporary overloading or maintenance of the server."
    )


class AuthorizationPendingError(ProtocolError):
    """The user has not yet completed the device authorization."""

    description = "The authorization request is still pending."


class SlowDownError(ProtocolError):
    """The device is polling too fast and must increase its interval."""

    description = "The client is polling too quickly and should slow down."


class WrongUsernamePasswordError(ProtocolError):
    description = "The username or password is incorrect"


class ResponseError(ProtocolError):
    """Catch-all for error codes without a dedicated class."""

    def __init__(self, message: str):
        super().__init__(message)


_RESPONSE_ERRORS: dict[str, type[OAuth2Error]] = {
    "invalid_request": InvalidRequestError,
    "unauthorized_client": UnauthorizedClientError,
    "access_denied": AccessDeniedError,
    "unsupported_response_type": UnsupportedResponseTypeError,
    "invalid_scope": InvalidScopeError,
    "server_error": ServerError,
    "temporarily_unavailable": TemporarilyUnavailableError,
    "authorization_pending": AuthorizationPendingError,
    "slow_down": SlowDownError,
}


def from_response_error(code: str, fallback: str | None = None) -> OAuth2Error:
    """Map an ``error`` code from a server response to an exception.

    Args:
        code: The ``error`` value sent by the server
        fallback: Message to use when the code is not a known one

    Returns:
        The matching error instance, or a ``ResponseError``
    """
    error_class = _RESPONSE_ERRORS.get(code)
    if error_class is not None:
        return error_class()
    return ResponseError(fallback or f"Authorization error: {code}")
