"""Security helpers for authorization dances.

Generates the CSRF ``state`` parameter and checks that redirects arriving
from the authorization server target the URL the dance was started with.
"""

from __future__ import annotations

import secrets
import string
from urllib.parse import urlsplit

from grantflow.models.errors import InvalidRedirectURLError

OUT_OF_BAND_REDIRECT = "urn:ietf:wg:oauth:2.0:oob"


def generate_state(length: int = 8) -> str:
    """Generate a random state parameter.

    Args:
        length: Number of characters to generate

    Returns:
        Random alphanumeric string
    """
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def validate_redirect_prefix(redirect_url: str, expected_redirect: str) -> None:
    """Check that ``redirect_url`` was sent to ``expected_redirect``.

    Out-of-band and localhost redirects are delivered by the application
    itself, so their prefix is not checked.

    Raises:
        InvalidRedirectURLError: If the URL does not start with the expected one
    """
    if redirect_url.startswith(OUT_OF_BAND_REDIRECT):
        return
    if urlsplit(redirect_url).hostname == "localhost":
        return
    if not redirect_url.startswith(expected_redirect):
        raise InvalidRedirectURLError(
            f"Expecting URL to be prefixed by “{expected_redirect}”, "
            f"but received “{redirect_url}”"
        )
