"""Strategies for presenting the authorize URL to the user.

Code and implicit grants need the user to visit the authorize URL. An
authorization handler does that and, if it can intercept the redirect,
returns it. Otherwise the application delivers the redirect later through
``handle_redirect_url()`` on the flow.
"""

from __future__ import annotations

import logging
import webbrowser
from collections.abc import Awaitable, Callable
from typing import Protocol

from grantflow.models.errors import UnableToOpenAuthorizeURLError

logger = logging.getLogger(__name__)


class AuthorizationHandler(Protocol):
    """Protocol for handling the user authorization step.

    Allows different strategies for browser interaction:
    - System browser, redirect delivered by the application
    - Custom UI that intercepts the redirect
    """

    async def handle_authorization(
        self, auth_url: str, redirect_prefix: str | None
    ) -> str | None:
        """Present ``auth_url`` to the user.

        Args:
            auth_url: Authorization URL for the user to visit
            redirect_prefix: Redirect URLs starting with this belong to the dance

        Returns:
            The intercepted redirect URL, or None if it will arrive later

        Raises:
            RequestCancelledError: If the user cancelled
        """
        ...


class BrowserAuthorizationHandler:
    """Opens the authorize URL in the system browser.

    The application receives the redirect itself (custom URL scheme, local
    web server) and passes it to ``handle_redirect_url()``.
    """

    async def handle_authorization(
        self, auth_url: str, redirect_prefix: str | None
    ) -> str | None:
        logger.debug("Opening authorize URL in the system browser")
        if not webbrowser.open(auth_url):
            raise UnableToOpenAuthorizeURLError()
        return None


class CallbackAuthorizationHandler:
    """Delegates presentation to an async callable.

    The callable receives the authorize URL and the redirect prefix and
    returns the redirect URL it intercepted, or None.
    """

    def __init__(
        self, callback: Callable[[str, str | None], Awaitable[str | None]]
    ):
        self.callback = callback

    async def handle_authorization(
        self, auth_url: str, redirect_prefix: str | None
    ) -> str | None:
        return await self.callback(auth_url, redirect_prefix)
