"""Grant flow state machine shared by every OAuth 2.0 grant.

``OAuth2Flow`` drives an authorization from start to finish:

1. Use the current access token if it is present and unexpired
2. Otherwise try the refresh token, falling back to the interactive dance
3. Register the client dynamically if it has no client id yet
4. Run the grant-specific ``do_authorize()``

Every outcome leaves through ``_did_authorize`` or ``_did_fail``, which
deliver the callbacks on the designated callback loop. Token responses go
through one fixed parsing pipeline; grants customize it only through the
validation hooks.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, ClassVar, final

import httpx
from pydantic import BaseModel, ValidationError

from grantflow.models.config import (
    ClientConfig,
    ClientSettings,
    CredentialRecord,
    TokenRecord,
)
from grantflow.models.context import AuthContext
from grantflow.models.errors import (
    GenericError,
    InvalidStateError,
    JSONParserError,
    NoClientIdError,
    NoDataInResponseError,
    NoRedirectURLError,
    NoRefreshTokenError,
    NoTokenTypeError,
    OAuth2Error,
    RequestCancelledError,
    ResponseError,
    UnsupportedTokenTypeError,
    from_response_error,
)
from grantflow.models.requests import AuthRequest, HTTPMethod
from grantflow.services.authorizer import (
    AuthorizationHandler,
    BrowserAuthorizationHandler,
)
from grantflow.services.registration import DynamicRegistrar
from grantflow.services.storage import (
    CREDENTIALS_ACCOUNT,
    TOKENS_ACCOUNT,
    CredentialStore,
)
from grantflow.services.transport import HttpxTransport, Transport, TransportResponse

AuthorizeCallback = Callable[[dict[str, Any]], Any]
FailureCallback = Callable[[OAuth2Error | None], Any]
AfterCallback = Callable[[bool, OAuth2Error | None], Any]

# Always mapped by code: these drive device polling and are never shown to users
_CONTROL_ERRORS = ("authorization_pending", "slow_down")


def _call_in_loop(
    loop: asyncio.AbstractEventLoop | None, fn: Callable[[], Any]
) -> None:
    """Run ``fn`` on ``loop``, directly if already on it."""
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None

    if loop is None or loop is running or loop.is_closed():
        fn()
    else:
        loop.call_soon_threadsafe(fn)


def unexpected_error(error: Exception) -> GenericError:
    """Wrap an exception from outside the OAuth2 taxonomy for failure callbacks."""
    wrapped = GenericError(f"Unexpected error during authorization: {error}")
    wrapped.__cause__ = error
    return wrapped


def _resolve(future: asyncio.Future, result: Any) -> None:
    if not future.done():
        future.set_result(result)


class OAuth2Flow:
    """Base class of all grant flows.

    Subclasses set ``grant_type`` and ``response_type`` and implement
    ``do_authorize()``. Providers that omit ``token_type`` set
    ``check_bearer_type`` to False.
    """

    grant_type: ClassVar[str] = "__undefined"
    response_type: ClassVar[str | None] = None
    check_bearer_type: ClassVar[bool] = True

    def __init__(
        self,
        settings: Mapping[str, Any],
        *,
        transport: Transport | None = None,
        storage: CredentialStore | None = None,
        authorizer: AuthorizationHandler | None = None,
        registrar: DynamicRegistrar | None = None,
        logger: logging.Logger | None = None,
        callback_loop: asyncio.AbstractEventLoop | None = None,
    ):
        """Initialize the flow.

        Args:
            settings: Settings mapping, see ``ClientSettings`` for the keys
            transport: Sends HTTP requests, defaults to ``HttpxTransport``
            storage: Persists credentials and tokens; nothing is persisted if None
            authorizer: Presents the authorize URL to the user
            registrar: Performs dynamic client registration
            logger: Logger used by this flow
            callback_loop: Event loop callbacks are delivered on; defaults to
                the loop ``authorize()`` is first awaited on

        Raises:
            pydantic.ValidationError: If the settings are malformed
        """
        self.settings = ClientSettings.model_validate(dict(settings))
        self.client_config = ClientConfig.from_settings(self.settings)
        self.context = AuthContext()
        self.transport: Transport = transport or HttpxTransport()
        self.storage = storage
        self.authorizer: AuthorizationHandler = (
            authorizer or BrowserAuthorizationHandler()
        )
        self.registrar = registrar or DynamicRegistrar()
        self.logger = logger or logging.getLogger(__name__)
        self.callback_loop = callback_loop

        self.on_authorize: AuthorizeCallback | None = None
        self.on_failure: FailureCallback | None = None
        self.after_authorize_or_failure: AfterCallback | None = None
        self.on_before_dynamic_client_registration: (
            Callable[[str | None], str | None] | None
        ) = None

        self._is_authorizing = False
        self._abort_reported = False
        self._completion: asyncio.Future | None = None
        self._request_task: asyncio.Future | None = None
        self._timer: tuple[asyncio.TimerHandle, asyncio.Future] | None = None

        if self.storage is not None:
            self._update_from_storage()

    # Client state

    @property
    def client_id(self) -> str | None:
        return self.client_config.client_id

    @property
    def client_secret(self) -> str | None:
        return self.client_config.client_secret

    @property
    def access_token(self) -> str | None:
        return self.client_config.access_token

    @property
    def refresh_token(self) -> str | None:
        return self.client_config.refresh_token

    @property
    def is_authorizing(self) -> bool:
        return self._is_authorizing

    def has_unexpired_access_token(self) -> bool:
        return self.client_config.has_unexpired_access_token()

    # Authorization

    async def authorize(
        self,
        params: Mapping[str, str] | None = None,
        *,
        on_authorize: AuthorizeCallback | None = None,
        on_failure: FailureCallback | None = None,
    ) -> dict[str, Any] | None:
        """Obtain an access token.

        A valid access token is reused as is. Otherwise the refresh token is
        tried, and only then the grant's interactive dance is started.

        Callbacks set here replace ``on_authorize`` / ``on_failure``. A call
        made while another authorization is running joins that one and its
        callbacks are ignored.

        Args:
            params: Extra parameters for the authorize or token request
            on_authorize: Called with the response parameters on success
            on_failure: Called with the error on failure, None if cancelled

        Returns:
            The response parameters on success, None on failure or cancellation
        """
        if self._is_authorizing and self._completion is not None:
            self.logger.warning(
                "Already authorizing, joining the running authorization"
            )
            return await asyncio.shield(self._completion)

        if on_authorize is not None:
            self.on_authorize = on_authorize
        if on_failure is not None:
            self.on_failure = on_failure

        completion = self._begin_authorizing()

        try:
            result = await self.try_to_obtain_access_token_if_needed(params)
            if result is not None:
                self._did_authorize(result)
            else:
                await self.register_client_if_needed()
                await self.do_authorize(params)
        except OAuth2Error as e:
            if self._completion is completion:
                self._did_fail(e)
        except asyncio.CancelledError:
            if self._completion is completion:
                self.abort_authorization()
            raise
        except Exception as e:
            self.logger.exception("Unexpected error during authorization")
            if self._completion is completion:
                self._did_fail(unexpected_error(e))

        try:
            return await completion
        except asyncio.CancelledError:
            if self._completion is completion:
                self.abort_authorization()
            raise

    async def try_to_obtain_access_token_if_needed(
        self, params: Mapping[str, str] | None = None
    ) -> dict[str, Any] | None:
        """Return token parameters without user interaction, if possible.

        Returns:
            An empty dict for a still valid token, the refresh response if
            refreshing worked, None if the dance is needed
        """
        if self.has_unexpired_access_token():
            self.logger.debug("Have an apparently unexpired access token")
            return {}

        self.logger.debug("No access token, checking if a refresh token is available")
        if not self.client_config.refresh_token:
            return None

        try:
            return await self.do_refresh_token(params)
        except RequestCancelledError:
            raise
        except OAuth2Error as e:
            self.logger.warning(f"Failed to refresh access token, will authorize: {e}")
            return None

    async def do_authorize(self, params: Mapping[str, str] | None = None) -> None:
        """Present the authorize URL and handle the redirect, if intercepted."""
        url = self.authorize_url(params)
        self.logger.debug(f"Presenting authorize URL for client {self.client_id}")
        redirect = await self.authorizer.handle_authorization(
            url, self.context.redirect_url
        )
        if redirect is not None:
            await self.handle_redirect_url(redirect)

    async def handle_redirect_url(self, redirect: str) -> dict[str, Any] | None:
        """Handle the redirect the authorization server sent the user to.

        Raises:
            OAuth2Error: If the redirect is invalid; the failure callback has
                been invoked as well
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not handle redirect URLs"
        )

    def abort_authorization(self) -> None:
        """Cancel the running request or poll timer and fail as cancelled."""
        self.logger.debug("Aborting authorization")
        if self._request_task is not None and not self._request_task.done():
            self._request_task.cancel()
        if self._timer is not None:
            handle, waiter = self._timer
            handle.cancel()
            if not waiter.done():
                waiter.set_exception(RequestCancelledError())
        if self._is_authorizing:
            self._did_fail(RequestCancelledError())
            self._abort_reported = True

    # Authorize URL

    def authorize_url(self, params: Mapping[str, str] | None = None) -> str:
        """Authorize URL using the configured redirect and scope.

        Raises:
            NoRedirectURLError: If no redirect URL is configured
            NoClientIdError: If no client id is configured
            NotUsingTLSError: If the authorize URL is not ``https``
        """
        redirect = self.client_config.redirect
        if not redirect:
            raise NoRedirectURLError()
        return self.authorize_url_with_redirect(
            redirect, self.client_config.scope, params
        )

    def authorize_url_with_redirect(
        self,
        redirect: str,
        scope: str | None = None,
        params: Mapping[str, str] | None = None,
    ) -> str:
        request = self.authorize_request(redirect, scope, params)
        url = request.as_url()
        self.context.redirect_url = redirect
        return url

    def authorize_request(
        self,
        redirect: str,
        scope: str | None = None,
        params: Mapping[str, str] | None = None,
    ) -> AuthRequest:
        client_id = self.client_config.client_id
        if not client_id:
            raise NoClientIdError()
        if not redirect:
            raise NoRedirectURLError()

        request = AuthRequest(
            url=self.client_config.authorize_url, method=HTTPMethod.GET
        )
        request.params["client_id"] = client_id
        request.params["redirect_uri"] = redirect
        request.params["state"] = self.context.state
        if scope:
            request.params["scope"] = scope
        if self.response_type:
            request.params["response_type"] = self.response_type
        request.add_params(params)
        return request

    # Refresh

    def token_request_for_token_refresh(
        self, params: Mapping[str, str] | None = None
    ) -> AuthRequest:
        refresh_token = self.client_config.refresh_token
        if not refresh_token:
            raise NoRefreshTokenError()

        request = AuthRequest(url=self.client_config.token_endpoint)
        request.params["grant_type"] = "refresh_token"
        request.params["refresh_token"] = refresh_token
        if self.client_config.client_id:
            request.params["client_id"] = self.client_config.client_id
        request.add_params(params)
        return request

    async def do_refresh_token(
        self, params: Mapping[str, str] | None = None
    ) -> dict[str, Any]:
        """Exchange the refresh token for a new access token.

        Raises:
            OAuth2Error: If the refresh fails
        """
        request = self.token_request_for_token_refresh(params).as_http_request(
            self.client_config
        )
        self.logger.debug(
            f"Using refresh token to receive access token from {request.url}"
        )
        response = await self.perform_request(request)
        self.raise_for_status(response)
        result = self.parse_refresh_token_response_data(response.body)
        self.logger.info("Did use refresh token for access token")
        return result

    # Registration

    async def register_client_if_needed(self) -> dict[str, Any] | None:
        """Register the client if it has no id but a registration URL.

        Returns:
            The registration response, or None if no registration was needed
        """
        if self.client_config.client_id or not self.client_config.registration_url:
            return None

        if self.on_before_dynamic_client_registration is not None:
            redirect = self.on_before_dynamic_client_registration(
                self.client_config.redirect
            )
            if redirect:
                self.client_config.redirect = redirect

        self.logger.debug("Registering client dynamically")
        return await self.registrar.register(self)

    def did_register(
        self,
        client_id: str,
        client_secret: str | None,
        endpoint_auth_method: Any = None,
    ) -> None:
        """Adopt credentials obtained by dynamic registration."""
        self.client_config.client_id = client_id
        self.client_config.client_secret = client_secret
        if endpoint_auth_method is not None:
            self.client_config.endpoint_auth_method = endpoint_auth_method
        else:
            self.client_config.secret_in_body = self.settings.secret_in_body
        self._store_client_credentials()

    # Requests

    def request(self, url: str | httpx.URL, method: str = "GET") -> httpx.Request:
        """A request signed with the current access token, if there is one."""
        headers = {}
        if self.client_config.access_token:
            headers["Authorization"] = f"Bearer {self.client_config.access_token}"
        return httpx.Request(method, url, headers=headers)

    async def perform_request(self, request: httpx.Request) -> TransportResponse:
        """Send ``request`` as the flow's single cancellable in-flight request.

        Raises:
            RequestCancelledError: If the request was aborted
            GenericError: If the transport failed
        """
        task = asyncio.ensure_future(self.transport.perform(request))
        self._request_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._request_task is task:
                self._request_task = None

        if task.cancelled():
            raise RequestCancelledError()
        try:
            return task.result()
        except httpx.HTTPError as e:
            raise GenericError(f"HTTP error during request: {e}") from e

    async def _sleep(self, delay: float) -> None:
        """Wait on a timer that ``abort_authorization()`` can cancel."""
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        handle = loop.call_later(delay, _resolve, waiter, None)
        self._timer = (handle, waiter)
        try:
            await waiter
        finally:
            handle.cancel()
            if self._timer is not None and self._timer[1] is waiter:
                self._timer = None

    def raise_for_status(self, response: TransportResponse) -> None:
        """Raise the error an unsuccessful response describes.

        Raises:
            OAuth2Error: The error from the body, or a ``GenericError``
        """
        if response.status_code < 400:
            return

        try:
            params = self.parse_response_body(response.body)
        except OAuth2Error:
            params = {}
        self.assure_no_error_in_response(params)
        raise GenericError(f"Request failed with HTTP status {response.status_code}")

    # Response parsing

    def parse_json(self, data: bytes) -> dict[str, Any]:
        """Parse a JSON object.

        Raises:
            NoDataInResponseError: If ``data`` is empty
            JSONParserError: If ``data`` is not a JSON object
        """
        if not data:
            raise NoDataInResponseError()
        try:
            parsed = json.loads(data)
        except ValueError as e:
            raise JSONParserError() from e
        if not isinstance(parsed, dict):
            raise JSONParserError()
        return parsed

    def parse_response_body(self, data: bytes) -> dict[str, Any]:
        """Turn a token endpoint response body into parameters."""
        return self.parse_json(data)

    def normalize_access_token_response_keys(
        self, params: dict[str, Any]
    ) -> dict[str, Any]:
        """Hook for providers that use non-standard response keys."""
        return params

    @final
    def parse_access_token_response_data(self, data: bytes) -> dict[str, Any]:
        return self.parse_access_token_response(self.parse_response_body(data))

    @final
    def parse_access_token_response(self, params: dict[str, Any]) -> dict[str, Any]:
        """Validate an access token response and adopt its tokens.

        Returns:
            All response parameters, including ones the library does not use

        Raises:
            OAuth2Error: If the response carries an error or fails validation
        """
        params = self.normalize_access_token_response_keys(params)
        self.assure_no_error_in_response(params)
        if self.check_bearer_type:
            self.assure_correct_bearer_type(params)
        self.assure_access_token_params_are_valid(params)
        self.client_config.update_from_response(params)
        self._store_tokens()
        return params

    @final
    def parse_refresh_token_response_data(self, data: bytes) -> dict[str, Any]:
        params = self.normalize_access_token_response_keys(
            self.parse_response_body(data)
        )
        self.assure_no_error_in_response(params)
        if self.check_bearer_type:
            self.assure_correct_bearer_type(params)
        self.assure_refresh_token_params_are_valid(params)
        self.client_config.update_from_response(params)
        self._store_tokens()
        return params

    def assure_no_error_in_response(
        self, params: Mapping[str, Any], fallback: str | None = None
    ) -> None:
        """Raise if ``params`` carries an ``error``.

        The ``error_description`` wins over the coded error, except for the
        device polling codes.
        """
        error = params.get("error")
        if not error:
            return
        code = str(error)
        description = params.get("error_description")
        if description and code not in _CONTROL_ERRORS:
            raise ResponseError(str(description))
        raise from_response_error(code, fallback)

    def assure_correct_bearer_type(self, params: Mapping[str, Any]) -> None:
        token_type = params.get("token_type")
        if not isinstance(token_type, str) or not token_type:
            raise NoTokenTypeError()
        if token_type.lower() != "bearer":
            raise UnsupportedTokenTypeError(
                f"Only “bearer” token is supported, but received “{token_type}”"
            )

    def assure_matches_state(self, params: Mapping[str, Any]) -> None:
        """Accept the response's ``state`` once, then reset it.

        Raises:
            InvalidStateError: If the state is missing or does not match
        """
        if not self.context.matches_state(params.get("state")):
            raise InvalidStateError()
        self.context.reset_state()

    def assure_access_token_params_are_valid(self, params: Mapping[str, Any]) -> None:
        """Hook for grant-specific validation of access token responses."""
        pass

    def assure_refresh_token_params_are_valid(
        self, params: Mapping[str, Any]
    ) -> None:
        """Hook for grant-specific validation of refresh token responses."""
        pass

    # Completion

    def _begin_authorizing(self) -> asyncio.Future:
        """Enter the authorizing state; the future resolves when it is left."""
        loop = asyncio.get_running_loop()
        if self.callback_loop is None:
            self.callback_loop = loop
        completion = loop.create_future()
        self._completion = completion
        self._is_authorizing = True
        self._abort_reported = False
        return completion

    def _did_authorize(self, params: dict[str, Any]) -> None:
        self.logger.info("Did authorize")
        self._finish(params, None, failed=False)

    def _did_fail(self, error: OAuth2Error | None) -> None:
        if isinstance(error, RequestCancelledError):
            if self._abort_reported:
                return
            self.logger.debug("Authorization was cancelled")
            error = None
        elif error is not None:
            self.logger.warning(f"Authorization failed: {error}")
        self._finish(None, error, failed=True)

    def _finish(
        self,
        params: dict[str, Any] | None,
        error: OAuth2Error | None,
        failed: bool,
    ) -> None:
        """Leave the authorizing state and deliver the outcome."""
        self._is_authorizing = False
        completion, self._completion = self._completion, None

        def deliver() -> None:
            try:
                if failed:
                    if self.on_failure is not None:
                        self.on_failure(error)
                elif self.on_authorize is not None:
                    self.on_authorize(params)
                if self.after_authorize_or_failure is not None:
                    self.after_authorize_or_failure(failed, error)
            finally:
                if completion is not None:
                    _call_in_loop(
                        completion.get_loop(),
                        lambda: _resolve(completion, None if failed else params),
                    )

        _call_in_loop(self.callback_loop, deliver)

    # Storage

    def _update_from_storage(self) -> None:
        service = self.client_config.service_key
        credentials = None
        if not self.client_config.client_id:
            credentials = self._load_record(
                CredentialRecord, service, CREDENTIALS_ACCOUNT
            )
        tokens = self._load_record(TokenRecord, service, TOKENS_ACCOUNT)
        self.client_config.update_from_records(credentials, tokens)

    def _load_record(
        self, model: type[BaseModel], service: str, account: str
    ) -> Any:
        data = self.storage.load(service, account)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            self.logger.warning(f"Ignoring invalid stored {account}: {e}")
            return None

    def _store_client_credentials(self) -> None:
        if self.storage is None:
            return
        record = self.client_config.storable_credential_record()
        if record is not None:
            self.storage.save(
                self.client_config.service_key, CREDENTIALS_ACCOUNT, record.to_storage()
            )

    def _store_tokens(self) -> None:
        if self.storage is None:
            return
        record = self.client_config.storable_token_record()
        if record is not None:
            self.storage.save(
                self.client_config.service_key, TOKENS_ACCOUNT, record.to_storage()
            )

    def forget_client(self) -> None:
        """Forget the client credentials and tokens, also from storage."""
        self.forget_tokens()
        self.client_config.forget_credentials()
        if self.storage is not None:
            self.storage.delete(self.client_config.service_key, CREDENTIALS_ACCOUNT)

    def forget_tokens(self) -> None:
        """Forget the tokens, also from storage."""
        self.client_config.forget_tokens()
        if self.storage is not None:
            self.storage.delete(self.client_config.service_key, TOKENS_ACCOUNT)
